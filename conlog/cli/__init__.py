"""Command-line front-end for the console logger."""
