from conlog.cli.main import main

main()
