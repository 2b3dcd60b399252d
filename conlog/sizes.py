"""Human byte-size parsing for the ``-o`` limit."""

from __future__ import annotations

import re

__all__ = ["SIZE_SUFFIXES", "parse_size"]

SIZE_SUFFIXES = {
    "": 1,
    "k": 1024,
    "M": 1024 * 1024,
}

_SIZE_PATTERN = re.compile(r"(?P<number>0[xX][0-9a-fA-F]+|[0-9]+)(?P<suffix>[A-Za-z]?)")


def parse_size(text: str) -> int:
    """Return the byte count for ``text`` (``"4k"`` -> 4096, ``"2M"`` -> 2097152).

    A single optional ``k`` or ``M`` suffix is accepted after a decimal or
    ``0x`` hexadecimal number. Anything else raises ``ValueError``.
    """

    match = _SIZE_PATTERN.fullmatch(text)
    if match is None:
        raise ValueError(f"invalid size: {text!r}")
    suffix = match.group("suffix")
    if suffix not in SIZE_SUFFIXES:
        raise ValueError(f"invalid size suffix {suffix!r} in {text!r} (expected k or M)")
    number = match.group("number")
    base = 16 if number[:2].lower() == "0x" else 10
    return int(number, base) * SIZE_SUFFIXES[suffix]
