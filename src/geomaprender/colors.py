"""Hex colour parsing for feature and label styles."""

from __future__ import annotations

import string

from .errors import ParseError

Rgba = tuple[int, int, int, int]

# Leading byte below this is read as alpha (AARRGGBB), otherwise RRGGBBAA.
_ALPHA_FIRST_THRESHOLD = 0x32

_HEX_DIGITS = frozenset(string.hexdigits)


def parse_hex_color(raw: str | None) -> Rgba | None:
    """Parse `#RGB`, `#ARGB`, `#RRGGBB` or an 8-digit hex colour into RGBA.

    Returns None for an absent or blank value, meaning "no paint" for that
    channel. Raises `ParseError` when a value is present but malformed.
    """
    if raw is None:
        return None
    value = raw.strip()
    if value.startswith("#"):
        value = value[1:]
    if not value:
        return None
    if not _HEX_DIGITS.issuperset(value):
        raise ParseError(f"Invalid hex colour '{raw}'")

    size = len(value)
    if size == 3:
        r, g, b = (_nibble(ch) for ch in value)
        return (r, g, b, 255)
    if size == 4:
        a, r, g, b = (_nibble(ch) for ch in value)
        return (r, g, b, a)
    if size == 6:
        return (_byte(value, 0), _byte(value, 2), _byte(value, 4), 255)
    if size == 8:
        lead = _byte(value, 0)
        if lead < _ALPHA_FIRST_THRESHOLD:
            return (_byte(value, 2), _byte(value, 4), _byte(value, 6), lead)
        return (lead, _byte(value, 2), _byte(value, 4), _byte(value, 6))
    raise ParseError(f"Unsupported hex colour length {size} in '{raw}'")


def _nibble(ch: str) -> int:
    return int(ch * 2, 16)


def _byte(value: str, start: int) -> int:
    return int(value[start : start + 2], 16)
