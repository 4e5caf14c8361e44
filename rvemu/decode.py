"""Instruction pattern matching based on bit strings."""

from __future__ import annotations

from dataclasses import dataclass

_U64 = (1 << 64) - 1
_MAX_BINARY = 64
_MAX_HEX = 16
_HEX_DIGITS = "0123456789abcdef"


class PatternError(ValueError):
    """Raised for malformed instruction patterns."""


@dataclass(frozen=True)
class Pattern:
    """A decoded pattern: ``(value >> shift) & mask == key`` means a match."""

    key: int
    mask: int
    shift: int

    def matches(self, value: int) -> bool:
        """Tell whether ``value`` fits this pattern."""
        return ((value >> self.shift) & self.mask) == self.key


def _decode(pattern: str, limit: int, width: int, digit) -> Pattern:
    if len(pattern) > limit:
        raise PatternError("pattern too long")
    key = mask = shift = 0
    full = (1 << width) - 1
    for ch in pattern:
        if ch == " ":
            continue
        if ch == "?":
            key = (key << width) & _U64
            mask = (mask << width) & _U64
            shift += width
            continue
        nibble = digit(ch)
        if nibble is None:
            raise PatternError(f"invalid character {ch!r} in pattern string")
        key = ((key << width) | nibble) & _U64
        mask = ((mask << width) | full) & _U64
        shift = 0
    return Pattern(key >> shift, mask >> shift, shift)


def pattern_decode(pattern: str) -> Pattern:
    """Decode a binary pattern made of ``0``, ``1``, ``?`` and spaces."""
    return _decode(pattern, _MAX_BINARY, 1, lambda ch: {"0": 0, "1": 1}.get(ch))


def pattern_decode_hex(pattern: str) -> Pattern:
    """Decode a hexadecimal pattern made of ``0-9``, ``a-f``, ``?`` and spaces."""

    def digit(ch: str):
        index = _HEX_DIGITS.find(ch)
        return index if index >= 0 else None

    return _decode(pattern, _MAX_HEX, 4, digit)