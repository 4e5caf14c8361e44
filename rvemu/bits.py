"""Bit-field helpers for 32/64-bit machine words."""

_U64 = (1 << 64) - 1


def bitmask(width: int) -> int:
    """Return a mask with the lowest ``width`` bits set."""
    if width < 0:
        raise ValueError("width must not be negative")
    return (1 << width) - 1


def bits(value: int, hi: int, lo: int) -> int:
    """Extract ``value[hi:lo]`` (inclusive), like a Verilog slice."""
    if hi < lo:
        raise ValueError("hi must not be below lo")
    return (value >> lo) & bitmask(hi - lo + 1)


def sext(value: int, length: int) -> int:
    """Sign-extend the low ``length`` bits of ``value`` to an unsigned 64-bit integer."""
    if not 1 <= length <= 64:
        raise ValueError("length must be between 1 and 64")
    field = value & bitmask(length)
    if field >> (length - 1):
        field -= 1 << length
    return field & _U64


def roundup(value: int, size: int) -> int:
    """Round ``value`` up to a multiple of ``size`` (a power of two)."""
    return (value + size - 1) & ~(size - 1)


def rounddown(value: int, size: int) -> int:
    """Round ``value`` down to a multiple of ``size`` (a power of two)."""
    return value & ~(size - 1)