"""Guest physical memory and little-endian host access."""

from __future__ import annotations

import logging
import random

logger = logging.getLogger(__name__)

_WORD = 0xFFFFFFFF
_LENGTHS = (1, 2, 4, 8)


def _check_length(length: int) -> None:
    if length not in _LENGTHS:
        raise ValueError(f"unsupported access length {length}")


def host_read(buffer, offset: int, length: int) -> int:
    """Read a little-endian value of ``length`` bytes, truncated to a 32-bit word."""
    _check_length(length)
    if offset < 0 or offset + length > len(buffer):
        raise IndexError(f"access of {length} bytes at offset {offset} is outside the buffer")
    return int.from_bytes(buffer[offset:offset + length], "little") & _WORD


def host_write(buffer, offset: int, length: int, data: int) -> None:
    """Write the 32-bit word ``data`` as ``length`` little-endian bytes."""
    _check_length(length)
    if offset < 0 or offset + length > len(buffer):
        raise IndexError(f"access of {length} bytes at offset {offset} is outside the buffer")
    value = (data & _WORD) & ((1 << (8 * length)) - 1)
    buffer[offset:offset + length] = value.to_bytes(length, "little")


class PhysicalMemory:
    """A block of guest RAM mapped at ``base``."""

    def __init__(self, base: int, size: int) -> None:
        if size <= 0:
            raise ValueError("memory size must be positive")
        self.base = base
        self.size = size
        self.data = bytearray(size)

    def in_pmem(self, addr: int) -> bool:
        """Tell whether ``addr`` lies inside this memory."""
        return self.base <= addr < self.base + self.size

    def guest_offset(self, addr: int) -> int:
        """Translate a guest address into an offset into ``data``."""
        return addr - self.base

    def _report_out_of_bound(self, addr: int) -> None:
        logger.warning(
            "address = 0x%08x is out of bound of pmem [0x%08x, 0x%08x)",
            addr, self.base, self.base + self.size,
        )

    def read(self, addr: int, length: int) -> int:
        """Read a value; addresses outside memory read as 0."""
        if self.in_pmem(addr):
            return host_read(self.data, self.guest_offset(addr), length)
        self._report_out_of_bound(addr)
        return 0

    def write(self, addr: int, length: int, data: int) -> None:
        """Write a value; writes outside memory are dropped."""
        if self.in_pmem(addr):
            host_write(self.data, self.guest_offset(addr), length, data)
            return
        self._report_out_of_bound(addr)

    def load(self, data: bytes, addr: int | None = None) -> int:
        """Copy ``data`` into memory at ``addr`` (default: the base) and return its size."""
        start = self.base if addr is None else addr
        offset = self.guest_offset(start)
        if offset < 0 or offset + len(data) > self.size:
            raise ValueError("image is too large to fit in memory")
        self.data[offset:offset + len(data)] = data
        return len(data)

    def dump(self, addr: int | None = None, length: int | None = None) -> bytes:
        """Return a copy of ``length`` bytes starting at ``addr`` (default: everything)."""
        start = self.base if addr is None else addr
        offset = self.guest_offset(start)
        count = self.size - offset if length is None else length
        if offset < 0 or count < 0 or offset + count > self.size:
            raise ValueError("range is outside memory")
        return bytes(self.data[offset:offset + count])

    def fill_random(self, rng: random.Random | None = None) -> None:
        """Fill every whole 32-bit word with a random non-negative 31-bit value."""
        source = rng if rng is not None else random.Random()
        words = self.size // 4
        self.data[:words * 4] = b"".join(
            source.getrandbits(31).to_bytes(4, "little") for _ in range(words)
        )