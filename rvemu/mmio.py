"""Memory-mapped I/O regions and the bus that dispatches to them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from rvemu.memory import host_read, host_write
from rvemu.state import RunState, SimState

logger = logging.getLogger(__name__)

IO_SPACE_MAX = 2 * 1024 * 1024
PAGE_SHIFT = 12
PAGE_SIZE = 1 << PAGE_SHIFT
PAGE_MASK = PAGE_SIZE - 1
NR_MAP = 16

IOCallback = Callable[[int, int, bool], None]


class MMIOOverlapError(ValueError):
    """Raised when a new MMIO region overlaps memory or another region."""


class IOSpace:
    """A pool from which device register and buffer space is carved in pages."""

    def __init__(self, capacity: int = IO_SPACE_MAX) -> None:
        self.capacity = capacity
        self._buffer = bytearray(capacity)
        self._view = memoryview(self._buffer)
        self._used = 0

    def new_space(self, size: int) -> memoryview:
        """Allocate ``size`` bytes rounded up to whole pages."""
        aligned = (size + PAGE_MASK) & ~PAGE_MASK
        start = self._used
        if start + aligned >= self.capacity:
            raise MemoryError("io space exhausted")
        self._used = start + aligned
        return self._view[start:start + aligned]


@dataclass
class IOMap:
    """One device region: ``[low, high]`` backed by ``space``."""

    name: str
    low: int
    high: int
    space: object
    callback: Optional[IOCallback] = None

    def contains(self, addr: int) -> bool:
        """Tell whether ``addr`` falls inside this region."""
        return self.low <= addr <= self.high


class MMIOBus:
    """Routes guest accesses outside RAM to the registered device regions."""

    def __init__(
        self,
        pmem_base: int,
        pmem_size: int,
        sim_state: Optional[SimState] = None,
        on_access: Optional[Callable[[], None]] = None,
    ) -> None:
        self.pmem_base = pmem_base
        self.pmem_size = pmem_size
        self.sim_state = sim_state if sim_state is not None else SimState()
        self.on_access = on_access
        self.maps: list = []

    def _in_pmem(self, addr: int) -> bool:
        return self.pmem_base <= addr < self.pmem_base + self.pmem_size

    def add_map(
        self,
        name: str,
        addr: int,
        space,
        length: int,
        callback: Optional[IOCallback] = None,
    ) -> IOMap:
        """Register a device region of ``length`` bytes at ``addr``."""
        if len(self.maps) >= NR_MAP:
            raise ValueError(f"at most {NR_MAP} mmio maps are supported")
        left, right = addr, addr + length - 1
        if self._in_pmem(left) or self._in_pmem(right):
            raise MMIOOverlapError(
                f"MMIO region {name}@[0x{left:08x}, 0x{right:08x}] is overlapped with "
                f"pmem@[0x{self.pmem_base:08x}, 0x{self.pmem_base + self.pmem_size - 1:08x}]"
            )
        for other in self.maps:
            if left <= other.high and right >= other.low:
                raise MMIOOverlapError(
                    f"MMIO region {name}@[0x{left:08x}, 0x{right:08x}] is overlapped with "
                    f"{other.name}@[0x{other.low:08x}, 0x{other.high:08x}]"
                )
        region = IOMap(name, left, right, space, callback)
        self.maps.append(region)
        logger.info("Add mmio map '%s' at [0x%08x, 0x%08x]", name, left, right)
        return region

    def find(self, addr: int) -> Optional[IOMap]:
        """Return the region holding ``addr``, or ``None``."""
        for region in self.maps:
            if region.contains(addr):
                if self.on_access is not None:
                    self.on_access()
                return region
        return None

    def _resolve(self, addr: int, length: int) -> Optional[IOMap]:
        if not 1 <= length <= 8:
            raise ValueError(f"unsupported access length {length}")
        region = self.find(addr)
        if region is None or not region.contains(addr):
            self.sim_state.state = RunState.ABORT
            return None
        return region

    def read(self, addr: int, length: int) -> int:
        """Let the device prepare its data, then read it; unmapped reads abort and give 0."""
        region = self._resolve(addr, length)
        if region is None:
            return 0
        offset = addr - region.low
        if region.callback is not None:
            region.callback(offset, length, False)
        return host_read(region.space, offset, length)

    def write(self, addr: int, length: int, data: int) -> None:
        """Store into device space, then notify the device; unmapped writes abort."""
        region = self._resolve(addr, length)
        if region is None:
            return
        offset = addr - region.low
        host_write(region.space, offset, length, data)
        if region.callback is not None:
            region.callback(offset, length, True)