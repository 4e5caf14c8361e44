"""Memory-mapped devices: serial, timer, keyboard, disk and frame buffer."""

from __future__ import annotations

import string
import sys
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

from rvemu.memory import PhysicalMemory, host_read, host_write
from rvemu.mmio import IOSpace, MMIOBus
from rvemu.state import RunState, SimState

_WORD = 0xFFFFFFFF

TIMER_HZ = 60
_UPDATE_INTERVAL_US = 100000 // TIMER_HZ

KEYDOWN_MASK = 0x8000
KEY_QUEUE_LEN = 1024
KEY_NONE = 0

KEY_NAMES = (
    "ESCAPE", "F1", "F2", "F3", "F4", "F5", "F6", "F7", "F8", "F9", "F10", "F11", "F12",
    "GRAVE", "1", "2", "3", "4", "5", "6", "7", "8", "9", "0", "MINUS", "EQUALS", "BACKSPACE",
    "TAB", "Q", "W", "E", "R", "T", "Y", "U", "I", "O", "P",
    "LEFTBRACKET", "RIGHTBRACKET", "BACKSLASH",
    "CAPSLOCK", "A", "S", "D", "F", "G", "H", "J", "K", "L", "SEMICOLON", "APOSTROPHE", "RETURN",
    "LSHIFT", "Z", "X", "C", "V", "B", "N", "M", "COMMA", "PERIOD", "SLASH", "RSHIFT",
    "LCTRL", "APPLICATION", "LALT", "SPACE", "RALT", "RCTRL",
    "UP", "DOWN", "LEFT", "RIGHT", "INSERT", "DELETE", "HOME", "END", "PAGEUP", "PAGEDOWN",
)
KEY_CODES = {name: code for code, name in enumerate(KEY_NAMES, start=1)}

# Host keyboard scancodes (USB HID usage numbering).
SDL_SCANCODES = {
    **{letter: 4 + i for i, letter in enumerate(string.ascii_uppercase)},
    **{str(digit): 29 + digit for digit in range(1, 10)},
    "0": 39,
    "RETURN": 40, "ESCAPE": 41, "BACKSPACE": 42, "TAB": 43, "SPACE": 44,
    "MINUS": 45, "EQUALS": 46, "LEFTBRACKET": 47, "RIGHTBRACKET": 48, "BACKSLASH": 49,
    "SEMICOLON": 51, "APOSTROPHE": 52, "GRAVE": 53, "COMMA": 54, "PERIOD": 55, "SLASH": 56,
    "CAPSLOCK": 57,
    **{f"F{n}": 57 + n for n in range(1, 13)},
    "INSERT": 73, "HOME": 74, "PAGEUP": 75, "DELETE": 76, "END": 77, "PAGEDOWN": 78,
    "RIGHT": 79, "LEFT": 80, "DOWN": 81, "UP": 82, "APPLICATION": 101,
    "LCTRL": 224, "LSHIFT": 225, "LALT": 226, "RCTRL": 228, "RSHIFT": 229, "RALT": 230,
}
_KEYMAP = {SDL_SCANCODES[name]: KEY_CODES[name] for name in KEY_NAMES}


@dataclass
class Clock:
    """Microseconds since first use, and the local wall-clock time."""

    time_source: Callable[[], float] = time.time
    local_source: Callable[[], time.struct_time] = time.localtime
    _boot_us: Optional[int] = field(default=None, init=False, repr=False)

    def now_us(self) -> int:
        """Microseconds elapsed since the first call."""
        now = int(self.time_source() * 1_000_000)
        if self._boot_us is None:
            self._boot_us = now
        return now - self._boot_us

    def local_time(self) -> time.struct_time:
        """The current local time."""
        return self.local_source()


class Serial:
    """A write-only character port forwarded to a text stream (stderr by default)."""

    CH_OFFSET = 0

    def __init__(self, bus: MMIOBus, io_space: IOSpace, addr: int, stream=None) -> None:
        self.stream = stream
        self.space = io_space.new_space(8)
        self.region = bus.add_map("serial", addr, self.space, 8, self._handler)

    def _handler(self, offset: int, length: int, is_write: bool) -> None:
        if length != 1:
            raise ValueError(f"serial access of {length} bytes is not supported")
        if offset != self.CH_OFFSET:
            raise RuntimeError(f"do not support offset = {offset}")
        if not is_write:
            raise RuntimeError("do not support read")
        out = self.stream if self.stream is not None else sys.stderr
        out.write(chr(self.space[0]))
        out.flush()


class Timer:
    """Real-time clock: uptime in microseconds plus the calendar time."""

    def __init__(self, bus: MMIOBus, io_space: IOSpace, addr: int, clock: Clock) -> None:
        self.clock = clock
        self.space = io_space.new_space(32)
        self.region = bus.add_map("rtc", addr, self.space, 32, self._handler)

    def _handler(self, offset: int, length: int, is_write: bool) -> None:
        if is_write:
            raise RuntimeError("rtc does not support write")
        us = self.clock.now_us()
        tm = self.clock.local_time()
        values = (
            us & _WORD, (us >> 32) & _WORD,
            tm.tm_sec, tm.tm_min, tm.tm_hour, tm.tm_mday, tm.tm_mon, tm.tm_year,
        )
        for index, value in enumerate(values):
            host_write(self.space, 4 * index, 4, value)


class Keyboard:
    """A key-event queue read one event at a time through a data port."""

    def __init__(self, bus: MMIOBus, io_space: IOSpace, addr: int, sim_state: SimState) -> None:
        self.sim_state = sim_state
        self._queue: deque = deque()
        self.space = io_space.new_space(4)
        host_write(self.space, 0, 4, KEY_NONE)
        self.region = bus.add_map("keyboard", addr, self.space, 4, self._handler)

    def send_key(self, scancode: int, is_keydown: bool) -> None:
        """Queue a host key event while the machine is running."""
        code = _KEYMAP.get(scancode, KEY_NONE)
        if self.sim_state.state == RunState.RUNNING and code != KEY_NONE:
            if len(self._queue) >= KEY_QUEUE_LEN - 1:
                raise OverflowError("key queue overflow!")
            self._queue.append(code | (KEYDOWN_MASK if is_keydown else 0))

    def _handler(self, offset: int, length: int, is_write: bool) -> None:
        if is_write:
            raise RuntimeError("keyboard does not support write")
        if offset != 0:
            raise RuntimeError(f"do not support offset = {offset}")
        key = self._queue.popleft() if self._queue else KEY_NONE
        host_write(self.space, 0, 4, key)


class Disk:
    """A disk image reached through disk address, memory address, size and command words."""

    CMD_READ = 1
    CMD_WRITE = 2

    def __init__(
        self,
        bus: MMIOBus,
        io_space: IOSpace,
        addr: int,
        memory: PhysicalMemory,
        path,
        on_load: Optional[Callable[[], None]] = None,
    ) -> None:
        self.memory = memory
        self.on_load = on_load
        self._file = open(path, "r+b")
        self.space = io_space.new_space(16)
        bus.add_map("diskctl", addr, self.space[:12], 12, None)
        bus.add_map("diskrw", addr + 12, self.space[12:16], 4, self._rw)

    def close(self) -> None:
        """Close the disk image."""
        self._file.close()

    def _rw(self, offset: int, length: int, is_write: bool) -> None:
        if not is_write:
            return
        disk_addr, mem_addr, size, command = (host_read(self.space, 4 * i, 4) for i in range(4))
        target = self.memory.guest_offset(mem_addr)
        if command in (self.CMD_READ, self.CMD_WRITE):
            if target < 0 or target + size > self.memory.size:
                raise ValueError("disk transfer is outside memory")
            self._file.seek(disk_addr)
        if command == self.CMD_READ:
            data = self._file.read(size)
            self.memory.data[target:target + len(data)] = data
            if self.on_load is not None:
                self.on_load()
        elif command == self.CMD_WRITE:
            self._file.write(bytes(self.memory.data[target:target + size]))
            self._file.flush()
        host_write(self.space, 12, 4, 0)


class VGA:
    """A 400x300 ARGB frame buffer with a sync register and a fast blit port."""

    WIDTH = 400
    HEIGHT = 300

    def __init__(
        self,
        bus: MMIOBus,
        io_space: IOSpace,
        vgactl_addr: int,
        fb_addr: int,
        ffb_addr: int,
        memory: PhysicalMemory,
    ) -> None:
        self.memory = memory
        size = self.WIDTH * self.HEIGHT * 4
        self.ctl = io_space.new_space(8)
        host_write(self.ctl, 0, 4, (self.WIDTH << 16) | self.HEIGHT)
        bus.add_map("vgactl", vgactl_addr, self.ctl, 8, None)
        self.vmem = io_space.new_space(size)[:size]
        bus.add_map("vmem", fb_addr, self.vmem, size, None)
        self.vmem[:] = bytes(size)
        self.ffb = io_space.new_space(28)
        bus.add_map("ffb_mem", ffb_addr, self.ffb, 28, None)
        self.ffb_draw = io_space.new_space(4)
        bus.add_map("ffb_draw", ffb_addr + 28, self.ffb_draw, 4, self._fast_fb_draw)
        self.frame = bytes(size)
        self.frames_presented = 0

    def update_screen(self) -> bool:
        """Present the frame buffer if a sync was requested; tell whether it was."""
        if host_read(self.ctl, 4, 4) == 0:
            return False
        self.frame = bytes(self.vmem)
        self.frames_presented += 1
        host_write(self.ctl, 4, 4, 0)
        return True

    def pixel(self, x: int, y: int) -> int:
        """Return the ARGB value at column ``x``, row ``y``."""
        if not (0 <= x < self.WIDTH and 0 <= y < self.HEIGHT):
            raise IndexError(f"pixel ({x}, {y}) is off screen")
        return host_read(self.vmem, (y * self.WIDTH + x) * 4, 4)

    def _fast_fb_draw(self, offset: int, length: int, is_write: bool) -> None:
        if not is_write:
            raise RuntimeError("fast frame buffer draw is write-only")
        x, y, w, h, width, height, pixels = (host_read(self.ffb, 4 * i, 4) for i in range(7))
        if y + h > height:
            h_real = 0 if y > height else height - y
        else:
            h_real = h
        w_real = max(width - x, 0) if x + w > width else w
        source = self.memory.guest_offset(pixels)
        row_bytes = w_real * 4
        for row in range(h_real):
            dst = ((y + row) * width + x) * 4
            src = source + row * w * 4
            if dst + row_bytes > len(self.vmem) or src < 0 or src + row_bytes > self.memory.size:
                raise IndexError("fast frame buffer draw is out of range")
            self.vmem[dst:dst + row_bytes] = self.memory.data[src:src + row_bytes]


@dataclass
class Devices:
    """Every device attached to the bus."""

    io_space: IOSpace
    clock: Clock
    serial: Serial
    timer: Timer
    vga: VGA
    keyboard: Keyboard
    disk: Optional[Disk] = None
    _last_update: int = field(default=0, init=False, repr=False)

    def update(self) -> bool:
        """Refresh the screen at most TIMER_HZ-ish often; tell whether it ran."""
        now = self.clock.now_us()
        if now - self._last_update < _UPDATE_INTERVAL_US:
            return False
        self._last_update = now
        self.vga.update_screen()
        return True

    def send_key(self, scancode: int, is_keydown: bool) -> None:
        """Forward a host key event to the keyboard."""
        self.keyboard.send_key(scancode, is_keydown)


def init_devices(
    bus: MMIOBus,
    memory: PhysicalMemory,
    sim_state: SimState,
    config: Mapping[str, int],
    disk_path=None,
) -> Devices:
    """Create all devices at the addresses in ``config``.

    ``config`` maps ``serial``, ``rtc``, ``vgactl``, ``fb``, ``ffb`` and
    ``keyboard`` (and ``disk`` when a disk is attached) to base addresses.
    A disk is attached unless ``disk_path`` is ``None`` or a single space.
    """
    io_space = IOSpace()
    clock = Clock()
    serial = Serial(bus, io_space, config["serial"])
    timer = Timer(bus, io_space, config["rtc"], clock)
    vga = VGA(bus, io_space, config["vgactl"], config["fb"], config["ffb"], memory)
    keyboard = Keyboard(bus, io_space, config["keyboard"], sim_state)
    disk = None
    if disk_path is not None and disk_path != " ":
        disk = Disk(bus, io_space, config["disk"], memory, disk_path)
    return Devices(io_space, clock, serial, timer, vga, keyboard, disk)