# rvemu

A small RISC-V 32 toolkit in plain Python with no third-party dependencies. It
provides an RV32IM interpreter with machine-mode CSRs, a little-endian guest RAM
model, memory-mapped device models, a harness that checks a CPU state against
the interpreter one instruction at a time, and a tool that rewrites compiler
dependency files.

## Modules

- `rvemu.bits`: `bitmask`, `bits` (a Verilog-style `value[hi:lo]` slice),
  `sext` (sign extension to an unsigned 64-bit value), `roundup` and `rounddown`.
- `rvemu.decode`: `pattern_decode` and `pattern_decode_hex` turn pattern strings
  such as `"??????? ????? ????? 000 ????? 00100 11"` into `Pattern` objects. Call
  `Pattern.matches(value)` to test an instruction word. Malformed patterns raise
  `PatternError`.
- `rvemu.memory`: `PhysicalMemory(base, size)`, a byte-addressed RAM window with
  `read`, `write`, `load`, `dump`, `in_pmem`, `guest_offset` and `fill_random`.
  Reads outside the window return 0 and writes outside it are dropped, with a
  logged warning in both cases. `host_read` and `host_write` access 1, 2, 4 or
  8 little-endian bytes in any buffer.
- `rvemu.state`: `CPUState` (32 general-purpose registers, `pc`, `CSR`), plus
  `SimState`, `RunState` and `reg_name`. `CPUState.to_words()` and
  `CPUState.from_words()` convert to and from a flat 37-word layout: gpr, pc,
  mepc, mstatus, mcause and mtvec.
- `rvemu.mmio`: `IOSpace` hands out page-aligned device buffers. `MMIOBus`
  registers `IOMap` regions and dispatches reads and writes to them. It raises
  `MMIOOverlapError` for a region that overlaps RAM or another region. An access
  to an unmapped address sets the run state to `RunState.ABORT`.
- `rvemu.isa`: `Interpreter(memory, reset_vector)` executes RV32I, the M
  extension, `fence`/`fence.i`, the CSR instructions for mstatus, mtvec, mepc and
  mcause, `ecall`, `mret` and `ebreak`. `ebreak` sets `state` to `RunState.END`
  with `halt_ret` taken from `a0`. Access to any other CSR raises `CSRError`.
- `rvemu.difftest`: `Reference` wraps its own memory and interpreter. `DiffTest`
  compares a `CPUState` and a `PhysicalMemory` with the reference. `step()`
  returns `False` and marks the run aborted on a mismatch.
- `rvemu.image`: `load_image(memory, path)` loads a binary at the memory base
  and returns its size. With no path it loads a small built-in image and returns
  0. It raises `ImageError` when the file cannot be opened or is too large.
- `rvemu.devices`: `Serial` (writes bytes to stderr or a given stream), `Timer`
  (uptime in microseconds and local calendar time), `Keyboard` (a queue of key
  events from host HID scancodes), `Disk` (reads and writes a disk image through
  control words), `VGA` (a 400x300 ARGB frame buffer with a fast blit port) and
  `init_devices`, which builds all of them from a mapping of base addresses.
- `rvemu.fixdep`: rewrites `-MD` dependency files so that a target depends on
  `include/config/<option>.h` for each `CONFIG_*` word found in its
  prerequisites, instead of on `autoconf.h`.

## Installation

```
pip install .
```

## Running a program on the interpreter

```python
from rvemu.memory import PhysicalMemory
from rvemu.isa import Interpreter

mem = PhysicalMemory(0x80000000, 0x100000)
mem.load(bytes.fromhex("13051000"), 0x80000000)   # addi a0, zero, 1
cpu = Interpreter(mem, 0x80000000)
cpu.execute(1)
assert cpu.cpu.reg_value("a0") == 1
```

## Differential testing

```python
from rvemu.difftest import DiffTest, Reference
from rvemu.memory import PhysicalMemory
from rvemu.state import CPUState, SimState

mem = PhysicalMemory(0x80000000, 0x1000)
cpu, run = CPUState(), SimState()
check = DiffTest(Reference(mem.base, mem.size), mem, cpu, run)
ok = check.step()   # compares registers and memory, then advances the reference
```

## Devices

`init_devices(bus, memory, sim_state, config, disk_path)` expects `config` to map
`serial`, `rtc`, `vgactl`, `fb`, `ffb` and `keyboard` to base addresses. It also
expects a `disk` address when `disk_path` is given and is not a single space. It
returns a `Devices` object. `Devices.update()` presents the frame buffer when the
guest has requested a sync, at a limited rate. `Devices.send_key()` forwards a
key event to the keyboard.

## Dependency-file rewriting

```
rvemu-fixdep build/obj/foo.d build/obj/foo.o "gcc -c foo.c"
```

The rewritten rules are written to standard output. A bad argument count exits
with status 1. An unreadable file exits with status 2.

## What this package does not do

- There is no command that loads an image and runs a whole simulation. Putting
  the memory, interpreter, bus and devices together is left to the caller.
- `VGA` keeps the presented frame in memory (`VGA.frame`, `VGA.pixel`). It does
  not open a window.
- Key events are not read from the host. They have to be fed in through
  `Keyboard.send_key` or `Devices.send_key`.
- There is no disassembler and no interactive debugger.

## Tests

```
pip install .[test]
pytest
```