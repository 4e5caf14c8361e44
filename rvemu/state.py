"""Architectural state of the RV32 guest and of the simulator run."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

_WORD = 0xFFFFFFFF
NR_GPR = 32

REGISTER_NAMES = (
    "$0", "ra", "sp", "gp", "tp", "t0", "t1", "t2",
    "s0", "s1", "a0", "a1", "a2", "a3", "a4", "a5",
    "a6", "a7", "s2", "s3", "s4", "s5", "s6", "s7",
    "s8", "s9", "s10", "s11", "t3", "t4", "t5", "t6",
)

_CSR_FIELDS = ("mepc", "mstatus", "mcause", "mtvec")
# gpr[32] + pc + four CSRs, as exchanged with the reference model.
STATE_WORDS = NR_GPR + 1 + len(_CSR_FIELDS)


def _check_reg_idx(index: int) -> int:
    if not 0 <= index < NR_GPR:
        raise IndexError(f"register index {index} out of range")
    return index


def reg_name(index: int) -> str:
    """Return the ABI name of general-purpose register ``index``."""
    return REGISTER_NAMES[_check_reg_idx(index)]


class RunState(enum.IntEnum):
    """Running state of the simulated machine."""

    RUNNING = 0
    STOP = 1
    END = 2
    ABORT = 3
    QUIT = 4


@dataclass
class SimState:
    """Where the simulation stands and, once halted, where and why."""

    state: RunState = RunState.STOP
    halt_pc: int = 0
    halt_ret: int = 0


@dataclass
class CSR:
    """Machine-mode control and status registers."""

    mepc: int = 0
    mstatus: int = 0
    mcause: int = 0
    mtvec: int = 0


@dataclass
class CPUState:
    """General-purpose registers, program counter and CSRs."""

    gpr: list = field(default_factory=lambda: [0] * NR_GPR)
    pc: int = 0
    csr: CSR = field(default_factory=CSR)

    def __post_init__(self) -> None:
        if len(self.gpr) != NR_GPR:
            raise ValueError(f"expected {NR_GPR} registers, got {len(self.gpr)}")
        self.gpr = list(self.gpr)

    def reg_value(self, name: str) -> int:
        """Return the value of register ``name`` (``pc`` or an ABI name)."""
        if name == "pc":
            return self.pc
        try:
            index = REGISTER_NAMES.index(name)
        except ValueError:
            raise KeyError(name) from None
        return self.gpr[index]

    def format_registers(self) -> str:
        """Render every register as ``name<TAB>hex<TAB>decimal`` lines."""
        return "".join(
            f"{name}\t0x{value & _WORD:08x}\t{value & _WORD}\n"
            for name, value in zip(REGISTER_NAMES, self.gpr)
        )

    def copy(self) -> CPUState:
        """Return an independent copy."""
        return CPUState(
            list(self.gpr),
            self.pc,
            CSR(self.csr.mepc, self.csr.mstatus, self.csr.mcause, self.csr.mtvec),
        )

    def to_words(self) -> list:
        """Flatten into the 37-word layout: gpr, pc, mepc, mstatus, mcause, mtvec."""
        csr_words = [getattr(self.csr, name) for name in _CSR_FIELDS]
        return [value & _WORD for value in (*self.gpr, self.pc, *csr_words)]

    @classmethod
    def from_words(cls, words) -> CPUState:
        """Build a state from the layout produced by :meth:`to_words`."""
        values = [value & _WORD for value in words]
        if len(values) != STATE_WORDS:
            raise ValueError(f"expected {STATE_WORDS} words, got {len(values)}")
        gpr = values[:NR_GPR]
        pc = values[NR_GPR]
        csr = CSR(**dict(zip(_CSR_FIELDS, values[NR_GPR + 1:])))
        return cls(gpr, pc, csr)