"""RV32IM interpreter with machine-mode CSRs, used as the reference model."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from rvemu.bits import bits, sext
from rvemu.decode import Pattern, pattern_decode
from rvemu.memory import PhysicalMemory
from rvemu.state import CPUState, RunState, SimState

logger = logging.getLogger(__name__)

_WORD = 0xFFFFFFFF
_INST_LEN = 4

CSR_MSTATUS = 0x300
CSR_MTVEC = 0x305
CSR_MEPC = 0x341
CSR_MCAUSE = 0x342
_CSR_FIELDS = {
    CSR_MSTATUS: "mstatus",
    CSR_MTVEC: "mtvec",
    CSR_MEPC: "mepc",
    CSR_MCAUSE: "mcause",
}

ECALL_CAUSE = 11
A0 = 10


class CSRError(ValueError):
    """Raised on access to a CSR the machine does not implement."""


def _s32(value: int) -> int:
    value &= _WORD
    return value - (1 << 32) if value & 0x80000000 else value


def _div_trunc(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return quotient if (a < 0) == (b < 0) else -quotient


class _Kind(enum.Enum):
    I = "I"
    U = "U"
    S = "S"
    J = "J"
    B = "B"
    R = "R"
    RI = "RI"
    N = "N"


@dataclass
class _Decode:
    pc: int
    snpc: int
    dnpc: int = 0
    inst: int = 0
    rd: int = 0
    src1: int = 0
    src2: int = 0
    imm: int = 0


# --- instruction bodies -------------------------------------------------


def _lui(m, d):
    m._set(d.rd, d.imm)


def _auipc(m, d):
    m._set(d.rd, d.pc + d.imm)


def _jal(m, d):
    d.dnpc = (d.pc + d.imm) & _WORD
    m._set(d.rd, d.pc + 4)


def _jalr(m, d):
    d.dnpc = (d.src1 + d.imm) & _WORD
    m._set(d.rd, d.pc + 4)


def _branch(condition: Callable[[int, int], bool]):
    def body(m, d):
        if condition(d.src1, d.src2):
            d.dnpc = (d.pc + d.imm) & _WORD
    return body


def _load(length: int, signed: bool):
    def body(m, d):
        value = m.memory.read((d.src1 + d.imm) & _WORD, length)
        if signed:
            value = sext(value, 8 * length)
        m._set(d.rd, value)
    return body


def _store(length: int):
    def body(m, d):
        m.memory.write((d.src1 + d.imm) & _WORD, length, d.src2)
    return body


def _alu_imm(op: Callable[[int, int], int]):
    def body(m, d):
        m._set(d.rd, op(d.src1, d.imm))
    return body


def _alu_reg(op: Callable[[int, int], int]):
    def body(m, d):
        m._set(d.rd, op(d.src1, d.src2))
    return body


def _div(a: int, b: int) -> int:
    if a == 0x80000000 and b == 0xFFFFFFFF:
        return 0x80000000
    return _div_trunc(_s32(a), _s32(b)) if _s32(b) != 0 else -1


def _rem(a: int, b: int) -> int:
    if a == 0x80000000 and b == 0xFFFFFFFF:
        return 0
    sa, sb = _s32(a), _s32(b)
    return sa - sb * _div_trunc(sa, sb) if sb != 0 else a


def _csr_op(combine: Callable[[int, int], int], immediate: bool):
    def body(m, d):
        operand = bits(d.inst, 19, 15) if immediate else d.src1
        old = m.csr_read(d.imm)
        m._set(d.rd, old)
        m.csr_write(d.imm, combine(operand, old))
    return body


def _csrrw(m, d):
    if d.rd != 0:
        m._set(d.rd, m.csr_read(d.imm))
    m.csr_write(d.imm, d.src1)


def _ecall(m, d):
    d.dnpc = m.raise_intr(ECALL_CAUSE, d.pc)
    m._push_prv()


def _mret(m, d):
    d.dnpc = m.cpu.csr.mepc
    m._pop_prv()


def _ebreak(m, d):
    m._set_halt(RunState.END, d.pc, m.cpu.gpr[A0])


def _inv(m, d):
    m._invalid_inst(d.pc)


# Entries whose body is None only advance the program counter.
_TABLE = [
    ("??????? ????? ????? ??? ????? 01101 11", "lui", _Kind.U, _lui),
    ("??????? ????? ????? ??? ????? 00101 11", "auipc", _Kind.U, _auipc),
    ("??????? ????? ????? ??? ????? 11011 11", "jal", _Kind.J, _jal),
    ("??????? ????? ????? 000 ????? 11001 11", "jalr", _Kind.I, _jalr),
    ("??????? ????? ????? 000 ????? 11000 11", "beq", _Kind.B, _branch(lambda a, b: a == b)),
    ("??????? ????? ????? 001 ????? 11000 11", "bne", _Kind.B, _branch(lambda a, b: a != b)),
    ("??????? ????? ????? 100 ????? 11000 11", "blt", _Kind.B,
     _branch(lambda a, b: _s32(a) < _s32(b))),
    ("??????? ????? ????? 101 ????? 11000 11", "bge", _Kind.B,
     _branch(lambda a, b: _s32(a) >= _s32(b))),
    ("??????? ????? ????? 110 ????? 11000 11", "bltu", _Kind.B, _branch(lambda a, b: a < b)),
    ("??????? ????? ????? 111 ????? 11000 11", "bgeu", _Kind.B, _branch(lambda a, b: a >= b)),
    ("??????? ????? ????? 000 ????? 00000 11", "lb", _Kind.I, _load(1, True)),
    ("??????? ????? ????? 001 ????? 00000 11", "lh", _Kind.I, _load(2, True)),
    ("??????? ????? ????? 010 ????? 00000 11", "lw", _Kind.I, _load(4, False)),
    ("??????? ????? ????? 100 ????? 00000 11", "lbu", _Kind.I, _load(1, False)),
    ("??????? ????? ????? 101 ????? 00000 11", "lhu", _Kind.I, _load(2, False)),
    ("??????? ????? ????? 000 ????? 01000 11", "sb", _Kind.S, _store(1)),
    ("??????? ????? ????? 001 ????? 01000 11", "sh", _Kind.S, _store(2)),
    ("??????? ????? ????? 010 ????? 01000 11", "sw", _Kind.S, _store(4)),
    ("??????? ????? ????? 000 ????? 00100 11", "addi", _Kind.I, _alu_imm(lambda a, b: a + b)),
    ("??????? ????? ????? 010 ????? 00100 11", "slti", _Kind.I,
     _alu_imm(lambda a, b: int(_s32(a) < _s32(b)))),
    ("??????? ????? ????? 011 ????? 00100 11", "sltiu", _Kind.I, _alu_imm(lambda a, b: int(a < b))),
    ("??????? ????? ????? 100 ????? 00100 11", "xori", _Kind.I, _alu_imm(lambda a, b: a ^ b)),
    ("??????? ????? ????? 110 ????? 00100 11", "ori", _Kind.I, _alu_imm(lambda a, b: a | b)),
    ("??????? ????? ????? 111 ????? 00100 11", "andi", _Kind.I, _alu_imm(lambda a, b: a & b)),
    ("000000? ????? ????? 001 ????? 00100 11", "slli", _Kind.RI, _alu_imm(lambda a, b: a << b)),
    ("000000? ????? ????? 101 ????? 00100 11", "srli", _Kind.RI, _alu_imm(lambda a, b: a >> b)),
    ("010000? ????? ????? 101 ????? 00100 11", "srai", _Kind.RI,
     _alu_imm(lambda a, b: _s32(a) >> b)),
    ("0000000 ????? ????? 000 ????? 01100 11", "add", _Kind.R, _alu_reg(lambda a, b: a + b)),
    ("0100000 ????? ????? 000 ????? 01100 11", "sub", _Kind.R, _alu_reg(lambda a, b: a - b)),
    ("0000000 ????? ????? 001 ????? 01100 11", "sll", _Kind.R,
     _alu_reg(lambda a, b: a << bits(b, 4, 0))),
    ("0000000 ????? ????? 010 ????? 01100 11", "slt", _Kind.R,
     _alu_reg(lambda a, b: int(_s32(a) < _s32(b)))),
    ("0000000 ????? ????? 011 ????? 01100 11", "sltu", _Kind.R, _alu_reg(lambda a, b: int(a < b))),
    ("0000000 ????? ????? 100 ????? 01100 11", "xor", _Kind.R, _alu_reg(lambda a, b: a ^ b)),
    ("0000000 ????? ????? 101 ????? 01100 11", "srl", _Kind.R,
     _alu_reg(lambda a, b: a >> bits(b, 4, 0))),
    ("0100000 ????? ????? 101 ????? 01100 11", "sra", _Kind.R,
     _alu_reg(lambda a, b: _s32(a) >> bits(b, 4, 0))),
    ("0000000 ????? ????? 110 ????? 01100 11", "or", _Kind.R, _alu_reg(lambda a, b: a | b)),
    ("0000000 ????? ????? 111 ????? 01100 11", "and", _Kind.R, _alu_reg(lambda a, b: a & b)),
    ("0000001 ????? ????? 000 ????? 01100 11", "mul", _Kind.R,
     _alu_reg(lambda a, b: _s32(a) * _s32(b))),
    ("0000001 ????? ????? 001 ????? 01100 11", "mulh", _Kind.R,
     _alu_reg(lambda a, b: (_s32(a) * _s32(b)) >> 32)),
    ("0000001 ????? ????? 010 ????? 01100 11", "mulhsu", _Kind.R,
     _alu_reg(lambda a, b: (_s32(a) * b) >> 32)),
    ("0000001 ????? ????? 011 ????? 01100 11", "mulhu", _Kind.R,
     _alu_reg(lambda a, b: (a * b) >> 32)),
    ("0000001 ????? ????? 100 ????? 01100 11", "div", _Kind.R, _alu_reg(_div)),
    ("0000001 ????? ????? 101 ????? 01100 11", "divu", _Kind.R,
     _alu_reg(lambda a, b: a // b if b != 0 else -1)),
    ("0000001 ????? ????? 110 ????? 01100 11", "rem", _Kind.R, _alu_reg(_rem)),
    ("0000001 ????? ????? 111 ????? 01100 11", "remu", _Kind.R,
     _alu_reg(lambda a, b: a % b if b != 0 else a)),
    ("??????? ????? ????? 001 ????? 11100 11", "csrrw", _Kind.I, _csrrw),
    ("??????? ????? ????? 010 ????? 11100 11", "csrrs", _Kind.I,
     _csr_op(lambda x, old: x | old, False)),
    ("??????? ????? ????? 011 ????? 11100 11", "csrrc", _Kind.I,
     _csr_op(lambda x, old: ~x & old, False)),
    ("??????? ????? ????? 101 ????? 11100 11", "csrrwi", _Kind.I,
     _csr_op(lambda x, old: x, True)),
    ("??????? ????? ????? 110 ????? 11100 11", "csrrsi", _Kind.I,
     _csr_op(lambda x, old: x | old, True)),
    ("??????? ????? ????? 111 ????? 11100 11", "csrrci", _Kind.I,
     _csr_op(lambda x, old: ~x & old, True)),
    ("0000000 00000 00000 001 00000 00011 11", "fence.i", _Kind.N, None),
    ("0000??? ????? 00000 000 00000 00011 11", "fence", _Kind.N, None),
    ("0000000 00000 00000 000 00000 11100 11", "ecall", _Kind.N, _ecall),
    ("0011000 00010 00000 000 00000 11100 11", "mret", _Kind.N, _mret),
    ("0000000 00001 00000 000 00000 11100 11", "ebreak", _Kind.N, _ebreak),
    ("??????? ????? ????? ??? ????? ????? ??", "inv", _Kind.N, _inv),
]

_INSTRUCTIONS: list = [
    (pattern_decode(text), name, kind, body) for text, name, kind, body in _TABLE
]


class Interpreter:
    """Executes RV32IM instructions from a :class:`PhysicalMemory`."""

    def __init__(self, memory: PhysicalMemory, reset_vector: Optional[int] = None) -> None:
        self.memory = memory
        self.reset_vector = memory.base if reset_vector is None else reset_vector
        self.cpu = CPUState()
        self.state = SimState()
        self.nr_guest_inst = 0
        self.reset()

    def reset(self) -> None:
        """Set the program counter to the reset vector and clear ``$0``."""
        self.cpu.pc = self.reset_vector & _WORD
        self.cpu.gpr[0] = 0

    def csr_read(self, index: int) -> int:
        """Read one of mstatus, mtvec, mepc or mcause."""
        try:
            return getattr(self.cpu.csr, _CSR_FIELDS[index])
        except KeyError:
            raise CSRError(f"unsupported csr 0x{index:x}") from None

    def csr_write(self, index: int, value: int) -> None:
        """Write one of mstatus, mtvec, mepc or mcause."""
        try:
            name = _CSR_FIELDS[index]
        except KeyError:
            raise CSRError(f"unsupported csr 0x{index:x}") from None
        setattr(self.cpu.csr, name, value & _WORD)

    def raise_intr(self, number: int, epc: int) -> int:
        """Record a trap and return the handler address from mtvec."""
        self.cpu.csr.mepc = epc & _WORD
        self.cpu.csr.mcause = number & _WORD
        return self.cpu.csr.mtvec

    def exec_once(self) -> str:
        """Fetch, decode and execute one instruction; return its mnemonic."""
        pc = self.cpu.pc
        d = _Decode(pc=pc, snpc=pc)
        d.inst = self._inst_fetch(d)
        d.dnpc = d.snpc
        name = self._decode_exec(d)
        self.cpu.pc = d.dnpc & _WORD
        return name

    def execute(self, n: int) -> int:
        """Execute ``n`` instructions and return the running instruction count."""
        for _ in range(n):
            self.exec_once()
            self.nr_guest_inst += 1
        return self.nr_guest_inst

    # --- internals ------------------------------------------------------

    def _set(self, rd: int, value: int) -> None:
        self.cpu.gpr[rd] = value & _WORD

    def _inst_fetch(self, d: _Decode) -> int:
        inst = self.memory.read(d.snpc, _INST_LEN)
        d.snpc = (d.snpc + _INST_LEN) & _WORD
        return inst

    def _decode_operand(self, d: _Decode, kind: _Kind) -> None:
        i = d.inst
        rs1 = bits(i, 19, 15)
        rs2 = bits(i, 24, 20)
        d.rd = bits(i, 11, 7)
        gpr = self.cpu.gpr
        if kind in (_Kind.I, _Kind.S, _Kind.B, _Kind.R, _Kind.RI):
            d.src1 = gpr[rs1]
        if kind in (_Kind.S, _Kind.B, _Kind.R):
            d.src2 = gpr[rs2]
        if kind is _Kind.I:
            imm = sext(bits(i, 31, 20), 12)
        elif kind is _Kind.U:
            imm = sext(bits(i, 31, 12), 20) << 12
        elif kind is _Kind.S:
            imm = (sext(bits(i, 31, 25), 7) << 5) | bits(i, 11, 7)
        elif kind is _Kind.J:
            imm = ((sext(bits(i, 31, 31), 1) << 20) | (bits(i, 19, 12) << 12)
                   | (bits(i, 20, 20) << 11) | (bits(i, 30, 21) << 1))
        elif kind is _Kind.B:
            imm = ((sext(bits(i, 31, 31), 1) << 12) | (bits(i, 7, 7) << 11)
                   | (bits(i, 30, 25) << 5) | (bits(i, 11, 8) << 1))
        elif kind is _Kind.RI:
            imm = bits(i, 24, 20)
        else:
            imm = 0
        d.imm = imm & _WORD

    def _decode_exec(self, d: _Decode) -> str:
        name = "inv"
        for pattern, mnemonic, kind, body in _INSTRUCTIONS:
            if pattern.matches(d.inst):
                self._decode_operand(d, kind)
                if body is not None:
                    body(self, d)
                name = mnemonic
                break
        self.cpu.gpr[0] = 0
        return name

    def _push_prv(self) -> None:
        mstatus = self.cpu.csr.mstatus
        tem = ((mstatus & 0x1FF) << 3) | 0x6
        self.cpu.csr.mstatus = ((mstatus & ~0xFFF) | tem) & _WORD

    def _pop_prv(self) -> None:
        mstatus = self.cpu.csr.mstatus
        tem = ((mstatus & (0x1FF << 3)) >> 3) | (0x1 << 9)
        self.cpu.csr.mstatus = ((mstatus & ~0xFFF) | tem) & _WORD

    def _set_halt(self, state: RunState, pc: int, halt_ret: int) -> None:
        self.state.state = state
        self.state.halt_pc = pc & _WORD
        self.state.halt_ret = halt_ret & _WORD
        logger.info("nemu end")

    def _invalid_inst(self, thispc: int) -> None:
        first = self.memory.read(thispc, 4)
        second = self.memory.read((thispc + 4) & _WORD, 4)
        raw = first.to_bytes(4, "little") + second.to_bytes(4, "little")
        logger.warning(
            "invalid opcode(PC = 0x%08x):\n\t%s ...\n\t%08x %08x...\n"
            "There are two cases which will trigger this unexpected exception:\n"
            "1. The instruction at PC = 0x%08x is not implemented.\n"
            "2. Something is implemented incorrectly.\n"
            "Find this PC(0x%08x) in the disassembling result to distinguish which case it is.",
            thispc, " ".join(f"{b:02x}" for b in raw), first, second, thispc, thispc,
        )


__all__ = ["Interpreter", "CSRError", "Pattern"]