"""Differential testing against the reference interpreter."""

from __future__ import annotations

import enum
import logging
from typing import Optional

from rvemu.isa import Interpreter
from rvemu.memory import PhysicalMemory
from rvemu.state import NR_GPR, CPUState, RunState, SimState

logger = logging.getLogger(__name__)


class Direction(enum.IntEnum):
    """Which side a copy goes to."""

    TO_DUT = 0
    TO_REF = 1


class Reference:
    """The reference model: its own memory and an interpreter running it."""

    def __init__(self, base: int, size: int) -> None:
        self.memory = PhysicalMemory(base, size)
        self.memory.fill_random()
        self.interpreter = Interpreter(self.memory)

    @property
    def cpu(self) -> CPUState:
        return self.interpreter.cpu

    def memcpy(self, addr: int, data, direction) -> Optional[bytes]:
        """Copy memory between the two sides.

        Towards the reference, ``data`` is the bytes to store at ``addr``.
        Towards the design under test, ``data`` is the number of bytes to
        read from ``addr``, and those bytes are returned.
        """
        if Direction(direction) is Direction.TO_DUT:
            return self.memory.dump(addr, int(data))
        self.memory.load(bytes(data), addr)
        return None

    def regcpy(self, state: Optional[CPUState], direction) -> Optional[CPUState]:
        """Copy the register file (gpr, pc, CSRs) between the two sides.

        Towards the design under test a copy of the reference state is
        returned and ``state`` is not used.
        """
        if Direction(direction) is Direction.TO_DUT:
            return CPUState.from_words(self.interpreter.cpu.to_words())
        if state is None:
            raise ValueError("a state is needed to copy into the reference")
        self.interpreter.cpu = CPUState.from_words(state.to_words())
        return None

    def exec(self, n: int) -> None:
        """Run ``n`` instructions on the reference."""
        self.interpreter.execute(n)


class DiffTest:
    """Compares the simulated CPU with the reference after every instruction."""

    def __init__(
        self,
        reference: Reference,
        memory: PhysicalMemory,
        cpu: CPUState,
        sim_state: SimState,
    ) -> None:
        self.reference = reference
        self.memory = memory
        self.cpu = cpu
        self.sim_state = sim_state
        self.is_skip_ref = False
        self.skip_dut_nr_inst = 0
        logger.info("Differential testing: ON")
        reference.memcpy(memory.base, memory.dump(), Direction.TO_REF)
        cpu.pc = memory.base
        reference.regcpy(cpu, Direction.TO_REF)

    def skip_ref(self) -> None:
        """Mark the current instruction as one the reference cannot reproduce."""
        self.is_skip_ref = True
        self.skip_dut_nr_inst = 0

    def skip_dut(self, nr_ref: int, nr_dut: int) -> None:
        """Let the reference run ``nr_ref`` instructions ahead."""
        self.skip_dut_nr_inst += nr_dut
        for _ in range(nr_ref):
            self.reference.exec(1)

    def sync(self) -> None:
        """Copy the simulated registers into the reference."""
        self.reference.regcpy(self.cpu, Direction.TO_REF)

    def check_regs(self, ref: CPUState, pc: int) -> bool:
        """Tell whether pc and general registers agree with ``ref``."""
        if self.cpu.pc != ref.pc:
            logger.error(
                "NPC pc = 0x%08x, is different from NEMU pc = 0x%08x", self.cpu.pc, ref.pc
            )
            return False
        for index, (mine, theirs) in enumerate(zip(self.cpu.gpr, ref.gpr)):
            if mine != theirs:
                logger.error(
                    "Diff at pc = 0x%08x ======> gpr[%d] right = 0x%08x  wrong = 0x%08x",
                    self.cpu.pc, index, theirs, mine,
                )
                return False
        return len(ref.gpr) == NR_GPR

    def check_mem(self, ref_mem: bytes, pc: int) -> bool:
        """Tell whether the simulated memory equals ``ref_mem``."""
        mine = self.memory.data
        if bytes(mine) == bytes(ref_mem):
            return True
        index = next(
            (i for i, (a, b) in enumerate(zip(ref_mem, mine)) if a != b),
            min(len(ref_mem), len(mine)),
        )
        right = ref_mem[index] if index < len(ref_mem) else 0
        wrong = mine[index] if index < len(mine) else 0
        logger.error(
            "memory of NPC is different before executing instruction at pc = 0x%08x, "
            "mem[%x] right = 0x%08x, wrong = 0x%08x, diff = 0x%08x",
            self.cpu.pc, index, right, wrong, right ^ wrong,
        )
        return False

    def _abort(self, pc: int) -> None:
        self.sim_state.state = RunState.ABORT
        self.sim_state.halt_pc = pc

    def step(self) -> bool:
        """Check state against the reference, then advance the reference one step."""
        ref_r = self.reference.regcpy(None, Direction.TO_DUT)
        ref_mem = self.reference.memcpy(self.memory.base, self.memory.size, Direction.TO_DUT)
        regs_ok = self.check_regs(ref_r, self.cpu.pc)
        if not regs_ok:
            self._abort(self.cpu.pc)
            logger.error("%s", self.cpu.format_registers())
        self.reference.exec(1)
        mem_ok = self.check_mem(ref_mem, self.cpu.pc)
        if not mem_ok:
            self._abort(self.cpu.pc)
        return regs_ok and mem_ok