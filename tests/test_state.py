import pytest

from rvemu.state import CPUState, CSR, RunState, SimState, reg_name


def _sample_state():
    state = CPUState()
    for index in range(32):
        state.gpr[index] = index * 3 + 1
    state.pc = 0x80000000
    state.csr = CSR(mepc=0x80000010, mstatus=0x1800, mcause=11, mtvec=0x80000100)
    return state


def test_reg_name_known_registers():
    assert reg_name(0) == "$0"
    assert reg_name(10) == "a0"
    assert reg_name(31) == "t6"


@pytest.mark.parametrize("index", [-1, 32, 100])
def test_reg_name_out_of_range(index):
    with pytest.raises(IndexError):
        reg_name(index)


def test_reg_value_pc_and_named():
    state = _sample_state()
    assert state.reg_value("pc") == 0x80000000
    assert state.reg_value("a0") == state.gpr[10]
    assert state.reg_value("$0") == state.gpr[0]


def test_reg_value_unknown_name():
    with pytest.raises(KeyError):
        CPUState().reg_value("x99")


def test_every_name_maps_to_its_index():
    state = _sample_state()
    for index in range(32):
        assert state.reg_value(reg_name(index)) == state.gpr[index]


def test_format_registers():
    state = CPUState()
    state.gpr[10] = 0xDEADBEEF
    lines = state.format_registers().splitlines()
    assert len(lines) == 32
    assert lines[0] == "$0\t0x00000000\t0"
    assert lines[10] == f"a0\t0xdeadbeef\t{0xDEADBEEF}"


def test_words_round_trip():
    state = _sample_state()
    words = state.to_words()
    assert len(words) == 37
    assert CPUState.from_words(words) == state


def test_words_layout():
    state = _sample_state()
    words = state.to_words()
    assert words[:32] == state.gpr
    assert words[32] == state.pc
    assert words[33:] == [state.csr.mepc, state.csr.mstatus, state.csr.mcause, state.csr.mtvec]


def test_from_words_wrong_length():
    with pytest.raises(ValueError):
        CPUState.from_words([0] * 36)


def test_wrong_register_count():
    with pytest.raises(ValueError):
        CPUState(gpr=[0] * 31)


def test_copy_is_independent():
    state = _sample_state()
    clone = state.copy()
    assert clone == state
    clone.gpr[5] = 0
    clone.csr.mepc = 0
    assert state.gpr[5] == 16
    assert state.csr.mepc == 0x80000010


def test_sim_state_tracks_abort():
    sim = SimState()
    assert sim.state is RunState.STOP
    sim.state = RunState.ABORT
    sim.halt_pc = 0x80000004
    assert sim == SimState(RunState.ABORT, 0x80000004, 0)