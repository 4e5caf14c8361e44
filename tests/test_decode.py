import pytest

from rvemu.decode import Pattern, PatternError, pattern_decode, pattern_decode_hex

EBREAK = "0000000 00001 00000 000 00000 11100 11"
ECALL = "0000000 00000 00000 000 00000 11100 11"
LUI = "??????? ????? ????? ??? ????? 01101 11"
WILDCARD = "??????? ????? ????? ??? ????? ????? ??"


def test_ebreak_pattern_matches_break_instruction():
    assert pattern_decode(EBREAK).matches(0x00100073)


def test_ecall_pattern_rejects_break_instruction():
    assert not pattern_decode(ECALL).matches(0x00100073)


def test_lui_pattern_has_no_shift():
    pat = pattern_decode(LUI)
    assert pat.shift == 0
    assert pat.key == int("0110111", 2)
    assert pat.matches(0x12345000 | int("0110111", 2))


def test_wildcard_matches_everything():
    pat = pattern_decode(WILDCARD)
    assert pat.mask == 0 and pat.key == 0
    for value in (0, 0xDEADBEEF, 0x1C00000C, 0xFFFFFFFF):
        assert pat.matches(value)


def test_trailing_wildcards_become_shift():
    pat = pattern_decode("10??")
    assert pat.shift == 2
    assert pat.matches(int("1011", 2))
    assert not pat.matches(int("0111", 2))


def test_spaces_are_ignored():
    assert pattern_decode(EBREAK) == pattern_decode(EBREAK.replace(" ", ""))


@pytest.mark.parametrize("word", [0x1C00000C, 0x29804180, 0x28804184, 0x002A0000, 0xDEADBEEF])
def test_exact_binary_pattern_matches_its_word(word):
    text = format(word, "032b")
    pat = pattern_decode(text)
    assert pat.matches(word)
    assert not pat.matches(word ^ 1)


def test_invalid_binary_character():
    with pytest.raises(PatternError):
        pattern_decode("0102")


def test_binary_pattern_too_long():
    with pytest.raises(PatternError):
        pattern_decode("0" * 65)


def test_hex_pattern_exact():
    pat = pattern_decode_hex("deadbeef")
    assert pat.matches(0xDEADBEEF)
    assert not pat.matches(0xDEADBEEE)


def test_hex_pattern_with_wildcards():
    pat = pattern_decode_hex("dead????")
    assert pat.shift == 16
    assert pat.matches(0xDEADBEEF)
    assert pat.matches(0xDEAD0000)
    assert not pat.matches(0xBEEFDEAD)


def test_hex_invalid_character():
    with pytest.raises(PatternError):
        pattern_decode_hex("deadbeeg")


def test_hex_uppercase_rejected():
    with pytest.raises(PatternError):
        pattern_decode_hex("DEAD")


def test_hex_pattern_too_long():
    with pytest.raises(PatternError):
        pattern_decode_hex("0" * 17)


def test_pattern_error_is_value_error():
    with pytest.raises(ValueError):
        pattern_decode("x")


def test_pattern_is_hashable_value():
    assert {pattern_decode(EBREAK), pattern_decode(EBREAK)} == {pattern_decode(EBREAK)}
    assert isinstance(pattern_decode(EBREAK), Pattern)