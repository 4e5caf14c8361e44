import random
import struct

import pytest

from rvemu.memory import PhysicalMemory, host_read, host_write

BASE = 0x80000000
IMG = [0x1C00000C, 0x29804180, 0x28804184, 0x002A0000, 0xDEADBEEF]


@pytest.mark.parametrize("length", [1, 2, 4])
def test_host_round_trip(length):
    buf = bytearray(16)
    value = 0xDEADBEEF & ((1 << (8 * length)) - 1)
    host_write(buf, 4, length, value)
    assert host_read(buf, 4, length) == value


def test_host_write_is_little_endian():
    buf = bytearray(4)
    host_write(buf, 0, 4, 0xDEADBEEF)
    assert bytes(buf) == struct.pack("<I", 0xDEADBEEF)


def test_host_write_truncates_to_length():
    buf = bytearray(4)
    host_write(buf, 0, 1, 0xDEADBEEF)
    assert host_read(buf, 0, 4) == host_read(buf, 0, 1)
    assert bytes(buf[1:]) == bytes(3)


def test_host_read_eight_bytes_keeps_low_word():
    buf = bytearray(range(1, 9))
    assert host_read(buf, 0, 8) == host_read(buf, 0, 4)


def test_host_write_eight_bytes_clears_high_word():
    buf = bytearray(b"\xff" * 8)
    host_write(buf, 0, 8, 0xDEADBEEF)
    assert host_read(buf, 4, 4) == 0
    assert host_read(buf, 0, 4) == 0xDEADBEEF


@pytest.mark.parametrize("length", [0, 3, 5, 16])
def test_host_invalid_length(length):
    with pytest.raises(ValueError):
        host_read(bytearray(32), 0, length)
    with pytest.raises(ValueError):
        host_write(bytearray(32), 0, length, 1)


def test_host_access_outside_buffer():
    with pytest.raises(IndexError):
        host_read(bytearray(4), 2, 4)


def test_in_pmem_boundaries():
    mem = PhysicalMemory(BASE, 64)
    assert mem.in_pmem(BASE)
    assert mem.in_pmem(BASE + 63)
    assert not mem.in_pmem(BASE + 64)
    assert not mem.in_pmem(BASE - 1)


def test_guest_offset():
    mem = PhysicalMemory(BASE, 64)
    assert mem.guest_offset(BASE) == 0
    assert mem.guest_offset(BASE + 16) == 16


def test_load_builtin_image_and_read_words():
    mem = PhysicalMemory(BASE, 64)
    image = struct.pack("<5I", *IMG)
    assert mem.load(image) == len(image)
    assert [mem.read(BASE + 4 * n, 4) for n in range(len(IMG))] == IMG
    assert mem.dump(BASE, len(image)) == image


def test_load_at_address():
    mem = PhysicalMemory(BASE, 64)
    mem.load(b"\xaa\xbb", BASE + 10)
    assert mem.read(BASE + 10, 2) == host_read(b"\xaa\xbb", 0, 2)


def test_load_too_large():
    mem = PhysicalMemory(BASE, 8)
    with pytest.raises(ValueError):
        mem.load(bytes(9))


def test_write_then_read():
    mem = PhysicalMemory(BASE, 64)
    mem.write(BASE + 8, 4, 0xDEADBEEF)
    assert mem.read(BASE + 8, 4) == 0xDEADBEEF
    assert mem.read(BASE + 8, 1) == 0xEF


def test_out_of_bound_read_returns_zero():
    mem = PhysicalMemory(BASE, 64)
    mem.load(b"\xff" * 64)
    assert mem.read(BASE + 64, 4) == 0
    assert mem.read(0, 4) == 0


def test_out_of_bound_write_is_dropped():
    mem = PhysicalMemory(BASE, 16)
    before = mem.dump()
    mem.write(BASE + 16, 4, 0xDEADBEEF)
    mem.write(BASE - 4, 4, 0xDEADBEEF)
    assert mem.dump() == before


def test_dump_whole_memory_length():
    mem = PhysicalMemory(BASE, 32)
    assert len(mem.dump()) == 32


def test_dump_outside_range():
    mem = PhysicalMemory(BASE, 32)
    with pytest.raises(ValueError):
        mem.dump(BASE + 30, 4)


def test_invalid_size():
    with pytest.raises(ValueError):
        PhysicalMemory(BASE, 0)


def test_fill_random_is_deterministic_and_31_bit():
    first = PhysicalMemory(BASE, 64)
    second = PhysicalMemory(BASE, 64)
    first.fill_random(random.Random(1234))
    second.fill_random(random.Random(1234))
    assert first.dump() == second.dump()
    words = [first.read(BASE + 4 * n, 4) for n in range(16)]
    assert all(word < 1 << 31 for word in words)
    assert len(set(words)) > 1


def test_fill_random_leaves_partial_word():
    mem = PhysicalMemory(BASE, 6)
    mem.fill_random(random.Random(7))
    assert mem.dump(BASE + 4, 2) == bytes(2)