import pytest

from trionic.t8sec import calculate_access_key


def test_zero_seed_default_level_is_offset():
    assert calculate_access_key(bytes([0x00, 0x00]), 0x01) == (0xB9, 0x88)


def test_zero_seed_level_fb():
    assert calculate_access_key(bytes([0x00, 0x00]), 0xFB) == (0x8A, 0x4B)


@pytest.mark.parametrize("level", [0x01, 0xFB, 0xFD])
def test_result_is_two_bytes(level):
    for seed in (b"\x00\x00", b"\x12\x34", b"\xff\xff", b"\xab\xcd"):
        hi, lo = calculate_access_key(seed, level)
        assert 0 <= hi <= 0xFF and 0 <= lo <= 0xFF


def test_levels_give_different_keys():
    seed = b"\x12\x34"
    keys = {calculate_access_key(seed, lvl) for lvl in (0x01, 0xFB, 0xFD)}
    assert len(keys) == 3


def test_short_seed_raises():
    with pytest.raises(ValueError):
        calculate_access_key(b"\x01", 0xFB)