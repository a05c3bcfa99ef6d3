import pytest

from trionic.dtc import decode_dtc


def test_documented_example():
    dtc = decode_dtc(bytes([0xE1, 0x03, 0x00, 0x2F]))
    assert dtc.code == "U2103"


def test_status_is_last_byte():
    assert decode_dtc(bytes([0x01, 0x00, 0x99, 0x42])).status == 0x42


@pytest.mark.parametrize(
    "first, letter", [(0x00, "P"), (0x40, "C"), (0x80, "B"), (0xC0, "U")]
)
def test_prefix_letters(first, letter):
    assert decode_dtc(bytes([first, 0x00, 0x00, 0x00])).code[0] == letter


@pytest.mark.parametrize("data", [b"", b"\x01\x02\x03", b"\x01\x02\x03\x04\x05"])
def test_wrong_length_raises(data):
    with pytest.raises(ValueError):
        decode_dtc(data)