"""Decoding of diagnostic trouble codes."""

from __future__ import annotations

from .ecu import DTC

_PREFIXES = "PCBU"


def decode_dtc(data: bytes) -> DTC:
    """Decode a four byte DTC record into its code and status byte.

    Bits 7-6 of the first byte select the system letter (P, C, B, U),
    bits 5-4 the second character and the remaining nibbles the rest.
    """
    if len(data) != 4:
        raise ValueError("invalid DTC bytes")
    first, second = data[0], data[1]
    prefix = _PREFIXES[(first & 0xC0) >> 6]
    one = (first & 0x30) >> 4
    two = first & 0x0F
    three = (second & 0xF0) >> 4
    four = second & 0x0F
    return DTC(code=f"{prefix}{one}{two}{three}{four}", status=data[3])