"""Checksum and footer helpers for Trionic 5 images."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

END_MARKER = bytes((0x4E, 0xFA, 0xFB, 0xCC))


def get_code_length(data: bytes) -> int:
    """Offset of the last byte of the end marker, i.e. the end of the code.

    A byte that breaks a partial match restarts the search at the next byte.
    """
    matched = 0
    for pos, b in enumerate(data):
        if b == END_MARKER[matched]:
            matched += 1
            if matched == len(END_MARKER):
                return pos
        else:
            matched = 0
    raise ValueError("could not find end marker in bin")


def calculate_bin_checksum(data: bytes) -> bytes:
    """Big-endian 32-bit byte sum of the image up to and including the end marker."""
    code_length = get_code_length(data)
    total = sum(data[: code_length + 1]) & 0xFFFFFFFF
    return total.to_bytes(4, "big")


def _byte_at(footer: bytes, index: int) -> int:
    if index < 0:
        raise ValueError("footer field runs past the start of the footer")
    return footer[index]


def get_identifier_from_footer(footer: bytes, identifier: int) -> str:
    """Value of a footer identifier, or an empty string if it is absent.

    The last four bytes of the footer hold the stored checksum and are skipped.
    """
    offset = len(footer) - 0x05
    while offset > 0:
        length = _byte_at(footer, offset)
        offset -= 1
        found = _byte_at(footer, offset)
        offset -= 1
        if found == identifier:
            value = bytes(_byte_at(footer, offset - i) for i in range(length))
            return value.decode("latin-1")
        offset -= length
    logger.warning("error getting identifier 0x%X", identifier)
    return ""