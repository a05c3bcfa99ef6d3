"""Partition helpers for Trionic 8 and MCP firmware images."""

from __future__ import annotations

import hashlib

_T8_PARTS = (
    0x000000,  # Boot
    0x004000,  # NVDM
    0x006000,  # NVDM
    0x008000,  # HWIO
    0x020000,  # APP
    0x040000,  # APP
    0x060000,  # APP
    0x080000,  # APP
    0x0C0000,  # APP
    0x100000,  # End
    # Range md5 instead of partitions
    0x000000,
    0x004000,
    0x020000,
)


def get_last_address(filebytes: bytes) -> int:
    """End of the application code, plus 512 bytes of header margin."""
    return (filebytes[0x020141] << 16 | filebytes[0x020142] << 8 | filebytes[0x020143]) + 0x200


def mcp_swapped(filebytes: bytes) -> bool:
    """True if an MCP image is stored with swapped byte pairs."""
    return bytes(filebytes[:4]) == b"\x08\x00\x00\x20"


def get_partition_md5(filebytes: bytes, device: int, partition: int) -> bytes:
    """MD5 of a partition of the image as the bootloader computes it."""
    start = 0
    end = 0x40100
    byteswapped = False

    if device == 6:
        if partition == 0:
            end = _T8_PARTS[9]
        elif 0 < partition < 10:
            start = _T8_PARTS[partition - 1]
            end = _T8_PARTS[partition]
        elif 9 < partition < 13:
            start = _T8_PARTS[partition]
            end = get_last_address(filebytes)
    elif device == 5:
        byteswapped = mcp_swapped(filebytes)
        if partition > 10:
            end = partition << 15
            start = end - 0x8000
    else:
        return bytes(16)

    if end < start or end > len(filebytes):
        raise ValueError(f"partition range 0x{start:X}-0x{end:X} outside image")

    chunk = bytes(filebytes[start:end])
    if byteswapped:
        swapped = bytearray(len(chunk))
        swapped[0::2] = chunk[1::2]
        swapped[1::2] = chunk[0::2]
        chunk = bytes(swapped)
    return hashlib.md5(chunk).digest()