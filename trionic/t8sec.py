"""Security access key calculation for Trionic 8."""

from __future__ import annotations


def _convert_seed(seed: int) -> int:
    key = seed >> 5 | seed << 11
    return (key + 0xB988) & 0xFFFF


def calculate_access_key(seed: bytes, level: int) -> tuple[int, int]:
    """Return the two key bytes for a two-byte seed at the given access level."""
    if len(seed) < 2:
        raise ValueError("seed must be at least two bytes")
    key = _convert_seed(seed[0] << 8 | seed[1])
    if level == 0xFB:
        key ^= 0x8749
        key += 0x06D3
        key ^= 0xCFDF
    elif level == 0xFD:
        key //= 3
        key ^= 0x8749
        key += 0x0ACF
        key ^= 0x81BF
    return (key >> 8) & 0xFF, key & 0xFF