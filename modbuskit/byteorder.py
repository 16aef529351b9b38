"""Conversion of floats and doubles to and from Modbus byte sequences.

Values are laid out in IEEE 754 order, most significant byte first, and
can then be re-ordered by a swap rule made of the SWAP_* flags.
"""

from __future__ import annotations

import struct

__all__ = [
    "swap_bytes",
    "float_to_bytes",
    "bytes_to_float",
    "double_to_bytes",
    "bytes_to_double",
]


def _swap_nibbles(byte: int) -> int:
    return ((byte & 0x0F) << 4) | ((byte >> 4) & 0x0F)


def swap_bytes(data: bytes, swap_rule: int = 0) -> bytes:
    """Re-order a 4- or 8-byte sequence according to a swap rule.

    Bit 0 swaps bytes in a register, bit 1 swaps registers, bit 2 swaps
    32-bit words (8-byte values only) and bit 3 swaps nibbles in each byte.
    Every rule is its own inverse.
    """
    data = bytes(data)
    if len(data) == 4:
        table_index = swap_rule & 0x03
    elif len(data) == 8:
        table_index = swap_rule & 0x07
    else:
        raise ValueError(f"swap needs 4 or 8 bytes, got {len(data)}")
    # Swap table entry i of rule k is i XOR k.
    reordered = (data[pos ^ table_index] for pos in range(len(data)))
    if swap_rule & 0x08:
        reordered = (_swap_nibbles(b) for b in reordered)
    return bytes(reordered)


def _check_length(data: bytes, size: int) -> bytes:
    data = bytes(data)
    if len(data) != size:
        raise ValueError(f"expected {size} bytes, got {len(data)}")
    return data


def float_to_bytes(value: float, swap_rule: int = 0) -> bytes:
    """Encode a 32-bit float MSB first, then apply the swap rule."""
    raw = struct.pack(">f", value)
    rule = swap_rule & 0x0B
    return swap_bytes(raw, rule) if rule else raw


def bytes_to_float(data: bytes, swap_rule: int = 0) -> float:
    """Decode a 32-bit float written by :func:`float_to_bytes`."""
    raw = _check_length(data, 4)
    rule = swap_rule & 0x0B
    if rule:
        raw = swap_bytes(raw, rule)
    return struct.unpack(">f", raw)[0]


def double_to_bytes(value: float, swap_rule: int = 0) -> bytes:
    """Encode a 64-bit double MSB first, then apply the swap rule."""
    raw = struct.pack(">d", value)
    rule = swap_rule & 0x0F
    return swap_bytes(raw, rule) if rule else raw


def bytes_to_double(data: bytes, swap_rule: int = 0) -> float:
    """Decode a 64-bit double written by :func:`double_to_bytes`."""
    raw = _check_length(data, 8)
    rule = swap_rule & 0x0F
    if rule:
        raw = swap_bytes(raw, rule)
    return struct.unpack(">d", raw)[0]