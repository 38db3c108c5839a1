"""Keccak-256 wrapper.

Thin layer over eth-hash so callers work with bytes in and an int or bytes
digest out.
"""

from eth_hash.auto import keccak

# keccak256("") used when a length is closed on a buffer nobody wrote to
EMPTY_KECCAK = 0xC5D2460186F7233C927E7DB2DCC703C0E500B653CA82273B7BFAD8045D85A470

# Bytes absorbed per Keccak-f permutation
KECCAK_RATE = 136


def keccak256(data: bytes) -> bytes:
    """32-byte Keccak-256 digest."""
    return keccak(bytes(data))


def keccak256_int(data: bytes) -> int:
    """Keccak-256 digest as a big-endian 256-bit scalar."""
    return int.from_bytes(keccak(bytes(data)), "big")


def keccak_blocks(length: int) -> int:
    """Number of Keccak-f permutations needed to absorb `length` bytes plus padding."""
    return (length + 1 + KECCAK_RATE - 1) // KECCAK_RATE
