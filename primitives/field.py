"""Goldilocks field GF(p) and the fixed-width value model.

Uses galois for field arithmetic. FF is the field type.

256-bit scalars move through the machine as "fea": 8 field elements, each one
little-endian 32-bit limb. Merkle roots and keys use "h4": 4 field elements
of 64 bits each.
"""

from typing import List, Sequence

import galois

# --- Field Construction ---

GOLDILOCKS_PRIME = 0xFFFFFFFF00000001

FF = galois.GF(GOLDILOCKS_PRIME)
"""Base field GF(p) - Goldilocks prime field."""

# --- Constants ---

FEA_SIZE = 8
H4_SIZE = 4

MASK_32 = 0xFFFFFFFF
MASK_64 = 0xFFFFFFFFFFFFFFFF
MASK_256 = (1 << 256) - 1
TWO_TO_255 = 1 << 255
TWO_TO_256 = 1 << 256

# Signed 32-bit window used by fe2n
MAX_INT32 = 0x7FFFFFFF
MIN_NEG_INT32 = GOLDILOCKS_PRIME - 0x80000000


def fe(value: int) -> FF:
    """Reduce any Python int (negative included) into FF."""
    return FF(value % GOLDILOCKS_PRIME)


def fea_zero() -> FF:
    """All-zero 8-limb value."""
    return FF.Zeros(FEA_SIZE)


# --- fea <-> scalar ---


def scalar2fea(s: int) -> FF:
    """Split a scalar into 8 little-endian 32-bit limbs.

    Bits above 256 are dropped. Negative inputs are taken in two's complement,
    matching how the ROM treats raw scalar results.
    """
    return FF([(s >> (32 * k)) & MASK_32 for k in range(FEA_SIZE)])


def fea2scalar(fea: Sequence) -> int:
    """Recompose 8 limbs into a scalar: sum(limb_k << 32k)."""
    s = 0
    for k in range(FEA_SIZE):
        s += int(fea[k]) << (32 * k)
    return s


def fe2n(value) -> int:
    """Interpret a field element as a signed 32-bit integer.

    Elements close to p are negative numbers. Anything else outside the
    32-bit signed window is rejected.

    Raises:
        ValueError: element is not a signed 32-bit value
    """
    o = int(value)
    if o > MAX_INT32:
        if o > MIN_NEG_INT32:
            return o - GOLDILOCKS_PRIME
        raise ValueError(f"Accessing a no 32bit value: 0x{o:x}")
    return o


# --- State root (8 x 32) <-> Merkle root (4 x 64) ---


def sr8to4(sr: Sequence) -> FF:
    """Pack the 8 state-root limbs into 4 field elements: r[k] = SR[2k] + SR[2k+1]*2^32."""
    return FF([
        (int(sr[2 * k]) + (int(sr[2 * k + 1]) << 32)) % GOLDILOCKS_PRIME
        for k in range(H4_SIZE)
    ])


def sr4to8(r: Sequence) -> FF:
    """Split 4 Merkle-root elements into 8 32-bit limbs."""
    out: List[int] = []
    for k in range(H4_SIZE):
        v = int(r[k])
        out.append(v & MASK_32)
        out.append(v >> 32)
    return FF(out)


# --- h4 helpers ---


def h4_to_scalar(h4: Sequence) -> int:
    """h4 -> 256-bit scalar: h[0] + h[1]<<64 + h[2]<<128 + h[3]<<192."""
    s = 0
    for k in range(H4_SIZE):
        s += int(h4[k]) << (64 * k)
    return s


def scalar_to_h4(s: int) -> List[int]:
    """256-bit scalar -> h4 (64-bit chunks, least significant first)."""
    return [(s >> (64 * k)) & MASK_64 for k in range(H4_SIZE)]


def h4_to_string(h4: Sequence) -> str:
    """Hex string of an h4, most significant element first."""
    return "0x" + "".join(f"{int(h4[k]):016x}" for k in range(H4_SIZE - 1, -1, -1))


def string_to_h4(s: str) -> List[int]:
    """Parse a 64-hex-digit string (with or without 0x) into an h4."""
    if s.startswith("0x"):
        s = s[2:]
    s = s.rjust(64, "0")
    if len(s) != 64:
        raise ValueError(f"Invalid h4 string length: {len(s)}")
    return [int(s[48 - 16 * k:64 - 16 * k], 16) for k in range(H4_SIZE)]


def nodes_equal(a: Sequence, b: Sequence) -> bool:
    """Element-wise equality of two h4 values."""
    return all(int(a[k]) == int(b[k]) for k in range(H4_SIZE))


def node_is_zero(a: Sequence) -> bool:
    return all(int(v) == 0 for v in a)
