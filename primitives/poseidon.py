"""Poseidon hash for the Goldilocks field.

Width-12 permutation (rate 8, capacity 4) with 8 full rounds, 22 partial
rounds, x^7 S-box and a circulant MDS layer. Round constants and the MDS
matrix live in primitives.poseidon_constants.

Two entry points are used by the executor:

    poseidon(inputs8, capacity4)  -> 4 elements   (Merkle keys and nodes)
    hash_bytecode(data)           -> 256-bit int  (program hashing, hashP)
"""

from typing import List, Optional, Sequence

from primitives.field import GOLDILOCKS_PRIME, h4_to_scalar
from primitives.poseidon_constants import (
    ROUNDS_F, ROUNDS_P,
    ROUND_CONSTANTS, MDS_CIRC, MDS_DIAG
)

# --- Parameters ---

WIDTH = 12
CAPACITY = 4
RATE = WIDTH - CAPACITY
N_ROUNDS = ROUNDS_F + ROUNDS_P

# Bytecode hashing packs 7 bytes per element, 8 elements per permutation
BYTES_PER_ELEMENT = 7
BYTES_PER_BLOCK = RATE * BYTES_PER_ELEMENT


# --- Permutation ---


def _pow7(x: int) -> int:
    x2 = (x * x) % GOLDILOCKS_PRIME
    x3 = (x * x2) % GOLDILOCKS_PRIME
    x4 = (x2 * x2) % GOLDILOCKS_PRIME
    return (x3 * x4) % GOLDILOCKS_PRIME


def _mds(state: List[int]) -> List[int]:
    result = []
    for r in range(WIDTH):
        acc = state[r] * MDS_DIAG[r]
        for i in range(WIDTH):
            acc += state[(i + r) % WIDTH] * MDS_CIRC[i]
        result.append(acc % GOLDILOCKS_PRIME)
    return result


def permute(input_data: Sequence[int]) -> List[int]:
    """Full Poseidon permutation over a WIDTH-element state.

    Args:
        input_data: WIDTH field elements as integers

    Returns:
        WIDTH field elements after the permutation
    """
    if len(input_data) != WIDTH:
        raise ValueError(f"input_data must have {WIDTH} elements, got {len(input_data)}")

    rc = ROUND_CONSTANTS
    half = ROUNDS_F // 2
    state = [int(x) % GOLDILOCKS_PRIME for x in input_data]

    for r in range(N_ROUNDS):
        state = [(state[i] + rc[r * WIDTH + i]) % GOLDILOCKS_PRIME for i in range(WIDTH)]
        if r < half or r >= half + ROUNDS_P:
            state = [_pow7(x) for x in state]
        else:
            state[0] = _pow7(state[0])
        state = _mds(state)

    return state


def poseidon(inputs: Sequence[int], capacity: Optional[Sequence[int]] = None) -> List[int]:
    """Hash 8 inputs with a 4-element capacity; returns the first 4 state elements."""
    if len(inputs) != RATE:
        raise ValueError(f"poseidon takes {RATE} inputs, got {len(inputs)}")
    if capacity is None:
        capacity = [0] * CAPACITY
    if len(capacity) != CAPACITY:
        raise ValueError(f"capacity must have {CAPACITY} elements, got {len(capacity)}")
    return permute([int(x) for x in inputs] + [int(c) for c in capacity])[:CAPACITY]


# --- Linear bytecode hash ---


def pad_bytecode(data: bytes) -> bytes:
    """Append 0x01, zero-fill to a whole number of blocks, set the top bit of the last byte."""
    n_blocks = bytecode_blocks(len(data))
    padded = bytearray(data)
    padded.append(0x01)
    padded.extend(b"\x00" * (n_blocks * BYTES_PER_BLOCK - len(padded)))
    padded[-1] |= 0x80
    return bytes(padded)


def hash_bytecode(data: bytes) -> int:
    """Poseidon linear hash of a byte string, as a 256-bit scalar.

    Each 56-byte block becomes 8 elements of 7 little-endian bytes and is
    absorbed with the previous output as capacity.
    """
    padded = pad_bytecode(data)
    state = [0] * CAPACITY
    for base in range(0, len(padded), BYTES_PER_BLOCK):
        block = [
            int.from_bytes(padded[base + j * BYTES_PER_ELEMENT:base + (j + 1) * BYTES_PER_ELEMENT], "little")
            for j in range(RATE)
        ]
        state = poseidon(block, state)
    return h4_to_scalar(state)


def bytecode_blocks(length: int) -> int:
    """Number of 56-byte blocks absorbed for `length` bytes plus padding."""
    return (length + 1 + BYTES_PER_BLOCK - 1) // BYTES_PER_BLOCK
