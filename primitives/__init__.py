"""Primitives - Field, hashing and curve building blocks."""

from primitives.ecc import FNEC, FPEC, add_points, double_point, inverse, sqrt_fpec
from primitives.field import (
    FF,
    GOLDILOCKS_PRIME,
    MASK_256,
    fe2n,
    fea2scalar,
    h4_to_scalar,
    scalar2fea,
    scalar_to_h4,
    sr4to8,
    sr8to4,
)
from primitives.keccak import keccak256, keccak256_int
from primitives.poseidon import hash_bytecode, poseidon

__all__ = [
    # Field
    "FF",
    "GOLDILOCKS_PRIME",
    "MASK_256",
    "fe2n",
    "fea2scalar",
    "scalar2fea",
    "sr8to4",
    "sr4to8",
    "h4_to_scalar",
    "scalar_to_h4",
    # Hashing
    "poseidon",
    "hash_bytecode",
    "keccak256",
    "keccak256_int",
    # Curve
    "FPEC",
    "FNEC",
    "inverse",
    "sqrt_fpec",
    "add_points",
    "double_point",
]
