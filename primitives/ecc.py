"""secp256k1 field helpers used by the arithmetic checks and ROM helper calls.

Plain Python ints: the moduli are 256-bit, outside galois' fast path.
"""

from typing import Tuple

# Base field of secp256k1
FPEC = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F
# Group order of secp256k1
FNEC = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# Returned by sqrt_fpec when no square root exists
SQRT_NONE = (1 << 256) - 1


def inverse(a: int, modulus: int) -> int:
    """Modular inverse.

    Raises:
        ZeroDivisionError: a is zero modulo `modulus`
    """
    a %= modulus
    if a == 0:
        raise ZeroDivisionError("Division by zero")
    return pow(a, -1, modulus)


def sqrt_fpec(a: int) -> int:
    """Square root in the secp256k1 base field, or SQRT_NONE for non-residues.

    FPEC = 3 mod 4, so a candidate root is a^((p+1)/4).
    """
    a %= FPEC
    r = pow(a, (FPEC + 1) // 4, FPEC)
    if (r * r) % FPEC != a:
        return SQRT_NONE
    return r


def _finish(s: int, x1: int, y1: int, x2: int) -> Tuple[int, int]:
    x3 = (s * s - (x1 + x2)) % FPEC
    y3 = (s * (x1 - x3) - y1) % FPEC
    return x3, y3


def add_points(x1: int, y1: int, x2: int, y2: int) -> Tuple[int, int]:
    """Affine point addition P1 + P2 (P1 != +-P2)."""
    return _finish(slope_add(x1, y1, x2, y2), x1, y1, x2)


def double_point(x1: int, y1: int) -> Tuple[int, int]:
    """Affine point doubling 2*P1."""
    return _finish(slope_dbl(x1, y1), x1, y1, x1)


def slope_add(x1: int, y1: int, x2: int, y2: int) -> int:
    return ((y2 - y1) * inverse(x2 - x1, FPEC)) % FPEC


def slope_dbl(x1: int, y1: int) -> int:
    return (3 * x1 * x1 * inverse(2 * y1, FPEC)) % FPEC
