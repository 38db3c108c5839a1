"""256-bit binary operations and mem-align word arithmetic.

Shared by the free-input resolver (which computes the value) and the
instruction checks (which recompute it and compare against the operand).
"""

from enum import IntEnum
from typing import Tuple

from executor.errors import UnknownOperationError
from primitives.field import MASK_256, TWO_TO_255, TWO_TO_256


class BinOpcode(IntEnum):
    ADD = 0
    SUB = 1
    LT = 2
    SLT = 3
    EQ = 4
    AND = 5
    OR = 6
    XOR = 7


def bin_opcode(value: int) -> BinOpcode:
    try:
        return BinOpcode(value)
    except ValueError:
        raise UnknownOperationError(f"Invalid binary operation {value}") from None


def _signed(a: int) -> int:
    return a - TWO_TO_256 if a >= TWO_TO_255 else a


def binary_op(opcode: int, a: int, b: int) -> Tuple[int, int]:
    """Result and carry of a binary operation on two 256-bit operands."""
    op = bin_opcode(opcode)
    if op == BinOpcode.ADD:
        return (a + b) & MASK_256, int((a + b) >> 256 > 0)
    if op == BinOpcode.SUB:
        return (a - b + TWO_TO_256) & MASK_256, int(a < b)
    if op == BinOpcode.LT:
        c = int(a < b)
        return c, c
    if op == BinOpcode.SLT:
        c = int(_signed(a) < _signed(b))
        return c, c
    if op == BinOpcode.EQ:
        c = int(a == b)
        return c, c
    if op == BinOpcode.AND:
        return a & b, 0
    if op == BinOpcode.OR:
        return a | b, 0
    return a ^ b, 0


# --- Mem-align ---


def mem_align_read(m0: int, m1: int, offset: int) -> int:
    """32 bytes starting `offset` bytes into the concatenation m0 ++ m1."""
    return ((m0 << (8 * offset)) & MASK_256) | (m1 >> (256 - 8 * offset))


def mem_align_wr_w0(m0: int, v: int, offset: int) -> int:
    keep = (MASK_256 << ((32 - offset) * 8)) & MASK_256
    return (m0 & keep) | (MASK_256 & (v >> (offset * 8)))


def mem_align_wr_w1(m1: int, v: int, offset: int) -> int:
    keep = MASK_256 >> (offset * 8)
    return (m1 & keep) | (MASK_256 & (v << ((32 - offset) * 8)))


def mem_align_wr8_w0(m0: int, v: int, offset: int) -> int:
    bits = (31 - offset) * 8
    return (m0 & (MASK_256 - (0xFF << bits))) | ((v & 0xFF) << bits)
