"""Operand composer and address resolver.

The operand of a line is the weighted sum of its selected sources plus the
line's constant, computed limb-wise in GF(p). Scalar registers and counters
feed limb 0 only; inROTL_C feeds C rotated up by one limb.
"""

from typing import Tuple

from executor.context import Context
from executor.errors import AddressRangeError
from executor.rom import ADDRESSED, IN_SELECTORS, Op, RomLine
from primitives.field import FF, FEA_SIZE, fe, fe2n, fea_zero, scalar2fea

# Relative addresses live in [0, MAX_ADDR_REL)
MAX_ADDR_REL = 0x10000

CODE_BASE = 0x10000
STACK_BASE = 0x20000
MEM_BASE = 0x30000
CTX_STRIDE = 0x40000

_FEA_SOURCES = {"inA": "A", "inB": "B", "inC": "C", "inD": "D", "inE": "E", "inSR": "SR"}
_COUNTER_SOURCES = {
    "inCntArith": "cntArith",
    "inCntBinary": "cntBinary",
    "inCntMemAlign": "cntMemAlign",
    "inCntKeccakF": "cntKeccakF",
    "inCntPoseidonG": "cntPoseidonG",
    "inCntPaddingPG": "cntPaddingPG",
}


def _source(ctx: Context, selector: str) -> FF:
    if selector in _FEA_SOURCES:
        return getattr(ctx, _FEA_SOURCES[selector])
    if selector == "inROTL_C":
        return FF([int(ctx.C[(k - 1) % FEA_SIZE]) for k in range(FEA_SIZE)])
    if selector in _COUNTER_SOURCES:
        scalar = ctx.counters[_COUNTER_SOURCES[selector]]
    elif selector == "inSTEP":
        scalar = ctx.step
    else:
        scalar = getattr(ctx, selector[2:])
    out = fea_zero()
    out[0] = fe(scalar)
    return out


def compose_operand(ctx: Context, line: RomLine, i: int) -> FF:
    """Weighted sum of the line's sources and constant. Writes selector and CONST columns."""
    pols = ctx.pols
    op = fea_zero()
    for selector in IN_SELECTORS:
        weight = line.in_weights.get(selector, 0)
        pols.put(selector, i, weight)
        if weight:
            op = op + FF(weight) * _source(ctx, selector)

    if line.const_long is not None:
        const = scalar2fea(line.const_long)
    else:
        const = fea_zero()
        if line.const is not None:
            const[0] = line.const
    pols.put_limbs("CONST", i, const)
    return op + const


def resolve_address(ctx: Context, line: RomLine, i: int) -> Tuple[int, int]:
    """Absolute and relative address of the line. Writes the addressing columns.

    Raises:
        AddressRangeError: relative address outside [0, 0x10000)
    """
    pols = ctx.pols
    addr_rel = 0
    if line.has(ADDRESSED):
        if line.has(Op.IND):
            addr_rel = fe2n(ctx.E[0])
        if line.has(Op.IND_RR):
            addr_rel += fe2n(ctx.RR)
        addr_rel += line.offset
        if addr_rel >= MAX_ADDR_REL:
            raise AddressRangeError(f"Address too big: {addr_rel}")
        if addr_rel < 0:
            raise AddressRangeError(f"Address can not be negative: {addr_rel}")

    addr = addr_rel
    if line.has(Op.USE_CTX):
        addr += ctx.CTX * CTX_STRIDE
    if line.has(Op.IS_CODE):
        addr += CODE_BASE
    if line.has(Op.IS_STACK):
        addr += STACK_BASE + ctx.SP
    if line.has(Op.IS_MEM):
        addr += MEM_BASE

    for key, flag in (("useCTX", Op.USE_CTX), ("isCode", Op.IS_CODE), ("isStack", Op.IS_STACK),
                      ("isMem", Op.IS_MEM), ("ind", Op.IND), ("indRR", Op.IND_RR)):
        pols.put(key, i, int(line.has(flag)))
    pols.put("incCode", i, line.inc_code)
    pols.put("incStack", i, line.inc_stack)
    pols.put("offset", i, line.offset)
    return addr, addr_rel
