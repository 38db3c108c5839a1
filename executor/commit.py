"""Control flow and register commit.

Writes row i+1 of the trace from row i, the operand and the line's set*,
inc* and jump selectors.
"""

from executor.config import ExecConfig
from executor.context import COUNTERS, FEA_REGISTERS, Context
from executor.evidence import Required
from executor.instructions import StepEffects
from executor.rom import Op, RomLine
from primitives.field import FF, fe2n, scalar2fea

# Base added to negative JMPN values before range-checking them as 4 bytes
BYTE4_NEG_BASE = 0x100000000

_SET_FLAGS = {
    "A": Op.SET_A,
    "B": Op.SET_B,
    "C": Op.SET_C,
    "D": Op.SET_D,
    "E": Op.SET_E,
    "SR": Op.SET_SR,
}


def commit_registers(ctx: Context, line: RomLine, op: FF, addr: int, addr_rel: int, i: int,
                     effects: StepEffects, config: ExecConfig, required: Required) -> None:
    pols = ctx.pols
    nexti = (i + 1) % ctx.N
    op0 = fe2n(op[0]) if line.has(Op.SET_CTX | Op.SET_SP | Op.SET_PC | Op.SET_RR | Op.SET_MAXMEM
                                  | Op.SET_GAS | Op.SET_HASHPOS | Op.JMPN) else 0

    # 256-bit registers
    for reg in FEA_REGISTERS:
        if line.has(_SET_FLAGS[reg]):
            pols.put_limbs(reg, nexti, op)
        else:
            pols.put_limbs(reg, nexti, getattr(ctx, reg))

    if (not line.has(Op.SET_A) and config.unsigned
            and ctx.zkPC == ctx.rom.label("checkAndSaveFrom")):
        pols.put_limbs("A", nexti, scalar2fea(ctx.input.from_addr))

    # Scalar registers
    pols.put("CTX", nexti, op0 if line.has(Op.SET_CTX) else ctx.CTX)
    pols.put("SP", nexti, op0 if line.has(Op.SET_SP) else ctx.SP + line.inc_stack)
    pols.put("PC", nexti, op0 if line.has(Op.SET_PC) else ctx.PC + line.inc_code)
    pols.put("RR", nexti, op0 if line.has(Op.SET_RR) else ctx.RR)
    pols.put("GAS", nexti, op0 if line.has(Op.SET_GAS) else ctx.GAS)
    base_hash_pos = op0 if line.has(Op.SET_HASHPOS) else ctx.HASHPOS
    pols.put("HASHPOS", nexti, base_hash_pos + effects.inc_hash_pos)

    max_mem = ctx.MAXMEM
    is_max_mem = line.has(Op.IS_MEM) and addr_rel > ctx.MAXMEM
    if is_max_mem:
        max_mem = addr_rel
    pols.put("isMaxMem", i, int(is_max_mem))
    pols.put("MAXMEM", nexti, op0 if line.has(Op.SET_MAXMEM) else max_mem)

    # Counters
    counter_inc = dict.fromkeys(COUNTERS, 0)
    if line.has(Op.ARITH):
        counter_inc["cntArith"] = 1
    if line.has(Op.BIN):
        counter_inc["cntBinary"] = 1
    if line.has(Op.MEM_ALIGN):
        counter_inc["cntMemAlign"] = 1
    if line.has(Op.HASHK_DIGEST):
        counter_inc["cntKeccakF"] = effects.inc_counter
    if line.has(Op.HASHP_DIGEST):
        counter_inc["cntPaddingPG"] = effects.inc_counter
    if line.has(Op.SRD | Op.SWR | Op.HASHP_DIGEST):
        counter_inc["cntPoseidonG"] = effects.inc_counter
    for name in COUNTERS:
        pols.put(name, nexti, ctx.counters[name] + counter_inc[name])

    uses_counter = line.has(Op.SRD | Op.SWR | Op.HASHK_DIGEST | Op.HASHP_DIGEST)
    pols.put("incCounter", i, effects.inc_counter if uses_counter else 0)

    # Jumps
    is_neg = 0
    jmp = jmpn = jmpc = 0
    next_zkpc = ctx.zkPC + 1
    if line.has(Op.JMPN):
        jmpn = 1
        if op0 < 0:
            is_neg = 1
            next_zkpc = addr
            required.byte4.add(BYTE4_NEG_BASE + op0)
        else:
            required.byte4.add(op0)
    elif line.has(Op.JMPC):
        jmpc = 1
        if pols.get("carry", i):
            next_zkpc = addr
    elif line.has(Op.JMP):
        jmp = 1
        next_zkpc = addr
    pols.put("isNeg", i, is_neg)
    pols.put("JMP", i, jmp)
    pols.put("JMPN", i, jmpn)
    pols.put("JMPC", i, jmpc)
    pols.put("zkPC", nexti, next_zkpc)
