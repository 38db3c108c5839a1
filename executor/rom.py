"""ROM loader.

Each JSON program line is decoded once into a RomLine: boolean selectors
become an enum.Flag set, operand weights are reduced into the field and
expression tags are parsed into expression trees.
"""

import enum
import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from executor.errors import RomDecodeError
from executor.expressions import Expr, parse_expr
from primitives.field import GOLDILOCKS_PRIME


class Op(enum.Flag):
    """Per-line operation and selector flags."""
    NONE = 0
    ASSERT = enum.auto()
    MOP = enum.auto()
    MWR = enum.auto()
    SRD = enum.auto()
    SWR = enum.auto()
    HASHK = enum.auto()
    HASHK_LEN = enum.auto()
    HASHK_DIGEST = enum.auto()
    HASHP = enum.auto()
    HASHP_LEN = enum.auto()
    HASHP_DIGEST = enum.auto()
    ARITH = enum.auto()
    ARITH_EQ0 = enum.auto()
    ARITH_EQ1 = enum.auto()
    ARITH_EQ2 = enum.auto()
    ARITH_EQ3 = enum.auto()
    BIN = enum.auto()
    MEM_ALIGN = enum.auto()
    MEM_ALIGN_WR = enum.auto()
    MEM_ALIGN_WR8 = enum.auto()
    JMP = enum.auto()
    JMPC = enum.auto()
    JMPN = enum.auto()
    IND = enum.auto()
    IND_RR = enum.auto()
    USE_CTX = enum.auto()
    IS_CODE = enum.auto()
    IS_STACK = enum.auto()
    IS_MEM = enum.auto()
    SET_A = enum.auto()
    SET_B = enum.auto()
    SET_C = enum.auto()
    SET_D = enum.auto()
    SET_E = enum.auto()
    SET_SR = enum.auto()
    SET_CTX = enum.auto()
    SET_SP = enum.auto()
    SET_PC = enum.auto()
    SET_RR = enum.auto()
    SET_GAS = enum.auto()
    SET_MAXMEM = enum.auto()
    SET_HASHPOS = enum.auto()


# JSON key -> flag; also the trace column name for the flag
FLAG_KEYS: Dict[str, Op] = {
    "assert": Op.ASSERT,
    "mOp": Op.MOP,
    "mWR": Op.MWR,
    "sRD": Op.SRD,
    "sWR": Op.SWR,
    "hashK": Op.HASHK,
    "hashKLen": Op.HASHK_LEN,
    "hashKDigest": Op.HASHK_DIGEST,
    "hashP": Op.HASHP,
    "hashPLen": Op.HASHP_LEN,
    "hashPDigest": Op.HASHP_DIGEST,
    "arith": Op.ARITH,
    "arithEq0": Op.ARITH_EQ0,
    "arithEq1": Op.ARITH_EQ1,
    "arithEq2": Op.ARITH_EQ2,
    "arithEq3": Op.ARITH_EQ3,
    "bin": Op.BIN,
    "memAlign": Op.MEM_ALIGN,
    "memAlignWR": Op.MEM_ALIGN_WR,
    "memAlignWR8": Op.MEM_ALIGN_WR8,
    "JMP": Op.JMP,
    "JMPC": Op.JMPC,
    "JMPN": Op.JMPN,
    "ind": Op.IND,
    "indRR": Op.IND_RR,
    "useCTX": Op.USE_CTX,
    "isCode": Op.IS_CODE,
    "isStack": Op.IS_STACK,
    "isMem": Op.IS_MEM,
    "setA": Op.SET_A,
    "setB": Op.SET_B,
    "setC": Op.SET_C,
    "setD": Op.SET_D,
    "setE": Op.SET_E,
    "setSR": Op.SET_SR,
    "setCTX": Op.SET_CTX,
    "setSP": Op.SET_SP,
    "setPC": Op.SET_PC,
    "setRR": Op.SET_RR,
    "setGAS": Op.SET_GAS,
    "setMAXMEM": Op.SET_MAXMEM,
    "setHASHPOS": Op.SET_HASHPOS,
}

# Operand selectors in composition order. 8-limb sources first, then
# scalar sources that only feed limb 0, then the rotated C.
IN_SELECTORS: Tuple[str, ...] = (
    "inA", "inB", "inC", "inD", "inE", "inSR",
    "inCTX", "inSP", "inPC", "inGAS", "inMAXMEM", "inSTEP", "inRR", "inHASHPOS",
    "inCntArith", "inCntBinary", "inCntMemAlign", "inCntKeccakF", "inCntPoseidonG", "inCntPaddingPG",
    "inROTL_C",
)

# Lines touching any of these resolve an address
ADDRESSED = (Op.MOP | Op.JMP | Op.JMPN | Op.JMPC | Op.HASHK | Op.HASHK_LEN | Op.HASHK_DIGEST
             | Op.HASHP | Op.HASHP_LEN | Op.HASHP_DIGEST)


def _to_int(v) -> int:
    if isinstance(v, str):
        return int(v, 0)
    return int(v)


@dataclass
class RomLine:
    """One decoded ROM instruction."""
    flags: Op = Op.NONE
    in_weights: Dict[str, int] = field(default_factory=dict)  # selector -> weight mod p, set selectors only
    in_free: int = 0
    const: Optional[int] = None  # CONST, reduced mod p
    const_long: Optional[int] = None  # CONSTL, 256-bit
    offset: int = 0
    inc_stack: int = 0
    inc_code: int = 0
    bin_opcode: int = 0
    free_in_tag: Optional[Expr] = None
    cmd_before: List[Expr] = field(default_factory=list)
    cmd_after: List[Expr] = field(default_factory=list)
    file_name: str = ""
    line: int = 0

    def has(self, flag: Op) -> bool:
        """True if any of the given flags is set on this line."""
        return bool(self.flags & flag)

    @classmethod
    def from_dict(cls, j: dict) -> "RomLine":
        """Decode one program entry."""
        rl = cls(file_name=j.get("fileName", ""), line=int(j.get("line", 0)))

        for key, flag in FLAG_KEYS.items():
            if j.get(key):
                rl.flags |= flag

        for sel in IN_SELECTORS:
            if j.get(sel):
                rl.in_weights[sel] = _to_int(j[sel]) % GOLDILOCKS_PRIME
        if j.get("inFREE"):
            rl.in_free = _to_int(j["inFREE"]) % GOLDILOCKS_PRIME

        has_const = j.get("CONST") not in (None, 0, "0")
        has_const_long = j.get("CONSTL") not in (None, 0, "0")
        if has_const and has_const_long:
            raise RomDecodeError(f"CONST and CONSTL on the same line at {rl.file_name}:{rl.line}")
        if has_const:
            rl.const = _to_int(j["CONST"]) % GOLDILOCKS_PRIME
        if has_const_long:
            rl.const_long = _to_int(j["CONSTL"])

        rl.offset = _to_int(j.get("offset", 0))
        rl.inc_stack = _to_int(j.get("incStack", 0))
        rl.inc_code = _to_int(j.get("incCode", 0))
        rl.bin_opcode = _to_int(j.get("binOpcode", 0))

        if "freeInTag" in j and j["freeInTag"] is not None:
            rl.free_in_tag = parse_expr(j["freeInTag"])
        rl.cmd_before = [parse_expr(c) for c in j.get("cmdBefore", [])]
        rl.cmd_after = [parse_expr(c) for c in j.get("cmdAfter", [])]
        return rl


class Rom:
    """Decoded ROM program and its labels."""

    def __init__(self, program: List[RomLine], labels: Dict[str, int]) -> None:
        if not program:
            raise RomDecodeError("ROM program is empty")
        self.program = program
        self.labels = labels

    def __len__(self) -> int:
        return len(self.program)

    def line(self, zkpc: int) -> RomLine:
        if zkpc < 0 or zkpc >= len(self.program):
            raise RomDecodeError(f"zkPC {zkpc} outside the ROM program (size {len(self.program)})")
        return self.program[zkpc]

    def label(self, name: str) -> Optional[int]:
        """Index of a label, None if the ROM does not define it."""
        return self.labels.get(name)

    @classmethod
    def from_dict(cls, j: dict) -> "Rom":
        program = []
        for idx, entry in enumerate(j["program"]):
            try:
                program.append(RomLine.from_dict(entry))
            except (KeyError, ValueError, TypeError) as e:
                raise RomDecodeError(f"Malformed ROM line {idx}: {e}") from e
        return cls(program, {k: int(v) for k, v in j.get("labels", {}).items()})

    @classmethod
    def from_json(cls, path: str) -> "Rom":
        """Load a ROM from its JSON file."""
        with open(path) as f:
            j = json.load(f)
        return cls.from_dict(j)
