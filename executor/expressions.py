"""ROM expression tree.

freeInTag, cmdBefore and cmdAfter entries arrive as JSON tags
({"op": ..., "values": [...]}) and are decoded once, when the ROM is loaded,
into the closed set of node types below. Unknown ops and unknown function
names are rejected at decode time; function arity is checked when the call is
evaluated.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from executor.errors import UnknownOperationError


# --- Operators ---


class ArithOp(Enum):
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    MOD = "mod"


class LogicalOp(Enum):
    OR = "or"
    AND = "and"
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"
    NOT = "not"


class BitOp(Enum):
    BITAND = "bitand"
    BITOR = "bitor"
    BITXOR = "bitxor"
    BITNOT = "bitnot"
    SHL = "shl"
    SHR = "shr"


class Func(Enum):
    """Functions a ROM expression may call."""
    # Batch globals
    GET_GLOBAL_HASH = "getGlobalHash"
    GET_OLD_STATE_ROOT = "getOldStateRoot"
    GET_NEW_STATE_ROOT = "getNewStateRoot"
    GET_SEQUENCER_ADDR = "getSequencerAddr"
    GET_OLD_LOCAL_EXIT_ROOT = "getOldLocalExitRoot"
    GET_NEW_LOCAL_EXIT_ROOT = "getNewLocalExitRoot"
    GET_NUM_BATCH = "getNumBatch"
    GET_TIMESTAMP = "getTimestamp"
    GET_CHAIN_ID = "getChainId"
    GET_BATCH_HASH_DATA = "getBatchHashData"
    GET_GLOBAL_EXIT_ROOT = "getGlobalExitRoot"
    GET_TXS = "getTxs"
    GET_TXS_LEN = "getTxsLen"
    GET_BYTECODE = "getBytecode"
    SAVE_CONTRACT_BYTECODE = "saveContractBytecode"
    # Events and diagnostics
    EVENT_LOG = "eventLog"
    STORE_LOG = "storeLog"
    DUMP_REGS = "dumpRegs"
    DUMP = "dump"
    DUMP_HEX = "dumphex"
    LOG = "log"
    BREAK = "break"
    # Control helpers
    COND = "cond"
    BEFORE_LAST = "beforeLast"
    # Curve fields
    INVERSE_FP_EC = "inverseFpEc"
    INVERSE_FN_EC = "inverseFnEc"
    SQRT_FP_EC = "sqrtFpEc"
    X_ADD_POINT_EC = "xAddPointEc"
    Y_ADD_POINT_EC = "yAddPointEc"
    X_DBL_POINT_EC = "xDblPointEc"
    Y_DBL_POINT_EC = "yDblPointEc"
    # Warm access
    IS_WARMED_ADDRESS = "isWarmedAddress"
    IS_WARMED_STORAGE = "isWarmedStorage"
    CHECKPOINT = "checkpoint"
    REVERT = "revert"
    COMMIT = "commit"
    CLEAR_WARMED_STORAGE = "clearWarmedStorage"
    # Scalar helpers
    BITWISE_AND = "bitwise_and"
    BITWISE_OR = "bitwise_or"
    BITWISE_XOR = "bitwise_xor"
    BITWISE_NOT = "bitwise_not"
    COMP_LT = "comp_lt"
    COMP_GT = "comp_gt"
    COMP_EQ = "comp_eq"
    LOAD_SCALAR = "loadScalar"
    EXP = "exp"
    # Mem-align helpers
    MEM_ALIGN_WR_W0 = "memAlignWR_W0"
    MEM_ALIGN_WR_W1 = "memAlignWR_W1"
    MEM_ALIGN_WR8_W0 = "memAlignWR8_W0"


# (min, max) parameter count; None means unbounded
FUNC_ARITY: Dict[Func, Tuple[int, Optional[int]]] = {
    Func.GET_GLOBAL_HASH: (0, 0),
    Func.GET_OLD_STATE_ROOT: (0, 0),
    Func.GET_NEW_STATE_ROOT: (0, 0),
    Func.GET_SEQUENCER_ADDR: (0, 0),
    Func.GET_OLD_LOCAL_EXIT_ROOT: (0, 0),
    Func.GET_NEW_LOCAL_EXIT_ROOT: (0, 0),
    Func.GET_NUM_BATCH: (0, 0),
    Func.GET_TIMESTAMP: (0, 0),
    Func.GET_CHAIN_ID: (0, 0),
    Func.GET_BATCH_HASH_DATA: (0, 0),
    Func.GET_GLOBAL_EXIT_ROOT: (0, 0),
    Func.GET_TXS: (2, 2),
    Func.GET_TXS_LEN: (0, 0),
    Func.GET_BYTECODE: (2, 3),
    Func.SAVE_CONTRACT_BYTECODE: (1, 1),
    Func.EVENT_LOG: (1, None),
    Func.STORE_LOG: (3, 3),
    Func.DUMP_REGS: (0, 0),
    Func.DUMP: (0, None),
    Func.DUMP_HEX: (0, None),
    Func.LOG: (1, 2),
    Func.BREAK: (0, None),
    Func.COND: (1, 1),
    Func.BEFORE_LAST: (0, 0),
    Func.INVERSE_FP_EC: (1, 1),
    Func.INVERSE_FN_EC: (1, 1),
    Func.SQRT_FP_EC: (1, 1),
    Func.X_ADD_POINT_EC: (4, 4),
    Func.Y_ADD_POINT_EC: (4, 4),
    Func.X_DBL_POINT_EC: (2, 2),
    Func.Y_DBL_POINT_EC: (2, 2),
    Func.IS_WARMED_ADDRESS: (1, 1),
    Func.IS_WARMED_STORAGE: (2, 2),
    Func.CHECKPOINT: (0, 0),
    Func.REVERT: (0, 0),
    Func.COMMIT: (0, 0),
    Func.CLEAR_WARMED_STORAGE: (0, 0),
    Func.BITWISE_AND: (2, 2),
    Func.BITWISE_OR: (2, 2),
    Func.BITWISE_XOR: (2, 2),
    Func.BITWISE_NOT: (1, 1),
    Func.COMP_LT: (2, 2),
    Func.COMP_GT: (2, 2),
    Func.COMP_EQ: (2, 2),
    Func.LOAD_SCALAR: (1, 1),
    Func.EXP: (2, 2),
    Func.MEM_ALIGN_WR_W0: (3, 3),
    Func.MEM_ALIGN_WR_W1: (3, 3),
    Func.MEM_ALIGN_WR8_W0: (3, 3),
}

# Names accepted by getReg
REGISTER_NAMES = frozenset([
    "A", "B", "C", "D", "E", "SR",
    "CTX", "SP", "PC", "MAXMEM", "GAS", "zkPC", "RR", "STEP", "HASHPOS",
    "CNT_ARITH", "CNT_BINARY", "CNT_KECCAK_F", "CNT_MEM_ALIGN", "CNT_PADDING_PG", "CNT_POSEIDON_G",
])


# --- Nodes ---


@dataclass(frozen=True)
class Expr:
    """Base of all expression nodes."""


@dataclass(frozen=True)
class BuiltinFreeIn(Expr):
    """Empty free-input tag: the value comes from the line's own operation."""


@dataclass(frozen=True)
class Number(Expr):
    value: int


@dataclass(frozen=True)
class DeclareVar(Expr):
    name: str


@dataclass(frozen=True)
class GetVar(Expr):
    name: str


@dataclass(frozen=True)
class SetVar(Expr):
    target: Expr  # DeclareVar or GetVar
    value: Expr


@dataclass(frozen=True)
class GetReg(Expr):
    reg: str


@dataclass(frozen=True)
class Neg(Expr):
    operand: Expr


@dataclass(frozen=True)
class Arith(Expr):
    op: ArithOp
    left: Expr
    right: Expr


@dataclass(frozen=True)
class Logical(Expr):
    op: LogicalOp
    operands: Tuple[Expr, ...]


@dataclass(frozen=True)
class Bitwise(Expr):
    op: BitOp
    operands: Tuple[Expr, ...]


@dataclass(frozen=True)
class If(Expr):
    cond: Expr
    then: Expr
    otherwise: Expr


@dataclass(frozen=True)
class GetMemValue(Expr):
    offset: int


@dataclass(frozen=True)
class FunctionCall(Expr):
    func: Func
    params: Tuple[Expr, ...]


def label(node: Expr) -> str:
    """Human-readable name of a node, for diagnostics."""
    if isinstance(node, (DeclareVar, GetVar)):
        return node.name
    if isinstance(node, GetReg):
        return node.reg
    if isinstance(node, FunctionCall):
        return f"{node.func.value}()"
    if isinstance(node, Number):
        return str(node.value)
    return type(node).__name__


# --- Decoding ---


def _to_int(v) -> int:
    if isinstance(v, str):
        return int(v, 0)
    return int(v)


def _values(tag: dict, n: int) -> Tuple[Expr, ...]:
    values = tag.get("values", [])
    if len(values) != n:
        raise UnknownOperationError(f"Operation {tag['op']} expects {n} operands, got {len(values)}")
    return tuple(parse_expr(v) for v in values)


_ARITH_OPS = {op.value: op for op in ArithOp}
_LOGICAL_OPS = {op.value: op for op in LogicalOp}
_BIT_OPS = {op.value: op for op in BitOp}
_FUNCS = {f.value: f for f in Func}


def parse_expr(tag: dict) -> Expr:
    """Decode one JSON expression tag.

    Raises:
        UnknownOperationError: unknown op, unknown function or malformed operands
    """
    op = tag.get("op")

    if op == "":
        return BuiltinFreeIn()
    if op == "number":
        return Number(_to_int(tag["num"]))
    if op == "declareVar":
        return DeclareVar(tag["varName"])
    if op == "getVar":
        return GetVar(tag["varName"])
    if op == "setVar":
        target, value = _values(tag, 2)
        if not isinstance(target, (DeclareVar, GetVar)):
            raise UnknownOperationError(f"Invalid left expression in setVar: {type(target).__name__}")
        return SetVar(target, value)
    if op == "getReg":
        if tag["regName"] not in REGISTER_NAMES:
            raise UnknownOperationError(f"Invalid register {tag['regName']}")
        return GetReg(tag["regName"])
    if op == "neg":
        (operand,) = _values(tag, 1)
        return Neg(operand)
    if op in _ARITH_OPS:
        left, right = _values(tag, 2)
        return Arith(_ARITH_OPS[op], left, right)
    if op in _LOGICAL_OPS:
        return Logical(_LOGICAL_OPS[op], _values(tag, 1 if op == "not" else 2))
    if op in _BIT_OPS:
        return Bitwise(_BIT_OPS[op], _values(tag, 1 if op == "bitnot" else 2))
    if op == "if":
        cond, then, otherwise = _values(tag, 3)
        return If(cond, then, otherwise)
    if op == "getMemValue":
        return GetMemValue(_to_int(tag["offset"]))
    if op == "functionCall":
        name = tag["funcName"]
        if name not in _FUNCS:
            raise UnknownOperationError(f"function not defined {name}")
        return FunctionCall(_FUNCS[name], tuple(parse_expr(p) for p in tag.get("params", [])))

    raise UnknownOperationError(f"Invalid operation {op}")
