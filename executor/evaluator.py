"""Expression evaluator for freeInTag, cmdBefore and cmdAfter.

A visitor over the closed node set of executor.expressions. Values are either
Python ints (unbounded scalars) or 8-limb FF arrays (fea); arithmetic
operators work on scalars, so a fea operand is recomposed first.
"""

import logging
from typing import Callable, Dict, Optional, Union

import numpy as np

from executor.alu import mem_align_wr8_w0, mem_align_wr_w0, mem_align_wr_w1
from executor.errors import ExecutionError, UnknownOperationError
from executor.expressions import (
    FUNC_ARITY,
    Arith,
    ArithOp,
    Bitwise,
    BitOp,
    DeclareVar,
    Expr,
    Func,
    FunctionCall,
    GetMemValue,
    GetReg,
    GetVar,
    If,
    Logical,
    LogicalOp,
    Neg,
    Number,
    SetVar,
    label,
)
from executor.tracer import EventTracer, NullTracer
from primitives import ecc
from primitives.field import FF, GOLDILOCKS_PRIME, MASK_256, fea2scalar, fea_zero, scalar2fea

logger = logging.getLogger(__name__)

Value = Union[int, FF]


def to_scalar(v: Value) -> int:
    """Scalar view of a value: fea limbs are recomposed."""
    if isinstance(v, np.ndarray):
        return fea2scalar(v)
    return int(v)


def to_fea(v: Value) -> FF:
    """fea view of a value: scalars are split into limbs."""
    if isinstance(v, np.ndarray):
        return v
    return scalar2fea(int(v))


def _limb0(value: int) -> FF:
    out = fea_zero()
    out[0] = value % GOLDILOCKS_PRIME
    return out


def _tdiv(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    if b == 0:
        raise ExecutionError("Division by zero in ROM expression")
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


class Evaluator:
    """Evaluates expression trees against a live Context."""

    def __init__(self, ctx, tracer: Optional[EventTracer] = None) -> None:
        self.ctx = ctx
        self.tracer = tracer or NullTracer()
        self._nodes: Dict[type, Callable[[Expr], Value]] = {
            Number: self._number,
            DeclareVar: self._declare_var,
            GetVar: self._get_var,
            SetVar: self._set_var,
            GetReg: self._get_reg,
            Neg: self._neg,
            Arith: self._arith,
            Logical: self._logical,
            Bitwise: self._bitwise,
            If: self._if,
            GetMemValue: self._get_mem_value,
            FunctionCall: self._call,
        }
        self._funcs: Dict[Func, Callable[[FunctionCall], Value]] = {
            Func.GET_GLOBAL_HASH: lambda c: scalar2fea(self.ctx.input.global_hash),
            Func.GET_OLD_STATE_ROOT: lambda c: scalar2fea(self.ctx.input.old_state_root),
            Func.GET_NEW_STATE_ROOT: lambda c: scalar2fea(self.ctx.input.new_state_root),
            Func.GET_SEQUENCER_ADDR: lambda c: scalar2fea(self.ctx.input.sequencer_addr),
            Func.GET_OLD_LOCAL_EXIT_ROOT: lambda c: scalar2fea(self.ctx.input.old_local_exit_root),
            Func.GET_NEW_LOCAL_EXIT_ROOT: lambda c: scalar2fea(self.ctx.input.new_local_exit_root),
            Func.GET_NUM_BATCH: lambda c: _limb0(self.ctx.input.num_batch),
            Func.GET_TIMESTAMP: lambda c: _limb0(self.ctx.input.timestamp),
            Func.GET_CHAIN_ID: lambda c: _limb0(self.ctx.input.chain_id),
            Func.GET_BATCH_HASH_DATA: lambda c: scalar2fea(self.ctx.input.batch_hash_data),
            Func.GET_GLOBAL_EXIT_ROOT: lambda c: scalar2fea(self.ctx.input.global_exit_root),
            Func.GET_TXS: self._get_txs,
            Func.GET_TXS_LEN: lambda c: _limb0(len(self.ctx.input.batch_l2_data)),
            Func.GET_BYTECODE: self._get_bytecode,
            Func.SAVE_CONTRACT_BYTECODE: self._save_contract_bytecode,
            Func.EVENT_LOG: self._event_log,
            Func.STORE_LOG: self._store_log,
            Func.DUMP_REGS: self._dump_regs,
            Func.DUMP: self._dump,
            Func.DUMP_HEX: self._dump,
            Func.LOG: self._log,
            Func.BREAK: self._break,
            Func.COND: self._cond,
            Func.BEFORE_LAST: self._before_last,
            Func.INVERSE_FP_EC: lambda c: self._inverse(c, ecc.FPEC),
            Func.INVERSE_FN_EC: lambda c: self._inverse(c, ecc.FNEC),
            Func.SQRT_FP_EC: lambda c: ecc.sqrt_fpec(self.scalar(c.params[0])),
            Func.X_ADD_POINT_EC: lambda c: self._add_point(c, dbl=False)[0],
            Func.Y_ADD_POINT_EC: lambda c: self._add_point(c, dbl=False)[1],
            Func.X_DBL_POINT_EC: lambda c: self._add_point(c, dbl=True)[0],
            Func.Y_DBL_POINT_EC: lambda c: self._add_point(c, dbl=True)[1],
            Func.IS_WARMED_ADDRESS: self._is_warmed_address,
            Func.IS_WARMED_STORAGE: self._is_warmed_storage,
            Func.CHECKPOINT: self._warm_op(lambda w: w.checkpoint()),
            Func.REVERT: self._warm_op(lambda w: w.revert()),
            Func.COMMIT: self._warm_op(lambda w: w.commit()),
            Func.CLEAR_WARMED_STORAGE: self._warm_op(lambda w: w.clear()),
            Func.BITWISE_AND: lambda c: self.scalar(c.params[0]) & self.scalar(c.params[1]),
            Func.BITWISE_OR: lambda c: self.scalar(c.params[0]) | self.scalar(c.params[1]),
            Func.BITWISE_XOR: lambda c: self.scalar(c.params[0]) ^ self.scalar(c.params[1]),
            Func.BITWISE_NOT: lambda c: self.scalar(c.params[0]) ^ MASK_256,
            Func.COMP_LT: lambda c: int(self.scalar(c.params[0]) < self.scalar(c.params[1])),
            Func.COMP_GT: lambda c: int(self.scalar(c.params[0]) > self.scalar(c.params[1])),
            Func.COMP_EQ: lambda c: int(self.scalar(c.params[0]) == self.scalar(c.params[1])),
            Func.LOAD_SCALAR: lambda c: self.eval(c.params[0]),
            Func.EXP: lambda c: scalar2fea(self.scalar(c.params[0]) ** self.scalar(c.params[1])),
            Func.MEM_ALIGN_WR_W0: lambda c: scalar2fea(mem_align_wr_w0(*self._scalars(c))),
            Func.MEM_ALIGN_WR_W1: lambda c: scalar2fea(mem_align_wr_w1(*self._scalars(c))),
            Func.MEM_ALIGN_WR8_W0: lambda c: scalar2fea(mem_align_wr8_w0(*self._scalars(c))),
        }

    # --- Entry points ---

    def eval(self, node: Expr) -> Value:
        handler = self._nodes.get(type(node))
        if handler is None:
            raise UnknownOperationError(f"Invalid operation {type(node).__name__}")
        return handler(node)

    def scalar(self, node: Expr) -> int:
        return to_scalar(self.eval(node))

    def _scalars(self, call: FunctionCall):
        return [self.scalar(p) for p in call.params]

    # --- Nodes ---

    def _number(self, node: Number) -> int:
        return node.value

    def _declare_var(self, node: DeclareVar) -> int:
        if not node.name.startswith("_") and node.name in self.ctx.vars:
            raise ExecutionError(f"Variable already declared: {node.name}")
        self.ctx.vars[node.name] = 0
        return 0

    def _get_var(self, node: GetVar) -> Value:
        if node.name not in self.ctx.vars:
            raise ExecutionError(f"Variable not defined: {node.name}")
        return self.ctx.vars[node.name]

    def _set_var(self, node: SetVar) -> Value:
        if isinstance(node.target, DeclareVar):
            self._declare_var(node.target)
        name = node.target.name
        if name not in self.ctx.vars:
            raise ExecutionError(f"Variable not defined: {name}")
        self.ctx.vars[name] = self.eval(node.value)
        return self.ctx.vars[name]

    def _get_reg(self, node: GetReg) -> int:
        return to_scalar(self.ctx.register(node.reg))

    def _neg(self, node: Neg) -> int:
        return -self.scalar(node.operand)

    def _arith(self, node: Arith) -> int:
        a = self.scalar(node.left)
        b = self.scalar(node.right)
        if node.op == ArithOp.ADD:
            return a + b
        if node.op == ArithOp.SUB:
            return a - b
        if node.op == ArithOp.MUL:
            return a * b
        if node.op == ArithOp.DIV:
            return _tdiv(a, b)
        return a - b * _tdiv(a, b)

    def _logical(self, node: Logical) -> int:
        a = self.scalar(node.operands[0])
        if node.op == LogicalOp.NOT:
            return 0 if a else 1
        b = self.scalar(node.operands[1])
        if node.op == LogicalOp.OR:
            return int(bool(a or b))
        if node.op == LogicalOp.AND:
            return int(bool(a and b))
        if node.op == LogicalOp.EQ:
            return int(a == b)
        if node.op == LogicalOp.NE:
            return int(a != b)
        if node.op == LogicalOp.GT:
            return int(a > b)
        if node.op == LogicalOp.GE:
            return int(a >= b)
        if node.op == LogicalOp.LT:
            return int(a < b)
        # le evaluates as a > b; ROMs in use depend on it
        return int(a > b)

    def _bitwise(self, node: Bitwise) -> int:
        a = self.scalar(node.operands[0])
        if node.op == BitOp.BITNOT:
            return ~a
        b = self.scalar(node.operands[1])
        if node.op == BitOp.BITAND:
            return a & b
        if node.op == BitOp.BITOR:
            return a | b
        if node.op == BitOp.BITXOR:
            return a ^ b
        if node.op == BitOp.SHL:
            return a << b
        return a >> b

    def _if(self, node: If) -> Value:
        return self.eval(node.then if self.scalar(node.cond) else node.otherwise)

    def _get_mem_value(self, node: GetMemValue) -> int:
        value = self.ctx.mem.get(node.offset)
        return 0 if value is None else fea2scalar(value)

    def _call(self, call: FunctionCall) -> Value:
        lo, hi = FUNC_ARITY[call.func]
        n = len(call.params)
        if n < lo or (hi is not None and n > hi):
            raise UnknownOperationError(f"Invalid number of parameters function {call.func.value}: {n}")
        return self._funcs[call.func](call)

    # --- Batch data ---

    def _get_txs(self, call: FunctionCall) -> FF:
        offset, length = self._scalars(call)
        chunk = self.ctx.input.batch_l2_data[offset:offset + length]
        return scalar2fea(int.from_bytes(chunk, "big"))

    def _get_bytecode(self, call: FunctionCall) -> FF:
        params = self._scalars(call)
        code_hash, offset = params[0], params[1]
        length = params[2] if len(params) == 3 else 1
        code = self.ctx.input.contracts_bytecode.get(code_hash)
        if code is None:
            return fea_zero()
        return scalar2fea(int.from_bytes(code[offset:offset + length], "big"))

    def _save_contract_bytecode(self, call: FunctionCall) -> FF:
        addr = self.scalar(call.params[0])
        buf = self.ctx.hash_p.get(addr)
        if buf is None or buf.digest is None:
            raise ExecutionError(f"saveContractBytecode: hashP address {addr} has no digest")
        self.ctx.input.contracts_bytecode[buf.digest] = buf.to_bytes()
        return fea_zero()

    # --- Events and diagnostics ---

    def _event_log(self, call: FunctionCall) -> FF:
        self.tracer.handle_event(self.ctx, call)
        return fea_zero()

    def _store_log(self, call: FunctionCall) -> FF:
        index, is_topic, data = self._scalars(call)
        entry = self.ctx.out_logs.setdefault(index, {"data": [], "topics": []})
        entry["topics" if is_topic else "data"].append(f"{data:x}")
        self.tracer.handle_event(self.ctx, call)
        return fea_zero()

    def _dump_regs(self, call: FunctionCall) -> FF:
        logger.info("dumpRegs %s:%s", self.ctx.file_name, self.ctx.line)
        for reg in ("A", "B", "C", "D", "E"):
            logger.info("  %s = %d", reg, fea2scalar(getattr(self.ctx, reg)))
        return fea_zero()

    def _dump(self, call: FunctionCall) -> FF:
        hex_out = call.func == Func.DUMP_HEX
        logger.info("DUMP on %s:%s", self.ctx.file_name, self.ctx.line)
        for p in call.params:
            v = self.scalar(p)
            logger.info("  %s: %s", label(p), f"0x{v:x}" if hex_out else v)
        return fea_zero()

    def _log(self, call: FunctionCall) -> FF:
        reg = call.params[0]
        name = label(call.params[1]) if len(call.params) > 1 else "notset"
        v = to_scalar(self.ctx.register(reg.reg)) if isinstance(reg, GetReg) else self.scalar(reg)
        logger.info("Log regname %s (%s): %d 0x%x", label(reg), name, v, v)
        return fea_zero()

    def _break(self, call: FunctionCall) -> FF:
        logger.info("Breakpoint at %s:%s (step %d)", self.ctx.file_name, self.ctx.line, self.ctx.step)
        return fea_zero()

    # --- Control helpers ---

    def _cond(self, call: FunctionCall) -> FF:
        return _limb0(-1) if self.scalar(call.params[0]) else fea_zero()

    def _before_last(self, call: FunctionCall) -> FF:
        if self.ctx.step >= self.ctx.steps_n - 2:
            return fea_zero()
        return _limb0(-1)

    # --- Curve ---

    def _inverse(self, call: FunctionCall, modulus: int) -> int:
        a = self.scalar(call.params[0])
        try:
            return ecc.inverse(a, modulus)
        except ZeroDivisionError:
            raise ExecutionError(f"{call.func.value}: Division by zero") from None

    def _add_point(self, call: FunctionCall, dbl: bool):
        params = self._scalars(call)
        try:
            if dbl:
                return ecc.double_point(params[0], params[1])
            return ecc.add_points(*params)
        except ZeroDivisionError:
            raise ExecutionError(f"{call.func.value}: Division by zero") from None

    # --- Warm access ---

    def _is_warmed_address(self, call: FunctionCall) -> FF:
        return _limb0(self.ctx.warm.is_warmed_address(self.scalar(call.params[0])))

    def _is_warmed_storage(self, call: FunctionCall) -> FF:
        address, key = self._scalars(call)
        return _limb0(self.ctx.warm.is_warmed_storage(address, key))

    def _warm_op(self, op):
        def run(call: FunctionCall) -> FF:
            op(self.ctx.warm)
            return fea_zero()
        return run
