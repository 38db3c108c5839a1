"""Assertion and evidence emitter.

Checks every operation of a line against the composed operand and appends
the evidence records the coprocessors need. Any mismatch aborts the run.
"""

import logging
from dataclasses import dataclass
from typing import Dict

from executor.alu import (
    BinOpcode,
    bin_opcode,
    binary_op,
    mem_align_read,
    mem_align_wr8_w0,
    mem_align_wr_w0,
    mem_align_wr_w1,
)
from executor.config import ExecConfig
from executor.context import Context, HashBuffer, StorageWrite
from executor.errors import AssertMismatchError, HashConsistencyError, UnknownOperationError
from executor.evidence import (
    ArithRecord,
    BinaryRecord,
    HashDigestRecord,
    MemAlignRecord,
    MemRecord,
    Required,
    StorageRecord,
)
from executor.free_input import MAX_HASH_READ, storage_keys
from executor.rom import Op, RomLine
from executor.state_db import StateDB
from primitives import ecc
from primitives.field import FF, fe2n, fea2scalar, nodes_equal, scalar_to_h4, sr8to4
from primitives.keccak import EMPTY_KECCAK, keccak256_int, keccak_blocks
from primitives.poseidon import bytecode_blocks, hash_bytecode

logger = logging.getLogger(__name__)

MEM_ALIGN_OFFSETS = 32

ARITH_FLAGS = Op.ARITH_EQ0 | Op.ARITH_EQ1 | Op.ARITH_EQ2 | Op.ARITH_EQ3


@dataclass
class StepEffects:
    """Side values the register commit needs from instruction processing."""
    inc_hash_pos: int = 0
    inc_counter: int = 0


def hash_write(buffers: Dict[int, HashBuffer], addr: int, size: int, pos: int, value: int, name: str) -> None:
    """Store `size` big-endian bytes of `value` at `pos`; earlier bytes must match.

    Raises:
        HashConsistencyError: bad size, byte conflict, stray high bytes or
            a position already read with a different size
    """
    buf = buffers.setdefault(addr, HashBuffer())
    if size < 0 or size > MAX_HASH_READ:
        raise HashConsistencyError(f"Invalid size for {name}: {size}")
    for k in range(size):
        bm = (value >> ((size - k - 1) * 8)) & 0xFF
        bh = buf.data.get(pos + k)
        if bh is None:
            buf.data[pos + k] = bm
        elif bm != bh:
            raise HashConsistencyError(f"{name} do not match {addr}:{pos + k} is {bm} and should be {bh}")

    padding = value >> (size * 8)
    if padding:
        raise HashConsistencyError(
            f"Incoherent size ({size}) and data (0x{value:x}) padding (0x{padding:x}) for {name}")

    if pos in buf.reads and buf.reads[pos] != size:
        raise HashConsistencyError(f"{name} different read sizes in the same position {addr}:{pos}")
    buf.reads[pos] = size


class InstructionProcessor:
    """Runs the checks of one ROM line and records its evidence."""

    def __init__(self, ctx: Context, state_db: StateDB, required: Required, config: ExecConfig) -> None:
        self.ctx = ctx
        self.state_db = state_db
        self.required = required
        self.config = config

    def process(self, line: RomLine, op: FF, addr: int, i: int, inc_counter: int = 0) -> StepEffects:
        effects = StepEffects(inc_counter=inc_counter)
        op_scalar = fea2scalar(op)

        if line.has(Op.ASSERT):
            self._assert(op)
        if line.has(Op.MOP):
            self._memory(line, op, addr)

        self._storage(line, op, op_scalar, i, effects)

        if line.has(Op.HASHK):
            effects.inc_hash_pos = self._hash_write(self.ctx.hash_k, addr, op_scalar, "hashK")
        if line.has(Op.HASHK_LEN):
            self._hash_k_len(addr, fe2n(op[0]))
        if line.has(Op.HASHK_DIGEST):
            effects.inc_counter = self._hash_k_digest(addr, op_scalar)
        if line.has(Op.HASHP):
            effects.inc_hash_pos = self._hash_write(self.ctx.hash_p, addr, op_scalar, "hashP")
        if line.has(Op.HASHP_LEN):
            self._hash_p_len(addr, fe2n(op[0]))
        if line.has(Op.HASHP_DIGEST):
            effects.inc_counter = self._hash_p_digest(addr, op_scalar)

        if line.has(Op.HASHP_DIGEST | Op.SWR):
            self.required.binary.append(BinaryRecord(a=op_scalar, b=0, c=op_scalar, opcode=int(BinOpcode.SUB)))

        if line.has(Op.ARITH):
            self._arith(line, op_scalar)
        self._binary(line, op_scalar, i)
        if line.has(Op.MEM_ALIGN):
            self._mem_align(line, op_scalar)
        return effects

    # --- Register and memory ---

    def _assert(self, op: FF) -> None:
        ctx = self.ctx
        if self.config.skip_asserts:
            for label in ("assertNewStateRoot", "assertNewLocalExitRoot"):
                if ctx.zkPC == ctx.rom.label(label):
                    logger.info("Skip assert %s", label[len("assert"):])
                    return
        if any(int(ctx.A[k]) != int(op[k]) for k in range(len(op))):
            raise AssertMismatchError(f"Assert does not match (op: {fea2scalar(op)} A: {fea2scalar(ctx.A)})")

    def _memory(self, line: RomLine, op: FF, addr: int) -> None:
        ctx = self.ctx
        is_write = line.has(Op.MWR)
        self.required.mem.append(MemRecord(is_write=is_write, address=addr, step=ctx.step,
                                           value=[int(v) for v in op]))
        if is_write:
            ctx.mem[addr] = op.copy()
            return
        stored = ctx.mem.get(addr)
        expected = [0] * len(op) if stored is None else [int(v) for v in stored]
        if expected != [int(v) for v in op]:
            raise AssertMismatchError(f"Memory Read does not match at address {addr}")

    # --- Storage ---

    def _storage(self, line: RomLine, op: FF, op_scalar: int, i: int, effects: StepEffects) -> None:
        ctx = self.ctx
        pols = ctx.pols
        key_i = key = [0, 0, 0, 0]

        if line.has(Op.SRD):
            _, _, key_i, key = storage_keys(ctx)
            res = self.state_db.get(sr8to4(ctx.SR), key)
            effects.inc_counter = res.proof_hash_counter + 2
            self.required.storage.append(StorageRecord(is_set=False, get_result=res))
            if res.value != op_scalar:
                raise AssertMismatchError(f"Storage read does not match: {res.value} != {op_scalar}")

        if line.has(Op.SWR):
            last = ctx.last_s_write
            if last is None or last.step != ctx.step:
                _, _, k_i, k = storage_keys(ctx)
                res = self.state_db.set(sr8to4(ctx.SR), k, fea2scalar(ctx.D))
                effects.inc_counter = res.proof_hash_counter + 2
                last = StorageWrite(step=ctx.step, key_i=k_i, key=k, result=res, new_root=res.new_root)
                ctx.last_s_write = last
            self.required.storage.append(StorageRecord(is_set=True, set_result=last.result))
            if not nodes_equal(last.new_root, sr8to4(op)):
                raise AssertMismatchError("Storage write does not match")
            key_i, key = last.key_i, last.key

        pols.put_limbs("sKeyI", i, key_i)
        pols.put_limbs("sKey", i, key)

    # --- Hash buffers ---

    def _hash_write(self, buffers: Dict[int, HashBuffer], addr: int, op_scalar: int, name: str) -> int:
        size = fe2n(self.ctx.D[0])
        pos = fe2n(self.ctx.HASHPOS)
        hash_write(buffers, addr, size, pos, op_scalar, name)
        return size

    def _hash_k_len(self, addr: int, lm: int) -> None:
        ctx = self.ctx
        if addr not in ctx.hash_k:
            if lm != 0:
                raise AssertMismatchError(f"HashK length does not match {addr} is {lm} and should be 0")
            ctx.hash_k[addr] = HashBuffer(digest=EMPTY_KECCAK)
        buf = ctx.hash_k[addr]
        if lm != buf.length():
            raise AssertMismatchError(f"HashK length does not match {addr} is {lm} and should be {buf.length()}")
        if buf.digest is None:
            buf.digest = keccak256_int(buf.to_bytes())

    def _hash_k_digest(self, addr: int, dg: int) -> int:
        buf = self.ctx.hash_k.get(addr)
        if buf is None or buf.digest is None:
            raise HashConsistencyError(f"hashK digest at {addr} requested before its length was set")
        if dg != buf.digest:
            raise AssertMismatchError(f"HashK digest doesn't match at {addr}")
        length = buf.length()
        blocks = keccak_blocks(length)
        self.required.hash_digests.append(HashDigestRecord("keccak", addr, length, dg, blocks))
        return blocks

    def _hash_p_len(self, addr: int, lm: int) -> None:
        buf = self.ctx.hash_p.setdefault(addr, HashBuffer())
        if lm != buf.length():
            raise AssertMismatchError(f"HashP length does not match {addr} is {lm} and should be {buf.length()}")
        if buf.digest is None:
            data = buf.to_bytes()
            buf.digest = hash_bytecode(data)
            self.state_db.set_program(scalar_to_h4(buf.digest), data)

    def _hash_p_digest(self, addr: int, dg: int) -> int:
        ctx = self.ctx
        if addr not in ctx.hash_p:
            data = self.state_db.get_program(scalar_to_h4(dg))
            ctx.hash_p[addr] = HashBuffer.from_bytes(data, digest=dg)
        buf = ctx.hash_p[addr]
        if buf.digest is None:
            raise HashConsistencyError(f"hashP digest at {addr} requested before its length was set")
        if dg != buf.digest:
            raise AssertMismatchError(f"HashP digest doesn't match at {addr}")
        length = buf.length()
        blocks = bytecode_blocks(length)
        self.required.hash_digests.append(HashDigestRecord("poseidon", addr, length, dg, blocks))
        return blocks

    # --- Coprocessors ---

    def _arith(self, line: RomLine, op_scalar: int) -> None:
        ctx = self.ctx
        x1 = fea2scalar(ctx.A)
        y1 = fea2scalar(ctx.B)
        x2 = fea2scalar(ctx.C)
        y2 = fea2scalar(ctx.D)
        sel = line.flags & ARITH_FLAGS

        if sel == Op.ARITH_EQ0:
            if x1 * y1 + x2 != (y2 << 256) + op_scalar:
                raise AssertMismatchError(
                    f"Arithmetic does not match: {x1} * {y1} + {x2} != ({y2} << 256) + {op_scalar}")
            self.required.arith.append(ArithRecord(x1, y1, x2, y2, 0, op_scalar, sel_eq0=1))
            return

        if sel == Op.ARITH_EQ1 | Op.ARITH_EQ3:
            dbl = False
        elif sel == Op.ARITH_EQ2 | Op.ARITH_EQ3:
            dbl = True
        else:
            raise UnknownOperationError(f"Invalid arithmetic op: {sel}")

        x3 = fea2scalar(ctx.E)
        y3 = op_scalar
        try:
            s = ecc.slope_dbl(x1, y1) if dbl else ecc.slope_add(x1, y1, x2, y2)
        except ZeroDivisionError:
            raise AssertMismatchError(f"Arithmetic curve {'dbl' if dbl else 'add'} point: division by zero") from None
        exp_x3 = (s * s - (x1 + (x1 if dbl else x2))) % ecc.FPEC
        exp_y3 = (s * (x1 - x3) - y1) % ecc.FPEC
        if x3 != exp_x3 or y3 != exp_y3:
            raise AssertMismatchError(
                f"Arithmetic curve {'dbl' if dbl else 'add'} point does not match: "
                f"x3 {x3} vs {exp_x3}, y3 {y3} vs {exp_y3}")

        self.required.arith.append(ArithRecord(
            x1, y1, x1 if dbl else x2, y1 if dbl else y2, x3, y3,
            sel_eq1=0 if dbl else 1, sel_eq2=1 if dbl else 0, sel_eq3=1))

    def _binary(self, line: RomLine, op_scalar: int, i: int) -> None:
        pols = self.ctx.pols
        if not line.has(Op.BIN):
            pols.put("binOpcode", i, 0)
            pols.put("carry", i, 0)
            return
        opcode = bin_opcode(line.bin_opcode)
        a = fea2scalar(self.ctx.A)
        b = fea2scalar(self.ctx.B)
        expected, carry = binary_op(opcode, a, b)
        if op_scalar != expected:
            raise AssertMismatchError(f"{opcode.name} does not match: {op_scalar} != {expected}")
        pols.put("binOpcode", i, int(opcode))
        pols.put("carry", i, carry)
        self.required.binary.append(BinaryRecord(a=a, b=b, c=op_scalar, opcode=int(opcode)))

    def _mem_align(self, line: RomLine, v: int) -> None:
        ctx = self.ctx
        m0 = fea2scalar(ctx.A)
        offset = fea2scalar(ctx.C)
        if offset < 0 or offset >= MEM_ALIGN_OFFSETS:
            raise AssertMismatchError(f"MemAlign out of range ({offset})")

        wr = line.has(Op.MEM_ALIGN_WR)
        wr8 = line.has(Op.MEM_ALIGN_WR8)
        if wr and wr8:
            raise UnknownOperationError("Invalid memAlign operation: WR and WR8 on the same line")

        if wr:
            m1 = fea2scalar(ctx.B)
            w0 = fea2scalar(ctx.D)
            w1 = fea2scalar(ctx.E)
            exp_w0 = mem_align_wr_w0(m0, v, offset)
            exp_w1 = mem_align_wr_w1(m1, v, offset)
            if w0 != exp_w0 or w1 != exp_w1:
                raise AssertMismatchError(
                    f"MemAlign w0,w1 invalid (0x{w0:x},0x{w1:x}) vs (0x{exp_w0:x},0x{exp_w1:x})")
            record = MemAlignRecord(m0, m1, v, w0, w1, offset, wr256=1, wr8=0)
        elif wr8:
            w0 = fea2scalar(ctx.D)
            exp_w0 = mem_align_wr8_w0(m0, v, offset)
            if w0 != exp_w0:
                raise AssertMismatchError(f"MemAlign w0 invalid (0x{w0:x}) vs (0x{exp_w0:x})")
            record = MemAlignRecord(m0, 0, v, w0, 0, offset, wr256=0, wr8=1)
        else:
            m1 = fea2scalar(ctx.B)
            exp_v = mem_align_read(m0, m1, offset)
            if v != exp_v:
                raise AssertMismatchError(f"MemAlign v invalid 0x{v:x} vs 0x{exp_v:x}")
            record = MemAlignRecord(m0, m1, v, 0, 0, offset, wr256=0, wr8=0)
        self.required.mem_align.append(record)
