"""Free-input resolver.

A line with inFREE takes part of its operand from a value the executor
supplies. An empty freeInTag means the value comes from the line's own
operation (memory, storage, hash buffer, binary or mem-align), and exactly one
such source must apply. Any other tag is evaluated as an expression.
"""

from typing import List, Tuple

from executor.alu import binary_op, mem_align_read
from executor.context import Context, HashBuffer, StorageWrite
from executor.errors import FreeInputError, HashConsistencyError
from executor.evaluator import Evaluator, to_fea
from executor.evidence import PoseidonGRecord, Required
from executor.expressions import BuiltinFreeIn
from executor.rom import Op, RomLine
from executor.state_db import StateDB
from primitives.field import FF, fe2n, fea2scalar, fea_zero, scalar2fea, sr4to8, sr8to4
from primitives.poseidon import poseidon

MAX_HASH_READ = 32
MEM_ALIGN_MAX_OFFSET = 32


def storage_keys(ctx: Context) -> Tuple[List[int], List[int], List[int], List[int]]:
    """Storage key of (C, A0..A5, B0, B1).

    Returns (kin0, kin1, key_i, key) where key_i = poseidon(C) and
    key = poseidon(A0..A5 ++ B0 ++ B1, capacity=key_i).
    """
    kin0 = [int(v) for v in ctx.C]
    kin1 = [int(v) for v in ctx.A[:6]] + [int(ctx.B[0]), int(ctx.B[1])]
    key_i = poseidon(kin0)
    key = poseidon(kin1, key_i)
    return kin0, kin1, key_i, key


def push_storage_hashes(required: Required, kin0, kin1, key_i, key) -> None:
    required.poseidon_g.append(PoseidonGRecord(kin0 + [0, 0, 0, 0] + list(key_i)))
    required.poseidon_g.append(PoseidonGRecord(kin1 + list(key_i) + list(key)))


def hash_read(buffers, addr: int, size: int, pos: int, name: str) -> int:
    """Big-endian value of `size` bytes at `pos` of a hash buffer.

    Raises:
        HashConsistencyError: size outside [0, 32] or bytes not yet written
    """
    buf = buffers.setdefault(addr, HashBuffer())
    if size < 0 or size > MAX_HASH_READ:
        raise HashConsistencyError(f"Invalid size for {name}: {size}")
    if pos + size > buf.length():
        raise HashConsistencyError(f"Accessing {name} out of bounds {addr}: pos {pos} size {size}")
    s = 0
    for k in range(size):
        if pos + k not in buf.data:
            raise HashConsistencyError(f"Accessing {name} not defined place {addr}:{pos + k}")
        s = (s << 8) | buf.data[pos + k]
    return s


def hash_digest(buffers, addr: int, name: str) -> int:
    buf = buffers.get(addr)
    if buf is None:
        raise HashConsistencyError(f"{name} digest not defined at {addr}")
    if buf.digest is None:
        raise HashConsistencyError(f"{name} digest not calculated at {addr}, length must be set first")
    return buf.digest


class FreeInputResolver:
    """Computes the free input of a line and accumulates its counter increment."""

    def __init__(self, ctx: Context, evaluator: Evaluator, state_db: StateDB, required: Required) -> None:
        self.ctx = ctx
        self.evaluator = evaluator
        self.state_db = state_db
        self.required = required

    def resolve(self, line: RomLine, addr: int, op: FF, i: int) -> Tuple[FF, int]:
        """Add inFREE * free input to `op`.

        Returns the new operand and the counter increment of any Merkle
        call made while resolving.

        Raises:
            FreeInputError: inFREE without tag, no source or ambiguous source
        """
        pols = self.ctx.pols
        if not line.in_free:
            pols.put_limbs("FREE", i, [0] * 8)
            pols.put("inFREE", i, 0)
            return op, 0

        if line.free_in_tag is None:
            raise FreeInputError("Instruction with freeIn without freeInTag")

        inc_counter = 0
        if isinstance(line.free_in_tag, BuiltinFreeIn):
            fi, inc_counter = self._builtin(line, addr)
        else:
            fi = to_fea(self.evaluator.eval(line.free_in_tag))

        pols.put_limbs("FREE", i, fi)
        pols.put("inFREE", i, line.in_free)
        return op + FF(line.in_free) * fi, inc_counter

    def _builtin(self, line: RomLine, addr: int) -> Tuple[FF, int]:
        ctx = self.ctx
        hits = []
        inc_counter = 0

        if line.has(Op.MOP) and not line.has(Op.MWR):
            stored = ctx.mem.get(addr)
            hits.append(stored.copy() if stored is not None else fea_zero())

        if line.has(Op.SRD):
            kin0, kin1, key_i, key = storage_keys(ctx)
            push_storage_hashes(self.required, kin0, kin1, key_i, key)
            res = self.state_db.get(sr8to4(ctx.SR), key)
            inc_counter = res.proof_hash_counter + 2
            hits.append(scalar2fea(res.value))

        if line.has(Op.SWR):
            kin0, kin1, key_i, key = storage_keys(ctx)
            push_storage_hashes(self.required, kin0, kin1, key_i, key)
            res = self.state_db.set(sr8to4(ctx.SR), key, fea2scalar(ctx.D))
            inc_counter = res.proof_hash_counter + 2
            ctx.last_s_write = StorageWrite(step=ctx.step, key_i=key_i, key=key,
                                            result=res, new_root=res.new_root)
            hits.append(sr4to8(res.new_root))

        if line.has(Op.HASHK):
            hits.append(scalar2fea(hash_read(ctx.hash_k, addr, fe2n(ctx.D[0]), fe2n(ctx.HASHPOS), "hashK")))
        if line.has(Op.HASHK_DIGEST):
            hits.append(scalar2fea(hash_digest(ctx.hash_k, addr, "hashK")))
        if line.has(Op.HASHP):
            hits.append(scalar2fea(hash_read(ctx.hash_p, addr, fe2n(ctx.D[0]), fe2n(ctx.HASHPOS), "hashP")))
        if line.has(Op.HASHP_DIGEST):
            hits.append(scalar2fea(hash_digest(ctx.hash_p, addr, "hashP")))

        if line.has(Op.BIN):
            c, _ = binary_op(line.bin_opcode, fea2scalar(ctx.A), fea2scalar(ctx.B))
            hits.append(scalar2fea(c))

        if line.has(Op.MEM_ALIGN) and not line.has(Op.MEM_ALIGN_WR):
            offset = fea2scalar(ctx.C)
            if offset > MEM_ALIGN_MAX_OFFSET:
                raise FreeInputError(f"MemAlign out of range ({offset})")
            hits.append(scalar2fea(mem_align_read(fea2scalar(ctx.A), fea2scalar(ctx.B), offset)))

        if not hits:
            raise FreeInputError("Empty freeIn without a valid instruction (no source)")
        if len(hits) > 1:
            raise FreeInputError("Only one instruction that requires freeIn is allowed (ambiguous source)")
        return hits[0], inc_counter
