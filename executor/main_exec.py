"""Main-machine step loop.

execute() replays a ROM over a batch input, fills the main trace and returns
the evidence queues for the coprocessors. Every step reads row i and writes
row (i + 1) mod N; after the last step the registers must have wrapped back
to zero at row 0.
"""

import logging
from typing import Optional

from executor.batch_input import BatchInput
from executor.commit import commit_registers
from executor.config import ExecConfig
from executor.context import FEA_REGISTERS, Context
from executor.errors import (
    ExecutionError,
    FinalStateError,
    HashConsistencyError,
    MissingInputError,
    ResourceExhaustedError,
    RomDecodeError,
)
from executor.evaluator import Evaluator
from executor.evidence import PaddingRecord, Required
from executor.free_input import FreeInputResolver
from executor.instructions import InstructionProcessor
from executor.operand import compose_operand, resolve_address
from executor.pols import MainPols
from executor.rom import FLAG_KEYS, Rom
from executor.state_db import MemStateDB, StateDB
from executor.tracer import EventTracer
from primitives.field import scalar_to_h4

logger = logging.getLogger(__name__)

FINAL_ZERO_SCALARS = ("CTX", "SP", "PC", "MAXMEM", "GAS", "zkPC")


def init_state(pols: MainPols) -> None:
    """Zero every register and counter at row 0."""
    for name in FEA_REGISTERS:
        pols.put_limbs(name, 0, [0] * 8)
    for name in ("CTX", "SP", "PC", "RR", "MAXMEM", "GAS", "HASHPOS", "zkPC",
                 "cntArith", "cntBinary", "cntMemAlign", "cntKeccakF", "cntPoseidonG", "cntPaddingPG"):
        pols.put(name, 0, 0)


def check_final_state(pols: MainPols) -> None:
    """Registers must be back to zero at row 0 once the loop wraps around.

    Raises:
        FinalStateError: any register is non-zero
    """
    dirty = [name for name in FEA_REGISTERS if any(pols.get_limbs(name, 0))]
    dirty += [name for name in FINAL_ZERO_SCALARS if pols.get(name, 0)]
    if dirty:
        raise FinalStateError(f"Program terminated with registers not set to zero: {', '.join(dirty)}")


def padding_records(buffers) -> list:
    """Split every hash buffer into its read segments, in address order.

    Raises:
        HashConsistencyError: a recorded read runs past the end of its buffer
    """
    records = []
    for addr in sorted(buffers):
        buf = buffers[addr]
        length = buf.length()
        reads = []
        p = 0
        while p < length:
            size = buf.reads.get(p) or 1
            reads.append(size)
            p += size
        if p != length:
            raise HashConsistencyError(f"Reading hash buffer {addr} out of limits: {p} > {length}")
        records.append(PaddingRecord(data=buf.to_bytes(), reads=reads))
    return records


def check_limits(required: Required, config: ExecConfig) -> None:
    for name, cap in config.limits.items():
        used = len(required.queue(name))
        if used > cap:
            raise ResourceExhaustedError(f"Too many {name} records: {used} > {cap}")


def default_state_db(input: BatchInput) -> MemStateDB:
    """In-memory Merkle store seeded with the input's nodes and contract bytecode."""
    db = MemStateDB(input.db)
    for code_hash, code in input.contracts_bytecode.items():
        db.set_program(scalar_to_h4(code_hash), code)
    return db


def execute(pols: MainPols, input: BatchInput, rom: Rom, config: Optional[ExecConfig] = None,
            state_db: Optional[StateDB] = None, tracer: Optional[EventTracer] = None) -> Required:
    """Run the ROM over the batch and fill `pols`.

    Returns:
        The evidence queues, padding records and output logs of the run.

    Raises:
        ExecutionError: any failed check, located at the failing step
    """
    config = config or ExecConfig()
    if config.unsigned and input.from_addr is None:
        raise MissingInputError("Unsigned execution requires input.from")
    state_db = state_db or default_state_db(input)

    n = len(pols)
    steps_n = config.steps_n if config.debug and config.steps_n else n
    required = Required()
    ctx = Context(pols, input, rom, steps_n)
    evaluator = Evaluator(ctx, tracer)
    free_input = FreeInputResolver(ctx, evaluator, state_db, required)
    processor = InstructionProcessor(ctx, state_db, required, config)

    init_state(pols)
    logger.info("Executing %d steps over a trace of %d rows", steps_n, n)

    finalize_label = rom.label("finalizeExecution")
    fast_exit = False
    for step in range(steps_n):
        i = step % n
        ctx.step = step
        ctx.load_row(i)
        if config.debug and ctx.zkPC == finalize_label:
            fast_exit = True
            logger.info("Reached finalizeExecution at step %d", step)
            break

        try:
            line = rom.line(ctx.zkPC)
        except RomDecodeError as e:
            raise e.locate(step, ctx.zkPC, None, None)
        ctx.file_name = line.file_name
        ctx.line = line.line
        try:
            for cmd in line.cmd_before:
                evaluator.eval(cmd)

            for key, flag in FLAG_KEYS.items():
                pols.put(key, i, int(line.has(flag)))

            op = compose_operand(ctx, line, i)
            addr, addr_rel = resolve_address(ctx, line, i)
            op, inc_counter = free_input.resolve(line, addr, op, i)
            effects = processor.process(line, op, addr, i, inc_counter)
            commit_registers(ctx, line, op, addr, addr_rel, i, effects, config, required)

            for cmd in line.cmd_after:
                evaluator.eval(cmd)
        except ExecutionError as e:
            raise e.locate(step, ctx.zkPC, line.file_name, line.line)
        except ValueError as e:
            raise ExecutionError(str(e)).locate(step, ctx.zkPC, line.file_name, line.line) from e

    if not (config.debug and config.steps_n and fast_exit):
        check_final_state(pols)

    required.padding_kk = padding_records(ctx.hash_k)
    required.padding_pg = padding_records(ctx.hash_p)
    required.logs = ctx.out_logs
    check_limits(required, config)

    logger.info("Execution finished: %d arith, %d binary, %d mem, %d storage records",
                len(required.arith), len(required.binary), len(required.mem), len(required.storage))
    return required
