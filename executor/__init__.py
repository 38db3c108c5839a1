"""Executor - Main-machine ROM executor and its evidence queues."""

from executor.batch_input import BatchInput
from executor.config import ExecConfig
from executor.errors import (
    AddressRangeError,
    AssertMismatchError,
    ExecutionError,
    FinalStateError,
    FreeInputError,
    HashConsistencyError,
    MissingInputError,
    ResourceExhaustedError,
    RomDecodeError,
    UnknownOperationError,
)
from executor.evidence import Required
from executor.main_exec import execute
from executor.pols import MainPols
from executor.rom import Rom, RomLine
from executor.state_db import MemStateDB, StateDB
from executor.tracer import EventTracer, ListTracer, NullTracer

__all__ = [
    # Entry point
    "execute",
    "MainPols",
    "Rom",
    "RomLine",
    "BatchInput",
    "ExecConfig",
    "Required",
    # Collaborators
    "StateDB",
    "MemStateDB",
    "EventTracer",
    "NullTracer",
    "ListTracer",
    # Errors
    "ExecutionError",
    "AddressRangeError",
    "AssertMismatchError",
    "FinalStateError",
    "FreeInputError",
    "HashConsistencyError",
    "MissingInputError",
    "ResourceExhaustedError",
    "RomDecodeError",
    "UnknownOperationError",
]
