"""Executor error hierarchy.

Every failure is fatal for the run. Errors raised while a step is being
processed are tagged by the step loop with the step number, zkPC and ROM
source location before they propagate.
"""

from typing import Optional


class ExecutionError(Exception):
    """Base class for all executor failures."""

    def __init__(self, message: str, step: Optional[int] = None, zkpc: Optional[int] = None,
                 file_name: Optional[str] = None, line: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.step = step
        self.zkpc = zkpc
        self.file_name = file_name
        self.line = line

    def locate(self, step: int, zkpc: int, file_name: Optional[str], line: Optional[int]) -> "ExecutionError":
        """Attach the failing step's location unless one is already set."""
        if self.step is None:
            self.step = step
            self.zkpc = zkpc
            self.file_name = file_name
            self.line = line
        return self

    def __str__(self) -> str:
        if self.step is None:
            return self.message
        return f"{self.message} (step {self.step}, zkPC {self.zkpc} at {self.file_name}:{self.line})"


class AddressRangeError(ExecutionError):
    """Resolved relative address is negative or >= 0x10000."""


class FreeInputError(ExecutionError):
    """Free input has no source, more than one source, or no tag."""


class AssertMismatchError(ExecutionError):
    """An operand did not match its expected value (register, memory, storage, digest, length, coprocessor)."""


class HashConsistencyError(ExecutionError):
    """Hash buffer written with conflicting bytes, read out of bounds or with conflicting sizes."""


class UnknownOperationError(ExecutionError):
    """Unknown expression op, unknown function, wrong arity or invalid opcode."""


class MissingInputError(ExecutionError):
    """A required input is absent for the requested mode."""


class ResourceExhaustedError(ExecutionError):
    """An evidence queue outgrew the capacity configured for its coprocessor."""


class RomDecodeError(ExecutionError):
    """ROM line could not be decoded."""


class FinalStateError(ExecutionError):
    """Registers were not back to zero at row 0 after the last step."""
