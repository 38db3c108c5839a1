"""Event tracer collaborator.

eventLog and storeLog calls in the ROM are forwarded to a tracer. Building a
human-readable transaction trace is left to tracer implementations.
"""

from abc import ABC, abstractmethod
from typing import List, Tuple

from executor.expressions import FunctionCall


class EventTracer(ABC):
    """Receives ROM events as they are evaluated."""

    @abstractmethod
    def handle_event(self, ctx, call: FunctionCall) -> None:
        """Called with the live context and the function call node."""
        pass


class NullTracer(EventTracer):
    """Ignores every event."""

    def handle_event(self, ctx, call: FunctionCall) -> None:
        pass


class ListTracer(EventTracer):
    """Records (step, function name) for every event."""

    def __init__(self) -> None:
        self.events: List[Tuple[int, str]] = []

    def handle_event(self, ctx, call: FunctionCall) -> None:
        self.events.append((ctx.step, call.func.value))
