"""Execution result model — the outcome of one step invocation.

Exactly one variant is produced per invocation:

- Completed(termination) — the action returned normally
- Suspended(ignored) — the step is parked awaiting input
- StepJump(target) — continue at another step of the same flow
- FlowJump(flow_name) — continue at the first step of another flow
- FlowStopped — the flow was terminated, nothing runs next
- Failed(error) — the action raised, the chain halts
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from telechain.state import StepState, utcnow

if TYPE_CHECKING:
    from telechain.context import StepContext
    from telechain.graph import Step


@dataclass(frozen=True, slots=True)
class Completed:
    termination: bool = False
    timestamp: datetime = field(default_factory=utcnow, compare=False)


@dataclass(frozen=True, slots=True)
class Suspended:
    # True when the action ran and answered with IgnoreEvent.
    ignored: bool = False
    timestamp: datetime = field(default_factory=utcnow, compare=False)


@dataclass(frozen=True, slots=True)
class StepJump:
    target: Step
    timestamp: datetime = field(default_factory=utcnow, compare=False)


@dataclass(frozen=True, slots=True)
class FlowJump:
    flow_name: str
    timestamp: datetime = field(default_factory=utcnow, compare=False)


@dataclass(frozen=True, slots=True)
class FlowStopped:
    timestamp: datetime = field(default_factory=utcnow, compare=False)


@dataclass(frozen=True, slots=True)
class Failed:
    error: Exception
    timestamp: datetime = field(default_factory=utcnow, compare=False)


type ExecutionResult = Completed | Suspended | StepJump | FlowJump | FlowStopped | Failed


@dataclass(frozen=True, slots=True)
class ExecutionSnapshot:
    """One entry of the execution history: step, context and outcome."""

    step: Step
    context: StepContext
    result: ExecutionResult

    @property
    def step_states(self) -> tuple[StepState, ...]:
        """Step state transitions published while producing ``result``."""
        match self.result:
            case Completed():
                return (StepState.STARTED, StepState.COMPLETED)
            case Suspended(ignored=True):
                return (StepState.STARTED, StepState.SUSPENDED)
            case Suspended():
                return (StepState.SUSPENDED,)
            case StepJump() | FlowJump() | FlowStopped():
                return (StepState.STARTED, StepState.TERMINATED)
            case Failed():
                return (StepState.STARTED, StepState.FAILED)


__all__ = (
    "Completed",
    "ExecutionResult",
    "ExecutionSnapshot",
    "Failed",
    "FlowJump",
    "FlowStopped",
    "StepJump",
    "Suspended",
)
