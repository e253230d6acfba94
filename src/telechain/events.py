"""Lifecycle events published by the executor and the runner.

Listeners subscribe by type; a listener for a base class (``FlowEvent``,
``StepEvent``, ``ChatEvent``) receives every subclass.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from telechain.state import utcnow

if TYPE_CHECKING:
    from telechain.context import ChatContext, StepContext
    from telechain.graph import Flow
    from telechain.result import ExecutionSnapshot


@dataclass(frozen=True, slots=True, kw_only=True)
class ChatEvent:
    timestamp: datetime = field(default_factory=utcnow)


# ═══════════════════════════════════════════════════════════════════════════════
# Routing outcomes
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True, kw_only=True)
class FlowNotFound(ChatEvent):
    flow_name: str
    context: ChatContext


@dataclass(frozen=True, slots=True, kw_only=True)
class StepNotFound(ChatEvent):
    flow: Flow
    step_name: str
    context: ChatContext


# ═══════════════════════════════════════════════════════════════════════════════
# Flow and step transitions
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True, kw_only=True)
class FlowEvent(ChatEvent):
    context: StepContext


@dataclass(frozen=True, slots=True, kw_only=True)
class FlowStarted(FlowEvent):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class FlowCompleted(FlowEvent):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class FlowTerminated(FlowEvent):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class StepEvent(ChatEvent):
    context: StepContext


@dataclass(frozen=True, slots=True, kw_only=True)
class StepStarted(StepEvent):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class StepCompleted(StepEvent):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class StepSuspended(StepEvent):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class StepTerminated(StepEvent):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class StepFailed(StepEvent):
    error: Exception


# ═══════════════════════════════════════════════════════════════════════════════
# Execution
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True, kw_only=True)
class ExecutionStarted(ChatEvent):
    context: StepContext


@dataclass(frozen=True, slots=True, kw_only=True)
class ExecutionCompleted(ChatEvent):
    context: ChatContext
    history: Sequence[ExecutionSnapshot] = ()


@dataclass(frozen=True, slots=True, kw_only=True)
class ExecutionFailed(ChatEvent):
    """An error escaped dispatch; reported once at the runner boundary."""

    context: ChatContext
    error: Exception


__all__ = (
    "ChatEvent",
    "ExecutionCompleted",
    "ExecutionFailed",
    "ExecutionStarted",
    "FlowCompleted",
    "FlowEvent",
    "FlowNotFound",
    "FlowStarted",
    "FlowTerminated",
    "StepCompleted",
    "StepEvent",
    "StepFailed",
    "StepNotFound",
    "StepStarted",
    "StepSuspended",
    "StepTerminated",
)
