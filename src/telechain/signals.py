"""Control signals — what a step action returns to redirect the chain.

A step action returns ``None`` to complete normally, or one of the signals
below. The executor matches on the returned value; exceptions are never used
for control flow, so anything an action raises is an action error.

    async def ask_age(ctx: TextStepContext) -> ControlSignal | None:
        if not ctx.text.isdigit():
            return goto("ask")
        ...
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from telechain.naming import base_step_name

if TYPE_CHECKING:
    from telechain.context import StepContext

logger = structlog.get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Signal variants
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Goto:
    """Jump to a named step of the current flow."""

    step_name: str


@dataclass(frozen=True, slots=True)
class GoNext:
    """Jump to the nearest following non-suspendable step."""


@dataclass(frozen=True, slots=True)
class GoPrevious:
    """Jump to the nearest preceding non-suspendable step."""


@dataclass(frozen=True, slots=True)
class StartFlow:
    """Leave the current flow and start another one from its first step."""

    flow_name: str


@dataclass(frozen=True, slots=True)
class StopFlow:
    """Terminate the current flow; nothing runs afterwards."""


@dataclass(frozen=True, slots=True)
class IgnoreEvent:
    """Leave the step suspended; the delivered event is dropped."""

    event: Any = None


type ControlSignal = Goto | GoNext | GoPrevious | StartFlow | StopFlow | IgnoreEvent

CONTROL_SIGNALS = (Goto, GoNext, GoPrevious, StartFlow, StopFlow, IgnoreEvent)


# ═══════════════════════════════════════════════════════════════════════════════
# Constructors
# ═══════════════════════════════════════════════════════════════════════════════


def goto(step_name: str) -> Goto:
    if not step_name or not step_name.strip():
        raise ValueError("Goto step name cannot be blank.")
    return Goto(step_name)


def go_next() -> GoNext:
    return GoNext()


def go_previous() -> GoPrevious:
    return GoPrevious()


def start_flow(flow_name: str) -> StartFlow:
    return StartFlow(flow_name)


def stop_flow() -> StopFlow:
    return StopFlow()


def ignore_event(event: Any = None) -> IgnoreEvent:
    return IgnoreEvent(event)


def is_control_signal(value: object) -> bool:
    return isinstance(value, CONTROL_SIGNALS)


# ═══════════════════════════════════════════════════════════════════════════════
# Fallback
# ═══════════════════════════════════════════════════════════════════════════════


def with_fallback[C: StepContext](
    action: Callable[[C], Awaitable[ControlSignal | None]],
    step_name: str | None = None,
) -> Callable[[C], Awaitable[ControlSignal | None]]:
    """Wrap a suspendable step action so that input errors re-prompt.

    Returned signals pass through untouched. Any exception becomes
    ``Goto(step_name)``, where ``step_name`` defaults to the step that
    declared the suspension (the name before ``/suspended/``).
    """

    async def wrapped(context: C) -> ControlSignal | None:
        target = step_name or base_step_name(context.step.name)
        try:
            return await action(context)
        except Exception as exc:
            logger.debug(
                "Step action failed, falling back",
                step=context.step.full_name,
                target=target,
                error=str(exc),
            )
            return Goto(target)

    wrapped.__name__ = getattr(action, "__name__", "wrapped")
    wrapped.__qualname__ = getattr(action, "__qualname__", "wrapped")
    return wrapped


__all__ = (
    "CONTROL_SIGNALS",
    "ControlSignal",
    "GoNext",
    "GoPrevious",
    "Goto",
    "IgnoreEvent",
    "StartFlow",
    "StopFlow",
    "go_next",
    "go_previous",
    "goto",
    "ignore_event",
    "is_control_signal",
    "start_flow",
    "stop_flow",
    "with_fallback",
)
