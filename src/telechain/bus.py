"""In-process event bus — typed listeners, priority ordered, awaited in turn.

    bus = EventBus()
    bus.register(FunctionListener(StepFailed, report))
    await bus.publish(StepFailed(context=ctx, error=exc))

Delivery order for one event: higher ``priority`` first, registration order
as tiebreak. Each listener is awaited before the next one runs, and a
listener error propagates to the publisher.
"""

from __future__ import annotations

import itertools
import sys
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_PRIORITY = 0
MAX_PRIORITY = sys.maxsize


@runtime_checkable
class Listener(Protocol):
    event_type: type
    priority: int

    async def on_event(self, event: Any) -> None: ...


class EventListener[E](ABC):
    """Base class for listeners declaring their event type as a class attribute."""

    event_type: type
    priority: int = DEFAULT_PRIORITY

    @abstractmethod
    async def on_event(self, event: E) -> None: ...


@dataclass(frozen=True, slots=True, eq=False)
class FunctionListener[E]:
    """Adapts a coroutine function into a listener."""

    event_type: type[E]
    func: Callable[[E], Awaitable[None]]
    priority: int = DEFAULT_PRIORITY

    async def on_event(self, event: E) -> None:
        await self.func(event)


@dataclass(slots=True)
class EventBus:
    _entries: list[tuple[int, Listener]] = field(default_factory=list)
    _counter: itertools.count[int] = field(default_factory=itertools.count)

    def register(self, *listeners: Listener) -> None:
        for listener in listeners:
            self._entries.append((next(self._counter), listener))
            logger.debug(
                "Listener registered",
                listener=type(listener).__name__,
                event_type=listener.event_type.__name__,
                priority=listener.priority,
            )

    def unregister(self, *listeners: Listener) -> None:
        targets = {id(listener) for listener in listeners}
        self._entries = [(seq, lst) for seq, lst in self._entries if id(lst) not in targets]

    def listeners_for(self, event: object) -> list[Listener]:
        matching = [(seq, lst) for seq, lst in self._entries if isinstance(event, lst.event_type)]
        matching.sort(key=lambda entry: (-entry[1].priority, entry[0]))
        return [lst for _, lst in matching]

    async def publish(self, event: object) -> None:
        for listener in self.listeners_for(event):
            await listener.on_event(event)

    def __len__(self) -> int:
        return len(self._entries)


__all__ = (
    "DEFAULT_PRIORITY",
    "EventBus",
    "EventListener",
    "FunctionListener",
    "Listener",
    "MAX_PRIORITY",
)
