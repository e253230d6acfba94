"""Default lifecycle listeners.

- persistence: every lifecycle event writes ``context.state`` to the store
- cleanup: finished flows delete the messages recorded in their flow data
- ``MessageIdRegistrar``: the inbound user message joins the flow's record
- ``ExecutionFailureLogger``: reports errors that escaped dispatch
- ``FlowExecutionListener``: one object with an ``on_*`` hook per event,
  attached to a bus through ``bridge_listeners``
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

from telechain.bus import MAX_PRIORITY, EventListener, FunctionListener, Listener
from telechain.events import (
    ExecutionCompleted,
    ExecutionFailed,
    ExecutionStarted,
    FlowCompleted,
    FlowEvent,
    FlowNotFound,
    FlowStarted,
    FlowTerminated,
    StepCompleted,
    StepEvent,
    StepFailed,
    StepNotFound,
    StepStarted,
    StepSuspended,
    StepTerminated,
)
from telechain.state import ChatState, UserMessageId
from telechain.store import ChatStateStore

logger = structlog.get_logger(__name__)

type StateEvent = (
    FlowNotFound | StepNotFound | FlowEvent | StepEvent | ExecutionStarted | ExecutionCompleted
)

PERSISTED_EVENTS: tuple[type, ...] = (
    FlowNotFound,
    StepNotFound,
    FlowStarted,
    FlowCompleted,
    FlowTerminated,
    StepStarted,
    StepCompleted,
    StepSuspended,
    StepTerminated,
    StepFailed,
    ExecutionStarted,
    ExecutionCompleted,
)


# ═══════════════════════════════════════════════════════════════════════════════
# Persistence
# ═══════════════════════════════════════════════════════════════════════════════


class StateStoreListener(EventListener[StateEvent]):
    """Writes the chat state after one kind of lifecycle event."""

    def __init__(self, event_type: type, store: ChatStateStore) -> None:
        self.event_type = event_type
        self.store = store

    async def on_event(self, event: StateEvent) -> None:
        state: ChatState = event.context.state
        logger.debug("Processing event", event=type(event).__name__, chat_id=state.chat_id)
        await self.store.store(state)


def store_listeners(store: ChatStateStore) -> list[Listener]:
    return [StateStoreListener(event_type, store) for event_type in PERSISTED_EVENTS]


# ═══════════════════════════════════════════════════════════════════════════════
# Cleanup
# ═══════════════════════════════════════════════════════════════════════════════


async def _clear_flow_messages(event: FlowCompleted | FlowTerminated) -> None:
    context = event.context
    flow_info = context.state.flow_info
    if flow_info is None:
        return
    message_ids = flow_info.data.all_messages()
    logger.debug(
        "Removing flow messages",
        chat_id=context.chat_id,
        messages=[str(mid) for mid in message_ids],
    )
    for mid in message_ids:
        await context.client.delete_message(context.chat_id, mid.value)
    flow_info.data.clear()


class FlowCompletionCleaner(EventListener[FlowCompleted]):
    event_type = FlowCompleted

    async def on_event(self, event: FlowCompleted) -> None:
        await _clear_flow_messages(event)


class FlowTerminationCleaner(EventListener[FlowTerminated]):
    event_type = FlowTerminated

    async def on_event(self, event: FlowTerminated) -> None:
        await _clear_flow_messages(event)


class MessageIdRegistrar(EventListener[ExecutionStarted]):
    event_type = ExecutionStarted

    async def on_event(self, event: ExecutionStarted) -> None:
        context = event.context
        flow_info = context.state.flow_info
        if context.message_id is None or flow_info is None:
            return
        flow_info.data.add(context.step.name, UserMessageId(context.message_id))
        logger.debug("User message registered to flow data", message_id=context.message_id)


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════


class ExecutionFailureLogger(EventListener[ExecutionFailed]):
    event_type = ExecutionFailed
    priority = MAX_PRIORITY

    async def on_event(self, event: ExecutionFailed) -> None:
        logger.error(
            "Unexpected exception for chat",
            chat_id=event.context.chat_id,
            reason=str(event.error),
            exc_info=event.error,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Bridge
# ═══════════════════════════════════════════════════════════════════════════════


class FlowExecutionListener:
    """Override the hooks you need; the rest do nothing."""

    async def on_execution_started(self, event: ExecutionStarted) -> None:
        pass

    async def on_execution_completed(self, event: ExecutionCompleted) -> None:
        pass

    async def on_flow_not_found(self, event: FlowNotFound) -> None:
        pass

    async def on_flow_started(self, event: FlowStarted) -> None:
        pass

    async def on_flow_completed(self, event: FlowCompleted) -> None:
        pass

    async def on_flow_terminated(self, event: FlowTerminated) -> None:
        pass

    async def on_step_not_found(self, event: StepNotFound) -> None:
        pass

    async def on_step_started(self, event: StepStarted) -> None:
        pass

    async def on_step_completed(self, event: StepCompleted) -> None:
        pass

    async def on_step_suspended(self, event: StepSuspended) -> None:
        pass

    async def on_step_terminated(self, event: StepTerminated) -> None:
        pass

    async def on_step_failed(self, event: StepFailed) -> None:
        pass


def bridge_listeners(listener: FlowExecutionListener) -> list[Listener]:
    """Bus listeners forwarding every lifecycle event to ``listener``'s hooks."""
    hooks: dict[type, Callable[..., Awaitable[None]]] = {
        ExecutionStarted: listener.on_execution_started,
        ExecutionCompleted: listener.on_execution_completed,
        FlowNotFound: listener.on_flow_not_found,
        FlowStarted: listener.on_flow_started,
        FlowCompleted: listener.on_flow_completed,
        FlowTerminated: listener.on_flow_terminated,
        StepNotFound: listener.on_step_not_found,
        StepStarted: listener.on_step_started,
        StepCompleted: listener.on_step_completed,
        StepSuspended: listener.on_step_suspended,
        StepTerminated: listener.on_step_terminated,
        StepFailed: listener.on_step_failed,
    }
    return [FunctionListener(event_type, hook) for event_type, hook in hooks.items()]


__all__ = (
    "ExecutionFailureLogger",
    "FlowCompletionCleaner",
    "FlowExecutionListener",
    "FlowTerminationCleaner",
    "MessageIdRegistrar",
    "PERSISTED_EVENTS",
    "StateStoreListener",
    "bridge_listeners",
    "store_listeners",
)
