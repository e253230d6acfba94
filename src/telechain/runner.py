"""FlowRunner — the dispatch boundary between a bot and the flow engine.

One runner owns a set of flows, the state store, the event bus and the
default listeners. The bot's update handlers classify each inbound update
and call the matching entry point:

    runner = FlowRunner([greet.build(), shop.build()], client=TelegrinderChatClient(api))
    await runner.setup_menu()

    @runner.on_error
    async def report(event: ExecutionFailed) -> None:
        ...

    await runner.command(chat_id, "greet", message_id=message.message_id)
    await runner.text(chat_id, message.text, message_id=message.message_id)
    await runner.callback(chat_id, query.data, query_id=query.id)

Every entry point fetches the chat's state from the store, stamps the runner
name into its metadata and dispatches. ``dispatch`` never raises: an error
escaping the executor (a misconfigured jump, a failing listener) is published
as a single ``ExecutionFailed`` event.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from telechain.bus import DEFAULT_PRIORITY, EventBus, FunctionListener, Listener
from telechain.client import ChatClient
from telechain.context import (
    CallbackContext,
    ChatContext,
    CommandContext,
    EventContext,
    PaymentContext,
    PreCheckoutContext,
    TextContext,
)
from telechain.events import ExecutionFailed
from telechain.executor import FlowExecutor
from telechain.graph import Flow
from telechain.listeners import (
    ExecutionFailureLogger,
    FlowCompletionCleaner,
    FlowTerminationCleaner,
    MessageIdRegistrar,
    store_listeners,
)
from telechain.naming import RUNNER_NAME_KEY
from telechain.registry import FlowRegistry
from telechain.result import ExecutionSnapshot
from telechain.settings import RunnerSettings, get_settings
from telechain.state import ChatState
from telechain.store import ChatStateStore, ExtractionContext, InMemoryChatStateStore

logger = structlog.get_logger(__name__)


def new_trace_id() -> str:
    return uuid.uuid4().hex


def normalize_command(command: str) -> str:
    """``"/greet@my_bot"`` -> ``"greet"``."""
    return command.removeprefix("/").split("@", 1)[0]


@dataclass
class FlowRunner:
    """Flow engine wired to a client, a store and a bus.

    Attributes:
        flows: flows served by this runner; ids double as commands.
        client: outbound messaging used by steps and cleanup listeners.
        store: chat state persistence (in-memory by default).
        bus: lifecycle event bus; default listeners are registered on it.
        settings: runner configuration (read from the environment by default).
    """

    flows: Iterable[Flow]
    client: ChatClient
    store: ChatStateStore = field(default_factory=InMemoryChatStateStore)
    bus: EventBus = field(default_factory=EventBus)
    settings: RunnerSettings = field(default_factory=get_settings)
    registry: FlowRegistry = field(init=False)
    executor: FlowExecutor = field(init=False)

    def __post_init__(self) -> None:
        self.flows = tuple(self.flows)
        self.registry = FlowRegistry.of(self.flows)
        self.executor = FlowExecutor(self.registry.flows, self.bus)
        self.bus.register(
            *store_listeners(self.store),
            FlowCompletionCleaner(),
            FlowTerminationCleaner(),
            MessageIdRegistrar(),
            ExecutionFailureLogger(),
        )
        logger.debug("Runner ready", runner=self.name, flows=sorted(self.registry.flows))

    @property
    def name(self) -> str:
        return self.settings.runner_name

    # --- listeners ---

    def register(self, *listeners: Listener) -> None:
        self.bus.register(*listeners)

    def unregister(self, *listeners: Listener) -> None:
        self.bus.unregister(*listeners)

    def on[E](
        self,
        event_type: type[E],
        priority: int = DEFAULT_PRIORITY,
    ) -> Callable[[Callable[[E], Awaitable[None]]], Callable[[E], Awaitable[None]]]:
        """Decorator subscribing a coroutine function to ``event_type``."""

        def decorator(func: Callable[[E], Awaitable[None]]) -> Callable[[E], Awaitable[None]]:
            self.bus.register(FunctionListener(event_type, func, priority))
            return func

        return decorator

    def on_error(self, func: Callable[[ExecutionFailed], Awaitable[None]]) -> Callable[[ExecutionFailed], Awaitable[None]]:
        return self.on(ExecutionFailed)(func)

    # --- bot setup ---

    async def setup_menu(self) -> None:
        """Publish the flows' menu entries as the bot's command list."""
        menus = self.registry.menus
        logger.debug("Setting up bot menu", commands=[menu.command for menu in menus])
        await self.client.set_commands(menus)

    # --- dispatch ---

    async def dispatch(self, context: ChatContext) -> list[ExecutionSnapshot]:
        """Run ``context`` through the executor.

        Returns the execution history; empty when nothing ran or when the
        execution failed (``ExecutionFailed`` is published instead).
        """
        with structlog.contextvars.bound_contextvars(
            trace_id=new_trace_id(),
            chat_id=context.chat_id,
            runner=self.name,
        ):
            logger.debug("Dispatching", context=type(context).__name__)
            try:
                return await self.executor.execute(context)
            except Exception as exc:
                await self.bus.publish(ExecutionFailed(context=context, error=exc))
                return []

    async def _state(self, chat_id: int, update: Any) -> ChatState:
        state = await self.store.extract(chat_id, ExtractionContext(runner_name=self.name, update=update))
        if state is None:
            state = ChatState(chat_id=chat_id)
        state.metadata[RUNNER_NAME_KEY] = self.name
        return state

    async def command(
        self,
        chat_id: int,
        command: str,
        *args: str,
        message_id: int | None = None,
        update: Any = None,
    ) -> list[ExecutionSnapshot]:
        state = await self._state(chat_id, update)
        return await self.dispatch(
            CommandContext(
                state=state,
                client=self.client,
                settings=self.settings,
                update=update,
                message_id=message_id,
                command=normalize_command(command),
                args=args,
            )
        )

    async def text(
        self,
        chat_id: int,
        text: str,
        *,
        message_id: int | None = None,
        update: Any = None,
    ) -> list[ExecutionSnapshot]:
        state = await self._state(chat_id, update)
        return await self.dispatch(
            TextContext(
                state=state,
                client=self.client,
                settings=self.settings,
                update=update,
                message_id=message_id,
                text=text,
            )
        )

    async def callback(
        self,
        chat_id: int,
        data: str,
        *,
        query_id: str | None = None,
        message_id: int | None = None,
        update: Any = None,
    ) -> list[ExecutionSnapshot]:
        state = await self._state(chat_id, update)
        return await self.dispatch(
            CallbackContext(
                state=state,
                client=self.client,
                settings=self.settings,
                update=update,
                message_id=message_id,
                data=data,
                query_id=query_id,
            )
        )

    async def pre_checkout(
        self,
        chat_id: int,
        query_id: str,
        *,
        payload: str = "",
        currency: str = "",
        total_amount: int = 0,
        update: Any = None,
    ) -> list[ExecutionSnapshot]:
        state = await self._state(chat_id, update)
        return await self.dispatch(
            PreCheckoutContext(
                state=state,
                client=self.client,
                settings=self.settings,
                update=update,
                query_id=query_id,
                payload=payload,
                currency=currency,
                total_amount=total_amount,
            )
        )

    async def payment(
        self,
        chat_id: int,
        *,
        payload: str,
        currency: str,
        total_amount: int,
        provider_charge_id: str | None = None,
        message_id: int | None = None,
        update: Any = None,
    ) -> list[ExecutionSnapshot]:
        state = await self._state(chat_id, update)
        return await self.dispatch(
            PaymentContext(
                state=state,
                client=self.client,
                settings=self.settings,
                update=update,
                message_id=message_id,
                payload=payload,
                currency=currency,
                total_amount=total_amount,
                provider_charge_id=provider_charge_id,
            )
        )

    async def event(self, chat_id: int, event: object, *, update: Any = None) -> list[ExecutionSnapshot]:
        """Deliver a custom application event to the chat's awaiting step."""
        state = await self._state(chat_id, update)
        return await self.dispatch(
            EventContext(state=state, client=self.client, settings=self.settings, update=update, event=event)
        )


__all__ = (
    "FlowRunner",
    "new_trace_id",
    "normalize_command",
)
