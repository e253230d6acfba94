"""Flow builder DSL.

Steps are declared in order; ``await_*`` declares a suspendable step that
parks the flow until the matching input arrives, named after the step it
follows:

    greet = chat_flow("greet", "Say hello")

    @greet.step("ask")
    async def ask(ctx: StepContext) -> None:
        await message(ctx, "What's your name?")

    @greet.await_text()
    async def reply(ctx: TextStepContext) -> None:
        await message(ctx, f"Hi, {ctx.text}!")

    flow = greet.build()   # steps: "ask", "ask/suspended/text"

Awaiting actions run under ``with_fallback`` by default: an exception sends
the chain back to the declaring step so its prompt is shown again.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from telechain.actions import confirm_checkout
from telechain.context import (
    CallbackStepContext,
    EventStepContext,
    PaymentStepContext,
    PreCheckoutStepContext,
    StepContext,
    TextStepContext,
)
from telechain.graph import Flow, Menu, StepAction, StepSpec
from telechain.naming import (
    CALLBACK_SUSPENDED_STEP_MARKER,
    PRE_CHECKOUT_SUSPENDED_STEP_MARKER,
    SUCCESSFUL_PAYMENT_SUSPENDED_STEP_MARKER,
    TEXT_SUSPENDED_STEP_MARKER,
    base_step_name,
    event_marker,
)
from telechain.signals import ControlSignal, IgnoreEvent, with_fallback

logger = structlog.get_logger(__name__)

type Action[C: StepContext] = Callable[[C], Awaitable[ControlSignal | None]]


class FlowBuilder:
    def __init__(self, id: str, menu: Menu | None = None) -> None:
        self.id = id
        self.menu = menu
        self._specs: list[StepSpec] = []

    @property
    def last_step(self) -> StepSpec | None:
        return self._specs[-1] if self._specs else None

    def build(self) -> Flow:
        return Flow(self.id, self._specs, self.menu)

    def _add(self, spec: StepSpec) -> StepSpec:
        if any(existing.name == spec.name for existing in self._specs):
            raise ValueError(f"Step [{spec.name}] is already declared in flow [{self.id}].")
        self._specs.append(spec)
        return spec

    # --- plain steps ---

    def step(self, name: str, action: StepAction | None = None) -> Any:
        """Declare a step; without ``action`` returns a decorator."""
        if action is not None:
            return self._add(StepSpec(name, action))

        def decorator(fn: StepAction) -> StepAction:
            self._add(StepSpec(name, fn))
            return fn

        return decorator

    # --- suspended steps ---

    def _await[C: StepContext](
        self,
        marker: str,
        action: Action[C],
        *,
        after: str | None,
        fallback: bool,
    ) -> StepSpec:
        previous = self._resolve(after)
        declaring = base_step_name(previous.name)
        wrapped = with_fallback(action, declaring) if fallback else action
        return self._add(StepSpec(f"{declaring}{marker}", wrapped, suspendable=True))  # type: ignore[arg-type]

    def _resolve(self, after: str | None) -> StepSpec:
        if after is None:
            if self.last_step is None:
                raise ValueError("No previous step has been added to the await processing.")
            return self.last_step
        for spec in self._specs:
            if spec.name == after:
                return spec
        raise ValueError(f"Step [{after}] is not declared in flow [{self.id}].")

    def _awaiting[C: StepContext](
        self,
        marker: str,
        action: Action[C] | None,
        after: str | None,
        fallback: bool,
    ) -> Any:
        if action is not None:
            return self._await(marker, action, after=after, fallback=fallback)

        def decorator(fn: Action[C]) -> Action[C]:
            self._await(marker, fn, after=after, fallback=fallback)
            return fn

        return decorator

    def await_text(
        self,
        action: Action[TextStepContext] | None = None,
        *,
        after: str | None = None,
        fallback: bool = True,
    ) -> Any:
        return self._awaiting(TEXT_SUSPENDED_STEP_MARKER, action, after, fallback)

    def await_callback(
        self,
        action: Action[CallbackStepContext] | None = None,
        *,
        after: str | None = None,
        fallback: bool = True,
    ) -> Any:
        return self._awaiting(CALLBACK_SUSPENDED_STEP_MARKER, action, after, fallback)

    def await_pre_checkout(
        self,
        action: Action[PreCheckoutStepContext] | None = None,
        *,
        after: str | None = None,
        fallback: bool = True,
    ) -> Any:
        return self._awaiting(PRE_CHECKOUT_SUSPENDED_STEP_MARKER, action, after, fallback)

    def await_payment(
        self,
        action: Action[PaymentStepContext] | None = None,
        *,
        after: str | None = None,
        fallback: bool = True,
    ) -> Any:
        """Await a successful payment.

        Telegram asks for a pre-checkout answer before every payment; when the
        awaited step is not a pre-checkout step, one that simply confirms the
        checkout is declared first.
        """
        previous = self._resolve(after)
        if not previous.name.endswith(PRE_CHECKOUT_SUSPENDED_STEP_MARKER):
            previous = self._await(
                PRE_CHECKOUT_SUSPENDED_STEP_MARKER,
                _auto_confirm,
                after=previous.name,
                fallback=fallback,
            )
        return self._awaiting(SUCCESSFUL_PAYMENT_SUSPENDED_STEP_MARKER, action, previous.name, fallback)

    def await_event[E](
        self,
        event_type: type[E],
        action: Action[EventStepContext] | None = None,
        *,
        after: str | None = None,
        fallback: bool = True,
    ) -> Any:
        """Await a custom application event of ``event_type``."""
        marker = event_marker(event_type)

        def guarded(fn: Action[EventStepContext]) -> Action[EventStepContext]:
            async def run(ctx: EventStepContext) -> ControlSignal | None:
                if not isinstance(ctx.event, event_type):
                    logger.debug("Event type mismatch", expected=event_type.__name__, got=type(ctx.event).__name__)
                    return IgnoreEvent(ctx.event)
                return await fn(ctx)

            return run

        if action is not None:
            return self._await(marker, guarded(action), after=after, fallback=fallback)

        def decorator(fn: Action[EventStepContext]) -> Action[EventStepContext]:
            self._await(marker, guarded(fn), after=after, fallback=fallback)
            return fn

        return decorator


async def _auto_confirm(ctx: PreCheckoutStepContext) -> None:
    await confirm_checkout(ctx)


def chat_flow(
    name: str,
    description: str | None = None,
    order: int = 0,
    menu: Menu | None = None,
) -> FlowBuilder:
    """Builder for a flow listed in the bot menu under ``/name``."""
    return FlowBuilder(name, menu or Menu(command=name, description=description or name, order=order))


__all__ = (
    "Action",
    "FlowBuilder",
    "chat_flow",
)
