"""Inbound chat contexts and the step contexts built from them.

The dispatch layer classifies each inbound interaction into a ``ChatContext``
kind. The executor converts it into the matching ``StepContext`` for the entry
step and uses ``ContinuationContext`` for every step after it.

Resumption-capable step contexts (``SuspendableStepContext``) are the only
ones that run the body of a suspendable step; any other context reaching a
suspendable step suspends it.

    ctx = TextContext(state=state, client=client, text="hi", message_id=7)
    step_ctx = ctx.to_step_context(step)     # TextStepContext
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from kungfu import Option

from telechain.naming import callback_value
from telechain.settings import RunnerSettings, get_settings

if TYPE_CHECKING:
    from telechain.client import ChatClient
    from telechain.graph import Flow, Step
    from telechain.state import ChatState


# ═══════════════════════════════════════════════════════════════════════════════
# Inbound contexts
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True, kw_only=True)
class ChatContext(ABC):
    state: ChatState
    client: ChatClient
    update: Any = None
    message_id: int | None = None
    settings: RunnerSettings = field(default_factory=get_settings, repr=False)

    resumable: ClassVar[bool] = False

    @property
    def chat_id(self) -> int:
        return self.state.chat_id

    @abstractmethod
    def to_step_context(self, step: Step) -> StepContext: ...


@dataclass(frozen=True, slots=True, kw_only=True)
class CommandContext(ChatContext):
    command: str
    args: tuple[str, ...] = ()

    def to_step_context(self, step: Step) -> CommandStepContext:
        return CommandStepContext(
            state=self.state,
            client=self.client,
            update=self.update,
            message_id=self.message_id,
            settings=self.settings,
            step=step,
            command=self.command,
            args=self.args,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class TextContext(ChatContext):
    text: str

    resumable: ClassVar[bool] = True

    def to_step_context(self, step: Step) -> TextStepContext:
        return TextStepContext(
            state=self.state,
            client=self.client,
            update=self.update,
            message_id=self.message_id,
            settings=self.settings,
            step=step,
            text=self.text,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class CallbackContext(ChatContext):
    data: str
    query_id: str | None = None

    resumable: ClassVar[bool] = True

    def to_step_context(self, step: Step) -> CallbackStepContext:
        return CallbackStepContext(
            state=self.state,
            client=self.client,
            update=self.update,
            message_id=self.message_id,
            settings=self.settings,
            step=step,
            data=self.data,
            query_id=self.query_id,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class PreCheckoutContext(ChatContext):
    query_id: str
    payload: str = ""
    currency: str = ""
    total_amount: int = 0

    resumable: ClassVar[bool] = True

    def to_step_context(self, step: Step) -> PreCheckoutStepContext:
        return PreCheckoutStepContext(
            state=self.state,
            client=self.client,
            update=self.update,
            message_id=self.message_id,
            settings=self.settings,
            step=step,
            query_id=self.query_id,
            payload=self.payload,
            currency=self.currency,
            total_amount=self.total_amount,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class PaymentContext(ChatContext):
    payload: str
    currency: str
    total_amount: int
    provider_charge_id: str | None = None

    resumable: ClassVar[bool] = True

    def to_step_context(self, step: Step) -> PaymentStepContext:
        return PaymentStepContext(
            state=self.state,
            client=self.client,
            update=self.update,
            message_id=self.message_id,
            settings=self.settings,
            step=step,
            payload=self.payload,
            currency=self.currency,
            total_amount=self.total_amount,
            provider_charge_id=self.provider_charge_id,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class EventContext(ChatContext):
    """Custom application event delivered to a chat."""

    event: Any

    resumable: ClassVar[bool] = True

    def to_step_context(self, step: Step) -> EventStepContext:
        return EventStepContext(
            state=self.state,
            client=self.client,
            update=self.update,
            message_id=self.message_id,
            settings=self.settings,
            step=step,
            event=self.event,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Step contexts
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True, kw_only=True)
class StepContext:
    """What a step action receives: the chat, the step and the trigger."""

    state: ChatState
    client: ChatClient
    step: Step = field(repr=False)
    update: Any = None
    message_id: int | None = None
    settings: RunnerSettings = field(default_factory=get_settings, repr=False)

    resumable: ClassVar[bool] = False

    @property
    def flow(self) -> Flow:
        return self.step.flow

    @property
    def chat_id(self) -> int:
        return self.state.chat_id


@dataclass(frozen=True, slots=True, kw_only=True)
class CommandStepContext(StepContext):
    command: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True, kw_only=True)
class ContinuationContext(StepContext):
    """Context for every step reached by the chain after the entry step."""

    @classmethod
    def following(cls, context: StepContext, step: Step) -> ContinuationContext:
        return cls(
            state=context.state,
            client=context.client,
            update=context.update,
            message_id=context.message_id,
            settings=context.settings,
            step=step,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class SuspendableStepContext(StepContext):
    """Marker base for contexts that resume a suspended step."""

    resumable: ClassVar[bool] = True


@dataclass(frozen=True, slots=True, kw_only=True)
class TextStepContext(SuspendableStepContext):
    text: str


@dataclass(frozen=True, slots=True, kw_only=True)
class CallbackStepContext(SuspendableStepContext):
    data: str
    query_id: str | None = None

    @property
    def value(self) -> str:
        """Selected value: the payload text after the first ``|``."""
        return callback_value(self.data).unwrap_or("")

    def value_option(self) -> Option[str]:
        return callback_value(self.data)


@dataclass(frozen=True, slots=True, kw_only=True)
class PreCheckoutStepContext(SuspendableStepContext):
    query_id: str
    payload: str = ""
    currency: str = ""
    total_amount: int = 0


@dataclass(frozen=True, slots=True, kw_only=True)
class PaymentStepContext(SuspendableStepContext):
    payload: str
    currency: str
    total_amount: int
    provider_charge_id: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class EventStepContext(SuspendableStepContext):
    event: Any


__all__ = (
    "CallbackContext",
    "CallbackStepContext",
    "ChatContext",
    "CommandContext",
    "CommandStepContext",
    "ContinuationContext",
    "EventContext",
    "EventStepContext",
    "PaymentContext",
    "PaymentStepContext",
    "PreCheckoutContext",
    "PreCheckoutStepContext",
    "StepContext",
    "SuspendableStepContext",
    "TextContext",
    "TextStepContext",
)
