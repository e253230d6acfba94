"""telechain — step-based chat flows for Telegram bots."""

from .builder import FlowBuilder, chat_flow
from .context import (
    CallbackStepContext,
    EventStepContext,
    PaymentStepContext,
    PreCheckoutStepContext,
    StepContext,
    TextStepContext,
)
from .graph import Flow, Menu, Step

from .signals import (
    ControlSignal,
    go_next,
    go_previous,
    goto,
    ignore_event,
    start_flow,
    stop_flow,
    with_fallback,
)

from .runner import FlowRunner

__all__ = (
    "FlowBuilder",
    "chat_flow",
    "StepContext",
    "TextStepContext",
    "CallbackStepContext",
    "PreCheckoutStepContext",
    "PaymentStepContext",
    "EventStepContext",
    "Flow",
    "Menu",
    "Step",
    "ControlSignal",
    "goto",
    "go_next",
    "go_previous",
    "start_flow",
    "stop_flow",
    "ignore_event",
    "with_fallback",
    "FlowRunner",
)
