"""Helpers used inside step actions.

They send through ``context.client`` and record the ids of sent messages in
the flow data under the current step, so cleanup listeners can delete them
once the flow completes or terminates.

    async def pick(ctx: StepContext) -> None:
        await options(ctx, "Favourite colour?", [[("Red", "red"), ("Blue", "blue")]])
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence

import structlog

from telechain.client import Button
from telechain.context import PreCheckoutStepContext, StepContext
from telechain.naming import CALLBACK_SUSPENDED_STEP_MARKER, base_step_name, callback_payload, full_name
from telechain.state import MessageId, ServerMessageId

logger = structlog.get_logger(__name__)

type Choice = tuple[str, object]
"""(label, value) pair shown as an inline button."""

_DEFAULT = object()


def _parse_mode(context: StepContext, parse_mode: object) -> str | None:
    if parse_mode is _DEFAULT:
        return context.settings.parse_mode
    return parse_mode if isinstance(parse_mode, str) else None


# ═══════════════════════════════════════════════════════════════════════════════
# Message registry
# ═══════════════════════════════════════════════════════════════════════════════


def register_message(context: StepContext, message_id: MessageId, step_name: str | None = None) -> None:
    """Record ``message_id`` for cleanup; no-op outside an active flow."""
    flow_info = context.state.flow_info
    if flow_info is None:
        return
    name = step_name or context.step.name
    flow_info.data.add(name, message_id)
    logger.debug(
        "Message registered",
        message_id=str(message_id),
        step=name,
        registered=[str(mid) for mid in flow_info.data.messages(name)],
    )


async def _delete(context: StepContext, message_ids: Iterable[MessageId]) -> None:
    for mid in message_ids:
        await context.client.delete_message(context.chat_id, mid.value)
        logger.debug("Message deleted", message_id=str(mid), chat_id=context.chat_id)


async def clear_step_messages(
    context: StepContext,
    step_name: str | None = None,
    kind: type[MessageId] | None = None,
) -> None:
    """Delete messages recorded for a step, optionally only one id kind."""
    flow_info = context.state.flow_info
    if flow_info is None:
        return
    name = step_name or context.step.name
    recorded = flow_info.data.discard(name)
    doomed = [mid for mid in recorded if kind is None or isinstance(mid, kind)]
    kept = [mid for mid in recorded if mid not in doomed]
    await _delete(context, doomed)
    for mid in kept:
        flow_info.data.add(name, mid)


async def clear_previous_step_messages(context: StepContext, kind: type[MessageId] | None = None) -> None:
    previous = context.step.previous
    if previous is not None:
        await clear_step_messages(context, previous.name, kind)


async def clear_flow_messages(context: StepContext) -> None:
    flow_info = context.state.flow_info
    if flow_info is None:
        return
    await _delete(context, flow_info.data.all_messages())
    flow_info.data.clear()


# ═══════════════════════════════════════════════════════════════════════════════
# Sending
# ═══════════════════════════════════════════════════════════════════════════════


async def message(
    context: StepContext,
    text: str,
    *,
    parse_mode: str | None | object = _DEFAULT,
    save: bool = True,
    buttons: Sequence[Sequence[Button]] = (),
) -> int:
    logger.debug("Sending text", chat_id=context.chat_id, text=text)
    mid = await context.client.send_message(
        context.chat_id,
        text,
        parse_mode=_parse_mode(context, parse_mode),
        buttons=buttons,
    )
    if save:
        register_message(context, ServerMessageId(mid))
    return mid


async def short_message(
    context: StepContext,
    text: str,
    *,
    lifetime: float | None = None,
    parse_mode: str | None | object = _DEFAULT,
) -> int:
    """Send ``text``, keep it visible for ``lifetime`` seconds, then delete it."""
    mid = await message(context, text, parse_mode=parse_mode, save=False)
    await asyncio.sleep(context.settings.short_message_lifetime if lifetime is None else lifetime)
    await context.client.delete_message(context.chat_id, mid)
    return mid


def callback_prefix(context: StepContext) -> str:
    """Payload prefix routing a button press back to the awaiting step.

    The target is always the callback suspension of the declaring step, also
    when the buttons are sent from one of its other suspended steps.
    """
    step = context.step
    return full_name(step.flow.id, base_step_name(step.name)) + CALLBACK_SUSPENDED_STEP_MARKER


async def options(
    context: StepContext,
    question: str,
    choices: Sequence[Sequence[Choice]],
    *,
    parse_mode: str | None | object = _DEFAULT,
    save: bool = True,
) -> int:
    """Send ``question`` with one inline button per ``(label, value)`` choice."""
    prefix = callback_prefix(context)
    buttons = [[Button(text=label, callback_data=callback_payload(prefix, value)) for label, value in row] for row in choices]
    logger.debug(
        "Sending options",
        chat_id=context.chat_id,
        values=[str(value) for row in choices for _, value in row],
    )
    return await message(context, question, parse_mode=parse_mode, save=save, buttons=buttons)


async def send_invoice(
    context: StepContext,
    *,
    payload: object,
    title: str,
    description: str,
    amount: int,
    currency: str,
    provider_token: str,
    save: bool = True,
) -> int:
    """Send an invoice; ``amount`` is in minor units (cents)."""
    logger.debug("Sending invoice", chat_id=context.chat_id, amount=amount, currency=currency)
    mid = await context.client.send_invoice(
        context.chat_id,
        title=title,
        description=description,
        payload=str(payload),
        currency=currency,
        amount=amount,
        provider_token=provider_token,
    )
    if save:
        register_message(context, ServerMessageId(mid))
    return mid


async def confirm_checkout(context: PreCheckoutStepContext) -> None:
    await context.client.answer_pre_checkout(context.query_id, ok=True)


async def reject_checkout(context: PreCheckoutStepContext, error_message: str) -> None:
    await context.client.answer_pre_checkout(context.query_id, ok=False, error_message=error_message)


__all__ = (
    "Choice",
    "callback_prefix",
    "clear_flow_messages",
    "clear_previous_step_messages",
    "clear_step_messages",
    "confirm_checkout",
    "message",
    "options",
    "register_message",
    "reject_checkout",
    "send_invoice",
    "short_message",
)
