"""Outbound messaging capability used by step actions and cleanup listeners.

The engine never talks to the chat platform itself. Step actions and
listeners go through a ``ChatClient``; ``TelegrinderChatClient`` is the
implementation backed by ``telegrinder.API``.

    client = TelegrinderChatClient(API(Token.from_env()))
    mid = await client.send_message(42, "Pick one", buttons=[[Button("Red", "greet/pick|red")]])
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import structlog
from kungfu import Error, Ok, Result
from telegrinder import API, APIError
from telegrinder.tools.keyboard import InlineButton, InlineKeyboard
from telegrinder.types.objects import BotCommand, LabeledPrice

from telechain.graph import Menu

logger = structlog.get_logger(__name__)


class ChatClientError(Exception):
    """The chat platform rejected a request."""

    def __init__(self, method: str, reason: str) -> None:
        super().__init__(f"{method} failed: {reason}")
        self.method = method
        self.reason = reason


@dataclass(frozen=True, slots=True)
class Button:
    """Inline keyboard button carrying a callback payload."""

    text: str
    callback_data: str


class ChatClient(Protocol):
    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        parse_mode: str | None = None,
        buttons: Sequence[Sequence[Button]] = (),
    ) -> int: ...

    async def delete_message(self, chat_id: int, message_id: int) -> None: ...

    async def answer_pre_checkout(
        self,
        query_id: str,
        *,
        ok: bool,
        error_message: str | None = None,
    ) -> None: ...

    async def send_invoice(
        self,
        chat_id: int,
        *,
        title: str,
        description: str,
        payload: str,
        currency: str,
        amount: int,
        provider_token: str,
    ) -> int: ...

    async def set_commands(self, menus: Sequence[Menu]) -> None: ...


def _keyboard(buttons: Sequence[Sequence[Button]]) -> InlineKeyboard | None:
    if not buttons:
        return None
    kb = InlineKeyboard()
    for row in buttons:
        for button in row:
            kb.add(InlineButton(text=button.text, callback_data=button.callback_data))
        kb.row()
    return kb


def _unwrap[T](method: str, result: Result[T, APIError]) -> T:
    match result:
        case Ok(value):
            return value
        case Error(err):
            logger.warning("Chat API call failed", method=method, error=str(err))
            raise ChatClientError(method, str(err)) from err


class TelegrinderChatClient:
    def __init__(self, api: API) -> None:
        self.api = api

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        parse_mode: str | None = None,
        buttons: Sequence[Sequence[Button]] = (),
    ) -> int:
        kb = _keyboard(buttons)
        result = await self.api.send_message(
            chat_id=chat_id,
            text=text,
            parse_mode=parse_mode,
            reply_markup=kb.get_markup() if kb is not None else None,
        )
        return _unwrap("send_message", result).message_id

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        _unwrap("delete_message", await self.api.delete_message(chat_id=chat_id, message_id=message_id))

    async def answer_pre_checkout(
        self,
        query_id: str,
        *,
        ok: bool,
        error_message: str | None = None,
    ) -> None:
        result = await self.api.answer_pre_checkout_query(
            pre_checkout_query_id=query_id,
            ok=ok,
            error_message=error_message,
        )
        _unwrap("answer_pre_checkout_query", result)

    async def send_invoice(
        self,
        chat_id: int,
        *,
        title: str,
        description: str,
        payload: str,
        currency: str,
        amount: int,
        provider_token: str,
    ) -> int:
        result = await self.api.send_invoice(
            chat_id=chat_id,
            title=title,
            description=description,
            payload=payload,
            currency=currency,
            prices=[LabeledPrice(label=f"{currency} {amount / 100:g}", amount=amount)],
            provider_token=provider_token,
            start_parameter=payload,
            is_flexible=False,
        )
        return _unwrap("send_invoice", result).message_id

    async def set_commands(self, menus: Sequence[Menu]) -> None:
        commands = [BotCommand(command=menu.command, description=menu.description) for menu in menus]
        _unwrap("set_my_commands", await self.api.set_my_commands(commands=commands))


__all__ = (
    "Button",
    "ChatClient",
    "ChatClientError",
    "TelegrinderChatClient",
)
