"""quickstart — a telechain bot with one text flow and one button flow.

    BOT_TOKEN=... uv run python examples/quickstart.py
"""

from __future__ import annotations

from telegrinder.bot.cute_types.callback_query import CallbackQueryCute
from telegrinder.bot.cute_types.message import MessageCute

from telechain import CallbackStepContext, FlowRunner, StepContext, TextStepContext, chat_flow, goto
from telechain.actions import message, options, short_message
from telechain.client import TelegrinderChatClient
from telechain.settings import get_settings, setup_logging

# ── Flow: ask for a name ─────────────────────────────────────────────────────

greet = chat_flow("greet", "Say hello", order=1)


@greet.step("ask")
async def ask(ctx: StepContext) -> None:
    await message(ctx, "What's your name?", parse_mode=None)


@greet.await_text()
async def reply(ctx: TextStepContext) -> object:
    if not ctx.text.strip():
        return goto("ask")
    await short_message(ctx, f"Hi, {ctx.text}!", parse_mode=None)
    return None


# ── Flow: pick a colour ──────────────────────────────────────────────────────

colour = chat_flow("colour", "Pick a colour", order=2)


@colour.step("pick")
async def pick(ctx: StepContext) -> None:
    await options(ctx, "Favourite colour?", [[("Red", "red"), ("Blue", "blue")]], parse_mode=None)


@colour.await_callback()
async def picked(ctx: CallbackStepContext) -> None:
    await short_message(ctx, f"{ctx.value.title()} it is.", parse_mode=None)


# ── Run ──────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import os

    from telegrinder import API, Telegrinder, Token

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)

    token = os.environ.get("BOT_TOKEN", "")
    if not token:
        print("Set BOT_TOKEN=... to run")
    else:
        api = API(Token(token))
        bot = Telegrinder(api)
        runner = FlowRunner([greet.build(), colour.build()], client=TelegrinderChatClient(api))

        @bot.on.message()
        async def on_message(msg: MessageCute) -> None:
            text = msg.text.unwrap_or("")
            if text.startswith("/"):
                command, *args = text.split()
                await runner.command(msg.chat_id, command, *args, message_id=msg.message_id, update=msg)
            else:
                await runner.text(msg.chat_id, text, message_id=msg.message_id, update=msg)

        @bot.on.callback_query()
        async def on_callback(cb: CallbackQueryCute) -> None:
            chat_id = cb.chat_id.unwrap_or_none()
            if chat_id is not None:
                await runner.callback(chat_id, cb.data.unwrap_or(""), query_id=cb.id, update=cb)

        bot.lifespan.on_startup(runner.setup_menu)
        bot.run_forever()
