from __future__ import annotations

import logging

from telebot.async_telebot import AsyncTeleBot
from telebot.types import InlineKeyboardButton, InlineKeyboardMarkup

from application import services
from application.registry import ClientRegistry
from application.services import ExternalContext
from interfaces.telegram.callback_data import (
    encode_cheer_letter,
    encode_vote_choice,
    parse_cheer_letter,
    parse_vote_choice,
)


logger = logging.getLogger(__name__)

BUTTON_AMOUNTS = (1, 3)

HELP_TEXT = (
    "/login <email> <password>   - sign in (private chat only)\n"
    "/signup <email> <password>  - create an account\n"
    "/logout                     - sign out\n"
    "/moons                      - show your moons\n"
    "/name <pen name>            - change your pen name\n"
    "/env                        - show today's choices\n"
    "/day <n>                    - show the env of day <n>\n"
    "/vote <choice> <amount>     - spend moons on a choice\n"
    "/letter <subject> | <text>  - write a letter to Attar\n"
    "/letters                    - most supported letters\n"
    "/myletters                  - letters you wrote\n"
    "/today                      - letters you sent today\n"
    "/cheer <letter id> <amount> - send moons to a letter\n"
    "/timeline                   - Attar's history\n"
    "/memories                   - what Attar remembers\n"
    "/backstory                  - Attar's story so far\n"
    "/story                      - the newest line of that story\n"
)


def _build_external_context(user) -> ExternalContext:
    """Extract a channel-agnostic context object from a Telegram user."""

    name = " ".join(part for part in (user.first_name, user.last_name) if part)
    return ExternalContext(
        provider="telegram",
        provider_user_id=str(user.id),
        display_name=name,
    )


def _args(message) -> list[str]:
    return message.text.split()[1:]


def _parse_two_ints(args: list[str]) -> tuple[int, int]:
    if len(args) < 2:
        raise ValueError("Please give two numbers.")
    try:
        return int(args[0]), int(args[1])
    except ValueError:
        raise ValueError("Both values must be numbers.") from None


def create_telegram_bot(bot_token: str, registry: ClientRegistry) -> AsyncTeleBot:
    """
    Configure and return an AsyncTeleBot instance wired to the application layer.

    This module contains only Telegram-specific concerns: parsing Telegram
    messages/callbacks and mapping them to/from application services.
    """

    bot = AsyncTeleBot(bot_token)

    @bot.message_handler(commands=["start", "hello"])
    async def handle_start(message):
        await bot.send_message(
            message.chat.id,
            "Welcome to Attar, an evolving entity shaped by collective choices.\n"
            "Use /login in a private chat to connect your account.\n"
            "Type /help to see available commands.",
        )

    @bot.message_handler(commands=["help"])
    async def handle_help(message):
        await bot.send_message(message.chat.id, HELP_TEXT)

    @bot.message_handler(commands=["login", "signup"])
    async def handle_credentials(message):
        if message.chat.type != "private":
            await bot.delete_message(message.chat.id, message.message_id)
            await bot.send_message(message.chat.id, "Please send credentials in a private chat.")
            return

        args = _args(message)
        if len(args) < 2:
            await bot.send_message(message.chat.id, "Usage: /login <email> <password>")
            return

        external_ctx = _build_external_context(message.from_user)
        if message.text.startswith("/signup"):
            result = await services.signup(external_ctx, args[0], args[1], registry)
        else:
            result = await services.login(external_ctx, args[0], args[1], registry)
        await bot.send_message(message.chat.id, result.text)

    @bot.message_handler(commands=["logout"])
    async def handle_logout(message):
        result = await services.logout(_build_external_context(message.from_user), registry)
        await bot.send_message(message.chat.id, result.text)

    @bot.message_handler(commands=["moons"])
    async def handle_moons(message):
        result = await services.show_balance(_build_external_context(message.from_user), registry)
        await bot.send_message(message.chat.id, result.text)

    @bot.message_handler(commands=["name"])
    async def handle_name(message):
        pseudoname = " ".join(_args(message))
        result = await services.set_pseudoname(
            _build_external_context(message.from_user), pseudoname, registry
        )
        await bot.send_message(message.chat.id, result.text)

    @bot.message_handler(commands=["env"])
    async def handle_env(message):
        external_ctx = _build_external_context(message.from_user)
        result = await services.show_current_env(external_ctx, registry)
        if not result.success:
            await bot.send_message(message.chat.id, result.text)
            return

        client = registry.get(external_ctx.provider, external_ctx.provider_user_id)
        env = client.state.current_env if client is not None else None
        markup = InlineKeyboardMarkup(row_width=len(BUTTON_AMOUNTS))
        if env is not None:
            for number, choice in enumerate(env.choices, start=1):
                markup.row(
                    *[
                        InlineKeyboardButton(
                            f"{number}. {choice.title[:20]} +{amount}",
                            callback_data=encode_vote_choice(env.id, number, amount),
                        )
                        for amount in BUTTON_AMOUNTS
                    ]
                )
        await bot.send_message(message.chat.id, result.text, reply_markup=markup)

    @bot.message_handler(commands=["day"])
    async def handle_day(message):
        args = _args(message)
        if not args or not args[0].isdigit():
            await bot.send_message(message.chat.id, "Usage: /day <n>")
            return
        result = await services.show_env_day(
            _build_external_context(message.from_user), int(args[0]), registry
        )
        await bot.send_message(message.chat.id, result.text)

    @bot.message_handler(commands=["vote"])
    async def handle_vote(message):
        try:
            choice_number, amount = _parse_two_ints(_args(message))
        except ValueError as exc:
            await bot.send_message(message.chat.id, f"{exc} Usage: /vote <choice> <amount>")
            return

        result = await services.vote(
            _build_external_context(message.from_user), choice_number, amount, registry
        )
        await bot.send_message(message.chat.id, result.text)

    @bot.message_handler(commands=["letter"])
    async def handle_letter(message):
        body = message.text.partition(" ")[2]
        subject, sep, content = body.partition("|")
        if not sep:
            await bot.send_message(message.chat.id, "Usage: /letter <subject> | <text>")
            return

        result = await services.send_letter(
            _build_external_context(message.from_user), subject, content, registry
        )
        await bot.send_message(message.chat.id, result.text)

    @bot.message_handler(commands=["letters"])
    async def handle_letters(message):
        external_ctx = _build_external_context(message.from_user)
        result = await services.list_letters(external_ctx, registry)
        if not result.success:
            await bot.send_message(message.chat.id, result.text)
            return

        client = registry.get(external_ctx.provider, external_ctx.provider_user_id)
        markup = InlineKeyboardMarkup(row_width=len(BUTTON_AMOUNTS))
        if client is not None:
            for letter in client.state.letters.values():
                if not letter.published:
                    continue
                markup.row(
                    *[
                        InlineKeyboardButton(
                            f"{letter.subject[:20]} +{amount}",
                            callback_data=encode_cheer_letter(letter.id, amount),
                        )
                        for amount in BUTTON_AMOUNTS
                    ]
                )
        await bot.send_message(message.chat.id, result.text, reply_markup=markup)

    @bot.message_handler(commands=["myletters"])
    async def handle_my_letters(message):
        result = await services.my_letters(_build_external_context(message.from_user), registry)
        await bot.send_message(message.chat.id, result.text)

    @bot.message_handler(commands=["today"])
    async def handle_today(message):
        result = await services.letters_sent_today(_build_external_context(message.from_user), registry)
        await bot.send_message(message.chat.id, result.text)

    @bot.message_handler(commands=["cheer"])
    async def handle_cheer(message):
        args = _args(message)
        if len(args) < 2 or not args[1].isdigit():
            await bot.send_message(message.chat.id, "Usage: /cheer <letter id> <amount>")
            return

        result = await services.cheer_letter(
            _build_external_context(message.from_user), args[0], int(args[1]), registry
        )
        await bot.send_message(message.chat.id, result.text)

    @bot.message_handler(commands=["timeline"])
    async def handle_timeline(message):
        result = await services.show_timeline(_build_external_context(message.from_user), registry)
        await bot.send_message(message.chat.id, result.text)

    @bot.message_handler(commands=["memories"])
    async def handle_memories(message):
        result = await services.show_memories(_build_external_context(message.from_user), registry)
        await bot.send_message(message.chat.id, result.text)

    @bot.message_handler(commands=["backstory"])
    async def handle_backstory(message):
        result = await services.show_backstory(_build_external_context(message.from_user), registry)
        await bot.send_message(message.chat.id, result.text)

    @bot.message_handler(commands=["story"])
    async def handle_story(message):
        result = await services.show_latest_backstory(_build_external_context(message.from_user), registry)
        await bot.send_message(message.chat.id, result.text)

    @bot.callback_query_handler(func=lambda call: call.data.startswith("vote:"))
    async def handle_vote_button(call):
        """
        Handle a choice button under an env message.
        """

        try:
            env_id, choice_number, amount = parse_vote_choice(call.data)
        except ValueError:
            await bot.answer_callback_query(call.id, "Invalid selection.")
            return

        result = await services.vote(
            _build_external_context(call.from_user),
            choice_number,
            amount,
            registry,
            env_id=env_id,
        )
        await bot.answer_callback_query(call.id, result.text[:200])

    @bot.callback_query_handler(func=lambda call: call.data.startswith("cheer:"))
    async def handle_cheer_button(call):
        try:
            letter_id, amount = parse_cheer_letter(call.data)
        except ValueError:
            await bot.answer_callback_query(call.id, "Invalid selection.")
            return

        result = await services.cheer_letter(
            _build_external_context(call.from_user), letter_id, amount, registry
        )
        await bot.answer_callback_query(call.id, result.text[:200])

    return bot
