from __future__ import annotations

import logging
from typing import Dict

import discord
from discord.ext import commands

from application import services
from application.registry import ClientRegistry
from application.services import ExternalContext, OperationResult


logger = logging.getLogger(__name__)

# Reacting with a keycap on an env message spends this many moons.
REACTION_VOTE_AMOUNT = 1
NUMBER_EMOJIS = [f"{n}\N{VARIATION SELECTOR-16}\N{COMBINING ENCLOSING KEYCAP}" for n in range(1, 10)]


def _build_external_context(user: discord.abc.User) -> ExternalContext:
    """Create an `ExternalContext` from a Discord user."""

    return ExternalContext(
        provider="discord",
        provider_user_id=str(user.id),
        display_name=user.display_name or user.name,
    )


async def _reply(ctx: commands.Context, result: OperationResult) -> None:
    await ctx.send(result.text)


def create_discord_bot(registry: ClientRegistry) -> commands.Bot:
    """
    Configure and return a Discord bot wired to the application layer:
    login/logout, balance, the current env and its vote, letters, the
    timeline and Attar's memories and backstory.
    """

    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.reactions = True

    # Disable the default help command so we can provide our own `!help`.
    bot = commands.Bot(command_prefix="!", intents=intents, help_command=None)

    # Env messages that accept reaction votes, keyed by message ID.
    vote_messages: Dict[int, str] = {}

    @bot.event
    async def on_ready():
        logger.info("Discord bot logged in as %s (id=%s)", bot.user, bot.user.id)

    @bot.command(name="start")
    async def start_cmd(ctx: commands.Context):
        await ctx.send(
            "Welcome to Attar, an evolving entity shaped by collective choices.\n"
            "DM me !login <email> <password> to connect your account.\n"
            "Type !help to see available commands."
        )

    @bot.command(name="help")
    async def help_cmd(ctx: commands.Context):
        await ctx.send(
            "!login <email> <password>    - sign in (DM only)\n"
            "!signup <email> <password>   - create an account (DM only)\n"
            "!logout                      - sign out\n"
            "!moons                       - show your moons\n"
            "!name <pen name>             - change your pen name\n"
            "!env                         - show today's choices\n"
            "!day <n>                     - show the env of day <n>\n"
            "!vote <choice> <amount>      - spend moons on a choice\n"
            "!letter <subject> | <text>   - write a letter to Attar\n"
            "!letters                     - most supported letters\n"
            "!myletters                   - letters you wrote\n"
            "!today                       - letters you sent today\n"
            "!cheer <letter id> <amount>  - send moons to a letter\n"
            "!timeline                    - Attar's history\n"
            "!memories                    - what Attar remembers\n"
            "!backstory                   - Attar's story so far\n"
            "!story                       - the newest line of that story\n"
        )

    async def _dm_only(ctx: commands.Context) -> bool:
        if ctx.guild is None:
            return True
        try:
            await ctx.message.delete()
        except discord.HTTPException:
            logger.warning("Could not delete a credentials message in %s", ctx.guild)
        await ctx.send("Please send credentials in a direct message.")
        return False

    @bot.command(name="login")
    async def login_cmd(ctx: commands.Context, email: str, password: str):
        if not await _dm_only(ctx):
            return
        result = await services.login(_build_external_context(ctx.author), email, password, registry)
        await _reply(ctx, result)

    @bot.command(name="signup")
    async def signup_cmd(ctx: commands.Context, email: str, password: str):
        if not await _dm_only(ctx):
            return
        result = await services.signup(_build_external_context(ctx.author), email, password, registry)
        await _reply(ctx, result)

    @bot.command(name="logout")
    async def logout_cmd(ctx: commands.Context):
        await _reply(ctx, await services.logout(_build_external_context(ctx.author), registry))

    @bot.command(name="moons")
    async def moons_cmd(ctx: commands.Context):
        await _reply(ctx, await services.show_balance(_build_external_context(ctx.author), registry))

    @bot.command(name="name")
    async def name_cmd(ctx: commands.Context, *, pseudoname: str):
        result = await services.set_pseudoname(_build_external_context(ctx.author), pseudoname, registry)
        await _reply(ctx, result)

    @bot.command(name="env")
    async def env_cmd(ctx: commands.Context):
        external_ctx = _build_external_context(ctx.author)
        result = await services.show_current_env(external_ctx, registry)
        message = await ctx.send(result.text)
        if not result.success:
            return

        client = registry.get(external_ctx.provider, external_ctx.provider_user_id)
        env = client.state.current_env if client is not None else None
        if env is None:
            return
        vote_messages[message.id] = env.id
        for emoji in NUMBER_EMOJIS[: len(env.choices)]:
            await message.add_reaction(emoji)

    @bot.command(name="day")
    async def day_cmd(ctx: commands.Context, day: int):
        await _reply(ctx, await services.show_env_day(_build_external_context(ctx.author), day, registry))

    @bot.command(name="vote")
    async def vote_cmd(ctx: commands.Context, choice: int, amount: int):
        result = await services.vote(_build_external_context(ctx.author), choice, amount, registry)
        await _reply(ctx, result)

    @bot.command(name="letter")
    async def letter_cmd(ctx: commands.Context, *, body: str):
        subject, sep, content = body.partition("|")
        if not sep:
            await ctx.send("Usage: !letter <subject> | <text>")
            return
        result = await services.send_letter(_build_external_context(ctx.author), subject, content, registry)
        await _reply(ctx, result)

    @bot.command(name="letters")
    async def letters_cmd(ctx: commands.Context):
        await _reply(ctx, await services.list_letters(_build_external_context(ctx.author), registry))

    @bot.command(name="myletters")
    async def my_letters_cmd(ctx: commands.Context):
        await _reply(ctx, await services.my_letters(_build_external_context(ctx.author), registry))

    @bot.command(name="today")
    async def today_cmd(ctx: commands.Context):
        await _reply(ctx, await services.letters_sent_today(_build_external_context(ctx.author), registry))

    @bot.command(name="cheer")
    async def cheer_cmd(ctx: commands.Context, letter_id: str, amount: int):
        result = await services.cheer_letter(_build_external_context(ctx.author), letter_id, amount, registry)
        await _reply(ctx, result)

    @bot.command(name="timeline")
    async def timeline_cmd(ctx: commands.Context):
        await _reply(ctx, await services.show_timeline(_build_external_context(ctx.author), registry))

    @bot.command(name="memories")
    async def memories_cmd(ctx: commands.Context):
        await _reply(ctx, await services.show_memories(_build_external_context(ctx.author), registry))

    @bot.command(name="backstory")
    async def backstory_cmd(ctx: commands.Context):
        await _reply(ctx, await services.show_backstory(_build_external_context(ctx.author), registry))

    @bot.command(name="story")
    async def story_cmd(ctx: commands.Context):
        await _reply(ctx, await services.show_latest_backstory(_build_external_context(ctx.author), registry))

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
            await ctx.send(f"{error}. Type !help for usage.")
            return
        if isinstance(error, commands.CommandNotFound):
            return
        logger.error("Command %s failed", ctx.command, exc_info=error)
        await ctx.send("Something went wrong. Please try again.")

    @bot.event
    async def on_reaction_add(reaction: discord.Reaction, user: discord.abc.User):
        # Ignore bot reactions and reactions not on tracked messages.
        if user.bot:
            return

        env_id = vote_messages.get(reaction.message.id)
        if env_id is None:
            return

        emoji = str(reaction.emoji)
        if emoji not in NUMBER_EMOJIS:
            return

        choice_number = NUMBER_EMOJIS.index(emoji) + 1
        result = await services.vote(
            _build_external_context(user),
            choice_number,
            REACTION_VOTE_AMOUNT,
            registry,
            env_id=env_id,
        )
        await reaction.message.channel.send(result.text)

    return bot
