# Discord driver (discord.py gateway client).
#
# Receive: a discord.Client subclass forwards every gateway event it
#          dispatches into the driver's listener table; normalizers() maps
#          each supported event to a canonical Event.
# Send:    messages via channel.send / PartialMessage.edit, interactions via
#          interaction.response and edit_original_response.
#          discord.HTTPException and friends surface as TransportError.
#
# Config keys (under "discord"):
#   token              – Bot token (required)
#   client_id          – Application ID (optional, informational)
#   client_secret      – OAuth2 secret (optional, masked in logs)
#   avatar_size        – Avatar URL size, power of two 16..4096 (default 128)
#   privileged_intents – Also request the members and presences intents,
#                        needed for member join/leave and presence events
#                        (default false)

from contextlib import contextmanager
from typing import Any

import discord
from pydantic import field_validator

import services.logger as log
from services.config_schema import CoercedBool, _DriverConfig
from services.error import TransportError
from services.message import (
    Event,
    EventKind,
    EventScope,
    InteractionCallback,
    InteractionTarget,
    MessageCallback,
    MessageTarget,
    Platform,
    User,
)
from drivers import BaseDriver

_AVATAR_SIZE = 128


class DiscordConfig(_DriverConfig):
    token:              str
    client_id:          str         = ""
    client_secret:      str         = ""
    avatar_size:        int         = _AVATAR_SIZE
    privileged_intents: CoercedBool = False

    @field_validator("avatar_size")
    @classmethod
    def _power_of_two(cls, v: int) -> int:
        if not 16 <= v <= 4096 or v & (v - 1):
            raise ValueError("avatar_size must be a power of two between 16 and 4096")
        return v


l = log.get_logger()


def normalize_user(user, size: int = _AVATAR_SIZE) -> User:
    """discord.User / discord.Member → User.  ``None`` → ``User()``."""
    if user is None:
        return User()
    return User(
        id=str(user.id),
        username=user.name,
        avatar_url=str(user.display_avatar.with_size(size).url),
    )


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def flatten_options(options: list[dict] | None) -> dict[str, str]:
    """Flatten slash-command options into ``{name: str(value)}``.

    Options without a value are skipped; sub-command options are walked
    recursively.  A repeated name keeps the last value.
    """
    fields: dict[str, str] = {}
    for opt in options or ():
        if opt.get("options"):
            fields.update(flatten_options(opt["options"]))
        value = opt.get("value")
        if value is not None:
            fields[opt["name"]] = _stringify(value)
    return fields


def _id(obj) -> str:
    return str(obj.id) if obj is not None else ""


def _opt_id(value: int | None) -> str:
    return str(value) if value is not None else ""


def _snowflake(value: str, what: str) -> int:
    """Discord IDs are numeric; anything else never reaches the API."""
    try:
        return int(value)
    except (TypeError, ValueError):
        raise TransportError(Platform.DISCORD.value, f"invalid {what} id: {value!r}") from None


@contextmanager
def _transport(action: str):
    try:
        yield
    except (discord.HTTPException, discord.ClientException) as exc:
        raise TransportError(Platform.DISCORD.value, f"{action} failed: {exc}") from exc


class _Client(discord.Client):
    """Forwards every dispatched gateway event to the owning driver."""

    def __init__(self, driver: "DiscordDriver", **options):
        super().__init__(**options)
        self._driver = driver

    def dispatch(self, event: str, /, *args: Any, **kwargs: Any) -> None:
        super().dispatch(event, *args, **kwargs)
        self._driver._dispatch(event, *args)

    async def on_ready(self):
        l.info(f"Discord logged in as {self.user}")


class DiscordDriver(BaseDriver[DiscordConfig]):

    platform = Platform.DISCORD

    def __init__(self, config: DiscordConfig):
        super().__init__(config)
        self._client: _Client | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        intents = discord.Intents.default()
        intents.message_content = True
        if self.config.privileged_intents:
            intents.members = True
            intents.presences = True
        self._client = _Client(self, intents=intents)

        # Blocks until the bot disconnects
        await self._client.start(self.config.token)

    async def close(self):
        if self._client is not None and not self._client.is_closed():
            await self._client.close()
            l.info("Discord client closed")

    def _require_client(self) -> _Client:
        if self._client is None or not self._client.is_ready():
            raise TransportError(Platform.DISCORD.value, "client is not connected")
        return self._client

    # ------------------------------------------------------------------
    # Receive
    # ------------------------------------------------------------------

    def normalizers(self):
        return {
            "message":              self._on_message,
            "message_edit":         self._on_message_edit,
            "raw_message_delete":   self._on_raw_message_delete,
            "raw_reaction_add":     self._on_raw_reaction_add,
            "raw_reaction_remove":  self._on_raw_reaction_remove,
            "interaction":          self._on_interaction,
            "typing":               self._on_typing,
            "voice_state_update":   self._on_voice_state_update,
            "presence_update":      self._on_presence_update,
            "member_join":          self._on_member_join,
            "member_remove":        self._on_member_remove,
            "guild_channel_create": self._on_guild_channel_create,
            "guild_channel_update": self._on_guild_channel_update,
            "guild_channel_delete": self._on_guild_channel_delete,
            "user_update":          self._on_user_update,
        }

    def _user(self, user) -> User:
        return normalize_user(user, self.config.avatar_size)

    def _event(self, name: str, kind: EventKind, context, payload=None, is_self: bool = False) -> Event:
        return Event(
            name=name,
            kind=kind,
            platform=Platform.DISCORD,
            is_self_originated=is_self,
            context=context,
            session=self,
            payload=payload,
        )

    async def _on_message(self, message: discord.Message) -> Event:
        return self._event(
            "message",
            EventKind.MESSAGE_CREATE,
            MessageTarget(
                channel_id=str(message.channel.id),
                message_id=str(message.id),
                guild_id=_id(message.guild),
            ),
            MessageCallback(content=message.content, author=self._user(message.author)),
            message.author.bot,
        )

    async def _on_message_edit(self, before: discord.Message, after: discord.Message) -> Event:
        return self._event(
            "message_edit",
            EventKind.MESSAGE_UPDATE,
            EventScope(
                channel_id=str(after.channel.id),
                guild_id=_id(after.guild),
                message_id=str(after.id),
            ),
            MessageCallback(content=after.content, author=self._user(after.author)),
            after.author.bot,
        )

    async def _on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent) -> Event:
        return self._event(
            "raw_message_delete",
            EventKind.MESSAGE_DELETE,
            EventScope(
                channel_id=str(payload.channel_id),
                guild_id=_opt_id(payload.guild_id),
                message_id=str(payload.message_id),
            ),
        )

    async def _on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> Event:
        # member is only present for reactions inside a guild
        member = payload.member
        return self._event(
            "raw_reaction_add",
            EventKind.REACTION_ADD,
            EventScope(
                channel_id=str(payload.channel_id),
                guild_id=_opt_id(payload.guild_id),
                message_id=str(payload.message_id),
            ),
            self._user(member) if member is not None else None,
            member.bot if member is not None else False,
        )

    async def _on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent) -> Event:
        return self._event(
            "raw_reaction_remove",
            EventKind.REACTION_REMOVE,
            EventScope(
                channel_id=str(payload.channel_id),
                guild_id=_opt_id(payload.guild_id),
                message_id=str(payload.message_id),
            ),
        )

    async def _on_interaction(self, interaction: discord.Interaction) -> Event:
        data = interaction.data or {}
        return self._event(
            "interaction",
            EventKind.INTERACTION_CREATE,
            InteractionTarget(
                interaction=interaction,
                channel_id=_opt_id(interaction.channel_id),
                guild_id=_opt_id(interaction.guild_id),
            ),
            InteractionCallback(
                name=data.get("name") or data.get("custom_id", ""),
                fields=flatten_options(data.get("options")),
                author=self._user(interaction.user),
            ),
            interaction.user.bot,
        )

    async def _on_typing(self, channel, user, when) -> Event:
        return self._event(
            "typing",
            EventKind.TYPING_START,
            EventScope(channel_id=str(channel.id), guild_id=_id(getattr(channel, "guild", None))),
            self._user(user),
            user.bot,
        )

    async def _on_voice_state_update(self, member: discord.Member, before, after) -> Event:
        channel = after.channel or before.channel
        return self._event(
            "voice_state_update",
            EventKind.VOICE_STATE_UPDATE,
            EventScope(channel_id=_id(channel), guild_id=_id(member.guild)),
            self._user(member),
            member.bot,
        )

    async def _on_presence_update(self, before: discord.Member, after: discord.Member) -> Event:
        return self._event(
            "presence_update",
            EventKind.PRESENCE_UPDATE,
            EventScope(guild_id=_id(after.guild)),
            self._user(after),
            after.bot,
        )

    async def _on_member_join(self, member: discord.Member) -> Event:
        return self._event(
            "member_join",
            EventKind.GUILD_MEMBER_ADD,
            EventScope(guild_id=_id(member.guild)),
            self._user(member),
            member.bot,
        )

    async def _on_member_remove(self, member: discord.Member) -> Event:
        return self._event(
            "member_remove",
            EventKind.GUILD_MEMBER_REMOVE,
            EventScope(guild_id=_id(member.guild)),
            self._user(member),
            member.bot,
        )

    async def _on_guild_channel_create(self, channel) -> Event:
        return self._event(
            "guild_channel_create",
            EventKind.CHANNEL_CREATE,
            EventScope(channel_id=str(channel.id), guild_id=_id(channel.guild)),
        )

    async def _on_guild_channel_update(self, before, after) -> Event:
        return self._event(
            "guild_channel_update",
            EventKind.CHANNEL_UPDATE,
            EventScope(channel_id=str(after.id), guild_id=_id(after.guild)),
        )

    async def _on_guild_channel_delete(self, channel) -> Event:
        return self._event(
            "guild_channel_delete",
            EventKind.CHANNEL_DELETE,
            EventScope(channel_id=str(channel.id), guild_id=_id(channel.guild)),
        )

    async def _on_user_update(self, before: discord.User, after: discord.User) -> Event:
        return self._event(
            "user_update",
            EventKind.USER_UPDATE,
            EventScope(),
            self._user(after),
            after.bot,
        )

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def _channel(self, channel_id: str):
        client = self._require_client()
        ch = client.get_channel(_snowflake(channel_id, "channel"))
        if ch is None:
            with _transport(f"fetch channel {channel_id}"):
                ch = await client.fetch_channel(_snowflake(channel_id, "channel"))
        return ch

    async def send_message(
        self,
        channel_id: str,
        content: str,
        embed: discord.Embed | None = None,
        reply_to: MessageTarget | None = None,
    ) -> discord.Message:
        ch = await self._channel(channel_id)
        kwargs: dict[str, Any] = {}
        if embed is not None:
            kwargs["embed"] = embed
        if reply_to is not None:
            kwargs["reference"] = discord.MessageReference(
                message_id=_snowflake(reply_to.message_id, "message"),
                channel_id=_snowflake(reply_to.channel_id, "channel"),
                guild_id=_snowflake(reply_to.guild_id, "guild") if reply_to.guild_id else None,
            )
        with _transport(f"send to channel {channel_id}"):
            return await ch.send(content or None, **kwargs)

    async def edit_message(
        self,
        channel_id: str,
        message_id: str,
        content: str,
        embed: discord.Embed | None = None,
    ) -> discord.Message:
        ch = await self._channel(channel_id)
        kwargs: dict[str, Any] = {"content": content}
        if embed is not None:
            kwargs["embeds"] = [embed]
        with _transport(f"edit message {message_id}"):
            return await ch.get_partial_message(_snowflake(message_id, "message")).edit(**kwargs)

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        ch = await self._channel(channel_id)
        with _transport(f"delete message {message_id}"):
            await ch.get_partial_message(_snowflake(message_id, "message")).delete()

    async def respond_to_interaction(
        self,
        interaction: discord.Interaction,
        content: str,
        embed: discord.Embed | None = None,
    ) -> None:
        """Initial "channel message with source" response.  Discord does
        not return the message for this call."""
        kwargs: dict[str, Any] = {}
        if embed is not None:
            kwargs["embed"] = embed
        with _transport("interaction response"):
            await interaction.response.send_message(content or None, **kwargs)

    async def edit_interaction_response(
        self,
        interaction: discord.Interaction,
        content: str,
        embed: discord.Embed | None = None,
    ) -> discord.InteractionMessage:
        kwargs: dict[str, Any] = {"content": content}
        if embed is not None:
            kwargs["embeds"] = [embed]
        with _transport("interaction response edit"):
            return await interaction.edit_original_response(**kwargs)

    async def defer_interaction(self, interaction: discord.Interaction) -> None:
        with _transport("interaction defer"):
            await interaction.response.defer(thinking=True)


from drivers.registry import register
register(Platform.DISCORD, DiscordConfig, DiscordDriver)
