from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Platform(str, Enum):
    DISCORD = "Discord"
    REVOLT = "Revolt"


class EventKind(str, Enum):
    MESSAGE_CREATE = "MessageCreate"
    MESSAGE_UPDATE = "MessageUpdate"
    MESSAGE_DELETE = "MessageDelete"
    REACTION_ADD = "ReactionAdd"
    REACTION_REMOVE = "ReactionRemove"
    INTERACTION_CREATE = "InteractionCreate"
    TYPING_START = "TypingStart"
    VOICE_STATE_UPDATE = "VoiceStateUpdate"
    PRESENCE_UPDATE = "PresenceUpdate"
    GUILD_MEMBER_ADD = "GuildMemberAdd"
    GUILD_MEMBER_REMOVE = "GuildMemberRemove"
    CHANNEL_CREATE = "ChannelCreate"
    CHANNEL_UPDATE = "ChannelUpdate"
    CHANNEL_DELETE = "ChannelDelete"
    USER_UPDATE = "UserUpdate"
    MEMBER_JOIN = "MemberJoin"
    MEMBER_LEAVE = "MemberLeave"


@dataclass(frozen=True)
class User:
    """Platform-agnostic user identity. ``User()`` is the zero value."""
    id: str = ""
    username: str = ""
    avatar_url: str = ""


@dataclass
class MessageCallback:
    content: str
    author: User


@dataclass
class InteractionCallback:
    name: str           # invoked command name
    fields: dict[str, str]
    author: User


# ---------------------------------------------------------------------------
# Reply targets: the minimal addressing info kept from a native event
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MessageTarget:
    """A received message; replies reference it."""
    channel_id: str
    message_id: str
    guild_id: str = ""


@dataclass(frozen=True)
class InteractionTarget:
    """A received interaction; ``interaction`` is the native reference."""
    interaction: Any
    channel_id: str = ""
    guild_id: str = ""


@dataclass(frozen=True)
class ChannelTarget:
    """Respondable by posting into the channel, no message to reply to."""
    channel_id: str
    guild_id: str = ""


@dataclass(frozen=True)
class EventScope:
    """Where an event happened. Inspection only, never respondable."""
    channel_id: str = ""
    guild_id: str = ""
    message_id: str = ""


ReplyContext = MessageTarget | InteractionTarget | ChannelTarget | EventScope
Payload = MessageCallback | InteractionCallback | User | None


@dataclass
class Event:
    """Normalized event handed to the application callback."""
    name: str                   # native event name, diagnostic only
    kind: EventKind
    platform: Platform
    context: ReplyContext
    session: Any                # driver that produced the event
    payload: Payload = None
    is_self_originated: bool = False


# ---------------------------------------------------------------------------
# Rich content
# ---------------------------------------------------------------------------

@dataclass
class EmbedField:
    name: str
    value: str
    inline: bool = False


@dataclass
class EmbedFooter:
    text: str
    icon_url: str = ""


@dataclass
class Embed:
    title: str = ""
    description: str = ""
    color: int = 0  # 24-bit RGB
    url: str | None = None
    icon_url: str | None = None
    photo_url: str | None = None
    footer: EmbedFooter | None = None
    fields: list[EmbedField] = field(default_factory=list)

    def __post_init__(self):
        if isinstance(self.color, bool) or not isinstance(self.color, int):
            raise ValueError(f"color must be an int, got {type(self.color).__name__}")
        if not 0 <= self.color <= 0xFFFFFF:
            raise ValueError(f"color must be a 24-bit RGB value, got {self.color:#x}")
