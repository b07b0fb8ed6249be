"""Small helpers application code uses to pick events apart."""

import asyncio
from typing import Any, Awaitable, Callable

import services.logger as log
from services.message import Event, InteractionCallback, MessageCallback, User

l = log.get_logger()


def get_author(event: Event) -> User:
    """The acting user, or ``User()`` when the event has none."""
    payload = event.payload
    if isinstance(payload, (MessageCallback, InteractionCallback)):
        return payload.author
    if isinstance(payload, User):
        return payload
    return User()


def get_channel_id(event: Event) -> str:
    return event.context.channel_id


def get_guild_id(event: Event) -> str:
    return event.context.guild_id


def get_message_id(event: Event) -> str:
    return getattr(event.context, "message_id", "")


def get_username(event: Event) -> str:
    user = get_author(event)
    return f"{user.username} ({user.id})"


def handle_id(handle: Any) -> str:
    """ID of a native message handle (discord.Message or Revolt JSON)."""
    if isinstance(handle, dict):
        return str(handle.get("_id", ""))
    return str(getattr(handle, "id", ""))


def is_bot_event(event: Event) -> bool:
    return event.is_self_originated


def parse_command(text: str) -> tuple[str, list[str]]:
    parts = text.split()
    if not parts:
        return "", []
    return parts[0], parts[1:]


def is_admin(user_id: str, admin_ids: list[str]) -> bool:
    return user_id in admin_ids


def log_event(event: Event) -> None:
    l.debug(f"[{event.platform.value}:{event.kind.value}] {event.name} {event.payload!r}")


async def retry(fn: Callable[[], Awaitable[Any]], attempts: int, delay: float = 0.5) -> Any:
    """Await ``fn()`` up to *attempts* times, sleeping *delay* seconds
    between tries.  Re-raises the last error."""
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if attempt == attempts:
                raise
            l.warning(f"Attempt {attempt}/{attempts} failed: {e}; retrying in {delay}s")
            await asyncio.sleep(delay)
