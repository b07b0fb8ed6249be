import asyncio
from typing import Any

import services.logger as log
from services.bridge import Bridge, to_platform
from services.embed import to_native
from services.error import UnsupportedContext
from services.message import (
    ChannelTarget,
    Embed,
    Event,
    InteractionTarget,
    MessageTarget,
    Platform,
)

l = log.get_logger()


class Responder:
    """
    Turns "reply to this event" into the right native call.

    ``respond`` dispatches on the event's platform first, then on the kind of
    reply target the normalizer attached to it.  Errors from the platform
    surface as ``TransportError`` and are never retried here.
    """

    def __init__(self, bridge: Bridge):
        self.bridge = bridge

    # ------------------------------------------------------------------
    # Event-addressed
    # ------------------------------------------------------------------

    async def respond(
        self,
        event: Event,
        content: str,
        embed: Embed | None = None,
        edit: str | None = None,
    ) -> Any:
        """Reply to *event*, or edit message *edit* in the same place.

        Returns the native message, or ``None`` for the initial response
        to a Discord interaction.
        """
        ctx = event.context
        session = event.session

        if event.platform == Platform.DISCORD:
            native = to_native(Platform.DISCORD, embed) if embed is not None else None
            if isinstance(ctx, MessageTarget):
                if edit is not None:
                    return await session.edit_message(ctx.channel_id, edit, content, native)
                return await session.send_message(ctx.channel_id, content, native, reply_to=ctx)
            if isinstance(ctx, InteractionTarget):
                if edit is not None:
                    return await session.edit_interaction_response(ctx.interaction, content, native)
                await session.respond_to_interaction(ctx.interaction, content, native)
                return None

        elif event.platform == Platform.REVOLT:
            native = to_native(Platform.REVOLT, embed) if embed is not None else None
            if isinstance(ctx, (MessageTarget, ChannelTarget)):
                if edit is not None:
                    return await session.edit_message(ctx.channel_id, edit, content, native)
                return await session.send_message(ctx.channel_id, content, native)

        raise UnsupportedContext(
            f"cannot respond to {event.kind.value} ({type(ctx).__name__}) on {event.platform.value}"
        )

    async def defer(self, event: Event) -> None:
        """Acknowledge a Discord interaction now; answer it later by calling
        ``respond`` with any non-None *edit*."""
        if event.platform == Platform.DISCORD and isinstance(event.context, InteractionTarget):
            await event.session.defer_interaction(event.context.interaction)
            return
        raise UnsupportedContext(f"cannot defer {event.kind.value} on {event.platform.value}")

    # ------------------------------------------------------------------
    # Channel-addressed
    # ------------------------------------------------------------------

    async def send_message(
        self,
        platform: Platform | str,
        channel_id: str,
        content: str,
        embed: Embed | None = None,
    ) -> Any:
        p = to_platform(platform)
        driver = self.bridge.driver(p)
        native = to_native(p, embed) if embed is not None else None
        return await driver.send_message(channel_id, content, native)

    async def edit_message(
        self,
        platform: Platform | str,
        channel_id: str,
        message_id: str,
        content: str,
        embed: Embed | None = None,
    ) -> Any:
        p = to_platform(platform)
        driver = self.bridge.driver(p)
        native = to_native(p, embed) if embed is not None else None
        return await driver.edit_message(channel_id, message_id, content, native)

    async def delete_message(self, platform: Platform | str, channel_id: str, message_id: str) -> None:
        await self.bridge.driver(platform).delete_message(channel_id, message_id)

    async def paginate(
        self,
        platform: Platform | str,
        channel_id: str,
        pages: list[str],
        delay: float = 1.0,
    ) -> list[Any]:
        """Send *pages* one after another, *delay* seconds apart."""
        sent = []
        for i, page in enumerate(pages):
            if i:
                await asyncio.sleep(delay)
            sent.append(await self.send_message(platform, channel_id, page))
        l.debug(f"Sent {len(sent)} page(s) to {channel_id}")
        return sent
