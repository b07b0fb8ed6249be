# Revolt driver (aiohttp).
#
# Receive: WebSocket connection to the Revolt events gateway.  Authenticated
#          with an Authenticate frame right after connect, kept alive with a
#          Ping frame every heartbeat_interval seconds.  Every JSON frame is
#          dispatched under its "type"; "Bulk" frames are unpacked first.
#          Message frames only carry the author's user ID, so building an
#          Event for them costs a GET /users/{id} round trip.
#
# Send:    REST API with the x-bot-token header:
#            POST   /channels/{id}/messages
#            PATCH  /channels/{id}/messages/{message_id}
#            DELETE /channels/{id}/messages/{message_id}
#          Non-2xx responses and aiohttp errors surface as TransportError.
#
# Config keys (under "revolt"):
#   token              – Bot token (required)
#   api_url            – REST base URL (default https://api.revolt.chat)
#   ws_url             – Events gateway URL
#   autumn_url         – File server used to build avatar URLs
#   heartbeat_interval – Seconds between Ping frames (default 20)
#   avatar_size        – max_side for avatar URLs (default 128)

import asyncio
import json
import time
from typing import Any

import aiohttp
from pydantic import Field

import services.logger as log
from services.config_schema import _DriverConfig
from services.error import IdentityResolutionFailed, TransportError
from services.message import (
    ChannelTarget,
    Event,
    EventKind,
    EventScope,
    MessageCallback,
    MessageTarget,
    Platform,
    User,
)
from drivers import BaseDriver


class RevoltConfig(_DriverConfig):
    token:              str
    api_url:            str   = "https://api.revolt.chat"
    ws_url:             str   = "wss://ws.revolt.chat?version=1&format=json"
    autumn_url:         str   = "https://autumn.revolt.chat"
    heartbeat_interval: float = Field(default=20.0, gt=0)
    avatar_size:        int   = Field(default=128, gt=0)


l = log.get_logger()

_RECONNECT_DELAY = 5

# Where each frame type keeps its channel / server ID.  The key differs per
# frame type: reactions use "channel_id", typing and channel frames use "id".
_CHANNEL_KEYS: dict[str, str] = {
    "Message":            "channel",
    "MessageUpdate":      "channel",
    "MessageDelete":      "channel",
    "MessageReact":       "channel_id",
    "MessageUnreact":     "channel_id",
    "ChannelStartTyping": "id",
    "ChannelCreate":      "_id",
    "ChannelUpdate":      "id",
    "ChannelDelete":      "id",
}

_SERVER_KEYS: dict[str, str] = {
    "ServerMemberJoin":  "id",
    "ServerMemberLeave": "id",
    "ChannelCreate":     "server",
}


def channel_id_of(frame_type: str, data: dict) -> str:
    key = _CHANNEL_KEYS.get(frame_type)
    return str(data.get(key) or "") if key else ""


def server_id_of(frame_type: str, data: dict) -> str:
    key = _SERVER_KEYS.get(frame_type)
    return str(data.get(key) or "") if key else ""


def normalize_user(record: dict | None, autumn_url: str, size: int = 128) -> User:
    """Revolt user JSON → User.  ``None`` → ``User()``."""
    if not record:
        return User()
    avatar = record.get("avatar") or {}
    avatar_url = ""
    if avatar.get("_id"):
        tag = avatar.get("tag") or "avatars"
        avatar_url = f"{autumn_url.rstrip('/')}/{tag}/{avatar['_id']}?max_side={size}"
    return User(
        id=record.get("_id", ""),
        username=record.get("username", ""),
        avatar_url=avatar_url,
    )


class RevoltDriver(BaseDriver[RevoltConfig]):

    platform = Platform.REVOLT

    def __init__(self, config: RevoltConfig):
        super().__init__(config)
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._closing = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        self._session = aiohttp.ClientSession(
            headers={"x-bot-token": self.config.token}
        )
        l.info(f"Revolt connecting to {self.config.ws_url}")

        try:
            while not self._closing:
                try:
                    async with self._session.ws_connect(self.config.ws_url) as ws:
                        self._ws = ws
                        await ws.send_json({"type": "Authenticate", "token": self.config.token})
                        heartbeat = asyncio.create_task(self._heartbeat(ws))
                        try:
                            async for msg in ws:
                                if msg.type == aiohttp.WSMsgType.TEXT:
                                    self._on_frame(msg.data)
                                elif msg.type in (
                                    aiohttp.WSMsgType.CLOSE,
                                    aiohttp.WSMsgType.ERROR,
                                    aiohttp.WSMsgType.CLOSED,
                                ):
                                    break
                        finally:
                            heartbeat.cancel()
                            self._ws = None
                except aiohttp.ClientError as e:
                    l.error(f"Revolt connection error: {e}")

                if self._closing:
                    break
                l.info(f"Revolt reconnecting in {_RECONNECT_DELAY} s…")
                await asyncio.sleep(_RECONNECT_DELAY)
        finally:
            await self._session.close()
            self._session = None

    async def close(self):
        self._closing = True
        if self._ws is not None:
            await self._ws.close()
        l.info("Revolt client closed")

    async def _heartbeat(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while not ws.closed:
            await asyncio.sleep(self.config.heartbeat_interval)
            try:
                await ws.send_json({"type": "Ping", "data": int(time.time() * 1000)})
            except ConnectionResetError:
                return

    # ------------------------------------------------------------------
    # Receive
    # ------------------------------------------------------------------

    def _on_frame(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError as e:
            l.warning(f"Revolt dropped malformed frame: {e}")
            return
        self._route(frame)

    def _route(self, frame: dict) -> None:
        frame_type = frame.get("type", "")
        if frame_type == "Bulk":
            for inner in frame.get("v", []):
                self._route(inner)
        elif frame_type == "Authenticated":
            l.info("Revolt authenticated")
        elif frame_type == "Error":
            l.error(f"Revolt gateway error: {frame.get('error')}")
        else:
            self._dispatch(frame_type, frame)

    def normalizers(self):
        return {
            "Message":            self._on_message,
            "MessageUpdate":      self._on_message_update,
            "MessageDelete":      self._on_message_delete,
            "MessageReact":       self._on_reaction,
            "MessageUnreact":     self._on_reaction,
            "ChannelStartTyping": self._on_typing,
            "ServerMemberJoin":   self._on_member,
            "ServerMemberLeave":  self._on_member,
            "ChannelCreate":      self._on_channel,
            "ChannelUpdate":      self._on_channel,
            "ChannelDelete":      self._on_channel,
            "UserUpdate":         self._on_user_update,
        }

    def _event(self, name: str, kind: EventKind, context, payload=None, is_self: bool = False) -> Event:
        return Event(
            name=name,
            kind=kind,
            platform=Platform.REVOLT,
            is_self_originated=is_self,
            context=context,
            session=self,
            payload=payload,
        )

    async def _on_message(self, data: dict) -> Event:
        author, is_bot = await self.resolve_author(data.get("author", ""))
        return self._event(
            "Message",
            EventKind.MESSAGE_CREATE,
            MessageTarget(
                channel_id=channel_id_of("Message", data),
                message_id=data.get("_id", ""),
            ),
            MessageCallback(content=data.get("content") or "", author=author),
            is_bot,
        )

    async def _on_message_update(self, data: dict) -> Event:
        changes = data.get("data") or {}
        channel_id = channel_id_of("MessageUpdate", data)
        author_id = changes.get("author")
        message: dict = {}
        if not author_id:
            # Partial updates usually omit the author; read it off the message
            try:
                message = await self.fetch_message(channel_id, data.get("id", "")) or {}
            except TransportError as exc:
                raise IdentityResolutionFailed("", f"message lookup failed: {exc}") from exc
            author_id = message.get("author", "")
        author, is_bot = await self.resolve_author(author_id)
        # Embed unfurls and similar updates carry no content key
        content = changes["content"] if "content" in changes else message.get("content")
        return self._event(
            "MessageUpdate",
            EventKind.MESSAGE_UPDATE,
            ChannelTarget(channel_id=channel_id),
            MessageCallback(content=content or "", author=author),
            is_bot,
        )

    async def _on_message_delete(self, data: dict) -> Event:
        return self._event(
            "MessageDelete",
            EventKind.MESSAGE_DELETE,
            EventScope(
                channel_id=channel_id_of("MessageDelete", data),
                message_id=data.get("id", ""),
            ),
        )

    async def _on_reaction(self, data: dict) -> Event:
        frame_type = data.get("type", "")
        kind = EventKind.REACTION_ADD if frame_type == "MessageReact" else EventKind.REACTION_REMOVE
        return self._event(
            frame_type,
            kind,
            ChannelTarget(channel_id=channel_id_of(frame_type, data)),
            User(id=data.get("user_id", "")),
        )

    async def _on_typing(self, data: dict) -> Event:
        return self._event(
            "ChannelStartTyping",
            EventKind.TYPING_START,
            EventScope(channel_id=channel_id_of("ChannelStartTyping", data)),
            User(id=data.get("user", "")),
        )

    async def _on_member(self, data: dict) -> Event:
        frame_type = data.get("type", "")
        kind = EventKind.MEMBER_JOIN if frame_type == "ServerMemberJoin" else EventKind.MEMBER_LEAVE
        return self._event(
            frame_type,
            kind,
            EventScope(guild_id=server_id_of(frame_type, data)),
            User(id=data.get("user", "")),
        )

    async def _on_channel(self, data: dict) -> Event:
        frame_type = data.get("type", "")
        kind = {
            "ChannelCreate": EventKind.CHANNEL_CREATE,
            "ChannelUpdate": EventKind.CHANNEL_UPDATE,
            "ChannelDelete": EventKind.CHANNEL_DELETE,
        }[frame_type]
        return self._event(
            frame_type,
            kind,
            EventScope(
                channel_id=channel_id_of(frame_type, data),
                guild_id=server_id_of(frame_type, data),
            ),
        )

    async def _on_user_update(self, data: dict) -> Event:
        changes = data.get("data") or {}
        return self._event(
            "UserUpdate",
            EventKind.USER_UPDATE,
            EventScope(),
            User(id=data.get("id", ""), username=changes.get("username", "")),
        )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def lookup_user(self, user_id: str) -> dict:
        return await self._request("GET", f"/users/{user_id}", f"user lookup {user_id}")

    async def resolve_author(self, user_id: str) -> tuple[User, bool]:
        """Fetch the author record; returns ``(user, is_bot)``.

        Raises IdentityResolutionFailed when the user cannot be fetched.
        """
        if not user_id:
            raise IdentityResolutionFailed(user_id, "no author id on event")
        try:
            record = await self.lookup_user(user_id)
        except TransportError as exc:
            raise IdentityResolutionFailed(user_id, str(exc)) from exc
        if not record:
            raise IdentityResolutionFailed(user_id, "empty user record")
        user = normalize_user(record, self.config.autumn_url, self.config.avatar_size)
        return user, record.get("bot") is not None

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, action: str, **kwargs) -> Any:
        if self._session is None:
            raise TransportError(Platform.REVOLT.value, f"{action} failed: session is not open")
        url = self.config.api_url.rstrip("/") + path
        try:
            async with self._session.request(method, url, **kwargs) as resp:
                if resp.status >= 300:
                    body = await resp.text()
                    raise TransportError(
                        Platform.REVOLT.value,
                        f"{action} failed HTTP {resp.status}: {body[:200]}",
                    )
                if resp.status == 204:
                    return None
                return await resp.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise TransportError(Platform.REVOLT.value, f"{action} failed: {exc}") from exc

    async def fetch_message(self, channel_id: str, message_id: str) -> dict:
        return await self._request(
            "GET", f"/channels/{channel_id}/messages/{message_id}", f"fetch message {message_id}"
        )

    async def send_message(
        self,
        channel_id: str,
        content: str,
        embed: dict | None = None,
        reply_to: MessageTarget | None = None,
    ) -> dict:
        body: dict[str, Any] = {}
        if content:
            body["content"] = content
        if embed is not None:
            body["embeds"] = [embed]
        if reply_to is not None:
            body["replies"] = [{"id": reply_to.message_id, "mention": False}]
        return await self._request(
            "POST", f"/channels/{channel_id}/messages", f"send to channel {channel_id}", json=body
        )

    async def edit_message(
        self,
        channel_id: str,
        message_id: str,
        content: str,
        embed: dict | None = None,
    ) -> dict:
        body: dict[str, Any] = {"content": content}
        if embed is not None:
            body["embeds"] = [embed]
        return await self._request(
            "PATCH",
            f"/channels/{channel_id}/messages/{message_id}",
            f"edit message {message_id}",
            json=body,
        )

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        await self._request(
            "DELETE",
            f"/channels/{channel_id}/messages/{message_id}",
            f"delete message {message_id}",
        )


from drivers.registry import register
register(Platform.REVOLT, RevoltConfig, RevoltDriver)
