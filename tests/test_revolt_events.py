"""Tests for Revolt frame routing and normalization."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import REVOLT_BOT_USER, REVOLT_USER
from drivers.revolt import channel_id_of, normalize_user, server_id_of
from services.error import IdentityResolutionFailed, TransportError
from services.events import EventNormalizer
from services.message import (
    ChannelTarget,
    EventKind,
    EventScope,
    MessageCallback,
    MessageTarget,
    Platform,
    User,
)

AUTUMN = "https://autumn.revolt.chat"

FRAMES = [
    ({"type": "Message", "_id": "01HMSG", "channel": "01HCHAN", "author": "01HUSER", "content": "hi"},
     EventKind.MESSAGE_CREATE),
    ({"type": "MessageUpdate", "id": "01HMSG", "channel": "01HCHAN",
      "data": {"content": "edited", "author": "01HUSER"}},
     EventKind.MESSAGE_UPDATE),
    ({"type": "MessageDelete", "id": "01HMSG", "channel": "01HCHAN"}, EventKind.MESSAGE_DELETE),
    ({"type": "MessageReact", "id": "01HMSG", "channel_id": "01HCHAN", "user_id": "01HUSER", "emoji_id": "x"},
     EventKind.REACTION_ADD),
    ({"type": "MessageUnreact", "id": "01HMSG", "channel_id": "01HCHAN", "user_id": "01HUSER", "emoji_id": "x"},
     EventKind.REACTION_REMOVE),
    ({"type": "ChannelStartTyping", "id": "01HCHAN", "user": "01HUSER"}, EventKind.TYPING_START),
    ({"type": "ServerMemberJoin", "id": "01HSERV", "user": "01HUSER"}, EventKind.MEMBER_JOIN),
    ({"type": "ServerMemberLeave", "id": "01HSERV", "user": "01HUSER"}, EventKind.MEMBER_LEAVE),
    ({"type": "ChannelCreate", "_id": "01HCHAN", "server": "01HSERV", "channel_type": "TextChannel"},
     EventKind.CHANNEL_CREATE),
    ({"type": "ChannelUpdate", "id": "01HCHAN", "data": {"name": "general"}}, EventKind.CHANNEL_UPDATE),
    ({"type": "ChannelDelete", "id": "01HCHAN"}, EventKind.CHANNEL_DELETE),
    ({"type": "UserUpdate", "id": "01HUSER", "data": {"username": "bobby"}}, EventKind.USER_UPDATE),
]


@pytest.fixture
def received(bridge, revolt_driver):
    events = []
    revolt_driver.lookup_user = AsyncMock(return_value=REVOLT_USER)
    bridge.register_driver(revolt_driver)
    EventNormalizer(bridge).register(events.append)
    return events


class TestNormalizeUser:

    def test_user_with_avatar(self):
        assert normalize_user(REVOLT_USER, AUTUMN) == User(
            id="01HUSER",
            username="bob",
            avatar_url="https://autumn.revolt.chat/avatars/01HFILE?max_side=128",
        )

    def test_user_without_avatar(self):
        assert normalize_user(REVOLT_BOT_USER, AUTUMN + "/", 64) == User(id="01HBOT", username="whisker")

    def test_missing_record(self):
        assert normalize_user(None, AUTUMN) == User()
        assert normalize_user({}, AUTUMN) == User()


class TestIdLocation:

    @pytest.mark.parametrize("frame_type,key", [
        ("Message", "channel"),
        ("MessageUpdate", "channel"),
        ("MessageDelete", "channel"),
        ("MessageReact", "channel_id"),
        ("MessageUnreact", "channel_id"),
        ("ChannelStartTyping", "id"),
        ("ChannelCreate", "_id"),
        ("ChannelUpdate", "id"),
        ("ChannelDelete", "id"),
    ])
    def test_channel_key_per_frame_type(self, frame_type, key):
        assert channel_id_of(frame_type, {key: "01HCHAN"}) == "01HCHAN"

    def test_reaction_ignores_id_key(self):
        # "id" on a reaction frame is the message, not the channel
        assert channel_id_of("MessageReact", {"id": "01HMSG"}) == ""

    def test_frame_without_channel(self):
        assert channel_id_of("UserUpdate", {"id": "01HUSER"}) == ""

    def test_server_key_per_frame_type(self):
        assert server_id_of("ServerMemberJoin", {"id": "01HSERV"}) == "01HSERV"
        assert server_id_of("ChannelCreate", {"server": "01HSERV"}) == "01HSERV"
        assert server_id_of("ChannelDelete", {"id": "01HCHAN"}) == ""


class TestTotalMapping:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("frame,kind", FRAMES, ids=[f[0]["type"] for f in FRAMES])
    async def test_one_event_per_frame(self, received, revolt_driver, frame, kind):
        await revolt_driver.deliver(frame["type"], frame)

        assert len(received) == 1
        evt = received[0]
        assert evt.kind is kind
        assert evt.platform is Platform.REVOLT
        assert evt.session is revolt_driver
        assert evt.name == frame["type"]

    def test_every_frame_type_is_covered(self, revolt_driver):
        assert set(revolt_driver.normalizers()) == {f[0]["type"] for f in FRAMES}


class TestMessageFrames:

    @pytest.mark.asyncio
    async def test_message_resolves_author(self, received, revolt_driver):
        await revolt_driver.deliver("Message", FRAMES[0][0])

        evt = received[0]
        revolt_driver.lookup_user.assert_awaited_once_with("01HUSER")
        assert evt.context == MessageTarget(channel_id="01HCHAN", message_id="01HMSG")
        assert evt.payload == MessageCallback(content="hi", author=normalize_user(REVOLT_USER, AUTUMN))
        assert evt.payload.author.username == "bob"
        assert evt.is_self_originated is False

    @pytest.mark.asyncio
    async def test_bot_author_sets_self_flag(self, received, revolt_driver):
        revolt_driver.lookup_user.return_value = REVOLT_BOT_USER
        await revolt_driver.deliver("Message", dict(FRAMES[0][0], author="01HBOT"))
        assert received[0].is_self_originated is True

    @pytest.mark.asyncio
    async def test_failed_lookup_drops_event(self, received, revolt_driver):
        revolt_driver.lookup_user.side_effect = TransportError("Revolt", "HTTP 500")

        with patch("services.events.l") as mock_log:
            await revolt_driver.deliver("Message", FRAMES[0][0])

        assert received == []
        mock_log.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_empty_record_drops_event(self, received, revolt_driver):
        revolt_driver.lookup_user.return_value = {}
        await revolt_driver.deliver("Message", FRAMES[0][0])
        assert received == []

    @pytest.mark.asyncio
    async def test_update_with_author(self, received, revolt_driver):
        await revolt_driver.deliver("MessageUpdate", FRAMES[1][0])

        evt = received[0]
        assert evt.context == ChannelTarget(channel_id="01HCHAN")
        assert evt.payload.content == "edited"
        assert evt.payload.author.id == "01HUSER"

    @pytest.mark.asyncio
    async def test_update_without_author_fetches_message(self, received, revolt_driver):
        revolt_driver.fetch_message = AsyncMock(return_value={"_id": "01HMSG", "author": "01HUSER"})
        frame = {"type": "MessageUpdate", "id": "01HMSG", "channel": "01HCHAN", "data": {"content": "edited"}}

        await revolt_driver.deliver("MessageUpdate", frame)

        revolt_driver.fetch_message.assert_awaited_once_with("01HCHAN", "01HMSG")
        assert received[0].payload.author.id == "01HUSER"

    @pytest.mark.asyncio
    async def test_embed_only_update_keeps_message_text(self, received, revolt_driver):
        revolt_driver.fetch_message = AsyncMock(
            return_value={"_id": "01HMSG", "author": "01HUSER", "content": "hello world"}
        )
        frame = {
            "type": "MessageUpdate",
            "id": "01HMSG",
            "channel": "01HCHAN",
            "data": {"embeds": [{"type": "Website", "url": "https://example.com/"}]},
        }

        await revolt_driver.deliver("MessageUpdate", frame)

        assert received[0].payload.content == "hello world"
        assert received[0].payload.author.id == "01HUSER"

    @pytest.mark.asyncio
    async def test_update_content_wins_over_fetched_text(self, received, revolt_driver):
        revolt_driver.fetch_message = AsyncMock(return_value={"author": "01HUSER", "content": "old"})
        frame = {"type": "MessageUpdate", "id": "01HMSG", "channel": "01HCHAN", "data": {"content": "new"}}

        await revolt_driver.deliver("MessageUpdate", frame)

        assert received[0].payload.content == "new"

    @pytest.mark.asyncio
    async def test_update_fetch_failure_drops_event(self, received, revolt_driver):
        revolt_driver.fetch_message = AsyncMock(side_effect=TransportError("Revolt", "HTTP 404"))
        frame = {"type": "MessageUpdate", "id": "01HMSG", "channel": "01HCHAN", "data": {}}

        await revolt_driver.deliver("MessageUpdate", frame)

        assert received == []

    @pytest.mark.asyncio
    async def test_delete_is_not_respondable(self, received, revolt_driver):
        await revolt_driver.deliver("MessageDelete", FRAMES[2][0])
        assert received[0].context == EventScope(channel_id="01HCHAN", message_id="01HMSG")


class TestOtherFrames:

    @pytest.mark.asyncio
    async def test_reaction_uses_channel_id_key(self, received, revolt_driver):
        await revolt_driver.deliver("MessageReact", FRAMES[3][0])

        evt = received[0]
        assert evt.context == ChannelTarget(channel_id="01HCHAN")
        assert evt.payload == User(id="01HUSER")
        assert evt.is_self_originated is False
        revolt_driver.lookup_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_member_join(self, received, revolt_driver):
        await revolt_driver.deliver("ServerMemberJoin", FRAMES[6][0])

        evt = received[0]
        assert evt.context == EventScope(guild_id="01HSERV")
        assert evt.payload == User(id="01HUSER")

    @pytest.mark.asyncio
    async def test_channel_create(self, received, revolt_driver):
        await revolt_driver.deliver("ChannelCreate", FRAMES[8][0])
        assert received[0].context == EventScope(channel_id="01HCHAN", guild_id="01HSERV")

    @pytest.mark.asyncio
    async def test_user_update(self, received, revolt_driver):
        await revolt_driver.deliver("UserUpdate", FRAMES[11][0])
        assert received[0].payload == User(id="01HUSER", username="bobby")


class TestRouting:

    def test_bulk_frames_are_unpacked(self, revolt_driver):
        revolt_driver._dispatch = MagicMock()
        revolt_driver._route({"type": "Bulk", "v": [FRAMES[2][0], FRAMES[5][0]]})

        assert [c.args[0] for c in revolt_driver._dispatch.call_args_list] == [
            "MessageDelete",
            "ChannelStartTyping",
        ]

    def test_control_frames_are_not_dispatched(self, revolt_driver):
        revolt_driver._dispatch = MagicMock()
        revolt_driver._route({"type": "Authenticated"})
        revolt_driver._route({"type": "Error", "error": "InvalidSession"})
        revolt_driver._dispatch.assert_not_called()

    def test_malformed_frame_is_logged(self, revolt_driver):
        revolt_driver._dispatch = MagicMock()
        with patch("drivers.revolt.l") as mock_log:
            revolt_driver._on_frame("{not json")
        mock_log.warning.assert_called_once()
        revolt_driver._dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_dispatch_without_listeners_is_a_no_op(self, revolt_driver):
        revolt_driver._on_frame('{"type": "MessageDelete", "id": "1", "channel": "2"}')
        assert revolt_driver._tasks == set()
