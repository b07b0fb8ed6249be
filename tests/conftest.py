"""Pytest configuration and fake native objects for WhiskerBridge tests."""

from types import SimpleNamespace

import pytest


class FakeAsset:
    """Stands in for discord.Asset (only with_size().url is used)."""

    def __init__(self, url: str):
        self.url = url

    def with_size(self, size: int):
        return SimpleNamespace(url=f"{self.url}?size={size}")


def make_discord_user(id=111, name="alice", bot=False, guild_id=None):
    user = SimpleNamespace(
        id=id,
        name=name,
        bot=bot,
        display_avatar=FakeAsset(f"https://cdn.discordapp.com/avatars/{id}/a1b2.png"),
    )
    if guild_id is not None:
        user.guild = SimpleNamespace(id=guild_id)
    return user


def make_discord_message(id=10, content="hello", channel_id=20, guild_id=30, author=None):
    return SimpleNamespace(
        id=id,
        content=content,
        channel=SimpleNamespace(id=channel_id),
        guild=SimpleNamespace(id=guild_id) if guild_id is not None else None,
        author=author or make_discord_user(),
    )


REVOLT_USER = {
    "_id": "01HUSER",
    "username": "bob",
    "avatar": {"_id": "01HFILE", "tag": "avatars"},
}

REVOLT_BOT_USER = {
    "_id": "01HBOT",
    "username": "whisker",
    "bot": {"owner": "01HOWNER"},
}


@pytest.fixture
def discord_driver():
    from drivers.discord import DiscordConfig, DiscordDriver

    return DiscordDriver(DiscordConfig(token="discord-test-token"))


@pytest.fixture
def revolt_driver():
    from drivers.revolt import RevoltConfig, RevoltDriver

    return RevoltDriver(RevoltConfig(token="revolt-test-token"))


@pytest.fixture
def bridge():
    from services.bridge import Bridge

    return Bridge()
