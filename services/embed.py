"""Canonical ``Embed`` → native embed payloads.

Discord keeps the structure (thumbnail, image, footer and fields are discrete
parts of a ``discord.Embed``).  Revolt's SendableEmbed has no field or footer
slots, so fields are rendered as Markdown and appended to the description,
and the colour becomes a ``#RRGGBB`` string.
"""

from __future__ import annotations

from typing import Any

import discord

from services.bridge import to_platform
from services.message import Embed, Platform


def hex_colour(color: int) -> str:
    return f"#{color:06X}"


def to_native(platform: Platform | str, embed: Embed) -> Any:
    p = to_platform(platform)
    if p is Platform.DISCORD:
        return to_discord(embed)
    return to_revolt(embed)


def to_discord(embed: Embed) -> discord.Embed:
    em = discord.Embed(
        title=embed.title or None,
        description=embed.description or None,
        colour=embed.color,
        url=embed.url,
    )
    if embed.icon_url:
        em.set_thumbnail(url=embed.icon_url)
    if embed.photo_url:
        em.set_image(url=embed.photo_url)
    if embed.footer is not None:
        em.set_footer(text=embed.footer.text, icon_url=embed.footer.icon_url or None)
    for f in embed.fields:
        em.add_field(name=f.name, value=f.value, inline=f.inline)
    return em


def to_revolt(embed: Embed) -> dict[str, Any]:
    description = embed.description
    if embed.fields:
        description += "\n\n" + "".join(f"**{f.name}**\n{f.value}\n\n" for f in embed.fields)

    # Revolt rejects empty title / description strings; leave them out instead
    payload: dict[str, Any] = {"colour": hex_colour(embed.color)}
    if embed.title:
        payload["title"] = embed.title
    if description:
        payload["description"] = description
    if embed.url:
        payload["url"] = embed.url
    if embed.icon_url:
        payload["icon_url"] = embed.icon_url
    return payload
