"""Discord implementations of the publisher transports."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import discord
from discord.ext import commands

from ...errors import TransportError
from ...models import OutboundFile
from .builders import make_file

logger = logging.getLogger(__name__)


def _files(files: Sequence[OutboundFile]) -> list[discord.File]:
    return [make_file(item.data, item.filename) for item in files]


class DiscordChannelSender:
    """Posts to a text channel and opens code threads under the posts."""

    def __init__(self, channel: discord.abc.Messageable, *, auto_archive_minutes: int = 1440) -> None:
        self._channel = channel
        self._auto_archive = auto_archive_minutes

    @property
    def id(self) -> int:
        return getattr(self._channel, "id", 0)

    async def send(
        self, content: Optional[str] = None, files: Sequence[OutboundFile] = ()
    ) -> discord.Message:
        try:
            return await self._channel.send(content=content, files=_files(files))
        except discord.DiscordException as exc:
            raise TransportError(f"Failed to post to channel {self.id}: {exc}") from exc

    async def start_thread(self, message: discord.Message, title: str) -> discord.Thread:
        try:
            return await message.create_thread(
                name=title, auto_archive_duration=self._auto_archive
            )
        except discord.DiscordException as exc:
            raise TransportError(f"Failed to open thread on {message.id}: {exc}") from exc

    async def send_to_thread(
        self,
        thread: discord.Thread,
        content: Optional[str] = None,
        files: Sequence[OutboundFile] = (),
    ) -> Any:
        try:
            return await thread.send(content=content, files=_files(files))
        except discord.DiscordException as exc:
            raise TransportError(f"Failed to post to thread {thread.id}: {exc}") from exc


class DiscordDirectNotifier:
    """Sends DMs, reporting failure as ``False``."""

    def __init__(self, bot: commands.Bot) -> None:
        self._bot = bot

    async def send_direct(self, user_id: str, content: str) -> bool:
        try:
            user = await self._bot.fetch_user(int(user_id))
            await user.send(content)
        except (discord.DiscordException, ValueError) as exc:
            logger.info("Could not DM user %s: %s", user_id, exc)
            return False
        return True


def resolve_channel(
    bot: commands.Bot, channel_id: Optional[int], *, auto_archive_minutes: int = 1440
) -> Optional[DiscordChannelSender]:
    """Look up a cached text channel by id; ``None`` when unknown."""

    if channel_id is None:
        return None
    channel = bot.get_channel(channel_id)
    if channel is None or not hasattr(channel, "send"):
        logger.warning("Failed to locate publish channel with id %s", channel_id)
        return None
    return DiscordChannelSender(channel, auto_archive_minutes=auto_archive_minutes)


__all__ = ["DiscordChannelSender", "DiscordDirectNotifier", "resolve_channel"]
