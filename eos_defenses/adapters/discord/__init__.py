"""Discord adapter: channel routing, embeds, transports and views."""

from __future__ import annotations

from .bot import ChannelRouter

__all__ = ["ChannelRouter"]
