"""Slash command instrumentation."""
from __future__ import annotations

import functools
import time
from typing import Any, Awaitable, Callable

import discord

from .telemetry import get_telemetry

CommandHandler = Callable[..., Awaitable[Any]]


def track_command(func: CommandHandler) -> CommandHandler:
    """Record usage, duration and failures of an app command callback."""

    @functools.wraps(func)
    async def wrapper(interaction: discord.Interaction, *args, **kwargs) -> Any:
        collector = get_telemetry()
        user_id = str(interaction.user.id)
        started = time.perf_counter()
        ok = False
        try:
            result = await func(interaction, *args, **kwargs)
        except Exception as exc:
            collector.track_error(
                type(exc).__name__,
                command=func.__name__,
                user_id=user_id,
                error_details=str(exc),
            )
            raise
        else:
            ok = True
            return result
        finally:
            collector.track_command(
                func.__name__,
                user_id,
                str(interaction.guild_id) if interaction.guild_id else "dm",
                success=ok,
                duration_ms=(time.perf_counter() - started) * 1000,
            )

    return wrapper


__all__ = ["track_command"]
