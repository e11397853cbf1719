"""Discord bot entry point for the EOS defenses bot."""
from __future__ import annotations

import asyncio
import atexit
import concurrent.futures
import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Awaitable, Callable, Optional

import discord
from discord import app_commands
from discord.ext import commands

from .adapters.discord.bot import ChannelRouter
from .adapters.discord.builders import (
    build_admin_notification,
    build_review_page,
    build_schedule_status_message,
    make_file,
)
from .adapters.discord.transport import DiscordDirectNotifier, resolve_channel
from .adapters.discord.views import (
    IntakeMenuView,
    OpponentReviewView,
    SubmissionReviewView,
    open_archive_view,
)
from .config import Settings, get_settings
from .intake import IntakeHandler
from .models import PublishResult, Submission
from .publisher import BulkPublisher
from .scheduler import PublishScheduler, ScheduledJob
from .service import DefenseService
from .sessions import IntakeSessionStore, ReviewMode, ReviewSessions
from .state import DefenseStore
from .telemetry import get_telemetry
from .telemetry_decorator import track_command

logger = logging.getLogger(__name__)


def _is_admin(interaction: discord.Interaction) -> bool:
    permissions = getattr(interaction.user, "guild_permissions", None)
    return bool(permissions and permissions.administrator)


async def run_scheduled_publish(
    job: ScheduledJob,
    publish: Callable[..., Awaitable[PublishResult]],
    notify_admin: Callable[[str], Awaitable[None]],
    *,
    default_channel: Optional[int] = None,
) -> Optional[PublishResult]:
    """Run one scheduled bulk publish and report the outcome to admins."""

    channel_id = job.channel_id or default_channel
    try:
        result = await publish(channel_id, job.season, trigger="scheduled")
    except Exception as exc:
        logger.exception("Scheduled publish for %s %s raised", job.date, job.time)
        await notify_admin(f"⏰ Scheduled publish failed: {exc}")
        return None
    if result.success:
        logger.info("Scheduled publish completed: %d published", result.published_count)
        await notify_admin(f"⏰ Scheduled publish finished: {result.published_count} published")
    else:
        logger.error("Scheduled publish failed: %s", result.error)
        await notify_admin(f"⏰ Scheduled publish failed: {result.error}")
    return result


def _log_scheduled_outcome(future: concurrent.futures.Future) -> None:
    if future.cancelled():
        logger.warning("Scheduled publish task was cancelled")
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Scheduled publish task failed", exc_info=exc)


def dispatch_scheduled(
    runner: Callable[[ScheduledJob], Awaitable[object]],
    job: ScheduledJob,
    loop: asyncio.AbstractEventLoop,
) -> concurrent.futures.Future:
    """Hand a scheduled job from the scheduler thread to the bot loop."""

    future = asyncio.run_coroutine_threadsafe(runner(job), loop)
    future.add_done_callback(_log_scheduled_outcome)
    return future


def build_bot(
    db_path: Path,
    intents: Optional[discord.Intents] = None,
    settings: Optional[Settings] = None,
) -> commands.Bot:
    if intents is None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.dm_messages = True
    app_id_raw = os.environ.get("DISCORD_APP_ID")
    application_id: Optional[int] = None
    if app_id_raw:
        try:
            application_id = int(app_id_raw)
        except ValueError:
            logger.warning("Invalid DISCORD_APP_ID: %s", app_id_raw)
    bot = commands.Bot(command_prefix="/", intents=intents, application_id=application_id)
    settings = settings or get_settings()
    telemetry = get_telemetry()
    store = DefenseStore(db_path)
    service = DefenseService(store, settings=settings)
    publisher = BulkPublisher(store, settings=settings, telemetry=telemetry)
    router = ChannelRouter.from_env()
    notifier = DiscordDirectNotifier(bot)
    review_sessions = ReviewSessions(service)
    intake_sessions = IntakeSessionStore(
        timedelta(minutes=settings.session_timeout_minutes)
    )
    setattr(bot, "defense_service", service)

    async def publish_submissions(
        channel_id: Optional[int], season: str, *, trigger: str = "manual"
    ) -> PublishResult:
        channel = resolve_channel(
            bot, channel_id, auto_archive_minutes=settings.thread_auto_archive_minutes
        )
        return await publisher.publish_submissions(
            channel, notifier, season=season, trigger=trigger
        )

    async def publish_opponents(channel_id: Optional[int], season: str) -> PublishResult:
        channel = resolve_channel(bot, channel_id)
        return await publisher.publish_opponent_defenses(channel, season=season)

    async def run_scheduled(job: ScheduledJob) -> None:
        await run_scheduled_publish(
            job,
            publish_submissions,
            _notify_admin_text,
            default_channel=router.publish,
        )

    scheduler = PublishScheduler(
        lambda job: dispatch_scheduled(run_scheduled, job, bot.loop),
        telemetry=telemetry,
    )

    def _shutdown_scheduler() -> None:  # pragma: no cover - process shutdown hook
        scheduler.shutdown()
        telemetry.flush()

    atexit.register(_shutdown_scheduler)

    async def _notify_admin_text(content: str) -> None:
        if router.admin is None:
            logger.info("ADMIN: %s", content)
            return
        channel = bot.get_channel(router.admin)
        if channel is None:
            logger.warning("Failed to locate admin channel with id %s", router.admin)
            return
        try:
            await channel.send(content)
        except discord.HTTPException:
            logger.exception("Failed to send admin message")

    async def notify_admin(submission: Submission) -> None:
        if router.admin is None:
            return
        channel = bot.get_channel(router.admin)
        if channel is None:
            logger.warning("Failed to locate admin channel with id %s", router.admin)
            return
        embed, file = build_admin_notification(submission)
        if file is not None:
            message = await channel.send(embed=embed, file=file)
        else:
            message = await channel.send(embed=embed)
        thread = await message.create_thread(
            name=f"Code - {submission.username}",
            auto_archive_duration=settings.thread_auto_archive_minutes,
        )
        if submission.image_data:
            await thread.send(
                file=make_file(submission.image_data, submission.image_filename or "image.png")
            )
        await thread.send(f"```\n{submission.code}\n```")

    intake = IntakeHandler(
        service,
        intake_sessions,
        menu_factory=lambda: IntakeMenuView(intake_sessions),
        admin_notifier=notify_admin,
    )

    async def _deny(interaction: discord.Interaction) -> None:
        await interaction.response.send_message(
            "❌ This command is for administrators only.", ephemeral=True
        )

    @bot.event
    async def on_ready() -> None:
        logger.info("EOS defenses bot connected as %s", bot.user)
        try:
            synced = await bot.tree.sync()
            logger.info("Synced %d commands", len(synced))
        except Exception as exc:  # pragma: no cover - logging only
            logger.exception("Failed to sync commands: %s", exc)
        scheduler.start()

    @bot.event
    async def on_message(message: discord.Message) -> None:
        if message.author.bot or message.guild is not None:
            return
        await intake.handle(message)

    @app_commands.command(name="list", description="View and manage all pending submissions")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    @track_command
    async def list_submissions(interaction: discord.Interaction) -> None:
        if not _is_admin(interaction):
            await _deny(interaction)
            return
        model = review_sessions.open(
            interaction.id, ReviewMode.SUBMISSIONS, season=settings.default_season
        )
        view = SubmissionReviewView(
            owner_id=interaction.user.id,
            key=interaction.id,
            model=model,
            sessions=review_sessions,
            service=service,
            timeout=settings.view_timeout_seconds,
            publish=publish_submissions,
            scheduler=scheduler,
            default_channel=router.publish,
        )
        embed, files = build_review_page(model, preview_length=settings.code_preview_length)
        await interaction.response.send_message(
            embed=embed, files=files, view=view, ephemeral=True
        )
        view.origin = interaction

    @app_commands.command(name="archive", description="Browse deleted and published submissions")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    @track_command
    async def archive(interaction: discord.Interaction) -> None:
        if not _is_admin(interaction):
            await _deny(interaction)
            return
        view = open_archive_view(
            owner_id=interaction.user.id,
            key=interaction.id,
            sessions=review_sessions,
            service=service,
            timeout=settings.view_timeout_seconds,
        )
        embed, files = view.page()
        await interaction.response.send_message(
            embed=embed, files=files, view=view, ephemeral=True
        )
        view.origin = interaction

    @app_commands.command(name="opponents", description="Manage EOS Opponents Defenses (images)")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    @track_command
    async def opponents(interaction: discord.Interaction) -> None:
        if not _is_admin(interaction):
            await _deny(interaction)
            return
        model = review_sessions.open(interaction.id, ReviewMode.OPPONENTS_PENDING)
        view = OpponentReviewView(
            owner_id=interaction.user.id,
            key=interaction.id,
            model=model,
            sessions=review_sessions,
            service=service,
            timeout=settings.view_timeout_seconds,
            publish=publish_opponents,
            default_channel=router.publish,
        )
        embed, files = build_review_page(model)
        await interaction.response.send_message(
            embed=embed, files=files, view=view, ephemeral=True
        )
        view.origin = interaction

    @app_commands.command(name="schedule_status", description="Show the scheduled publish, if any")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    @track_command
    async def schedule_status(interaction: discord.Interaction) -> None:
        if not _is_admin(interaction):
            await _deny(interaction)
            return
        await interaction.response.send_message(
            build_schedule_status_message(scheduler.status()), ephemeral=True
        )

    @app_commands.command(name="schedule_stop", description="Cancel the scheduled publish")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    @track_command
    async def schedule_stop(interaction: discord.Interaction) -> None:
        if not _is_admin(interaction):
            await _deny(interaction)
            return
        stopped = scheduler.stop()
        message = "⏹️ Scheduled publish cancelled." if stopped else "⏰ Nothing was scheduled."
        await interaction.response.send_message(message, ephemeral=True)

    bot.tree.add_command(list_submissions)
    bot.tree.add_command(archive)
    bot.tree.add_command(opponents)
    bot.tree.add_command(schedule_status)
    bot.tree.add_command(schedule_stop)
    return bot


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    token = os.environ.get("DISCORD_TOKEN")
    if not token:
        raise RuntimeError("DISCORD_TOKEN environment variable must be set")
    db_path = Path(os.environ.get("EOS_DEFENSES_DB", "data/submissions.db"))
    bot = build_bot(db_path)
    bot.run(token)


__all__ = ["build_bot", "dispatch_scheduled", "main", "run_scheduled_publish"]
