"""Bulk publishing of submissions and opponent defenses."""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence

from .config import Settings, get_settings
from .errors import StorageError
from .models import OutboundFile, PublishResult, Submission
from .state import DefenseStore
from .telemetry import TelemetryCollector

logger = logging.getLogger(__name__)

BUSY_ERROR = "A publish is already in progress."
NO_CHANNEL_ERROR = "Publish channel not found!"
NO_SUBMISSIONS_ERROR = "No submissions to publish."
NO_DEFENSES_ERROR = "No approved defenses to publish."


class OutputChannel(Protocol):
    """Where published items are posted."""

    id: int

    async def send(
        self, content: Optional[str] = None, files: Sequence[OutboundFile] = ()
    ) -> Any: ...

    async def start_thread(self, message: Any, title: str) -> Any: ...

    async def send_to_thread(
        self, thread: Any, content: Optional[str] = None, files: Sequence[OutboundFile] = ()
    ) -> Any: ...


class DirectNotifier(Protocol):
    """Sends private acknowledgements; returns False instead of raising."""

    async def send_direct(self, user_id: str, content: str) -> bool: ...


def format_submission_content(
    submission: Submission, ordinal: int, user_total: int
) -> str:
    """Build the public post for one submission.

    The ordinal is only shown when the submitter has more than one item in
    the batch.
    """

    content = f"<@{submission.user_id}>"
    if user_total > 1:
        content += f" - {ordinal}"
    if submission.extra_mention:
        content += f" <@{submission.extra_mention}>"
    if submission.message:
        content += f"\n\n{submission.message}"
    return content


class BulkPublisher:
    """Publishes everything eligible in one sequential pass.

    Manual and scheduled triggers share one lock, so overlapping calls are
    refused rather than double-posting.
    """

    def __init__(
        self,
        store: DefenseStore,
        *,
        settings: Optional[Settings] = None,
        telemetry: Optional[TelemetryCollector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._telemetry = telemetry
        self._sleep = sleep
        self._lock = asyncio.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def _track(self, kind: str, result: PublishResult, *, trigger: str, season: str) -> None:
        if self._telemetry is None:
            return
        self._telemetry.track_publish_batch(
            kind,
            attempted=result.attempted,
            published=result.published_count,
            trigger=trigger,
            season=season,
        )

    async def publish_submissions(
        self,
        channel: Optional[OutputChannel],
        notifier: Optional[DirectNotifier],
        *,
        season: Optional[str] = None,
        trigger: str = "manual",
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PublishResult:
        if self._lock.locked():
            logger.warning("Refusing %s submission publish; another batch is running", trigger)
            return PublishResult(success=False, error=BUSY_ERROR)
        async with self._lock:
            season = season or self._settings.default_season
            result = await self._publish_submissions(channel, notifier, season, cancel_event)
            self._track("submissions", result, trigger=trigger, season=season)
            return result

    async def _publish_submissions(
        self,
        channel: Optional[OutputChannel],
        notifier: Optional[DirectNotifier],
        season: str,
        cancel_event: Optional[asyncio.Event],
    ) -> PublishResult:
        if channel is None:
            logger.error("Publish channel not found")
            return PublishResult(success=False, error=NO_CHANNEL_ERROR)

        submissions = self._store.list_pending()
        if not submissions:
            logger.info("No submissions to publish")
            return PublishResult(success=False, error=NO_SUBMISSIONS_ERROR)

        try:
            await channel.send(self._settings.render_intro(season))
        except Exception as exc:
            logger.exception("Failed to send publish intro")
            return PublishResult(success=False, error=f"Failed to send intro: {exc}")

        user_totals = Counter(submission.user_id for submission in submissions)
        user_seen: Counter = Counter()
        result = PublishResult(success=True)

        for submission in submissions:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Publish cancelled after %d items", result.attempted)
                break
            result.attempted += 1
            user_seen[submission.user_id] += 1
            content = format_submission_content(
                submission, user_seen[submission.user_id], user_totals[submission.user_id]
            )
            files = []
            if submission.image_data:
                files.append(
                    OutboundFile(submission.image_filename or "image.png", submission.image_data)
                )
            try:
                message = await channel.send(content, files)
                thread = await channel.start_thread(message, self._settings.thread_title)
                await channel.send_to_thread(thread, submission.code)
                self._store.mark_published(submission.id)
            except StorageError:
                raise
            except Exception:
                logger.exception("Error publishing submission %s", submission.id)
                result.failed_ids.append(submission.id)
                continue

            result.published_count += 1
            logger.info("Published submission %s from %s", submission.id, submission.username)
            await self._acknowledge(notifier, submission, channel.id)

        return result

    async def _acknowledge(
        self, notifier: Optional[DirectNotifier], submission: Submission, channel_id: int
    ) -> None:
        if notifier is None:
            return
        try:
            delivered = await notifier.send_direct(
                submission.user_id, self._settings.render_ack(channel_id)
            )
        except Exception:
            logger.info("Could not DM user %s", submission.user_id, exc_info=True)
            return
        if not delivered:
            logger.info("Could not DM user %s", submission.user_id)

    async def publish_opponent_defenses(
        self,
        channel: Optional[OutputChannel],
        *,
        season: Optional[str] = None,
        trigger: str = "manual",
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PublishResult:
        if self._lock.locked():
            logger.warning("Refusing %s opponent publish; another batch is running", trigger)
            return PublishResult(success=False, error=BUSY_ERROR)
        async with self._lock:
            season = season or self._settings.default_season
            result = await self._publish_opponents(channel, season, cancel_event)
            self._track("opponent_defenses", result, trigger=trigger, season=season)
            return result

    async def _publish_opponents(
        self,
        channel: Optional[OutputChannel],
        season: str,
        cancel_event: Optional[asyncio.Event],
    ) -> PublishResult:
        if channel is None:
            logger.error("Publish channel not found")
            return PublishResult(success=False, error=NO_CHANNEL_ERROR)

        defenses = self._store.list_approved_opponent_defenses(include_published=False)
        if not defenses:
            return PublishResult(success=False, error=NO_DEFENSES_ERROR)

        divider = self._settings.opponent_divider
        try:
            await channel.send(self._settings.render_opponent_opening(season))
            await channel.send(divider)
        except Exception as exc:
            logger.exception("Failed to send opponent opening message")
            return PublishResult(success=False, error=f"Failed to send intro: {exc}")

        delay = self._settings.opponent_publish_delay_seconds
        result = PublishResult(success=True)
        for index, defense in enumerate(defenses):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Opponent publish cancelled after %d items", result.attempted)
                break
            if index and delay > 0:
                await self._sleep(delay)
            result.attempted += 1
            image = defense.processed_image or defense.image_data
            try:
                await channel.send(None, [OutboundFile(defense.publish_filename, image)])
                self._store.mark_opponent_published(defense.id)
            except StorageError:
                raise
            except Exception:
                logger.exception("Error publishing opponent defense %s", defense.id)
                result.failed_ids.append(defense.id)
                continue
            result.published_count += 1

        try:
            await channel.send(divider)
            await channel.send(self._settings.opponent_closing_message)
        except Exception:
            logger.exception("Failed to send opponent closing message")
        return result


__all__ = [
    "BulkPublisher",
    "DirectNotifier",
    "OutputChannel",
    "format_submission_content",
]
