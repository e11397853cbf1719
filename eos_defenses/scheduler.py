"""One-shot scheduling of the bulk submission publish."""
from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from .errors import InvalidScheduleError, ValidationError
from .telemetry import TelemetryCollector

logger = logging.getLogger(__name__)

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")

JOB_ID = "scheduled_publish"


@dataclass(frozen=True)
class ScheduledJob:
    """The single armed publish job."""

    date: str
    time: str
    channel_id: Optional[int]
    season: str
    run_at: datetime


@dataclass(frozen=True)
class ScheduleStatus:
    active: bool
    date: Optional[str] = None
    time: Optional[str] = None
    channel_id: Optional[int] = None
    season: Optional[str] = None


def parse_schedule_instant(date: str, time: str) -> datetime:
    """Interpret ``YYYY-MM-DD`` and ``HH:MM`` as a UTC instant."""

    date = (date or "").strip()
    time = (time or "").strip()
    if not _DATE_PATTERN.match(date):
        raise ValidationError("Invalid date format! Use YYYY-MM-DD (e.g., 2025-12-15)")
    match = _TIME_PATTERN.match(time)
    if not match:
        raise ValidationError("Invalid time format! Use HH:MM (e.g., 22:30)")
    try:
        day = datetime.strptime(date, "%Y-%m-%d")
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {date}") from exc
    return day.replace(
        hour=int(match.group(1)), minute=int(match.group(2)), tzinfo=timezone.utc
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PublishScheduler:
    """Holds at most one future publish and fires ``callback`` at its instant.

    Arming a new job replaces the previous one under the same lock, so two
    timers are never live together.
    """

    def __init__(
        self,
        callback: Callable[[ScheduledJob], None],
        *,
        clock: Optional[Callable[[], datetime]] = None,
        telemetry: Optional[TelemetryCollector] = None,
        misfire_grace_seconds: int = 300,
    ) -> None:
        self._callback = callback
        self._clock = clock or _utc_now
        self._telemetry = telemetry
        self._misfire_grace = misfire_grace_seconds
        self._scheduler = BackgroundScheduler(timezone=timezone.utc)
        self._scheduler.add_listener(self._on_missed, EVENT_JOB_MISSED)
        self._lock = threading.Lock()
        self._job: Optional[ScheduledJob] = None
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        self._scheduler.start()
        self._started = True

    def shutdown(self) -> None:
        if not self._started:
            return
        self._scheduler.shutdown(wait=False)
        self._started = False

    def schedule_once(
        self,
        date: str,
        time: str,
        channel_id: Optional[int],
        season: str,
    ) -> ScheduledJob:
        run_at = parse_schedule_instant(date, time)
        now = self._clock()
        if run_at <= now:
            logger.info("Rejected schedule for %s; instant is not in the future", run_at)
            raise InvalidScheduleError(
                f"Scheduled time {run_at:%Y-%m-%d %H:%M} UTC is in the past!"
            )
        job = ScheduledJob(
            date=date.strip(),
            time=f"{run_at:%H:%M}",
            channel_id=channel_id,
            season=str(season),
            run_at=run_at,
        )
        with self._lock:
            self.start()
            self._scheduler.add_job(
                self._fire,
                "date",
                run_date=run_at,
                args=[job],
                id=JOB_ID,
                replace_existing=True,
                misfire_grace_time=self._misfire_grace,
            )
            self._job = job
        minutes = round((run_at - now).total_seconds() / 60)
        logger.info(
            "Scheduler set for %s at %s UTC to channel %s (in %d minutes)",
            job.date,
            job.time,
            channel_id,
            minutes,
        )
        if self._telemetry is not None:
            self._telemetry.track_system_event("publish_scheduled", source="scheduler")
        return job

    def _fire(self, job: ScheduledJob) -> None:
        logger.info("Scheduled publish for %s %s firing", job.date, job.time)
        try:
            self._callback(job)
        except Exception:
            logger.exception("Scheduled publish callback failed")
        finally:
            with self._lock:
                if self._job is job:
                    self._job = None
            if self._telemetry is not None:
                self._telemetry.track_system_event("publish_schedule_fired", source="scheduler")

    def _on_missed(self, event: JobExecutionEvent) -> None:
        if event.job_id != JOB_ID:
            return
        with self._lock:
            job = self._job
            # A replacement armed since the miss keeps its slot.
            if job is None or job.run_at != event.scheduled_run_time:
                return
            self._job = None
        logger.warning(
            "Scheduled publish for %s %s was missed (more than %ds late)",
            job.date,
            job.time,
            self._misfire_grace,
        )
        if self._telemetry is not None:
            self._telemetry.track_system_event(
                "publish_schedule_missed", source="scheduler", reason="misfire"
            )

    def stop(self) -> bool:
        """Cancel the armed job without running it."""

        with self._lock:
            if self._job is None:
                return False
            try:
                self._scheduler.remove_job(JOB_ID)
            except JobLookupError:
                logger.debug("Scheduled job already gone")
            self._job = None
        logger.info("Scheduled publish cancelled")
        if self._telemetry is not None:
            self._telemetry.track_system_event("publish_schedule_cancelled", source="scheduler")
        return True

    def status(self) -> ScheduleStatus:
        job = self._job
        if job is None:
            return ScheduleStatus(active=False)
        return ScheduleStatus(
            active=True,
            date=job.date,
            time=job.time,
            channel_id=job.channel_id,
            season=job.season,
        )


__all__ = [
    "JOB_ID",
    "PublishScheduler",
    "ScheduleStatus",
    "ScheduledJob",
    "parse_schedule_instant",
]
