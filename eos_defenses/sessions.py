"""Per-user DM intake sessions and admin review view-models."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from .models import ArchivedSubmission, OpponentDefense, Submission
from .service import DefenseService


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IntakeState(str, Enum):
    IDLE = "idle"
    AWAITING_CODE_AND_IMAGE = "awaiting_code_and_image"
    AWAITING_OPPONENT_IMAGES = "awaiting_opponent_images"


@dataclass
class IntakeSession:
    user_id: str
    state: IntakeState
    started_at: datetime
    uploads: int = 0


class IntakeSessionStore:
    """Tracks which intake step each DM user is on.

    Sessions expire ``timeout`` after they were started; an expired session
    reads as idle.
    """

    def __init__(
        self,
        timeout: timedelta = timedelta(minutes=15),
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._timeout = timeout
        self._clock = clock or _utc_now
        self._sessions: Dict[str, IntakeSession] = {}

    def begin(self, user_id: str, state: IntakeState) -> IntakeSession:
        user_id = str(user_id)
        if state is IntakeState.IDLE:
            self.clear(user_id)
            return IntakeSession(user_id, IntakeState.IDLE, self._clock())
        session = IntakeSession(user_id=user_id, state=state, started_at=self._clock())
        self._sessions[user_id] = session
        return session

    def get(self, user_id: str) -> IntakeSession:
        user_id = str(user_id)
        session = self._sessions.get(user_id)
        now = self._clock()
        if session is None:
            return IntakeSession(user_id, IntakeState.IDLE, now)
        if now - session.started_at > self._timeout:
            del self._sessions[user_id]
            return IntakeSession(user_id, IntakeState.IDLE, now)
        return session

    def state(self, user_id: str) -> IntakeState:
        return self.get(user_id).state

    def record_upload(self, user_id: str, count: int = 1) -> int:
        session = self.get(user_id)
        if session.state is IntakeState.IDLE:
            return 0
        session.uploads += count
        return session.uploads

    def clear(self, user_id: str) -> Optional[IntakeSession]:
        return self._sessions.pop(str(user_id), None)

    def __len__(self) -> int:
        return len(self._sessions)


class ReviewMode(str, Enum):
    SUBMISSIONS = "submissions"
    ARCHIVE = "archive"
    OPPONENTS_PENDING = "opponents_pending"
    OPPONENTS_APPROVED = "opponents_approved"


ReviewItem = Submission | ArchivedSubmission | OpponentDefense


@dataclass
class ReviewView:
    """What one admin is looking at: a list snapshot plus a cursor.

    The snapshot is only as fresh as the last :meth:`refresh`; callers
    refresh after every mutation.
    """

    mode: ReviewMode
    items: List[ReviewItem] = field(default_factory=list)
    cursor: int = 0
    show_full_code: bool = False
    season: Optional[str] = None

    def refresh(self, service: DefenseService) -> None:
        self.items = list(_load(service, self.mode))
        self._clamp()

    def switch_mode(self, mode: ReviewMode, service: DefenseService) -> None:
        self.mode = mode
        self.cursor = 0
        self.refresh(service)

    def _clamp(self) -> None:
        if not self.items:
            self.cursor = 0
        elif self.cursor >= len(self.items):
            self.cursor = len(self.items) - 1
        elif self.cursor < 0:
            self.cursor = 0

    @property
    def current(self) -> Optional[ReviewItem]:
        if not self.items:
            return None
        return self.items[self.cursor]

    @property
    def has_previous(self) -> bool:
        return self.cursor > 0

    @property
    def has_next(self) -> bool:
        return self.cursor < len(self.items) - 1

    def next(self) -> None:
        if self.has_next:
            self.cursor += 1

    def previous(self) -> None:
        if self.has_previous:
            self.cursor -= 1

    def position_label(self) -> str:
        if not self.items:
            return "0/0"
        return f"{self.cursor + 1}/{len(self.items)}"


def _load(service: DefenseService, mode: ReviewMode) -> Sequence[ReviewItem]:
    if mode is ReviewMode.SUBMISSIONS:
        return service.pending_submissions()
    if mode is ReviewMode.ARCHIVE:
        return service.archived_submissions()
    if mode is ReviewMode.OPPONENTS_PENDING:
        return service.pending_opponents()
    return service.approved_opponents()


class ReviewSessions:
    """Review views keyed by the admin's interaction message."""

    def __init__(self, service: DefenseService) -> None:
        self._service = service
        self._views: Dict[int, ReviewView] = {}

    def open(self, key: int, mode: ReviewMode, *, season: Optional[str] = None) -> ReviewView:
        view = ReviewView(mode=mode, season=season)
        view.refresh(self._service)
        self._views[key] = view
        return view

    def get(self, key: int) -> Optional[ReviewView]:
        return self._views.get(key)

    def close(self, key: int) -> None:
        self._views.pop(key, None)

    def __len__(self) -> int:
        return len(self._views)


__all__ = [
    "IntakeSession",
    "IntakeSessionStore",
    "IntakeState",
    "ReviewMode",
    "ReviewSessions",
    "ReviewView",
]
