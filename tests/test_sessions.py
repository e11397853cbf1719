"""Tests for DM intake sessions and admin review view-models."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from eos_defenses.sessions import (
    IntakeSessionStore,
    IntakeState,
    ReviewMode,
    ReviewSessions,
    ReviewView,
)


class ManualClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def test_intake_session_lifecycle():
    clock = ManualClock()
    sessions = IntakeSessionStore(timedelta(minutes=15), clock=clock)

    assert sessions.state("1") is IntakeState.IDLE
    sessions.begin("1", IntakeState.AWAITING_OPPONENT_IMAGES)
    assert sessions.state(1) is IntakeState.AWAITING_OPPONENT_IMAGES
    assert sessions.record_upload("1", 2) == 2
    assert sessions.record_upload("1") == 3
    assert len(sessions) == 1

    sessions.clear("1")
    assert sessions.state("1") is IntakeState.IDLE
    assert sessions.record_upload("1") == 0


def test_intake_session_expires():
    """Sessions older than the timeout should read as idle."""
    clock = ManualClock()
    sessions = IntakeSessionStore(timedelta(minutes=15), clock=clock)
    sessions.begin("1", IntakeState.AWAITING_CODE_AND_IMAGE)

    clock.now += timedelta(minutes=14)
    assert sessions.state("1") is IntakeState.AWAITING_CODE_AND_IMAGE
    clock.now += timedelta(minutes=2)
    assert sessions.state("1") is IntakeState.IDLE
    assert len(sessions) == 0


def test_begin_idle_clears_session():
    sessions = IntakeSessionStore()
    sessions.begin("1", IntakeState.AWAITING_CODE_AND_IMAGE)

    sessions.begin("1", IntakeState.IDLE)

    assert len(sessions) == 0


def test_review_view_navigation(service):
    for code in ("A", "B", "C"):
        service.submit_defense("1", "alice", code, b"img")
    view = ReviewView(mode=ReviewMode.SUBMISSIONS)
    view.refresh(service)

    assert view.position_label() == "1/3"
    assert view.has_previous is False
    view.previous()
    assert view.cursor == 0
    view.next()
    view.next()
    view.next()
    assert view.cursor == 2
    assert view.current.code == "C"
    assert view.has_next is False


def test_review_view_clamps_after_deletion(service):
    """Removing the last item should pull the cursor back onto the list."""
    ids = [service.submit_defense("1", "alice", code, b"img").id for code in ("A", "B")]
    view = ReviewView(mode=ReviewMode.SUBMISSIONS)
    view.refresh(service)
    view.next()

    service.delete_submission(ids[1])
    view.refresh(service)
    assert view.cursor == 0
    assert view.current.id == ids[0]

    service.delete_submission(ids[0])
    view.refresh(service)
    assert view.current is None
    assert view.position_label() == "0/0"


def test_switch_mode_resets_cursor(service):
    service.submit_defense("1", "alice", "A", b"img")
    service.submit_defense("1", "alice", "B", b"img")
    service.submit_opponent_image("2", "bob", b"opp")
    view = ReviewView(mode=ReviewMode.SUBMISSIONS)
    view.refresh(service)
    view.next()

    view.switch_mode(ReviewMode.OPPONENTS_PENDING, service)

    assert view.cursor == 0
    assert len(view.items) == 1
    view.switch_mode(ReviewMode.OPPONENTS_APPROVED, service)
    assert view.items == []


def test_review_sessions_keyed_by_interaction(service):
    service.delete_submission(service.submit_defense("1", "alice", "A", b"img").id)
    sessions = ReviewSessions(service)

    view = sessions.open(10, ReviewMode.ARCHIVE, season="159")

    assert sessions.get(10) is view
    assert view.season == "159"
    assert len(view.items) == 1
    sessions.close(10)
    assert sessions.get(10) is None
    assert len(sessions) == 0
