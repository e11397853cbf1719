"""Tests for the SQLite-backed defense store."""
from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from eos_defenses.errors import NotFoundError, StorageError, ValidationError
from eos_defenses.models import ArchiveReason, DefenseStatus
from eos_defenses.state import DefenseStore


class ScriptedClock:
    def __init__(self, *instants: datetime) -> None:
        self._instants = list(instants)
        self._last = instants[-1]

    def __call__(self) -> datetime:
        if self._instants:
            return self._instants.pop(0)
        self._last = self._last + timedelta(seconds=1)
        return self._last


def _insert(store: DefenseStore, user: str = "1", code: str = "ABC") -> int:
    return store.insert_submission(user, f"user{user}", code, image_data=b"img", image_filename="a.png")


def test_pending_ordered_by_creation_time(tmp_path):
    """Pending submissions should list oldest first regardless of insert order."""
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    clock = ScriptedClock(base + timedelta(minutes=3), base + timedelta(minutes=1), base + timedelta(minutes=2))
    store = DefenseStore(tmp_path / "db.sqlite", clock=clock)

    late = _insert(store, code="LATE")
    early = _insert(store, code="EARLY")
    middle = _insert(store, code="MIDDLE")

    assert [sub.id for sub in store.list_pending()] == [early, middle, late]


def test_insert_rejects_blank_code(store):
    """Empty or whitespace-only code should be refused."""
    with pytest.raises(ValidationError):
        store.insert_submission("1", "alice", "   ")
    assert store.list_pending() == []


def test_insert_round_trips_fields(store):
    """Stored submissions should come back with every field intact."""
    submission_id = store.insert_submission(
        "42", "alice", "CODE-1", image_data=b"\x89PNG", image_filename="shot.png"
    )
    submission = store.get_submission(submission_id)

    assert submission is not None
    assert submission.user_id == "42"
    assert submission.username == "alice"
    assert submission.code == "CODE-1"
    assert submission.image_data == b"\x89PNG"
    assert submission.image_filename == "shot.png"
    assert submission.message == ""
    assert submission.published is False


def test_update_code_and_message(store):
    """Edits should persist and leave the creation time alone."""
    submission_id = _insert(store)
    before = store.get_submission(submission_id)

    store.update_code(submission_id, "NEW")
    store.update_message(submission_id, "hello", "99")
    after = store.get_submission(submission_id)

    assert after.code == "NEW"
    assert after.message == "hello"
    assert after.extra_mention == "99"
    assert after.created_at == before.created_at


def test_update_missing_submission_raises(store):
    """Editing an unknown id should raise NotFoundError."""
    with pytest.raises(NotFoundError):
        store.update_code(999, "X")
    with pytest.raises(NotFoundError):
        store.update_message(999, "hi")
    with pytest.raises(ValidationError):
        store.update_code(999, "")


def test_delete_moves_submission_to_archive(store):
    """Deleting should remove the row from pending and keep an archive copy."""
    submission_id = _insert(store, code="GONE")

    archive_id = store.delete_to_archive(submission_id)

    assert store.get_submission(submission_id) is None
    assert store.list_pending() == []
    archived = store.get_archived(archive_id)
    assert archived.original_id == submission_id
    assert archived.code == "GONE"
    assert archived.archive_reason is ArchiveReason.DELETED


def test_delete_missing_submission_raises(store):
    """Archiving an unknown id should raise and leave the archive empty."""
    with pytest.raises(NotFoundError):
        store.delete_to_archive(123)
    assert store.list_archived() == []


def test_submission_ids_are_never_reused(store):
    """A new submission should get an id above any deleted one."""
    _insert(store)
    deleted = _insert(store)
    store.delete_to_archive(deleted)

    fresh = _insert(store)

    assert fresh > deleted


def test_mark_published_flags_and_archives(store):
    """Publishing should flag the row and record a published archive copy."""
    submission_id = _insert(store, code="PUB")

    archive_id = store.mark_published(submission_id)

    submission = store.get_submission(submission_id)
    assert submission.published is True
    assert store.list_pending() == []
    archived = store.get_archived(archive_id)
    assert archived.archive_reason is ArchiveReason.PUBLISHED
    assert archived.original_id == submission_id


def test_mark_published_twice_is_rejected(store):
    """A published submission should not be published again."""
    submission_id = _insert(store)
    store.mark_published(submission_id)

    with pytest.raises(ValidationError):
        store.mark_published(submission_id)
    assert len(store.list_archived()) == 1
    with pytest.raises(NotFoundError):
        store.mark_published(999)


def test_archive_lists_newest_first(store):
    """Archived entries should list most recently archived first."""
    first = store.delete_to_archive(_insert(store, code="ONE"))
    second = store.delete_to_archive(_insert(store, code="TWO"))

    assert [entry.id for entry in store.list_archived()] == [second, first]


def test_restore_creates_new_pending_submission(store):
    """Restoring should re-insert under a fresh id and drop the archive row."""
    submission_id = _insert(store, code="BACK")
    original = store.get_submission(submission_id)
    archive_id = store.delete_to_archive(submission_id)

    new_id = store.restore_from_archive(archive_id)

    assert new_id != submission_id
    assert store.get_archived(archive_id) is None
    restored = store.get_submission(new_id)
    assert restored.code == "BACK"
    assert restored.published is False
    assert restored.created_at == original.created_at
    assert [sub.id for sub in store.list_pending()] == [new_id]


def test_restore_and_purge_missing_archive_raise(store):
    """Unknown archive ids should raise NotFoundError."""
    with pytest.raises(NotFoundError):
        store.restore_from_archive(77)
    with pytest.raises(NotFoundError):
        store.delete_permanently(77)


def test_delete_permanently_removes_archive_entry(store):
    """Permanent deletion should leave nothing behind."""
    archive_id = store.delete_to_archive(_insert(store))

    store.delete_permanently(archive_id)

    assert store.list_archived() == []


def test_state_survives_reopen(tmp_path, clock):
    """Reopening the database should yield identical lists."""
    path = tmp_path / "persist.db"
    store = DefenseStore(path, clock=clock)
    keep = _insert(store, code="KEEP")
    store.delete_to_archive(_insert(store, code="DROP"))
    defense_id = store.insert_opponent_defense("5", "bob", b"raw")
    store.approve_opponent_defense(defense_id, b"done", store.next_opponent_number())

    reopened = DefenseStore(path, clock=clock)

    assert reopened.list_pending() == store.list_pending()
    assert reopened.list_archived() == store.list_archived()
    assert reopened.list_approved_opponent_defenses() == store.list_approved_opponent_defenses()
    assert reopened.get_submission(keep).code == "KEEP"


def test_unopenable_database_raises_storage_error(tmp_path):
    """A path that SQLite cannot open should surface as StorageError."""
    with pytest.raises(StorageError):
        DefenseStore(tmp_path)


def test_opponent_numbers_increase_across_reopen_and_clear(tmp_path, clock):
    """The defense counter should never hand out the same number twice."""
    path = tmp_path / "numbers.db"
    store = DefenseStore(path, clock=clock)
    first = store.next_opponent_number()
    second = store.next_opponent_number()

    store.clear_all_opponent_defenses()
    third = DefenseStore(path, clock=clock).next_opponent_number()

    assert (first, second, third) == (1, 2, 3)


def test_opponent_lifecycle(store):
    """Opponent defenses should move from pending to approved to published."""
    defense_id = store.insert_opponent_defense("7", "carol", b"raw", "opp.png")
    assert [d.id for d in store.list_pending_opponent_defenses()] == [defense_id]

    store.approve_opponent_defense(defense_id, b"processed", 4)
    approved = store.get_opponent_defense(defense_id)
    assert approved.status is DefenseStatus.APPROVED
    assert approved.number == 4
    assert approved.processed_image == b"processed"
    assert approved.publish_filename == "defense_4.png"
    assert store.list_pending_opponent_defenses() == []

    store.mark_opponent_published(defense_id)
    assert store.list_approved_opponent_defenses(include_published=False) == []
    assert store.list_approved_opponent_defenses()[0].published is True


def test_approve_requires_pending_and_positive_number(store):
    """Approval should reject bad numbers, unknown ids and repeat approvals."""
    defense_id = store.insert_opponent_defense("7", "carol", b"raw")

    with pytest.raises(ValidationError):
        store.approve_opponent_defense(defense_id, b"p", 0)
    with pytest.raises(NotFoundError):
        store.approve_opponent_defense(555, b"p", 1)

    store.approve_opponent_defense(defense_id, b"p", 1)
    with pytest.raises(ValidationError):
        store.approve_opponent_defense(defense_id, b"p", 2)


def test_approved_defenses_ordered_by_number(store):
    """Approved defenses should list in number order."""
    a = store.insert_opponent_defense("1", "a", b"a")
    b = store.insert_opponent_defense("1", "a", b"b")
    store.approve_opponent_defense(b, b"pb", 1)
    store.approve_opponent_defense(a, b"pa", 2)

    assert [d.number for d in store.list_approved_opponent_defenses()] == [1, 2]


def test_reject_and_clear_opponents(store):
    """Rejecting should hard delete; clearing should report the count removed."""
    rejected = store.insert_opponent_defense("1", "a", b"a")
    store.insert_opponent_defense("1", "a", b"b")
    store.insert_opponent_defense("1", "a", b"c")

    store.reject_opponent_defense(rejected)
    assert store.get_opponent_defense(rejected) is None
    with pytest.raises(NotFoundError):
        store.reject_opponent_defense(rejected)

    assert store.clear_all_opponent_defenses() == 2
    assert store.list_pending_opponent_defenses() == []


def test_empty_opponent_image_rejected(store):
    """An opponent defense without image bytes should be refused."""
    with pytest.raises(ValidationError):
        store.insert_opponent_defense("1", "a", b"")


def test_legacy_database_is_migrated(tmp_path):
    """Older files without the newer columns should gain them and seed the counter."""
    path = tmp_path / "legacy.db"
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE submissions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            username TEXT NOT NULL,
            code TEXT NOT NULL,
            image_data BLOB,
            image_filename TEXT,
            created_at TEXT NOT NULL,
            published INTEGER NOT NULL DEFAULT 0
        );
        CREATE TABLE opponent_defenses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            username TEXT NOT NULL,
            image_data BLOB NOT NULL,
            image_filename TEXT,
            created_at TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            processed_image BLOB,
            number INTEGER
        );
        INSERT INTO submissions (user_id, username, code, created_at)
            VALUES ('1', 'old', 'LEGACY', '2024-01-01T00:00:00+00:00');
        INSERT INTO opponent_defenses (user_id, username, image_data, created_at, status, number)
            VALUES ('1', 'old', X'00', '2024-01-01T00:00:00+00:00', 'approved', 3);
        """
    )
    conn.commit()
    conn.close()

    store = DefenseStore(path)

    legacy = store.list_pending()[0]
    assert legacy.code == "LEGACY"
    assert legacy.message == ""
    assert store.list_approved_opponent_defenses()[0].published is False
    assert store.next_opponent_number() == 4
