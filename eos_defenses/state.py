"""Submission and opponent-defense persistence."""
from __future__ import annotations

import logging
import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from .errors import NotFoundError, StorageError, ValidationError
from .models import (
    ArchiveReason,
    ArchivedSubmission,
    DefenseStatus,
    OpponentDefense,
    Submission,
)

logger = logging.getLogger(__name__)

_DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS submissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    username TEXT NOT NULL,
    code TEXT NOT NULL,
    message TEXT NOT NULL DEFAULT '',
    extra_mention TEXT NOT NULL DEFAULT '',
    image_data BLOB,
    image_filename TEXT,
    created_at TEXT NOT NULL,
    published INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_submissions_pending
    ON submissions (published, created_at);
CREATE TABLE IF NOT EXISTS archive (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    original_id INTEGER NOT NULL,
    user_id TEXT NOT NULL,
    username TEXT NOT NULL,
    code TEXT NOT NULL,
    message TEXT NOT NULL DEFAULT '',
    extra_mention TEXT NOT NULL DEFAULT '',
    image_data BLOB,
    image_filename TEXT,
    created_at TEXT NOT NULL,
    archive_reason TEXT NOT NULL,
    archived_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS opponent_defenses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    username TEXT NOT NULL,
    image_data BLOB NOT NULL,
    image_filename TEXT,
    created_at TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    processed_image BLOB,
    number INTEGER,
    published INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_opponent_defenses_status
    ON opponent_defenses (status, created_at);
CREATE TABLE IF NOT EXISTS counters (
    name TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);
"""

_SUBMISSION_COLUMNS = (
    "id, user_id, username, code, message, extra_mention, "
    "image_data, image_filename, created_at, published"
)
_ARCHIVE_COLUMNS = (
    "id, original_id, user_id, username, code, message, extra_mention, "
    "image_data, image_filename, created_at, archive_reason, archived_at"
)
_OPPONENT_COLUMNS = (
    "id, user_id, username, image_data, image_filename, created_at, "
    "status, processed_image, number, published"
)

_OPPONENT_COUNTER = "opponent_number"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _blob(value) -> Optional[bytes]:
    if value is None:
        return None
    return bytes(value)


def _row_to_submission(row) -> Submission:
    return Submission(
        id=row[0],
        user_id=row[1],
        username=row[2],
        code=row[3],
        message=row[4] or "",
        extra_mention=row[5] or "",
        image_data=_blob(row[6]),
        image_filename=row[7],
        created_at=row[8],
        published=bool(row[9]),
    )


def _row_to_archived(row) -> ArchivedSubmission:
    return ArchivedSubmission(
        id=row[0],
        original_id=row[1],
        user_id=row[2],
        username=row[3],
        code=row[4],
        message=row[5] or "",
        extra_mention=row[6] or "",
        image_data=_blob(row[7]),
        image_filename=row[8],
        created_at=row[9],
        archive_reason=ArchiveReason(row[10]),
        archived_at=row[11],
    )


def _row_to_opponent(row) -> OpponentDefense:
    return OpponentDefense(
        id=row[0],
        user_id=row[1],
        username=row[2],
        image_data=bytes(row[3]),
        image_filename=row[4],
        created_at=row[5],
        status=DefenseStatus(row[6]),
        processed_image=_blob(row[7]),
        number=row[8],
        published=bool(row[9]),
    )


class DefenseStore:
    """Write-through SQLite store for submissions and opponent defenses.

    Every mutating call commits before it returns, so the database file on
    disk is always a complete snapshot of the bot's state. Any SQLite failure
    surfaces as :class:`StorageError`.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._clock = clock or _utc_now
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            with closing(sqlite3.connect(self._db_path)) as conn:
                try:
                    yield conn
                    conn.commit()
                except sqlite3.Error:
                    conn.rollback()
                    raise
        except sqlite3.Error as exc:
            logger.error("Storage failure on %s: %s", self._db_path, exc)
            raise StorageError(f"Storage failure: {exc}") from exc

    def _now(self) -> str:
        return self._clock().astimezone(timezone.utc).isoformat()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(_DB_SCHEMA)
            columns = {
                row[1] for row in conn.execute("PRAGMA table_info('submissions')").fetchall()
            }
            if "message" not in columns:
                conn.execute("ALTER TABLE submissions ADD COLUMN message TEXT NOT NULL DEFAULT ''")
            if "extra_mention" not in columns:
                conn.execute(
                    "ALTER TABLE submissions ADD COLUMN extra_mention TEXT NOT NULL DEFAULT ''"
                )
            opponent_columns = {
                row[1]
                for row in conn.execute("PRAGMA table_info('opponent_defenses')").fetchall()
            }
            if "published" not in opponent_columns:
                conn.execute(
                    "ALTER TABLE opponent_defenses ADD COLUMN published INTEGER NOT NULL DEFAULT 0"
                )
            # Older databases derived numbers from the approved rows only.
            highest = conn.execute("SELECT MAX(number) FROM opponent_defenses").fetchone()[0]
            conn.execute(
                "INSERT OR IGNORE INTO counters (name, value) VALUES (?, ?)",
                (_OPPONENT_COUNTER, int(highest or 0)),
            )

    # Submissions -------------------------------------------------------
    def insert_submission(
        self,
        user_id: str,
        username: str,
        code: str,
        message: str = "",
        extra_mention: str = "",
        image_data: Optional[bytes] = None,
        image_filename: Optional[str] = None,
    ) -> int:
        if not code or not code.strip():
            raise ValidationError("Submission code must not be empty")
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO submissions (user_id, username, code, message, extra_mention, "
                "image_data, image_filename, created_at, published) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0)",
                (
                    str(user_id),
                    username,
                    code,
                    message or "",
                    extra_mention or "",
                    image_data,
                    image_filename,
                    self._now(),
                ),
            )
            submission_id = int(cursor.lastrowid)
        logger.info("Stored submission %s from %s", submission_id, username)
        return submission_id

    def get_submission(self, submission_id: int) -> Optional[Submission]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_SUBMISSION_COLUMNS} FROM submissions WHERE id = ?",
                (submission_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_submission(row)

    def list_pending(self) -> List[Submission]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_SUBMISSION_COLUMNS} FROM submissions "
                "WHERE published = 0 ORDER BY created_at ASC, id ASC"
            ).fetchall()
        return [_row_to_submission(row) for row in rows]

    def update_code(self, submission_id: int, new_code: str) -> None:
        if not new_code or not new_code.strip():
            raise ValidationError("Submission code must not be empty")
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE submissions SET code = ? WHERE id = ?", (new_code, submission_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Submission {submission_id} not found")

    def update_message(
        self, submission_id: int, message: str, extra_mention: str = ""
    ) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE submissions SET message = ?, extra_mention = ? WHERE id = ?",
                (message or "", extra_mention or "", submission_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Submission {submission_id} not found")

    def _archive_row(
        self, conn: sqlite3.Connection, submission_id: int, reason: ArchiveReason
    ) -> int:
        cursor = conn.execute(
            "INSERT INTO archive (original_id, user_id, username, code, message, extra_mention, "
            "image_data, image_filename, created_at, archive_reason, archived_at) "
            "SELECT id, user_id, username, code, message, extra_mention, image_data, "
            "image_filename, created_at, ?, ? FROM submissions WHERE id = ?",
            (reason.value, self._now(), submission_id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Submission {submission_id} not found")
        return int(cursor.lastrowid)

    def delete_to_archive(
        self, submission_id: int, reason: ArchiveReason = ArchiveReason.DELETED
    ) -> int:
        reason = ArchiveReason(reason)
        with self._connect() as conn:
            archive_id = self._archive_row(conn, submission_id, reason)
            conn.execute("DELETE FROM submissions WHERE id = ?", (submission_id,))
        logger.info("Archived submission %s as %s", submission_id, reason.value)
        return archive_id

    def mark_published(self, submission_id: int) -> int:
        """Flag a submission as published and keep an audit copy in the archive."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT published FROM submissions WHERE id = ?", (submission_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Submission {submission_id} not found")
            if row[0]:
                raise ValidationError(f"Submission {submission_id} is already published")
            conn.execute("UPDATE submissions SET published = 1 WHERE id = ?", (submission_id,))
            archive_id = self._archive_row(conn, submission_id, ArchiveReason.PUBLISHED)
        return archive_id

    def list_archived(self) -> List[ArchivedSubmission]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_ARCHIVE_COLUMNS} FROM archive ORDER BY archived_at DESC, id DESC"
            ).fetchall()
        return [_row_to_archived(row) for row in rows]

    def get_archived(self, archive_id: int) -> Optional[ArchivedSubmission]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_ARCHIVE_COLUMNS} FROM archive WHERE id = ?", (archive_id,)
            ).fetchone()
        if row is None:
            return None
        return _row_to_archived(row)

    def restore_from_archive(self, archive_id: int) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO submissions (user_id, username, code, message, extra_mention, "
                "image_data, image_filename, created_at, published) "
                "SELECT user_id, username, code, message, extra_mention, image_data, "
                "image_filename, created_at, 0 FROM archive WHERE id = ?",
                (archive_id,),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Archived submission {archive_id} not found")
            new_id = int(cursor.lastrowid)
            conn.execute("DELETE FROM archive WHERE id = ?", (archive_id,))
        logger.info("Restored archive entry %s as submission %s", archive_id, new_id)
        return new_id

    def delete_permanently(self, archive_id: int) -> None:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM archive WHERE id = ?", (archive_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Archived submission {archive_id} not found")
        logger.info("Permanently deleted archive entry %s", archive_id)

    # Opponent defenses -------------------------------------------------
    def insert_opponent_defense(
        self,
        user_id: str,
        username: str,
        image_data: bytes,
        image_filename: Optional[str] = None,
    ) -> int:
        if not image_data:
            raise ValidationError("Opponent defense image must not be empty")
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO opponent_defenses (user_id, username, image_data, image_filename, "
                "created_at, status, published) VALUES (?, ?, ?, ?, ?, ?, 0)",
                (
                    str(user_id),
                    username,
                    image_data,
                    image_filename,
                    self._now(),
                    DefenseStatus.PENDING.value,
                ),
            )
            return int(cursor.lastrowid)

    def get_opponent_defense(self, defense_id: int) -> Optional[OpponentDefense]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_OPPONENT_COLUMNS} FROM opponent_defenses WHERE id = ?",
                (defense_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_opponent(row)

    def list_pending_opponent_defenses(self) -> List[OpponentDefense]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_OPPONENT_COLUMNS} FROM opponent_defenses "
                "WHERE status = ? ORDER BY created_at ASC, id ASC",
                (DefenseStatus.PENDING.value,),
            ).fetchall()
        return [_row_to_opponent(row) for row in rows]

    def list_approved_opponent_defenses(
        self, include_published: bool = True
    ) -> List[OpponentDefense]:
        query = f"SELECT {_OPPONENT_COLUMNS} FROM opponent_defenses WHERE status = ?"
        if not include_published:
            query += " AND published = 0"
        query += " ORDER BY number ASC, id ASC"
        with self._connect() as conn:
            rows = conn.execute(query, (DefenseStatus.APPROVED.value,)).fetchall()
        return [_row_to_opponent(row) for row in rows]

    def next_opponent_number(self) -> int:
        with self._connect() as conn:
            conn.execute(
                "UPDATE counters SET value = value + 1 WHERE name = ?", (_OPPONENT_COUNTER,)
            )
            row = conn.execute(
                "SELECT value FROM counters WHERE name = ?", (_OPPONENT_COUNTER,)
            ).fetchone()
        return int(row[0])

    def approve_opponent_defense(
        self, defense_id: int, processed_image: bytes, number: int
    ) -> None:
        if number is None or int(number) < 1:
            raise ValidationError("Defense number must be a positive integer")
        with self._connect() as conn:
            row = conn.execute(
                "SELECT status FROM opponent_defenses WHERE id = ?", (defense_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Opponent defense {defense_id} not found")
            if row[0] != DefenseStatus.PENDING.value:
                raise ValidationError(f"Opponent defense {defense_id} is not pending")
            conn.execute(
                "UPDATE opponent_defenses SET status = ?, processed_image = ?, number = ? "
                "WHERE id = ?",
                (DefenseStatus.APPROVED.value, processed_image, int(number), defense_id),
            )

    def reject_opponent_defense(self, defense_id: int) -> None:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM opponent_defenses WHERE id = ?", (defense_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Opponent defense {defense_id} not found")

    def mark_opponent_published(self, defense_id: int) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE opponent_defenses SET published = 1 WHERE id = ?", (defense_id,)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Opponent defense {defense_id} not found")

    def clear_all_opponent_defenses(self) -> int:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM opponent_defenses")
            removed = cursor.rowcount
        logger.info("Cleared %d opponent defenses", removed)
        return removed


__all__ = ["DefenseStore"]
