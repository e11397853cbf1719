"""Submission and opponent-defense lifecycle operations."""
from __future__ import annotations

import logging
from typing import Callable, List, Optional

from .config import Settings, get_settings
from .errors import ImageProcessingError, NotFoundError, ValidationError
from .imaging import process_opponent_image
from .models import (
    ArchiveReason,
    ArchivedSubmission,
    BatchReport,
    DefenseStatus,
    OpponentDefense,
    Submission,
)
from .state import DefenseStore

logger = logging.getLogger(__name__)

ImageTransform = Callable[[bytes, int], bytes]


class DefenseService:
    """Coordinates admin actions against the store.

    Single-item actions raise to the caller; ``approve_all_opponents`` keeps
    going past individual failures and reports them.
    """

    def __init__(
        self,
        store: DefenseStore,
        *,
        settings: Optional[Settings] = None,
        image_transform: Optional[ImageTransform] = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._transform = image_transform or self._default_transform

    @property
    def store(self) -> DefenseStore:
        return self._store

    @property
    def settings(self) -> Settings:
        return self._settings

    def _default_transform(self, image_data: bytes, number: int) -> bytes:
        return process_opponent_image(
            image_data,
            number,
            crop=self._settings.crop,
            style=self._settings.number_style,
        )

    # Submissions -------------------------------------------------------
    def submit_defense(
        self,
        user_id: str,
        username: str,
        code: str,
        image_data: Optional[bytes],
        image_filename: Optional[str] = None,
    ) -> Submission:
        if not image_data:
            raise ValidationError("A defense submission needs a screenshot")
        code = (code or "").strip()
        submission_id = self._store.insert_submission(
            user_id,
            username,
            code,
            image_data=image_data,
            image_filename=image_filename,
        )
        return self._require_submission(submission_id)

    def pending_submissions(self) -> List[Submission]:
        return self._store.list_pending()

    def archived_submissions(self) -> List[ArchivedSubmission]:
        return self._store.list_archived()

    def _require_submission(self, submission_id: int) -> Submission:
        submission = self._store.get_submission(submission_id)
        if submission is None:
            raise NotFoundError(f"Submission {submission_id} not found")
        return submission

    def _require_pending(self, submission_id: int) -> Submission:
        submission = self._require_submission(submission_id)
        if submission.published:
            raise ValidationError(f"Submission {submission_id} was already published")
        return submission

    def edit_code(self, submission_id: int, new_code: str) -> Submission:
        self._require_pending(submission_id)
        self._store.update_code(submission_id, (new_code or "").strip())
        return self._require_submission(submission_id)

    def edit_message(
        self, submission_id: int, message: str, extra_mention: str = ""
    ) -> Submission:
        self._require_pending(submission_id)
        self._store.update_message(
            submission_id, (message or "").strip(), normalise_mention(extra_mention)
        )
        return self._require_submission(submission_id)

    def delete_submission(self, submission_id: int) -> int:
        self._require_pending(submission_id)
        return self._store.delete_to_archive(submission_id, ArchiveReason.DELETED)

    def restore_submission(self, archive_id: int) -> Submission:
        new_id = self._store.restore_from_archive(archive_id)
        return self._require_submission(new_id)

    def purge_archived(self, archive_id: int) -> None:
        self._store.delete_permanently(archive_id)

    # Opponent defenses -------------------------------------------------
    def submit_opponent_image(
        self,
        user_id: str,
        username: str,
        image_data: bytes,
        image_filename: Optional[str] = None,
    ) -> OpponentDefense:
        defense_id = self._store.insert_opponent_defense(
            user_id, username, image_data, image_filename
        )
        defense = self._store.get_opponent_defense(defense_id)
        assert defense is not None
        return defense

    def pending_opponents(self) -> List[OpponentDefense]:
        return self._store.list_pending_opponent_defenses()

    def approved_opponents(self) -> List[OpponentDefense]:
        return self._store.list_approved_opponent_defenses()

    def approve_opponent(self, defense_id: int) -> OpponentDefense:
        """Number and process a pending opponent defense.

        The number is drawn before the image is processed, so a failing
        transform still consumes it.
        """

        defense = self._store.get_opponent_defense(defense_id)
        if defense is None:
            raise NotFoundError(f"Opponent defense {defense_id} not found")
        if defense.status is not DefenseStatus.PENDING:
            raise ValidationError(f"Opponent defense {defense_id} is not pending")
        number = self._store.next_opponent_number()
        try:
            processed = self._transform(defense.image_data, number)
        except ImageProcessingError:
            logger.warning("Opponent defense %s failed processing as #%s", defense_id, number)
            raise
        except Exception as exc:
            logger.warning("Opponent defense %s failed processing as #%s", defense_id, number)
            raise ImageProcessingError(str(exc)) from exc
        if not processed:
            raise ImageProcessingError(f"Processing defense {defense_id} produced no image")
        self._store.approve_opponent_defense(defense_id, processed, number)
        logger.info("Approved opponent defense %s as #%s", defense_id, number)
        approved = self._store.get_opponent_defense(defense_id)
        assert approved is not None
        return approved

    def approve_all_opponents(self) -> BatchReport:
        report = BatchReport()
        for defense in self._store.list_pending_opponent_defenses():
            report.attempted += 1
            try:
                approved = self.approve_opponent(defense.id)
            except (ImageProcessingError, ValidationError, NotFoundError):
                logger.exception("Failed to approve opponent defense %s", defense.id)
                report.failed_ids.append(defense.id)
                continue
            report.succeeded += 1
            if approved.number is not None:
                report.numbers.append(approved.number)
        return report

    def reject_opponent(self, defense_id: int) -> None:
        self._store.reject_opponent_defense(defense_id)

    def remove_opponent(self, defense_id: int) -> None:
        defense = self._store.get_opponent_defense(defense_id)
        if defense is None:
            raise NotFoundError(f"Opponent defense {defense_id} not found")
        self._store.reject_opponent_defense(defense_id)

    def clear_opponents(self) -> int:
        return self._store.clear_all_opponent_defenses()


def normalise_mention(value: Optional[str]) -> str:
    """Reduce ``<@123>``, ``<@!123>`` or ``@123`` to the bare user id."""

    text = (value or "").strip()
    if text.startswith("<@") and text.endswith(">"):
        text = text[2:-1].lstrip("!")
    return text.lstrip("@").strip()


__all__ = ["DefenseService", "ImageTransform", "normalise_mention"]
