"""Core data models for the EOS defenses bot."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class ArchiveReason(str, Enum):
    DELETED = "deleted"
    PUBLISHED = "published"


class DefenseStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"


@dataclass(frozen=True)
class Submission:
    """A player's defense code plus screenshot awaiting publication."""

    id: int
    user_id: str
    username: str
    code: str
    created_at: str
    message: str = ""
    extra_mention: str = ""
    image_data: Optional[bytes] = None
    image_filename: Optional[str] = None
    published: bool = False

    def code_preview(self, limit: int = 100) -> str:
        if len(self.code) <= limit:
            return self.code
        return f"{self.code[:limit]}..."


@dataclass(frozen=True)
class ArchivedSubmission:
    """Snapshot of a submission taken when it was deleted or published."""

    id: int
    original_id: int
    user_id: str
    username: str
    code: str
    created_at: str
    archive_reason: ArchiveReason
    archived_at: str
    message: str = ""
    extra_mention: str = ""
    image_data: Optional[bytes] = None
    image_filename: Optional[str] = None


@dataclass(frozen=True)
class OpponentDefense:
    """Opponent screenshot moving through review and publication."""

    id: int
    user_id: str
    username: str
    image_data: bytes
    created_at: str
    image_filename: Optional[str] = None
    status: DefenseStatus = DefenseStatus.PENDING
    processed_image: Optional[bytes] = None
    number: Optional[int] = None
    published: bool = False

    @property
    def publish_filename(self) -> str:
        return f"defense_{self.number}.png"


@dataclass(frozen=True)
class OutboundFile:
    """Attachment handed to an output transport."""

    filename: str
    data: bytes


@dataclass
class PublishResult:
    """Outcome of a bulk publish run."""

    success: bool
    published_count: int = 0
    attempted: int = 0
    error: Optional[str] = None
    failed_ids: List[int] = field(default_factory=list)


@dataclass
class BatchReport:
    """Outcome of a batch approval."""

    attempted: int = 0
    succeeded: int = 0
    numbers: List[int] = field(default_factory=list)
    failed_ids: List[int] = field(default_factory=list)


__all__ = [
    "ArchiveReason",
    "DefenseStatus",
    "Submission",
    "ArchivedSubmission",
    "OpponentDefense",
    "OutboundFile",
    "PublishResult",
    "BatchReport",
]
