from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, computed_field

from .enums import ConflictReason, MessageStatus
from .exceptions import InvalidPatchError

MUTABLE_FIELDS: frozenset[str] = frozenset(
    {
        "status",
        "attempts",
        "max_attempts",
        "visible_at",
        "claimed_by",
        "claimed_at",
        "lock_token",
        "last_error",
        "completed_at",
        "dead_at",
    }
)


def new_message_id() -> str:
    return uuid.uuid4().hex


def new_version() -> str:
    return uuid.uuid4().hex


class QueueMessage(BaseModel):
    """The unit of work stored in the backlog.

    Timestamps are epoch milliseconds. ``id`` and ``payload`` never change after
    enqueue; everything else moves through conditional writes only.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(default_factory=new_message_id, min_length=1)
    payload: Any = Field(description="JSON-serialisable user data")
    status: MessageStatus = Field(default=MessageStatus.PENDING)
    attempts: int = Field(default=0, ge=0, description="Successful claims so far")
    max_attempts: int = Field(default=3, ge=1)
    visible_at: int = Field(default=0, ge=0, description="Not claimable before this instant")
    claimed_by: str | None = Field(default=None, description="Worker holding the current lease")
    claimed_at: int | None = Field(default=None)
    lock_token: str | None = Field(default=None, description="Identifies the current lease")
    last_error: str | None = Field(default=None)
    enqueued_at: int = Field(default=0, ge=0)
    completed_at: int | None = Field(default=None)
    dead_at: int | None = Field(default=None)

    @property
    def stats_bucket(self) -> MessageStatus:
        """Status used for counting; pending messages that already failed count as ``failed``."""
        if self.status is MessageStatus.PENDING and self.attempts > 0:
            return MessageStatus.FAILED
        return self.status


def apply_patch(message: QueueMessage, patch: Mapping[str, Any]) -> QueueMessage:
    """Return ``message`` with ``patch`` applied and re-validated.

    Raises
    ------
    InvalidPatchError
        If the patch names an immutable or unknown field, tries to persist the
        ``failed`` stats bucket, or carries values of the wrong type.
    """
    illegal = set(patch) - MUTABLE_FIELDS
    if illegal:
        raise InvalidPatchError(f"Fields cannot be patched: {sorted(illegal)}")
    if patch.get("status") in (MessageStatus.FAILED, MessageStatus.FAILED.value):
        raise InvalidPatchError("'failed' is not a persisted status")

    try:
        return QueueMessage.model_validate({**message.model_dump(), **patch})
    except ValidationError as e:
        raise InvalidPatchError(str(e)) from e


class VersionedMessage(BaseModel):
    """A message together with the store version it was read at."""

    model_config = ConfigDict(frozen=True)

    message: QueueMessage
    version: str


class ConditionalWriteResult(BaseModel):
    """Outcome of a version-conditioned write.

    A mismatch is reported here instead of raised: callers branch on it routinely.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    message: QueueMessage | None = None
    version: str | None = None
    reason: ConflictReason | None = None

    @property
    def error(self) -> str | None:
        return self.reason.value if self.reason else None

    @classmethod
    def ok(cls, versioned: VersionedMessage) -> ConditionalWriteResult:
        return cls(success=True, message=versioned.message, version=versioned.version)

    @classmethod
    def conflict(cls, reason: ConflictReason) -> ConditionalWriteResult:
        return cls(success=False, reason=reason)


class QueueStats(BaseModel):
    """Point-in-time message counts.

    ``pending`` counts never-attempted messages and ``failed`` counts pending
    messages waiting for a retry, so the five buckets are disjoint.
    """

    model_config = ConfigDict(frozen=True)

    pending: int = Field(default=0, ge=0)
    processing: int = Field(default=0, ge=0)
    completed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    dead: int = Field(default=0, ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        return self.pending + self.processing + self.completed + self.failed + self.dead

    @classmethod
    def from_counts(cls, counts: Mapping[MessageStatus, int]) -> QueueStats:
        return cls(**{status.value: counts.get(status, 0) for status in MessageStatus})
