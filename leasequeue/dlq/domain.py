from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class FailureCategory(StrEnum):
    """Why a message ended up dead-lettered."""

    HANDLER_ERROR = "handler_error"
    LEASE_EXPIRED = "lease_expired"


class DeadLetterEntry(BaseModel):
    """Companion record written when a message exhausts its retry budget.

    Preserves the original payload plus failure metadata for debugging and
    redrive operations.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(
        min_length=1,
        description="Entry id; equals original_id so repeated writes for one message overwrite each other",
    )
    original_id: str = Field(min_length=1, description="Id of the dead queue message")
    payload: Any = Field(description="Original message payload, preserved exactly")
    attempts: int = Field(ge=0, description="Claims made before dead-lettering")
    last_error: str | None = Field(default=None, description="Last failure reason")
    error_type: str = Field(default="", description="Exception class name when known")
    category: FailureCategory = Field(default=FailureCategory.HANDLER_ERROR)
    queue_name: str = Field(default="", description="Name of the originating queue")
    dead_at: int = Field(ge=0, description="Epoch milliseconds of dead-lettering")
    metadata: dict[str, str] = Field(default_factory=dict, description="Free-form diagnostic context")
