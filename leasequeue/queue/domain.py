from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..core.exceptions import HandlerError
from ..core.models import QueueMessage


class ClaimedMessage(BaseModel):
    """A message this worker exclusively owns until ``visible_until``."""

    model_config = ConfigDict(frozen=True)

    message: QueueMessage = Field(description="Record as written by the claim")
    version: str = Field(description="Version produced by the claim write")
    lock_token: str
    claimed_at: int
    visible_until: int

    @property
    def id(self) -> str:
        return self.message.id

    @property
    def attempts(self) -> int:
        return self.message.attempts


class MessageContext(BaseModel):
    """Second argument passed to every handler invocation."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    worker_id: str
    attempts: int
    max_attempts: int
    lock_token: str
    visible_until: int
    renew_lock: Callable[[int | None], Awaitable[bool]] = Field(
        description="Extend the lease by the given ms (None = one visibility timeout)",
        exclude=True,
    )


MessageHandler = Callable[[Any, MessageContext], Any]
ErrorCallback = Callable[[HandlerError, QueueMessage], Any]
CompleteCallback = Callable[[QueueMessage, Any], Any]
