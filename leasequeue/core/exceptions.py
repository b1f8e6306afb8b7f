from __future__ import annotations


class QueueError(Exception):
    """Base class for every error raised by leasequeue."""


class ConfigurationError(QueueError):
    """Invalid or unresolvable setup, raised before any processing starts."""


class StoreUnavailableError(QueueError):
    """Transient infrastructure failure talking to the message store."""


class MessageNotFoundError(QueueError):
    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message '{message_id}' not found")
        self.message_id = message_id


class DuplicateMessageError(QueueError):
    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message '{message_id}' already exists")
        self.message_id = message_id


class InvalidPatchError(QueueError):
    """A conditional update tried to touch an immutable or unknown field."""


class LeaseLostError(QueueError):
    """The worker no longer holds the lease on the message it was processing."""

    def __init__(self, message_id: str, reason: str) -> None:
        super().__init__(f"Lease on message '{message_id}' lost: {reason}")
        self.message_id = message_id
        self.reason = reason


class HandlerError(QueueError):
    """Wraps an exception raised by user processing logic."""

    def __init__(self, message_id: str, original: BaseException) -> None:
        super().__init__(f"Handler failed for message '{message_id}': {original}")
        self.message_id = message_id
        self.original = original

    @property
    def error_type(self) -> str:
        return type(self.original).__name__
