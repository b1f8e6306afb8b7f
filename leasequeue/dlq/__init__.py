from __future__ import annotations

from .domain import DeadLetterEntry, FailureCategory
from .service import DeadLetterQueue

__all__ = [
    "DeadLetterEntry",
    "DeadLetterQueue",
    "FailureCategory",
]
