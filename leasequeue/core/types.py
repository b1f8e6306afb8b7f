from __future__ import annotations

import time
from collections.abc import Callable

type Clock = Callable[[], int]


def system_clock() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
