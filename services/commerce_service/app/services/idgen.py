from __future__ import annotations

import random
import time
from datetime import datetime, timezone

ORDER_NO_PREFIX = "ORD"


class Clock:
    """Time source for the services. Subclasses only provide :meth:`now_ns`."""

    def now_ns(self) -> int:
        raise NotImplementedError

    def now(self) -> int:
        """Epoch seconds."""
        return self.now_ns() // 1_000_000_000

    def now_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.now(), tz=timezone.utc)


class SystemClock(Clock):
    def now_ns(self) -> int:
        return time.time_ns()


class OrderNumberGenerator:
    """``ORD`` + UTC ``YYYYMMDDhhmmss`` + six random digits."""

    def __init__(self, clock: Clock, rng: random.Random | None = None) -> None:
        self._clock = clock
        self._rng = rng or random.SystemRandom()

    def next(self, now: int | None = None) -> str:
        seconds = self._clock.now() if now is None else now
        stamp = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y%m%d%H%M%S")
        return f"{ORDER_NO_PREFIX}{stamp}{self._rng.randrange(1_000_000):06d}"
