import time
import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional

from core.errors import RateBudgetExhausted
from core.logger import Logger

logger = Logger(__name__)

WINDOW_SECONDS = 60.0


class RateGate:
    """
    Throttle shared by every caller of one remote API.

    Two budgets are tracked: calls left in the current rolling 60s window and
    calls left today (resets at midnight UTC). Each admitted call reserves one
    unit from both. When the minute budget reaches ``minute_buffer`` the caller
    is suspended until the window resets. When the day budget reaches
    ``day_buffer`` the gate raises ``RateBudgetExhausted`` instead of spending
    the reserve.

    Live counters reported by the API (``update_from_headers``) replace the
    local estimates.
    """

    def __init__(
        self,
        name: str,
        per_minute: int = 60,
        per_day: int = 5000,
        minute_buffer: int = 5,
        day_buffer: int = 50,
        min_interval: float = 0.05,
        minute_header: Optional[str] = "x-ratelimit-remaining",
        day_header: Optional[str] = None,
        limit_header: Optional[str] = "x-ratelimit-limit",
        reset_header: Optional[str] = "x-ratelimit-reset",
        clock: Callable[[], float] = time.monotonic,
        utcnow: Optional[Callable[[], datetime]] = None,
        sleep: Callable = asyncio.sleep,
    ):
        self.name = name
        self.per_minute = per_minute
        self.per_day = per_day
        self.minute_buffer = minute_buffer
        self.day_buffer = day_buffer
        self.min_interval = min_interval
        self.minute_header = minute_header.lower() if minute_header else None
        self.day_header = day_header.lower() if day_header else None
        self.limit_header = limit_header.lower() if limit_header else None
        self.reset_header = reset_header.lower() if reset_header else None

        self._clock = clock
        self._utcnow = utcnow or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._lock = asyncio.Lock()

        self.minute_remaining = per_minute
        self.day_remaining = per_day
        self._window_reset_at: Optional[float] = None
        self._day = self._utcnow().date()
        self._last_call_at: Optional[float] = None

    async def wait_if_needed(self):
        async with self._lock:
            self._roll_day()
            if self.day_remaining <= self.day_buffer:
                logger.error(f"[{self.name}] Daily budget at reserve, refusing call", remaining=self.day_remaining)
                raise RateBudgetExhausted(self.name, self.day_remaining)

            now = self._clock()
            self._roll_minute(now)
            if self.minute_remaining <= self.minute_buffer:
                wait = max(0.0, self._window_reset_at - now)
                logger.info(
                    f"[{self.name}] Minute budget low, waiting {wait:.1f}s for window reset",
                    remaining=self.minute_remaining,
                )
                await self._sleep(wait)
                now = self._clock()
                self._start_window(now)

            if self._last_call_at is not None:
                gap = now - self._last_call_at
                if gap < self.min_interval:
                    await self._sleep(self.min_interval - gap)
                    now = self._clock()

            self._last_call_at = now
            self.minute_remaining -= 1
            self.day_remaining -= 1

    def update_from_headers(self, headers: Mapping[str, str]):
        # No awaits here: the update cannot interleave with wait_if_needed.
        if not headers:
            return
        lowered = {str(k).lower(): v for k, v in headers.items()}

        limit = self._as_int(lowered.get(self.limit_header)) if self.limit_header else None
        if limit:
            self.per_minute = limit

        minute = self._as_int(lowered.get(self.minute_header)) if self.minute_header else None
        if minute is not None:
            self.minute_remaining = minute

        day = self._as_int(lowered.get(self.day_header)) if self.day_header else None
        if day is not None:
            self.day_remaining = day

        reset = self._as_float(lowered.get(self.reset_header)) if self.reset_header else None
        if reset is not None:
            # large values are epoch timestamps, small ones are seconds-until-reset
            seconds = reset - time.time() if reset > 86400 else reset
            self._window_reset_at = self._clock() + max(0.0, seconds)

        retry_after = self._as_float(lowered.get("retry-after"))
        if retry_after is not None:
            self.minute_remaining = 0
            self._window_reset_at = self._clock() + retry_after

    def snapshot(self) -> dict:
        return {
            "name": self.name,
            "minute_remaining": self.minute_remaining,
            "day_remaining": self.day_remaining,
            "per_minute": self.per_minute,
            "per_day": self.per_day,
        }

    def _roll_minute(self, now: float):
        if self._window_reset_at is None or now >= self._window_reset_at:
            self._start_window(now)

    def _start_window(self, now: float):
        self.minute_remaining = self.per_minute
        self._window_reset_at = now + WINDOW_SECONDS

    def _roll_day(self):
        today = self._utcnow().date()
        if today != self._day:
            logger.info(f"[{self.name}] New UTC day, daily budget reset")
            self._day = today
            self.day_remaining = self.per_day

    @staticmethod
    def _as_int(value) -> Optional[int]:
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _as_float(value) -> Optional[float]:
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None


_gates: Dict[str, RateGate] = {}


def shared_gate(name: str, **kwargs) -> RateGate:
    """Return the process-wide gate for ``name``, creating it on first use."""
    if name not in _gates:
        _gates[name] = RateGate(name, **kwargs)
    return _gates[name]
