"""
Process-wide Gemini quota: sliding windows of admission timestamps.
- Minute window: gemini_rpm_limit requests per 60 s (checked first)
- Day window: gemini_daily_limit requests per 24 h
In-memory only; a restart resets the counters. Cache hits never reach the limiter.
"""
import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass

logger = logging.getLogger(__name__)

MINUTE_WINDOW_S = 60
DAY_WINDOW_S = 24 * 60 * 60

# Daily usage ratios that trigger log alerts (admission is not affected)
WARNING_RATIO = 0.80
CRITICAL_RATIO = 0.95


@dataclass
class Admission:
    admitted: bool
    retry_after_seconds: int = 0
    scope: str | None = None  # "minute" | "day" when denied


class QuotaExceeded(Exception):
    """Gemini quota denied the call. retry_after_seconds is always > 0."""

    def __init__(self, retry_after_seconds: int, scope: str, limit: int):
        self.retry_after_seconds = retry_after_seconds
        self.scope = scope
        self.limit = limit
        per = "minute" if scope == "minute" else "day"
        super().__init__(
            f"Gemini quota exceeded (max {limit} requests per {per}). Retry in {retry_after_seconds}s."
        )


class GeminiRateLimiter:
    """Sliding-window admission. All state mutation happens under one lock."""

    def __init__(self, rpm_limit: int, daily_limit: int):
        self.rpm_limit = rpm_limit
        self.daily_limit = daily_limit
        self._minute: deque[float] = deque()
        self._day: deque[float] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        while self._minute and now - self._minute[0] >= MINUTE_WINDOW_S:
            self._minute.popleft()
        while self._day and now - self._day[0] >= DAY_WINDOW_S:
            self._day.popleft()

    def admit(self, now: float | None = None) -> Admission:
        """Admit or deny one call at `now` (epoch seconds). Admitted calls are recorded."""
        now = time.time() if now is None else now
        with self._lock:
            self._prune(now)

            if len(self._minute) >= self.rpm_limit:
                wait = MINUTE_WINDOW_S - (now - self._minute[0]) if self._minute else MINUTE_WINDOW_S
                retry_after = max(1, math.ceil(wait))
                logger.warning(
                    "Gemini RPM limit reached (%d/min). Retry in %ds", self.rpm_limit, retry_after
                )
                return Admission(admitted=False, retry_after_seconds=retry_after, scope="minute")

            if len(self._day) >= self.daily_limit:
                wait = DAY_WINDOW_S - (now - self._day[0]) if self._day else DAY_WINDOW_S
                retry_after = max(1, math.ceil(wait))
                logger.error("Gemini daily limit reached (%d/day)", self.daily_limit)
                return Admission(admitted=False, retry_after_seconds=retry_after, scope="day")

            ratio = len(self._day) / self.daily_limit if self.daily_limit else 0.0
            if ratio >= CRITICAL_RATIO:
                logger.error("CRITICAL: %.1f%% of the Gemini daily limit used", ratio * 100)
            elif ratio >= WARNING_RATIO:
                logger.warning("%.1f%% of the Gemini daily limit used", ratio * 100)

            self._minute.append(now)
            self._day.append(now)
            logger.debug(
                "Gemini call admitted (%d/%d RPM, %d/%d daily)",
                len(self._minute), self.rpm_limit, len(self._day), self.daily_limit,
            )
            return Admission(admitted=True)

    def check(self, now: float | None = None) -> None:
        """Like admit() but raises QuotaExceeded on denial."""
        admission = self.admit(now)
        if not admission.admitted:
            limit = self.rpm_limit if admission.scope == "minute" else self.daily_limit
            raise QuotaExceeded(admission.retry_after_seconds, admission.scope, limit)

    def get_stats(self, now: float | None = None) -> dict:
        now = time.time() if now is None else now
        with self._lock:
            self._prune(now)
            minute_count = len(self._minute)
            day_count = len(self._day)
        return {
            "requests_last_minute": minute_count,
            "requests_today": day_count,
            "rpm_limit": self.rpm_limit,
            "daily_limit": self.daily_limit,
            "rpm_available": max(0, self.rpm_limit - minute_count),
            "daily_available": max(0, self.daily_limit - day_count),
            "daily_usage_percent": round(day_count / self.daily_limit * 100, 2) if self.daily_limit else 0.0,
        }

    def reset(self) -> None:
        with self._lock:
            self._minute.clear()
            self._day.clear()
        logger.info("Gemini rate limiter counters reset")
