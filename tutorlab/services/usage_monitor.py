"""
Gemini usage monitoring: every orchestrator completion (cache hit or real call) is recorded.
In-memory ledger (30 days) for stats and alerts; durable mirror in gemini_usage_logs.
The monitor only observes. Admission is enforced by GeminiRateLimiter alone.
"""
import asyncio
import enum
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from tutorlab.models.gemini_usage_log import GeminiUsageLog

logger = logging.getLogger(__name__)

RETENTION_DAYS = 30
MONTHLY_ALERT_PERCENT = 90.0


class AlertLevel(str, enum.Enum):
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


def usage_alert_level(real_requests: int, daily_limit: int) -> AlertLevel:
    """>=95% of the daily limit is critical, >=80% a warning."""
    if daily_limit <= 0:
        return AlertLevel.NONE
    ratio = real_requests / daily_limit
    if ratio >= 0.95:
        return AlertLevel.CRITICAL
    if ratio >= 0.80:
        return AlertLevel.WARNING
    return AlertLevel.NONE


def estimate_tokens(*texts: str) -> int:
    """Rough token estimate: ~4 characters per token, at least 1."""
    return max(1, sum(len(t or "") for t in texts) // 4)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UsageRecord:
    timestamp: datetime
    kind: str
    estimated_tokens: int
    was_cache_hit: bool
    latency_ms: int
    user_id: str | None = None


def _summary(records: list[UsageRecord]) -> dict:
    real = sum(1 for r in records if not r.was_cache_hit)
    cached = len(records) - real
    avg_latency = sum(r.latency_ms for r in records) / len(records) if records else 0
    return {
        "total_requests": len(records),
        "real_requests": real,
        "cache_requests": cached,
        "cache_percent": round(cached / len(records) * 100, 1) if records else 0.0,
        "avg_latency_ms": round(avg_latency),
        "estimated_tokens": sum(r.estimated_tokens for r in records),
    }


class GeminiUsageMonitor:
    """
    session_factory: callable returning a SQLAlchemy Session for the durable mirror
    (None disables it). clock: returns aware UTC now; injectable for tests.
    """

    def __init__(
        self,
        daily_limit: int,
        monthly_limit: int,
        *,
        session_factory: Callable[[], Any] | None = None,
        model_name: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.daily_limit = daily_limit
        self.monthly_limit = monthly_limit
        self._session_factory = session_factory
        self._model_name = model_name
        self._clock = clock
        self._records: list[UsageRecord] = []

    async def record(
        self,
        kind: Any,
        estimated_tokens: int,
        was_cache_hit: bool,
        latency_ms: int,
        user_id: str | None = None,
    ) -> UsageRecord:
        record = UsageRecord(
            timestamp=self._clock(),
            kind=str(getattr(kind, "value", kind)),
            estimated_tokens=max(0, int(estimated_tokens)),
            was_cache_hit=was_cache_hit,
            latency_ms=max(0, int(latency_ms)),
            user_id=user_id,
        )
        self._records.append(record)
        self._prune()
        self._check_alerts()
        await self._persist(record)
        logger.info(
            "Gemini usage: %s (%s) %dms",
            record.kind, "CACHE" if was_cache_hit else "API", record.latency_ms,
        )
        return record

    async def _persist(self, record: UsageRecord) -> None:
        """Best-effort durable write; never raises."""
        if self._session_factory is None:
            return
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._write_log, record)
        except Exception as e:
            logger.warning("Gemini usage log write failed: %s", e, exc_info=False)

    def _write_log(self, record: UsageRecord) -> None:
        db = self._session_factory()
        try:
            db.add(GeminiUsageLog(
                user_id=record.user_id,
                request_kind=record.kind,
                estimated_tokens=record.estimated_tokens,
                was_cache_hit=record.was_cache_hit,
                latency_ms=record.latency_ms,
                model_name=self._model_name,
            ))
            db.commit()
        finally:
            db.close()

    def _prune(self) -> None:
        cutoff = self._clock() - timedelta(days=RETENTION_DAYS)
        before = len(self._records)
        self._records = [r for r in self._records if r.timestamp >= cutoff]
        removed = before - len(self._records)
        if removed:
            logger.info("Gemini usage: %d records older than %d days dropped", removed, RETENTION_DAYS)

    def _check_alerts(self) -> None:
        today = self.stats_today()
        level = self.alert_level()
        if level is AlertLevel.CRITICAL:
            logger.error(
                "CRITICAL Gemini usage: %d/%d real requests today (%d from cache)",
                today["real_requests"], self.daily_limit, today["cache_requests"],
            )
        elif level is AlertLevel.WARNING:
            logger.warning(
                "Gemini usage alert: %d/%d real requests today",
                today["real_requests"], self.daily_limit,
            )
        month = self.stats_month()
        if month["monthly_limit_percent"] >= MONTHLY_ALERT_PERCENT:
            logger.error("Gemini monthly usage at %.1f%% of the limit", month["monthly_limit_percent"])

    def alert_level(self) -> AlertLevel:
        return usage_alert_level(self.stats_today()["real_requests"], self.daily_limit)

    def _daily_limit_percent(self, real_today: int) -> float:
        return round(real_today / self.daily_limit * 100, 2) if self.daily_limit else 0.0

    def stats_today(self) -> dict:
        today = self._clock().date()
        records = [r for r in self._records if r.timestamp.date() == today]
        summary = _summary(records)
        return {
            "date": today.isoformat(),
            **summary,
            "daily_limit_percent": self._daily_limit_percent(summary["real_requests"]),
        }

    def stats_month(self) -> dict:
        cutoff = self._clock() - timedelta(days=30)
        records = [r for r in self._records if r.timestamp >= cutoff]
        summary = _summary(records)
        summary["daily_limit_percent"] = self.stats_today()["daily_limit_percent"]
        summary["monthly_limit_percent"] = (
            round(summary["real_requests"] / self.monthly_limit * 100, 2) if self.monthly_limit else 0.0
        )
        return summary

    def stats_by_kind(self) -> dict[str, dict]:
        out: dict[str, dict] = {}
        for r in self._records:
            s = out.setdefault(r.kind, {"total": 0, "cache": 0, "api": 0})
            s["total"] += 1
            if r.was_cache_hit:
                s["cache"] += 1
            else:
                s["api"] += 1
        for s in out.values():
            s["cache_rate_percent"] = round(s["cache"] / s["total"] * 100, 1)
        return out

    def export(self) -> list[dict]:
        return [asdict(r) for r in self._records]

    def reset(self) -> None:
        self._records = []
        logger.info("Gemini usage monitor reset")
