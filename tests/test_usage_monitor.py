"""Tests for the Gemini usage monitor."""

import asyncio
from datetime import datetime, timedelta, timezone

from tutorlab.models import GeminiUsageLog
from tutorlab.services.gemini_client import RequestKind
from tutorlab.services.usage_monitor import (
    AlertLevel,
    GeminiUsageMonitor,
    estimate_tokens,
    usage_alert_level,
)

T0 = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


def test_alert_thresholds():
    assert usage_alert_level(79, 100) is AlertLevel.NONE
    assert usage_alert_level(80, 100) is AlertLevel.WARNING
    assert usage_alert_level(94, 100) is AlertLevel.WARNING
    assert usage_alert_level(95, 100) is AlertLevel.CRITICAL
    assert usage_alert_level(5, 0) is AlertLevel.NONE


def test_estimate_tokens():
    assert estimate_tokens("abcd" * 10, "abcd") == 11
    assert estimate_tokens("", "") == 1


def test_stats_split_cache_and_api():
    monitor = GeminiUsageMonitor(daily_limit=10, monthly_limit=300, clock=_Clock())

    async def run():
        await monitor.record(RequestKind.CODE_VALIDATION, 0, True, 3)
        await monitor.record(RequestKind.CODE_VALIDATION, 400, False, 900)
        await monitor.record(RequestKind.CHAT, 250, False, 1100, user_id="student-1")

    asyncio.run(run())

    today = monitor.stats_today()
    assert today["total_requests"] == 3
    assert today["real_requests"] == 2
    assert today["cache_requests"] == 1
    assert today["estimated_tokens"] == 650
    assert today["daily_limit_percent"] == 20.0

    by_kind = monitor.stats_by_kind()
    assert by_kind["code_validation"] == {"total": 2, "cache": 1, "api": 1, "cache_rate_percent": 50.0}
    assert by_kind["chat"]["api"] == 1

    month = monitor.stats_month()
    assert month["daily_limit_percent"] == 20.0
    assert month["monthly_limit_percent"] == 0.67


def test_alert_level_follows_real_requests_only():
    monitor = GeminiUsageMonitor(daily_limit=5, monthly_limit=150, clock=_Clock())

    async def run():
        for _ in range(10):
            await monitor.record(RequestKind.CHAT, 0, True, 1)
        for _ in range(4):
            await monitor.record(RequestKind.CHAT, 10, False, 1)

    asyncio.run(run())
    assert monitor.alert_level() is AlertLevel.WARNING


def test_records_older_than_thirty_days_are_dropped():
    clock = _Clock()
    monitor = GeminiUsageMonitor(daily_limit=10, monthly_limit=300, clock=clock)
    asyncio.run(monitor.record(RequestKind.CHAT, 10, False, 1))

    clock.now = T0 + timedelta(days=31)
    asyncio.run(monitor.record(RequestKind.CHAT, 10, False, 1))

    assert len(monitor.export()) == 1
    assert monitor.stats_today()["real_requests"] == 1


def test_records_are_mirrored_to_the_database(session_factory, db):
    monitor = GeminiUsageMonitor(
        daily_limit=10,
        monthly_limit=300,
        session_factory=session_factory,
        model_name="gemini-test",
        clock=_Clock(),
    )
    asyncio.run(monitor.record(RequestKind.QUESTION_GENERATION, 700, False, 2100))

    rows = db.query(GeminiUsageLog).all()
    assert len(rows) == 1
    assert rows[0].request_kind == "question_generation"
    assert rows[0].estimated_tokens == 700
    assert rows[0].was_cache_hit is False
    assert rows[0].model_name == "gemini-test"


def test_database_failure_does_not_break_recording():
    def broken_session():
        raise RuntimeError("database down")

    monitor = GeminiUsageMonitor(daily_limit=10, monthly_limit=300, session_factory=broken_session, clock=_Clock())
    record = asyncio.run(monitor.record(RequestKind.CHAT, 10, False, 5))

    assert record.kind == "chat"
    assert monitor.stats_today()["total_requests"] == 1


def test_reset():
    monitor = GeminiUsageMonitor(daily_limit=10, monthly_limit=300, clock=_Clock())
    asyncio.run(monitor.record(RequestKind.CHAT, 10, False, 5))
    monitor.reset()
    assert monitor.export() == []


def test_today_reports_daily_limit_percent():
    monitor = GeminiUsageMonitor(daily_limit=8, monthly_limit=240, clock=_Clock())
    assert monitor.stats_today()["daily_limit_percent"] == 0.0

    async def run():
        await monitor.record(RequestKind.CHAT, 100, False, 500)
        await monitor.record(RequestKind.CHAT, 0, True, 2)

    asyncio.run(run())
    assert monitor.stats_today()["daily_limit_percent"] == 12.5

    unlimited = GeminiUsageMonitor(daily_limit=0, monthly_limit=0, clock=_Clock())
    assert unlimited.stats_today()["daily_limit_percent"] == 0.0
