"""
In-memory tier of the Gemini result cache. Cache-Aside: read before calling Gemini, write after.
Keys: code_{exercise_id}_{md5(normalized code)} and questions_{subtopic_id}_{difficulty}.
Expired entries (and, in question lists, expired questions) are invisible to lookups
but only removed by sweep_expired().
All errors are handled internally; caller gets a miss or a no-op, never an exception.
The durable tier lives in repositories/feedback_repository.py.
"""
import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 7
DEFAULT_DIFFICULTY = "intermedia"
SECONDS_PER_DAY = 24 * 60 * 60

_LINE_COMMENT = re.compile(r"//.*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_WHITESPACE = re.compile(r"\s+")


def normalize_code(code: str) -> str:
    """Strip // and /* */ comments, collapse whitespace, lower-case."""
    text = _LINE_COMMENT.sub("", code or "")
    text = _BLOCK_COMMENT.sub("", text)
    return _WHITESPACE.sub(" ", text).strip().lower()


def code_hash(code: str) -> str:
    return hashlib.md5(normalize_code(code).encode()).hexdigest()


def code_cache_key(code: str, exercise_id: int) -> str:
    return f"code_{exercise_id}_{code_hash(code)}"


def questions_cache_key(subtopic_id: int, difficulty: Any) -> str:
    return f"questions_{subtopic_id}_{getattr(difficulty, 'value', difficulty)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheEntry:
    key: str
    payload: Any
    created_at: datetime
    ttl_days: int
    user_id: str | None = None

    def age_days(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds() / SECONDS_PER_DAY

    def is_expired(self, now: datetime) -> bool:
        return self.age_days(now) > self.ttl_days


@dataclass
class CacheLookup:
    found: bool
    data: Any = None
    age_days: int | None = None


@dataclass
class _Counters:
    hits: int = 0
    misses: int = 0
    writes: int = 0
    swept: int = 0


class InMemoryResultCache:
    """One dict per process; not shared across workers (the durable tier is)."""

    def __init__(self, ttl_days: int = DEFAULT_TTL_DAYS, clock: Callable[[], datetime] = _utcnow):
        self.ttl_days = ttl_days
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._question_sets: dict[str, list[CacheEntry]] = {}
        self._counters = _Counters()

    def _get_live(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry

    def lookup_code(self, code: str, exercise_id: int) -> CacheLookup:
        try:
            entry = self._get_live(code_cache_key(code, exercise_id))
            if entry is None:
                self._counters.misses += 1
                logger.debug("Result cache MISS: code for exercise %s", exercise_id)
                return CacheLookup(found=False)
            age = int(entry.age_days(self._clock()))
            self._counters.hits += 1
            logger.info("Result cache HIT: code for exercise %s (%d days old)", exercise_id, age)
            return CacheLookup(found=True, data=entry.payload, age_days=age)
        except Exception as e:
            logger.warning("Result cache lookup failed for exercise %s: %s", exercise_id, e, exc_info=False)
            return CacheLookup(found=False)

    def store_code(self, code: str, exercise_id: int, user_id: str | None, result: Any) -> None:
        try:
            key = code_cache_key(code, exercise_id)
            self._entries[key] = CacheEntry(
                key=key,
                payload=result,
                created_at=self._clock(),
                ttl_days=self.ttl_days,
                user_id=user_id,
            )
            self._counters.writes += 1
            logger.debug("Result cache: stored code result for exercise %s", exercise_id)
        except Exception as e:
            logger.warning("Result cache store failed for exercise %s: %s", exercise_id, e, exc_info=False)

    def lookup_questions(self, subtopic_id: int, count: int, difficulty: Any) -> CacheLookup:
        """Found only if at least `count` unexpired questions are stored; returns the first `count`."""
        try:
            now = self._clock()
            stored = self._question_sets.get(questions_cache_key(subtopic_id, difficulty), [])
            live = [entry for entry in stored if not entry.is_expired(now)]
            if len(live) < count:
                self._counters.misses += 1
                logger.debug("Result cache MISS: questions for subtopic %s", subtopic_id)
                return CacheLookup(found=False)
            selected = live[:count]
            age = int(max(entry.age_days(now) for entry in selected)) if selected else 0
            self._counters.hits += 1
            logger.info(
                "Result cache HIT: %d questions for subtopic %s (%d days old)",
                len(live), subtopic_id, age,
            )
            return CacheLookup(found=True, data=[entry.payload for entry in selected], age_days=age)
        except Exception as e:
            logger.warning("Result cache lookup failed for subtopic %s: %s", subtopic_id, e, exc_info=False)
            return CacheLookup(found=False)

    def store_questions(self, subtopic_id: int, questions: list, difficulty: Any = None) -> None:
        """Append to the questions already stored under the same (subtopic, difficulty).
        Each question keeps its own timestamp, so older ones expire first."""
        try:
            if difficulty is None:
                difficulty = getattr(questions[0], "difficulty", None) if questions else None
            key = questions_cache_key(subtopic_id, difficulty or DEFAULT_DIFFICULTY)
            now = self._clock()
            stored = [entry for entry in self._question_sets.get(key, []) if not entry.is_expired(now)]
            stored.extend(
                CacheEntry(key=key, payload=question, created_at=now, ttl_days=self.ttl_days)
                for question in questions
            )
            self._question_sets[key] = stored
            self._counters.writes += 1
            logger.info("Result cache: %d questions stored under %s", len(questions), key)
        except Exception as e:
            logger.warning("Result cache store failed for subtopic %s: %s", subtopic_id, e, exc_info=False)

    def sweep_expired(self) -> int:
        """Remove expired entries and expired questions. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        removed = len(expired)
        for key, stored in list(self._question_sets.items()):
            live = [entry for entry in stored if not entry.is_expired(now)]
            removed += len(stored) - len(live)
            if live:
                self._question_sets[key] = live
            else:
                del self._question_sets[key]
        if removed:
            self._counters.swept += removed
            logger.info("Result cache: %d expired entries removed", removed)
        return removed

    def get_stats(self) -> dict:
        return {
            "total_entries": len(self._entries) + len(self._question_sets),
            "cached_questions": sum(len(stored) for stored in self._question_sets.values()),
            "ttl_days": self.ttl_days,
            **vars(self._counters),
        }

    def clear(self) -> None:
        self._entries.clear()
        self._question_sets.clear()
