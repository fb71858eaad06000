"""Tests for the ValidateCode use case."""

import asyncio
import json

import pytest

from tutorlab.models import LlmFeedback
from tutorlab.schemas.ai import CodeResult, CodeValidationRequest, CodeVerdict
from tutorlab.services.ai_rate_limiter import GeminiRateLimiter, QuotaExceeded
from tutorlab.services.code_validation_service import (
    VALIDATION_FAILED_MESSAGE,
    ValidateCodeService,
    compute_score,
)
from tutorlab.services.gemini_client import GenerationError
from tutorlab.services.result_cache import InMemoryResultCache, code_hash
from tutorlab.services.usage_monitor import GeminiUsageMonitor

CODE = "def factorial(n):\n    return n * factorial(n - 1)  # sin caso base\n"

INCORRECT_REPLY = json.dumps({
    "resultado": "incorrecto",
    "errores_encontrados": ["Falta el caso base"],
    "casos_prueba_pasados": 2,
    "casos_prueba_totales": 3,
    "retroalimentacion_educativa": "Buen intento. Agrega un caso base para n == 0.",
    "sugerencias_mejora": ["Agrega if n == 0: return 1"],
})


def _verdict(result, passed=0, total=0):
    return CodeVerdict(result=result, tests_passed=passed, tests_total=total, feedback="f")


def _service(settings, gemini, *, rpm_limit=100, cache=None):
    limiter = GeminiRateLimiter(rpm_limit=rpm_limit, daily_limit=1000)
    monitor = GeminiUsageMonitor(daily_limit=1000, monthly_limit=30000)
    cache = cache or InMemoryResultCache()
    service = ValidateCodeService(gemini, limiter, monitor, cache, settings=settings)
    return service, monitor, cache


def _request(code=CODE, **overrides):
    return CodeValidationRequest(code=code, exercise_id=3, language="python", **overrides)


@pytest.mark.parametrize(
    "verdict, expected",
    [
        (_verdict(CodeResult.CORRECT), 100),
        (_verdict(CodeResult.CORRECT, 1, 3), 100),
        (_verdict(CodeResult.INCORRECT, 2, 3), 67),
        (_verdict(CodeResult.INCORRECT, 1, 2), 50),
        (_verdict(CodeResult.INCORRECT, 1, 8), 13),
        (_verdict(CodeResult.INCORRECT, 0, 3), 0),
        (_verdict(CodeResult.INCORRECT, 2, 0), 0),
        (_verdict(CodeResult.ERROR, 3, 3), 0),
    ],
)
def test_compute_score(verdict, expected):
    assert compute_score(verdict) == expected


def test_validates_and_persists(settings, db, seeded, scripted_gemini):
    gemini = scripted_gemini(INCORRECT_REPLY)
    service, monitor, _ = _service(settings, gemini)

    response = asyncio.run(service.validate(db, _request(), "student-1"))

    assert response.result is CodeResult.INCORRECT
    assert response.points == 67
    assert response.errors == ["Falta el caso base"]
    assert (response.tests_passed, response.tests_total) == (2, 3)
    assert response.from_cache is False

    assert gemini.calls == 1
    prompt = gemini.prompts[0]
    assert "Escribe una función factorial(n)" in prompt
    assert '"casos_prueba_totales": 3' in prompt
    assert gemini.options[0].temperature == 0.3

    row = db.query(LlmFeedback).one()
    assert row.content_hash == code_hash(CODE)
    assert row.exercise_id == 3
    assert row.raw_context["points"] == 67
    assert row.generated_text == response.feedback
    assert monitor.stats_today()["real_requests"] == 1


def test_second_submission_hits_memory_cache(settings, db, seeded, scripted_gemini):
    gemini = scripted_gemini(INCORRECT_REPLY)
    service, monitor, _ = _service(settings, gemini)

    asyncio.run(service.validate(db, _request(), "student-1"))
    again = asyncio.run(service.validate(db, _request(code=CODE.upper() + "\n\n"), "student-1"))

    assert again.from_cache is True
    assert again.points == 67
    assert gemini.calls == 1
    assert monitor.stats_today()["cache_requests"] == 1


def test_stored_validation_is_reused_and_warms_memory(settings, db, seeded, scripted_gemini):
    first, _, _ = _service(settings, scripted_gemini(INCORRECT_REPLY))
    asyncio.run(first.validate(db, _request(), "student-1"))

    gemini = scripted_gemini(GenerationError("should not be called"))
    fresh, _, cache = _service(settings, gemini)
    response = asyncio.run(fresh.validate(db, _request(), "student-1"))

    assert response.from_cache is True
    assert response.result is CodeResult.INCORRECT
    assert response.points == 67
    assert gemini.calls == 0
    assert cache.lookup_code(CODE, 3).found


def test_request_statement_and_tests_take_precedence(settings, db, seeded, scripted_gemini):
    gemini = scripted_gemini(INCORRECT_REPLY)
    service, _, _ = _service(settings, gemini)
    request = _request(statement="Suma dos números", test_cases=[{"input": "1 2", "expected_output": "3"}])

    asyncio.run(service.validate(db, request, "student-1"))

    assert "Suma dos números" in gemini.prompts[0]
    assert '"casos_prueba_totales": 1' in gemini.prompts[0]


def test_generation_failure_returns_error_response(settings, db, seeded, scripted_gemini):
    gemini = scripted_gemini(GenerationError("Gemini call failed: 500"))
    service, monitor, cache = _service(settings, gemini)

    response = asyncio.run(service.validate(db, _request(), "student-1"))

    assert response.result is CodeResult.ERROR
    assert response.points == 0
    assert response.feedback == VALIDATION_FAILED_MESSAGE
    assert response.errors == ["Gemini call failed: 500"]
    assert cache.get_stats()["total_entries"] == 0
    assert db.query(LlmFeedback).count() == 0
    assert monitor.stats_today()["real_requests"] == 1


def test_unparseable_reply_returns_error_response(settings, db, seeded, scripted_gemini):
    service, _, _ = _service(settings, scripted_gemini("No puedo evaluar este código."))
    response = asyncio.run(service.validate(db, _request(), "student-1"))
    assert response.result is CodeResult.ERROR
    assert response.feedback == VALIDATION_FAILED_MESSAGE


def test_quota_exceeded_propagates(settings, db, seeded, scripted_gemini):
    gemini = scripted_gemini(INCORRECT_REPLY)
    service, monitor, _ = _service(settings, gemini, rpm_limit=0)

    with pytest.raises(QuotaExceeded):
        asyncio.run(service.validate(db, _request(), "student-1"))
    assert gemini.calls == 0
    assert monitor.export() == []


def test_cache_hit_does_not_consume_quota(settings, db, seeded, scripted_gemini):
    gemini = scripted_gemini(INCORRECT_REPLY)
    cache = InMemoryResultCache()
    warm, _, _ = _service(settings, gemini, cache=cache)
    asyncio.run(warm.validate(db, _request(), "student-1"))

    blocked, _, _ = _service(settings, gemini, rpm_limit=0, cache=cache)
    response = asyncio.run(blocked.validate(db, _request(), "student-1"))
    assert response.from_cache is True
