"""
ValidateCode: grade a student's submission with Gemini.
memory cache -> llm_feedback (durable) -> exercise lookup -> prompt -> quota -> Gemini
-> reconcile -> score -> persist durable -> write memory cache -> record usage.
QuotaExceeded propagates; every other failure becomes a graded "error" response.
"""
import asyncio
import logging
import math
import time

from sqlalchemy.orm import Session

from tutorlab.config import Settings, get_settings
from tutorlab.repositories.course_repository import CourseRepository
from tutorlab.repositories.feedback_repository import FeedbackRepository
from tutorlab.schemas.ai import CodeResult, CodeValidationRequest, CodeValidationResponse, CodeVerdict
from tutorlab.services.ai_rate_limiter import GeminiRateLimiter, QuotaExceeded
from tutorlab.services.gemini_client import GeminiClient, RequestKind, default_options
from tutorlab.services.prompts import build_code_validation_prompt
from tutorlab.services.response_reconciler import reconcile_code_verdict
from tutorlab.services.result_cache import InMemoryResultCache, code_hash
from tutorlab.services.usage_monitor import GeminiUsageMonitor, estimate_tokens

logger = logging.getLogger(__name__)

MAX_POINTS = 100
VALIDATION_FAILED_MESSAGE = "Hubo un error al procesar tu código. Por favor, intenta nuevamente."


def compute_score(verdict: CodeVerdict) -> int:
    """100 when correct; proportional (half-up) when incorrect with test data; else 0."""
    if verdict.result is CodeResult.CORRECT:
        return MAX_POINTS
    if (
        verdict.result is CodeResult.INCORRECT
        and verdict.tests_passed > 0
        and verdict.tests_total > 0
    ):
        return min(MAX_POINTS, math.floor(MAX_POINTS * verdict.tests_passed / verdict.tests_total + 0.5))
    return 0


def _response_from_feedback_row(row) -> CodeValidationResponse:
    context = row.raw_context or {}
    try:
        result = CodeResult(context.get("result", CodeResult.ERROR.value))
    except ValueError:
        result = CodeResult.ERROR
    return CodeValidationResponse(
        result=result,
        points=int(context.get("points") or 0),
        feedback=row.generated_text,
        errors=list(context.get("errors") or []),
        tests_passed=int(context.get("tests_passed") or 0),
        tests_total=int(context.get("tests_total") or 0),
    )


class ValidateCodeService:
    def __init__(
        self,
        client: GeminiClient,
        limiter: GeminiRateLimiter,
        monitor: GeminiUsageMonitor,
        cache: InMemoryResultCache,
        *,
        feedback_repository: FeedbackRepository | None = None,
        course_repository: CourseRepository | None = None,
        settings: Settings | None = None,
    ):
        self._client = client
        self._limiter = limiter
        self._monitor = monitor
        self._cache = cache
        self._feedback = feedback_repository or FeedbackRepository()
        self._courses = course_repository or CourseRepository()
        self._settings = settings or get_settings()

    async def validate(
        self,
        db: Session,
        request: CodeValidationRequest,
        user_id: str,
    ) -> CodeValidationResponse:
        started = time.monotonic()

        cached = self._cache.lookup_code(request.code, request.exercise_id)
        if cached.found:
            await self._record(0, True, started, user_id)
            return cached.data.model_copy(update={"from_cache": True})

        stored = await self._find_stored(db, request)
        if stored is not None:
            self._cache.store_code(request.code, request.exercise_id, user_id, stored)
            await self._record(0, True, started, user_id)
            return stored.model_copy(update={"from_cache": True})

        prompt = reply = ""
        called_model = False
        try:
            statement, test_cases = await self._resolve_exercise(db, request)
            prompt = build_code_validation_prompt(request.code, request.language, statement, test_cases)
            self._limiter.check()
            called_model = True
            reply = await self._client.generate(
                prompt, default_options(RequestKind.CODE_VALIDATION, self._settings)
            )
            verdict = reconcile_code_verdict(reply)
        except QuotaExceeded:
            raise
        except Exception as e:
            logger.exception("Code validation failed for exercise %s", request.exercise_id)
            if called_model:
                await self._record(estimate_tokens(prompt, reply), False, started, user_id)
            return CodeValidationResponse(
                result=CodeResult.ERROR,
                points=0,
                feedback=VALIDATION_FAILED_MESSAGE,
                errors=[str(e)],
            )

        response = CodeValidationResponse(
            result=verdict.result,
            points=compute_score(verdict),
            feedback=verdict.feedback,
            errors=verdict.errors,
            tests_passed=verdict.tests_passed,
            tests_total=verdict.tests_total,
        )
        await self._persist(db, request, user_id, response, verdict.suggestions)
        self._cache.store_code(request.code, request.exercise_id, user_id, response)
        await self._record(estimate_tokens(prompt, reply), False, started, user_id)
        logger.info(
            "Code validation for exercise %s: %s (%d points)",
            request.exercise_id, response.result.value, response.points,
        )
        return response

    async def _find_stored(self, db: Session, request: CodeValidationRequest) -> CodeValidationResponse | None:
        """Durable lookup; a failure counts as a miss."""
        loop = asyncio.get_event_loop()
        try:
            row = await loop.run_in_executor(
                None,
                lambda: self._feedback.find_code_validation(db, code_hash(request.code), request.exercise_id),
            )
            if row is None:
                return None
            stored = _response_from_feedback_row(row)
        except Exception as e:
            logger.warning("Stored validation lookup failed: %s", e, exc_info=False)
            return None
        logger.info("Stored validation found for exercise %s", request.exercise_id)
        return stored

    async def _resolve_exercise(self, db: Session, request: CodeValidationRequest) -> tuple[str | None, list]:
        """Fill a missing statement or test cases from the exercise row."""
        statement, test_cases = request.statement, request.test_cases
        if statement is not None and test_cases is not None:
            return statement, test_cases
        loop = asyncio.get_event_loop()
        exercise = await loop.run_in_executor(
            None, lambda: self._courses.get_exercise(db, request.exercise_id)
        )
        if exercise is None:
            logger.warning("Exercise %s not found; validating without its context", request.exercise_id)
            return statement, test_cases or []
        if statement is None:
            statement = exercise.statement
        if test_cases is None:
            test_cases = exercise.test_cases if isinstance(exercise.test_cases, list) else []
        return statement, test_cases

    async def _persist(
        self,
        db: Session,
        request: CodeValidationRequest,
        user_id: str,
        response: CodeValidationResponse,
        suggestions: list[str],
    ) -> None:
        context = {
            "language": request.language,
            "result": response.result.value,
            "points": response.points,
            "errors": response.errors,
            "tests_passed": response.tests_passed,
            "tests_total": response.tests_total,
            "suggestions": suggestions,
        }
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self._feedback.save_code_validation(
                    db, user_id, code_hash(request.code), request.exercise_id,
                    response.feedback, context,
                    model_name=self._client.model,
                ),
            )
        except Exception as e:
            logger.warning("Could not store validation for exercise %s: %s", request.exercise_id, e, exc_info=False)

    async def _record(self, tokens: int, was_cache_hit: bool, started: float, user_id: str | None) -> None:
        await self._monitor.record(
            RequestKind.CODE_VALIDATION,
            tokens,
            was_cache_hit,
            int((time.monotonic() - started) * 1000),
            user_id=user_id,
        )
