"""
GenerateQuestions: multiple-choice questions for a subtopic.
cache (>= count) -> subtopic context -> prompt -> quota -> Gemini -> reconcile -> validate
-> persist questions + options (best effort) -> write cache -> record usage -> first `count`.
"""
import asyncio
import logging
import time

from sqlalchemy.orm import Session

from tutorlab.config import Settings, get_settings
from tutorlab.repositories.course_repository import CourseRepository
from tutorlab.repositories.quiz_repository import QuizRepository
from tutorlab.schemas.ai import GeneratedQuestion, QuestionGenerationRequest, QuestionGenerationResponse
from tutorlab.services.ai_rate_limiter import GeminiRateLimiter
from tutorlab.services.gemini_client import GeminiClient, GenerationError, RequestKind, default_options
from tutorlab.services.prompts import build_question_generation_prompt
from tutorlab.services.response_reconciler import ReconciliationError, reconcile_questions
from tutorlab.services.result_cache import InMemoryResultCache
from tutorlab.services.usage_monitor import GeminiUsageMonitor, estimate_tokens

logger = logging.getLogger(__name__)

EXPECTED_OPTIONS = 4


class QuestionGenerationError(Exception):
    """Gemini output could not be turned into valid questions."""


class SubtopicNotFound(Exception):
    def __init__(self, subtopic_id: int):
        self.subtopic_id = subtopic_id
        super().__init__(f"Subtopic {subtopic_id} not found")


def validate_questions(questions: list[GeneratedQuestion]) -> None:
    """Each question needs text and exactly one correct option. A count other than 4 only warns."""
    if not questions:
        raise QuestionGenerationError("No questions were generated")
    for index, question in enumerate(questions, start=1):
        if not question.text.strip():
            raise QuestionGenerationError(f"Question {index} has no text")
        if len(question.options) != EXPECTED_OPTIONS:
            logger.warning(
                "Question %d has %d options (expected %d)", index, len(question.options), EXPECTED_OPTIONS
            )
        correct = sum(1 for o in question.options if o.is_correct)
        if correct != 1:
            raise QuestionGenerationError(
                f"Question {index} must have exactly 1 correct option (has {correct})"
            )


class GenerateQuestionsService:
    def __init__(
        self,
        client: GeminiClient,
        limiter: GeminiRateLimiter,
        monitor: GeminiUsageMonitor,
        cache: InMemoryResultCache,
        *,
        course_repository: CourseRepository | None = None,
        quiz_repository: QuizRepository | None = None,
        settings: Settings | None = None,
    ):
        self._client = client
        self._limiter = limiter
        self._monitor = monitor
        self._cache = cache
        self._courses = course_repository or CourseRepository()
        self._quiz = quiz_repository or QuizRepository()
        self._settings = settings or get_settings()

    async def generate(
        self,
        db: Session,
        request: QuestionGenerationRequest,
        user_id: str | None = None,
    ) -> QuestionGenerationResponse:
        started = time.monotonic()

        cached = self._cache.lookup_questions(request.subtopic_id, request.count, request.difficulty)
        if cached.found:
            await self._record(0, True, started, user_id)
            return QuestionGenerationResponse(
                questions=cached.data,
                subtopic_id=request.subtopic_id,
                generated_count=len(cached.data),
                from_cache=True,
            )

        loop = asyncio.get_event_loop()
        subtopic = await loop.run_in_executor(
            None, lambda: self._courses.get_subtopic_with_topic(db, request.subtopic_id)
        )
        if subtopic is None:
            raise SubtopicNotFound(request.subtopic_id)

        prompt = build_question_generation_prompt(subtopic, request.count, request.difficulty)
        self._limiter.check()

        reply = ""
        try:
            reply = await self._client.generate(
                prompt, default_options(RequestKind.QUESTION_GENERATION, self._settings)
            )
            questions = reconcile_questions(reply)
            validate_questions(questions)
        except (GenerationError, ReconciliationError) as e:
            await self._record(estimate_tokens(prompt, reply), False, started, user_id)
            raise QuestionGenerationError(f"Question generation failed: {e}") from e
        except QuestionGenerationError:
            await self._record(estimate_tokens(prompt, reply), False, started, user_id)
            raise

        await self._persist(db, request.subtopic_id, questions)
        self._cache.store_questions(request.subtopic_id, questions, request.difficulty)
        await self._record(estimate_tokens(prompt, reply), False, started, user_id)
        logger.info("%d questions generated for subtopic %s", len(questions), request.subtopic_id)

        selected = questions[:request.count]
        return QuestionGenerationResponse(
            questions=selected,
            subtopic_id=request.subtopic_id,
            generated_count=len(questions),
        )

    async def _persist(self, db: Session, subtopic_id: int, questions: list[GeneratedQuestion]) -> None:
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(
                None, lambda: self._quiz.save_generated_questions(db, subtopic_id, questions)
            )
        except Exception as e:
            logger.warning("Could not store generated questions for subtopic %s: %s", subtopic_id, e, exc_info=False)

    async def _record(self, tokens: int, was_cache_hit: bool, started: float, user_id: str | None) -> None:
        await self._monitor.record(
            RequestKind.QUESTION_GENERATION,
            tokens,
            was_cache_hit,
            int((time.monotonic() - started) * 1000),
            user_id=user_id,
        )
