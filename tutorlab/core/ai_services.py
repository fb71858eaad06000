"""
Process-wide AI services, built once in the lifespan and kept on app.state.ai.
The limiter, monitor and cache are stateful; every orchestrator shares the same instances.
"""
import asyncio
import logging
from dataclasses import dataclass

from fastapi import Request

from tutorlab.config import Settings, get_settings
from tutorlab.database import SessionLocal
from tutorlab.services.ai_rate_limiter import GeminiRateLimiter
from tutorlab.services.chat_assistant_service import ChatAssistantService
from tutorlab.services.code_validation_service import ValidateCodeService
from tutorlab.services.gemini_client import GeminiClient
from tutorlab.services.question_generation_service import GenerateQuestionsService
from tutorlab.services.result_cache import InMemoryResultCache
from tutorlab.services.usage_monitor import GeminiUsageMonitor

logger = logging.getLogger(__name__)


@dataclass
class AiServices:
    client: GeminiClient
    limiter: GeminiRateLimiter
    monitor: GeminiUsageMonitor
    cache: InMemoryResultCache
    validate_code: ValidateCodeService
    generate_questions: GenerateQuestionsService
    chat_assistant: ChatAssistantService


def build_ai_services(
    settings: Settings | None = None,
    *,
    client: GeminiClient | None = None,
    session_factory=SessionLocal,
) -> AiServices:
    """Wire the pipeline. `client` may be a prebuilt GeminiClient (tests pass a fake-backed one)."""
    settings = settings or get_settings()
    client = client or GeminiClient(settings=settings)
    limiter = GeminiRateLimiter(settings.gemini_rpm_limit, settings.gemini_daily_limit)
    monitor = GeminiUsageMonitor(
        settings.gemini_daily_limit,
        settings.gemini_monthly_limit,
        session_factory=session_factory,
        model_name=client.model,
    )
    cache = InMemoryResultCache(ttl_days=settings.cache_ttl_days)
    return AiServices(
        client=client,
        limiter=limiter,
        monitor=monitor,
        cache=cache,
        validate_code=ValidateCodeService(client, limiter, monitor, cache, settings=settings),
        generate_questions=GenerateQuestionsService(client, limiter, monitor, cache, settings=settings),
        chat_assistant=ChatAssistantService(client, limiter, monitor, settings=settings),
    )


async def cache_sweeper(cache: InMemoryResultCache, interval_seconds: float):
    """Background task: drop expired result-cache entries every `interval_seconds`."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            cache.sweep_expired()
        except Exception as e:
            logger.warning("Result cache sweep failed: %s", e, exc_info=False)


def get_ai_services(request: Request) -> AiServices:
    """FastAPI dependency: the container built in the lifespan."""
    return request.app.state.ai
