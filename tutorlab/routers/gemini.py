"""
Gemini endpoints for tutorlab:
- POST /api/v1/gemini/validate-code — grade a code submission (cached per exercise + normalized code)
- POST /api/v1/gemini/generate-questions — multiple-choice questions for a subtopic (cached)
- POST /api/v1/gemini/chat — tutor chat with follow-up suggestions
- POST /api/v1/gemini/explain-concept — explain one concept in course context
- GET /api/v1/gemini/stats — usage, quota and cache stats (admin)
Quota denials are 429 with Retry-After.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from tutorlab.auth import get_current_user, get_current_user_admin
from tutorlab.core.ai_services import AiServices, get_ai_services
from tutorlab.database import get_db
from tutorlab.models.user import User
from tutorlab.schemas.ai import (
    ChatRequest,
    ChatResponse,
    CodeValidationRequest,
    CodeValidationResponse,
    ExplainConceptRequest,
    ExplainConceptResponse,
    QuestionGenerationRequest,
    QuestionGenerationResponse,
)
from tutorlab.services.ai_rate_limiter import QuotaExceeded
from tutorlab.services.question_generation_service import QuestionGenerationError, SubtopicNotFound

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/gemini", tags=["gemini"])


def _quota_exceeded(e: QuotaExceeded) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "message": str(e),
            "scope": e.scope,
            "retry_after_seconds": e.retry_after_seconds,
        },
        headers={"Retry-After": str(e.retry_after_seconds)},
    )


@router.post("/validate-code", response_model=CodeValidationResponse)
async def validate_code(
    body: CodeValidationRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    ai: AiServices = Depends(get_ai_services),
):
    try:
        return await ai.validate_code.validate(db, body, user.id)
    except QuotaExceeded as e:
        raise _quota_exceeded(e)


@router.post("/generate-questions", response_model=QuestionGenerationResponse)
async def generate_questions(
    body: QuestionGenerationRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    ai: AiServices = Depends(get_ai_services),
):
    try:
        return await ai.generate_questions.generate(db, body, user.id)
    except QuotaExceeded as e:
        raise _quota_exceeded(e)
    except SubtopicNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except QuestionGenerationError as e:
        logger.error("Question generation failed for subtopic %s: %s", body.subtopic_id, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="AI service could not generate valid questions. Please try again later.",
        )


@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    user: User = Depends(get_current_user),
    ai: AiServices = Depends(get_ai_services),
):
    try:
        return await ai.chat_assistant.chat(body, user.id)
    except QuotaExceeded as e:
        raise _quota_exceeded(e)


@router.post("/explain-concept", response_model=ExplainConceptResponse)
async def explain_concept(
    body: ExplainConceptRequest,
    user: User = Depends(get_current_user),
    ai: AiServices = Depends(get_ai_services),
):
    try:
        return await ai.chat_assistant.explain_concept(body, user.id)
    except QuotaExceeded as e:
        raise _quota_exceeded(e)


@router.get("/stats")
def gemini_stats(
    _: User = Depends(get_current_user_admin),
    ai: AiServices = Depends(get_ai_services),
):
    """Usage ledger, quota windows and cache counters for this process."""
    return {
        "usage": {
            "today": ai.monitor.stats_today(),
            "month": ai.monitor.stats_month(),
            "by_kind": ai.monitor.stats_by_kind(),
            "alert_level": ai.monitor.alert_level().value,
        },
        "rate_limiter": ai.limiter.get_stats(),
        "cache": ai.cache.get_stats(),
    }
