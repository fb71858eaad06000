"""
Durable tier of the code-validation cache: llm_feedback rows keyed by
(content_hash, exercise_id, kind). Append-only; rows are never updated.
All operations are sync (run_in_executor from async services).
"""
from sqlalchemy import desc
from sqlalchemy.orm import Session

from tutorlab.models.llm_feedback import LlmFeedback

CODE_VALIDATION_KIND = "code_validation"


def find_code_validation(db: Session, content_hash: str, exercise_id: int) -> LlmFeedback | None:
    """Newest stored validation for this normalized code hash and exercise, or None."""
    return (
        db.query(LlmFeedback)
        .filter(
            LlmFeedback.content_hash == content_hash,
            LlmFeedback.exercise_id == exercise_id,
            LlmFeedback.kind == CODE_VALIDATION_KIND,
        )
        .order_by(desc(LlmFeedback.created_at))
        .first()
    )


def save_code_validation(
    db: Session,
    user_id: str,
    content_hash: str,
    exercise_id: int,
    feedback: str,
    context: dict,
    *,
    model_name: str | None = None,
) -> LlmFeedback:
    """Persist one validation outcome. `context` holds result, points, errors and test counts."""
    row = LlmFeedback(
        user_id=user_id,
        kind=CODE_VALIDATION_KIND,
        content_hash=content_hash,
        exercise_id=exercise_id,
        raw_context={"content_hash": content_hash, "exercise_id": exercise_id, **context},
        generated_text=feedback,
        generated_by_llm=True,
        model_name=model_name,
    )
    db.add(row)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(row)
    return row


class FeedbackRepository:
    """Thin wrapper for dependency injection; delegates to module functions."""

    @staticmethod
    def find_code_validation(db: Session, content_hash: str, exercise_id: int) -> LlmFeedback | None:
        return find_code_validation(db, content_hash, exercise_id)

    @staticmethod
    def save_code_validation(
        db: Session,
        user_id: str,
        content_hash: str,
        exercise_id: int,
        feedback: str,
        context: dict,
        *,
        model_name: str | None = None,
    ) -> LlmFeedback:
        return save_code_validation(
            db, user_id, content_hash, exercise_id, feedback, context,
            model_name=model_name,
        )
