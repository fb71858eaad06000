"""Persistent tier of the Gemini result cache: one row per validated (exercise, normalized code hash)."""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, ForeignKey, Index, JSON
from tutorlab.database import Base


class LlmFeedback(Base):
    __tablename__ = "llm_feedback"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    kind = Column(String(100), nullable=False)  # "code_validation"
    content_hash = Column(String(32), nullable=False)  # md5 of normalized code
    exercise_id = Column(Integer, nullable=True)
    raw_context = Column(JSON, nullable=True)  # hash, result, score, errors, passed/total
    generated_text = Column(Text, nullable=False)
    generated_by_llm = Column(Boolean, nullable=False, default=True)
    model_name = Column(String(100), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_llm_feedback_lookup", "content_hash", "exercise_id", "kind"),
    )
