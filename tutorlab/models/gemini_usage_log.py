"""Durable mirror of the in-process Gemini usage ledger."""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey
from tutorlab.database import Base


class GeminiUsageLog(Base):
    __tablename__ = "gemini_usage_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    request_kind = Column(String(50), nullable=False, index=True)
    estimated_tokens = Column(Integer, nullable=False, default=0)
    was_cache_hit = Column(Boolean, nullable=False, default=False)
    latency_ms = Column(Integer, nullable=False, default=0)
    model_name = Column(String(50), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
