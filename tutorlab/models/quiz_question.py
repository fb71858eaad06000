"""Quiz questions (LLM-generated or authored) and their answer options."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from tutorlab.database import Base


class QuizQuestion(Base):
    __tablename__ = "quiz_questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subtopic_id = Column(Integer, ForeignKey("subtopics.id"), nullable=False, index=True)
    question_text = Column(Text, nullable=False)
    question_type = Column(String(32), nullable=False, default="opcion_multiple")
    difficulty = Column(String(50), nullable=True)
    correct_feedback = Column(Text, nullable=True)
    incorrect_feedback = Column(Text, nullable=True)
    detailed_explanation = Column(Text, nullable=True)
    points = Column(Integer, nullable=False, default=10)
    generated_by_llm = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    options = relationship(
        "AnswerOption",
        back_populates="question",
        order_by="AnswerOption.position",
        cascade="all, delete-orphan",
    )


class AnswerOption(Base):
    __tablename__ = "answer_options"

    id = Column(Integer, primary_key=True, autoincrement=True)
    question_id = Column(Integer, ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False, index=True)
    option_text = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)
    explanation = Column(Text, nullable=True)
    position = Column(Integer, nullable=True)  # 1-based display order

    question = relationship("QuizQuestion", back_populates="options")
