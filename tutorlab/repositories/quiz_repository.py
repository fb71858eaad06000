"""Persistence of generated quiz questions: one quiz_questions row plus its answer_options rows."""
from sqlalchemy.orm import Session

from tutorlab.models.quiz_question import AnswerOption, QuizQuestion
from tutorlab.schemas.ai import GeneratedQuestion


def save_generated_questions(
    db: Session,
    subtopic_id: int,
    questions: list[GeneratedQuestion],
) -> list[QuizQuestion]:
    """Insert all questions with their options in one transaction. Rolls back and re-raises on error."""
    rows = []
    try:
        for q in questions:
            row = QuizQuestion(
                subtopic_id=subtopic_id,
                question_text=q.text,
                question_type="opcion_multiple",
                difficulty=q.difficulty,
                correct_feedback=q.correct_feedback,
                incorrect_feedback=q.incorrect_feedback,
                detailed_explanation=q.detailed_explanation,
                points=q.points,
                generated_by_llm=True,
            )
            row.options = [
                AnswerOption(
                    option_text=o.text,
                    is_correct=o.is_correct,
                    explanation=o.explanation,
                    position=i + 1,
                )
                for i, o in enumerate(q.options)
            ]
            db.add(row)
            rows.append(row)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return rows


class QuizRepository:
    """Thin wrapper for dependency injection; delegates to module functions."""

    @staticmethod
    def save_generated_questions(
        db: Session,
        subtopic_id: int,
        questions: list[GeneratedQuestion],
    ) -> list[QuizQuestion]:
        return save_generated_questions(db, subtopic_id, questions)
