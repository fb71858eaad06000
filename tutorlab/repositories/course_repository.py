"""Read-only access to the course hierarchy (subtopics, exercises) used as prompt context."""
from sqlalchemy.orm import Session, joinedload

from tutorlab.models.exercise import Exercise
from tutorlab.models.topic import Subtopic


def get_subtopic_with_topic(db: Session, subtopic_id: int) -> Subtopic | None:
    return (
        db.query(Subtopic)
        .options(joinedload(Subtopic.topic))
        .filter(Subtopic.id == subtopic_id)
        .first()
    )


def get_exercise(db: Session, exercise_id: int) -> Exercise | None:
    return db.query(Exercise).filter(Exercise.id == exercise_id).first()


class CourseRepository:
    """Thin wrapper for dependency injection; delegates to module functions."""

    @staticmethod
    def get_subtopic_with_topic(db: Session, subtopic_id: int) -> Subtopic | None:
        return get_subtopic_with_topic(db, subtopic_id)

    @staticmethod
    def get_exercise(db: Session, exercise_id: int) -> Exercise | None:
        return get_exercise(db, exercise_id)
