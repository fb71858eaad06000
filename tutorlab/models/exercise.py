from sqlalchemy import Column, Integer, String, Text, ForeignKey, JSON
from tutorlab.database import Base


class Exercise(Base):
    __tablename__ = "exercises"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subtopic_id = Column(Integer, ForeignKey("subtopics.id", ondelete="CASCADE"), nullable=False, index=True)
    statement = Column(Text, nullable=False)
    difficulty = Column(String(50), nullable=True)  # "basica" | "intermedia" | "avanzada"
    starter_code = Column(Text, nullable=True)
    solution_code = Column(Text, nullable=True)
    test_cases = Column(JSON, nullable=True)  # list of {input, expected_output} as authored
    exercise_type = Column(String(50), nullable=True)
    language = Column(String(50), nullable=True)
    max_points = Column(Integer, nullable=False, default=10)
