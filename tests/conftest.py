"""Shared fixtures: in-memory SQLite, a scripted Gemini stand-in, seeded course rows."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import tutorlab.models  # noqa: F401 - register tables
from tutorlab.config import Settings
from tutorlab.database import Base
from tutorlab.models import Exercise, Subtopic, Topic, User


class ScriptedGemini:
    """Stands in for GeminiClient. Replies are returned (or raised) in order; the last one repeats."""

    model = "gemini-test"

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []
        self.options = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt, options=None):
        self.prompts.append(prompt)
        self.options.append(options)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def scripted_gemini():
    return ScriptedGemini


@pytest.fixture
def settings():
    return Settings(
        gemini_api_key="test-key",
        database_url="sqlite://",
        secret_key="test-secret",
        gemini_rpm_limit=100,
        gemini_daily_limit=1000,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seeded(db):
    """One student, one admin, topic 1 > subtopic 7 > exercise 3 (three test cases)."""
    student = User(id="student-1", email="ana@example.com", full_name="Ana", role="STUDENT")
    admin = User(id="admin-1", email="admin@example.com", full_name="Admin", role="ADMIN")
    topic = Topic(id=1, name="Programación en Python", position=1)
    subtopic = Subtopic(
        id=7,
        topic_id=1,
        name="Funciones recursivas",
        description="Funciones que se llaman a sí mismas",
        content_detail="Una función recursiva necesita un caso base y un caso recursivo.",
        position=1,
    )
    exercise = Exercise(
        id=3,
        subtopic_id=7,
        statement="Escribe una función factorial(n)",
        difficulty="basica",
        test_cases=[
            {"input": "0", "expected_output": "1"},
            {"input": "3", "expected_output": "6"},
            {"input": "5", "expected_output": "120"},
        ],
        language="python",
        max_points=10,
    )
    db.add_all([student, admin, topic, subtopic, exercise])
    db.commit()
    return {"student": student, "admin": admin, "subtopic": subtopic, "exercise": exercise}
