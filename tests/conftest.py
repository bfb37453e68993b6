"""Shared fixtures: a fresh SQLite database per test, a frozen clock and data factories."""

import os

os.environ["ENVIRONMENT"] = "testing"

import random
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from course_quiz.config import TestingSettings, get_settings
from course_quiz.backend.app import create_app
from course_quiz.backend.database.connection import (
    create_async_engine_instance,
    create_session_factory,
    create_tables,
    get_db
)
from course_quiz.backend.database.models import (
    Enrollment, QuestionType, Quiz, UserRole
)
from course_quiz.backend.dependencies import create_access_token, get_attempt_lock
from course_quiz.backend.services.attempts import AttemptService
from course_quiz.backend.services.catalog import QuizCatalog
from course_quiz.backend.services.events import EventDispatcher
from course_quiz.backend.services.locks import AttemptLock

get_settings.cache_clear()

START = datetime(2024, 3, 1, 9, 0, 0)


class FrozenClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine_instance(f"sqlite+aiosqlite:///{tmp_path / 'quiz.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def settings():
    return TestingSettings()


@pytest.fixture
def events():
    return []


@pytest.fixture
def dispatcher(events):
    dispatcher = EventDispatcher()

    async def record(event):
        events.append(event)

    dispatcher.subscribe(record)
    return dispatcher


@pytest.fixture
def attempt_lock():
    return AttemptLock(timeout=5)


@pytest.fixture
def make_service(attempt_lock, dispatcher, settings, clock):
    def factory(session, **overrides) -> AttemptService:
        options = dict(
            lock=attempt_lock,
            dispatcher=dispatcher,
            settings=settings,
            clock=clock,
            rng=random.Random(7)
        )
        options.update(overrides)
        return AttemptService(session, **options)

    return factory


@pytest.fixture
def service(session, make_service):
    return make_service(session)


@pytest.fixture
def course_id():
    return uuid.uuid4()


@pytest.fixture
def student_id():
    return uuid.uuid4()


@pytest.fixture
def instructor_id():
    return uuid.uuid4()


def choice_question(content: str, correct: List[str], points: float = 5.0, **extra) -> Dict[str, Any]:
    question = {
        "question_type": QuestionType.SINGLE_CHOICE,
        "content": content,
        "options": ["a", "b", "c", "d"],
        "correct_answers": correct,
        "points": points,
    }
    question.update(extra)
    return question


@pytest.fixture
def make_quiz(session, course_id, instructor_id):
    async def factory(questions: Optional[List[Dict[str, Any]]] = None, **fields) -> Quiz:
        target_course = fields.pop("course_id", course_id)
        data = {"title": "Unit quiz", "passing_score": 70.0, "max_attempts": 3}
        data.update(fields)
        catalog = QuizCatalog(session)
        quiz = await catalog.create_quiz(
            target_course,
            data,
            created_by_id=instructor_id,
            questions=questions
        )
        return await catalog.get_quiz(quiz.id, with_questions=True)

    return factory


@pytest.fixture
def scenario_questions():
    return [
        choice_question("Q1", ["a"]),
        choice_question("Q2", ["b"]),
    ]


@pytest.fixture
def enroll(session):
    async def factory(course_id: uuid.UUID, user_id: uuid.UUID) -> Enrollment:
        enrollment = Enrollment(id=uuid.uuid4(), course_id=course_id, user_id=user_id)
        session.add(enrollment)
        await session.commit()
        return enrollment

    return factory


# HTTP fixtures

@pytest_asyncio.fixture
async def client(session_factory):
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    lock = AttemptLock(timeout=5)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_attempt_lock] = lambda: lock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def auth_headers(user_id: uuid.UUID, role: UserRole = UserRole.STUDENT) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}
