"""
Course Quiz Attempt Service
Quiz catalog: quiz definitions, question bank and authoring operations
"""

import logging
import random
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database.models import Answer, Question, QuestionType, Quiz, QuizAttempt
from ..exceptions import (
    QuestionHasAnswersException,
    QuestionNotFoundException,
    QuizHasAttemptsException,
    QuizNotFoundException,
    ValidationException
)
from ..utils.helpers import parse_uuid, to_naive_utc
from ...config import get_settings

logger = logging.getLogger(__name__)

QUIZ_FIELDS = (
    "title", "description", "quiz_type", "time_limit_minutes", "passing_score",
    "max_attempts", "shuffle_questions", "show_correct_answers",
    "show_results_immediately", "is_active", "available_from", "available_until",
)

WINDOW_FIELDS = ("available_from", "available_until")

QUESTION_FIELDS = (
    "question_type", "content", "explanation", "options", "correct_answers",
    "points", "order_index", "is_active",
)


def order_by_persisted(questions: Sequence[Question], question_order: Optional[List[str]]) -> List[Question]:
    """Arrange questions in an attempt's stored order.

    Questions missing from the stored order (activated after the attempt
    started) follow in catalog order.
    """
    if not question_order:
        return list(questions)

    position = {question_id: index for index, question_id in enumerate(question_order)}
    known = [q for q in questions if str(q.id) in position]
    known.sort(key=lambda q: position[str(q.id)])
    added = [q for q in questions if str(q.id) not in position]
    return known + added


def _validate_question_data(data: Dict[str, Any]) -> None:
    question_type = data.get("question_type")
    if question_type is None:
        raise ValidationException("Question type is required", field="question_type")
    if not isinstance(question_type, QuestionType):
        try:
            data["question_type"] = QuestionType(question_type)
        except ValueError:
            raise ValidationException("Unknown question type", field="question_type", value=question_type)

    if "points" in data and data["points"] is not None and data["points"] <= 0:
        raise ValidationException("Points must be positive", field="points", value=data["points"])


class QuizCatalog:
    """Reads and authoring operations over quizzes and their questions"""

    def __init__(self, session: AsyncSession):
        self._session = session

    # Reads

    async def get_quiz(self, quiz_id, with_questions: bool = False) -> Quiz:
        quiz_uuid = parse_uuid(quiz_id, QuizNotFoundException)
        query = select(Quiz).where(Quiz.id == quiz_uuid)
        if with_questions:
            query = query.options(selectinload(Quiz.questions))

        result = await self._session.execute(query)
        quiz = result.scalar_one_or_none()
        if not quiz:
            raise QuizNotFoundException(str(quiz_id))
        return quiz

    async def list_quizzes(
        self,
        course_id: Optional[uuid.UUID] = None,
        created_by_id: Optional[uuid.UUID] = None,
        active_only: bool = False,
        skip: int = 0,
        limit: int = 50
    ) -> List[Quiz]:
        query = select(Quiz)
        if course_id:
            query = query.where(Quiz.course_id == course_id)
        if created_by_id:
            query = query.where(Quiz.created_by_id == created_by_id)
        if active_only:
            query = query.where(Quiz.is_active == True)

        result = await self._session.execute(
            query.order_by(Quiz.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all())

    async def list_course_quizzes(self, course_id: uuid.UUID) -> List[Quiz]:
        result = await self._session.execute(
            select(Quiz)
            .where(Quiz.course_id == course_id, Quiz.is_active == True)
            .order_by(Quiz.created_at)
        )
        return list(result.scalars().all())

    async def get_question(self, quiz_id, question_id) -> Question:
        quiz_uuid = parse_uuid(quiz_id, QuizNotFoundException)
        question_uuid = parse_uuid(question_id, QuestionNotFoundException)
        result = await self._session.execute(
            select(Question).where(Question.id == question_uuid, Question.quiz_id == quiz_uuid)
        )
        question = result.scalar_one_or_none()
        if not question:
            raise QuestionNotFoundException(str(question_id))
        return question

    async def list_questions(self, quiz_id, include_inactive: bool = False) -> List[Question]:
        quiz_uuid = parse_uuid(quiz_id, QuizNotFoundException)
        query = select(Question).where(Question.quiz_id == quiz_uuid)
        if not include_inactive:
            query = query.where(Question.is_active == True)
        result = await self._session.execute(query.order_by(Question.order_index, Question.created_at))
        return list(result.scalars().all())

    async def active_questions(self, quiz_id) -> List[Question]:
        return await self.list_questions(quiz_id)

    @staticmethod
    def presentation_order(
        quiz: Quiz,
        questions: Iterable[Question],
        rng: Optional[random.Random] = None
    ) -> List[Question]:
        ordered = list(questions)
        if quiz.shuffle_questions:
            (rng or random).shuffle(ordered)
        return ordered

    async def total_points(self, quiz_id) -> float:
        quiz_uuid = parse_uuid(quiz_id, QuizNotFoundException)
        result = await self._session.execute(
            select(func.coalesce(func.sum(Question.points), 0.0))
            .where(Question.quiz_id == quiz_uuid, Question.is_active == True)
        )
        return float(result.scalar() or 0.0)

    async def question_count(self, quiz_id) -> int:
        quiz_uuid = parse_uuid(quiz_id, QuizNotFoundException)
        result = await self._session.execute(
            select(func.count(Question.id))
            .where(Question.quiz_id == quiz_uuid, Question.is_active == True)
        )
        return result.scalar() or 0

    async def attempt_count(self, quiz_id) -> int:
        quiz_uuid = parse_uuid(quiz_id, QuizNotFoundException)
        result = await self._session.execute(
            select(func.count(QuizAttempt.id)).where(QuizAttempt.quiz_id == quiz_uuid)
        )
        return result.scalar() or 0

    # Authoring

    async def create_quiz(
        self,
        course_id: uuid.UUID,
        data: Dict[str, Any],
        created_by_id: Optional[uuid.UUID] = None,
        questions: Optional[List[Dict[str, Any]]] = None
    ) -> Quiz:
        settings = get_settings()
        values = {key: value for key, value in data.items() if key in QUIZ_FIELDS and value is not None}
        values.setdefault("max_attempts", settings.DEFAULT_MAX_ATTEMPTS)
        values.setdefault("passing_score", settings.DEFAULT_PASSING_SCORE)
        self._normalize_window(values)
        self._check_window(values.get("available_from"), values.get("available_until"))

        quiz = Quiz(id=uuid.uuid4(), course_id=course_id, created_by_id=created_by_id, **values)
        self._session.add(quiz)

        try:
            await self._session.flush()
            for position, question_data in enumerate(questions or []):
                self._session.add(self._build_question(quiz.id, question_data, position + 1))
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.info(f"Quiz created: {quiz.title} ({quiz.id}) in course {course_id}")
        return quiz

    async def update_quiz(self, quiz_id, changes: Dict[str, Any]) -> Quiz:
        quiz = await self.get_quiz(quiz_id)

        values = {key: value for key, value in changes.items() if key in QUIZ_FIELDS}
        self._normalize_window(values)
        self._check_window(
            values.get("available_from", quiz.available_from),
            values.get("available_until", quiz.available_until)
        )
        for key, value in values.items():
            setattr(quiz, key, value)

        try:
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.info(f"Quiz updated: {quiz.id} ({', '.join(sorted(changes))})")
        return quiz

    async def delete_quiz(self, quiz_id) -> None:
        quiz = await self.get_quiz(quiz_id, with_questions=True)

        attempts = await self.attempt_count(quiz.id)
        if attempts > 0:
            raise QuizHasAttemptsException(quiz.id, attempts)

        try:
            await self._session.delete(quiz)
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.info(f"Quiz deleted: {quiz_id}")

    async def deactivate_quiz(self, quiz_id) -> Quiz:
        return await self.update_quiz(quiz_id, {"is_active": False})

    async def add_questions(self, quiz_id, questions: List[Dict[str, Any]]) -> List[Question]:
        quiz = await self.get_quiz(quiz_id)

        created = [
            self._build_question(quiz.id, data, position + 1)
            for position, data in enumerate(questions)
        ]
        self._session.add_all(created)

        try:
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.info(f"Added {len(created)} questions to quiz {quiz.id}")
        return created

    async def update_question(self, quiz_id, question_id, changes: Dict[str, Any]) -> Question:
        question = await self.get_question(quiz_id, question_id)

        values = {key: value for key, value in changes.items() if key in QUESTION_FIELDS}
        if values:
            _validate_question_data({"question_type": question.question_type, **values})
            if "question_type" in values and not isinstance(values["question_type"], QuestionType):
                values["question_type"] = QuestionType(values["question_type"])
        for key, value in values.items():
            setattr(question, key, value)

        try:
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        return question

    async def reorder_questions(self, quiz_id, orders: Iterable[Tuple[Any, int]]) -> List[Question]:
        """Apply new order_index values; ids that are not part of the quiz are skipped"""
        questions = await self.list_questions(quiz_id, include_inactive=True)
        by_id = {str(q.id): q for q in questions}

        for question_id, order_index in orders:
            question = by_id.get(str(question_id))
            if question is None:
                logger.debug(f"Skipping reorder of unknown question {question_id}")
                continue
            question.order_index = order_index

        try:
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        return sorted(questions, key=lambda q: q.order_index)

    async def answer_count(self, question_id: uuid.UUID) -> int:
        result = await self._session.execute(
            select(func.count(Answer.id)).where(Answer.question_id == question_id)
        )
        return result.scalar() or 0

    async def delete_question(self, quiz_id, question_id) -> None:
        question = await self.get_question(quiz_id, question_id)

        answers = await self.answer_count(question.id)
        if answers > 0:
            raise QuestionHasAnswersException(question.id, answers)

        try:
            await self._session.delete(question)
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.info(f"Question deleted: {question_id} from quiz {quiz_id}")

    async def deactivate_question(self, quiz_id, question_id) -> Question:
        return await self.update_question(quiz_id, question_id, {"is_active": False})

    # Helpers

    @staticmethod
    def _normalize_window(values: Dict[str, Any]) -> None:
        for key in WINDOW_FIELDS:
            if key in values:
                values[key] = to_naive_utc(values[key])

    @staticmethod
    def _check_window(available_from, available_until) -> None:
        if available_from and available_until and available_until < available_from:
            raise ValidationException(
                "available_until must not be before available_from",
                field="available_until",
                value=available_until
            )

    @staticmethod
    def _build_question(quiz_id: uuid.UUID, data: Dict[str, Any], position: int) -> Question:
        values = {key: value for key, value in data.items() if key in QUESTION_FIELDS and value is not None}
        _validate_question_data(values)
        values.setdefault("order_index", position)
        values.setdefault("options", [])
        values.setdefault("correct_answers", [])
        return Question(id=uuid.uuid4(), quiz_id=quiz_id, **values)


__all__ = ["QuizCatalog", "order_by_persisted", "QUIZ_FIELDS", "QUESTION_FIELDS"]
