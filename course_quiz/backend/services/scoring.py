"""
Course Quiz Attempt Service
Scoring engine: per-question evaluation, attempt aggregates and manual grading
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database.models import (
    Answer, AttemptStatus, Question, QuestionType, QuizAttempt, utcnow
)
from ..exceptions import (
    AnswerNotFoundException,
    AttemptNotFoundException,
    GradeSubmissionException,
    InvalidAttemptStateException,
    ValidationException
)
from ..utils.helpers import parse_uuid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnswerEvaluation:
    is_correct: Optional[bool]
    points_earned: float


@dataclass(frozen=True)
class ScoreResult:
    earned: float
    total_possible: float
    percentage: float
    passed: bool
    pending_manual_grading: int = 0
    correct_count: int = 0
    answered_count: int = 0


def normalize_response(raw: Any) -> List[Any]:
    """Turn a submitted value into the stored list form.

    Scalars become a one element list, ``None`` and blank strings are
    dropped so that an empty list always means "nothing answered".
    """
    if raw is None:
        return []
    if isinstance(raw, (list, tuple, set, frozenset)):
        values = list(raw)
    else:
        values = [raw]
    return [
        value for value in values
        if value is not None and not (isinstance(value, str) and not value.strip())
    ]


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


def _canonical_bool(value: Any) -> str:
    text = _as_text(value)
    lowered = text.lower()
    if lowered in ("true", "false"):
        return lowered
    return text


# Evaluators receive a non-empty normalised response
def _evaluate_choice(question: Question, response: List[Any]) -> bool:
    submitted = {_as_text(value) for value in response}
    expected = {_as_text(value) for value in question.correct_answers or []}
    return submitted == expected


def _evaluate_true_false(question: Question, response: List[Any]) -> bool:
    if len(response) != 1:
        return False
    return _canonical_bool(response[0]) == _canonical_bool(question.correct_answers[0])


def _evaluate_fill_blank(question: Question, response: List[Any]) -> bool:
    submitted = _as_text(response[0]).lower()
    accepted = {_as_text(value).lower() for value in question.correct_answers or []}
    return submitted in accepted


def _evaluate_essay(question: Question, response: List[Any]) -> Optional[bool]:
    return None


Evaluator = Callable[[Question, List[Any]], Optional[bool]]

EVALUATORS: Dict[QuestionType, Evaluator] = {
    QuestionType.SINGLE_CHOICE: _evaluate_choice,
    QuestionType.MULTIPLE_CHOICE: _evaluate_choice,
    QuestionType.TRUE_FALSE: _evaluate_true_false,
    QuestionType.FILL_BLANK: _evaluate_fill_blank,
    QuestionType.ESSAY: _evaluate_essay,
}

_missing_evaluators = set(QuestionType) - set(EVALUATORS)
if _missing_evaluators:
    raise RuntimeError(
        f"No evaluator registered for question types: "
        f"{sorted(t.value for t in _missing_evaluators)}"
    )


def evaluate_answer(question: Question, response: Any) -> AnswerEvaluation:
    """Evaluate one response against its question"""
    values = normalize_response(response)

    if not values:
        return AnswerEvaluation(is_correct=False, points_earned=0.0)

    if not question.question_type.is_manually_graded and not question.correct_answers:
        return AnswerEvaluation(is_correct=False, points_earned=0.0)

    is_correct = EVALUATORS[question.question_type](question, values)
    points = float(question.points) if is_correct else 0.0
    return AnswerEvaluation(is_correct=is_correct, points_earned=points)


def calculate_percentage(earned: float, total_possible: float) -> float:
    if total_possible <= 0:
        return 0.0
    return round(earned / total_possible * 100, 2)


def score_answers(
    questions: Iterable[Question],
    answers: Iterable[Answer],
    passing_score: float
) -> ScoreResult:
    """Aggregate persisted answer evaluations into an attempt score.

    The denominator covers every active question of the quiz, answered or
    not. Answers to questions that are no longer active are left out of
    both sides.
    """
    active = {question.id: question for question in questions if question.is_active}
    total_possible = float(sum(question.points for question in active.values()))

    earned = 0.0
    pending = 0
    correct = 0
    answered = 0

    for answer in answers:
        if answer.question_id not in active:
            continue
        answered += 1
        if answer.is_correct is None:
            pending += 1
            continue
        earned += answer.points_earned or 0.0
        if answer.is_correct:
            correct += 1

    percentage = calculate_percentage(earned, total_possible)

    return ScoreResult(
        earned=round(earned, 2),
        total_possible=total_possible,
        percentage=percentage,
        passed=percentage >= passing_score,
        pending_manual_grading=pending,
        correct_count=correct,
        answered_count=answered
    )


def apply_score(
    attempt: QuizAttempt,
    questions: Iterable[Question],
    answers: Iterable[Answer],
    passing_score: float
) -> ScoreResult:
    """Re-evaluate automatic answers and write the aggregate onto the attempt.

    Graded essay answers keep the points awarded by the grader. Running it
    again on the same answers gives the same result.
    """
    questions = list(questions)
    answers = list(answers)
    by_id = {question.id: question for question in questions}

    for answer in answers:
        question = by_id.get(answer.question_id)
        if question is None:
            continue
        if question.question_type.is_manually_graded and answer.graded_at is not None:
            continue
        evaluation = evaluate_answer(question, answer.response)
        answer.is_correct = evaluation.is_correct
        answer.points_earned = evaluation.points_earned

    result = score_answers(questions, answers, passing_score)

    attempt.score = result.earned
    attempt.total_points = result.total_possible
    attempt.percentage = result.percentage
    attempt.passed = result.passed

    return result


class ScoringService:
    """Persistence-backed scoring: attempt rescore and manual essay grading"""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_attempt(self, attempt_id) -> QuizAttempt:
        attempt_uuid = parse_uuid(attempt_id, AttemptNotFoundException)
        result = await self._session.execute(
            select(QuizAttempt)
            .options(
                selectinload(QuizAttempt.quiz),
                selectinload(QuizAttempt.answers)
            )
            .where(QuizAttempt.id == attempt_uuid)
        )
        attempt = result.scalar_one_or_none()
        if not attempt:
            raise AttemptNotFoundException(str(attempt_id))
        return attempt

    async def _quiz_questions(self, quiz_id: uuid.UUID) -> List[Question]:
        result = await self._session.execute(
            select(Question)
            .where(Question.quiz_id == quiz_id)
            .order_by(Question.order_index)
        )
        return list(result.scalars().all())

    async def score_attempt(self, attempt: QuizAttempt) -> ScoreResult:
        """Score an attempt whose quiz and answers are loaded; does not commit"""
        questions = await self._quiz_questions(attempt.quiz_id)
        return apply_score(attempt, questions, attempt.answers, attempt.quiz.passing_score)

    async def rescore_attempt(self, attempt_id) -> ScoreResult:
        attempt = await self.get_attempt(attempt_id)

        if attempt.status != AttemptStatus.COMPLETED:
            raise InvalidAttemptStateException(attempt.id, attempt.status.value, "rescore")

        try:
            result = await self.score_attempt(attempt)
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.info(
            f"Attempt {attempt.id} rescored: {result.earned}/{result.total_possible} "
            f"({result.percentage}%), {result.pending_manual_grading} pending"
        )
        return result

    async def grade_answer(
        self,
        attempt_id,
        question_id,
        points: float,
        feedback: Optional[str] = None,
        grader_id: Optional[uuid.UUID] = None
    ) -> ScoreResult:
        """Record a manual grade for an essay answer and rescore the attempt"""
        attempt = await self.get_attempt(attempt_id)

        if attempt.status != AttemptStatus.COMPLETED:
            raise InvalidAttemptStateException(attempt.id, attempt.status.value, "grade")

        question_uuid = parse_uuid(question_id, lambda value: AnswerNotFoundException(str(attempt.id), value))
        answer = next((a for a in attempt.answers if a.question_id == question_uuid), None)
        if answer is None:
            raise AnswerNotFoundException(str(attempt.id), str(question_uuid))

        questions = await self._quiz_questions(attempt.quiz_id)
        question = next((q for q in questions if q.id == question_uuid), None)
        if question is None:
            raise AnswerNotFoundException(str(attempt.id), str(question_uuid))

        if not question.question_type.is_manually_graded:
            raise GradeSubmissionException(
                f"{question.question_type.display_name} questions are graded automatically",
                str(attempt.id)
            )

        if points < 0 or points > question.points:
            raise ValidationException(
                f"Points must be between 0 and {question.points}",
                field="points",
                value=points
            )

        try:
            answer.points_earned = float(points)
            answer.is_correct = points > 0
            answer.feedback = feedback
            answer.graded_at = utcnow()
            answer.graded_by_id = grader_id

            result = apply_score(attempt, questions, attempt.answers, attempt.quiz.passing_score)
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.info(
            f"Essay answer {answer.id} graded {points}/{question.points}; "
            f"attempt {attempt.id} now {result.percentage}%"
        )
        return result


__all__ = [
    "AnswerEvaluation",
    "ScoreResult",
    "EVALUATORS",
    "normalize_response",
    "evaluate_answer",
    "calculate_percentage",
    "score_answers",
    "apply_score",
    "ScoringService",
]
