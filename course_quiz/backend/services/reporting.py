"""
Course Quiz Attempt Service
Reporting: quiz statistics, analytics distributions, learner progress and result export
"""

import csv
import io
import logging
import uuid
from typing import Any, Dict, List, Optional

import numpy as np
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database.models import AttemptStatus, QuizAttempt
from .attempts import AttemptService
from .catalog import QuizCatalog

logger = logging.getLogger(__name__)

SCORE_BUCKETS = (
    ("90-100", 90.0, None),
    ("80-89", 80.0, 90.0),
    ("70-79", 70.0, 80.0),
    ("60-69", 60.0, 70.0),
    ("0-59", None, 60.0),
)

TIME_BUCKETS = (
    ("0-15 min", None, 900),
    ("15-30 min", 900, 1800),
    ("30-60 min", 1800, 3600),
    ("60+ min", 3600, None),
)

EXPORT_COLUMNS = [
    "attempt_id", "user_id", "attempt_number", "started_at", "completed_at",
    "time_taken", "score", "total_points", "percentage", "passed", "grade",
    "pending_manual_grading",
]


def score_distribution(percentages: List[float]) -> Dict[str, int]:
    counts = {label: 0 for label, _, _ in SCORE_BUCKETS}
    for value in percentages:
        for label, lower, upper in SCORE_BUCKETS:
            if (lower is None or value >= lower) and (upper is None or value < upper):
                counts[label] += 1
                break
    return counts


def time_distribution(durations: List[int]) -> Dict[str, int]:
    counts = {label: 0 for label, _, _ in TIME_BUCKETS}
    for seconds in durations:
        for label, lower, upper in TIME_BUCKETS:
            if (lower is None or seconds > lower) and (upper is None or seconds <= upper):
                counts[label] += 1
                break
    return counts


def score_summary(percentages: List[float]) -> Dict[str, Any]:
    if not percentages:
        return {
            "mean": 0, "median": 0, "std_dev": 0,
            "quartiles": {"q1": 0, "q2": 0, "q3": 0}
        }

    scores = np.array(percentages, dtype=float)
    return {
        "mean": round(float(np.mean(scores)), 2),
        "median": round(float(np.median(scores)), 2),
        "std_dev": round(float(np.std(scores)), 2),
        "quartiles": {
            "q1": round(float(np.percentile(scores, 25)), 2),
            "q2": round(float(np.percentile(scores, 50)), 2),
            "q3": round(float(np.percentile(scores, 75)), 2)
        }
    }


def best_attempt(attempts: List[QuizAttempt]) -> Optional[QuizAttempt]:
    """Highest scoring completed attempt, earliest first on ties"""
    completed = [a for a in attempts if a.status == AttemptStatus.COMPLETED]
    if not completed:
        return None
    return max(completed, key=lambda a: (a.percentage or 0.0, -a.attempt_number))


def _attempt_summary(attempt: Optional[QuizAttempt]) -> Optional[Dict[str, Any]]:
    if attempt is None:
        return None
    return {
        "attempt_id": str(attempt.id),
        "attempt_number": attempt.attempt_number,
        "status": attempt.status.value,
        "score": attempt.score,
        "total_points": attempt.total_points,
        "percentage": attempt.percentage,
        "passed": attempt.passed,
        "grade": attempt.grade_letter,
        "completed_at": attempt.completed_at.isoformat() if attempt.completed_at else None,
    }


class ReportingService:
    """Read-only aggregates over attempts for instructors and learners"""

    def __init__(self, session: AsyncSession):
        self._session = session
        self.catalog = QuizCatalog(session)

    async def _completed_attempts(self, quiz_id: uuid.UUID, with_answers: bool = False) -> List[QuizAttempt]:
        query = select(QuizAttempt).where(
            QuizAttempt.quiz_id == quiz_id,
            QuizAttempt.status == AttemptStatus.COMPLETED
        )
        if with_answers:
            query = query.options(selectinload(QuizAttempt.answers))
        result = await self._session.execute(query.order_by(QuizAttempt.created_at.desc()))
        return list(result.scalars().all())

    async def quiz_statistics(self, quiz_id) -> Dict[str, Any]:
        quiz = await self.catalog.get_quiz(quiz_id)

        total_result = await self._session.execute(
            select(func.count(QuizAttempt.id)).where(QuizAttempt.quiz_id == quiz.id)
        )
        total_attempts = total_result.scalar() or 0

        completed = await self._completed_attempts(quiz.id)
        passed = sum(1 for a in completed if a.passed)
        average = float(np.mean([a.percentage or 0.0 for a in completed])) if completed else 0.0

        return {
            "quiz_id": str(quiz.id),
            "total_attempts": total_attempts,
            "completed_attempts": len(completed),
            "passed_attempts": passed,
            "failed_attempts": len(completed) - passed,
            "average_score": round(average, 2),
            "pass_rate": round(passed / len(completed) * 100, 2) if completed else 0.0,
            "question_count": await self.catalog.question_count(quiz.id),
            "total_points": await self.catalog.total_points(quiz.id),
        }

    async def quiz_analytics(self, quiz_id) -> Dict[str, Any]:
        quiz = await self.catalog.get_quiz(quiz_id)
        attempts = await self._completed_attempts(quiz.id, with_answers=True)
        questions = await self.catalog.active_questions(quiz.id)

        percentages = [a.percentage or 0.0 for a in attempts]
        passed = sum(1 for a in attempts if a.passed)

        question_analysis = []
        for question in questions:
            answers = [
                answer
                for attempt in attempts
                for answer in attempt.answers
                if answer.question_id == question.id
            ]
            correct = sum(1 for answer in answers if answer.is_correct)
            question_analysis.append({
                "question_id": str(question.id),
                "question_text": question.content[:50],
                "type": question.question_type.value,
                "points": question.points,
                "total_attempts": len(answers),
                "correct_attempts": correct,
                "success_rate": round(correct / len(answers) * 100, 2) if answers else 0.0,
            })

        return {
            "quiz_id": str(quiz.id),
            "total_attempts": len(attempts),
            "average_score": round(float(np.mean(percentages)), 2) if percentages else 0.0,
            "pass_rate": round(passed / len(attempts) * 100, 2) if attempts else 0.0,
            "score_summary": score_summary(percentages),
            "score_distribution": score_distribution(percentages),
            "time_distribution": time_distribution([a.time_taken_seconds or 0 for a in attempts]),
            "question_analysis": question_analysis,
        }

    async def user_progress(self, user_id: uuid.UUID) -> Dict[str, Any]:
        result = await self._session.execute(
            select(QuizAttempt).where(
                QuizAttempt.user_id == user_id,
                QuizAttempt.status == AttemptStatus.COMPLETED
            )
        )
        attempts = list(result.scalars().all())

        quizzes_taken = {a.quiz_id for a in attempts}
        quizzes_passed = {a.quiz_id for a in attempts if a.passed}
        percentages = [a.percentage or 0.0 for a in attempts]

        return {
            "total_quizzes_taken": len(quizzes_taken),
            "passed_quizzes": len(quizzes_passed),
            "failed_quizzes": len(quizzes_taken) - len(quizzes_passed),
            "average_score": round(float(np.mean(percentages)), 2) if percentages else 0.0,
            "total_attempts": len(attempts),
            "success_rate": (
                round(len(quizzes_passed) / len(quizzes_taken) * 100, 2) if quizzes_taken else 0.0
            ),
        }

    async def course_progress(
        self,
        course_id: uuid.UUID,
        user_id: uuid.UUID,
        attempt_service: AttemptService
    ) -> List[Dict[str, Any]]:
        quizzes = await self.catalog.list_course_quizzes(course_id)
        if not quizzes:
            return []

        result = await self._session.execute(
            select(QuizAttempt).where(
                QuizAttempt.user_id == user_id,
                QuizAttempt.quiz_id.in_([q.id for q in quizzes])
            )
        )
        by_quiz: Dict[uuid.UUID, List[QuizAttempt]] = {}
        for attempt in result.scalars().all():
            by_quiz.setdefault(attempt.quiz_id, []).append(attempt)

        progress = []
        for quiz in quizzes:
            attempts = by_quiz.get(quiz.id, [])
            best = best_attempt(attempts)
            eligibility = await attempt_service.check_eligibility(quiz, user_id)
            progress.append({
                "quiz_id": str(quiz.id),
                "title": quiz.title,
                "quiz_type": quiz.quiz_type.value,
                "best_attempt": _attempt_summary(best),
                "attempt_count": len(attempts),
                "is_available": eligibility.available,
                "is_completed": best is not None,
                "is_passed": bool(best and best.passed),
            })

        return progress

    async def export_results(self, quiz_id) -> List[Dict[str, Any]]:
        quiz = await self.catalog.get_quiz(quiz_id)
        attempts = await self._completed_attempts(quiz.id, with_answers=True)

        rows = []
        for attempt in attempts:
            rows.append({
                "attempt_id": str(attempt.id),
                "user_id": str(attempt.user_id),
                "attempt_number": attempt.attempt_number,
                "started_at": attempt.started_at.strftime("%Y-%m-%d %H:%M:%S"),
                "completed_at": (
                    attempt.completed_at.strftime("%Y-%m-%d %H:%M:%S") if attempt.completed_at else None
                ),
                "time_taken": attempt.formatted_time_taken,
                "score": attempt.score,
                "total_points": attempt.total_points,
                "percentage": attempt.percentage,
                "passed": "Yes" if attempt.passed else "No",
                "grade": attempt.grade_letter,
                "pending_manual_grading": sum(1 for a in attempt.answers if a.is_correct is None),
            })

        logger.info(f"Exported {len(rows)} results for quiz {quiz.id}")
        return rows


def results_to_csv(rows: List[Dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


__all__ = [
    "ReportingService",
    "score_distribution",
    "time_distribution",
    "score_summary",
    "best_attempt",
    "results_to_csv",
]
