"""
Course Quiz Attempt Service
Attempt lifecycle: eligibility, start, submit, resume, abandon and expiry sweep
"""

import logging
import random
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from ..database.models import (
    AbandonReason, Answer, AttemptStatus, Question, Quiz, QuizAttempt, utcnow
)
from ..exceptions import (
    AttemptNotFoundException,
    AttemptTimeExpiredException,
    ConflictException,
    InvalidAttemptStateException,
    MaxAttemptsExceededException,
    QuizNotAvailableException,
    QuizNotFoundException,
    UnknownAnswerKeysException
)
from ..utils.helpers import elapsed_minutes, elapsed_seconds, parse_uuid
from ...config import Settings, get_settings
from .catalog import QuizCatalog, order_by_persisted
from .events import AttemptCompletedEvent, EventDispatcher, get_event_dispatcher
from .locks import AttemptLock
from .scoring import ScoreResult, apply_score, evaluate_answer, normalize_response

logger = logging.getLogger(__name__)

ATTEMPT_NUMBER_CONSTRAINT = "_quiz_user_attempt_uc"


def is_attempt_number_clash(error: IntegrityError) -> bool:
    """Whether an insert failed on the attempt number unique constraint.

    PostgreSQL reports the constraint name, SQLite the constrained columns.
    """
    message = str(error.orig)
    return ATTEMPT_NUMBER_CONSTRAINT in message or "quiz_attempts.attempt_number" in message


@dataclass(frozen=True)
class Eligibility:
    available: bool
    reason: Optional[str]
    attempts_used: int
    attempts_remaining: int
    code: Optional[str] = None


@dataclass(frozen=True)
class SubmissionResult:
    attempt: QuizAttempt
    score: ScoreResult
    ignored_question_ids: List[str]


@dataclass(frozen=True)
class ResumeResult:
    attempt: QuizAttempt
    questions: List[Question]
    remaining_seconds: Optional[int]


class AttemptService:
    """Runs a learner's attempts through in_progress -> completed | abandoned"""

    def __init__(
        self,
        session: AsyncSession,
        lock: Optional[AttemptLock] = None,
        dispatcher: Optional[EventDispatcher] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None
    ):
        self._session = session
        self._settings = settings or get_settings()
        self._lock = lock or AttemptLock(timeout=self._settings.ATTEMPT_LOCK_TIMEOUT_SECONDS)
        self._dispatcher = dispatcher or get_event_dispatcher()
        self._clock = clock
        self._rng = rng
        self.catalog = QuizCatalog(session)

    # Eligibility

    async def count_attempts(self, quiz_id: uuid.UUID, user_id: uuid.UUID) -> int:
        result = await self._session.execute(
            select(func.count(QuizAttempt.id)).where(
                QuizAttempt.quiz_id == quiz_id,
                QuizAttempt.user_id == user_id
            )
        )
        return result.scalar() or 0

    async def check_eligibility(self, quiz: Quiz, user_id: uuid.UUID) -> Eligibility:
        """Whether the user may start a new attempt now. Any failed rule makes it unavailable."""
        now = self._clock()
        used = await self.count_attempts(quiz.id, user_id)
        remaining = max(0, quiz.max_attempts - used)

        def unavailable(code: str, reason: str) -> Eligibility:
            return Eligibility(False, reason, used, remaining, code)

        if not quiz.is_active:
            return unavailable("inactive", "Quiz is not active")
        if quiz.available_from and now < quiz.available_from:
            return unavailable("not_started", "Quiz is not yet available")
        if quiz.available_until and now > quiz.available_until:
            return unavailable("ended", "Quiz deadline has passed")
        if used >= quiz.max_attempts:
            return unavailable("max_attempts", "Maximum attempts reached")

        return Eligibility(True, None, used, remaining)

    async def ensure_eligible(self, quiz: Quiz, user_id: uuid.UUID) -> Eligibility:
        eligibility = await self.check_eligibility(quiz, user_id)

        if eligibility.code == "max_attempts":
            raise MaxAttemptsExceededException(quiz.id, quiz.max_attempts, eligibility.attempts_used)
        if not eligibility.available:
            raise QuizNotAvailableException(eligibility.reason, quiz.id)

        return eligibility

    # Start

    async def _active_attempt(self, quiz_id: uuid.UUID, user_id: uuid.UUID) -> Optional[QuizAttempt]:
        result = await self._session.execute(
            select(QuizAttempt).where(
                QuizAttempt.quiz_id == quiz_id,
                QuizAttempt.user_id == user_id,
                QuizAttempt.status == AttemptStatus.IN_PROGRESS
            )
        )
        return result.scalars().first()

    async def start_attempt(self, quiz_id, user_id: uuid.UUID) -> QuizAttempt:
        """Create the user's next attempt.

        Creation is serialized per (user, quiz) by the attempt lock; a lost
        race on the attempt number unique constraint is retried.
        """
        quiz_uuid = parse_uuid(quiz_id, QuizNotFoundException)
        max_tries = max(1, self._settings.ATTEMPT_START_MAX_RETRIES)

        async with self._lock.hold(quiz_uuid, user_id):
            for try_number in range(1, max_tries + 1):
                quiz = await self.catalog.get_quiz(quiz_uuid)
                eligibility = await self.ensure_eligible(quiz, user_id)

                active = await self._active_attempt(quiz.id, user_id)
                if active:
                    raise ConflictException(
                        "You already have an active attempt for this quiz",
                        conflict_type="active_attempt",
                        details={"attempt_id": str(active.id)}
                    )

                questions = await self.catalog.active_questions(quiz.id)
                ordered = self.catalog.presentation_order(quiz, questions, self._rng)

                attempt = QuizAttempt(
                    id=uuid.uuid4(),
                    quiz_id=quiz.id,
                    user_id=user_id,
                    attempt_number=eligibility.attempts_used + 1,
                    status=AttemptStatus.IN_PROGRESS,
                    started_at=self._clock(),
                    question_order=[str(q.id) for q in ordered]
                )
                self._session.add(attempt)

                try:
                    await self._session.commit()
                except IntegrityError as e:
                    await self._session.rollback()
                    if not is_attempt_number_clash(e):
                        raise
                    logger.warning(
                        f"Attempt number clash for user {user_id} on quiz {quiz_uuid} "
                        f"(try {try_number}/{max_tries})"
                    )
                    continue

                logger.info(
                    f"Attempt {attempt.id} started: user {user_id}, quiz {quiz.id}, "
                    f"attempt #{attempt.attempt_number}"
                )
                return attempt

        raise ConflictException(
            "Could not start the attempt, please retry",
            conflict_type="attempt_start"
        )

    # Reads

    async def _get_owned_attempt(
        self,
        attempt_id,
        user_id: uuid.UUID,
        with_answers: bool = False,
        fresh: bool = False
    ) -> QuizAttempt:
        attempt_uuid = parse_uuid(attempt_id, AttemptNotFoundException)
        options = [selectinload(QuizAttempt.quiz)]
        if with_answers:
            options.append(selectinload(QuizAttempt.answers))

        query = (
            select(QuizAttempt)
            .options(*options)
            .where(QuizAttempt.id == attempt_uuid, QuizAttempt.user_id == user_id)
        )
        if fresh:
            query = query.execution_options(populate_existing=True)

        result = await self._session.execute(query)
        attempt = result.scalar_one_or_none()
        if not attempt:
            raise AttemptNotFoundException(str(attempt_id))
        return attempt

    async def get_attempt(self, attempt_id, user_id: uuid.UUID) -> QuizAttempt:
        return await self._get_owned_attempt(attempt_id, user_id, with_answers=True)

    async def list_attempts(
        self,
        user_id: uuid.UUID,
        quiz_id: Optional[uuid.UUID] = None,
        status: Optional[AttemptStatus] = None,
        skip: int = 0,
        limit: int = 20
    ) -> List[QuizAttempt]:
        query = (
            select(QuizAttempt)
            .options(selectinload(QuizAttempt.quiz))
            .where(QuizAttempt.user_id == user_id)
        )
        if quiz_id:
            query = query.where(QuizAttempt.quiz_id == quiz_id)
        if status:
            query = query.where(QuizAttempt.status == status)

        result = await self._session.execute(
            query.order_by(QuizAttempt.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all())

    async def get_attempt_questions(self, attempt_id, user_id: uuid.UUID) -> List[Question]:
        attempt = await self._get_owned_attempt(attempt_id, user_id)
        return await self._ordered_questions(attempt)

    async def _ordered_questions(self, attempt: QuizAttempt) -> List[Question]:
        questions = await self.catalog.active_questions(attempt.quiz_id)
        return order_by_persisted(questions, attempt.question_order)

    # Transitions

    @staticmethod
    def _require_in_progress(attempt: QuizAttempt, action: str) -> None:
        if attempt.status.is_terminal:
            raise InvalidAttemptStateException(attempt.id, attempt.status.value, action)

    @staticmethod
    def _is_overdue(attempt: QuizAttempt, quiz: Quiz, now: datetime) -> bool:
        if not quiz.time_limit_minutes:
            return False
        return elapsed_minutes(attempt.started_at, now) >= quiz.time_limit_minutes

    @asynccontextmanager
    async def _transition(self, attempt_id, user_id: uuid.UUID, action: str) -> AsyncIterator[QuizAttempt]:
        """Hold the (user, quiz) attempt lock around a change to an in-progress attempt.

        The attempt is reloaded once the lock is held, so a transition that
        committed while this one waited is seen here.
        """
        attempt = await self._get_owned_attempt(attempt_id, user_id)
        self._require_in_progress(attempt, action)

        async with self._lock.hold(attempt.quiz_id, user_id):
            attempt = await self._get_owned_attempt(attempt.id, user_id, fresh=True)
            self._require_in_progress(attempt, action)
            yield attempt

    async def _close(
        self,
        attempt: QuizAttempt,
        status: AttemptStatus,
        now: datetime,
        abandon_reason: Optional[AbandonReason] = None
    ) -> bool:
        """Move an attempt to a terminal status inside the current transaction.

        The UPDATE only matches a row that is still in progress; False means
        another transition closed the attempt first.
        """
        values = {
            "status": status,
            "completed_at": now,
            "time_taken_seconds": elapsed_seconds(attempt.started_at, now),
            "abandon_reason": abandon_reason,
        }
        result = await self._session.execute(
            update(QuizAttempt)
            .where(QuizAttempt.id == attempt.id, QuizAttempt.status == AttemptStatus.IN_PROGRESS)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False

        for key, value in values.items():
            set_committed_value(attempt, key, value)
        return True

    async def _closed_elsewhere(self, attempt_id: uuid.UUID, action: str) -> InvalidAttemptStateException:
        await self._session.rollback()
        result = await self._session.execute(
            select(QuizAttempt.status).where(QuizAttempt.id == attempt_id)
        )
        current = result.scalar_one()
        logger.warning(f"Attempt {attempt_id} was {current.value} before {action} could apply")
        return InvalidAttemptStateException(attempt_id, current.value, action)

    async def _expire(self, attempt: QuizAttempt, now: datetime, action: str) -> None:
        """Abandon an overdue attempt, commit, and raise the time-limit error"""
        attempt_id = attempt.id
        time_limit = attempt.quiz.time_limit_minutes

        if not await self._close(attempt, AttemptStatus.ABANDONED, now, AbandonReason.TIME_LIMIT):
            raise await self._closed_elsewhere(attempt_id, action)
        await self._session.commit()

        logger.warning(f"Attempt {attempt_id} exceeded its {time_limit} minute limit and was abandoned")
        raise AttemptTimeExpiredException(attempt_id, time_limit)

    def _match_answer_keys(
        self,
        answers: Mapping[Any, Any],
        questions: List[Question]
    ) -> tuple:
        by_id = {str(q.id): q for q in questions}
        matched: Dict[str, Any] = {}
        unknown: List[str] = []

        for key, raw in answers.items():
            try:
                normalized = str(uuid.UUID(str(key)))
            except ValueError:
                unknown.append(str(key))
                continue
            if normalized not in by_id:
                unknown.append(str(key))
                continue
            matched[normalized] = raw

        return matched, unknown

    async def submit_attempt(
        self,
        attempt_id,
        user_id: uuid.UUID,
        answers: Mapping[Any, Any]
    ) -> SubmissionResult:
        """Record the answers, score the attempt and complete it in one transaction"""
        async with self._transition(attempt_id, user_id, "submit") as attempt:
            now = self._clock()
            if self._is_overdue(attempt, attempt.quiz, now):
                await self._expire(attempt, now, "submit")

            questions = await self.catalog.active_questions(attempt.quiz_id)
            matched, unknown = self._match_answer_keys(answers or {}, questions)

            if unknown:
                if self._settings.UNKNOWN_ANSWER_POLICY == "reject":
                    raise UnknownAnswerKeysException(unknown)
                logger.info(f"Ignoring {len(unknown)} unknown answer keys on attempt {attempt.id}")

            if not await self._close(attempt, AttemptStatus.COMPLETED, now):
                raise await self._closed_elsewhere(attempt.id, "submit")

            by_id = {str(q.id): q for q in questions}
            try:
                rows = []
                for question_id, raw in matched.items():
                    question = by_id[question_id]
                    evaluation = evaluate_answer(question, raw)
                    rows.append(Answer(
                        id=uuid.uuid4(),
                        attempt_id=attempt.id,
                        question_id=question.id,
                        response=normalize_response(raw),
                        is_correct=evaluation.is_correct,
                        points_earned=evaluation.points_earned,
                        answered_at=now
                    ))
                self._session.add_all(rows)

                score = apply_score(attempt, questions, rows, attempt.quiz.passing_score)
                await self._session.commit()
            except Exception:
                await self._session.rollback()
                logger.error(f"Submission of attempt {attempt_id} failed, nothing was recorded")
                raise

        logger.info(
            f"Attempt {attempt.id} submitted: {score.earned}/{score.total_possible} "
            f"({score.percentage}%), passed={score.passed}"
        )

        await self._dispatcher.publish(AttemptCompletedEvent(
            attempt_id=str(attempt.id),
            quiz_id=str(attempt.quiz_id),
            user_id=str(attempt.user_id),
            attempt_number=attempt.attempt_number,
            score=score.earned,
            total_points=score.total_possible,
            percentage=score.percentage,
            passed=score.passed,
            pending_manual_grading=score.pending_manual_grading,
            completed_at=now
        ))

        return SubmissionResult(attempt=attempt, score=score, ignored_question_ids=unknown)

    async def resume_attempt(self, attempt_id, user_id: uuid.UUID) -> ResumeResult:
        async with self._transition(attempt_id, user_id, "resume") as attempt:
            now = self._clock()
            if self._is_overdue(attempt, attempt.quiz, now):
                await self._expire(attempt, now, "resume")

        remaining = None
        if attempt.quiz.time_limit_minutes:
            remaining = max(
                0,
                attempt.quiz.time_limit_minutes * 60 - elapsed_seconds(attempt.started_at, now)
            )

        questions = await self._ordered_questions(attempt)
        return ResumeResult(attempt=attempt, questions=questions, remaining_seconds=remaining)

    async def abandon_attempt(self, attempt_id, user_id: uuid.UUID) -> QuizAttempt:
        async with self._transition(attempt_id, user_id, "abandon") as attempt:
            if not await self._close(attempt, AttemptStatus.ABANDONED, self._clock(), AbandonReason.USER):
                raise await self._closed_elsewhere(attempt.id, "abandon")
            await self._session.commit()

        logger.info(f"Attempt {attempt.id} abandoned by user {user_id}")
        return attempt

    async def sweep_expired_attempts(self, now: Optional[datetime] = None) -> int:
        """Abandon every in-progress attempt that ran past its quiz time limit"""
        now = now or self._clock()
        result = await self._session.execute(
            select(QuizAttempt)
            .join(Quiz, QuizAttempt.quiz_id == Quiz.id)
            .options(selectinload(QuizAttempt.quiz))
            .where(
                QuizAttempt.status == AttemptStatus.IN_PROGRESS,
                Quiz.time_limit_minutes.isnot(None)
            )
        )

        expired = 0
        for attempt in result.scalars().all():
            if not self._is_overdue(attempt, attempt.quiz, now):
                continue
            # Attempts submitted or abandoned since the query are skipped
            if await self._close(attempt, AttemptStatus.ABANDONED, now, AbandonReason.TIME_LIMIT):
                expired += 1

        if expired:
            await self._session.commit()
            logger.warning(f"Abandoned {expired} attempts past their time limit")

        return expired


__all__ = [
    "AttemptService",
    "Eligibility",
    "SubmissionResult",
    "ResumeResult",
]
