"""Tests for the attempt lifecycle: eligibility, start, submit, resume, abandon and sweep."""

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from conftest import START, choice_question
from course_quiz.backend.database.models import (
    AbandonReason, Answer, AttemptStatus, QuestionType, QuizAttempt
)
from course_quiz.backend.exceptions import (
    AttemptNotFoundException,
    AttemptTimeExpiredException,
    ConflictException,
    InvalidAttemptStateException,
    MaxAttemptsExceededException,
    QuizNotAvailableException,
    UnknownAnswerKeysException
)
from course_quiz.backend.services.attempts import SubmissionResult, is_attempt_number_clash
from course_quiz.backend.services.catalog import QuizCatalog
from course_quiz.backend.services.locks import AttemptLock


async def answer_count(session, attempt_id) -> int:
    result = await session.execute(
        select(func.count(Answer.id)).where(Answer.attempt_id == attempt_id)
    )
    return result.scalar()


async def stored_attempt(session_factory, attempt_id) -> QuizAttempt:
    async with session_factory() as check:
        return await check.get(QuizAttempt, attempt_id)


class TestEligibility:

    async def test_active_quiz_inside_window_is_available(self, make_quiz, service, student_id):
        quiz = await make_quiz(
            available_from=START - timedelta(days=1),
            available_until=START + timedelta(days=1)
        )

        eligibility = await service.check_eligibility(quiz, student_id)

        assert eligibility.available is True
        assert eligibility.attempts_used == 0
        assert eligibility.attempts_remaining == 3

    async def test_inactive_quiz_is_unavailable(self, make_quiz, service, student_id):
        quiz = await make_quiz(is_active=False)

        eligibility = await service.check_eligibility(quiz, student_id)
        assert eligibility.available is False
        assert eligibility.code == "inactive"

        with pytest.raises(QuizNotAvailableException):
            await service.start_attempt(quiz.id, student_id)

    async def test_before_window_opens(self, make_quiz, service, student_id):
        quiz = await make_quiz(available_from=START + timedelta(minutes=1))

        eligibility = await service.check_eligibility(quiz, student_id)

        assert eligibility.available is False
        assert eligibility.code == "not_started"

    async def test_after_window_closes(self, make_quiz, service, student_id):
        quiz = await make_quiz(available_until=START - timedelta(seconds=1))

        eligibility = await service.check_eligibility(quiz, student_id)

        assert eligibility.available is False
        assert eligibility.code == "ended"

    async def test_window_bounds_are_inclusive(self, make_quiz, service, student_id):
        quiz = await make_quiz(available_from=START, available_until=START)

        assert (await service.check_eligibility(quiz, student_id)).available is True

    async def test_scenario_d_second_start_rejected_after_single_attempt(
        self, make_quiz, service, student_id, scenario_questions
    ):
        quiz = await make_quiz(scenario_questions, max_attempts=1)
        attempt = await service.start_attempt(quiz.id, student_id)
        await service.submit_attempt(attempt.id, student_id, {})

        with pytest.raises(MaxAttemptsExceededException):
            await service.start_attempt(quiz.id, student_id)

    async def test_abandoned_attempts_use_up_the_allowance(self, make_quiz, service, student_id):
        quiz = await make_quiz(max_attempts=2)

        for _ in range(2):
            attempt = await service.start_attempt(quiz.id, student_id)
            await service.abandon_attempt(attempt.id, student_id)

        eligibility = await service.check_eligibility(quiz, student_id)
        assert eligibility.available is False
        assert eligibility.attempts_remaining == 0
        with pytest.raises(MaxAttemptsExceededException):
            await service.start_attempt(quiz.id, student_id)

    async def test_attempts_are_counted_per_user(self, make_quiz, service, student_id):
        quiz = await make_quiz(max_attempts=1)
        other = await service.start_attempt(quiz.id, uuid.uuid4())
        assert other.attempt_number == 1

        assert (await service.check_eligibility(quiz, student_id)).available is True


class TestStartAttempt:

    async def test_creates_in_progress_attempt(self, make_quiz, service, student_id, clock, scenario_questions):
        quiz = await make_quiz(scenario_questions)

        attempt = await service.start_attempt(quiz.id, student_id)

        assert attempt.status == AttemptStatus.IN_PROGRESS
        assert attempt.attempt_number == 1
        assert attempt.started_at == clock.now
        assert attempt.completed_at is None
        assert attempt.question_order == [str(q.id) for q in quiz.questions]

    async def test_attempt_numbers_are_sequential(self, make_quiz, service, student_id):
        quiz = await make_quiz(max_attempts=3)

        numbers = []
        for _ in range(3):
            attempt = await service.start_attempt(quiz.id, student_id)
            numbers.append(attempt.attempt_number)
            await service.abandon_attempt(attempt.id, student_id)

        assert numbers == [1, 2, 3]

    async def test_active_attempt_blocks_a_new_one(self, make_quiz, service, student_id):
        quiz = await make_quiz(max_attempts=3)
        await service.start_attempt(quiz.id, student_id)

        with pytest.raises(ConflictException):
            await service.start_attempt(quiz.id, student_id)

    async def test_unknown_quiz(self, service, student_id):
        from course_quiz.backend.exceptions import QuizNotFoundException

        with pytest.raises(QuizNotFoundException):
            await service.start_attempt(uuid.uuid4(), student_id)

    async def test_concurrent_starts_create_one_attempt(
        self, make_quiz, session_factory, make_service, student_id
    ):
        quiz = await make_quiz(max_attempts=2)

        async def start():
            async with session_factory() as own_session:
                attempt = await make_service(own_session).start_attempt(quiz.id, student_id)
                return attempt.attempt_number

        results = await asyncio.gather(start(), start(), return_exceptions=True)

        assert sorted(r for r in results if isinstance(r, int)) == [1]
        assert sum(isinstance(r, ConflictException) for r in results) == 1

        async with session_factory() as check:
            count = await check.execute(
                select(func.count(QuizAttempt.id)).where(QuizAttempt.quiz_id == quiz.id)
            )
            assert count.scalar() == 1

    async def test_lost_number_race_is_retried(self, make_quiz, service, student_id):
        quiz = await make_quiz(max_attempts=3)
        first = await service.start_attempt(quiz.id, student_id)
        await service.abandon_attempt(first.id, student_id)

        real_count = service.count_attempts
        calls = []

        async def stale_count(quiz_id, user_id):
            calls.append(quiz_id)
            if len(calls) == 1:
                return 0
            return await real_count(quiz_id, user_id)

        service.count_attempts = stale_count

        attempt = await service.start_attempt(quiz.id, student_id)

        assert attempt.attempt_number == 2
        assert len(calls) == 2

    async def test_other_integrity_errors_are_not_retried(
        self, make_quiz, service, session, student_id, monkeypatch
    ):
        quiz = await make_quiz()
        commits = []

        async def failing_commit():
            commits.append(1)
            raise IntegrityError(
                "INSERT INTO quiz_attempts", {},
                Exception("NOT NULL constraint failed: quiz_attempts.user_id")
            )

        monkeypatch.setattr(session, "commit", failing_commit)

        with pytest.raises(IntegrityError):
            await service.start_attempt(quiz.id, student_id)

        assert len(commits) == 1

    @pytest.mark.parametrize("message, clash", [
        ("UNIQUE constraint failed: quiz_attempts.quiz_id, quiz_attempts.user_id, "
         "quiz_attempts.attempt_number", True),
        ('duplicate key value violates unique constraint "_quiz_user_attempt_uc"', True),
        ("UNIQUE constraint failed: answers.attempt_id, answers.question_id", False),
        ("NOT NULL constraint failed: quiz_attempts.user_id", False),
    ])
    def test_attempt_number_clash_detection(self, message, clash):
        error = IntegrityError("INSERT INTO quiz_attempts", {}, Exception(message))

        assert is_attempt_number_clash(error) is clash


class TestSubmitAttempt:

    @pytest.mark.parametrize("answers, earned, percentage, passed", [
        ({"Q1": ["a"], "Q2": ["c"]}, 5.0, 50.0, False),
        ({"Q1": ["a"], "Q2": ["b"]}, 10.0, 100.0, True),
        ({"Q1": ["a"]}, 5.0, 50.0, False),
    ])
    async def test_scoring_scenarios(
        self, make_quiz, service, session, student_id, clock, scenario_questions,
        answers, earned, percentage, passed
    ):
        quiz = await make_quiz(scenario_questions, passing_score=70)
        by_content = {q.content: str(q.id) for q in quiz.questions}
        attempt = await service.start_attempt(quiz.id, student_id)
        clock.advance(minutes=4, seconds=30)

        result = await service.submit_attempt(
            attempt.id, student_id, {by_content[k]: v for k, v in answers.items()}
        )

        assert result.attempt.status == AttemptStatus.COMPLETED
        assert result.attempt.completed_at == clock.now
        assert result.attempt.time_taken_seconds == 270
        assert result.attempt.score == earned
        assert result.attempt.total_points == 10.0
        assert result.attempt.percentage == percentage
        assert result.attempt.passed is passed
        assert await answer_count(session, attempt.id) == len(answers)

    async def test_scalar_and_missing_responses_are_normalised(
        self, make_quiz, service, session, student_id, scenario_questions
    ):
        quiz = await make_quiz(scenario_questions)
        q1, q2 = quiz.questions
        attempt = await service.start_attempt(quiz.id, student_id)

        await service.submit_attempt(attempt.id, student_id, {str(q1.id): "a", str(q2.id): None})

        rows = (await session.execute(
            select(Answer).where(Answer.attempt_id == attempt.id)
        )).scalars().all()
        responses = {row.question_id: row.response for row in rows}
        assert responses[q1.id] == ["a"]
        assert responses[q2.id] == []

    async def test_completion_event_is_published(
        self, make_quiz, service, student_id, events, scenario_questions
    ):
        quiz = await make_quiz(scenario_questions)
        attempt = await service.start_attempt(quiz.id, student_id)

        await service.submit_attempt(attempt.id, student_id, {str(quiz.questions[0].id): "a"})

        assert len(events) == 1
        event = events[0]
        assert event.attempt_id == str(attempt.id)
        assert event.user_id == str(student_id)
        assert event.quiz_id == str(quiz.id)
        assert event.percentage == 50.0
        assert event.passed is False

    async def test_failing_event_handler_does_not_undo_submission(
        self, make_quiz, service, dispatcher, student_id, session
    ):
        quiz = await make_quiz([choice_question("Q1", ["a"])])

        async def broken(event):
            raise RuntimeError("downstream unavailable")

        dispatcher.subscribe(broken)
        attempt = await service.start_attempt(quiz.id, student_id)

        result = await service.submit_attempt(attempt.id, student_id, {str(quiz.questions[0].id): "a"})

        assert result.attempt.status == AttemptStatus.COMPLETED

    async def test_unknown_keys_are_ignored_by_default(
        self, make_quiz, service, session, student_id, scenario_questions
    ):
        quiz = await make_quiz(scenario_questions)
        attempt = await service.start_attempt(quiz.id, student_id)
        stray = str(uuid.uuid4())

        result = await service.submit_attempt(
            attempt.id, student_id, {str(quiz.questions[0].id): "a", stray: "a", "junk": "b"}
        )

        assert sorted(result.ignored_question_ids) == sorted([stray, "junk"])
        assert await answer_count(session, attempt.id) == 1

    async def test_unknown_keys_rejected_without_mutation(
        self, make_quiz, make_service, session, student_id, scenario_questions
    ):
        from course_quiz.config import TestingSettings

        strict = make_service(session, settings=TestingSettings(UNKNOWN_ANSWER_POLICY="reject"))
        quiz = await make_quiz(scenario_questions)
        attempt = await strict.start_attempt(quiz.id, student_id)

        with pytest.raises(UnknownAnswerKeysException):
            await strict.submit_attempt(
                attempt.id, student_id, {str(quiz.questions[0].id): "a", str(uuid.uuid4()): "a"}
            )

        reloaded = await strict.get_attempt(attempt.id, student_id)
        assert reloaded.status == AttemptStatus.IN_PROGRESS
        assert await answer_count(session, attempt.id) == 0

    async def test_inactive_question_keys_are_unknown(
        self, make_quiz, service, session, student_id, scenario_questions
    ):
        quiz = await make_quiz(scenario_questions)
        q1, q2 = quiz.questions
        attempt = await service.start_attempt(quiz.id, student_id)
        await QuizCatalog(session).deactivate_question(quiz.id, q2.id)

        result = await service.submit_attempt(attempt.id, student_id, {str(q1.id): "a", str(q2.id): "b"})

        assert result.ignored_question_ids == [str(q2.id)]
        assert result.attempt.total_points == 5.0
        assert result.attempt.percentage == 100.0

    async def test_failed_scoring_rolls_back_everything(
        self, make_quiz, service, session, student_id, scenario_questions, monkeypatch
    ):
        import course_quiz.backend.services.attempts as attempts_module

        quiz = await make_quiz(scenario_questions)
        attempt = await service.start_attempt(quiz.id, student_id)
        attempt_id = attempt.id
        answers = {str(quiz.questions[0].id): "a"}

        def explode(*args, **kwargs):
            raise RuntimeError("scoring failed")

        monkeypatch.setattr(attempts_module, "apply_score", explode)

        with pytest.raises(RuntimeError):
            await service.submit_attempt(attempt_id, student_id, answers)

        monkeypatch.undo()
        reloaded = await service.get_attempt(attempt_id, student_id)
        assert reloaded.status == AttemptStatus.IN_PROGRESS
        assert reloaded.completed_at is None
        assert await answer_count(session, attempt_id) == 0

        retried = await service.submit_attempt(attempt_id, student_id, answers)
        assert retried.attempt.status == AttemptStatus.COMPLETED

    async def test_completed_attempt_cannot_be_resubmitted(
        self, make_quiz, service, student_id, scenario_questions
    ):
        quiz = await make_quiz(scenario_questions)
        attempt = await service.start_attempt(quiz.id, student_id)
        await service.submit_attempt(attempt.id, student_id, {})

        with pytest.raises(InvalidAttemptStateException):
            await service.submit_attempt(attempt.id, student_id, {})

    async def test_other_users_attempt_is_not_found(self, make_quiz, service, student_id):
        quiz = await make_quiz()
        attempt = await service.start_attempt(quiz.id, student_id)

        with pytest.raises(AttemptNotFoundException):
            await service.submit_attempt(attempt.id, uuid.uuid4(), {})

    async def test_submit_after_time_limit_abandons(
        self, make_quiz, service, student_id, clock, events, scenario_questions
    ):
        quiz = await make_quiz(scenario_questions, time_limit_minutes=10)
        attempt = await service.start_attempt(quiz.id, student_id)
        clock.advance(minutes=10)

        with pytest.raises(AttemptTimeExpiredException):
            await service.submit_attempt(attempt.id, student_id, {str(quiz.questions[0].id): "a"})

        reloaded = await service.get_attempt(attempt.id, student_id)
        assert reloaded.status == AttemptStatus.ABANDONED
        assert reloaded.abandon_reason == AbandonReason.TIME_LIMIT
        assert reloaded.score is None
        assert reloaded.answers == []
        assert events == []

    async def test_submit_just_inside_time_limit(self, make_quiz, service, student_id, clock):
        quiz = await make_quiz([choice_question("Q1", ["a"])], time_limit_minutes=10)
        attempt = await service.start_attempt(quiz.id, student_id)
        clock.advance(minutes=9, seconds=59)

        result = await service.submit_attempt(attempt.id, student_id, {str(quiz.questions[0].id): "a"})

        assert result.attempt.status == AttemptStatus.COMPLETED


class TestResumeAndAbandon:

    async def test_scenario_e_resume_after_time_limit_abandons(
        self, make_quiz, service, student_id, clock, scenario_questions
    ):
        quiz = await make_quiz(scenario_questions, time_limit_minutes=10)
        attempt = await service.start_attempt(quiz.id, student_id)
        clock.advance(minutes=15)

        with pytest.raises(AttemptTimeExpiredException):
            await service.resume_attempt(attempt.id, student_id)

        reloaded = await service.get_attempt(attempt.id, student_id)
        assert reloaded.status == AttemptStatus.ABANDONED
        assert reloaded.abandon_reason == AbandonReason.TIME_LIMIT
        assert reloaded.completed_at == clock.now
        assert reloaded.time_taken_seconds == 15 * 60

        with pytest.raises(InvalidAttemptStateException):
            await service.submit_attempt(attempt.id, student_id, {})

    async def test_resume_reports_remaining_time(self, make_quiz, service, student_id, clock):
        quiz = await make_quiz([choice_question("Q1", ["a"])], time_limit_minutes=10)
        attempt = await service.start_attempt(quiz.id, student_id)
        clock.advance(minutes=3, seconds=20)

        result = await service.resume_attempt(attempt.id, student_id)

        assert result.remaining_seconds == 400
        assert [q.id for q in result.questions] == [quiz.questions[0].id]

    async def test_resume_untimed_attempt(self, make_quiz, service, student_id, clock):
        quiz = await make_quiz([choice_question("Q1", ["a"])])
        attempt = await service.start_attempt(quiz.id, student_id)
        clock.advance(days=2)

        result = await service.resume_attempt(attempt.id, student_id)

        assert result.remaining_seconds is None
        assert result.attempt.status == AttemptStatus.IN_PROGRESS

    async def test_resumed_order_matches_start_order(self, make_quiz, service, session, student_id):
        quiz = await make_quiz(
            [choice_question(f"Q{i}", ["a"]) for i in range(6)],
            shuffle_questions=True
        )
        attempt = await service.start_attempt(quiz.id, student_id)
        started_order = list(attempt.question_order)

        first = await service.get_attempt_questions(attempt.id, student_id)
        resumed = await service.resume_attempt(attempt.id, student_id)

        assert [str(q.id) for q in first] == started_order
        assert [str(q.id) for q in resumed.questions] == started_order

    async def test_questions_added_later_are_appended(self, make_quiz, service, session, student_id):
        quiz = await make_quiz([choice_question("Q1", ["a"]), choice_question("Q2", ["b"])])
        attempt = await service.start_attempt(quiz.id, student_id)
        catalog = QuizCatalog(session)
        await catalog.add_questions(quiz.id, [choice_question("Q0", ["c"], order_index=0)])
        await catalog.deactivate_question(quiz.id, quiz.questions[1].id)

        questions = await service.get_attempt_questions(attempt.id, student_id)

        assert [q.content for q in questions] == ["Q1", "Q0"]

    async def test_abandon_skips_scoring(self, make_quiz, service, student_id, clock, events):
        quiz = await make_quiz([choice_question("Q1", ["a"])])
        attempt = await service.start_attempt(quiz.id, student_id)
        clock.advance(seconds=42)

        abandoned = await service.abandon_attempt(attempt.id, student_id)

        assert abandoned.status == AttemptStatus.ABANDONED
        assert abandoned.abandon_reason == AbandonReason.USER
        assert abandoned.time_taken_seconds == 42
        assert abandoned.score is None
        assert abandoned.percentage is None
        assert events == []

    @pytest.mark.parametrize("action", ["abandon_attempt", "resume_attempt"])
    async def test_terminal_attempts_reject_transitions(self, make_quiz, service, student_id, action):
        quiz = await make_quiz([choice_question("Q1", ["a"])])
        attempt = await service.start_attempt(quiz.id, student_id)
        await service.abandon_attempt(attempt.id, student_id)

        with pytest.raises(InvalidAttemptStateException):
            await getattr(service, action)(attempt.id, student_id)


class TestConcurrentTransitions:

    @pytest.fixture
    def in_own_session(self, session_factory, make_service):
        """Run one AttemptService call on a session of its own"""
        async def runner(action, *args, **service_options):
            async with session_factory() as own_session:
                own_service = make_service(own_session, **service_options)
                return await getattr(own_service, action)(*args)

        return runner

    async def test_abandon_racing_submit_keeps_a_single_outcome(
        self, make_quiz, service, session_factory, in_own_session, student_id, events,
        scenario_questions
    ):
        quiz = await make_quiz(scenario_questions)
        attempt = await service.start_attempt(quiz.id, student_id)
        answers = {str(q.id): value for q, value in zip(quiz.questions, ["a", "b"])}

        results = await asyncio.gather(
            in_own_session("abandon_attempt", attempt.id, student_id),
            in_own_session("submit_attempt", attempt.id, student_id, answers),
            return_exceptions=True
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidAttemptStateException)

        stored = await stored_attempt(session_factory, attempt.id)
        async with session_factory() as check:
            answered = await answer_count(check, attempt.id)
        if stored.status == AttemptStatus.COMPLETED:
            assert stored.abandon_reason is None
            assert stored.percentage == 100.0
            assert answered == 2
            assert len(events) == 1
        else:
            assert stored.abandon_reason == AbandonReason.USER
            assert stored.percentage is None
            assert answered == 0
            assert events == []

    async def test_double_submit_completes_once(
        self, make_quiz, service, in_own_session, student_id, events, scenario_questions
    ):
        quiz = await make_quiz(scenario_questions)
        attempt = await service.start_attempt(quiz.id, student_id)

        results = await asyncio.gather(
            in_own_session("submit_attempt", attempt.id, student_id, {}),
            in_own_session("submit_attempt", attempt.id, student_id, {}),
            return_exceptions=True
        )

        assert sum(isinstance(r, SubmissionResult) for r in results) == 1
        assert sum(isinstance(r, InvalidAttemptStateException) for r in results) == 1
        assert len(events) == 1

    async def test_status_guard_holds_without_a_shared_lock(
        self, make_quiz, service, session_factory, in_own_session, student_id, events,
        scenario_questions
    ):
        quiz = await make_quiz(scenario_questions)
        attempt = await service.start_attempt(quiz.id, student_id)

        results = await asyncio.gather(
            in_own_session("submit_attempt", attempt.id, student_id, {}, lock=AttemptLock(timeout=5)),
            in_own_session("abandon_attempt", attempt.id, student_id, lock=AttemptLock(timeout=5)),
            in_own_session("submit_attempt", attempt.id, student_id, {}, lock=AttemptLock(timeout=5)),
            return_exceptions=True
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 2
        assert all(isinstance(f, InvalidAttemptStateException) for f in failures)

        stored = await stored_attempt(session_factory, attempt.id)
        if stored.status == AttemptStatus.COMPLETED:
            assert stored.abandon_reason is None
            assert len(events) == 1
        else:
            assert stored.abandon_reason == AbandonReason.USER
            assert events == []


class TestSweepAndHistory:

    async def test_sweep_abandons_only_overdue_timed_attempts(
        self, make_quiz, make_service, session, clock
    ):
        service = make_service(session)
        timed = await make_quiz([choice_question("Q1", ["a"])], time_limit_minutes=5)
        untimed = await make_quiz([choice_question("Q1", ["a"])])
        overdue = await service.start_attempt(timed.id, uuid.uuid4())
        open_ended = await service.start_attempt(untimed.id, uuid.uuid4())
        clock.advance(minutes=4)
        fresh = await service.start_attempt(timed.id, uuid.uuid4())
        clock.advance(minutes=2)

        assert await service.sweep_expired_attempts() == 1

        statuses = {
            a.id: a.status
            for a in (await session.execute(select(QuizAttempt))).scalars().all()
        }
        assert statuses[overdue.id] == AttemptStatus.ABANDONED
        assert statuses[fresh.id] == AttemptStatus.IN_PROGRESS
        assert statuses[open_ended.id] == AttemptStatus.IN_PROGRESS
        assert await service.sweep_expired_attempts() == 0

    async def test_history_lists_own_attempts(self, make_quiz, service, student_id):
        quiz = await make_quiz([choice_question("Q1", ["a"])])
        first = await service.start_attempt(quiz.id, student_id)
        await service.submit_attempt(first.id, student_id, {})
        await service.start_attempt(quiz.id, uuid.uuid4())

        history = await service.list_attempts(student_id)
        completed = await service.list_attempts(student_id, status=AttemptStatus.COMPLETED)
        abandoned = await service.list_attempts(student_id, status=AttemptStatus.ABANDONED)

        assert [a.id for a in history] == [first.id]
        assert [a.id for a in completed] == [first.id]
        assert abandoned == []

    async def test_get_attempt_loads_answers(self, make_quiz, service, student_id):
        quiz = await make_quiz([choice_question("Q1", ["a"]), choice_question(
            "Essay", [], question_type=QuestionType.ESSAY
        )])
        attempt = await service.start_attempt(quiz.id, student_id)
        q1, essay = quiz.questions
        await service.submit_attempt(attempt.id, student_id, {str(q1.id): "a", str(essay.id): "words"})

        loaded = await service.get_attempt(attempt.id, student_id)

        statuses = {a.question_id: a.grading_status for a in loaded.answers}
        assert statuses == {q1.id: "correct", essay.id: "pending"}
        assert loaded.percentage == 50.0
