"""
Course Quiz Attempt Service
Attempt lifecycle, learner progress and manual grading API routes
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.connection import get_db
from ..database.models import (
    AbandonReason, AttemptStatus, Question, QuestionType, QuizAttempt
)
from ..dependencies import (
    RequestContext,
    get_attempt_service,
    get_quiz_catalog,
    get_reporting_service,
    get_scoring_service,
    require_admin,
    require_any_role,
    require_enrollment,
    require_instructor_or_admin,
    require_quiz_owner
)
from ..services.attempts import AttemptService
from ..services.catalog import QuizCatalog
from ..services.reporting import ReportingService
from ..services.scoring import ScoreResult, ScoringService

# Configure logging
logger = logging.getLogger(__name__)

# Router instance
router = APIRouter()


# Pydantic models
class EligibilityResponse(BaseModel):
    quiz_id: uuid.UUID
    available: bool
    reason: Optional[str]
    attempts_used: int
    attempts_remaining: int
    max_attempts: int
    time_limit_minutes: Optional[int]


class AttemptResponse(BaseModel):
    id: uuid.UUID
    quiz_id: uuid.UUID
    user_id: uuid.UUID
    attempt_number: int
    status: AttemptStatus
    started_at: datetime
    completed_at: Optional[datetime]
    time_taken_seconds: Optional[int]
    score: Optional[float]
    total_points: Optional[float]
    percentage: Optional[float]
    passed: Optional[bool]
    abandon_reason: Optional[AbandonReason]
    grade_letter: str
    formatted_time_taken: str

    model_config = ConfigDict(from_attributes=True)


class AttemptQuestionResponse(BaseModel):
    """Question as shown to a learner, without the answer key"""
    id: uuid.UUID
    question_type: QuestionType
    content: str
    options: List[Any]
    points: float

    model_config = ConfigDict(from_attributes=True)


class AnswerResponse(BaseModel):
    question_id: uuid.UUID
    response: List[Any]
    is_correct: Optional[bool]
    points_earned: float
    feedback: Optional[str]
    grading_status: str
    graded_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class ScoreResponse(BaseModel):
    earned: float
    total_possible: float
    percentage: float
    passed: bool
    pending_manual_grading: int
    correct_count: int
    answered_count: int


class AttemptStartResponse(BaseModel):
    attempt: AttemptResponse
    questions: List[AttemptQuestionResponse]
    time_limit_minutes: Optional[int]


class AttemptSubmitRequest(BaseModel):
    answers: Dict[str, Any] = {}  # {"<question_id>": value or [values]}


class AttemptSubmitResponse(BaseModel):
    attempt: AttemptResponse
    score: Optional[ScoreResponse]
    ignored_question_ids: List[str]


class AttemptResumeResponse(BaseModel):
    attempt: AttemptResponse
    questions: List[AttemptQuestionResponse]
    remaining_seconds: Optional[int]


class AttemptDetailResponse(BaseModel):
    attempt: AttemptResponse
    answers: List[AnswerResponse]
    show_correct_answers: bool
    correct_answers: Optional[Dict[str, List[Any]]] = None


class GradeRequest(BaseModel):
    points: float = Field(..., ge=0)
    feedback: Optional[str] = None


# Helper functions
def _score_response(score: ScoreResult) -> ScoreResponse:
    return ScoreResponse(
        earned=score.earned,
        total_possible=score.total_possible,
        percentage=score.percentage,
        passed=score.passed,
        pending_manual_grading=score.pending_manual_grading,
        correct_count=score.correct_count,
        answered_count=score.answered_count
    )


def _question_views(questions: List[Question]) -> List[AttemptQuestionResponse]:
    return [AttemptQuestionResponse.model_validate(q) for q in questions]


# Learner routes
@router.get("/quizzes/{quiz_id}/eligibility", response_model=EligibilityResponse)
async def get_eligibility(
    quiz_id: str = Path(..., description="Quiz ID"),
    context: RequestContext = Depends(require_any_role),
    service: AttemptService = Depends(get_attempt_service),
    db: AsyncSession = Depends(get_db)
):
    """Whether the caller may start a new attempt right now"""

    quiz = await service.catalog.get_quiz(quiz_id)
    await require_enrollment(quiz, context, db)
    eligibility = await service.check_eligibility(quiz, context.user_id)

    return EligibilityResponse(
        quiz_id=quiz.id,
        available=eligibility.available,
        reason=eligibility.reason,
        attempts_used=eligibility.attempts_used,
        attempts_remaining=eligibility.attempts_remaining,
        max_attempts=quiz.max_attempts,
        time_limit_minutes=quiz.time_limit_minutes
    )


@router.post(
    "/quizzes/{quiz_id}/attempts",
    response_model=AttemptStartResponse,
    status_code=status.HTTP_201_CREATED
)
async def start_attempt(
    quiz_id: str = Path(..., description="Quiz ID"),
    context: RequestContext = Depends(require_any_role),
    service: AttemptService = Depends(get_attempt_service),
    db: AsyncSession = Depends(get_db)
):
    """Start a new quiz attempt"""

    quiz = await service.catalog.get_quiz(quiz_id)
    await require_enrollment(quiz, context, db)

    attempt = await service.start_attempt(quiz.id, context.user_id)
    questions = await service.get_attempt_questions(attempt.id, context.user_id)

    return AttemptStartResponse(
        attempt=AttemptResponse.model_validate(attempt),
        questions=_question_views(questions),
        time_limit_minutes=quiz.time_limit_minutes
    )


@router.get("/attempts", response_model=List[AttemptResponse])
async def list_attempts(
    quiz_id: Optional[uuid.UUID] = Query(None, description="Filter by quiz"),
    attempt_status: Optional[AttemptStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    context: RequestContext = Depends(require_any_role),
    service: AttemptService = Depends(get_attempt_service)
):
    """Attempt history of the caller"""

    return await service.list_attempts(
        context.user_id,
        quiz_id=quiz_id,
        status=attempt_status,
        skip=skip,
        limit=limit
    )


@router.post("/attempts/sweep-expired")
async def sweep_expired_attempts(
    context: RequestContext = Depends(require_admin),
    service: AttemptService = Depends(get_attempt_service)
) -> Dict[str, int]:
    """Abandon in-progress attempts that ran past their time limit"""

    abandoned = await service.sweep_expired_attempts()
    logger.info(f"Expired attempt sweep requested by {context.user_id}: {abandoned} abandoned")
    return {"abandoned": abandoned}


@router.get("/attempts/{attempt_id}", response_model=AttemptDetailResponse)
async def get_attempt(
    attempt_id: str = Path(..., description="Attempt ID"),
    context: RequestContext = Depends(require_any_role),
    service: AttemptService = Depends(get_attempt_service)
):
    """Attempt result with the recorded answers"""

    attempt: QuizAttempt = await service.get_attempt(attempt_id, context.user_id)
    quiz = attempt.quiz
    reveal = attempt.status == AttemptStatus.COMPLETED and quiz.show_correct_answers

    correct_answers = None
    if reveal:
        questions = await service.catalog.active_questions(quiz.id)
        correct_answers = {str(q.id): q.correct_answers for q in questions}

    return AttemptDetailResponse(
        attempt=AttemptResponse.model_validate(attempt),
        answers=[AnswerResponse.model_validate(a) for a in attempt.answers],
        show_correct_answers=reveal,
        correct_answers=correct_answers
    )


@router.get("/attempts/{attempt_id}/questions", response_model=List[AttemptQuestionResponse])
async def get_attempt_questions(
    attempt_id: str = Path(..., description="Attempt ID"),
    context: RequestContext = Depends(require_any_role),
    service: AttemptService = Depends(get_attempt_service)
):
    """Questions of an attempt in the order fixed when it started"""

    questions = await service.get_attempt_questions(attempt_id, context.user_id)
    return _question_views(questions)


@router.post("/attempts/{attempt_id}/submit", response_model=AttemptSubmitResponse)
async def submit_attempt(
    request: AttemptSubmitRequest,
    attempt_id: str = Path(..., description="Attempt ID"),
    context: RequestContext = Depends(require_any_role),
    service: AttemptService = Depends(get_attempt_service)
):
    """Submit answers and complete the attempt"""

    result = await service.submit_attempt(attempt_id, context.user_id, request.answers)
    show_results = result.attempt.quiz.show_results_immediately

    return AttemptSubmitResponse(
        attempt=AttemptResponse.model_validate(result.attempt),
        score=_score_response(result.score) if show_results else None,
        ignored_question_ids=result.ignored_question_ids
    )


@router.post("/attempts/{attempt_id}/resume", response_model=AttemptResumeResponse)
async def resume_attempt(
    attempt_id: str = Path(..., description="Attempt ID"),
    context: RequestContext = Depends(require_any_role),
    service: AttemptService = Depends(get_attempt_service)
):
    """Continue an in-progress attempt"""

    result = await service.resume_attempt(attempt_id, context.user_id)

    return AttemptResumeResponse(
        attempt=AttemptResponse.model_validate(result.attempt),
        questions=_question_views(result.questions),
        remaining_seconds=result.remaining_seconds
    )


@router.post("/attempts/{attempt_id}/abandon", response_model=AttemptResponse)
async def abandon_attempt(
    attempt_id: str = Path(..., description="Attempt ID"),
    context: RequestContext = Depends(require_any_role),
    service: AttemptService = Depends(get_attempt_service)
):
    """Give up an in-progress attempt; it is not scored"""

    return await service.abandon_attempt(attempt_id, context.user_id)


@router.get("/me/quiz-statistics")
async def get_my_quiz_statistics(
    context: RequestContext = Depends(require_any_role),
    reporting: ReportingService = Depends(get_reporting_service)
) -> Dict[str, Any]:
    """Quiz progress of the caller across all courses"""

    return await reporting.user_progress(context.user_id)


@router.get("/courses/{course_id}/quiz-progress")
async def get_course_quiz_progress(
    course_id: uuid.UUID = Path(..., description="Course ID"),
    context: RequestContext = Depends(require_any_role),
    service: AttemptService = Depends(get_attempt_service),
    reporting: ReportingService = Depends(get_reporting_service)
) -> Dict[str, Any]:
    """Best attempt and availability for each quiz of a course"""

    quizzes = await reporting.course_progress(course_id, context.user_id, service)
    return {"course_id": str(course_id), "quizzes": quizzes}


# Grading routes
@router.post("/attempts/{attempt_id}/answers/{question_id}/grade", response_model=ScoreResponse)
async def grade_answer(
    request: GradeRequest,
    attempt_id: str = Path(..., description="Attempt ID"),
    question_id: str = Path(..., description="Question ID"),
    context: RequestContext = Depends(require_instructor_or_admin),
    scoring: ScoringService = Depends(get_scoring_service),
    catalog: QuizCatalog = Depends(get_quiz_catalog)
):
    """Record a manual grade for an essay answer; the attempt is rescored"""

    attempt = await scoring.get_attempt(attempt_id)
    require_quiz_owner(await catalog.get_quiz(attempt.quiz_id), context)

    score = await scoring.grade_answer(
        attempt.id,
        question_id,
        request.points,
        feedback=request.feedback,
        grader_id=context.user_id
    )
    return _score_response(score)


@router.post("/attempts/{attempt_id}/rescore", response_model=ScoreResponse)
async def rescore_attempt(
    attempt_id: str = Path(..., description="Attempt ID"),
    context: RequestContext = Depends(require_instructor_or_admin),
    scoring: ScoringService = Depends(get_scoring_service),
    catalog: QuizCatalog = Depends(get_quiz_catalog)
):
    """Recompute a completed attempt's score from its stored answers"""

    attempt = await scoring.get_attempt(attempt_id)
    require_quiz_owner(await catalog.get_quiz(attempt.quiz_id), context)

    return _score_response(await scoring.rescore_attempt(attempt.id))
