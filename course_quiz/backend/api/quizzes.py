"""
Course Quiz Attempt Service
Quiz catalog and authoring API routes
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.connection import get_db
from ..database.models import QuestionType, QuizType
from ..dependencies import (
    RequestContext,
    get_quiz_catalog,
    get_reporting_service,
    require_any_role,
    require_enrollment,
    require_instructor_or_admin,
    require_quiz_owner
)
from ..services.catalog import QuizCatalog
from ..services.reporting import ReportingService, results_to_csv
from ..utils.helpers import to_naive_utc

# Configure logging
logger = logging.getLogger(__name__)

# Router instance
router = APIRouter()


# Pydantic models
class QuizResponse(BaseModel):
    id: uuid.UUID
    course_id: uuid.UUID
    created_by_id: Optional[uuid.UUID]
    title: str
    description: Optional[str]
    quiz_type: QuizType
    time_limit_minutes: Optional[int]
    passing_score: float
    max_attempts: int
    shuffle_questions: bool
    show_correct_answers: bool
    show_results_immediately: bool
    is_active: bool
    available_from: Optional[datetime]
    available_until: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class QuestionResponse(BaseModel):
    id: uuid.UUID
    order_index: int
    question_type: QuestionType
    content: str
    explanation: Optional[str]
    options: List[Any]
    correct_answers: List[Any]
    points: float
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class QuestionCreateRequest(BaseModel):
    question_type: QuestionType
    content: str
    explanation: Optional[str] = None
    options: List[Any] = []
    correct_answers: List[Any] = []
    points: float = 1.0
    order_index: Optional[int] = None

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Question content is required')
        return v.strip()

    @field_validator('points')
    @classmethod
    def validate_points(cls, v):
        if v <= 0:
            raise ValueError('Points must be greater than 0')
        return v


class QuestionUpdateRequest(BaseModel):
    question_type: Optional[QuestionType] = None
    content: Optional[str] = None
    explanation: Optional[str] = None
    options: Optional[List[Any]] = None
    correct_answers: Optional[List[Any]] = None
    points: Optional[float] = Field(None, gt=0)
    order_index: Optional[int] = None
    is_active: Optional[bool] = None


class QuizCreateRequest(BaseModel):
    course_id: uuid.UUID
    title: str
    description: Optional[str] = None
    quiz_type: QuizType = QuizType.QUIZ
    time_limit_minutes: Optional[int] = Field(None, ge=1)
    max_attempts: Optional[int] = None
    passing_score: Optional[float] = None
    shuffle_questions: bool = False
    show_results_immediately: bool = True
    show_correct_answers: bool = True
    is_active: bool = True
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None
    questions: List[QuestionCreateRequest] = []

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Title is required')
        return v.strip()

    @field_validator('passing_score')
    @classmethod
    def validate_passing_score(cls, v):
        if v is not None and (v < 0 or v > 100):
            raise ValueError('Passing score must be between 0 and 100')
        return v

    @field_validator('max_attempts')
    @classmethod
    def validate_max_attempts(cls, v):
        if v is not None and v < 1:
            raise ValueError('Max attempts must be at least 1')
        return v

    @field_validator('available_from', 'available_until')
    @classmethod
    def validate_window(cls, v):
        return to_naive_utc(v)


class QuizUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    quiz_type: Optional[QuizType] = None
    time_limit_minutes: Optional[int] = Field(None, ge=1)
    max_attempts: Optional[int] = Field(None, ge=1)
    passing_score: Optional[float] = Field(None, ge=0, le=100)
    shuffle_questions: Optional[bool] = None
    show_results_immediately: Optional[bool] = None
    show_correct_answers: Optional[bool] = None
    is_active: Optional[bool] = None
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None

    @field_validator('available_from', 'available_until')
    @classmethod
    def validate_window(cls, v):
        return to_naive_utc(v)


class QuestionOrderItem(BaseModel):
    question_id: uuid.UUID
    order_index: int


class QuestionOrderRequest(BaseModel):
    questions: List[QuestionOrderItem]


# Routes
@router.post("/", response_model=QuizResponse, status_code=status.HTTP_201_CREATED)
async def create_quiz(
    request: QuizCreateRequest,
    context: RequestContext = Depends(require_instructor_or_admin),
    catalog: QuizCatalog = Depends(get_quiz_catalog)
):
    """Create a quiz, optionally with its questions"""

    data = request.model_dump(exclude={"course_id", "questions"})
    quiz = await catalog.create_quiz(
        request.course_id,
        data,
        created_by_id=context.user_id,
        questions=[q.model_dump() for q in request.questions]
    )
    return quiz


@router.get("/", response_model=List[QuizResponse])
async def list_quizzes(
    course_id: Optional[uuid.UUID] = Query(None, description="Filter by course"),
    mine: bool = Query(False, description="Only quizzes created by the caller"),
    active_only: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    context: RequestContext = Depends(require_instructor_or_admin),
    catalog: QuizCatalog = Depends(get_quiz_catalog)
):
    """List quizzes (instructors/admins only)"""

    return await catalog.list_quizzes(
        course_id=course_id,
        created_by_id=context.user_id if mine else None,
        active_only=active_only,
        skip=skip,
        limit=limit
    )


@router.get("/{quiz_id}", response_model=QuizResponse)
async def get_quiz(
    quiz_id: str = Path(..., description="Quiz ID"),
    context: RequestContext = Depends(require_any_role),
    catalog: QuizCatalog = Depends(get_quiz_catalog),
    db: AsyncSession = Depends(get_db)
):
    """Get quiz details"""

    quiz = await catalog.get_quiz(quiz_id)
    await require_enrollment(quiz, context, db)
    return quiz


@router.patch("/{quiz_id}", response_model=QuizResponse)
async def update_quiz(
    request: QuizUpdateRequest,
    quiz_id: str = Path(..., description="Quiz ID"),
    context: RequestContext = Depends(require_instructor_or_admin),
    catalog: QuizCatalog = Depends(get_quiz_catalog)
):
    """Update quiz settings"""

    quiz = await catalog.get_quiz(quiz_id)
    require_quiz_owner(quiz, context)
    return await catalog.update_quiz(quiz.id, request.model_dump(exclude_unset=True))


@router.delete("/{quiz_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_quiz(
    quiz_id: str = Path(..., description="Quiz ID"),
    context: RequestContext = Depends(require_instructor_or_admin),
    catalog: QuizCatalog = Depends(get_quiz_catalog)
):
    """Delete a quiz that has never been attempted"""

    quiz = await catalog.get_quiz(quiz_id)
    require_quiz_owner(quiz, context)
    await catalog.delete_quiz(quiz.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{quiz_id}/deactivate", response_model=QuizResponse)
async def deactivate_quiz(
    quiz_id: str = Path(..., description="Quiz ID"),
    context: RequestContext = Depends(require_instructor_or_admin),
    catalog: QuizCatalog = Depends(get_quiz_catalog)
):
    """Withdraw a quiz from learners while keeping its attempts"""

    quiz = await catalog.get_quiz(quiz_id)
    require_quiz_owner(quiz, context)
    return await catalog.deactivate_quiz(quiz.id)


@router.post(
    "/{quiz_id}/questions",
    response_model=List[QuestionResponse],
    status_code=status.HTTP_201_CREATED
)
async def add_questions(
    request: List[QuestionCreateRequest],
    quiz_id: str = Path(..., description="Quiz ID"),
    context: RequestContext = Depends(require_instructor_or_admin),
    catalog: QuizCatalog = Depends(get_quiz_catalog)
):
    """Add questions in bulk"""

    quiz = await catalog.get_quiz(quiz_id)
    require_quiz_owner(quiz, context)
    return await catalog.add_questions(quiz.id, [q.model_dump() for q in request])


@router.get("/{quiz_id}/questions", response_model=List[QuestionResponse])
async def list_questions(
    quiz_id: str = Path(..., description="Quiz ID"),
    include_inactive: bool = Query(False),
    context: RequestContext = Depends(require_instructor_or_admin),
    catalog: QuizCatalog = Depends(get_quiz_catalog)
):
    """Question bank with answer keys (instructors/admins only)"""

    quiz = await catalog.get_quiz(quiz_id)
    require_quiz_owner(quiz, context)
    return await catalog.list_questions(quiz.id, include_inactive=include_inactive)


@router.put("/{quiz_id}/questions/order", response_model=List[QuestionResponse])
async def reorder_questions(
    request: QuestionOrderRequest,
    quiz_id: str = Path(..., description="Quiz ID"),
    context: RequestContext = Depends(require_instructor_or_admin),
    catalog: QuizCatalog = Depends(get_quiz_catalog)
):
    """Set new order indexes for questions"""

    quiz = await catalog.get_quiz(quiz_id)
    require_quiz_owner(quiz, context)
    return await catalog.reorder_questions(
        quiz.id,
        [(item.question_id, item.order_index) for item in request.questions]
    )


@router.patch("/{quiz_id}/questions/{question_id}", response_model=QuestionResponse)
async def update_question(
    request: QuestionUpdateRequest,
    quiz_id: str = Path(..., description="Quiz ID"),
    question_id: str = Path(..., description="Question ID"),
    context: RequestContext = Depends(require_instructor_or_admin),
    catalog: QuizCatalog = Depends(get_quiz_catalog)
):
    """Edit or deactivate a question"""

    quiz = await catalog.get_quiz(quiz_id)
    require_quiz_owner(quiz, context)
    return await catalog.update_question(quiz.id, question_id, request.model_dump(exclude_unset=True))


@router.delete("/{quiz_id}/questions/{question_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_question(
    quiz_id: str = Path(..., description="Quiz ID"),
    question_id: str = Path(..., description="Question ID"),
    context: RequestContext = Depends(require_instructor_or_admin),
    catalog: QuizCatalog = Depends(get_quiz_catalog)
):
    """Delete a question nobody has answered yet"""

    quiz = await catalog.get_quiz(quiz_id)
    require_quiz_owner(quiz, context)
    await catalog.delete_question(quiz.id, question_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{quiz_id}/statistics")
async def get_quiz_statistics(
    quiz_id: str = Path(..., description="Quiz ID"),
    context: RequestContext = Depends(require_instructor_or_admin),
    catalog: QuizCatalog = Depends(get_quiz_catalog),
    reporting: ReportingService = Depends(get_reporting_service)
) -> Dict[str, Any]:
    """Attempt counts, average score and pass rate"""

    quiz = await catalog.get_quiz(quiz_id)
    require_quiz_owner(quiz, context)
    return await reporting.quiz_statistics(quiz.id)


@router.get("/{quiz_id}/analytics")
async def get_quiz_analytics(
    quiz_id: str = Path(..., description="Quiz ID"),
    context: RequestContext = Depends(require_instructor_or_admin),
    catalog: QuizCatalog = Depends(get_quiz_catalog),
    reporting: ReportingService = Depends(get_reporting_service)
) -> Dict[str, Any]:
    """Score and time distributions plus per-question success rates"""

    quiz = await catalog.get_quiz(quiz_id)
    require_quiz_owner(quiz, context)
    return await reporting.quiz_analytics(quiz.id)


@router.get("/{quiz_id}/results/export")
async def export_quiz_results(
    quiz_id: str = Path(..., description="Quiz ID"),
    format: str = Query("json", pattern="^(json|csv)$"),
    context: RequestContext = Depends(require_instructor_or_admin),
    catalog: QuizCatalog = Depends(get_quiz_catalog),
    reporting: ReportingService = Depends(get_reporting_service)
):
    """Completed attempt results as JSON rows or a CSV file"""

    quiz = await catalog.get_quiz(quiz_id)
    require_quiz_owner(quiz, context)
    rows = await reporting.export_results(quiz.id)

    if format == "csv":
        return Response(
            content=results_to_csv(rows),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="quiz-{quiz.id}-results.csv"'}
        )

    return {"quiz_id": str(quiz.id), "results": rows}
