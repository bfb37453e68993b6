"""
Course Quiz Attempt Service
SQLAlchemy Database Models
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, Integer, String, Text, Float,
    ForeignKey, JSON, Enum, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator, CHAR

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GUID(TypeDecorator):
    """Platform-independent GUID type"""
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(UUID())
        else:
            return dialect.type_descriptor(CHAR(32))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        elif dialect.name == 'postgresql':
            return str(value)
        else:
            if not isinstance(value, uuid.UUID):
                return "%.32x" % uuid.UUID(value).int
            else:
                return "%.32x" % value.int

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        else:
            if not isinstance(value, uuid.UUID):
                return uuid.UUID(value)
            return value


# Enums
class UserRole(enum.Enum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class QuizType(enum.Enum):
    QUIZ = "quiz"
    EXAM = "exam"
    ASSIGNMENT = "assignment"


class QuestionType(enum.Enum):
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    FILL_BLANK = "fill_blank"
    ESSAY = "essay"

    @property
    def display_name(self) -> str:
        return {
            QuestionType.SINGLE_CHOICE: "Single Choice",
            QuestionType.MULTIPLE_CHOICE: "Multiple Choice",
            QuestionType.TRUE_FALSE: "True/False",
            QuestionType.FILL_BLANK: "Fill in the Blank",
            QuestionType.ESSAY: "Essay",
        }[self]

    @property
    def is_manually_graded(self) -> bool:
        return self is QuestionType.ESSAY


class AttemptStatus(enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self is not AttemptStatus.IN_PROGRESS


class AbandonReason(enum.Enum):
    USER = "user"
    TIME_LIMIT = "time_limit"


class EnrollmentStatus(enum.Enum):
    ACTIVE = "active"
    DROPPED = "dropped"
    COMPLETED = "completed"


# Base model with common fields
class BaseModel(Base):
    __abstract__ = True

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Enrollment(BaseModel):
    __tablename__ = "enrollments"

    course_id = Column(GUID(), nullable=False, index=True)
    user_id = Column(GUID(), nullable=False, index=True)
    status = Column(Enum(EnrollmentStatus), default=EnrollmentStatus.ACTIVE, nullable=False)
    enrolled_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'course_id', name='_user_course_uc'),
    )


# Quiz and Assessment Models
class Quiz(BaseModel):
    __tablename__ = "quizzes"

    course_id = Column(GUID(), nullable=False, index=True)
    created_by_id = Column(GUID(), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    quiz_type = Column(Enum(QuizType), default=QuizType.QUIZ, nullable=False)
    time_limit_minutes = Column(Integer)  # None = untimed
    passing_score = Column(Float, default=60.0, nullable=False)
    max_attempts = Column(Integer, default=1, nullable=False)
    shuffle_questions = Column(Boolean, default=False, nullable=False)
    show_correct_answers = Column(Boolean, default=True, nullable=False)
    show_results_immediately = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    available_from = Column(DateTime)
    available_until = Column(DateTime)

    # Relationships
    questions = relationship(
        "Question",
        back_populates="quiz",
        cascade="all, delete-orphan",
        order_by="Question.order_index",
        lazy="raise"
    )
    attempts = relationship(
        "QuizAttempt",
        back_populates="quiz",
        lazy="raise",
        passive_deletes=True
    )

    # Constraints
    __table_args__ = (
        Index('idx_quiz_course_active', 'course_id', 'is_active'),
        CheckConstraint('passing_score >= 0 AND passing_score <= 100', name='valid_passing_score'),
        CheckConstraint('max_attempts >= 1', name='positive_max_attempts'),
    )


class Question(BaseModel):
    __tablename__ = "questions"

    quiz_id = Column(GUID(), ForeignKey('quizzes.id'), nullable=False)
    order_index = Column(Integer, nullable=False)
    question_type = Column(Enum(QuestionType), nullable=False)
    content = Column(Text, nullable=False)
    explanation = Column(Text)  # Explanation shown after answering
    options = Column(JSON, default=list)  # For choice questions
    correct_answers = Column(JSON, default=list)  # Correct answer(s) / accepted blanks
    points = Column(Float, default=1.0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    quiz = relationship("Quiz", back_populates="questions", lazy="raise")

    # Constraints
    __table_args__ = (
        Index('idx_question_quiz_order', 'quiz_id', 'order_index'),
        CheckConstraint('points > 0', name='positive_points'),
    )


class QuizAttempt(BaseModel):
    __tablename__ = "quiz_attempts"

    quiz_id = Column(GUID(), ForeignKey('quizzes.id'), nullable=False)
    user_id = Column(GUID(), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False)
    status = Column(Enum(AttemptStatus), default=AttemptStatus.IN_PROGRESS, nullable=False)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime)
    time_taken_seconds = Column(Integer)
    score = Column(Float)  # Points earned
    total_points = Column(Float)
    percentage = Column(Float)
    passed = Column(Boolean)
    question_order = Column(JSON, default=list)  # Presentation order fixed at start
    abandon_reason = Column(Enum(AbandonReason))

    # Relationships
    quiz = relationship("Quiz", back_populates="attempts", lazy="raise")
    answers = relationship(
        "Answer",
        back_populates="attempt",
        cascade="all, delete-orphan",
        lazy="raise"
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint('quiz_id', 'user_id', 'attempt_number', name='_quiz_user_attempt_uc'),
        Index('idx_attempt_status_started', 'status', 'started_at'),
    )

    @property
    def grade_letter(self) -> str:
        if self.percentage is None:
            return "N/A"
        if self.percentage >= 90:
            return "A"
        if self.percentage >= 80:
            return "B"
        if self.percentage >= 70:
            return "C"
        if self.percentage >= 60:
            return "D"
        return "F"

    @property
    def formatted_time_taken(self) -> str:
        if not self.time_taken_seconds:
            return "N/A"
        hours, rest = divmod(self.time_taken_seconds, 3600)
        minutes, seconds = divmod(rest, 60)
        if hours > 0:
            return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
        return f"{minutes:02d}:{seconds:02d}"


class Answer(BaseModel):
    __tablename__ = "answers"

    attempt_id = Column(GUID(), ForeignKey('quiz_attempts.id'), nullable=False)
    question_id = Column(GUID(), ForeignKey('questions.id'), nullable=False)
    response = Column(JSON, nullable=False, default=list)  # Submitted value(s)
    is_correct = Column(Boolean)  # None while awaiting manual grading
    points_earned = Column(Float, default=0.0, nullable=False)
    feedback = Column(Text)
    answered_at = Column(DateTime, default=utcnow, nullable=False)
    graded_at = Column(DateTime)
    graded_by_id = Column(GUID())

    # Relationships
    attempt = relationship("QuizAttempt", back_populates="answers", lazy="raise")
    question = relationship("Question", lazy="raise")

    # Constraints
    __table_args__ = (
        UniqueConstraint('attempt_id', 'question_id', name='_attempt_question_uc'),
        Index('idx_answer_correct_points', 'is_correct', 'points_earned'),
    )

    @property
    def grading_status(self) -> str:
        if self.is_correct is None:
            return "pending"
        return "correct" if self.is_correct else "incorrect"


# Export all models
__all__ = [
    'Base', 'BaseModel', 'GUID', 'utcnow',
    'Enrollment', 'Quiz', 'Question', 'QuizAttempt', 'Answer',
    # Enums
    'UserRole', 'QuizType', 'QuestionType', 'AttemptStatus',
    'AbandonReason', 'EnrollmentStatus',
]
