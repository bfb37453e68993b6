"""
Course Quiz Attempt Service
Custom exception classes for structured error handling
"""

from typing import Optional, Dict, Any
from fastapi import status


class AppException(Exception):
    """Base application exception with structured error information"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
            "status_code": self.status_code
        }


# Authentication Exceptions
class AuthenticationException(AppException):
    """Raised when authentication fails"""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTHENTICATION_FAILED",
            details=details
        )


# Authorization Exceptions
class AuthorizationException(AppException):
    """Raised when user lacks permission for an action"""

    def __init__(
        self,
        message: str = "Access denied",
        required_role: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}

        if required_role:
            details["required_role"] = required_role

        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="ACCESS_DENIED",
            details=details
        )


class EnrollmentRequiredException(AuthorizationException):
    """Raised when user must be enrolled in the owning course"""

    def __init__(self, course_id: str):
        super().__init__(
            message="You must be enrolled in this course to take its quizzes",
            details={"course_id": course_id, "violated_rule": "enrollment_required"}
        )


# Validation Exceptions
class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}

        if field:
            details["field"] = field
        if value is not None:
            details["provided_value"] = str(value)

        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_ERROR",
            details=details
        )


class UnknownAnswerKeysException(ValidationException):
    """Raised when submitted answers reference questions outside the quiz"""

    def __init__(self, question_ids: list):
        super().__init__(
            message="Answers reference unknown or inactive questions",
            field="answers",
            details={"unknown_question_ids": sorted(question_ids)}
        )


# Resource Exceptions
class NotFoundException(AppException):
    """Raised when requested resource is not found"""

    def __init__(
        self,
        message: str = "Resource not found",
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None
    ):
        details = {}
        if resource_type:
            details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id

        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND",
            details=details
        )


class QuizNotFoundException(NotFoundException):
    """Raised when quiz is not found"""

    def __init__(self, quiz_id: str):
        super().__init__(
            message="Quiz not found",
            resource_type="quiz",
            resource_id=str(quiz_id)
        )


class QuestionNotFoundException(NotFoundException):
    """Raised when question is not found"""

    def __init__(self, question_id: str):
        super().__init__(
            message="Question not found",
            resource_type="question",
            resource_id=str(question_id)
        )


class AttemptNotFoundException(NotFoundException):
    """Raised when attempt is not found or not owned by the caller"""

    def __init__(self, attempt_id: str):
        super().__init__(
            message="Quiz attempt not found",
            resource_type="quiz_attempt",
            resource_id=str(attempt_id)
        )


class AnswerNotFoundException(NotFoundException):
    """Raised when an attempt has no answer for a question"""

    def __init__(self, attempt_id: str, question_id: str):
        super().__init__(
            message="Answer not found",
            resource_type="answer",
            resource_id=f"{attempt_id}:{question_id}"
        )


# Conflict Exceptions
class ConflictException(AppException):
    """Raised when operation conflicts with current state"""

    def __init__(
        self,
        message: str = "Conflict with current state",
        conflict_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}

        if conflict_type:
            details["conflict_type"] = conflict_type

        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT",
            details=details
        )


class InvalidAttemptStateException(ConflictException):
    """Raised when an attempt transition is not allowed from its current status"""

    def __init__(self, attempt_id: str, current_status: str, action: str):
        super().__init__(
            message=f"Cannot {action} an attempt that is {current_status}",
            conflict_type="attempt_state",
            details={
                "attempt_id": str(attempt_id),
                "current_status": current_status,
                "action": action
            }
        )


class QuizHasAttemptsException(ConflictException):
    """Raised when deleting a quiz that learners already attempted"""

    def __init__(self, quiz_id: str, attempt_count: int):
        super().__init__(
            message="Cannot delete quiz that has attempts. Deactivate it instead.",
            conflict_type="quiz_has_attempts",
            details={"quiz_id": str(quiz_id), "attempt_count": attempt_count}
        )


class QuestionHasAnswersException(ConflictException):
    """Raised when deleting a question that learners already answered"""

    def __init__(self, question_id: str, answer_count: int):
        super().__init__(
            message="Cannot delete question that has answers. Deactivate it instead.",
            conflict_type="question_has_answers",
            details={"question_id": str(question_id), "answer_count": answer_count}
        )


# Business Logic Exceptions
class BusinessLogicException(AppException):
    """Raised when business rules are violated"""

    def __init__(
        self,
        message: str,
        rule_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}

        if rule_name:
            details["violated_rule"] = rule_name

        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="BUSINESS_RULE_VIOLATION",
            details=details
        )


class QuizNotAvailableException(BusinessLogicException):
    """Raised when quiz is not available for a new attempt"""

    def __init__(self, reason: str, quiz_id: str):
        super().__init__(
            message=f"Quiz not available: {reason}",
            rule_name="quiz_availability",
            details={"quiz_id": str(quiz_id), "reason": reason}
        )


class MaxAttemptsExceededException(BusinessLogicException):
    """Raised when maximum quiz attempts are exceeded"""

    def __init__(self, quiz_id: str, max_attempts: int, current_attempts: int):
        super().__init__(
            message=f"Maximum attempts exceeded ({current_attempts}/{max_attempts})",
            rule_name="max_attempts",
            details={
                "quiz_id": str(quiz_id),
                "max_attempts": max_attempts,
                "current_attempts": current_attempts
            }
        )


class AttemptTimeExpiredException(BusinessLogicException):
    """Raised when a timed attempt is resumed or submitted after its limit"""

    def __init__(self, attempt_id: str, time_limit_minutes: int):
        super().__init__(
            message="Time limit exceeded. The attempt has been abandoned.",
            rule_name="time_limit",
            details={
                "attempt_id": str(attempt_id),
                "time_limit_minutes": time_limit_minutes
            }
        )


class GradeSubmissionException(BusinessLogicException):
    """Raised when a manual grade cannot be recorded"""

    def __init__(self, reason: str, attempt_id: str):
        super().__init__(
            message=f"Cannot record grade: {reason}",
            rule_name="grade_submission",
            details={"attempt_id": str(attempt_id), "reason": reason}
        )


# Availability Exceptions
class AttemptLockTimeoutException(AppException):
    """Raised when the per-user attempt lock cannot be acquired in time"""

    def __init__(self, quiz_id: str, user_id: str):
        super().__init__(
            message="Another operation on this attempt is in progress, try again",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="ATTEMPT_LOCK_TIMEOUT",
            details={"quiz_id": str(quiz_id), "user_id": str(user_id)}
        )


# Export all exceptions
__all__ = [
    # Base
    "AppException",

    # Authentication / Authorization
    "AuthenticationException",
    "AuthorizationException",
    "EnrollmentRequiredException",

    # Validation
    "ValidationException",
    "UnknownAnswerKeysException",

    # Resources
    "NotFoundException",
    "QuizNotFoundException",
    "QuestionNotFoundException",
    "AttemptNotFoundException",
    "AnswerNotFoundException",

    # Conflicts
    "ConflictException",
    "InvalidAttemptStateException",
    "QuizHasAttemptsException",
    "QuestionHasAnswersException",

    # Business Logic
    "BusinessLogicException",
    "QuizNotAvailableException",
    "MaxAttemptsExceededException",
    "AttemptTimeExpiredException",
    "GradeSubmissionException",

    # Availability
    "AttemptLockTimeoutException",
]
