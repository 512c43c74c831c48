"""Custom exceptions for the workflow automation engine."""

from typing import Optional


class AutomationError(Exception):
    """Base exception for the automation engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(AutomationError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ValidationError(AutomationError):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class ConflictError(AutomationError):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class StepActionError(AutomationError):
    """A step failed, either its collaborator call or the interpreter itself.

    Raised out of the interpreter so the job runner can retry the job
    (pointed at ``step_index``) or fail the execution once attempts
    are exhausted.
    """

    def __init__(
        self,
        message: str,
        execution_id: str,
        step_index: int,
        step_id: Optional[str] = None,
    ):
        self.execution_id = execution_id
        self.step_index = step_index
        self.step_id = step_id
        super().__init__(message, 502)
