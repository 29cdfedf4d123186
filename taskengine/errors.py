# taskengine/errors.py
"""
Task Engine exception hierarchy.

All engine errors share one envelope (message, error_code, context) so they
can be logged and rendered consistently. Handlers convert these into
ExecutionResult failures; nothing here reaches an end user as an exception.
"""

from typing import Optional, Dict, Any


class TaskEngineError(Exception):
    """Standardized error envelope for task engine failures."""

    def __init__(
        self,
        message: str,
        error_code: str = "TASK_ENGINE_ERROR",
        original_error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.original_error = original_error
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to standardized error dict for API responses"""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context
        }


class TaskNotFoundError(TaskEngineError):
    """Task id does not exist"""

    def __init__(self, task_id: int):
        super().__init__(
            message="Task not found",
            error_code="TASK_NOT_FOUND",
            context={"task_id": task_id}
        )


class TaskPreconditionError(TaskEngineError):
    """Task is in a state that forbids execution (completed, cancelled, awaiting review)"""

    def __init__(self, message: str, task_id: int, status: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="TASK_PRECONDITION_FAILED",
            context={"task_id": task_id, "status": status}
        )


class TaskValidationError(TaskEngineError):
    """Execution config does not match the shape required by the task type"""

    def __init__(self, message: str, task_type: Optional[str] = None, field: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_FAILED",
            context={"task_type": task_type, "field": field}
        )


class TaskConflictError(TaskEngineError):
    """Conditional task update lost a race with another writer"""

    def __init__(self, task_id: int, expected_status: str):
        super().__init__(
            message=f"Task {task_id} status changed concurrently (expected '{expected_status}')",
            error_code="TASK_CONFLICT",
            context={"task_id": task_id, "expected_status": expected_status}
        )


class CircuitOpenError(TaskEngineError):
    """Circuit breaker is open for the requested dependency"""

    def __init__(self, dependency: str, retry_after: float = 0.0):
        super().__init__(
            message=f"Circuit breaker open for '{dependency}': dependency temporarily unavailable",
            error_code="CIRCUIT_OPEN",
            context={"dependency": dependency, "retry_after": round(retry_after, 1)}
        )
        self.dependency = dependency
        self.retry_after = retry_after


class AutomationError(TaskEngineError):
    """Browser automation driver failure"""

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            error_code="AUTOMATION_FAILED",
            original_error=original_error,
            context={"session_id": session_id, "status_code": status_code}
        )
        self.session_id = session_id
        self.status_code = status_code


class AutomationStepError(AutomationError):
    """A single automation step failed and was not marked continueOnError"""

    def __init__(self, message: str, step_index: int, step_type: str, original_error: Optional[Exception] = None):
        super().__init__(message=message, original_error=original_error)
        self.error_code = "AUTOMATION_STEP_FAILED"
        self.context.update({"step_index": step_index, "step_type": step_type})
        self.step_index = step_index
        self.step_type = step_type
