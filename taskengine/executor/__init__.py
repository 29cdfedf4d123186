# Task executor: config validation, type handlers, execution service
from .result import ExecutionResult
from .validation import CONFIG_MODELS, validate_task_config
from .handlers import TaskHandlers
from .service import (
    TaskExecutionService,
    check_preconditions,
    create_task_execution_service,
    generate_result_summary,
)

__all__ = [
    "ExecutionResult",
    "CONFIG_MODELS",
    "validate_task_config",
    "TaskHandlers",
    "TaskExecutionService",
    "check_preconditions",
    "create_task_execution_service",
    "generate_result_summary",
]
