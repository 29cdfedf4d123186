# Task Engine Models Package
from .database import Base, engine, SessionLocal, build_engine
from .task import (
    Task,
    TaskExecution,
    UserWebhook,
    OutboundMessage,
    InboundMessage,
    TaskType,
    TaskStatus,
    ExecutionStatus,
    RUNNABLE_TASK_STATUSES,
)

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "build_engine",
    "Task",
    "TaskExecution",
    "UserWebhook",
    "OutboundMessage",
    "InboundMessage",
    "TaskType",
    "TaskStatus",
    "ExecutionStatus",
    "RUNNABLE_TASK_STATUSES",
]
