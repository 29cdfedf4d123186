# taskengine/store.py
"""
Task / execution record store.

The executor only talks to TaskStore. SqlAlchemyTaskStore is the relational
implementation; every method opens a short-lived session and returns rows
detached from it (SessionLocal is configured with expire_on_commit=False).

Execution records are append-only: created once with status "running",
then updated while still running (side channel, terminal update). Updates
against a record that already reached success/failed are refused.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, sessionmaker

from taskengine.models import (
    SessionLocal,
    Task,
    TaskExecution,
    UserWebhook,
    InboundMessage,
    ExecutionStatus,
    RUNNABLE_TASK_STATUSES,
)

logger = logging.getLogger("taskengine.store")


class TaskStore(ABC):
    """Persistence contract used by the task executor and scheduler"""

    @abstractmethod
    async def get_task(self, task_id: int) -> Optional[Task]:
        ...

    @abstractmethod
    async def create_execution(self, **fields) -> TaskExecution:
        ...

    @abstractmethod
    async def update_execution(self, execution_id: int, fields: Dict[str, Any]) -> bool:
        """Update a running execution; returns False if it is already terminal or missing"""

    @abstractmethod
    async def update_task(
        self,
        task_id: int,
        fields: Dict[str, Any],
        expected_status: Optional[str] = None
    ) -> bool:
        """Update a task, optionally only if its status still equals expected_status"""

    @abstractmethod
    async def list_pending_tasks(self, now: datetime, limit: int) -> List[Task]:
        ...

    @abstractmethod
    async def list_executions(self, task_id: int) -> List[TaskExecution]:
        ...

    @abstractmethod
    async def get_webhook(self, webhook_id: int) -> Optional[UserWebhook]:
        ...

    @abstractmethod
    async def list_tasks_for_user(self, user_id: int, start: datetime, end: datetime) -> List[Task]:
        ...

    @abstractmethod
    async def list_executions_for_user(self, user_id: int, limit: int) -> List[TaskExecution]:
        ...

    @abstractmethod
    async def list_inbound_messages_for_user(self, user_id: int, limit: int) -> List[InboundMessage]:
        ...


class SqlAlchemyTaskStore(TaskStore):
    """TaskStore backed by the SQLAlchemy models"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def get_task(self, task_id: int) -> Optional[Task]:
        with self._session() as db:
            return db.query(Task).filter(Task.id == task_id).first()

    async def create_execution(self, **fields) -> TaskExecution:
        with self._session() as db:
            execution = TaskExecution(**fields)
            db.add(execution)
            db.commit()
            db.refresh(execution)
            logger.debug(f"Execution record created | execution_id={execution.id} | task_id={execution.task_id}")
            return execution

    async def update_execution(self, execution_id: int, fields: Dict[str, Any]) -> bool:
        with self._session() as db:
            updated = db.query(TaskExecution).filter(
                TaskExecution.id == execution_id,
                TaskExecution.status == ExecutionStatus.running.value
            ).update(fields, synchronize_session=False)
            db.commit()

        if not updated:
            logger.warning(f"Execution {execution_id} not updated - missing or already terminal")
        return bool(updated)

    async def update_task(
        self,
        task_id: int,
        fields: Dict[str, Any],
        expected_status: Optional[str] = None
    ) -> bool:
        values = dict(fields)
        values.setdefault("updated_at", datetime.utcnow())

        with self._session() as db:
            query = db.query(Task).filter(Task.id == task_id)
            if expected_status is not None:
                query = query.filter(Task.status == expected_status)
            updated = query.update(values, synchronize_session=False)
            db.commit()

        if not updated and expected_status is not None:
            logger.warning(
                f"Conditional update skipped for task {task_id} | expected_status={expected_status}"
            )
        return bool(updated)

    async def list_pending_tasks(self, now: datetime, limit: int) -> List[Task]:
        with self._session() as db:
            return db.query(Task).filter(
                Task.assigned_to_bot.is_(True),
                Task.requires_human_review.is_(False),
                Task.status.in_(sorted(RUNNABLE_TASK_STATUSES)),
                or_(Task.scheduled_for.is_(None), Task.scheduled_for <= now)
            ).order_by(Task.id.asc()).limit(limit).all()

    async def list_executions(self, task_id: int) -> List[TaskExecution]:
        with self._session() as db:
            return db.query(TaskExecution).filter(
                TaskExecution.task_id == task_id
            ).order_by(TaskExecution.id.desc()).all()

    async def get_webhook(self, webhook_id: int) -> Optional[UserWebhook]:
        with self._session() as db:
            return db.query(UserWebhook).filter(UserWebhook.id == webhook_id).first()

    async def list_tasks_for_user(self, user_id: int, start: datetime, end: datetime) -> List[Task]:
        with self._session() as db:
            return db.query(Task).filter(
                Task.user_id == user_id,
                Task.created_at >= start,
                Task.created_at <= end
            ).all()

    async def list_executions_for_user(self, user_id: int, limit: int) -> List[TaskExecution]:
        with self._session() as db:
            return db.query(TaskExecution).join(
                Task, TaskExecution.task_id == Task.id
            ).filter(
                Task.user_id == user_id
            ).order_by(TaskExecution.id.desc()).limit(limit).all()

    async def list_inbound_messages_for_user(self, user_id: int, limit: int) -> List[InboundMessage]:
        with self._session() as db:
            return db.query(InboundMessage).filter(
                InboundMessage.user_id == user_id
            ).order_by(InboundMessage.id.desc()).limit(limit).all()
