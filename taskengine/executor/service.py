# taskengine/executor/service.py
"""
Task Execution Service

Runs one attempt of a task end to end:

    fetch -> preconditions -> validate -> record execution -> dispatch
          -> record outcome -> update task -> notify

Validation and precondition failures write nothing. Once an execution record
exists it always ends in success or failed. Task status changes are
conditional on the status this attempt last saw, so a human cancelling a
task mid-run is never overwritten by the scheduler.
"""

import logging
import time
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from taskengine.automation import AutomationAdapter, BrowserbaseDriver
from taskengine.config import get_settings
from taskengine.errors import (
    TaskConflictError,
    TaskEngineError,
    TaskNotFoundError,
    TaskPreconditionError,
    TaskValidationError,
)
from taskengine.executor.handlers import TaskHandlers
from taskengine.executor.result import ExecutionResult
from taskengine.executor.validation import validate_task_config
from taskengine.messaging import MessageQueue, OutboundMessageRequest, build_message_queue
from taskengine.middleware.correlation import bind_correlation_id
from taskengine.models import ExecutionStatus, Task, TaskStatus
from taskengine.resilience import CircuitBreakerRegistry, RetryOptions, get_circuit_breaker_registry
from taskengine.scheduler import process_pending_tasks
from taskengine.store import SqlAlchemyTaskStore, TaskStore

logger = logging.getLogger("taskengine.executor")


def generate_result_summary(result: ExecutionResult) -> str:
    """One-line human summary stored on the task"""
    if not result.success:
        return f"Failed: {result.error or 'Unknown error'}"

    output = result.output if isinstance(result.output, dict) else {}
    if output.get("message"):
        return str(output["message"])
    if isinstance(output.get("steps"), list):
        return f"Completed {len(output['steps'])} automation steps"
    return "Task completed successfully"


def check_preconditions(task: Task) -> None:
    """Raise TaskPreconditionError if the task may not run now"""
    if task.status == TaskStatus.completed.value:
        raise TaskPreconditionError("Task is already completed", task.id, task.status)
    if task.status == TaskStatus.cancelled.value:
        raise TaskPreconditionError("Task is cancelled", task.id, task.status)
    if task.requires_human_review and not task.human_reviewed_by:
        raise TaskPreconditionError("Task requires human review", task.id, task.status)


class TaskExecutionService:
    """Executes tasks against their handlers and records every attempt"""

    def __init__(
        self,
        store: TaskStore,
        messaging: MessageQueue,
        automation: Optional[AutomationAdapter] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        registry: Optional[CircuitBreakerRegistry] = None,
        settings=None,
        retry_options: Optional[RetryOptions] = None
    ):
        self.store = store
        self.messaging = messaging
        self.settings = settings or get_settings()
        self.registry = registry or get_circuit_breaker_registry()
        self.http_client = http_client or httpx.AsyncClient()
        self.handlers = TaskHandlers(
            store=store,
            messaging=messaging,
            http_client=self.http_client,
            registry=self.registry,
            settings=self.settings,
            automation=automation,
            retry_options=retry_options,
        )

    async def close(self):
        if not self.http_client.is_closed:
            await self.http_client.aclose()

    async def execute_task(self, task_id: int, triggered_by: str = "automatic") -> ExecutionResult:
        """Run one attempt of task_id; never raises"""
        with bind_correlation_id(f"task-{task_id}-{uuid.uuid4().hex[:8]}"):
            return await self._execute(task_id, triggered_by)

    async def _execute(self, task_id: int, triggered_by: str) -> ExecutionResult:
        start = time.monotonic()
        execution_id: Optional[int] = None
        task: Optional[Task] = None
        started = False

        try:
            task = await self.store.get_task(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            check_preconditions(task)
            config = validate_task_config(task.task_type, task.execution_config)
        except (TaskNotFoundError, TaskPreconditionError, TaskValidationError) as e:
            logger.info(f"Task not executed | task_id={task_id} | reason={e.message}")
            return ExecutionResult.failure(e.message)
        except Exception as e:
            logger.exception(f"Task lookup failed | task_id={task_id} | error={e}")
            return ExecutionResult.failure(str(e) or e.__class__.__name__)

        try:
            attempt = (task.error_count or 0) + 1
            execution = await self.store.create_execution(
                task_id=task.id,
                triggered_by=triggered_by,
                attempt_number=attempt,
                status=ExecutionStatus.running.value,
                started_at=datetime.utcnow(),
            )
            execution_id = execution.id

            moved = await self.store.update_task(
                task.id,
                {"status": TaskStatus.in_progress.value, "started_at": datetime.utcnow()},
                expected_status=task.status
            )
            if not moved:
                raise TaskConflictError(task.id, task.status)
            started = True

            logger.info(
                f"Executing task | task_id={task.id} | type={task.task_type} | "
                f"attempt={attempt} | triggered_by={triggered_by} | execution_id={execution_id}"
            )

            handler = self.handlers.handler_for(task.task_type)
            dispatch_start = time.monotonic()
            result = await handler(task, config, execution_id)
            result.duration = int((time.monotonic() - dispatch_start) * 1000)
            result.execution_id = execution_id

            if result.success:
                await self._record_success(task, execution_id, result)
            else:
                await self._record_failure(task, execution_id, result)
            return result

        except Exception as e:
            message = e.message if isinstance(e, TaskEngineError) else str(e) or e.__class__.__name__
            duration = int((time.monotonic() - start) * 1000)
            logger.exception(f"Task execution error | task_id={task_id} | execution_id={execution_id} | error={message}")

            result = ExecutionResult.failure(message, duration=duration, execution_id=execution_id)
            if execution_id is not None:
                await self._fail_execution_safely(execution_id, result)
            if started:
                await self._apply_failure_transition_safely(task, result)
            return result

    # =========================================================================
    # Outcome recording
    # =========================================================================

    async def _record_success(self, task: Task, execution_id: int, result: ExecutionResult):
        now = datetime.utcnow()
        await self.store.update_execution(execution_id, {
            "status": ExecutionStatus.success.value,
            "output": result.output,
            "duration": result.duration,
            "screenshots": result.screenshots or None,
            "completed_at": now,
        })

        # The execution is terminal from here on; never turn it into a failed attempt
        try:
            completed = await self.store.update_task(
                task.id,
                {
                    "status": TaskStatus.completed.value,
                    "completed_at": now,
                    "result": result.output,
                    "result_summary": generate_result_summary(result),
                },
                expected_status=TaskStatus.in_progress.value
            )
        except Exception as e:
            logger.error(
                f"Task completion write failed after execution recorded | task_id={task.id} | "
                f"execution_id={execution_id} | error={e}"
            )
            return

        if not completed:
            logger.warning(
                f"Task status changed during execution, keeping it | task_id={task.id} | outcome=success"
            )
            return

        logger.info(f"Task completed | task_id={task.id} | duration_ms={result.duration}")
        if task.notify_on_complete:
            await self.send_completion_notification(task, result)

    async def _record_failure(self, task: Task, execution_id: int, result: ExecutionResult):
        await self.store.update_execution(execution_id, {
            "status": ExecutionStatus.failed.value,
            "error": result.error,
            "output": result.output,
            "duration": result.duration,
            "completed_at": datetime.utcnow(),
        })
        await self._apply_failure_transition_safely(task, result)

    async def _apply_failure_transition(self, task: Task, result: ExecutionResult):
        error_count = (task.error_count or 0) + 1
        exhausted = error_count >= task.max_retries

        fields: Dict[str, Any] = {
            "error_count": error_count,
            "last_error": result.error,
            "result_summary": generate_result_summary(result),
        }
        if exhausted:
            fields["status"] = TaskStatus.failed.value
            fields["status_reason"] = f"Failed after {error_count} attempts"
        else:
            fields["status"] = TaskStatus.pending.value
            fields["status_reason"] = f"Attempt {error_count} failed, will retry"

        updated = await self.store.update_task(task.id, fields, expected_status=TaskStatus.in_progress.value)
        if not updated:
            logger.warning(
                f"Task status changed during execution, keeping it | task_id={task.id} | outcome=failure"
            )
            return

        logger.warning(
            f"Task attempt failed | task_id={task.id} | attempt={error_count}/{task.max_retries} | "
            f"new_status={fields['status']} | error={result.error}"
        )
        if exhausted and task.notify_on_failure:
            await self.send_failure_notification(task, result.error)

    async def _fail_execution_safely(self, execution_id: int, result: ExecutionResult):
        try:
            await self.store.update_execution(execution_id, {
                "status": ExecutionStatus.failed.value,
                "error": result.error,
                "duration": result.duration,
                "completed_at": datetime.utcnow(),
            })
        except Exception as e:
            logger.error(f"Could not mark execution failed | execution_id={execution_id} | error={e}")

    async def _apply_failure_transition_safely(self, task: Task, result: ExecutionResult):
        try:
            await self._apply_failure_transition(task, result)
        except Exception as e:
            logger.error(f"Could not record task failure | task_id={task.id} | error={e}")

    # =========================================================================
    # Notifications
    # =========================================================================

    async def _notify(self, task: Task, content: str) -> bool:
        """Queue a task_update message on the task's webhook; never raises"""
        if not task.source_webhook_id:
            return False
        try:
            webhook = await self.store.get_webhook(task.source_webhook_id)
            if webhook is None or not webhook.outbound_enabled:
                logger.debug(f"Webhook unavailable for outbound notification | task_id={task.id}")
                return False

            await self.messaging.enqueue(OutboundMessageRequest(
                webhook_id=webhook.id,
                user_id=task.user_id,
                task_id=task.id,
                conversation_id=task.conversation_id,
                message_type="task_update",
                content=content,
                recipient="owner",
            ))
            return True
        except Exception as e:
            logger.error(f"Task notification failed | task_id={task.id} | error={e}")
            return False

    async def send_completion_notification(self, task: Task, result: ExecutionResult) -> bool:
        output = result.output if isinstance(result.output, dict) else {}
        message = output.get("message") or "Success"
        return await self._notify(task, f"Task completed: {task.title}\n\nResult: {message}")

    async def send_failure_notification(self, task: Task, error: Optional[str]) -> bool:
        return await self._notify(task, f"Task failed: {task.title}\n\nError: {error}")

    async def process_pending_tasks(self, batch_size: Optional[int] = None, max_concurrency: Optional[int] = None):
        return await process_pending_tasks(
            self,
            self.store,
            batch_size=batch_size or self.settings.SCHEDULER_BATCH_SIZE,
            max_concurrency=max_concurrency or self.settings.SCHEDULER_MAX_CONCURRENCY,
        )


def create_task_execution_service(settings=None) -> TaskExecutionService:
    """Wire the service with the configured store, queue, driver and breakers"""
    settings = settings or get_settings()
    registry = get_circuit_breaker_registry()
    retry_options = RetryOptions.from_settings(settings)
    http_client = httpx.AsyncClient()

    automation = AutomationAdapter(
        driver=BrowserbaseDriver(settings, http_client),
        registry=registry,
        retry_options=retry_options,
        screenshot_dir=settings.SCREENSHOT_DIR,
    )

    return TaskExecutionService(
        store=SqlAlchemyTaskStore(),
        messaging=build_message_queue(settings),
        automation=automation,
        http_client=http_client,
        registry=registry,
        settings=settings,
        retry_options=retry_options,
    )
