# taskengine/executor/handlers.py
"""
Task type handlers.

Each handler takes (task, config, execution_id) and returns an
ExecutionResult. Expected failures (bad responses, open circuits, driver
errors, timeouts) are returned as failure results; anything unexpected
propagates to the executor, which records it against the execution.
"""

import asyncio
import base64
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx

from taskengine.automation import AutomationAdapter
from taskengine.errors import TaskEngineError
from taskengine.executor import reports
from taskengine.executor.result import ExecutionResult
from taskengine.executor.validation import (
    ApiCallConfig,
    BrowserAutomationConfig,
    GhlActionConfig,
    NotificationConfig,
    ReminderConfig,
    ReportConfig,
    TaskConfig,
)
from taskengine.messaging import MessageQueue, OutboundMessageRequest
from taskengine.models import Task, TaskType
from taskengine.resilience import CircuitBreakerRegistry, RetryOptions, guarded_call
from taskengine.store import TaskStore

logger = logging.getLogger("taskengine.executor.handlers")

Handler = Callable[[Task, TaskConfig, int], Awaitable[ExecutionResult]]

GHL_API_VERSION = "2021-07-28"
GHL_TIMEOUT_SECONDS = 30.0
REPORT_DEFAULT_RANGE = timedelta(days=30)

PAYLOAD_METHODS = {"POST", "PUT", "PATCH"}


def _utc_naive(value: datetime) -> datetime:
    """Stored timestamps are naive UTC"""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _response_error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.text


class TaskHandlers:
    """Handler implementations, one per task type"""

    def __init__(
        self,
        store: TaskStore,
        messaging: MessageQueue,
        http_client: httpx.AsyncClient,
        registry: CircuitBreakerRegistry,
        settings,
        automation: Optional[AutomationAdapter] = None,
        retry_options: Optional[RetryOptions] = None
    ):
        self.store = store
        self.messaging = messaging
        self.http_client = http_client
        self.registry = registry
        self.settings = settings
        self.automation = automation
        self.retry_options = retry_options or RetryOptions.from_settings(settings)

        self._handlers: Dict[str, Handler] = {
            TaskType.browser_automation.value: self.browser_automation,
            TaskType.data_extraction.value: self.browser_automation,
            TaskType.api_call.value: self.api_call,
            TaskType.ghl_action.value: self.ghl_action,
            TaskType.notification.value: self.notification,
            TaskType.reminder.value: self.reminder,
            TaskType.report_generation.value: self.report_generation,
            TaskType.custom.value: self.custom,
        }

    def handler_for(self, task_type: str) -> Handler:
        """Unrecognized task types run as custom tasks"""
        return self._handlers.get(task_type, self.custom)

    # =========================================================================
    # Browser automation / data extraction
    # =========================================================================

    async def browser_automation(
        self, task: Task, config: BrowserAutomationConfig, execution_id: int
    ) -> ExecutionResult:
        if self.automation is None:
            return ExecutionResult.failure("Browser automation is not configured")

        async def record_session(session_id: str, debug_url: Optional[str]):
            await self.store.update_execution(
                execution_id,
                {"browser_session_id": session_id, "debug_url": debug_url}
            )

        try:
            async with self.automation.session(config.session_config, on_created=record_session) as session:
                run = await self.automation.run_steps(session, config.steps)
        except TaskEngineError as e:
            logger.error(f"Browser automation failed | task_id={task.id} | error={e.message}")
            return ExecutionResult.failure(e.message)
        except httpx.HTTPError as e:
            logger.error(f"Browser automation transport error | task_id={task.id} | error={e}")
            return ExecutionResult.failure(f"Browser automation failed: {e}")

        return ExecutionResult(
            success=True,
            output={"steps": run.steps, "sessionId": session.session_id},
            screenshots=run.screenshots
        )

    # =========================================================================
    # API call
    # =========================================================================

    def _api_headers(self, config: ApiCallConfig) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}

        if config.auth_type == "bearer" and config.bearer_token:
            headers["Authorization"] = f"Bearer {config.bearer_token}"
        elif config.auth_type == "api_key" and config.api_key_header and config.api_key:
            headers[config.api_key_header] = config.api_key
        elif config.auth_type == "basic" and config.username and config.password:
            token = base64.b64encode(f"{config.username}:{config.password}".encode()).decode("ascii")
            headers["Authorization"] = f"Basic {token}"

        headers.update(config.custom_headers)
        return headers

    async def api_call(self, task: Task, config: ApiCallConfig, execution_id: int) -> ExecutionResult:
        timeout_ms = config.timeout or self.settings.API_CALL_TIMEOUT_MS
        request_kwargs: Dict[str, Any] = {"headers": self._api_headers(config), "timeout": None}
        if config.api_method in PAYLOAD_METHODS and config.api_payload is not None:
            request_kwargs["json"] = config.api_payload

        try:
            response = await asyncio.wait_for(
                self.http_client.request(config.api_method, config.api_endpoint, **request_kwargs),
                timeout=timeout_ms / 1000
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning(f"API call timed out | task_id={task.id} | timeout_ms={timeout_ms}")
            return ExecutionResult.failure(f"API request timeout after {timeout_ms}ms")
        except httpx.HTTPError as e:
            logger.warning(f"API call failed | task_id={task.id} | error={e}")
            return ExecutionResult.failure(f"API request failed: {e}")

        if "application/json" in response.headers.get("content-type", ""):
            try:
                data = response.json()
            except ValueError:
                data = response.text
        else:
            data = response.text

        output = {
            "data": data,
            "metadata": {
                "status": response.status_code,
                "statusText": response.reason_phrase,
                "headers": dict(response.headers),
            },
        }

        if not response.is_success:
            return ExecutionResult.failure(
                f"API returned {response.status_code}: {response.reason_phrase}",
                output=output
            )
        return ExecutionResult(success=True, output=output)

    # =========================================================================
    # GoHighLevel
    # =========================================================================

    def _ghl_request(self, config: GhlActionConfig) -> Optional[Tuple[str, str, Dict[str, Any]]]:
        """(method, path, payload) for a GHL action, None if unknown"""
        action = config.ghl_action

        if action == "add_contact":
            payload = {
                "firstName": config.first_name,
                "lastName": config.last_name,
                "email": config.email,
                "phone": config.phone,
                **config.custom_fields,
            }
            return "POST", "/contacts/", payload

        if action == "send_sms":
            return "POST", "/conversations/messages", {
                "contactId": config.contact_id,
                "message": config.message,
                "type": "SMS",
            }

        if action == "create_opportunity":
            return "POST", "/opportunities/", {
                "pipelineId": config.pipeline_id,
                "locationId": config.location_id or self.settings.GHL_LOCATION_ID,
                "name": config.opportunity_name,
                "contactId": config.contact_id,
                "status": config.status,
                "monetaryValue": config.monetary_value,
            }

        if action == "add_tag":
            return "POST", f"/contacts/{config.contact_id}/tags", {"tags": list(config.tags)}

        if action == "update_contact":
            return "PUT", f"/contacts/{config.contact_id}", dict(config.update_data)

        return None

    async def ghl_action(self, task: Task, config: GhlActionConfig, execution_id: int) -> ExecutionResult:
        if not self.settings.GHL_API_KEY:
            return ExecutionResult.failure("GHL API key not configured")

        request = self._ghl_request(config)
        if request is None:
            return ExecutionResult.failure(f"Unknown GHL action: {config.ghl_action}")
        method, path, payload = request

        headers = {
            "Authorization": f"Bearer {self.settings.GHL_API_KEY}",
            "Content-Type": "application/json",
            "Version": GHL_API_VERSION,
        }

        async def send() -> httpx.Response:
            response = await self.http_client.request(
                method,
                f"{self.settings.GHL_API_URL}{path}",
                json=payload,
                headers=headers,
                timeout=GHL_TIMEOUT_SECONDS
            )
            # Transient statuses raise so the retry loop sees them
            if response.status_code == 429 or response.status_code >= 500:
                response.raise_for_status()
            return response

        options = replace(self.retry_options, operation_name=f"ghl.{config.ghl_action}")
        try:
            response = await guarded_call(self.registry, "ghl", send, options)
        except TaskEngineError as e:
            return ExecutionResult.failure(e.message)
        except httpx.HTTPStatusError as e:
            return ExecutionResult.failure(
                f"GHL API error ({e.response.status_code}): {_response_error_detail(e.response)}"
            )
        except httpx.HTTPError as e:
            return ExecutionResult.failure(f"GHL request failed: {e}")

        if not response.is_success:
            return ExecutionResult.failure(
                f"GHL API error ({response.status_code}): {_response_error_detail(response)}"
            )

        try:
            result = response.json() if response.content else {}
        except ValueError:
            result = response.text

        logger.info(f"GHL action completed | task_id={task.id} | action={config.ghl_action}")
        return ExecutionResult(
            success=True,
            output={
                "message": f"GHL {config.ghl_action} completed successfully",
                "taskId": task.id,
                "action": config.ghl_action,
                "result": result,
            }
        )

    # =========================================================================
    # Messaging handlers
    # =========================================================================

    async def notification(self, task: Task, config: NotificationConfig, execution_id: int) -> ExecutionResult:
        if not task.source_webhook_id:
            return ExecutionResult.failure("No webhook configured for notification")

        recipient = config.recipient or "owner"
        try:
            webhook = await self.store.get_webhook(task.source_webhook_id)
            if webhook is None or not webhook.outbound_enabled:
                return ExecutionResult.failure("Webhook not configured for outbound messages")

            await self.messaging.enqueue(OutboundMessageRequest(
                webhook_id=webhook.id,
                user_id=task.user_id,
                task_id=task.id,
                conversation_id=task.conversation_id,
                message_type="notification",
                content=config.message or task.description or task.title,
                recipient=recipient,
            ))
        except Exception as e:
            logger.error(f"Notification failed | task_id={task.id} | error={e}")
            return ExecutionResult.failure(f"Failed to queue notification: {e}")

        return ExecutionResult(
            success=True,
            output={
                "message": "Notification queued for delivery",
                "taskId": task.id,
                "webhookId": webhook.id,
                "recipient": recipient,
            }
        )

    async def reminder(self, task: Task, config: ReminderConfig, execution_id: int) -> ExecutionResult:
        reminder_time = _utc_naive(config.reminder_time)
        if reminder_time <= datetime.utcnow():
            return ExecutionResult.failure("Reminder time must be in the future")

        reminder_message = config.reminder_message or task.description or task.title

        if task.source_webhook_id:
            try:
                await self.messaging.enqueue(OutboundMessageRequest(
                    webhook_id=task.source_webhook_id,
                    user_id=task.user_id,
                    task_id=task.id,
                    conversation_id=task.conversation_id,
                    message_type="reminder",
                    content=f"Reminder: {reminder_message}",
                    recipient=config.recipient or "owner",
                    scheduled_for=reminder_time,
                ))
            except Exception as e:
                logger.error(f"Reminder scheduling failed | task_id={task.id} | error={e}")
                return ExecutionResult.failure(f"Failed to schedule reminder: {e}")
        else:
            logger.info(f"Reminder has no webhook, nothing enqueued | task_id={task.id}")

        return ExecutionResult(
            success=True,
            output={
                "message": "Reminder scheduled",
                "taskId": task.id,
                "scheduledFor": reminder_time.isoformat(),
                "reminderMessage": reminder_message,
            }
        )

    # =========================================================================
    # Reports
    # =========================================================================

    async def report_generation(self, task: Task, config: ReportConfig, execution_id: int) -> ExecutionResult:
        report_type = config.report_type
        if report_type not in reports.REPORT_TYPES:
            return ExecutionResult.failure(f"Unknown report type: {report_type}")

        start = end = None
        try:
            if report_type == "task_summary":
                end = _utc_naive(config.end_date) if config.end_date else datetime.utcnow()
                start = _utc_naive(config.start_date) if config.start_date else end - REPORT_DEFAULT_RANGE
                tasks = await self.store.list_tasks_for_user(task.user_id, start, end)
                data = reports.build_task_summary(tasks, start, end)
            elif report_type == "execution_stats":
                executions = await self.store.list_executions_for_user(task.user_id, config.limit)
                data = reports.build_execution_stats(executions)
            else:
                messages = await self.store.list_inbound_messages_for_user(task.user_id, config.limit)
                data = reports.build_webhook_activity(messages)
        except Exception as e:
            logger.error(f"Report generation failed | task_id={task.id} | report_type={report_type} | error={e}")
            return ExecutionResult.failure(f"Report generation failed: {e}")

        title = reports.report_title(report_type, start, end)

        if config.send_notification and task.source_webhook_id:
            try:
                await self.messaging.enqueue(OutboundMessageRequest(
                    webhook_id=task.source_webhook_id,
                    user_id=task.user_id,
                    task_id=task.id,
                    conversation_id=task.conversation_id,
                    message_type="task_update",
                    content=f"{title}\n\n{reports.format_report_summary(report_type, data)}",
                    recipient=config.recipient or "owner",
                ))
            except Exception as e:
                logger.error(f"Report notification failed | task_id={task.id} | error={e}")

        return ExecutionResult(
            success=True,
            output={
                "reportType": report_type,
                "reportTitle": title,
                "generatedAt": datetime.utcnow().isoformat(),
                "data": data,
            }
        )

    async def custom(self, task: Task, config: TaskConfig, execution_id: int) -> ExecutionResult:
        return ExecutionResult(success=True, output={"message": "Custom task completed", "taskId": task.id})
