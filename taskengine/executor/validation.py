# taskengine/executor/validation.py
"""
Execution config validation.

Each task type has one config model; CONFIG_MODELS is the dispatch table.
Field names follow the camelCase keys stored in execution_config, exposed as
snake_case attributes.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Type
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_core import PydanticCustomError

from taskengine.automation.steps import AutomationStep, normalize_steps
from taskengine.errors import TaskValidationError
from taskengine.models import TaskType

# Types that cannot run without an execution_config document
CONFIG_REQUIRED_TYPES = {
    TaskType.browser_automation.value,
    TaskType.api_call.value,
    TaskType.ghl_action.value,
    TaskType.report_generation.value,
}


def _config_error(message: str) -> PydanticCustomError:
    return PydanticCustomError("task_config", "{reason}", {"reason": message})


class TaskConfig(BaseModel):
    # Numeric ids and header values arrive from loosely typed JSON
    model_config = ConfigDict(populate_by_name=True, extra="allow", coerce_numbers_to_str=True)


class BrowserAutomationConfig(TaskConfig):
    automation_steps: Optional[List[Dict[str, Any]]] = Field(default=None, alias="automationSteps")
    browser_actions: Optional[List[Dict[str, Any]]] = Field(default=None, alias="browserActions")
    session_config: Optional[Dict[str, Any]] = Field(default=None, alias="sessionConfig")

    @model_validator(mode="after")
    def check_steps(self):
        raw_steps = self.automation_steps or self.browser_actions
        if not raw_steps:
            raise _config_error("Browser automation requires browserActions or automationSteps")
        try:
            normalize_steps(raw_steps)
        except ValidationError as e:
            first = e.errors()[0]
            raise _config_error(f"Invalid automation step: {first['msg']}")
        return self

    @property
    def steps(self) -> List[AutomationStep]:
        return normalize_steps(self.automation_steps or self.browser_actions)


class ApiCallConfig(TaskConfig):
    api_endpoint: Optional[str] = Field(default=None, alias="apiEndpoint")
    api_method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = Field(default="GET", alias="apiMethod")
    api_payload: Any = Field(default=None, alias="apiPayload")

    auth_type: Optional[Literal["none", "bearer", "api_key", "basic"]] = Field(default=None, alias="authType")
    bearer_token: Optional[str] = Field(default=None, alias="bearerToken")
    api_key_header: Optional[str] = Field(default=None, alias="apiKeyHeader")
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    username: Optional[str] = None
    password: Optional[str] = None
    custom_headers: Dict[str, str] = Field(default_factory=dict, alias="customHeaders")

    timeout: Optional[int] = Field(default=None, gt=0)  # milliseconds

    @field_validator("api_method", mode="before")
    @classmethod
    def upper_method(cls, v):
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_endpoint(self):
        if not self.api_endpoint:
            raise _config_error("API call requires apiEndpoint")
        parsed = urlparse(self.api_endpoint)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise _config_error("Invalid API endpoint URL")
        return self


class GhlActionConfig(TaskConfig):
    ghl_action: Optional[str] = Field(default=None, alias="ghlAction")
    location_id: Optional[str] = Field(default=None, alias="locationId")

    contact_id: Optional[str] = Field(default=None, alias="contactId")
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    email: Optional[str] = None
    phone: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict, alias="customFields")

    message: Optional[str] = None

    pipeline_id: Optional[str] = Field(default=None, alias="pipelineId")
    opportunity_name: Optional[str] = Field(default=None, alias="opportunityName")
    status: str = "open"
    monetary_value: Optional[float] = Field(default=None, alias="monetaryValue")

    tags: List[str] = Field(default_factory=list)
    update_data: Dict[str, Any] = Field(default_factory=dict, alias="updateData")

    @field_validator("tags", mode="before")
    @classmethod
    def wrap_scalar_tags(cls, v):
        if v is None:
            return []
        if isinstance(v, (str, int, float)):
            return [v]
        return v

    @model_validator(mode="after")
    def check_action(self):
        if not self.ghl_action:
            raise _config_error("GHL action requires ghlAction type")
        return self


class NotificationConfig(TaskConfig):
    message: Optional[str] = None
    recipient: Optional[str] = None


class ReminderConfig(TaskConfig):
    reminder_time: Optional[datetime] = Field(default=None, alias="reminderTime")
    reminder_message: Optional[str] = Field(default=None, alias="reminderMessage")
    recipient: Optional[str] = None

    @model_validator(mode="after")
    def check_time(self):
        if self.reminder_time is None:
            raise _config_error("Reminder requires reminderTime")
        return self


class ReportConfig(TaskConfig):
    report_type: Optional[str] = Field(default=None, alias="reportType")
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    limit: int = Field(default=100, gt=0)
    send_notification: bool = Field(default=False, alias="sendNotification")
    recipient: Optional[str] = None

    @model_validator(mode="after")
    def check_report_type(self):
        if not self.report_type:
            raise _config_error("Report generation requires reportType")
        return self


class CustomConfig(TaskConfig):
    pass


CONFIG_MODELS: Dict[str, Type[TaskConfig]] = {
    TaskType.browser_automation.value: BrowserAutomationConfig,
    TaskType.data_extraction.value: BrowserAutomationConfig,
    TaskType.api_call.value: ApiCallConfig,
    TaskType.ghl_action.value: GhlActionConfig,
    TaskType.notification.value: NotificationConfig,
    TaskType.reminder.value: ReminderConfig,
    TaskType.report_generation.value: ReportConfig,
    TaskType.custom.value: CustomConfig,
}


def _format_error(error: Dict[str, Any]) -> str:
    if error["type"] == "task_config":
        return error["msg"]
    location = ".".join(str(part) for part in error["loc"])
    return f"Invalid {location}: {error['msg']}" if location else error["msg"]


def validate_task_config(task_type: str, raw: Optional[Dict[str, Any]]) -> TaskConfig:
    """
    Parse execution_config for task_type.

    Raises TaskValidationError with a user-facing message when the config
    does not have the shape the task type needs. Unknown task types are
    treated as custom.
    """
    if task_type in CONFIG_REQUIRED_TYPES and not raw:
        raise TaskValidationError(
            f"Task type {task_type} requires execution configuration",
            task_type=task_type
        )

    model = CONFIG_MODELS.get(task_type, CustomConfig)
    try:
        return model.model_validate(raw or {})
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        raise TaskValidationError(_format_error(first), task_type=task_type, field=field) from e
