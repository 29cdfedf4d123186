# taskengine/automation/steps.py
"""
Automation step model.

Tasks describe browser work as an ordered list of steps. Three syntaxes are
accepted and normalized into AutomationStep:

    {"type": "navigate", "url": "https://example.com"}
    {"type": "navigate", "config": {"url": "https://example.com"}}
    {"action": "click", "selector": "#submit"}          # browserActions form
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

StepType = Literal["navigate", "click", "type", "extract", "wait", "screenshot"]

DEFAULT_EXTRACT_INSTRUCTION = "Extract the main content"


class AutomationStep(BaseModel):
    """One browser action; executed strictly in declaration order"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: StepType
    url: Optional[str] = None
    selector: Optional[str] = None
    instruction: Optional[str] = None
    value: Optional[str] = None
    duration_ms: int = Field(default=1000, alias="durationMs", ge=0)

    continue_on_error: bool = Field(default=False, alias="continueOnError")
    screenshot: bool = False

    @model_validator(mode="after")
    def check_required_fields(self):
        if self.type == "navigate" and not self.url:
            raise ValueError("navigate step requires url")
        if self.type == "click" and not (self.selector or self.instruction):
            raise ValueError("click step requires selector or instruction")
        if self.type == "type" and (not self.selector or self.value is None):
            raise ValueError("type step requires selector and value")
        if self.type == "extract" and not self.instruction:
            self.instruction = DEFAULT_EXTRACT_INSTRUCTION
        return self


def normalize_step(raw: Dict[str, Any]) -> AutomationStep:
    """Build an AutomationStep from any of the accepted step syntaxes"""
    data = dict(raw)

    nested = data.pop("config", None)
    if isinstance(nested, dict):
        data = {**nested, **data}

    if "type" not in data and "action" in data:
        data["type"] = data.pop("action")

    if "duration" in data and "durationMs" not in data and "duration_ms" not in data:
        data["durationMs"] = data.pop("duration")

    return AutomationStep.model_validate(data)


def normalize_steps(raw_steps: List[Dict[str, Any]]) -> List[AutomationStep]:
    return [normalize_step(raw) for raw in raw_steps]
