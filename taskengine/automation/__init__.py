# Browser automation: step model, driver contract, resilience-wrapped adapter
from .steps import AutomationStep, normalize_step, normalize_steps
from .driver import (
    AutomationController,
    AutomationDriver,
    BrowserbaseDriver,
    SessionInfo,
    StagehandController,
)
from .adapter import AutomationAdapter, AutomationSession, StepRunResult

__all__ = [
    "AutomationStep",
    "normalize_step",
    "normalize_steps",
    "AutomationController",
    "AutomationDriver",
    "BrowserbaseDriver",
    "SessionInfo",
    "StagehandController",
    "AutomationAdapter",
    "AutomationSession",
    "StepRunResult",
]
