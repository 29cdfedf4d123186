# taskengine/executor/result.py
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ExecutionResult:
    """Outcome of one execution attempt; failures are data, not exceptions"""
    success: bool
    output: Optional[Any] = None
    error: Optional[str] = None
    duration: int = 0  # milliseconds
    screenshots: List[str] = field(default_factory=list)
    execution_id: Optional[int] = None

    @classmethod
    def failure(cls, error: str, **kwargs) -> "ExecutionResult":
        return cls(success=False, error=error, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "duration": self.duration,
            "screenshots": list(self.screenshots),
            "executionId": self.execution_id,
        }
