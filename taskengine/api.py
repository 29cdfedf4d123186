# taskengine/api.py
"""
Task Engine HTTP API

Thin FastAPI surface over the executor:

    GET  /health                        overall status + circuit breakers
    POST /tasks/{task_id}/execute       manual execution attempt
    GET  /tasks/{task_id}/executions    execution history, newest first
    POST /scheduler/process             one scheduler pass (for an external cron)
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from taskengine.config import get_settings
from taskengine.executor import TaskExecutionService, create_task_execution_service
from taskengine.middleware.correlation import CorrelationIdMiddleware, configure_logging
from taskengine.resilience import CircuitBreakerRegistry, get_circuit_breaker_registry

logger = logging.getLogger("taskengine.api")

app = FastAPI(
    title="Task Engine",
    description="Automated task execution with retries and circuit breakers",
    version="1.0.0"
)
app.add_middleware(CorrelationIdMiddleware)

# Created on first use, closed on shutdown
_service: Optional[TaskExecutionService] = None


def get_task_execution_service() -> TaskExecutionService:
    global _service
    if _service is None:
        _service = create_task_execution_service()
    return _service


def get_registry() -> CircuitBreakerRegistry:
    return get_circuit_breaker_registry()


@app.on_event("shutdown")
async def close_service():
    global _service
    if _service is not None:
        await _service.close()
        _service = None
        logger.info("Task execution service closed")


# =============================================================================
# Response Models
# =============================================================================

class ExecutionResultResponse(BaseModel):
    success: bool
    output: Optional[Any] = None
    error: Optional[str] = None
    duration: int = 0
    screenshots: List[str] = Field(default_factory=list)
    execution_id: Optional[int] = None


class ExecutionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: int
    triggered_by: str
    attempt_number: int
    status: str
    output: Optional[Any] = None
    error: Optional[str] = None
    duration: Optional[int] = None
    screenshots: Optional[List[str]] = None
    browser_session_id: Optional[str] = None
    debug_url: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class SchedulerRunResponse(BaseModel):
    processed: int
    success: int
    failed: int
    error: Optional[str] = None


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/health")
async def health_check(registry: CircuitBreakerRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """Health with every registered breaker; degraded while any is open"""
    return {
        "status": "degraded" if registry.any_open() else "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "circuit_breakers": registry.get_all_status(),
    }


@app.post("/tasks/{task_id}/execute", response_model=ExecutionResultResponse)
async def execute_task(
    task_id: int,
    service: TaskExecutionService = Depends(get_task_execution_service)
):
    result = await service.execute_task(task_id, triggered_by="manual")
    if not result.success and result.execution_id is None and result.error == "Task not found":
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")

    return ExecutionResultResponse(
        success=result.success,
        output=result.output,
        error=result.error,
        duration=result.duration,
        screenshots=result.screenshots,
        execution_id=result.execution_id,
    )


@app.get("/tasks/{task_id}/executions", response_model=List[ExecutionRecord])
async def list_task_executions(
    task_id: int,
    service: TaskExecutionService = Depends(get_task_execution_service)
):
    task = await service.store.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    executions = await service.store.list_executions(task_id)
    return [ExecutionRecord.model_validate(e) for e in executions]


@app.post("/scheduler/process", response_model=SchedulerRunResponse)
async def process_scheduler(service: TaskExecutionService = Depends(get_task_execution_service)):
    summary = await service.process_pending_tasks()
    return SchedulerRunResponse(**summary)


def main():
    import uvicorn

    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(app, host=settings.FASTAPI_HOST, port=settings.FASTAPI_PORT)


if __name__ == "__main__":
    main()
