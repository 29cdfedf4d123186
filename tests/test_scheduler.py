# tests/test_scheduler.py
"""
Scheduler pass tests

Tests:
1. Only bot-assigned, pending/queued, due tasks not awaiting review are selected
2. Selected tasks run with triggered_by="scheduled" and counts are returned
3. batch_size limits a pass
4. max_concurrency bounds parallel executions
5. A failing selection query returns zero counts with the error
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from taskengine.executor import ExecutionResult
from taskengine.scheduler import process_pending_tasks


class RecordingService:
    """Stands in for TaskExecutionService; tracks calls and peak concurrency"""

    def __init__(self, failing_ids=(), delay: float = 0.0):
        self.failing_ids = set(failing_ids)
        self.delay = delay
        self.calls = []
        self.running = 0
        self.peak = 0

    async def execute_task(self, task_id, triggered_by="automatic"):
        self.calls.append((task_id, triggered_by))
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.running -= 1
        if task_id in self.failing_ids:
            return ExecutionResult.failure("boom")
        return ExecutionResult(success=True)


# =============================================================================
# Test: Selection
# =============================================================================

class TestSelection:

    @pytest.mark.asyncio
    async def test_filters(self, store, make_task):
        now = datetime.utcnow()
        due = make_task(title="due")
        queued = make_task(title="queued", status="queued")
        past = make_task(title="past", scheduled_for=now - timedelta(minutes=5))
        make_task(title="future", scheduled_for=now + timedelta(hours=1))
        make_task(title="human", assigned_to_bot=False)
        make_task(title="review", requires_human_review=True)
        make_task(title="running", status="in_progress")
        make_task(title="done", status="completed")
        make_task(title="failed", status="failed")

        tasks = await store.list_pending_tasks(now, 50)

        assert [t.id for t in tasks] == [due.id, queued.id, past.id]

    @pytest.mark.asyncio
    async def test_batch_size(self, store, make_task):
        for _ in range(5):
            make_task()

        service = RecordingService()
        summary = await process_pending_tasks(service, store, batch_size=2)

        assert summary == {"processed": 2, "success": 2, "failed": 0}
        assert len(service.calls) == 2


# =============================================================================
# Test: Scheduler Pass
# =============================================================================

class TestSchedulerPass:

    @pytest.mark.asyncio
    async def test_counts_and_trigger(self, store, make_task):
        first = make_task()
        second = make_task()
        service = RecordingService(failing_ids={second.id})

        summary = await process_pending_tasks(service, store)

        assert summary == {"processed": 2, "success": 1, "failed": 1}
        assert service.calls == [(first.id, "scheduled"), (second.id, "scheduled")]

    @pytest.mark.asyncio
    async def test_nothing_due(self, store):
        summary = await process_pending_tasks(RecordingService(), store)
        assert summary == {"processed": 0, "success": 0, "failed": 0}

    @pytest.mark.asyncio
    async def test_sequential_by_default(self, store, make_task):
        for _ in range(3):
            make_task()
        service = RecordingService(delay=0.01)

        await process_pending_tasks(service, store)

        assert service.peak == 1

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self, store, make_task):
        for _ in range(6):
            make_task()
        service = RecordingService(delay=0.02)

        summary = await process_pending_tasks(service, store, batch_size=10, max_concurrency=3)

        assert summary["processed"] == 6
        assert service.peak == 3

    @pytest.mark.asyncio
    async def test_store_failure(self):
        store = AsyncMock()
        store.list_pending_tasks.side_effect = RuntimeError("database unavailable")
        service = RecordingService()

        summary = await process_pending_tasks(service, store)

        assert summary == {"processed": 0, "success": 0, "failed": 0, "error": "database unavailable"}
        assert service.calls == []


# =============================================================================
# Test: End to end through the execution service
# =============================================================================

@pytest.mark.integration
class TestSchedulerWithService:

    @pytest.mark.asyncio
    async def test_runs_due_tasks(self, service, make_task, db_rows):
        ok = make_task()
        bad = make_task(task_type="api_call", execution_config={})

        summary = await service.process_pending_tasks(batch_size=10, max_concurrency=1)

        assert summary == {"processed": 2, "success": 1, "failed": 1}
        [execution] = db_rows.executions(ok.id)
        assert execution.triggered_by == "scheduled"
        assert db_rows.executions(bad.id) == []
        assert db_rows.task(bad.id).status == "pending"
