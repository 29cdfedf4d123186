# tests/test_store.py
"""
SqlAlchemyTaskStore tests

Tests:
1. Conditional task updates only apply while the status matches
2. Execution updates are refused once the record is terminal
3. Execution history is newest first
4. Report queries are scoped to the user
"""

from datetime import datetime, timedelta

import pytest


class TestTaskUpdates:

    @pytest.mark.asyncio
    async def test_conditional_update(self, store, make_task, db_rows):
        task = make_task()

        assert await store.update_task(task.id, {"status": "in_progress"}, expected_status="pending") is True
        assert await store.update_task(task.id, {"status": "completed"}, expected_status="pending") is False
        assert db_rows.task(task.id).status == "in_progress"

    @pytest.mark.asyncio
    async def test_unconditional_update(self, store, make_task, db_rows):
        task = make_task(status="in_progress")
        assert await store.update_task(task.id, {"status": "cancelled"}) is True
        assert db_rows.task(task.id).status == "cancelled"

    @pytest.mark.asyncio
    async def test_missing_task(self, store):
        assert await store.get_task(12345) is None
        assert await store.update_task(12345, {"status": "failed"}) is False


class TestExecutionRecords:

    @pytest.mark.asyncio
    async def test_updates_only_while_running(self, store, make_task):
        task = make_task()
        execution = await store.create_execution(task_id=task.id, triggered_by="manual", attempt_number=1)

        assert execution.status == "running"
        assert await store.update_execution(execution.id, {"browser_session_id": "s-1"}) is True
        assert await store.update_execution(execution.id, {"status": "success"}) is True
        assert await store.update_execution(execution.id, {"status": "failed"}) is False

    @pytest.mark.asyncio
    async def test_history_newest_first(self, store, make_task):
        task = make_task()
        first = await store.create_execution(task_id=task.id, triggered_by="scheduled", attempt_number=1)
        second = await store.create_execution(task_id=task.id, triggered_by="scheduled", attempt_number=2)

        history = await store.list_executions(task.id)

        assert [e.id for e in history] == [second.id, first.id]


class TestReportQueries:

    @pytest.mark.asyncio
    async def test_scoped_to_user_and_range(self, store, make_task):
        now = datetime.utcnow()
        mine = make_task(user_id=1)
        make_task(user_id=2)
        make_task(user_id=1, created_at=now - timedelta(days=90))

        tasks = await store.list_tasks_for_user(1, now - timedelta(days=30), now + timedelta(minutes=1))

        assert [t.id for t in tasks] == [mine.id]

    @pytest.mark.asyncio
    async def test_executions_for_user(self, store, make_task):
        mine = make_task(user_id=1)
        theirs = make_task(user_id=2)
        await store.create_execution(task_id=mine.id, triggered_by="manual", attempt_number=1)
        await store.create_execution(task_id=theirs.id, triggered_by="manual", attempt_number=1)

        executions = await store.list_executions_for_user(1, limit=10)

        assert [e.task_id for e in executions] == [mine.id]
