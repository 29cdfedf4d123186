"""
pytest configuration for the task engine test suite
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from taskengine.automation import (
    AutomationAdapter,
    AutomationController,
    AutomationDriver,
    AutomationStep,
    SessionInfo,
)
from taskengine.config import Settings
from taskengine.executor import TaskExecutionService
from taskengine.messaging import DatabaseMessageQueue
from taskengine.models import Base, InboundMessage, OutboundMessage, Task, TaskExecution, UserWebhook
from taskengine.resilience import CircuitBreakerRegistry, RetryOptions
from taskengine.store import SqlAlchemyTaskStore


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "asyncio: mark test as async")


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite database per test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlAlchemyTaskStore(session_factory)


@pytest.fixture
def messaging(session_factory):
    return DatabaseMessageQueue(session_factory)


@pytest.fixture
def make_task(session_factory):
    """Insert a task row; returns the detached Task"""

    def _make(**fields) -> Task:
        values = {
            "user_id": 1,
            "title": "Test task",
            "task_type": "custom",
            "status": "pending",
            "assigned_to_bot": True,
        }
        values.update(fields)
        db = session_factory()
        try:
            task = Task(**values)
            db.add(task)
            db.commit()
            db.refresh(task)
            return task
        finally:
            db.close()

    return _make


@pytest.fixture
def make_webhook(session_factory):
    def _make(**fields) -> UserWebhook:
        values = {"user_id": 1, "name": "SMS channel", "outbound_enabled": True}
        values.update(fields)
        db = session_factory()
        try:
            webhook = UserWebhook(**values)
            db.add(webhook)
            db.commit()
            db.refresh(webhook)
            return webhook
        finally:
            db.close()

    return _make


@pytest.fixture
def db_rows(session_factory):
    """Read helpers for assertions"""

    class Rows:
        def task(self, task_id: int) -> Task:
            db = session_factory()
            try:
                return db.query(Task).filter(Task.id == task_id).one()
            finally:
                db.close()

        def executions(self, task_id: Optional[int] = None) -> List[TaskExecution]:
            db = session_factory()
            try:
                query = db.query(TaskExecution)
                if task_id is not None:
                    query = query.filter(TaskExecution.task_id == task_id)
                return query.order_by(TaskExecution.id).all()
            finally:
                db.close()

        def outbound(self) -> List[OutboundMessage]:
            db = session_factory()
            try:
                return db.query(OutboundMessage).order_by(OutboundMessage.id).all()
            finally:
                db.close()

        def add_inbound(self, **fields) -> InboundMessage:
            db = session_factory()
            try:
                row = InboundMessage(**fields)
                db.add(row)
                db.commit()
                db.refresh(row)
                return row
            finally:
                db.close()

    return Rows()


# =============================================================================
# Settings / resilience
# =============================================================================

@pytest.fixture
def settings():
    s = Settings()
    s.GHL_API_KEY = "ghl-test-key"
    s.GHL_LOCATION_ID = "loc-1"
    s.GHL_API_URL = "https://ghl.test/v1"
    s.BROWSERBASE_API_KEY = "bb-test-key"
    s.BROWSERBASE_PROJECT_ID = "proj-1"
    s.API_CALL_TIMEOUT_MS = 30000
    return s


@pytest.fixture
def fast_retry():
    return RetryOptions(max_attempts=3, initial_delay_ms=1, max_delay_ms=5, jitter=0)


@pytest.fixture
def registry():
    return CircuitBreakerRegistry()


# =============================================================================
# HTTP
# =============================================================================

class ScriptedTransport(httpx.MockTransport):
    """MockTransport with a swappable handler that keeps every request it served"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._handler = lambda request: httpx.Response(200, json={"ok": True})
        super().__init__(self._dispatch)

    def respond_with(self, handler):
        self._handler = handler

    def _dispatch(self, request: httpx.Request):
        self.requests.append(request)
        return self._handler(request)


@pytest.fixture
def http_transport():
    return ScriptedTransport()


@pytest.fixture
def http_client(http_transport):
    return httpx.AsyncClient(transport=http_transport)


# =============================================================================
# Automation fakes
# =============================================================================

class FakeController(AutomationController):
    def __init__(self, failing_steps: Optional[Dict[int, Exception]] = None, screenshot_error: Optional[Exception] = None):
        self.failing_steps = failing_steps or {}
        self.screenshot_error = screenshot_error
        self.calls: List[AutomationStep] = []
        self.close_calls = 0

    async def run(self, step: AutomationStep) -> Dict[str, Any]:
        index = len(self.calls)
        self.calls.append(step)
        if index in self.failing_steps:
            raise self.failing_steps[index]
        if step.type == "extract":
            return {"action": "extract", "data": {"title": "Example"}}
        return {"action": step.type}

    async def screenshot(self) -> bytes:
        if self.screenshot_error:
            raise self.screenshot_error
        return b"\x89PNG fake"

    async def close(self) -> None:
        self.close_calls += 1


class FakeDriver(AutomationDriver):
    def __init__(self, controller: Optional[FakeController] = None, create_errors: Optional[List[Exception]] = None):
        self.controller = controller or FakeController()
        self.create_errors = list(create_errors or [])
        self.create_calls = 0
        self.attach_calls = 0
        self.released: List[str] = []
        self.events: List[str] = []

    async def create_session(self, config=None) -> SessionInfo:
        self.create_calls += 1
        self.events.append("create")
        if self.create_errors:
            raise self.create_errors.pop(0)
        return SessionInfo(session_id=f"sess-{self.create_calls}")

    async def get_session_debug_info(self, session_id: str) -> Optional[str]:
        self.events.append("debug")
        return f"https://debug.test/{session_id}"

    async def attach(self, session_id: str) -> AutomationController:
        self.attach_calls += 1
        self.events.append("attach")
        return self.controller

    async def release_session(self, session_id: str) -> None:
        self.events.append("release")
        self.released.append(session_id)


@pytest.fixture
def fake_driver():
    return FakeDriver()


@pytest.fixture
def automation(fake_driver, registry, fast_retry, tmp_path):
    return AutomationAdapter(fake_driver, registry, fast_retry, screenshot_dir=str(tmp_path))


@pytest.fixture
def service(store, messaging, automation, http_client, registry, settings, fast_retry):
    return TaskExecutionService(
        store=store,
        messaging=messaging,
        automation=automation,
        http_client=http_client,
        registry=registry,
        settings=settings,
        retry_options=fast_retry,
    )


@pytest.fixture
def utcnow():
    return datetime.utcnow()
