# tests/test_automation_adapter.py
"""
Automation adapter tests

Tests:
1. Step normalization accepts the three step syntaxes
2. Session lifecycle order: create -> debug -> on_created -> attach -> teardown
3. Teardown happens exactly once on success, step failure and attach failure
4. continueOnError records the error and keeps going
5. Screenshot capture failures never fail a step
6. Session creation is retried and counted by the browserbase breaker
"""

import base64
from pathlib import Path

import httpx
import pytest
from pydantic import ValidationError

from taskengine.automation import AutomationAdapter, BrowserbaseDriver, normalize_step, normalize_steps
from taskengine.errors import AutomationError, AutomationStepError, CircuitOpenError
from taskengine.resilience import CircuitBreakerRegistry, RetryOptions

from conftest import FakeController, FakeDriver


# =============================================================================
# Test: Step Normalization
# =============================================================================

class TestStepNormalization:

    def test_flat_step(self):
        step = normalize_step({"type": "navigate", "url": "https://example.com"})
        assert step.type == "navigate"
        assert step.url == "https://example.com"

    def test_nested_config_step(self):
        step = normalize_step({"type": "click", "config": {"selector": "#go"}, "continueOnError": True})
        assert step.selector == "#go"
        assert step.continue_on_error is True

    def test_browser_action_step(self):
        step = normalize_step({"action": "type", "selector": "#q", "value": "hello", "waitFor": "#results"})
        assert step.type == "type"
        assert step.value == "hello"

    def test_wait_duration_alias(self):
        assert normalize_step({"type": "wait", "duration": 250}).duration_ms == 250
        assert normalize_step({"type": "wait"}).duration_ms == 1000

    def test_extract_defaults_instruction(self):
        assert normalize_step({"type": "extract"}).instruction

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            normalize_step({"type": "hover", "selector": "#x"})

    def test_missing_required_field_rejected(self):
        with pytest.raises(ValidationError):
            normalize_step({"type": "navigate"})
        with pytest.raises(ValidationError):
            normalize_step({"type": "type", "selector": "#q"})


# =============================================================================
# Test: Session Lifecycle
# =============================================================================

class TestSessionLifecycle:

    @pytest.mark.asyncio
    async def test_side_channel_before_steps_and_single_teardown(self, fake_driver, automation):
        seen = []

        async def on_created(session_id, debug_url):
            seen.append((session_id, debug_url, list(fake_driver.events)))

        async with automation.session(on_created=on_created) as session:
            result = await automation.run_steps(session, normalize_steps([
                {"type": "navigate", "url": "https://example.com"},
                {"type": "extract", "instruction": "title"},
            ]))

        assert seen == [("sess-1", "https://debug.test/sess-1", ["create", "debug"])]
        assert fake_driver.events == ["create", "debug", "attach"]
        assert fake_driver.controller.close_calls == 1
        assert fake_driver.released == []
        assert result.steps[1] == {"action": "extract", "data": {"title": "Example"}}

    @pytest.mark.asyncio
    async def test_teardown_once_when_step_fails(self, registry, fast_retry, tmp_path):
        controller = FakeController(failing_steps={1: RuntimeError("element not found")})
        driver = FakeDriver(controller)
        adapter = AutomationAdapter(driver, registry, fast_retry, screenshot_dir=str(tmp_path))
        steps = normalize_steps([
            {"type": "navigate", "url": "https://example.com"},
            {"type": "click", "selector": "#missing"},
            {"type": "extract"},
        ])

        with pytest.raises(AutomationStepError) as exc_info:
            async with adapter.session() as session:
                await adapter.run_steps(session, steps)

        assert exc_info.value.step_index == 1
        assert len(controller.calls) == 2
        assert controller.close_calls == 1

    @pytest.mark.asyncio
    async def test_release_when_attach_fails(self, registry, fast_retry, tmp_path):
        class AttachFails(FakeDriver):
            async def attach(self, session_id):
                raise AutomationError("attach refused", status_code=400)

        driver = AttachFails()
        adapter = AutomationAdapter(driver, registry, fast_retry, screenshot_dir=str(tmp_path))

        with pytest.raises(AutomationError):
            async with adapter.session():
                pass

        assert driver.released == ["sess-1"]

    @pytest.mark.asyncio
    async def test_teardown_error_does_not_mask_result(self, registry, fast_retry, tmp_path):
        class CloseFails(FakeController):
            async def close(self):
                self.close_calls += 1
                raise RuntimeError("end failed")

        controller = CloseFails()
        adapter = AutomationAdapter(FakeDriver(controller), registry, fast_retry, screenshot_dir=str(tmp_path))

        async with adapter.session() as session:
            result = await adapter.run_steps(session, normalize_steps([{"type": "wait", "durationMs": 0}]))

        assert result.steps == [{"action": "wait"}]
        assert controller.close_calls == 1


# =============================================================================
# Test: Step Execution
# =============================================================================

class TestRunSteps:

    @pytest.mark.asyncio
    async def test_continue_on_error(self, registry, fast_retry, tmp_path):
        controller = FakeController(failing_steps={1: RuntimeError("no such element")})
        adapter = AutomationAdapter(FakeDriver(controller), registry, fast_retry, screenshot_dir=str(tmp_path))
        steps = normalize_steps([
            {"type": "navigate", "url": "https://example.com"},
            {"type": "click", "selector": "#x", "continueOnError": True},
            {"type": "extract", "instruction": "title"},
        ])

        async with adapter.session() as session:
            result = await adapter.run_steps(session, steps)

        assert len(result.steps) == 3
        assert result.steps[1] == {"action": "click", "error": "no such element"}
        assert result.steps[2]["action"] == "extract"

    @pytest.mark.asyncio
    async def test_screenshots_saved(self, automation, tmp_path):
        steps = normalize_steps([{"type": "navigate", "url": "https://example.com", "screenshot": True}])

        async with automation.session() as session:
            result = await automation.run_steps(session, steps)

        assert len(result.screenshots) == 1
        path = Path(result.screenshots[0])
        assert path.parent == tmp_path
        assert path.read_bytes() == b"\x89PNG fake"

    @pytest.mark.asyncio
    async def test_screenshot_failure_ignored(self, registry, fast_retry, tmp_path):
        controller = FakeController(screenshot_error=RuntimeError("capture failed"))
        adapter = AutomationAdapter(FakeDriver(controller), registry, fast_retry, screenshot_dir=str(tmp_path))
        steps = normalize_steps([{"type": "navigate", "url": "https://example.com", "screenshot": True}])

        async with adapter.session() as session:
            result = await adapter.run_steps(session, steps)

        assert result.screenshots == []
        assert result.steps == [{"action": "navigate"}]


# =============================================================================
# Test: Resilience Around Session Creation
# =============================================================================

class TestSessionResilience:

    @pytest.mark.asyncio
    async def test_transient_create_failure_retried(self, tmp_path):
        request = httpx.Request("POST", "https://bb.test/sessions")
        driver = FakeDriver(create_errors=[httpx.ConnectError("reset", request=request)])
        registry = CircuitBreakerRegistry()
        adapter = AutomationAdapter(driver, registry, RetryOptions(initial_delay_ms=1, jitter=0), str(tmp_path))

        async with adapter.session() as session:
            assert session.session_id == "sess-2"

        assert driver.create_calls == 2
        assert registry.get("browserbase").failure_count == 0

    @pytest.mark.asyncio
    async def test_open_breaker_blocks_session(self, tmp_path):
        driver = FakeDriver()
        registry = CircuitBreakerRegistry()
        await registry.get("browserbase").force_open()
        adapter = AutomationAdapter(driver, registry, RetryOptions(initial_delay_ms=1), str(tmp_path))

        with pytest.raises(CircuitOpenError):
            async with adapter.session():
                pass

        assert driver.create_calls == 0


# =============================================================================
# Test: Browserbase / Stagehand HTTP client
# =============================================================================

class TestBrowserbaseDriver:

    @pytest.mark.asyncio
    async def test_session_lifecycle_requests(self, settings):
        requests = []

        def handler(request: httpx.Request):
            requests.append((request.method, request.url.path))
            path = request.url.path
            if path.endswith("/sessions") and request.method == "POST":
                return httpx.Response(201, json={"id": "bb-1"})
            if path.endswith("/debug"):
                return httpx.Response(200, json={"debuggerFullscreenUrl": "https://live.test/bb-1"})
            if path.endswith("/screenshot"):
                return httpx.Response(200, json={"data": base64.b64encode(b"img").decode()})
            return httpx.Response(200, json={})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        driver = BrowserbaseDriver(settings, client)

        info = await driver.create_session()
        debug_url = await driver.get_session_debug_info(info.session_id)
        controller = await driver.attach(info.session_id)
        step_result = await controller.run(normalize_step({"type": "screenshot"}))
        await controller.close()
        await controller.close()

        assert info.session_id == "bb-1"
        assert debug_url == "https://live.test/bb-1"
        assert base64.b64decode(step_result["data"]) == b"img"
        assert requests[-2][1].endswith("/sessions/bb-1/end")
        assert requests[-1] == ("POST", "/v1/sessions/bb-1")
        assert sum(1 for _, path in requests if path.endswith("/end")) == 1

    @pytest.mark.asyncio
    async def test_http_error_carries_status(self, settings):
        client = httpx.AsyncClient(transport=httpx.MockTransport(
            lambda request: httpx.Response(503, json={"message": "overloaded"})
        ))
        driver = BrowserbaseDriver(settings, client)

        with pytest.raises(AutomationError) as exc_info:
            await driver.create_session()

        assert exc_info.value.status_code == 503
        assert "overloaded" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_api_key(self, settings):
        settings.BROWSERBASE_API_KEY = None
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))

        with pytest.raises(AutomationError) as exc_info:
            await BrowserbaseDriver(settings, client).create_session()

        assert "not configured" in exc_info.value.message
