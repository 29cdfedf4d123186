# taskengine/automation/adapter.py
"""
Automation Driver Adapter

Translates "run these steps in a browser" into the driver session lifecycle:

    create session -> read debug url -> attach controller -> run steps -> tear down

Session creation, debug lookup and attach go through the shared
"browserbase" circuit breaker with retries. Individual steps are not retried
(a repeated click or type is not idempotent). Teardown is structural: the
session() context manager releases the session exactly once whatever the
body raises.
"""

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from taskengine.automation.driver import AutomationController, AutomationDriver
from taskengine.automation.steps import AutomationStep
from taskengine.errors import AutomationStepError
from taskengine.resilience import CircuitBreakerRegistry, RetryOptions, guarded_call

logger = logging.getLogger("taskengine.automation")

SessionCreatedCallback = Callable[[str, Optional[str]], Awaitable[None]]


@dataclass
class AutomationSession:
    session_id: str
    debug_url: Optional[str]
    controller: AutomationController


@dataclass
class StepRunResult:
    steps: List[Dict[str, Any]] = field(default_factory=list)
    screenshots: List[str] = field(default_factory=list)


class AutomationAdapter:
    """Runs automation steps on a freshly created remote browser session"""

    DEPENDENCY = "browserbase"

    def __init__(
        self,
        driver: AutomationDriver,
        registry: CircuitBreakerRegistry,
        retry_options: Optional[RetryOptions] = None,
        screenshot_dir: str = "/tmp"
    ):
        self.driver = driver
        self.registry = registry
        self.retry_options = retry_options or RetryOptions()
        self.screenshot_dir = Path(screenshot_dir)

    async def _guarded(self, operation: Callable[[], Awaitable[Any]], name: str) -> Any:
        options = replace(self.retry_options, operation_name=name)
        return await guarded_call(self.registry, self.DEPENDENCY, operation, options)

    @asynccontextmanager
    async def session(
        self,
        config: Optional[Dict[str, Any]] = None,
        on_created: Optional[SessionCreatedCallback] = None
    ) -> AsyncIterator[AutomationSession]:
        """
        Scoped remote session.

        on_created(session_id, debug_url) runs right after the session exists,
        before any step, so observers can follow the live session.
        """
        info = await self._guarded(lambda: self.driver.create_session(config), "driver.create_session")
        session_id = info.session_id
        controller: Optional[AutomationController] = None

        try:
            debug_url = info.debug_url or await self._guarded(
                lambda: self.driver.get_session_debug_info(session_id),
                "driver.get_session_debug_info"
            )
            if on_created is not None:
                await on_created(session_id, debug_url)

            controller = await self._guarded(lambda: self.driver.attach(session_id), "driver.attach")
            logger.info(f"Automation session ready | session_id={session_id}")

            yield AutomationSession(session_id=session_id, debug_url=debug_url, controller=controller)
        finally:
            await self._teardown(session_id, controller)

    async def _teardown(self, session_id: str, controller: Optional[AutomationController]):
        try:
            if controller is not None:
                await controller.close()
            else:
                await self.driver.release_session(session_id)
            logger.info(f"Automation session torn down | session_id={session_id}")
        except Exception as e:
            logger.error(f"Automation session teardown failed | session_id={session_id} | error={e}")

    async def run_steps(self, session: AutomationSession, steps: List[AutomationStep]) -> StepRunResult:
        """
        Execute steps sequentially.

        A failing step aborts the run with AutomationStepError unless it is
        flagged continue_on_error, in which case its error is recorded and the
        next step runs.
        """
        result = StepRunResult()

        for index, step in enumerate(steps):
            try:
                step_result = await session.controller.run(step)
            except Exception as e:
                if not step.continue_on_error:
                    logger.error(
                        f"Step {index + 1}/{len(steps)} ({step.type}) failed, aborting | "
                        f"session_id={session.session_id} | error={e}"
                    )
                    raise AutomationStepError(
                        message=f"Step {index + 1} ({step.type}) failed: {e}",
                        step_index=index,
                        step_type=step.type,
                        original_error=e
                    ) from e

                logger.warning(
                    f"Step {index + 1}/{len(steps)} ({step.type}) failed, continuing | "
                    f"session_id={session.session_id} | error={e}"
                )
                result.steps.append({"action": step.type, "error": str(e)})
                continue

            result.steps.append(step_result)

            if step.screenshot:
                path = await self._capture_screenshot(session, index)
                if path:
                    result.screenshots.append(path)

        return result

    async def _capture_screenshot(self, session: AutomationSession, index: int) -> Optional[str]:
        """Capture and store a screenshot; failures never fail the step"""
        try:
            image = await session.controller.screenshot()
            self.screenshot_dir.mkdir(parents=True, exist_ok=True)
            path = self.screenshot_dir / f"screenshot_{session.session_id}_{index}_{int(time.time() * 1000)}.png"
            path.write_bytes(image)
            return str(path)
        except Exception as e:
            logger.warning(
                f"Screenshot capture failed | session_id={session.session_id} | step={index + 1} | error={e}"
            )
            return None
