# taskengine/automation/driver.py
"""
Browser automation driver contract and the Browserbase / Stagehand client.

The driver is a remote actor: sessions are created on Browserbase, an
automation controller (Stagehand) is attached to the session, steps are
issued as natural-language or selector actions, and the session is released
when the controller closes.

Transport failures surface as httpx exceptions and HTTP error statuses as
AutomationError(status_code=...), so the resilience layer can tell transient
failures (5xx, 429, network) from permanent ones.
"""

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from taskengine.automation.steps import AutomationStep
from taskengine.errors import AutomationError

logger = logging.getLogger("taskengine.automation.driver")


@dataclass
class SessionInfo:
    """Remote browser session handle"""
    session_id: str
    debug_url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class AutomationController(ABC):
    """Automation controller attached to one remote session"""

    @abstractmethod
    async def run(self, step: AutomationStep) -> Dict[str, Any]:
        """Execute one step and return its result"""

    @abstractmethod
    async def screenshot(self) -> bytes:
        """Capture the current page as PNG bytes"""

    @abstractmethod
    async def close(self) -> None:
        """End automation and release the remote session"""


class AutomationDriver(ABC):
    """Remote browser session lifecycle"""

    @abstractmethod
    async def create_session(self, config: Optional[Dict[str, Any]] = None) -> SessionInfo:
        ...

    @abstractmethod
    async def get_session_debug_info(self, session_id: str) -> Optional[str]:
        """Live-view debug URL for a session"""

    @abstractmethod
    async def attach(self, session_id: str) -> AutomationController:
        ...

    @abstractmethod
    async def release_session(self, session_id: str) -> None:
        ...


def _raise_for_status(response: httpx.Response, action: str, session_id: Optional[str] = None):
    if response.is_success:
        return
    try:
        detail = response.json().get("message") or response.text
    except ValueError:
        detail = response.text
    raise AutomationError(
        message=f"{action} failed ({response.status_code}): {detail}",
        session_id=session_id,
        status_code=response.status_code
    )


# =============================================================================
# Browserbase (session lifecycle)
# =============================================================================

class BrowserbaseDriver(AutomationDriver):
    """Browserbase REST client for session create / debug / release"""

    def __init__(self, settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = client
        self._timeout = httpx.Timeout(30.0)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx async client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient()
        return self._client

    async def close(self) -> None:
        """Close the httpx client"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        if not self.settings.BROWSERBASE_API_KEY:
            raise AutomationError("Browserbase API key not configured")
        return {
            "X-BB-API-Key": self.settings.BROWSERBASE_API_KEY,
            "Content-Type": "application/json",
        }

    async def create_session(self, config: Optional[Dict[str, Any]] = None) -> SessionInfo:
        client = await self._get_client()
        body = {"projectId": self.settings.BROWSERBASE_PROJECT_ID}
        body.update(config or {})

        response = await client.post(
            f"{self.settings.BROWSERBASE_API_URL}/sessions",
            json=body,
            headers=self._headers(),
            timeout=self._timeout
        )
        _raise_for_status(response, "Browserbase session create")

        data = response.json()
        logger.info(f"Browserbase session created | session_id={data['id']}")
        return SessionInfo(session_id=data["id"], raw=data)

    async def get_session_debug_info(self, session_id: str) -> Optional[str]:
        client = await self._get_client()
        response = await client.get(
            f"{self.settings.BROWSERBASE_API_URL}/sessions/{session_id}/debug",
            headers=self._headers(),
            timeout=self._timeout
        )
        _raise_for_status(response, "Browserbase session debug", session_id)
        return response.json().get("debuggerFullscreenUrl")

    async def attach(self, session_id: str) -> AutomationController:
        controller = StagehandController(session_id, self, await self._get_client())
        await controller.start()
        return controller

    async def release_session(self, session_id: str) -> None:
        client = await self._get_client()
        response = await client.post(
            f"{self.settings.BROWSERBASE_API_URL}/sessions/{session_id}",
            json={"projectId": self.settings.BROWSERBASE_PROJECT_ID, "status": "REQUEST_RELEASE"},
            headers=self._headers(),
            timeout=self._timeout
        )
        _raise_for_status(response, "Browserbase session release", session_id)
        logger.info(f"Browserbase session released | session_id={session_id}")


# =============================================================================
# Stagehand (automation controller)
# =============================================================================

class StagehandController(AutomationController):
    """Stagehand API controller bound to an existing Browserbase session"""

    def __init__(self, session_id: str, driver: BrowserbaseDriver, client: httpx.AsyncClient):
        self.session_id = session_id
        self.driver = driver
        self.settings = driver.settings
        self._client = client
        self._timeout = httpx.Timeout(120.0)
        self._closed = False

    def _headers(self) -> Dict[str, str]:
        headers = {
            "x-bb-api-key": self.settings.BROWSERBASE_API_KEY or "",
            "x-bb-project-id": self.settings.BROWSERBASE_PROJECT_ID or "",
            "x-model-name": self.settings.STAGEHAND_MODEL,
            "Content-Type": "application/json",
        }
        if self.settings.MODEL_API_KEY:
            headers["x-model-api-key"] = self.settings.MODEL_API_KEY
        return headers

    async def _post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self._client.post(
            f"{self.settings.STAGEHAND_API_URL}/sessions/{self.session_id}{path}",
            json=body or {},
            headers=self._headers(),
            timeout=self._timeout
        )
        _raise_for_status(response, f"Stagehand {path.lstrip('/')}", self.session_id)
        return response.json() if response.content else {}

    async def start(self) -> None:
        response = await self._client.post(
            f"{self.settings.STAGEHAND_API_URL}/sessions/start",
            json={"browserbaseSessionID": self.session_id, "modelName": self.settings.STAGEHAND_MODEL},
            headers=self._headers(),
            timeout=self._timeout
        )
        _raise_for_status(response, "Stagehand attach", self.session_id)
        logger.debug(f"Stagehand attached | session_id={self.session_id}")

    async def run(self, step: AutomationStep) -> Dict[str, Any]:
        if step.type == "navigate":
            await self._post("/navigate", {"url": step.url})
            return {"action": "navigate", "url": step.url}

        if step.type == "click":
            instruction = step.instruction or f"Click the element matching selector '{step.selector}'"
            await self._post("/act", {"action": instruction})
            return {"action": "click", "selector": step.selector}

        if step.type == "type":
            instruction = f"Type '{step.value}' into the element matching selector '{step.selector}'"
            await self._post("/act", {"action": instruction})
            return {"action": "type", "selector": step.selector}

        if step.type == "extract":
            data = await self._post("/extract", {"instruction": step.instruction})
            return {"action": "extract", "data": data.get("data", data)}

        if step.type == "wait":
            await asyncio.sleep(step.duration_ms / 1000)
            return {"action": "wait", "duration": step.duration_ms}

        if step.type == "screenshot":
            image = await self.screenshot()
            return {"action": "screenshot", "data": base64.b64encode(image).decode("ascii")}

        return {"action": step.type, "error": "Unknown action"}

    async def screenshot(self) -> bytes:
        data = await self._post("/screenshot")
        return base64.b64decode(data.get("data", ""))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._post("/end")
        finally:
            await self.driver.release_session(self.session_id)
