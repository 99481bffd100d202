"""Transport-independent operations shared by the MCP and HTTP front ends.

Every method takes the caller's tab id, returns plain JSON-ready dicts, and
raises ``SessionNotFoundError`` / ``ActionValidationError`` for the two
failures a front end reports differently from an operation error.
"""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Optional

from browser_control.core.action_log import ActionLog, JsonlLogSink
from browser_control.core.actions import execute_action, parse_action
from browser_control.core.controller import BrowserController
from browser_control.core.errors import ActionValidationError, SessionNotFoundError
from browser_control.core.models import Cookie, PageStateOptions, filter_cookies_by_domain
from browser_control.core.session_manager import SessionManager

logger = logging.getLogger("browser_control.service")

STATE_TIERS = ("full", "lite", "compact")


def parse_cookies(raw: Any) -> list[Cookie]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ActionValidationError("cookies must be a list")
    try:
        return [Cookie.from_dict(item) for item in raw]
    except (TypeError, ValueError, AttributeError) as exc:
        raise ActionValidationError(f"Invalid cookie: {exc}") from exc


def _require_tab_id(tab_id: Optional[str]) -> str:
    if not tab_id:
        raise ActionValidationError("tabId is required")
    return tab_id


def _loggable(result: dict[str, Any]) -> dict[str, Any]:
    if isinstance(result.get("data"), str):
        return {**result, "data": f"<{len(result['data'])} base64 chars>"}
    return result


def build_service() -> BrowserControlService:
    """Service wired from the environment, with an optional JSON-lines action log."""
    action_log = ActionLog()
    log_file = os.getenv("BROWSER_CONTROL_LOG_FILE")
    if log_file:
        action_log.subscribe(JsonlLogSink(log_file))
    return BrowserControlService(SessionManager(action_log=action_log), action_log)


class BrowserControlService:
    def __init__(self, manager: SessionManager, action_log: ActionLog | None = None) -> None:
        self.manager = manager
        self.action_log = action_log or ActionLog()

    def _live_controller(self, tab_id: Optional[str], message: str = "No active session") -> BrowserController:
        key = _require_tab_id(tab_id)
        controller = self.manager.get_controller(key)
        if controller is None or not controller.is_launched():
            raise SessionNotFoundError(key, message)
        return controller

    # ─── Sessions ────────────────────────────

    async def create_session(
        self,
        tab_id: Optional[str],
        cookies: Any = None,
        default_url: str | None = None,
        headless: bool | None = None,
        viewport: dict[str, int] | None = None,
    ) -> dict[str, Any]:
        key = _require_tab_id(tab_id)
        parsed = parse_cookies(cookies)
        options = {"headless": headless, "viewport": viewport}
        info = await self.manager.create_session(key, options, parsed, default_url)

        controller = self.manager.get_controller(key)
        live_url = await controller.get_live_view_url() if controller else None
        return {
            **info.to_dict(),
            "liveUrl": live_url,
            "cookiesLoaded": bool(parsed),
            "cookieCount": len(parsed),
        }

    def get_session(self, tab_id: Optional[str]) -> dict[str, Any]:
        key = _require_tab_id(tab_id)
        info = self.manager.get_session_info(key)
        if info is None:
            raise SessionNotFoundError(key)
        return info.to_dict()

    async def close_session(self, tab_id: Optional[str]) -> None:
        await self.manager.close_session(_require_tab_id(tab_id))

    def list_sessions(self) -> dict[str, Any]:
        return {"sessions": [info.to_dict() for info in self.manager.list_sessions()]}

    # ─── Actions & state ─────────────────────

    async def execute_action(self, tab_id: Optional[str], payload: dict[str, Any]) -> dict[str, Any]:
        controller = self._live_controller(tab_id, "No active session. Create one first via create_session")
        action = parse_action(payload)
        name = action.type.value
        self.action_log.log_action(name, payload, session_id=tab_id)
        started = time.monotonic()
        try:
            result = await execute_action(controller, action)
        except Exception as exc:
            self.action_log.log_error(name, exc, session_id=tab_id)
            raise
        duration = int((time.monotonic() - started) * 1000)
        self.action_log.log_response(name, _loggable(result), duration, session_id=tab_id)
        return result

    async def get_state(
        self,
        tab_id: Optional[str],
        tier: str = "full",
        include_iframes: bool = False,
    ) -> dict[str, Any]:
        if tier not in STATE_TIERS:
            raise ActionValidationError(f"Unknown state tier: {tier}")
        controller = self._live_controller(tab_id)
        started = time.monotonic()
        try:
            if tier == "compact":
                state = await controller.get_state_compact()
            elif tier == "lite":
                state = await controller.get_state_lite()
            else:
                state = await controller.get_state(PageStateOptions(include_iframes=include_iframes))
        except Exception as exc:
            self.action_log.log_error("get_state", exc, session_id=tab_id)
            raise
        duration = int((time.monotonic() - started) * 1000)
        self.action_log.log_response("get_state", {"type": tier}, duration, session_id=tab_id)
        return {"success": True, "stateType": tier, "state": state.to_dict()}

    def get_clicks(self, tab_id: Optional[str], since: int | None = None) -> dict[str, Any]:
        controller = self._live_controller(tab_id)
        return {"clicks": [event.to_dict() for event in controller.get_click_events(since)]}

    async def screenshot(self, tab_id: Optional[str]) -> bytes:
        return await self._live_controller(tab_id).screenshot()

    # ─── Cookies ─────────────────────────────

    async def get_cookies(self, tab_id: Optional[str], filter_domain: str | None = None) -> dict[str, Any]:
        controller = self._live_controller(
            tab_id, "No active browser session. Start a browser session first."
        )
        cookies = filter_cookies_by_domain(await controller.get_cookies(), filter_domain)
        return {
            "success": True,
            "cookies": [cookie.to_dict() for cookie in cookies],
            "cookie_count": len(cookies),
            "filter_domain": filter_domain or None,
        }

    async def set_cookies(self, tab_id: Optional[str], cookies: Any, replace: bool = False) -> dict[str, Any]:
        controller = self._live_controller(tab_id)
        parsed = parse_cookies(cookies)
        await controller.set_cookies(parsed, replace=replace)
        return {"success": True, "cookieCount": len(parsed), "replaced": replace}

    # ─── Live view & health ──────────────────

    async def get_live_url(self, tab_id: Optional[str]) -> Optional[str]:
        controller = self._live_controller(tab_id, "No active session or live view not available")
        return await controller.get_live_view_url()

    def health(self) -> dict[str, Any]:
        sessions = self.manager.list_sessions()
        return {
            "status": "ok",
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "activeSessions": len(sessions),
            "sessions": [
                {
                    "tabId": info.session_id,
                    "remoteSessionId": info.remote_session_id,
                    "createdAt": info.created_at.isoformat(),
                }
                for info in sessions
            ],
        }
