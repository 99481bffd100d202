from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from playwright.async_api import Playwright, async_playwright

from browser_control.core.action_log import ActionLog
from browser_control.core.config import ControllerOptions, controller_defaults_from_env, merge_options
from browser_control.core.controller import NAVIGATION_TIMEOUT_MS, BrowserController
from browser_control.core.models import Cookie, SessionInfo

logger = logging.getLogger("browser_control.sessions")

ControllerFactory = Callable[..., BrowserController]


@dataclass
class SessionEntry:
    session_key: str
    controller: BrowserController
    created_at: datetime
    remote_session_id: Optional[str] = None

    def info(self) -> SessionInfo:
        return SessionInfo(
            session_id=self.session_key,
            created_at=self.created_at,
            remote_session_id=self.remote_session_id,
        )


class SessionManager:
    """Keeps at most one live controller per isolation key.

    Requests for a key that already has a live browser get that browser back.
    A controller whose browser went away is discarded and relaunched on the
    next create.
    """

    def __init__(
        self,
        defaults: ControllerOptions | None = None,
        action_log: ActionLog | None = None,
        controller_factory: ControllerFactory | None = None,
    ) -> None:
        self._defaults = defaults
        self._action_log = action_log
        self._factory = controller_factory or BrowserController
        self._playwright: Optional[Playwright] = None
        self._sessions: dict[str, SessionEntry] = {}

    async def initialize(self) -> None:
        if self._playwright:
            return
        self._playwright = await async_playwright().start()
        logger.info("Session manager initialized")

    async def shutdown(self) -> None:
        await self.close_all()
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Session manager shut down")

    def _environment(self) -> ControllerOptions:
        return self._defaults if self._defaults is not None else controller_defaults_from_env()

    async def create_session(
        self,
        session_key: str,
        options: dict[str, Any] | None = None,
        cookies: list[Cookie] | None = None,
        default_url: str | None = None,
    ) -> SessionInfo:
        existing = self._sessions.get(session_key)
        if existing is not None:
            if existing.controller.is_launched():
                if cookies:
                    try:
                        await existing.controller.set_cookies(cookies)
                        logger.info("Refreshed %d cookies for session %s", len(cookies), session_key)
                    except Exception as exc:
                        logger.warning("Cookie refresh for session %s failed: %s", session_key, exc)
                return existing.info()

            logger.info("Session %s is stale, relaunching", session_key)
            try:
                await existing.controller.close()
            except Exception as exc:
                logger.warning("Closing stale session %s failed: %s", session_key, exc)
            self._sessions.pop(session_key, None)

        merged = merge_options(self._environment(), options, cookies)
        controller = self._factory(
            merged,
            isolation_key=session_key,
            playwright=self._playwright,
            action_log=self._action_log,
        )
        await controller.launch()

        entry = SessionEntry(
            session_key=session_key,
            controller=controller,
            created_at=datetime.now(tz=timezone.utc),
            remote_session_id=controller.remote_session_id,
        )
        self._sessions[session_key] = entry
        logger.info(
            "Created session %s (remote=%s, cookies=%d)",
            session_key,
            entry.remote_session_id or "-",
            len(merged.cookies),
        )

        if default_url:
            page = controller.raw_page
            try:
                if page is not None:
                    await page.goto(default_url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
            except Exception as exc:
                logger.warning("Navigating session %s to %s failed: %s", session_key, default_url, exc)

        return entry.info()

    def get_controller(self, session_key: str) -> Optional[BrowserController]:
        entry = self._sessions.get(session_key)
        return entry.controller if entry else None

    def get_session(self, session_key: str) -> Optional[SessionEntry]:
        return self._sessions.get(session_key)

    def get_session_info(self, session_key: str) -> Optional[SessionInfo]:
        entry = self._sessions.get(session_key)
        return entry.info() if entry else None

    def has_session(self, session_key: str) -> bool:
        entry = self._sessions.get(session_key)
        return entry is not None and entry.controller.is_launched()

    def list_sessions(self) -> list[SessionInfo]:
        return [entry.info() for entry in self._sessions.values() if entry.controller.is_launched()]

    async def close_session(self, session_key: str) -> None:
        entry = self._sessions.pop(session_key, None)
        if entry is None:
            return
        try:
            await entry.controller.close()
        except Exception as exc:
            logger.warning("Closing session %s failed: %s", session_key, exc)
        logger.info("Closed session %s", session_key)

    async def close_all(self) -> None:
        for session_key in list(self._sessions):
            await self.close_session(session_key)
