"""Browserbase session broker.

Turns "a browser for isolation key K" into a live CDP endpoint, reusing a
running remote session tagged with K when one exists.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp
from playwright.async_api import Browser, Playwright

from browser_control.core.config import CloudBrowserConfig
from browser_control.core.errors import CloudConnectionError, RemoteProviderError

logger = logging.getLogger("browser_control.cloud")

_SECRET_PARAMS = re.compile(r"((?:apiKey|signingKey)=)[^&]+")


def redact_connect_url(url: str) -> str:
    return _SECRET_PARAMS.sub(r"\1***", url)


@dataclass(frozen=True)
class RemoteSession:
    id: str
    connect_url: str


class CloudSessionBroker:
    def __init__(self, config: CloudBrowserConfig, request_timeout_s: float = 30.0) -> None:
        self._config = config
        self._timeout = aiohttp.ClientTimeout(total=request_timeout_s)

    @property
    def config(self) -> CloudBrowserConfig:
        return self._config

    def _url(self, path: str) -> str:
        return f"{self._config.api_url.rstrip('/')}/{path.lstrip('/')}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
    ) -> tuple[int, Any]:
        headers = {"X-BB-API-Key": self._config.api_key}
        async with aiohttp.ClientSession(timeout=self._timeout, headers=headers) as session:
            async with session.request(method, self._url(path), params=params, json=body) as resp:
                if resp.status >= 300:
                    return resp.status, await resp.text()
                return resp.status, await resp.json(content_type=None)

    async def find_existing(self, isolation_key: str | None) -> Optional[RemoteSession]:
        if not isolation_key:
            logger.info("No isolation key set - refusing to reuse remote sessions")
            return None

        try:
            status, data = await self._request("GET", "/sessions", params={"status": "RUNNING"})
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("Listing remote sessions failed: %s", exc)
            return None
        if status >= 300:
            logger.warning("Listing remote sessions failed: HTTP %s", status)
            return None

        sessions = data if isinstance(data, list) else (data or {}).get("sessions") or []
        for session in sessions:
            if not isinstance(session, dict):
                continue
            if session.get("projectId") != self._config.project_id or session.get("status") != "RUNNING":
                continue
            metadata = session.get("userMetadata") or {}
            if metadata.get("tabId") != isolation_key:
                continue

            connect_url = session.get("connectUrl")
            if not connect_url:
                detail = await self.get_session_detail(session["id"])
                connect_url = (detail or {}).get("connectUrl")
            if not connect_url:
                logger.info("Remote session %s has no connect URL, skipping", session.get("id"))
                continue
            logger.info("Found existing remote session for %s: %s", isolation_key, session["id"])
            return RemoteSession(id=session["id"], connect_url=connect_url)

        logger.info("No existing remote session found for %s", isolation_key)
        return None

    async def create_or_reuse(self, isolation_key: str | None) -> RemoteSession:
        existing = await self.find_existing(isolation_key)
        if existing:
            return existing

        body: dict[str, Any] = {"projectId": self._config.project_id, "keepAlive": True}
        if self._config.region:
            body["region"] = self._config.region
        if isolation_key:
            body["userMetadata"] = {
                "tabId": isolation_key,
                "createdAt": datetime.now(tz=timezone.utc).isoformat(),
            }

        try:
            status, data = await self._request("POST", "/sessions", body=body)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise RemoteProviderError(f"Failed to create remote browser session: {exc}") from exc
        if status >= 300:
            raise RemoteProviderError(f"Failed to create remote browser session: {status} {data}", status=status)

        logger.info("Created keep-alive remote session %s (key: %s)", data.get("id"), isolation_key or "none")
        return RemoteSession(id=data["id"], connect_url=data["connectUrl"])

    async def get_session_detail(self, session_id: str) -> Optional[dict[str, Any]]:
        try:
            status, data = await self._request("GET", f"/sessions/{session_id}")
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("Fetching remote session %s failed: %s", session_id, exc)
            return None
        if status >= 300 or not isinstance(data, dict):
            logger.warning("Fetching remote session %s failed: HTTP %s", session_id, status)
            return None
        return data

    async def get_live_debug_url(self, session_id: str) -> Optional[str]:
        try:
            status, data = await self._request("GET", f"/sessions/{session_id}/debug")
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("Fetching live view URL for %s failed: %s", session_id, exc)
            return None
        if status >= 300 or not isinstance(data, dict):
            logger.warning("Fetching live view URL for %s failed: HTTP %s", session_id, status)
            return None
        return data.get("debuggerFullscreenUrl") or None

    async def connect(self, playwright: Playwright, connect_url: str) -> Browser:
        redacted = redact_connect_url(connect_url)
        logger.info("connect_over_cdp: %s", redacted)
        try:
            return await playwright.chromium.connect_over_cdp(connect_url)
        except Exception as exc:
            message = redact_connect_url(str(exc))
            raise CloudConnectionError(
                f"Failed to connect to remote browser session over CDP ({redacted}): {message}"
            ) from None
