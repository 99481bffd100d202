"""
HTTP front end tests: real SessionManager and aiohttp app, mocked browsers.
"""

import base64
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import test_utils

from browser_control.core.action_log import ActionLog
from browser_control.core.config import ControllerOptions
from browser_control.core.models import ClickEvent, Cookie, PageStateLite, Viewport
from browser_control.core.service import BrowserControlService
from browser_control.core.session_manager import SessionManager
from browser_control.http_server import create_app

PNG = b"\x89PNG\r\n\x1a\nfake"


def _controller_factory(created: list[MagicMock], live_url: str | None = None):
    def factory(options, isolation_key=None, playwright=None, action_log=None):
        controller = MagicMock()
        controller.options = options
        controller.remote_session_id = None
        controller.raw_page = None
        controller.is_launched.return_value = True
        controller.launch = AsyncMock()
        controller.close = AsyncMock()
        controller.set_cookies = AsyncMock()
        controller.get_live_view_url = AsyncMock(return_value=live_url)
        controller.screenshot = AsyncMock(return_value=PNG)
        controller.click_element = AsyncMock()
        lite = PageStateLite(url="https://a/", title="A", element_count=4, viewport=Viewport(1280, 1032))
        controller.get_state_lite = AsyncMock(return_value=lite)
        controller.get_click_events.return_value = [ClickEvent(x=1, y=2, timestamp=10, type="click")]
        controller.get_cookies = AsyncMock(
            return_value=[
                Cookie(name="sid", value="1", domain=".example.com"),
                Cookie(name="other", value="2", domain="other.org"),
            ]
        )
        created.append(controller)
        return controller

    return factory


async def _client(created: list[MagicMock], live_url: str | None = None) -> test_utils.TestClient:
    manager = SessionManager(
        defaults=ControllerOptions(),
        controller_factory=_controller_factory(created, live_url),
    )
    service = BrowserControlService(manager, ActionLog())
    client = test_utils.TestClient(test_utils.TestServer(create_app(service, manage_lifecycle=False)))
    await client.start_server()
    return client


class TestSessions:
    """Session create/get/delete/list routes."""

    @pytest.mark.asyncio
    async def test_create_returns_201_with_cookie_summary(self) -> None:
        created: list[MagicMock] = []
        client = await _client(created, live_url="https://live.example/s")
        try:
            resp = await client.post(
                "/session",
                json={"tabId": "tab-1", "cookies": [{"name": "a", "value": "1", "domain": "x.com"}]},
            )
            body = await resp.json()
        finally:
            await client.close()

        assert resp.status == 201
        assert body["sessionId"] == "tab-1"
        assert body["liveUrl"] == "https://live.example/s"
        assert body["cookiesLoaded"] is True
        assert body["cookieCount"] == 1
        assert created[0].options.cookies[0].name == "a"

    @pytest.mark.asyncio
    async def test_missing_tab_id_is_400(self) -> None:
        client = await _client([])
        try:
            resp = await client.post("/session", json={})
            body = await resp.json()
        finally:
            await client.close()

        assert resp.status == 400
        assert "tabId" in body["error"]

    @pytest.mark.asyncio
    async def test_invalid_cookie_is_400(self) -> None:
        client = await _client([])
        try:
            resp = await client.post("/session", json={"tabId": "t", "cookies": [{"name": "a"}]})
        finally:
            await client.close()

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_get_unknown_session_is_404(self) -> None:
        client = await _client([])
        try:
            resp = await client.get("/session", params={"tabId": "nope"})
        finally:
            await client.close()

        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_delete_then_list(self) -> None:
        created: list[MagicMock] = []
        client = await _client(created)
        try:
            await client.post("/session", json={"tabId": "tab-1"})
            await client.post("/session", json={"tabId": "tab-2"})
            deleted = await client.delete("/session", params={"tabId": "tab-1"})
            listed = await (await client.get("/session/list")).json()
            health = await (await client.get("/health")).json()
        finally:
            await client.close()

        assert deleted.status == 204
        created[0].close.assert_awaited_once()
        assert [s["sessionId"] for s in listed["sessions"]] == ["tab-2"]
        assert health["status"] == "ok"
        assert health["activeSessions"] == 1
        assert health["sessions"][0]["tabId"] == "tab-2"

    @pytest.mark.asyncio
    async def test_dead_browser_drops_out_of_list_and_health(self) -> None:
        created: list[MagicMock] = []
        client = await _client(created)
        try:
            await client.post("/session", json={"tabId": "tab-1"})
            await client.post("/session", json={"tabId": "tab-2"})
            created[0].is_launched.return_value = False
            listed = await (await client.get("/session/list")).json()
            health = await (await client.get("/health")).json()
        finally:
            await client.close()

        assert [s["sessionId"] for s in listed["sessions"]] == ["tab-2"]
        assert health["activeSessions"] == 1


class TestActionsAndState:
    """Action dispatch, state tiers, and the click buffer."""

    @pytest.mark.asyncio
    async def test_action_without_session_is_404(self) -> None:
        client = await _client([])
        try:
            resp = await client.post("/action", json={"tabId": "tab-1", "type": "back"})
        finally:
            await client.close()

        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_invalid_action_is_400(self) -> None:
        client = await _client([])
        try:
            await client.post("/session", json={"tabId": "tab-1"})
            resp = await client.post("/action", json={"tabId": "tab-1", "type": "teleport"})
        finally:
            await client.close()

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_non_finite_wait_is_400(self) -> None:
        client = await _client([])
        try:
            await client.post("/session", json={"tabId": "tab-1"})
            resp = await client.post(
                "/action",
                data='{"tabId": "tab-1", "type": "wait", "ms": Infinity}',
                headers={"Content-Type": "application/json"},
            )
            body = await resp.json()
        finally:
            await client.close()

        assert resp.status == 400
        assert "finite" in body["error"]

    @pytest.mark.asyncio
    async def test_action_ignores_remote_session_id(self) -> None:
        created: list[MagicMock] = []
        client = await _client(created)
        try:
            await client.post("/session", json={"tabId": "tab-1"})
            resp = await client.post(
                "/action",
                json={"tabId": "tab-1", "remoteSessionId": "bb-x", "type": "click_element", "selector": "#go"},
            )
            body = await resp.json()
        finally:
            await client.close()

        assert resp.status == 200
        assert body == {"success": True}
        created[0].click_element.assert_awaited_once_with("#go")

    @pytest.mark.asyncio
    async def test_operation_failure_is_500(self) -> None:
        created: list[MagicMock] = []
        client = await _client(created)
        try:
            await client.post("/session", json={"tabId": "tab-1"})
            created[0].click_element.side_effect = RuntimeError("element detached")
            resp = await client.post("/action", json={"tabId": "tab-1", "type": "click_element", "selector": "#x"})
            body = await resp.json()
        finally:
            await client.close()

        assert resp.status == 500
        assert body == {"success": False, "error": "element detached"}

    @pytest.mark.asyncio
    async def test_lite_state_flag(self) -> None:
        client = await _client([])
        try:
            await client.post("/session", json={"tabId": "tab-1"})
            body = await (await client.get("/state", params={"tabId": "tab-1", "lite": "true"})).json()
        finally:
            await client.close()

        assert body["stateType"] == "lite"
        assert body["state"]["elementCount"] == 4

    @pytest.mark.asyncio
    async def test_clicks_since_must_be_numeric(self) -> None:
        client = await _client([])
        try:
            await client.post("/session", json={"tabId": "tab-1"})
            bad = await client.get("/clicks", params={"tabId": "tab-1", "since": "yesterday"})
            good = await (await client.get("/clicks", params={"tabId": "tab-1", "since": "5"})).json()
        finally:
            await client.close()

        assert bad.status == 400
        assert good["clicks"] == [{"x": 1, "y": 2, "timestamp": 10, "type": "click"}]


class TestCookiesAndMedia:
    """Cookie routes, live view, and screenshots."""

    @pytest.mark.asyncio
    async def test_cookie_domain_filter(self) -> None:
        client = await _client([])
        try:
            await client.post("/session", json={"tabId": "tab-1"})
            body = await (
                await client.get("/cookies", params={"tabId": "tab-1", "filterDomain": "*.example.com"})
            ).json()
        finally:
            await client.close()

        assert body["cookie_count"] == 1
        assert body["cookies"][0]["name"] == "sid"
        assert body["filter_domain"] == "*.example.com"

    @pytest.mark.asyncio
    async def test_set_cookies_replace(self) -> None:
        created: list[MagicMock] = []
        client = await _client(created)
        try:
            await client.post("/session", json={"tabId": "tab-1"})
            body = await (
                await client.post(
                    "/cookies",
                    json={"tabId": "tab-1", "replace": True,
                          "cookies": [{"name": "n", "value": "v", "domain": "a.com"}]},
                )
            ).json()
        finally:
            await client.close()

        assert body == {"success": True, "cookieCount": 1, "replaced": True}
        cookies = created[0].set_cookies.await_args.args[0]
        assert cookies == [Cookie(name="n", value="v", domain="a.com")]
        assert created[0].set_cookies.await_args.kwargs == {"replace": True}

    @pytest.mark.asyncio
    async def test_live_url_unavailable_is_404(self) -> None:
        client = await _client([])
        try:
            await client.post("/session", json={"tabId": "tab-1"})
            resp = await client.get("/live-url", params={"tabId": "tab-1"})
            body = await resp.json()
        finally:
            await client.close()

        assert resp.status == 404
        assert body["usingBrowserbase"] is False

    @pytest.mark.asyncio
    async def test_screenshot_png_and_json(self) -> None:
        client = await _client([])
        try:
            await client.post("/session", json={"tabId": "tab-1"})
            png = await client.get("/screenshot", params={"tabId": "tab-1"})
            png_body = await png.read()
            as_json = await (await client.post("/screenshot", json={"tabId": "tab-1"})).json()
        finally:
            await client.close()

        assert png.headers["Content-Type"] == "image/png"
        assert png.headers["Cache-Control"] == "no-cache"
        assert png_body == PNG
        assert base64.b64decode(as_json["data"]) == PNG
        assert as_json["contentType"] == "image/png"
