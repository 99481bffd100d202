"""
Browser Control HTTP service.

Same operations as the MCP server over plain JSON/HTTP, keyed by ``tabId``.
Start with: python -m browser_control.http_server
"""

from __future__ import annotations

import base64
import json
import logging
import os
import sys
from typing import Any

from aiohttp import web

from browser_control.core.errors import ActionValidationError, SessionNotFoundError
from browser_control.core.service import BrowserControlService, build_service

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger("browser_control.http")

SERVICE_KEY = web.AppKey("service", BrowserControlService)


def _flag(value: str | None) -> bool:
    return (value or "").lower() == "true"


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ActionValidationError("Request body must be JSON") from None
    if not isinstance(body, dict):
        raise ActionValidationError("Request body must be a JSON object")
    return body


@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ActionValidationError as exc:
        return web.json_response({"error": str(exc)}, status=400)
    except SessionNotFoundError as exc:
        return web.json_response({"error": str(exc)}, status=404)
    except Exception as exc:
        logger.exception("%s %s failed", request.method, request.path)
        return web.json_response({"success": False, "error": str(exc)}, status=500)


# ─── Handlers ───────────────────────────────

async def health(request: web.Request) -> web.Response:
    return web.json_response(request.app[SERVICE_KEY].health())


async def create_session(request: web.Request) -> web.Response:
    body = await _json_body(request)
    logger.info("[POST /session] tabId=%s", body.get("tabId"))
    result = await request.app[SERVICE_KEY].create_session(
        body.get("tabId"),
        cookies=body.get("cookies"),
        default_url=body.get("defaultUrl"),
        headless=body.get("headless"),
        viewport=body.get("viewport"),
    )
    return web.json_response(result, status=201)


async def get_session(request: web.Request) -> web.Response:
    return web.json_response(request.app[SERVICE_KEY].get_session(request.query.get("tabId")))


async def delete_session(request: web.Request) -> web.Response:
    await request.app[SERVICE_KEY].close_session(request.query.get("tabId"))
    return web.Response(status=204)


async def list_sessions(request: web.Request) -> web.Response:
    return web.json_response(request.app[SERVICE_KEY].list_sessions())


async def action(request: web.Request) -> web.Response:
    body = await _json_body(request)
    tab_id = body.pop("tabId", None)
    body.pop("remoteSessionId", None)
    return web.json_response(await request.app[SERVICE_KEY].execute_action(tab_id, body))


async def state(request: web.Request) -> web.Response:
    query = request.query
    tier = query.get("tier")
    if tier is None:
        tier = "compact" if _flag(query.get("compact")) else "lite" if _flag(query.get("lite")) else "full"
    result = await request.app[SERVICE_KEY].get_state(
        query.get("tabId"),
        tier=tier,
        include_iframes=_flag(query.get("includeIframes")),
    )
    return web.json_response(result)


async def clicks(request: web.Request) -> web.Response:
    since_raw = request.query.get("since")
    try:
        since = int(since_raw) if since_raw else None
    except ValueError:
        raise ActionValidationError("since must be an integer timestamp in ms") from None
    return web.json_response(request.app[SERVICE_KEY].get_clicks(request.query.get("tabId"), since))


async def get_cookies(request: web.Request) -> web.Response:
    result = await request.app[SERVICE_KEY].get_cookies(
        request.query.get("tabId"),
        filter_domain=request.query.get("filterDomain"),
    )
    return web.json_response(result)


async def set_cookies(request: web.Request) -> web.Response:
    body = await _json_body(request)
    result = await request.app[SERVICE_KEY].set_cookies(
        body.get("tabId"),
        body.get("cookies"),
        replace=bool(body.get("replace", False)),
    )
    return web.json_response(result)


async def live_url(request: web.Request) -> web.Response:
    url = await request.app[SERVICE_KEY].get_live_url(request.query.get("tabId"))
    if url is None:
        return web.json_response(
            {"error": "Live view not available (not using Browserbase)", "usingBrowserbase": False},
            status=404,
        )
    return web.json_response({"liveUrl": url, "usingBrowserbase": True})


async def screenshot_png(request: web.Request) -> web.Response:
    png = await request.app[SERVICE_KEY].screenshot(request.query.get("tabId"))
    return web.Response(body=png, content_type="image/png", headers={"Cache-Control": "no-cache"})


async def screenshot_json(request: web.Request) -> web.Response:
    body = await _json_body(request)
    png = await request.app[SERVICE_KEY].screenshot(body.get("tabId"))
    if body.get("format") == "binary":
        return web.Response(body=png, content_type="image/png")
    return web.json_response(
        {"success": True, "data": base64.b64encode(png).decode("ascii"), "contentType": "image/png"}
    )


# ─── App ────────────────────────────────────

def create_app(service: BrowserControlService | None = None, manage_lifecycle: bool = True) -> web.Application:
    if service is None:
        service = build_service()

    app = web.Application(middlewares=[error_middleware])
    app[SERVICE_KEY] = service

    if manage_lifecycle:
        async def on_startup(app: web.Application) -> None:
            await app[SERVICE_KEY].manager.initialize()

        async def on_cleanup(app: web.Application) -> None:
            await app[SERVICE_KEY].manager.shutdown()

        app.on_startup.append(on_startup)
        app.on_cleanup.append(on_cleanup)

    app.router.add_get("/health", health)
    app.router.add_post("/session", create_session)
    app.router.add_get("/session", get_session)
    app.router.add_delete("/session", delete_session)
    app.router.add_get("/session/list", list_sessions)
    app.router.add_post("/action", action)
    app.router.add_get("/state", state)
    app.router.add_get("/clicks", clicks)
    app.router.add_get("/cookies", get_cookies)
    app.router.add_post("/cookies", set_cookies)
    app.router.add_get("/live-url", live_url)
    app.router.add_get("/screenshot", screenshot_png)
    app.router.add_post("/screenshot", screenshot_json)
    return app


def run() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3001"))
    logger.info("Browser Control HTTP service on http://%s:%s", host, port)
    web.run_app(create_app(), host=host, port=port, print=None)


if __name__ == "__main__":
    run()
