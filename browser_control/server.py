"""
Browser Control MCP Server: remote browser sessions for LLM agents.

One browser per tab id, driven through actions and observed through tiered
page state. Start with: python -m browser_control.server
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import sys
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent, ImageContent

from browser_control.core.errors import ActionValidationError, SessionNotFoundError
from browser_control.core.service import BrowserControlService, build_service

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger("browser_control.server")

_service: BrowserControlService | None = None


async def get_service() -> BrowserControlService:
    global _service
    if _service is None:
        _service = build_service()
        await _service.manager.initialize()
    return _service


async def cleanup() -> None:
    global _service
    if _service:
        await _service.manager.shutdown()
        _service = None


server = Server("browser-control")


def _text(data: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(data, indent=2, default=str))]


def _image_and_text(b64: str, info: dict) -> list[TextContent | ImageContent]:
    return [
        ImageContent(type="image", data=b64, mimeType="image/png"),
        TextContent(type="text", text=json.dumps(info, default=str)),
    ]


_TAB_ID = {"type": "string", "description": "Caller-chosen id binding this conversation/tab to one browser"}

_COOKIE_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "value": {"type": "string"},
        "domain": {"type": "string"},
        "path": {"type": "string"},
        "expires": {"type": "number"},
        "httpOnly": {"type": "boolean"},
        "secure": {"type": "boolean"},
        "sameSite": {"type": "string", "enum": ["Strict", "Lax", "None"]},
    },
    "required": ["name", "value", "domain"],
}


# ─── Tool Definitions ───────────────────────

TOOLS = [
    Tool(
        name="browser_session_create",
        description=(
            "Create a browser session for a tab id, or return the live one that already exists. "
            "Optional cookies are injected before any navigation; defaultUrl is opened afterwards."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "tabId": _TAB_ID,
                "cookies": {"type": "array", "items": _COOKIE_SCHEMA},
                "defaultUrl": {"type": "string"},
                "headless": {"type": "boolean"},
                "viewport": {
                    "type": "object",
                    "properties": {"width": {"type": "integer"}, "height": {"type": "integer"}},
                },
            },
            "required": ["tabId"],
        },
    ),
    Tool(
        name="browser_session_get",
        description="Get session info (sessionId, createdAt, remoteSessionId) for a tab id.",
        inputSchema={"type": "object", "properties": {"tabId": _TAB_ID}, "required": ["tabId"]},
    ),
    Tool(
        name="browser_session_close",
        description="Close the browser session for a tab id.",
        inputSchema={"type": "object", "properties": {"tabId": _TAB_ID}, "required": ["tabId"]},
    ),
    Tool(
        name="browser_session_list",
        description="List every active browser session.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="browser_action",
        description=(
            "Run one browser action. action.type is one of: click{x,y}, click_element{selector}, "
            "type{text}, type_element{selector,text}, key{key}, scroll{direction,amount?}, "
            "scroll_to{selector}, navigate{url,skipState?,waitForNetworkIdle?}, back, forward, refresh, "
            "get_state, get_state_compact, screenshot, hover{x,y}, hover_element{selector}, wait{ms}. "
            "Selectors inside iframes use 'iframe[id=\"x\"] >> #el'."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "tabId": _TAB_ID,
                "action": {
                    "type": "object",
                    "properties": {"type": {"type": "string"}},
                    "required": ["type"],
                },
            },
            "required": ["tabId", "action"],
        },
    ),
    Tool(
        name="browser_state",
        description=(
            "Get page state. tier=full (HTML, text, ranked elements), lite (url, title, element count) "
            "or compact (bucketed elements, tables and a summary under a token budget)."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "tabId": _TAB_ID,
                "tier": {"type": "string", "enum": ["full", "lite", "compact"], "default": "compact"},
                "includeIframes": {"type": "boolean", "default": False},
            },
            "required": ["tabId"],
        },
    ),
    Tool(
        name="browser_clicks",
        description="Recent click events (at most 50), optionally only those at or after a ms timestamp.",
        inputSchema={
            "type": "object",
            "properties": {"tabId": _TAB_ID, "since": {"type": "integer"}},
            "required": ["tabId"],
        },
    ),
    Tool(
        name="browser_cookies_get",
        description="Read cookies from the session, optionally filtered by domain (e.g. '*.example.com').",
        inputSchema={
            "type": "object",
            "properties": {"tabId": _TAB_ID, "filterDomain": {"type": "string"}},
            "required": ["tabId"],
        },
    ),
    Tool(
        name="browser_cookies_set",
        description="Add cookies to the session; replace=true clears existing cookies first.",
        inputSchema={
            "type": "object",
            "properties": {
                "tabId": _TAB_ID,
                "cookies": {"type": "array", "items": _COOKIE_SCHEMA},
                "replace": {"type": "boolean", "default": False},
            },
            "required": ["tabId", "cookies"],
        },
    ),
    Tool(
        name="browser_live_url",
        description="Interactive live-view URL for a cloud session.",
        inputSchema={"type": "object", "properties": {"tabId": _TAB_ID}, "required": ["tabId"]},
    ),
    Tool(
        name="browser_screenshot",
        description="Take a viewport screenshot. Returns the image.",
        inputSchema={"type": "object", "properties": {"tabId": _TAB_ID}, "required": ["tabId"]},
    ),
    Tool(
        name="browser_health",
        description="Service status and active sessions.",
        inputSchema={"type": "object", "properties": {}},
    ),
]


@server.list_tools()
async def list_tools() -> list[Tool]:
    return TOOLS


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent | ImageContent]:
    svc = await get_service()
    tab_id = arguments.get("tabId")

    try:
        if name == "browser_session_create":
            return _text(await svc.create_session(
                tab_id,
                cookies=arguments.get("cookies"),
                default_url=arguments.get("defaultUrl"),
                headless=arguments.get("headless"),
                viewport=arguments.get("viewport"),
            ))

        elif name == "browser_session_get":
            return _text(svc.get_session(tab_id))

        elif name == "browser_session_close":
            await svc.close_session(tab_id)
            return _text({"success": True, "closed": tab_id})

        elif name == "browser_session_list":
            return _text(svc.list_sessions())

        elif name == "browser_action":
            result = await svc.execute_action(tab_id, arguments.get("action") or {})
            if isinstance(result.get("data"), str):
                return _image_and_text(result["data"], {"success": result["success"]})
            return _text(result)

        elif name == "browser_state":
            return _text(await svc.get_state(
                tab_id,
                tier=arguments.get("tier", "compact"),
                include_iframes=bool(arguments.get("includeIframes", False)),
            ))

        elif name == "browser_clicks":
            return _text(svc.get_clicks(tab_id, since=arguments.get("since")))

        elif name == "browser_cookies_get":
            return _text(await svc.get_cookies(tab_id, filter_domain=arguments.get("filterDomain")))

        elif name == "browser_cookies_set":
            return _text(await svc.set_cookies(
                tab_id,
                arguments.get("cookies"),
                replace=bool(arguments.get("replace", False)),
            ))

        elif name == "browser_live_url":
            live_url = await svc.get_live_url(tab_id)
            if live_url is None:
                return _text({"error": "Live view not available (not a cloud session)", "usingBrowserbase": False})
            return _text({"liveUrl": live_url, "usingBrowserbase": True})

        elif name == "browser_screenshot":
            png = await svc.screenshot(tab_id)
            return _image_and_text(base64.b64encode(png).decode("ascii"), {"tabId": tab_id, "bytes": len(png)})

        elif name == "browser_health":
            return _text(svc.health())

        else:
            return _text({"error": f"Unknown tool: {name}"})

    except (ActionValidationError, SessionNotFoundError) as e:
        logger.warning("Tool %s rejected: %s", name, e)
        return _text({"error": str(e)})
    except Exception as e:
        logger.exception(f"Tool {name} failed")
        return _text({"error": str(e)})


async def main() -> None:
    async with stdio_server() as (read_stream, write_stream):
        logger.info("Browser Control MCP Server starting...")
        try:
            await server.run(read_stream, write_stream, server.create_initialization_options())
        finally:
            await cleanup()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
