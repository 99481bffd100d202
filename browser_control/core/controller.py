"""
BrowserController: one live browser, context and page.

Runs either a local Chromium or a Browserbase session attached over CDP, and
exposes the primitives an agent drives: navigate, click, type, scroll, hover,
state extraction, screenshots and cookies.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import replace
from typing import Any, Optional, Union

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Frame,
    Page,
    Playwright,
    Error as PlaywrightError,
)

from browser_control.core.action_log import ActionLog
from browser_control.core.cloud_broker import CloudSessionBroker
from browser_control.core.config import ControllerOptions
from browser_control.core.dom_extractor import PageStateExtractor
from browser_control.core.errors import (
    ActionValidationError,
    AlreadyLaunchedError,
    AmbiguousSelectorError,
    CookieInjectionError,
    NotLaunchedError,
)
from browser_control.core.models import (
    ClickEvent,
    CompactBudget,
    Cookie,
    PageState,
    PageStateCompact,
    PageStateLite,
    PageStateOptions,
)
from browser_control.core.selectors import (
    FRAME_DELIMITER,
    compose_frame_selector,
    frame_selector_for,
    resolve_locator,
)

logger = logging.getLogger("browser_control.controller")

NAVIGATION_TIMEOUT_MS = 30_000
DEFAULT_SCROLL_AMOUNT = 300
MIN_WAIT_MS = 100
MAX_WAIT_MS = 10_000

SCROLL_DIRECTIONS = ("up", "down", "left", "right")

FRAME_ELEMENT_ATTRS_JS = """
(el) => ({
    id: el.getAttribute('id'),
    name: el.getAttribute('name'),
    src: el.getAttribute('src'),
})
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


def scroll_delta(direction: str, amount: int = DEFAULT_SCROLL_AMOUNT) -> tuple[int, int]:
    deltas = {
        "down": (0, amount),
        "up": (0, -amount),
        "right": (amount, 0),
        "left": (-amount, 0),
    }
    if direction not in deltas:
        raise ActionValidationError(f"Invalid scroll direction: {direction}")
    return deltas[direction]


class BrowserController:
    """
    Owns one browser for one isolation key.

    Launch modes:
      1. Cloud: reuse or create a keep-alive Browserbase session tagged with
         the isolation key, then attach over CDP
      2. Local: launch Chromium through Playwright
    """

    def __init__(
        self,
        options: ControllerOptions | None = None,
        isolation_key: str | None = None,
        *,
        playwright: Playwright | None = None,
        broker: CloudSessionBroker | None = None,
        action_log: ActionLog | None = None,
        extractor: PageStateExtractor | None = None,
        click_capacity: int = 50,
    ) -> None:
        self.options = options or ControllerOptions()
        self.isolation_key = isolation_key
        self._pw: Playwright | None = playwright
        self._owns_playwright = playwright is None
        self._broker = broker
        self._action_log = action_log
        self._extractor = extractor or PageStateExtractor()
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._remote_session_id: str | None = None
        self._clicks: deque[ClickEvent] = deque(maxlen=click_capacity)

    # ─── Lifecycle ───────────────────────────

    def is_launched(self) -> bool:
        if self._browser is None or self._page is None:
            return False
        try:
            return bool(self._browser.is_connected())
        except PlaywrightError:
            return False

    async def launch(self) -> None:
        if self.is_launched():
            raise AlreadyLaunchedError()

        if self._pw is None:
            self._pw = await async_playwright().start()
            self._owns_playwright = True

        started = time.monotonic()
        try:
            if self.options.cloud_enabled:
                await self._launch_cloud()
            else:
                await self._launch_local()
            if self.options.cookies:
                await self._inject_cookies(self.options.cookies)
        except Exception:
            await self.close()
            raise

        mode = "cloud" if self.options.cloud_enabled else "local"
        logger.info(
            "Browser launched (mode=%s, key=%s, remote=%s)",
            mode,
            self.isolation_key or "none",
            self._remote_session_id or "-",
        )
        self._log_browser(
            "launch",
            {
                "mode": mode,
                "headless": self.options.headless,
                "viewport": self.options.viewport.to_dict(),
                "remoteSessionId": self._remote_session_id,
                "cookies": len(self.options.cookies),
            },
            started,
        )

    def _cloud_broker(self) -> CloudSessionBroker | None:
        if self._broker is None and self.options.cloud is not None:
            self._broker = CloudSessionBroker(self.options.cloud)
        return self._broker

    async def _launch_cloud(self) -> None:
        broker = self._cloud_broker()
        assert broker is not None
        remote = await broker.create_or_reuse(self.isolation_key)
        self._remote_session_id = remote.id
        self._browser = await broker.connect(self._pw, remote.connect_url)
        await self._adopt_context()

    async def _launch_local(self) -> None:
        self._browser = await self._pw.chromium.launch(headless=self.options.headless)
        self._context = await self._browser.new_context(viewport=self.options.viewport.to_dict())
        self._page = await self._context.new_page()

    async def _adopt_context(self) -> None:
        # A remote session keeps its first context and tab across reconnects.
        contexts = self._browser.contexts
        if contexts:
            self._context = contexts[0]
        else:
            self._context = await self._browser.new_context(viewport=self.options.viewport.to_dict())
        pages = self._context.pages
        self._page = pages[0] if pages else await self._context.new_page()
        await self._page.set_viewport_size(self.options.viewport.to_dict())

    async def _inject_cookies(self, cookies: list[Cookie]) -> None:
        try:
            await self._context.add_cookies([cookie.to_playwright() for cookie in cookies])
        except Exception as exc:
            raise CookieInjectionError(f"Failed to inject {len(cookies)} cookies: {exc}") from exc
        logger.info("Injected %d cookies", len(cookies))

    async def reconnect(self, remote_session_id: str) -> bool:
        """Re-attach to a running remote session. Returns False instead of raising."""
        broker = self._cloud_broker()
        if broker is None:
            logger.warning("Reconnect requested without cloud configuration")
            return False
        try:
            detail = await broker.get_session_detail(remote_session_id)
            connect_url = (detail or {}).get("connectUrl")
            if not connect_url:
                logger.warning("Remote session %s has no connect URL", remote_session_id)
                return False
            await self._disconnect()
            if self._pw is None:
                self._pw = await async_playwright().start()
                self._owns_playwright = True
            self._browser = await broker.connect(self._pw, connect_url)
            await self._adopt_context()
        except Exception as exc:
            logger.warning("Reconnect to remote session %s failed: %s", remote_session_id, exc)
            await self._disconnect()
            return False
        self._remote_session_id = remote_session_id
        logger.info("Reconnected to remote session %s", remote_session_id)
        return True

    async def _disconnect(self) -> None:
        try:
            if self._browser is not None:
                await self._browser.close()
        except Exception as exc:
            logger.warning("Error closing browser: %s", exc)
        finally:
            self._browser = None
            self._context = None
            self._page = None

    async def close(self) -> None:
        await self._disconnect()
        self._remote_session_id = None
        if self._owns_playwright and self._pw is not None:
            try:
                await self._pw.stop()
            except Exception as exc:
                logger.warning("Error stopping Playwright: %s", exc)
            finally:
                self._pw = None
        logger.info("Browser closed (key=%s)", self.isolation_key or "none")

    def _require_page(self) -> Page:
        if self._page is None:
            raise NotLaunchedError()
        return self._page

    def _log_browser(self, action: str, data: Any, started: float | None = None) -> None:
        if self._action_log is None:
            return
        duration = int((time.monotonic() - started) * 1000) if started is not None else None
        self._action_log.log_browser(action, data, duration_ms=duration, session_id=self.isolation_key)

    # ─── Navigation ──────────────────────────

    async def navigate(
        self,
        url: str,
        wait_for_network_idle: bool = False,
        skip_state: bool = False,
    ) -> Union[PageState, PageStateLite]:
        page = self._require_page()
        started = time.monotonic()
        wait_until = "networkidle" if wait_for_network_idle else "domcontentloaded"
        await page.goto(url, wait_until=wait_until, timeout=NAVIGATION_TIMEOUT_MS)
        self._log_browser("navigate", {"url": url, "waitUntil": wait_until}, started)
        if skip_state:
            return await self.get_state_lite()
        return await self.get_state()

    async def back(self) -> PageStateLite:
        page = self._require_page()
        await page.go_back(wait_until="domcontentloaded")
        return await self.get_state_lite()

    async def forward(self) -> PageStateLite:
        page = self._require_page()
        await page.go_forward(wait_until="domcontentloaded")
        return await self.get_state_lite()

    async def refresh(self) -> PageStateLite:
        page = self._require_page()
        await page.reload(wait_until="domcontentloaded")
        return await self.get_state_lite()

    # ─── Pointer ─────────────────────────────

    def _record_click(self, x: float, y: float, kind: str, selector: str | None = None) -> None:
        self._clicks.append(ClickEvent(x=x, y=y, timestamp=_now_ms(), type=kind, selector=selector))

    async def click(self, x: float, y: float) -> None:
        page = self._require_page()
        await page.mouse.click(x, y)
        self._record_click(x, y, "click")

    async def click_element(self, selector: str) -> None:
        page = self._require_page()
        locator = resolve_locator(page, selector)
        try:
            box = await locator.bounding_box()
            await locator.click()
        except PlaywrightError as exc:
            if "strict mode violation" not in str(exc):
                raise
            try:
                count = await locator.count()
            except PlaywrightError:
                raise exc
            raise AmbiguousSelectorError(selector, count) from exc

        if box:
            x = box["x"] + box["width"] / 2
            y = box["y"] + box["height"] / 2
            self._record_click(x, y, "click_element", selector)

    async def hover(self, x: float, y: float) -> None:
        page = self._require_page()
        await page.mouse.move(x, y)

    async def hover_element(self, selector: str) -> None:
        page = self._require_page()
        await resolve_locator(page, selector).hover()

    # ─── Keyboard ────────────────────────────

    async def type(self, text: str) -> None:
        """Type into whatever element currently has focus."""
        page = self._require_page()
        await page.keyboard.type(text)

    async def type_element(self, selector: str, text: str) -> None:
        page = self._require_page()
        await resolve_locator(page, selector).fill(text)

    async def press_key(self, key: str) -> None:
        page = self._require_page()
        await page.keyboard.press(key)

    # ─── Scrolling ───────────────────────────

    async def scroll(self, direction: str, amount: int = DEFAULT_SCROLL_AMOUNT) -> None:
        page = self._require_page()
        dx, dy = scroll_delta(direction, amount)
        await page.mouse.wheel(dx, dy)

    async def scroll_to_element(self, selector: str) -> None:
        page = self._require_page()
        await resolve_locator(page, selector).scroll_into_view_if_needed()

    async def wait(self, ms: int) -> int:
        """Sleep for ``ms`` clamped to 100..10000 and return the time actually waited."""
        waited = max(MIN_WAIT_MS, min(MAX_WAIT_MS, int(ms)))
        await asyncio.sleep(waited / 1000)
        return waited

    # ─── Click tracking ──────────────────────

    def get_click_events(self, since: int | None = None) -> list[ClickEvent]:
        if since is None:
            return list(self._clicks)
        return [event for event in self._clicks if event.timestamp >= since]

    def clear_click_events(self) -> None:
        self._clicks.clear()

    # ─── State ───────────────────────────────

    async def get_state(self, options: PageStateOptions | None = None) -> PageState:
        page = self._require_page()
        opts = options or self._extractor.options
        state = await self._extractor.full(page, opts)
        if not opts.include_iframes:
            return state

        for frame in page.frames:
            if frame == page.main_frame or frame.is_detached():
                continue
            try:
                await self._merge_frame(state, page, frame, opts)
            except Exception as exc:
                logger.warning("Skipping iframe %s: %s", frame.url, exc)
        return state

    async def _frame_chain(self, page: Page, frame: Frame) -> str:
        # Nested frames are addressed by chaining every ancestor iframe selector.
        chain: list[str] = []
        current: Optional[Frame] = frame
        while current is not None and current != page.main_frame:
            attrs = await self._frame_element_attrs(current)
            chain.insert(0, frame_selector_for(attrs.get("id"), attrs.get("name"), attrs.get("src"), current.url))
            current = current.parent_frame
        return FRAME_DELIMITER.join(chain)

    async def _frame_element_attrs(self, frame: Frame) -> dict[str, Any]:
        # An unreadable <iframe> element falls back to matching on the frame URL.
        try:
            handle = await frame.frame_element()
            try:
                attrs = await handle.evaluate(FRAME_ELEMENT_ATTRS_JS)
            finally:
                await handle.dispose()
        except Exception as exc:
            logger.debug("Could not read iframe element for %s: %s", frame.url, exc)
            return {}
        return attrs or {}

    async def _merge_frame(self, state: PageState, page: Page, frame: Frame, options: PageStateOptions) -> None:
        frame_state = await self._extractor.full(frame, options)
        frame_selector = await self._frame_chain(page, frame)

        state.html += f"\n<!-- IFRAME: {frame.url} -->\n{frame_state.html}"
        if frame_state.text_content:
            state.text_content += f" [IFRAME: {frame_state.text_content}]"

        offset = len(state.interactive_elements)
        for position, element in enumerate(frame_state.interactive_elements):
            state.interactive_elements.append(
                replace(
                    element,
                    index=offset + position,
                    selector=compose_frame_selector(frame_selector, element.selector),
                    attributes={**element.attributes, "frameUrl": frame.url},
                )
            )
        logger.debug("Merged %d elements from iframe %s", len(frame_state.interactive_elements), frame.url)

    async def get_state_lite(self) -> PageStateLite:
        return await self._extractor.lite(self._require_page())

    async def get_state_compact(
        self,
        options: PageStateOptions | None = None,
        budget: CompactBudget | None = None,
    ) -> PageStateCompact:
        return await self._extractor.compact(self._require_page(), options, budget)

    async def screenshot(self) -> bytes:
        """Viewport PNG."""
        page = self._require_page()
        return await page.screenshot(type="png")

    # ─── Cookies ─────────────────────────────

    async def set_cookies(self, cookies: list[Cookie], replace: bool = False) -> None:
        self._require_page()
        if replace:
            await self._context.clear_cookies()
        if cookies:
            await self._inject_cookies(cookies)

    async def get_cookies(self, urls: list[str] | None = None) -> list[Cookie]:
        self._require_page()
        raw = await self._context.cookies(urls) if urls else await self._context.cookies()
        return [Cookie.from_dict(item) for item in raw]

    # ─── Queries ─────────────────────────────

    async def get_live_view_url(self) -> Optional[str]:
        broker = self._cloud_broker() if self._remote_session_id else None
        if broker is None:
            return None
        return await broker.get_live_debug_url(self._remote_session_id)

    @property
    def current_url(self) -> Optional[str]:
        return self._page.url if self._page is not None else None

    @property
    def raw_page(self) -> Optional[Page]:
        return self._page

    @property
    def remote_session_id(self) -> Optional[str]:
        return self._remote_session_id
