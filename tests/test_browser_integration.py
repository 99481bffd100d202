"""
End-to-end checks against a real headless Chromium.

Skipped when Playwright's browser binaries are not installed.
"""

from aiohttp import web
import pytest

from browser_control.core.config import ControllerOptions
from browser_control.core.controller import BrowserController
from browser_control.core.models import Cookie, PageStateOptions, estimate_tokens

PAGE = """<!doctype html>
<html><head><title>Integration</title></head>
<body>
  <h1>Contacts</h1>
  <button id="save">Save</button>
  <a href="/next">Next page</a>
  <input name="q" placeholder="Search">
  <table>
    <tr><th>Name</th><th>Email</th></tr>
    <tr data-test-id="row-1"><td>Ada</td><td>ada@example.com</td></tr>
    <tr data-test-id="row-2"><td>Linus</td><td>linus@example.com</td></tr>
  </table>
  <iframe id="login" srcdoc="<button id='submit' onclick='window.clicked = true'>Sign in</button>"></iframe>
</body></html>
"""


async def _start_site() -> tuple[web.AppRunner, str]:
    async def index(request: web.Request) -> web.Response:
        return web.Response(text=PAGE, content_type="text/html")

    app = web.Application()
    app.router.add_get("/", index)
    app.router.add_get("/next", index)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    sockets = site._server.sockets if site._server else []
    if not sockets:
        raise RuntimeError("Server failed to bind")
    return runner, f"http://127.0.0.1:{int(sockets[0].getsockname()[1])}/"


async def _launch() -> BrowserController:
    controller = BrowserController(ControllerOptions(headless=True), isolation_key="integration")
    try:
        await controller.launch()
    except Exception as exc:
        pytest.skip(f"Chromium not available: {exc}")
    return controller


@pytest.mark.asyncio
async def test_iframe_selector_round_trips_into_click() -> None:
    controller = await _launch()
    runner, url = await _start_site()
    try:
        await controller.navigate(url, skip_state=True)
        page = controller.raw_page
        await page.wait_for_function("document.querySelector('#login').contentDocument.querySelector('#submit')")

        state = await controller.get_state(PageStateOptions(include_iframes=True))
        selectors = [element.selector for element in state.interactive_elements]
        chained = 'iframe[id="login"] >> #submit'
        assert chained in selectors
        assert "[IFRAME: Sign in]" in state.text_content

        await controller.click_element(chained)

        frame = next(f for f in page.frames if f != page.main_frame)
        assert await frame.evaluate("window.clicked === true")
        assert controller.get_click_events()[-1].selector == chained
    finally:
        await controller.close()
        await runner.cleanup()


@pytest.mark.asyncio
async def test_state_tiers_shrink_in_size() -> None:
    controller = await _launch()
    runner, url = await _start_site()
    try:
        lite = await controller.navigate(url, skip_state=True)
        assert lite.title == "Integration"
        assert lite.element_count >= 3

        full = await controller.get_state()
        compact = await controller.get_state_compact()

        assert estimate_tokens(full.to_dict()) > estimate_tokens(compact.to_dict()) > estimate_tokens(lite.to_dict())
        assert "Save" in [b.label for b in compact.buttons]
        assert compact.tables[0].headers == ("Name", "Email")
        assert compact.tables[0].row_count == 2
        assert compact.summary.startswith("Page 'Integration' has ")
    finally:
        await controller.close()
        await runner.cleanup()


@pytest.mark.asyncio
async def test_cookies_round_trip_and_replace() -> None:
    controller = await _launch()
    runner, url = await _start_site()
    try:
        await controller.navigate(url, skip_state=True)
        await controller.set_cookies([Cookie(name="sid", value="abc", domain="127.0.0.1")])
        await controller.set_cookies([Cookie(name="pref", value="dark", domain="127.0.0.1")])

        names = {cookie.name for cookie in await controller.get_cookies()}
        assert names == {"sid", "pref"}

        await controller.set_cookies([Cookie(name="only", value="1", domain="127.0.0.1")], replace=True)

        assert [cookie.name for cookie in await controller.get_cookies()] == ["only"]
    finally:
        await controller.close()
        await runner.cleanup()
