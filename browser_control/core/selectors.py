"""Frame-chained selector format.

A selector that addresses an element inside an iframe is written as
``<frameSelector> >> <elementSelector>``, for example
``iframe[id="login"] >> #submit``. Chains nest: every leading segment that
starts with ``iframe[`` descends one frame. The `` >> `` delimiter is reserved
and never appears inside a raw CSS selector.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from playwright.async_api import Locator, Page

FRAME_DELIMITER = " >> "
FRAME_PREFIX = "iframe["


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def compose_frame_selector(frame_selector: str, element_selector: str) -> str:
    return f"{frame_selector}{FRAME_DELIMITER}{element_selector}"


def split_frame_selector(selector: str) -> tuple[list[str], str]:
    """Return ``(frame_selectors, element_selector)`` for a possibly chained selector."""
    if not selector.startswith(FRAME_PREFIX):
        return [], selector
    parts = selector.split(FRAME_DELIMITER)
    if len(parts) < 2:
        return [], selector
    frames: list[str] = []
    while len(parts) > 1 and parts[0].startswith(FRAME_PREFIX):
        frames.append(parts.pop(0))
    return frames, FRAME_DELIMITER.join(parts)


def frame_selector_for(
    element_id: Optional[str],
    name: Optional[str],
    src: Optional[str],
    frame_url: str,
) -> str:
    """Pick the most stable selector for an iframe element: id, name, src, then its URL."""
    if element_id:
        return f'iframe[id="{_quote(element_id)}"]'
    if name:
        return f'iframe[name="{_quote(name)}"]'
    if src:
        return f'iframe[src="{_quote(src)}"]'
    return f'iframe[src="{_quote(frame_url)}"]'


def resolve_locator(page: "Page", selector: str) -> "Locator":
    frames, element_selector = split_frame_selector(selector)
    if not frames:
        return page.locator(selector)
    scope = page.frame_locator(frames[0])
    for frame_selector in frames[1:]:
        scope = scope.frame_locator(frame_selector)
    return scope.locator(element_selector)
