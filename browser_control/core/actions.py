from __future__ import annotations

import base64
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from browser_control.core.controller import DEFAULT_SCROLL_AMOUNT, SCROLL_DIRECTIONS
from browser_control.core.errors import ActionValidationError

if TYPE_CHECKING:
    from browser_control.core.controller import BrowserController


class ActionType(str, Enum):
    CLICK = "click"
    CLICK_ELEMENT = "click_element"
    TYPE = "type"
    TYPE_ELEMENT = "type_element"
    KEY = "key"
    SCROLL = "scroll"
    SCROLL_TO = "scroll_to"
    NAVIGATE = "navigate"
    BACK = "back"
    FORWARD = "forward"
    REFRESH = "refresh"
    GET_STATE = "get_state"
    GET_STATE_COMPACT = "get_state_compact"
    SCREENSHOT = "screenshot"
    HOVER = "hover"
    HOVER_ELEMENT = "hover_element"
    WAIT = "wait"


@dataclass(frozen=True)
class PointAction:
    """click / hover at viewport coordinates."""
    type: ActionType
    x: float
    y: float


@dataclass(frozen=True)
class SelectorAction:
    """click_element / hover_element / scroll_to on a (possibly frame-chained) selector."""
    type: ActionType
    selector: str


@dataclass(frozen=True)
class TypeAction:
    text: str
    type: ActionType = ActionType.TYPE


@dataclass(frozen=True)
class TypeElementAction:
    selector: str
    text: str
    type: ActionType = ActionType.TYPE_ELEMENT


@dataclass(frozen=True)
class KeyAction:
    key: str
    type: ActionType = ActionType.KEY


@dataclass(frozen=True)
class ScrollAction:
    direction: str
    amount: int = DEFAULT_SCROLL_AMOUNT
    type: ActionType = ActionType.SCROLL


@dataclass(frozen=True)
class NavigateAction:
    url: str
    wait_for_network_idle: bool = False
    skip_state: bool = False
    type: ActionType = ActionType.NAVIGATE


@dataclass(frozen=True)
class WaitAction:
    ms: int
    type: ActionType = ActionType.WAIT


@dataclass(frozen=True)
class SimpleAction:
    type: ActionType


Action = Union[
    PointAction,
    SelectorAction,
    TypeAction,
    TypeElementAction,
    KeyAction,
    ScrollAction,
    NavigateAction,
    WaitAction,
    SimpleAction,
]


def _number(payload: dict[str, Any], key: str, action: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ActionValidationError(f"'{action}' action requires numeric '{key}'")
    if not math.isfinite(value):
        raise ActionValidationError(f"'{action}' action requires a finite '{key}'")
    return value


def _string(payload: dict[str, Any], key: str, action: str, allow_empty: bool = False) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or (not allow_empty and not value):
        raise ActionValidationError(f"'{action}' action requires string '{key}'")
    return value


def _flag(payload: dict[str, Any], key: str) -> bool:
    value = payload.get(key, False)
    if not isinstance(value, bool):
        raise ActionValidationError(f"'{key}' must be a boolean")
    return value


def parse_action(payload: Any) -> Action:
    """Validate a wire-format action (``{"type": ..., ...}``) into its dataclass."""
    if not isinstance(payload, dict):
        raise ActionValidationError("Action must be an object")
    raw_type = payload.get("type")
    try:
        action_type = ActionType(raw_type)
    except ValueError:
        raise ActionValidationError(f"Unknown action type: {raw_type}") from None
    name = action_type.value

    if action_type in (ActionType.CLICK, ActionType.HOVER):
        return PointAction(type=action_type, x=_number(payload, "x", name), y=_number(payload, "y", name))
    if action_type in (ActionType.CLICK_ELEMENT, ActionType.HOVER_ELEMENT, ActionType.SCROLL_TO):
        return SelectorAction(type=action_type, selector=_string(payload, "selector", name))
    if action_type == ActionType.TYPE:
        return TypeAction(text=_string(payload, "text", name, allow_empty=True))
    if action_type == ActionType.TYPE_ELEMENT:
        return TypeElementAction(
            selector=_string(payload, "selector", name),
            text=_string(payload, "text", name, allow_empty=True),
        )
    if action_type == ActionType.KEY:
        return KeyAction(key=_string(payload, "key", name))
    if action_type == ActionType.SCROLL:
        direction = payload.get("direction")
        if direction not in SCROLL_DIRECTIONS:
            raise ActionValidationError(f"'scroll' direction must be one of {', '.join(SCROLL_DIRECTIONS)}")
        amount = payload.get("amount")
        if amount is None:
            return ScrollAction(direction=direction)
        amount = _number(payload, "amount", name)
        if amount <= 0:
            raise ActionValidationError("'scroll' amount must be positive")
        return ScrollAction(direction=direction, amount=int(amount))
    if action_type == ActionType.NAVIGATE:
        return NavigateAction(
            url=_string(payload, "url", name),
            wait_for_network_idle=_flag(payload, "waitForNetworkIdle"),
            skip_state=_flag(payload, "skipState"),
        )
    if action_type == ActionType.WAIT:
        return WaitAction(ms=int(_number(payload, "ms", name)))
    return SimpleAction(type=action_type)


# ─── Dispatch ────────────────────────────

Handler = Callable[["BrowserController", Any], Awaitable[dict[str, Any]]]


async def _click(controller: "BrowserController", action: PointAction) -> dict[str, Any]:
    await controller.click(action.x, action.y)
    return {"success": True}


async def _hover(controller: "BrowserController", action: PointAction) -> dict[str, Any]:
    await controller.hover(action.x, action.y)
    return {"success": True}


async def _click_element(controller: "BrowserController", action: SelectorAction) -> dict[str, Any]:
    await controller.click_element(action.selector)
    return {"success": True}


async def _hover_element(controller: "BrowserController", action: SelectorAction) -> dict[str, Any]:
    await controller.hover_element(action.selector)
    return {"success": True}


async def _scroll_to(controller: "BrowserController", action: SelectorAction) -> dict[str, Any]:
    await controller.scroll_to_element(action.selector)
    return {"success": True}


async def _type(controller: "BrowserController", action: TypeAction) -> dict[str, Any]:
    await controller.type(action.text)
    return {"success": True}


async def _type_element(controller: "BrowserController", action: TypeElementAction) -> dict[str, Any]:
    await controller.type_element(action.selector, action.text)
    return {"success": True}


async def _key(controller: "BrowserController", action: KeyAction) -> dict[str, Any]:
    await controller.press_key(action.key)
    return {"success": True}


async def _scroll(controller: "BrowserController", action: ScrollAction) -> dict[str, Any]:
    await controller.scroll(action.direction, action.amount)
    return {"success": True}


async def _navigate(controller: "BrowserController", action: NavigateAction) -> dict[str, Any]:
    state = await controller.navigate(
        action.url,
        wait_for_network_idle=action.wait_for_network_idle,
        skip_state=action.skip_state,
    )
    return {"success": True, "state": state.to_dict()}


async def _back(controller: "BrowserController", action: SimpleAction) -> dict[str, Any]:
    return {"success": True, "state": (await controller.back()).to_dict()}


async def _forward(controller: "BrowserController", action: SimpleAction) -> dict[str, Any]:
    return {"success": True, "state": (await controller.forward()).to_dict()}


async def _refresh(controller: "BrowserController", action: SimpleAction) -> dict[str, Any]:
    return {"success": True, "state": (await controller.refresh()).to_dict()}


async def _get_state(controller: "BrowserController", action: SimpleAction) -> dict[str, Any]:
    return {"success": True, "state": (await controller.get_state()).to_dict()}


async def _get_state_compact(controller: "BrowserController", action: SimpleAction) -> dict[str, Any]:
    return {"success": True, "state": (await controller.get_state_compact()).to_dict()}


async def _screenshot(controller: "BrowserController", action: SimpleAction) -> dict[str, Any]:
    png = await controller.screenshot()
    return {"success": True, "data": base64.b64encode(png).decode("ascii")}


async def _wait(controller: "BrowserController", action: WaitAction) -> dict[str, Any]:
    return {"success": True, "waited": await controller.wait(action.ms)}


_HANDLERS: dict[ActionType, Handler] = {
    ActionType.CLICK: _click,
    ActionType.CLICK_ELEMENT: _click_element,
    ActionType.TYPE: _type,
    ActionType.TYPE_ELEMENT: _type_element,
    ActionType.KEY: _key,
    ActionType.SCROLL: _scroll,
    ActionType.SCROLL_TO: _scroll_to,
    ActionType.NAVIGATE: _navigate,
    ActionType.BACK: _back,
    ActionType.FORWARD: _forward,
    ActionType.REFRESH: _refresh,
    ActionType.GET_STATE: _get_state,
    ActionType.GET_STATE_COMPACT: _get_state_compact,
    ActionType.SCREENSHOT: _screenshot,
    ActionType.HOVER: _hover,
    ActionType.HOVER_ELEMENT: _hover_element,
    ActionType.WAIT: _wait,
}

_missing = set(ActionType) - set(_HANDLERS)
if _missing:
    raise RuntimeError(f"No handler for action types: {sorted(a.value for a in _missing)}")


async def execute_action(controller: "BrowserController", action: Action) -> dict[str, Any]:
    return await _HANDLERS[action.type](controller, action)
