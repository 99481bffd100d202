from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

SAME_SITE_VALUES = ("Strict", "Lax", "None")


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int

    def to_dict(self) -> dict[str, int]:
        return {"width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Viewport":
        return cls(width=int(payload["width"]), height=int(payload["height"]))


DEFAULT_FRAME_VIEWPORT = Viewport(width=1280, height=720)


@dataclass(frozen=True)
class Cookie:
    name: str
    value: str
    domain: str
    path: str = "/"
    expires: Optional[float] = None
    http_only: Optional[bool] = None
    secure: Optional[bool] = None
    same_site: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Cookie":
        for key in ("name", "value", "domain"):
            if key not in payload:
                raise ValueError(f"Cookie is missing required field: {key}")
        same_site = payload.get("sameSite", payload.get("same_site"))
        if same_site is not None and same_site not in SAME_SITE_VALUES:
            raise ValueError(f"Invalid sameSite value: {same_site}")
        expires = payload.get("expires")
        return cls(
            name=str(payload["name"]),
            value=str(payload["value"]),
            domain=str(payload["domain"]),
            path=payload.get("path") or "/",
            expires=float(expires) if expires is not None else None,
            http_only=payload.get("httpOnly", payload.get("http_only")),
            secure=payload.get("secure"),
            same_site=same_site,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
        }
        if self.expires is not None:
            out["expires"] = self.expires
        if self.http_only is not None:
            out["httpOnly"] = self.http_only
        if self.secure is not None:
            out["secure"] = self.secure
        if self.same_site is not None:
            out["sameSite"] = self.same_site
        return out

    # Playwright's cookie dict uses the same camelCase keys as the wire format.
    to_playwright = to_dict


def filter_cookies_by_domain(cookies: list[Cookie], filter_domain: str | None) -> list[Cookie]:
    if not filter_domain:
        return list(cookies)
    pattern = filter_domain[2:] if filter_domain.startswith("*.") else filter_domain
    return [c for c in cookies if c.domain == pattern or c.domain.endswith(pattern)]


@dataclass(frozen=True)
class ClickEvent:
    x: float
    y: float
    timestamp: int
    type: str
    selector: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"x": self.x, "y": self.y, "timestamp": self.timestamp, "type": self.type}
        if self.selector is not None:
            out["selector"] = self.selector
        return out


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class InteractiveElement:
    index: int
    tag: str
    text: str
    selector: str
    bounding_box: BoundingBox
    attributes: dict[str, str] = field(default_factory=dict)
    is_visible: bool = True
    is_enabled: bool = True
    type: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "InteractiveElement":
        box = payload.get("boundingBox") or {}
        return cls(
            index=int(payload.get("index", 0)),
            tag=str(payload.get("tag", "")),
            text=str(payload.get("text", "")),
            selector=str(payload.get("selector", "")),
            bounding_box=BoundingBox(
                x=box.get("x", 0),
                y=box.get("y", 0),
                width=box.get("width", 0),
                height=box.get("height", 0),
            ),
            attributes=dict(payload.get("attributes") or {}),
            is_visible=bool(payload.get("isVisible", True)),
            is_enabled=bool(payload.get("isEnabled", True)),
            type=payload.get("type") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "index": self.index,
            "tag": self.tag,
            "text": self.text,
            "selector": self.selector,
            "boundingBox": self.bounding_box.to_dict(),
            "attributes": dict(self.attributes),
            "isVisible": self.is_visible,
            "isEnabled": self.is_enabled,
        }
        if self.type:
            out["type"] = self.type
        return out


@dataclass(frozen=True)
class PageStateOptions:
    max_elements: int = 75
    max_html_length: int = 30_000
    max_text_length: int = 3_000
    include_iframes: bool = False


@dataclass(frozen=True)
class CompactBudget:
    max_tokens: int = 2_000
    max_table_rows: int = 10
    max_tables: int = 5
    max_lists: int = 5
    max_summary_chars: int = 500


@dataclass
class PageState:
    url: str
    title: str
    html: str
    text_content: str
    interactive_elements: list[InteractiveElement]
    viewport: Viewport

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "html": self.html,
            "textContent": self.text_content,
            "interactiveElements": [e.to_dict() for e in self.interactive_elements],
            "viewport": self.viewport.to_dict(),
        }


@dataclass(frozen=True)
class PageStateLite:
    url: str
    title: str
    element_count: int
    viewport: Viewport

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "elementCount": self.element_count,
            "viewport": self.viewport.to_dict(),
        }


@dataclass(frozen=True)
class CompactElement:
    selector: str
    label: str
    kind: str
    disabled: bool = False

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "CompactElement":
        return cls(
            selector=str(payload.get("s", "")),
            label=str(payload.get("t", "")),
            kind=str(payload.get("k", "other")),
            disabled=bool(payload.get("d", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        # Short keys keep the compact tier small.
        out: dict[str, Any] = {"s": self.selector, "t": self.label, "k": self.kind}
        if self.disabled:
            out["d"] = True
        return out


@dataclass(frozen=True)
class TableRow:
    cells: tuple[str, ...]
    id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"cells": list(self.cells)}
        if self.id:
            out["id"] = self.id
        return out


@dataclass(frozen=True)
class TableSummary:
    headers: tuple[str, ...]
    row_count: int
    rows: tuple[TableRow, ...]
    patterns: Optional[dict[str, str]] = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "TableSummary":
        return cls(
            headers=tuple(str(h) for h in payload.get("headers") or ()),
            row_count=int(payload.get("rowCount", 0)),
            rows=tuple(
                TableRow(cells=tuple(str(c) for c in row.get("cells") or ()), id=row.get("id") or None)
                for row in payload.get("rows") or ()
            ),
            patterns=dict(payload["patterns"]) if payload.get("patterns") else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "headers": list(self.headers),
            "rowCount": self.row_count,
            "rows": [row.to_dict() for row in self.rows],
        }
        if self.patterns:
            out["patterns"] = dict(self.patterns)
        return out


@dataclass
class PageStateCompact:
    url: str
    title: str
    buttons: list[CompactElement]
    links: list[CompactElement]
    inputs: list[CompactElement]
    other: list[CompactElement]
    tables: list[TableSummary] = field(default_factory=list)
    lists: list[str] = field(default_factory=list)
    summary: str = ""

    @property
    def element_count(self) -> int:
        return len(self.buttons) + len(self.links) + len(self.inputs) + len(self.other)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "url": self.url,
            "title": self.title,
            "buttons": [e.to_dict() for e in self.buttons],
            "links": [e.to_dict() for e in self.links],
            "inputs": [e.to_dict() for e in self.inputs],
            "other": [e.to_dict() for e in self.other],
        }
        if self.tables:
            out["tables"] = [t.to_dict() for t in self.tables]
        if self.lists:
            out["lists"] = list(self.lists)
        out["summary"] = self.summary
        return out


@dataclass(frozen=True)
class SessionInfo:
    session_id: str
    created_at: datetime
    remote_session_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "sessionId": self.session_id,
            "createdAt": self.created_at.isoformat(),
        }
        if self.remote_session_id:
            out["remoteSessionId"] = self.remote_session_id
        return out


def estimate_tokens(payload: Any) -> int:
    # Fast and predictable estimator for budget enforcement.
    chars = len(json.dumps(payload, separators=(",", ":"), ensure_ascii=True))
    return max(1, chars // 4)
