"""
Tests for the wire-format data model.
"""

from datetime import datetime, timezone

import pytest

from browser_control.core.config import ControllerOptions, merge_options
from browser_control.core.models import (
    CompactElement,
    Cookie,
    PageStateCompact,
    SessionInfo,
    TableRow,
    TableSummary,
    Viewport,
    estimate_tokens,
    filter_cookies_by_domain,
)


class TestCookie:
    """Tests for Cookie parsing and serialisation."""

    def test_path_defaults_to_root(self):
        cookie = Cookie.from_dict({"name": "sid", "value": "abc", "domain": ".example.com"})

        assert cookie.path == "/"
        assert cookie.to_dict() == {"name": "sid", "value": "abc", "domain": ".example.com", "path": "/"}

    def test_accepts_camel_and_snake_case(self):
        camel = Cookie.from_dict(
            {"name": "a", "value": "1", "domain": "x.com", "httpOnly": True, "sameSite": "Lax"}
        )
        snake = Cookie.from_dict(
            {"name": "a", "value": "1", "domain": "x.com", "http_only": True, "same_site": "Lax"}
        )

        assert camel == snake
        assert camel.to_dict()["httpOnly"] is True
        assert camel.to_dict()["sameSite"] == "Lax"

    def test_rejects_unknown_same_site(self):
        with pytest.raises(ValueError, match="sameSite"):
            Cookie.from_dict({"name": "a", "value": "1", "domain": "x.com", "sameSite": "Relaxed"})

    def test_requires_name_value_domain(self):
        with pytest.raises(ValueError, match="domain"):
            Cookie.from_dict({"name": "a", "value": "1"})

    def test_optional_fields_omitted_when_unset(self):
        out = Cookie(name="a", value="1", domain="x.com", expires=1700000000.0).to_dict()

        assert out["expires"] == 1700000000.0
        assert "secure" not in out
        assert "httpOnly" not in out


def test_filter_cookies_by_domain_strips_wildcard_and_matches_suffix() -> None:
    cookies = [
        Cookie(name="a", value="1", domain="app.example.com"),
        Cookie(name="b", value="2", domain="example.com"),
        Cookie(name="c", value="3", domain="other.org"),
    ]

    assert [c.name for c in filter_cookies_by_domain(cookies, "*.example.com")] == ["a", "b"]
    assert [c.name for c in filter_cookies_by_domain(cookies, "other.org")] == ["c"]
    assert len(filter_cookies_by_domain(cookies, None)) == 3


def test_compact_state_uses_short_keys_and_omits_empty_sections() -> None:
    state = PageStateCompact(
        url="https://example.com",
        title="Example",
        buttons=[CompactElement(selector="#save", label="Save", kind="btn", disabled=True)],
        links=[CompactElement(selector='a[href="/x"]', label="X", kind="link")],
        inputs=[],
        other=[],
        summary="Page 'Example'",
    )

    payload = state.to_dict()

    assert payload["buttons"] == [{"s": "#save", "t": "Save", "k": "btn", "d": True}]
    assert payload["links"] == [{"s": 'a[href="/x"]', "t": "X", "k": "link"}]
    assert "tables" not in payload
    assert "lists" not in payload
    assert state.element_count == 2


def test_table_summary_round_trips_row_ids_and_patterns() -> None:
    raw = {
        "headers": ["Name", "Email"],
        "rowCount": 120,
        "rows": [{"id": "42", "cells": ["Ada", "ada@example.com"]}, {"cells": ["Bob", "--"]}],
        "patterns": {"select": '[data-test-id="checkbox-select-row-{id}"]'},
    }

    table = TableSummary.from_dict(raw)

    assert table.row_count == 120
    assert table.rows[0] == TableRow(cells=("Ada", "ada@example.com"), id="42")
    assert table.to_dict() == raw


def test_session_info_serialises_iso_timestamp() -> None:
    created = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    local = SessionInfo(session_id="tab-1", created_at=created).to_dict()
    remote = SessionInfo(session_id="tab-1", created_at=created, remote_session_id="bb-9").to_dict()

    assert local == {"sessionId": "tab-1", "createdAt": "2024-05-01T12:00:00+00:00"}
    assert remote["remoteSessionId"] == "bb-9"


def test_estimate_tokens_is_json_length_over_four() -> None:
    assert estimate_tokens({"a": "x" * 400}) == len('{"a":"' + "x" * 400 + '"}') // 4
    assert estimate_tokens({}) == 1


def test_merge_options_caller_values_win() -> None:
    environment = ControllerOptions(headless=True, viewport=Viewport(1280, 1032), use_cloud=True)
    cookies = [Cookie(name="a", value="1", domain="x.com")]

    merged = merge_options(environment, {"headless": False, "viewport": {"width": 800, "height": 600}}, cookies)

    assert merged.headless is False
    assert merged.viewport == Viewport(800, 600)
    assert merged.use_cloud is True
    assert merged.cookies == cookies
    assert environment.cookies == []


def test_merge_options_keeps_environment_when_override_is_none() -> None:
    environment = ControllerOptions(headless=True)

    merged = merge_options(environment, {"headless": None, "viewport": None})

    assert merged.headless is True
    assert merged.viewport == environment.viewport
