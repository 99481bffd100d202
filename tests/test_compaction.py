from browser_control.core.compaction import CompactionManager
from browser_control.core.dom_extractor import compose_summary
from browser_control.core.models import (
    CompactBudget,
    CompactElement,
    PageStateCompact,
    TableRow,
    TableSummary,
    estimate_tokens,
)


def _elements(prefix: str, count: int, kind: str) -> list[CompactElement]:
    return [CompactElement(selector=f"#{prefix}-{i}", label=f"{prefix} {i}", kind=kind) for i in range(count)]


def _state(buttons: int = 0, links: int = 0, inputs: int = 0, other: int = 0, **kwargs) -> PageStateCompact:
    return PageStateCompact(
        url="https://example.com",
        title="Example",
        buttons=_elements("btn", buttons, "btn"),
        links=_elements("link", links, "link"),
        inputs=_elements("input", inputs, "input"),
        other=_elements("other", other, "other"),
        **kwargs,
    )


def test_small_state_is_untouched() -> None:
    state = _state(buttons=3, links=2)

    outcome = CompactionManager().enforce(state, max_elements=75)

    assert outcome.within_budget is True
    assert outcome.trimmed is False
    assert state.element_count == 5


def test_max_elements_drops_from_bottom_of_largest_bucket() -> None:
    state = _state(buttons=10, links=60, inputs=20, other=10)

    outcome = CompactionManager(CompactBudget(max_tokens=100_000)).enforce(state, max_elements=75)

    assert state.element_count == 75
    assert outcome.trimmed is True
    # Links were the largest bucket and lose their tail first.
    assert len(state.links) < 60
    assert state.links[0].selector == "#link-0"
    assert state.links[-1].selector == f"#link-{len(state.links) - 1}"
    assert len(state.buttons) == 10


def test_token_budget_is_respected() -> None:
    state = _state(buttons=40, links=40, inputs=40, other=40, summary="word " * 100)
    budget = CompactBudget(max_tokens=600)

    outcome = CompactionManager(budget).enforce(state, max_elements=200)

    assert outcome.within_budget is True
    assert estimate_tokens(state.to_dict()) <= 600
    assert outcome.total_tokens == estimate_tokens(state.to_dict())


def test_table_rows_shrink_before_elements_are_dropped() -> None:
    rows = tuple(TableRow(cells=("x" * 60, "y" * 60), id=str(i)) for i in range(10))
    table = TableSummary(headers=("A", "B"), row_count=500, rows=rows)
    state = _state(buttons=5, tables=[table])
    limit = estimate_tokens(state.to_dict()) - 50

    outcome = CompactionManager(CompactBudget(max_tokens=limit)).enforce(state, max_elements=75)

    assert outcome.within_budget is True
    assert len(state.tables[0].rows) < 10
    assert state.tables[0].row_count == 500
    assert len(state.buttons) == 5
    assert "trimmed_table_rows_to_5" in outcome.notes


def test_structure_caps_apply_before_token_budget() -> None:
    tables = [TableSummary(headers=("H",), row_count=1, rows=(TableRow(cells=("c",)),)) for _ in range(8)]
    state = _state(tables=tables, lists=[f"ul (3 items): a | b | c {i}" for i in range(9)])

    outcome = CompactionManager(CompactBudget(max_tables=5, max_lists=5)).enforce(state, max_elements=75)

    assert len(state.tables) == 5
    assert len(state.lists) == 5
    assert "trimmed_tables_to_5" in outcome.notes


def test_compose_summary_counts_everything() -> None:
    raw = {
        "buttons": [{}, {}],
        "links": [{}],
        "inputs": [],
        "other": [{}],
        "tables": [{"rowCount": 12}, {"rowCount": 3}],
        "lists": ["ul (3 items): a | b | c"],
    }

    summary = compose_summary("Contacts", "https://crm.example", raw, "Welcome back")

    assert summary.startswith("Page 'Contacts' has 2 buttons, 1 link, 0 inputs, 1 other control")
    assert "2 tables (15 rows)" in summary
    assert "1 list" in summary
    assert summary.endswith("Text: Welcome back")


def test_compose_summary_falls_back_to_url() -> None:
    assert compose_summary("", "https://x.example", {}, "").startswith("Page at https://x.example")
