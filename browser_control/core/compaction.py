from __future__ import annotations

from dataclasses import dataclass, replace

from browser_control.core.models import CompactBudget, CompactElement, PageStateCompact, estimate_tokens

BUCKETS = ("buttons", "links", "inputs", "other")

# Ties between equally large buckets drop generic controls before inputs.
_DROP_PREFERENCE = {"other": 3, "links": 2, "buttons": 1, "inputs": 0}

TABLE_ROW_STEPS = (5, 3, 1)


@dataclass(frozen=True)
class CompactionOutcome:
    within_budget: bool
    total_tokens: int
    trimmed: bool
    notes: tuple[str, ...]


class CompactionManager:
    """Shrinks a compact page state in place until it fits its budget.

    Entries are always removed whole, from the bottom of a bucket, so the
    surviving selectors stay usable.
    """

    def __init__(self, budget: CompactBudget | None = None) -> None:
        self._budget = budget or CompactBudget()

    @property
    def budget(self) -> CompactBudget:
        return self._budget

    def _largest_bucket(self, state: PageStateCompact) -> list[CompactElement] | None:
        name = max(BUCKETS, key=lambda b: (len(getattr(state, b)), _DROP_PREFERENCE[b]))
        bucket = getattr(state, name)
        return bucket or None

    def _cap_elements(self, state: PageStateCompact, max_elements: int, notes: list[str]) -> None:
        dropped = 0
        while state.element_count > max(0, max_elements):
            bucket = self._largest_bucket(state)
            if bucket is None:
                break
            bucket.pop()
            dropped += 1
        if dropped:
            notes.append(f"dropped_{dropped}_elements_over_max_elements")

    def _cap_structures(self, state: PageStateCompact, notes: list[str]) -> None:
        if len(state.tables) > self._budget.max_tables:
            state.tables = state.tables[: self._budget.max_tables]
            notes.append(f"trimmed_tables_to_{self._budget.max_tables}")
        self._trim_table_rows_to(state, self._budget.max_table_rows, notes)
        if len(state.lists) > self._budget.max_lists:
            state.lists = state.lists[: self._budget.max_lists]
            notes.append(f"trimmed_lists_to_{self._budget.max_lists}")

    def _trim_table_rows_to(self, state: PageStateCompact, cap: int, notes: list[str]) -> None:
        if not any(len(t.rows) > cap for t in state.tables):
            return
        state.tables = [replace(t, rows=t.rows[:cap]) if len(t.rows) > cap else t for t in state.tables]
        notes.append(f"trimmed_table_rows_to_{cap}")

    def _tokens(self, state: PageStateCompact) -> int:
        return estimate_tokens(state.to_dict())

    def enforce(self, state: PageStateCompact, max_elements: int) -> CompactionOutcome:
        limit = self._budget.max_tokens
        notes: list[str] = []

        self._cap_elements(state, max_elements, notes)
        self._cap_structures(state, notes)

        total = self._tokens(state)
        if total <= limit:
            return CompactionOutcome(within_budget=True, total_tokens=total, trimmed=bool(notes), notes=tuple(notes))

        # Deterministic trimming order: table samples, elements, lists, summary.
        for cap in TABLE_ROW_STEPS:
            self._trim_table_rows_to(state, cap, notes)
            total = self._tokens(state)
            if total <= limit:
                return CompactionOutcome(within_budget=True, total_tokens=total, trimmed=True, notes=tuple(notes))

        dropped = 0
        while total > limit:
            bucket = self._largest_bucket(state)
            if bucket is None:
                break
            bucket.pop()
            dropped += 1
            total = self._tokens(state)
        if dropped:
            notes.append(f"dropped_{dropped}_elements_over_token_budget")
        if total <= limit:
            return CompactionOutcome(within_budget=True, total_tokens=total, trimmed=True, notes=tuple(notes))

        if state.lists:
            state.lists = []
            notes.append("dropped_lists")
            total = self._tokens(state)
            if total <= limit:
                return CompactionOutcome(within_budget=True, total_tokens=total, trimmed=True, notes=tuple(notes))

        while total > limit and len(state.summary) > 80:
            state.summary = state.summary[: len(state.summary) // 2].rstrip() + "..."
            total = self._tokens(state)
        notes.append("shortened_summary")

        return CompactionOutcome(within_budget=total <= limit, total_tokens=total, trimmed=True, notes=tuple(notes))
