from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger("browser_control.action_log")

ENTRY_TYPES = ("action", "response", "error", "state", "browser")


@dataclass(frozen=True)
class LogEntry:
    timestamp: str
    type: str
    action: Optional[str] = None
    data: Any = None
    duration_ms: Optional[int] = None
    session_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "sessionId": self.session_id,
            "type": self.type,
            "action": self.action,
            "data": self.data,
            "duration": self.duration_ms,
        }


Observer = Callable[[LogEntry], None]


class ActionLog:
    """Bounded record of browser actions, responses and errors.

    Observers are called synchronously for every entry. An observer that
    raises is logged and skipped so the browser operation that produced the
    entry is never affected.
    """

    def __init__(self, max_entries: int = 1_000, observers: list[Observer] | None = None) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)
        self._observers: list[Observer] = list(observers or [])

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def log(
        self,
        entry_type: str,
        action: str | None,
        data: Any = None,
        duration_ms: int | None = None,
        session_id: str | None = None,
    ) -> LogEntry:
        if entry_type not in ENTRY_TYPES:
            raise ValueError(f"Unknown log entry type: {entry_type}")
        entry = LogEntry(
            timestamp=datetime.now(tz=timezone.utc).isoformat(),
            type=entry_type,
            action=action,
            data=data,
            duration_ms=duration_ms,
            session_id=session_id,
        )
        self._entries.append(entry)

        duration = f" ({duration_ms}ms)" if duration_ms is not None else ""
        level = logging.WARNING if entry_type == "error" else logging.INFO
        logger.log(level, "[Browser:%s]%s%s", entry_type, f" {action}" if action else "", duration)

        for observer in list(self._observers):
            try:
                observer(entry)
            except Exception:
                logger.debug("Action log observer failed", exc_info=True)
        return entry

    def log_action(self, action: str, data: Any, session_id: str | None = None) -> LogEntry:
        return self.log("action", action, data, session_id=session_id)

    def log_response(self, action: str, data: Any, duration_ms: int, session_id: str | None = None) -> LogEntry:
        return self.log("response", action, data, duration_ms=duration_ms, session_id=session_id)

    def log_error(self, action: str, error: BaseException | str, session_id: str | None = None) -> LogEntry:
        if isinstance(error, BaseException):
            data = {"message": str(error), "error_type": type(error).__name__}
        else:
            data = {"message": str(error)}
        return self.log("error", action, data, session_id=session_id)

    def log_browser(self, action: str, data: Any, duration_ms: int | None = None, session_id: str | None = None) -> LogEntry:
        return self.log("browser", action, data, duration_ms=duration_ms, session_id=session_id)

    def log_state(self, data: Any, session_id: str | None = None) -> LogEntry:
        return self.log("state", None, data, session_id=session_id)

    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def entries_by_type(self, entry_type: str) -> list[LogEntry]:
        return [entry for entry in self._entries if entry.type == entry_type]

    def recent(self, count: int = 10) -> list[LogEntry]:
        if count <= 0:
            return []
        return list(self._entries)[-count:]

    def clear(self) -> None:
        self._entries.clear()


class JsonlLogSink:
    """Observer that appends every entry to a JSON-lines file."""

    def __init__(self, path: str) -> None:
        self._file = Path(path)
        self._file.parent.mkdir(parents=True, exist_ok=True)

    def __call__(self, entry: LogEntry) -> None:
        payload = json.dumps(entry.to_dict(), sort_keys=True, separators=(",", ":"), default=str)
        with self._file.open("a", encoding="utf-8") as file_handle:
            file_handle.write(payload + "\n")
