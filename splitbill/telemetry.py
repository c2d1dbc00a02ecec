from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Final, Protocol

EVENT_NAMES: Final[frozenset[str]] = frozenset(
    {
        "receipt_upload_start",
        "receipt_processed",
        "receipt_processing_failed",
        "person_added",
        "person_removed",
        "item_assigned",
        "stage_changed",
        "bill_saved",
        "bill_save_failed",
        "session_started",
        "session_completed",
        "error_occurred",
    }
)

MAX_PARAMS: Final[int] = 25
MAX_KEY_LENGTH: Final[int] = 40
MAX_VALUE_LENGTH: Final[int] = 100


class Reporter(Protocol):
    def track(self, event: str, params: dict[str, Any] | None = None) -> None:
        """Record one named observation. Must not affect caller state."""


def sanitize_params(params: dict[str, Any] | None) -> dict[str, Any]:
    sanitized: dict[str, Any] = {}
    if not params:
        return sanitized
    for key, value in list(params.items())[:MAX_PARAMS]:
        short_key = str(key)[:MAX_KEY_LENGTH]
        if isinstance(value, (bool, int, float)):
            sanitized[short_key] = value
        elif isinstance(value, str):
            sanitized[short_key] = value[:MAX_VALUE_LENGTH]
        else:
            sanitized[short_key] = str(value)[:MAX_VALUE_LENGTH]
    return sanitized


def _check_event(event: str) -> None:
    if event not in EVENT_NAMES:
        raise ValueError(f"Unknown telemetry event: {event}")


class NullReporter:
    def track(self, event: str, params: dict[str, Any] | None = None) -> None:
        _check_event(event)


class JsonlTelemetrySink:
    def __init__(self, path: str | Path = "logs/telemetry.jsonl") -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def track(self, event: str, params: dict[str, Any] | None = None) -> None:
        _check_event(event)
        payload = {
            "recorded_at_utc": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "params": sanitize_params(params),
        }
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(payload, ensure_ascii=True) + "\n")

    def read_events(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        return [
            json.loads(line)
            for line in self._path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]


@dataclass
class CountingReporter:
    """Counts events in memory and forwards them to an optional inner reporter."""

    inner: Reporter | None = None
    counters: Counter[str] = field(default_factory=Counter)
    events: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def track(self, event: str, params: dict[str, Any] | None = None) -> None:
        _check_event(event)
        clean = sanitize_params(params)
        self.counters[event] += 1
        self.events.append((event, clean))
        if self.inner is not None:
            self.inner.track(event, clean)

    def snapshot(self) -> dict[str, int]:
        return {
            "receipts_processed_total": self.counters.get("receipt_processed", 0),
            "receipts_failed_total": self.counters.get("receipt_processing_failed", 0),
            "people_added_total": self.counters.get("person_added", 0),
            "people_removed_total": self.counters.get("person_removed", 0),
            "assignments_total": self.counters.get("item_assigned", 0),
            "bills_saved_total": self.counters.get("bill_saved", 0),
            "bill_save_failures_total": self.counters.get("bill_save_failed", 0),
        }
