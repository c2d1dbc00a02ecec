from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from schemas.bill_schema import Bill, SavedBill
from splitbill.ledger import AssignmentLedger
from splitbill.roster import Roster


class PersistenceError(RuntimeError):
    pass


class BillStore(Protocol):
    def save(self, record: dict[str, Any]) -> dict[str, Any]:
        """Persist one finished bill and return a receipt for it."""


def build_bill_record(
    bill: Bill,
    roster: Roster,
    ledger: AssignmentLedger,
    created_at: datetime | None = None,
) -> dict[str, Any]:
    """Shape a finished bill as ``{items, assignments, people, total, tax, service_charge, createdAt}``.

    Assignments are stored positionally (item index -> roster index -> qty),
    with string keys so the record survives a JSON round trip unchanged.
    """
    stamp = (created_at or datetime.now(timezone.utc)).isoformat()
    assignments = {
        str(item_index): {str(person_index): qty for person_index, qty in people.items()}
        for item_index, people in ledger.by_index(roster).items()
    }
    saved = SavedBill(
        items=list(bill.items),
        assignments=assignments,
        people=roster.names,
        total=bill.total,
        tax=bill.tax,
        service_charge=bill.service_charge,
        created_at=stamp,
    )
    return saved.model_dump(mode="json", by_alias=True)


class JsonlBillStore:
    def __init__(self, file_path: str | Path = "data/bills.jsonl") -> None:
        self._path = Path(file_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def save(self, record: dict[str, Any]) -> dict[str, Any]:
        bill_id = uuid4().hex
        event = {"bill_id": bill_id, **record}
        try:
            line = json.dumps(event, ensure_ascii=True)
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Failed to save bill: {exc}") from exc
        return {"status": "saved", "bill_id": bill_id, "path": str(self._path)}

    def list_bills(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        items: list[dict[str, Any]] = []
        for line in self._path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            items.append(json.loads(line))
        return items
