from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from schemas.bill_schema import Bill, LineItem
from splitbill.persistence import JsonlBillStore
from splitbill.session import SplitSession
from splitbill.state_machine import InvalidTransitionError
from splitbill.telemetry import CountingReporter


def _bill() -> Bill:
    return Bill(
        items=[
            LineItem(name="Nasi Goreng", price=50000, quantity=2),
            LineItem(name="Es Teh", price=8000, quantity=1),
        ],
        tax=5800,
        service_charge=2900,
        total=66700,
    )


def _loaded_session(reporter: CountingReporter | None = None) -> SplitSession:
    session = SplitSession(reporter=reporter)
    assert session.apply_extraction(session.begin_upload(), _bill())
    return session


class _FailingStore:
    def save(self, record: dict[str, Any]) -> dict[str, Any]:
        raise RuntimeError("disk full")


class _BrokenReporter:
    def track(self, event: str, params: dict[str, Any] | None = None) -> None:
        raise ConnectionError("analytics offline")


def test_new_session_starts_in_upload() -> None:
    session = SplitSession()
    assert session.stage == "UPLOAD"
    assert session.bill is None
    assert session.settlement().shares == []


def test_cannot_assign_without_bill() -> None:
    session = SplitSession()
    with pytest.raises(InvalidTransitionError):
        session.go_to("ASSIGN")
    assert session.error == "Please process a receipt first"
    assert session.stage == "UPLOAD"


def test_extraction_moves_to_assign_with_fresh_ledger() -> None:
    session = _loaded_session()
    assert session.stage == "ASSIGN"
    assert session.assignments() == {}
    assert session.remaining_quantity(0) == 2


def test_summary_requires_people() -> None:
    session = _loaded_session()
    with pytest.raises(InvalidTransitionError, match="at least one person"):
        session.go_to("SUMMARY")
    session.add_person("Ali")
    assert session.go_to("SUMMARY") == "SUMMARY"
    assert session.go_to("ASSIGN") == "ASSIGN"


def test_stale_extraction_result_is_discarded() -> None:
    session = SplitSession()
    first = session.begin_upload()
    second = session.begin_upload()

    assert session.apply_extraction(first, _bill()) is False
    assert session.bill is None
    assert session.apply_extraction(second, _bill()) is True
    assert session.stage == "ASSIGN"


def test_reset_discards_in_flight_extraction() -> None:
    session = SplitSession()
    generation = session.begin_upload()
    session.reset()
    assert session.apply_extraction(generation, _bill()) is False
    assert session.stage == "UPLOAD"


def test_failed_extraction_returns_to_upload_without_bill() -> None:
    session = _loaded_session()
    generation = session.begin_upload()
    assert session.fail_extraction(generation, "AI model returned an empty response.")

    assert session.stage == "UPLOAD"
    assert session.bill is None
    assert session.ledger is None
    assert session.error == "AI model returned an empty response."


def test_bill_without_items_is_treated_as_failure() -> None:
    session = SplitSession()
    generation = session.begin_upload()
    empty = Bill(items=[], tax=0, service_charge=0, total=0)

    assert session.apply_extraction(generation, empty) is False
    assert session.bill is None
    assert session.stage == "UPLOAD"
    assert session.error


def test_remove_person_shifts_assignments() -> None:
    session = _loaded_session()
    for name in ("Ali", "Budi", "Citra"):
        session.add_person(name)
    session.update_assignment(0, 0, +1)
    session.update_assignment(0, 2, +1)
    session.update_assignment(1, 1, +1)
    assert session.assignments() == {0: {0: 1, 2: 1}, 1: {1: 1}}

    removed = session.remove_person(1)

    assert removed.name == "Budi"
    assert session.roster.names == ["Ali", "Citra"]
    assert session.assignments() == {0: {0: 1, 1: 1}}
    assert session.remaining_quantity(1) == 1


def test_fully_assigned_item_rejects_other_person() -> None:
    session = _loaded_session()
    session.add_person("Ali")
    session.add_person("Budi")
    assert session.update_assignment(1, 1, +1)
    before = session.assignments()

    assert session.update_assignment(1, 0, +1) is False
    assert session.assignments() == before


def test_reset_clears_everything() -> None:
    session = _loaded_session()
    session.add_person("Ali")
    session.update_assignment(0, 0, +1)
    session.go_to("SUMMARY")

    session.reset()

    assert session.stage == "UPLOAD"
    assert session.bill is None
    assert len(session.roster) == 0
    assert session.assignments() == {}


def test_telemetry_events_are_emitted() -> None:
    reporter = CountingReporter()
    session = _loaded_session(reporter)
    session.add_person("Ali")
    session.add_person("Ali")
    session.update_assignment(0, 0, +1)
    session.remove_person(0)

    names = [event for event, _ in reporter.events]
    assert names[0] == "session_started"
    assert "receipt_processed" in names
    assert names.count("person_added") == 1
    assert "item_assigned" in names
    assert reporter.snapshot()["people_removed_total"] == 1
    stage_events = [params for event, params in reporter.events if event == "stage_changed"]
    assert stage_events[0] == {"new_stage": "ASSIGN", "previous_stage": "UPLOAD"}


def test_broken_reporter_does_not_affect_state() -> None:
    session = SplitSession(reporter=_BrokenReporter())
    session.apply_extraction(session.begin_upload(), _bill())
    assert session.add_person("Ali") is not None
    assert session.update_assignment(0, 0, +1)
    assert session.stage == "ASSIGN"


def test_save_persists_record(tmp_path: Path) -> None:
    session = _loaded_session()
    session.add_person("Ali")
    session.update_assignment(0, 0, +1)
    store = JsonlBillStore(tmp_path / "bills.jsonl")

    assert session.save(store)
    assert session.notice == "Bill saved successfully"
    saved = store.list_bills()
    assert saved[0]["people"] == ["Ali"]
    assert saved[0]["assignments"] == {"0": {"0": 1}}


def test_failed_save_leaves_settlement_unchanged() -> None:
    reporter = CountingReporter()
    session = _loaded_session(reporter)
    session.add_person("Ali")
    session.update_assignment(0, 0, +1)
    before = session.settlement().settled_total

    assert session.save(_FailingStore()) is False
    assert session.notice == "Failed to save bill"
    assert session.settlement().settled_total == before
    assert reporter.counters["bill_save_failed"] == 1
