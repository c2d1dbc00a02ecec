from __future__ import annotations

import logging
import time
from typing import Any
from uuid import uuid4

from schemas.bill_schema import Bill
from splitbill.ledger import AssignmentLedger
from splitbill.logger import log_session_event
from splitbill.persistence import BillStore, build_bill_record
from splitbill.roster import Person, Roster
from splitbill.settlement import Settlement, compute_settlement
from splitbill.state_machine import (
    ASSIGN,
    INITIAL_STATE,
    SUMMARY,
    InvalidTransitionError,
    reset_state,
    transition_state,
)
from splitbill.telemetry import NullReporter, Reporter

logger = logging.getLogger(__name__)


class SplitSession:
    """One bill-splitting session: upload, assign, summary, and reset.

    All mutations are single synchronous steps. Extraction results are tagged
    with the generation returned by :meth:`begin_upload`; a result whose
    generation is no longer current is dropped.
    """

    def __init__(self, reporter: Reporter | None = None, session_id: str | None = None) -> None:
        self.session_id = session_id or uuid4().hex
        self.stage = INITIAL_STATE
        self.bill: Bill | None = None
        self.roster = Roster()
        self.ledger: AssignmentLedger | None = None
        self.generation = 0
        self.error: str | None = None
        self.notice: str | None = None
        self._reporter: Reporter = reporter or NullReporter()
        self._started_at = time.monotonic()
        self._upload_started_at: float | None = None
        self._emit("session_started")

    # -- telemetry -----------------------------------------------------------

    def _emit(self, event: str, **params: Any) -> None:
        try:
            self._reporter.track(event, params)
        except Exception:  # noqa: BLE001
            logger.warning("Telemetry delivery failed for event %s", event, exc_info=True)

    def _log(self, message: str, *, event: str, outcome: str | None = None, latency_ms: int | None = None) -> None:
        log_session_event(
            logger,
            logging.INFO,
            message,
            session_id=self.session_id,
            stage=self.stage,
            event=event,
            generation=self.generation,
            latency_ms=latency_ms,
            outcome=outcome,
        )

    # -- stages --------------------------------------------------------------

    def go_to(self, stage: str) -> str:
        target = stage.strip().upper()
        if target == ASSIGN and (self.bill is None or not self.bill.items):
            self.error = "Please process a receipt first"
            raise InvalidTransitionError(self.error)
        if target == SUMMARY and len(self.roster) == 0:
            self.error = "Please add at least one person"
            raise InvalidTransitionError(self.error)

        previous = self.stage
        self.stage = transition_state(previous, target)
        self.error = None
        self._emit("stage_changed", new_stage=self.stage, previous_stage=previous)
        if self.stage == SUMMARY and self.bill is not None:
            self._emit(
                "session_completed",
                session_duration_ms=int((time.monotonic() - self._started_at) * 1000),
                item_count=len(self.bill.items),
                people_count=len(self.roster),
            )
        return self.stage

    def reset(self) -> None:
        previous = self.stage
        self.stage = reset_state(previous)
        self.bill = None
        self.ledger = None
        self.roster.clear()
        self.error = None
        self.notice = None
        # Anything still in flight belongs to the old session.
        self.generation += 1
        self._upload_started_at = None
        if previous != self.stage:
            self._emit("stage_changed", new_stage=self.stage, previous_stage=previous)
        self._log("Session reset", event="reset")

    # -- extraction ----------------------------------------------------------

    def begin_upload(self, file_size: int = 0, file_type: str = "") -> int:
        self.generation += 1
        self.error = None
        self._upload_started_at = time.monotonic()
        self._emit("receipt_upload_start", file_size_kb=round(file_size / 1024), file_type=file_type)
        self._log("Receipt upload started", event="upload_start")
        return self.generation

    def apply_extraction(self, generation: int, bill: Bill) -> bool:
        if generation != self.generation:
            self._log("Discarded stale extraction result", event="upload_result", outcome="stale")
            return False
        if not bill.items:
            self.fail_extraction(generation, "No items were found on the receipt", error_type="empty_bill")
            return False

        latency_ms = None
        if self._upload_started_at is not None:
            latency_ms = int((time.monotonic() - self._upload_started_at) * 1000)
        self.bill = bill
        self.ledger = AssignmentLedger(bill)
        self._emit(
            "receipt_processed",
            item_count=len(bill.items),
            total_amount=bill.total,
            processing_time_ms=latency_ms,
            currency="IDR",
        )
        self._log("Receipt processed", event="upload_result", outcome="success", latency_ms=latency_ms)

        if self.stage != ASSIGN:
            self.go_to(ASSIGN)
        return True

    def fail_extraction(self, generation: int, message: str, error_type: str = "unknown") -> bool:
        if generation != self.generation:
            return False
        self.bill = None
        self.ledger = None
        self.error = message
        self._emit("receipt_processing_failed", error_message=message, error_type=error_type)
        self._log(f"Receipt processing failed: {message}", event="upload_result", outcome="failed")
        if self.stage != INITIAL_STATE:
            previous = self.stage
            self.stage = reset_state(previous)
            self._emit("stage_changed", new_stage=self.stage, previous_stage=previous)
        return True

    # -- roster and ledger ---------------------------------------------------

    def add_person(self, name: str) -> Person | None:
        person = self.roster.add(name)
        if person is not None:
            self._emit("person_added", total_people=len(self.roster))
        return person

    def remove_person(self, index: int) -> Person:
        person = self.roster.remove(index)
        if self.ledger is not None:
            self.ledger.drop_person(person.id)
        self._emit("person_removed", total_people=len(self.roster))
        return person

    def update_assignment(self, item_index: int, person_index: int, delta: int) -> bool:
        if self.bill is None or self.ledger is None:
            return False
        person = self.roster[person_index]
        accepted = self.ledger.update(item_index, person.id, delta)
        if accepted:
            self._emit(
                "item_assigned",
                item_name=self.bill.items[item_index].name,
                person_name=person.name,
                quantity=self.ledger.quantity_for(item_index, person.id),
            )
        return accepted

    def remaining_quantity(self, item_index: int) -> int:
        if self.ledger is None:
            raise IndexError(f"Item index out of range: {item_index}")
        return self.ledger.remaining(item_index)

    def assignments(self) -> dict[int, dict[int, int]]:
        if self.ledger is None:
            return {}
        return self.ledger.by_index(self.roster)

    def settlement(self) -> Settlement:
        return compute_settlement(self.bill, self.roster, self.ledger)

    # -- persistence ---------------------------------------------------------

    def save(self, store: BillStore) -> bool:
        if self.bill is None or self.ledger is None or len(self.roster) == 0:
            return False
        record = build_bill_record(self.bill, self.roster, self.ledger)
        try:
            result = store.save(record)
        except Exception as exc:  # noqa: BLE001
            self.notice = "Failed to save bill"
            self._emit("bill_save_failed", error_message=str(exc))
            logger.exception("Bill save failed for session_id=%s", self.session_id)
            return False
        self.notice = "Bill saved successfully"
        self._emit(
            "bill_saved",
            item_count=len(self.bill.items),
            people_count=len(self.roster),
            total_amount=self.bill.total,
            currency="IDR",
        )
        self._log(f"Bill saved: {result.get('bill_id', '')}", event="save", outcome="success")
        return True
