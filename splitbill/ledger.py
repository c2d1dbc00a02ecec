from __future__ import annotations

from typing import Final

from schemas.bill_schema import Bill
from splitbill.roster import Roster

ALLOWED_DELTAS: Final[frozenset[int]] = frozenset({1, -1})


class AssignmentLedger:
    """Sparse ``item_index -> {person_id -> qty}`` map for one bill.

    Quantities are strictly positive; for every item the assigned total never
    exceeds the line's quantity.
    """

    def __init__(self, bill: Bill) -> None:
        self._quantities: tuple[int, ...] = tuple(item.quantity for item in bill.items)
        self._entries: dict[int, dict[str, int]] = {}

    @property
    def is_empty(self) -> bool:
        return not self._entries

    def entries(self) -> dict[int, dict[str, int]]:
        return {item_index: dict(people) for item_index, people in self._entries.items()}

    def quantity_for(self, item_index: int, person_id: str) -> int:
        return self._entries.get(item_index, {}).get(person_id, 0)

    def assigned(self, item_index: int) -> int:
        self._check_item(item_index)
        return sum(self._entries.get(item_index, {}).values())

    def remaining(self, item_index: int) -> int:
        return self._quantities[item_index] - self.assigned(item_index)

    def update(self, item_index: int, person_id: str, delta: int) -> bool:
        """Apply +1/-1 to one person's share of an item.

        Returns ``False`` and leaves the ledger untouched when the change would
        over-allocate the item.
        """
        if delta not in ALLOWED_DELTAS:
            raise ValueError(f"delta must be +1 or -1, got {delta}")
        self._check_item(item_index)

        current_people = self._entries.get(item_index, {})
        current_qty = current_people.get(person_id, 0)
        new_qty = max(current_qty + delta, 0)
        projected = sum(current_people.values()) - current_qty + new_qty
        if projected > self._quantities[item_index]:
            return False

        people = dict(current_people)
        if new_qty == 0:
            people.pop(person_id, None)
        else:
            people[person_id] = new_qty

        if people:
            self._entries[item_index] = people
        else:
            self._entries.pop(item_index, None)
        return True

    def drop_person(self, person_id: str) -> None:
        for item_index in list(self._entries):
            people = self._entries[item_index]
            people.pop(person_id, None)
            if not people:
                del self._entries[item_index]

    def by_index(self, roster: Roster) -> dict[int, dict[int, int]]:
        """Positional view keyed by roster index; unknown people are skipped."""
        positions = {person_id: index for index, person_id in enumerate(roster.ids)}
        view: dict[int, dict[int, int]] = {}
        for item_index, people in sorted(self._entries.items()):
            row = {
                positions[person_id]: qty
                for person_id, qty in people.items()
                if person_id in positions
            }
            if row:
                view[item_index] = dict(sorted(row.items()))
        return view

    def clear(self) -> None:
        self._entries.clear()

    def _check_item(self, item_index: int) -> None:
        if not 0 <= item_index < len(self._quantities):
            raise IndexError(f"Item index out of range: {item_index}")
