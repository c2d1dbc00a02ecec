from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from schemas.bill_schema import Bill
from splitbill.ledger import AssignmentLedger
from splitbill.roster import Roster


@dataclass(frozen=True)
class ShareLine:
    name: str
    quantity: int
    cost: float


@dataclass
class PersonShare:
    person_id: str
    name: str
    lines: list[ShareLine] = field(default_factory=list)
    items_subtotal: float = 0.0
    charges_share: float = 0.0
    proportion: float = 0.0

    @property
    def subtotal(self) -> float:
        return self.items_subtotal + self.charges_share


@dataclass
class Settlement:
    shares: list[PersonShare] = field(default_factory=list)
    total_assigned_value: float = 0.0
    charges: float = 0.0
    items_total: float = 0.0

    @property
    def payers(self) -> list[PersonShare]:
        return [share for share in self.shares if share.items_subtotal > 0]

    @property
    def settled_total(self) -> float:
        return sum(share.subtotal for share in self.shares)

    @property
    def unassigned_value(self) -> float:
        return self.items_total - self.total_assigned_value


def compute_settlement(
    bill: Bill | None,
    roster: Roster,
    ledger: AssignmentLedger | None,
) -> Settlement:
    """Distribute item costs, then tax and service pro rata to item subtotals.

    Values are left unrounded; use :func:`format_idr` for display.
    """
    if bill is None or len(roster) == 0:
        return Settlement()

    shares = [PersonShare(person_id=person.id, name=person.name) for person in roster]
    by_id = {share.person_id: share for share in shares}
    total_assigned = 0.0

    entries = ledger.entries() if ledger is not None else {}
    for item_index, item in enumerate(bill.items):
        people = entries.get(item_index)
        if not people:
            continue
        unit_price = item.price / item.quantity
        for person_id, qty in people.items():
            share = by_id.get(person_id)
            if share is None:
                continue
            cost = unit_price * qty
            share.items_subtotal += cost
            share.lines.append(ShareLine(name=item.name, quantity=qty, cost=cost))
            total_assigned += cost

    charges = bill.tax + bill.service_charge
    if total_assigned > 0:
        for share in shares:
            if share.items_subtotal > 0:
                share.proportion = share.items_subtotal / total_assigned
                share.charges_share = share.proportion * charges

    return Settlement(
        shares=shares,
        total_assigned_value=total_assigned,
        charges=charges,
        items_total=bill.items_total,
    )


def format_idr(amount: float) -> str:
    # whole rupiah, halves away from zero
    rounded = int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    sign = "-" if rounded < 0 else ""
    grouped = f"{abs(rounded):,}".replace(",", ".")
    return f"{sign}Rp {grouped}"
