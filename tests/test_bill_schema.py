from __future__ import annotations

import pytest
from pydantic import ValidationError

from schemas.bill_schema import Bill, LineItem


def test_line_item_unit_price_divides_line_total() -> None:
    item = LineItem(name="Nasi Goreng", price=50000, quantity=2)
    assert item.unit_price == 25000


def test_line_item_rejects_zero_quantity() -> None:
    with pytest.raises(ValidationError):
        LineItem(name="Es Teh", price=5000, quantity=0)


def test_line_item_defaults_missing_quantity_to_one() -> None:
    item = LineItem.model_validate({"name": "Kerupuk", "price": 3000, "quantity": None})
    assert item.quantity == 1


def test_line_item_accepts_integral_float_quantity() -> None:
    item = LineItem.model_validate({"name": "Sate", "price": 30000, "quantity": 3.0})
    assert item.quantity == 3


def test_bill_fills_missing_charges_and_total() -> None:
    bill = Bill.model_validate(
        {
            "items": [{"name": "Mie Ayam", "price": 20000, "quantity": 1}],
            "tax": None,
        }
    )
    assert bill.tax == 0
    assert bill.service_charge == 0
    assert bill.total == 20000


def test_bill_keeps_declared_total() -> None:
    bill = Bill.model_validate(
        {
            "items": [{"name": "Nasi Goreng", "price": 50000, "quantity": 2}],
            "tax": 5000,
            "service_charge": 2500,
            "total": 57500,
        }
    )
    assert bill.total == 57500
    assert bill.items_total == 50000
    assert bill.charges == 7500


def test_bill_rejects_negative_tax() -> None:
    with pytest.raises(ValidationError):
        Bill.model_validate({"items": [], "tax": -1, "service_charge": 0, "total": 0})


def test_bill_is_immutable() -> None:
    bill = Bill(items=[], tax=0, service_charge=0, total=0)
    with pytest.raises(ValidationError):
        bill.tax = 10  # type: ignore[misc]
