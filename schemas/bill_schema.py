from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class LineItem(BaseModel):
    """One receipt line. ``price`` is the total for all units on the line."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    price: float = Field(ge=0)
    quantity: int = Field(default=1, ge=1)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("quantity", mode="before")
    @classmethod
    def _default_quantity(cls, value: Any) -> Any:
        if value is None or value == "":
            return 1
        return value

    @property
    def unit_price(self) -> float:
        return self.price / self.quantity


class Bill(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[LineItem] = Field(default_factory=list)
    tax: float = Field(default=0.0, ge=0)
    service_charge: float = Field(default=0.0, ge=0)
    total: float = Field(default=0.0, ge=0)

    @field_validator("tax", "service_charge", mode="before")
    @classmethod
    def _zero_if_missing(cls, value: Any) -> Any:
        if value is None or value == "":
            return 0.0
        return value

    @model_validator(mode="before")
    @classmethod
    def _derive_total(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if data.get("total") not in (None, ""):
            return data
        items = data.get("items") or []
        if not isinstance(items, (list, tuple)):
            return data
        try:
            items_total = 0.0
            for item in items:
                price = item.get("price") if isinstance(item, dict) else getattr(item, "price", 0)
                items_total += float(price or 0)
            charges = float(data.get("tax") or 0) + float(data.get("service_charge") or 0)
        except (TypeError, ValueError):
            # left for field validation to report
            return data
        return {**data, "total": items_total + charges}

    @property
    def items_total(self) -> float:
        return sum(item.price for item in self.items)

    @property
    def charges(self) -> float:
        return self.tax + self.service_charge


class SavedBill(BaseModel):
    items: list[LineItem]
    assignments: dict[str, dict[str, int]] = Field(default_factory=dict)
    people: list[str] = Field(default_factory=list)
    total: float = Field(ge=0)
    tax: float = Field(ge=0)
    service_charge: float = Field(ge=0)
    created_at: str = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)
