from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field


class LineItemOut(BaseModel):
    product_id: str
    unit_label: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal


class OrderOut(BaseModel):
    order_id: str
    owner_id: str
    status: str
    version: int

    created_at: str
    updated_at: str | None = None
    pickup_at: str
    date_key: str

    edit_deadline: str
    window_status: str
    deadline_warning: str

    items: list[LineItemOut] = Field(default_factory=list)
    total: Decimal


class OrderCancelRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)


class PickupSlotOut(BaseModel):
    pickup_at: str
    edit_deadline: str
    date_key: str


class SweepResponse(BaseModel):
    locked_order_ids: list[str] = Field(default_factory=list)
    completed_order_ids: list[str] = Field(default_factory=list)
