from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from services.api.app.models.order import LineItemOut, OrderOut
from services.api.app.services.reconciliation import MergeResolution, ResolutionStrategy


class BasketItemRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    unit_label: str = ""
    unit_price: Decimal = Field(..., ge=0)
    quantity: Decimal
    # "set" replaces the line's quantity, "add" increments it.
    mode: Literal["set", "add"] = "set"


class BasketOwnerRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)


class BasketCommitRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)
    pickup_at: datetime | None = None


class BasketResolveRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)
    strategy: ResolutionStrategy
    resolutions: dict[str, MergeResolution] = Field(default_factory=dict)


class BasketOut(BaseModel):
    owner_id: str | None
    items: list[LineItemOut] = Field(default_factory=list)
    total: Decimal
    bound_order_id: str | None = None
    bound_order_date_key: str | None = None
    bound_order_version: int | None = None


class ItemChangeOut(BaseModel):
    product_id: str
    current_quantity: Decimal
    committed_quantity: Decimal
    has_changed: bool


class MergeConflictOut(BaseModel):
    product_id: str
    conflict_type: str
    existing_quantity: Decimal
    new_quantity: Decimal
    resolution: str


class ConflictOut(BaseModel):
    reason: str
    local_basket: BasketOut
    remote_order: OrderOut
    merge_conflicts: list[MergeConflictOut] = Field(default_factory=list)


class ReconciliationOut(BaseModel):
    basket: BasketOut
    order: OrderOut | None = None
    items: list[ItemChangeOut] = Field(default_factory=list)
    is_divergent: bool
    is_editable: bool
    loaded: bool = False
    released: bool = False
    conflict: ConflictOut | None = None
