from __future__ import annotations

from collections.abc import Collection
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select, update

from services.api.app.db.database import session_scope
from services.api.app.db.models import OrderRow
from services.api.app.services.domain import LineItem, Order, OrderStatus
from services.api.app.services.order_feed import OrderFeed, OrderSubscription


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is written in UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc)


def _items_to_json(items: tuple[LineItem, ...]) -> list[dict]:
    return [
        {
            "product_id": item.product_id,
            "unit_label": item.unit_label,
            "quantity": str(item.quantity),
            "unit_price": str(item.unit_price),
        }
        for item in items
    ]


def _items_from_json(raw: list) -> tuple[LineItem, ...]:
    return tuple(
        LineItem(
            product_id=str(it["product_id"]),
            unit_label=str(it.get("unit_label") or ""),
            quantity=Decimal(str(it["quantity"])),
            unit_price=Decimal(str(it["unit_price"])),
        )
        for it in raw or []
    )


def _row_to_order(row: OrderRow) -> Order:
    created_at = _aware(row.created_at)
    pickup_at = _aware(row.pickup_at)
    assert created_at is not None and pickup_at is not None
    return Order(
        id=row.id,
        owner_id=row.owner_id,
        created_at=created_at,
        pickup_at=pickup_at,
        items=_items_from_json(row.items_json),
        status=OrderStatus(row.status),
        version=row.version,
        offset_days=row.offset_days,
        updated_at=_aware(row.updated_at),
    )


class SqlOrderPersistence:
    """SQLAlchemy-backed order storage.

    Updates are a single conditional UPDATE on (id, version), so two writers holding the same
    expected version can never both succeed.
    """

    name = "sql"

    def __init__(self, feed: OrderFeed | None = None) -> None:
        self._feed = feed or OrderFeed()

    def create_order(self, order: Order) -> str:
        order_id = uuid4().hex
        with session_scope() as db:
            db.add(
                OrderRow(
                    id=order_id,
                    owner_id=order.owner_id,
                    status=order.status.value,
                    version=order.version,
                    pickup_at=_utc(order.pickup_at),
                    offset_days=order.offset_days,
                    items_json=_items_to_json(order.items),
                    created_at=_utc(order.created_at),
                    updated_at=_utc(order.updated_at),
                )
            )

        stored = self.load_order(order_id)
        if stored is not None:
            self._feed.publish(stored)
        return order_id

    def update_order(self, order: Order, expected_version: int) -> bool:
        with session_scope() as db:
            result = db.execute(
                update(OrderRow)
                .where(OrderRow.id == order.id, OrderRow.version == expected_version)
                .values(
                    status=order.status.value,
                    version=order.version,
                    pickup_at=_utc(order.pickup_at),
                    offset_days=order.offset_days,
                    items_json=_items_to_json(order.items),
                    updated_at=_utc(order.updated_at),
                )
            )
            written = result.rowcount == 1

        if written:
            self._feed.publish(order)
        return written

    def load_order(self, order_id: str) -> Order | None:
        with session_scope() as db:
            row = db.get(OrderRow, order_id)
            return _row_to_order(row) if row is not None else None

    def list_orders_for_owner(
        self, owner_id: str, statuses: Collection[OrderStatus] | None = None
    ) -> list[Order]:
        stmt = select(OrderRow).where(OrderRow.owner_id == owner_id)
        return self._list(stmt, statuses)

    def list_orders(self, statuses: Collection[OrderStatus] | None = None) -> list[Order]:
        return self._list(select(OrderRow), statuses)

    def _list(self, stmt, statuses: Collection[OrderStatus] | None) -> list[Order]:
        if statuses is not None:
            stmt = stmt.where(OrderRow.status.in_([s.value for s in statuses]))
        stmt = stmt.order_by(OrderRow.created_at)

        with session_scope() as db:
            return [_row_to_order(row) for row in db.scalars(stmt).all()]

    def subscribe_to_owner_orders(self, owner_id: str) -> OrderSubscription:
        return self._feed.subscribe(owner_id)
