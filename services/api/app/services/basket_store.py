from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from decimal import Decimal, InvalidOperation

import structlog

from services.api.app.config import EngineConfig
from services.api.app.services.domain import ZERO, Basket, LineItem
from services.api.app.services.errors import EngineError, ErrorKind

logger = structlog.get_logger(__name__)

BasketListener = Callable[[Basket], None]

Number = Decimal | int | float | str


def to_decimal(value: Number) -> Decimal | None:
    """Parse a numeric input; None when it is not a finite number."""

    if isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return None
    if parsed.is_nan() or parsed.is_infinite():
        return None
    return parsed


class BasketStore:
    """The single mutable working set of line items for the active session.

    Every mutation publishes a fresh `Basket` snapshot to subscribers. `bind_to_order`
    replaces items and binding under one lock, so readers never see a half-loaded basket.
    """

    def __init__(self, owner_id: str | None, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig()
        self._lock = threading.RLock()
        self._owner_id = owner_id
        self._items: dict[str, LineItem] = {}
        self._baseline: dict[str, LineItem] = {}
        self._bound_order_id: str | None = None
        self._bound_order_date_key: str | None = None
        self._bound_order_version: int | None = None
        self._listeners: list[BasketListener] = []

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    def subscribe(self, listener: BasketListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, snapshot: Basket) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(snapshot)

    def _check_owner(self) -> EngineError | None:
        if self._owner_id is None and not self._config.allows_unauthenticated_basket:
            return EngineError(ErrorKind.SIGN_IN_REQUIRED, "Sign in to use the basket.")
        return None

    def _snapshot_locked(self) -> Basket:
        return Basket(
            owner_id=self._owner_id,
            items=self._items,
            bound_order_id=self._bound_order_id,
            bound_order_date_key=self._bound_order_date_key,
            bound_order_version=self._bound_order_version,
        )

    def set_quantity(
        self,
        product_id: str,
        unit_label: str,
        unit_price: Number,
        quantity: Number,
    ) -> EngineError | None:
        """Upsert a line; a quantity of zero or less removes it."""

        error = self._check_owner()
        if error is not None:
            return error

        parsed_quantity = to_decimal(quantity)
        if parsed_quantity is None:
            return EngineError(
                ErrorKind.INVALID_QUANTITY, f"Quantity for {product_id} must be a finite number."
            )

        parsed_price = to_decimal(unit_price)
        if parsed_price is None or parsed_price < ZERO:
            return EngineError(
                ErrorKind.INVALID_QUANTITY,
                f"Unit price for {product_id} must be a finite, non-negative number.",
            )

        with self._lock:
            if parsed_quantity <= ZERO:
                self._items.pop(product_id, None)
            else:
                self._items[product_id] = LineItem(
                    product_id=product_id,
                    unit_label=unit_label,
                    quantity=parsed_quantity,
                    unit_price=parsed_price,
                )
            snapshot = self._snapshot_locked()

        self._notify(snapshot)
        return None

    def add_quantity(
        self,
        product_id: str,
        unit_label: str,
        unit_price: Number,
        delta: Number,
    ) -> EngineError | None:
        parsed_delta = to_decimal(delta)
        if parsed_delta is None:
            return EngineError(
                ErrorKind.INVALID_QUANTITY, f"Quantity for {product_id} must be a finite number."
            )

        current = self.quantity_of(product_id)
        return self.set_quantity(product_id, unit_label, unit_price, current + parsed_delta)

    def remove_item(self, product_id: str) -> None:
        with self._lock:
            if self._items.pop(product_id, None) is None:
                return
            snapshot = self._snapshot_locked()
        self._notify(snapshot)

    def quantity_of(self, product_id: str) -> Decimal:
        with self._lock:
            item = self._items.get(product_id)
            return item.quantity if item is not None else ZERO

    def clear(self) -> None:
        with self._lock:
            self._items = {}
            self._baseline = {}
            self._bound_order_id = None
            self._bound_order_date_key = None
            self._bound_order_version = None
            snapshot = self._snapshot_locked()

        logger.debug("Basket cleared", owner_id=self._owner_id)
        self._notify(snapshot)

    def bind_to_order(
        self,
        order_id: str,
        date_key: str,
        items: Iterable[LineItem],
        version: int | None = None,
        *,
        baseline: Iterable[LineItem] | None = None,
        keep_edits_since: Basket | None = None,
    ) -> None:
        """Replace the working set with an order's items and bind to that order.

        `baseline` defaults to `items`; pass the remote order's items when the working set
        intentionally differs from what is committed (e.g. after a merge). With
        `keep_edits_since`, a working set that changed after that snapshot is kept as-is and
        only the binding and baseline move.
        """

        loaded = {item.product_id: item for item in items if item.quantity > ZERO}
        committed = (
            dict(loaded)
            if baseline is None
            else {item.product_id: item for item in baseline if item.quantity > ZERO}
        )

        with self._lock:
            if keep_edits_since is not None and self._items != dict(keep_edits_since.items):
                loaded = dict(self._items)
            self._items = loaded
            self._baseline = committed
            self._bound_order_id = order_id
            self._bound_order_date_key = date_key
            self._bound_order_version = version
            snapshot = self._snapshot_locked()

        logger.debug(
            "Basket bound to order",
            owner_id=self._owner_id,
            order_id=order_id,
            version=version,
            item_count=len(loaded),
        )
        self._notify(snapshot)

    def baseline(self) -> dict[str, LineItem]:
        """Items as last loaded from or committed to the bound order."""
        with self._lock:
            return dict(self._baseline)

    def is_modified(self) -> bool:
        """True when the working set differs from the committed baseline."""
        with self._lock:
            keys = set(self._items) | set(self._baseline)
            return any(
                (self._items[k].quantity if k in self._items else ZERO)
                != (self._baseline[k].quantity if k in self._baseline else ZERO)
                for k in keys
            )

    def total(self) -> Decimal:
        with self._lock:
            return sum((item.line_total for item in self._items.values()), ZERO)

    def snapshot(self) -> Basket:
        with self._lock:
            return self._snapshot_locked()
