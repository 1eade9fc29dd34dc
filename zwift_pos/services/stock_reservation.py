"""
In-memory stock reservations for one cart.

The mirror keeps, per product, the stock still available to this cart
(``remaining``) and the quantity already placed in the cart (``reserved``).
``remaining + reserved`` is the product's stock as last seen from the store,
so it is also the ceiling for the cart quantity. The POS refreshes it from
the store on every request.

Reservations live only as long as the cart; they are not locks and do not
protect against other terminals selling the same stock.
"""
import enum
import logging
from typing import Dict, List, Optional

from zwift_pos.exceptions import StockExceededError, ValidationRejection

logger = logging.getLogger(__name__)


class StockState(str, enum.Enum):
    """Stock state of a product as observed by the cart."""
    AVAILABLE = 'available'      # remaining > 0
    AT_CAPACITY = 'at_capacity'  # remaining == 0, all of it in the cart
    DEPLETED = 'depleted'        # remaining == 0, nothing in the cart


class StockMirror:
    """Per-product remaining/reserved bookkeeping."""

    def __init__(self, remaining: Optional[Dict[int, int]] = None, reserved: Optional[Dict[int, int]] = None):
        self._remaining: Dict[int, int] = dict(remaining or {})
        self._reserved: Dict[int, int] = dict(reserved or {})

    def __contains__(self, product_id: int) -> bool:
        return product_id in self._remaining

    def track(self, product_id: int, store_stock: int) -> None:
        """
        Seed the mirror from the store's stock level.

        Only products with nothing reserved are (re)seeded, so an in-flight
        reservation is never overwritten by a stale read.
        """
        if self._reserved.get(product_id, 0) > 0:
            return
        self._remaining[product_id] = max(0, int(store_stock or 0))
        self._reserved[product_id] = 0

    def refresh(self, product_id: int, store_stock: int) -> None:
        """
        Re-read a tracked product's store level, keeping its reservation.

        Restocks and edits made while the product sits in the cart move the
        ceiling. If the store now holds less than the reservation, nothing
        remains; the reservation itself is left for the operator to reduce.
        """
        if product_id not in self:
            return
        self._remaining[product_id] = max(0, int(store_stock or 0) - self.reserved(product_id))

    def product_ids(self) -> List[int]:
        return list(self._remaining)

    def remaining(self, product_id: int) -> int:
        return self._remaining.get(product_id, 0)

    def reserved(self, product_id: int) -> int:
        return self._reserved.get(product_id, 0)

    def ceiling(self, product_id: int) -> int:
        """Maximum total cart quantity for the product."""
        return self.remaining(product_id) + self.reserved(product_id)

    def state(self, product_id: int) -> StockState:
        if self.remaining(product_id) > 0:
            return StockState.AVAILABLE
        if self.reserved(product_id) > 0:
            return StockState.AT_CAPACITY
        return StockState.DEPLETED

    def ensure_within(self, product_id: int, product_name: str, requested_total: int) -> None:
        """Raise StockExceededError when requested_total is above the ceiling."""
        max_allowed = self.ceiling(product_id)
        if requested_total > max_allowed:
            raise StockExceededError(product_id, product_name, requested_total, max_allowed)

    def reserve(self, product_id: int, new_total: int) -> int:
        """
        Move the product's reservation to new_total and return the delta.

        Positive deltas take stock from ``remaining``; negative deltas give it
        back. Callers check the ceiling first.
        """
        delta = new_total - self.reserved(product_id)
        self._remaining[product_id] = self.remaining(product_id) - delta
        self._reserved[product_id] = new_total
        return delta

    def release(self, product_id: int) -> int:
        """Return the whole reservation to ``remaining``."""
        released = self.reserved(product_id)
        self._remaining[product_id] = self.remaining(product_id) + released
        self._reserved[product_id] = 0
        return released

    def release_all(self) -> None:
        for product_id in list(self._reserved):
            self.release(product_id)

    def consume_all(self) -> Dict[int, int]:
        """
        Turn every reservation into sold stock.

        Reserved quantities are dropped without going back to ``remaining``.
        Returns the post-sale stock of each product that had a reservation.
        """
        sold = {pid: qty for pid, qty in self._reserved.items() if qty > 0}
        for product_id in sold:
            self._reserved[product_id] = 0
        return {pid: self.remaining(pid) for pid in sold}

    def override(self, product_id: int, new_stock: int) -> None:
        """Set the product's total stock explicitly (operator stock override)."""
        reserved = self.reserved(product_id)
        if new_stock < reserved:
            raise ValidationRejection(
                f'Stock cannot be set below the quantity already in the cart ({reserved})',
                payload={'product_id': product_id, 'min_allowed': reserved}
            )
        self._remaining[product_id] = new_stock - reserved
        self._reserved[product_id] = reserved
        logger.info(f"[STOCK] Override product_id={product_id}: stock={new_stock}, reserved={reserved}")

    def to_dict(self) -> dict:
        # JSON object keys must be strings
        return {
            'remaining': {str(k): v for k, v in self._remaining.items()},
            'reserved': {str(k): v for k, v in self._reserved.items()},
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'StockMirror':
        data = data or {}
        return cls(
            remaining={int(k): int(v) for k, v in (data.get('remaining') or {}).items()},
            reserved={int(k): int(v) for k, v in (data.get('reserved') or {}).items()},
        )
