"""
Checkout service - turns a cart into a persisted sale.

The sale and its items are written in one transaction. The sold units are
then deducted from each product's current store stock, one product per task
and concurrently; a failed deduction is logged and recorded for retry but
never reverses the sale.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zwift_pos import signals
from zwift_pos.database import db_session
from zwift_pos.exceptions import EmptyCartError, SalePersistenceError, ValidationRejection
from zwift_pos.models import Sale, SaleItem, normalize_payment_method
from zwift_pos.services.cache_service import get_cache
from zwift_pos.services.cart_service import Cart
from zwift_pos.services.pricing import money
from zwift_pos.services.sales_analytics_service import RECENT_SALES_CACHE_MODULE
from zwift_pos.services.stock_service import StockWriter, record_sync_failure, session_stock_writer

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


@dataclass
class StockPushOutcome:
    """Result of deducting one product's sold units from the store."""
    product_id: int
    quantity: int
    target_stock: Optional[int]  # store level after the deduction, or the expected level on failure
    ok: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'quantity': self.quantity,
            'target_stock': self.target_stock,
            'ok': self.ok,
            'error': self.error,
        }


@dataclass
class SettlementResult:
    sale_id: int
    payment_method: str
    totals: Dict[str, Any]
    stock_updates: List[StockPushOutcome] = field(default_factory=list)

    @property
    def failed_product_ids(self) -> List[int]:
        return [o.product_id for o in self.stock_updates if not o.ok]

    @property
    def stock_synced(self) -> bool:
        return not self.failed_product_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sale_id': self.sale_id,
            'payment_method': self.payment_method,
            'totals': {k: (str(v) if isinstance(v, Decimal) else v) for k, v in self.totals.items()},
            'stock_updates': [o.to_dict() for o in self.stock_updates],
            'stock_synced': self.stock_synced,
        }


def persist_sale(session: Session, summary: Dict[str, Any], items: List[Dict[str, Any]]) -> Sale:
    """
    Write a Sale and its SaleItems in one transaction.

    summary: total, tax, payment_method
    items: product_id, quantity, price, discount

    Raises SalePersistenceError after rolling back; nothing is written then.
    """
    try:
        sale = Sale(
            total=money(summary['total']),
            tax=money(summary.get('tax', 0)),
            payment_method=summary['payment_method'],
        )
        session.add(sale)
        session.flush()

        for item in items:
            session.add(SaleItem(
                sale_id=sale.id,
                product_id=item['product_id'],
                quantity=item['quantity'],
                price=money(item['price']),
                discount=money(item.get('discount', 0)),
            ))

        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[CHECKOUT] Sale persistence failed: {e}")
        raise SalePersistenceError(f'The sale could not be saved: {e}') from e

    logger.info(f"[CHECKOUT] Sale {sale.id} saved: total={sale.total}, items={len(items)}, "
                f"payment_method={sale.payment_method}")
    return sale


def push_stock_levels(sold_quantities: Dict[int, int], stock_writer: StockWriter,
                      max_workers: int = DEFAULT_MAX_WORKERS,
                      expected: Optional[Dict[int, int]] = None) -> List[StockPushOutcome]:
    """
    Deduct every product's sold units concurrently; returns one outcome per product.

    ``expected`` holds the post-sale levels the cart predicted and is only
    reported for failed products.
    """
    if not sold_quantities:
        return []
    expected = expected or {}

    outcomes = []
    workers = max(1, min(int(max_workers or 1), len(sold_quantities)))
    with ThreadPoolExecutor(max_workers=workers) as ex:
        futs = {ex.submit(stock_writer, pid, qty): pid for pid, qty in sold_quantities.items()}
        for fut in as_completed(futs):
            product_id = futs[fut]
            quantity = sold_quantities[product_id]
            try:
                new_stock = fut.result()
                outcomes.append(StockPushOutcome(product_id, quantity, new_stock, ok=True))
            except Exception as e:
                logger.error(f"[STOCK] Post-sale stock update failed for product_id={product_id} "
                             f"(sold={quantity}): {e}")
                outcomes.append(StockPushOutcome(product_id, quantity, expected.get(product_id),
                                                 ok=False, error=str(e)[:500]))
    return outcomes


def _record_failures(session: Session, sale_id: int, outcomes: List[StockPushOutcome]) -> None:
    failed = [o for o in outcomes if not o.ok]
    if not failed:
        return
    try:
        for outcome in failed:
            record_sync_failure(session, sale_id, outcome.product_id, outcome.quantity, outcome.error,
                                expected_stock=outcome.target_stock)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[STOCK] Could not record {len(failed)} stock sync failures for sale {sale_id}: {e}")


def _max_workers() -> int:
    if has_app_context():
        return current_app.config.get('STOCK_SYNC_MAX_WORKERS', DEFAULT_MAX_WORKERS)
    return DEFAULT_MAX_WORKERS


def settle_cart(session: Session, cart: Cart, payment_method: Any = None, tax_rate: Any = 0,
                stock_writer: Optional[StockWriter] = None,
                max_workers: Optional[int] = None) -> SettlementResult:
    """
    Check out a cart.

    1. Persist the sale (SalePersistenceError leaves the cart untouched).
    2. Close the cart; its reservations are consumed.
    3. Deduct the sold units from the store's current stock, one task per product.
    4. Record failed pushes as StockSyncFailure rows.
    """
    if cart.is_empty:
        raise EmptyCartError()

    try:
        method = normalize_payment_method(payment_method)
    except ValueError as e:
        raise ValidationRejection(str(e)) from None

    totals = cart.totals(tax_rate)
    items = [
        {
            'product_id': line.product_id,
            'quantity': line.quantity,
            'price': line.unit_price,
            'discount': line.discount,
        }
        for line in cart
    ]

    sale = persist_sale(session, {
        'total': totals['total'],
        'tax': totals['tax'],
        'payment_method': method,
    }, items)
    sale_id = sale.id

    sold = {line.product_id: line.quantity for line in cart}
    expected = cart.close_after_sale()

    writer = stock_writer or session_stock_writer(db_session.session_factory)
    outcomes = push_stock_levels(sold, writer, max_workers or _max_workers(), expected)
    _record_failures(session, sale_id, outcomes)

    for outcome in outcomes:
        if not outcome.ok:
            signals.stock_sync_failed.send(
                cart, sale_id=sale_id, product_id=outcome.product_id,
                quantity=outcome.quantity, target_stock=outcome.target_stock, error=outcome.error
            )

    get_cache().invalidate_module(RECENT_SALES_CACHE_MODULE)

    result = SettlementResult(sale_id=sale_id, payment_method=method, totals=totals, stock_updates=outcomes)
    signals.sale_completed.send(
        cart, sale_id=sale_id, total=totals['total'],
        failed_product_ids=result.failed_product_ids
    )
    if result.stock_synced:
        logger.info(f"[CHECKOUT] Sale {sale_id} settled, stock updated for {len(outcomes)} products")
    else:
        logger.warning(f"[CHECKOUT] Sale {sale_id} settled with stock sync failures: "
                       f"{result.failed_product_ids}")
    return result
