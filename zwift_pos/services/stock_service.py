"""
Stock service - writes product stock levels to the store.

Covers direct edits (set, restock, bulk levels), the explicit operator
override used by the POS, the per-product writer used after a sale and the
StockSyncFailure retry workflow.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zwift_pos.exceptions import NotFoundError, PosError, StockUpdateError, ValidationRejection
from zwift_pos.models import Product, StockSyncFailure

logger = logging.getLogger(__name__)

# (product_id, quantity_sold) -> new stock level; raises on failure
StockWriter = Callable[[int, int], int]


def _as_stock(value: Any, field: str = 'stock') -> int:
    if isinstance(value, bool):
        raise ValidationRejection(f'Invalid {field}: {value!r}')
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationRejection(f'Invalid {field}: {value!r}') from None
    return number


def _get_product(session: Session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if not product:
        raise NotFoundError('Product not found.', payload={'product_id': product_id})
    return product


def _commit(session: Session, product_id: Optional[int], action: str) -> None:
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[STOCK] {action} failed for product_id={product_id}: {e}")
        raise StockUpdateError(product_id, f'Could not update stock: {e}') from e


def set_stock(session: Session, product_id: int, new_stock: Any) -> Product:
    """Set a product's absolute stock level."""
    new_stock = _as_stock(new_stock)
    if new_stock < 0:
        raise ValidationRejection('Stock cannot be negative', payload={'product_id': product_id})

    product = _get_product(session, product_id)
    previous = product.stock
    product.stock = new_stock
    _commit(session, product_id, 'set_stock')
    logger.info(f"[STOCK] product_id={product_id}: {previous} -> {new_stock}")
    return product


def restock(session: Session, product_id: int, quantity: Any) -> Product:
    """Add received units to a product's stock."""
    quantity = _as_stock(quantity, 'quantity')
    if quantity < 1:
        raise ValidationRejection('Restock quantity must be at least 1',
                                  payload={'product_id': product_id, 'min_allowed': 1})

    product = _get_product(session, product_id)
    product.stock = product.stock + quantity
    _commit(session, product_id, 'restock')
    logger.info(f"[STOCK] Restocked product_id={product_id} +{quantity} (now {product.stock})")
    return product


def set_stock_levels(session: Session, levels: Iterable[Dict[str, Any]]) -> List[Product]:
    """
    Bulk absolute stock edit: [{'product_id': 1, 'stock': 10}, ...].

    Every entry is validated before anything is written; the batch commits
    as one transaction.
    """
    parsed: List[Tuple[int, int]] = []
    for entry in levels or []:
        try:
            product_id = int(entry['product_id'])
        except (KeyError, TypeError, ValueError):
            raise ValidationRejection(f'Invalid stock level entry: {entry!r}') from None
        stock = _as_stock(entry.get('stock'))
        if stock < 0:
            raise ValidationRejection('Stock cannot be negative', payload={'product_id': product_id})
        parsed.append((product_id, stock))

    if not parsed:
        raise ValidationRejection('No stock levels given')

    products = []
    for product_id, stock in parsed:
        product = _get_product(session, product_id)
        product.stock = stock
        products.append(product)

    _commit(session, None, 'set_stock_levels')
    logger.info(f"[STOCK] Bulk update of {len(products)} products")
    return products


def override_stock(session: Session, cart, product_id: int, requested_quantity: Any) -> int:
    """
    Explicit operator override: raise the product's stock so the cart can
    hold ``requested_quantity``.

    The store is written first; the cart mirror only follows once the write
    succeeded. Returns the new stock level.
    """
    requested_quantity = _as_stock(requested_quantity, 'quantity')
    if requested_quantity < 1:
        raise ValidationRejection('Quantity must be at least 1',
                                  payload={'requested': requested_quantity, 'min_allowed': 1})

    product = _get_product(session, product_id)
    new_stock = max(requested_quantity, product.stock)
    if new_stock != product.stock:
        set_stock(session, product_id, new_stock)

    if product_id not in cart.stock:
        cart.stock.track(product_id, new_stock)
    cart.override_stock(product_id, new_stock)
    return new_stock


def deduct_stock(session: Session, product_id: int, quantity: Any) -> int:
    """
    Take sold units off the product's current store stock.

    The row is read with FOR UPDATE where the backend supports it, so stock
    edits made while the product sat in a cart are kept. A result below zero
    is clamped to zero and logged. Returns the new stock level.
    """
    quantity = _as_stock(quantity, 'quantity')
    if quantity < 1:
        raise ValidationRejection('Sold quantity must be at least 1',
                                  payload={'product_id': product_id, 'min_allowed': 1})

    product = session.query(Product).filter(Product.id == product_id).with_for_update().first()
    if not product:
        raise NotFoundError('Product not found.', payload={'product_id': product_id})

    previous = product.stock
    new_stock = previous - quantity
    if new_stock < 0:
        logger.warning(f"[STOCK] product_id={product_id} oversold: stock={previous}, sold={quantity}. "
                       f"Setting stock to 0")
        new_stock = 0
    product.stock = new_stock
    _commit(session, product_id, 'deduct_stock')
    logger.info(f"[STOCK] Sold product_id={product_id} -{quantity}: {previous} -> {new_stock}")
    return new_stock


def session_stock_writer(session_factory: Callable[[], Session]) -> StockWriter:
    """
    Build the post-sale stock writer.

    Each call opens its own session so concurrent pushes never share one.
    """
    def write(product_id: int, quantity_sold: int) -> int:
        session = session_factory()
        try:
            return deduct_stock(session, product_id, quantity_sold)
        finally:
            session.close()

    return write


# ----------------------------------------------------------------------
# Stock sync failures
# ----------------------------------------------------------------------

def record_sync_failure(session: Session, sale_id: Optional[int], product_id: int, quantity: int,
                        error: str, expected_stock: Optional[int] = None) -> StockSyncFailure:
    failure = StockSyncFailure(
        sale_id=sale_id,
        product_id=product_id,
        quantity=quantity,
        target_stock=expected_stock,
        error=(error or '')[:500],
        attempts=1,
        resolved=False,
    )
    session.add(failure)
    return failure


def list_sync_failures(session: Session, include_resolved: bool = False) -> List[StockSyncFailure]:
    query = session.query(StockSyncFailure)
    if not include_resolved:
        query = query.filter(StockSyncFailure.resolved == False)  # noqa: E712
    return query.order_by(StockSyncFailure.created_at, StockSyncFailure.id).all()


def retry_sync_failure(session: Session, failure_id: int,
                       stock_writer: Optional[StockWriter] = None) -> StockSyncFailure:
    """
    Deduct a failed sale's units from the product's current stock again.

    Success marks the record resolved and stores the resulting stock level.
    Failure bumps its attempt count and raises StockUpdateError.
    """
    failure = session.get(StockSyncFailure, failure_id)
    if not failure:
        raise NotFoundError('Stock sync failure not found.', payload={'failure_id': failure_id})
    if failure.resolved:
        raise ValidationRejection('This stock sync failure is already resolved',
                                  payload={'failure_id': failure_id})

    product_id = failure.product_id
    quantity = failure.quantity
    try:
        if stock_writer:
            new_stock = stock_writer(product_id, quantity)
        else:
            new_stock = deduct_stock(session, product_id, quantity)
    except (PosError, SQLAlchemyError) as e:
        session.rollback()
        failure = session.get(StockSyncFailure, failure_id)
        failure.attempts = failure.attempts + 1
        failure.error = str(e)[:500]
        session.commit()
        logger.error(f"[STOCK] Retry #{failure.attempts} failed for product_id={product_id}: {e}")
        raise StockUpdateError(product_id, f'Retry failed: {e}') from e

    failure = session.get(StockSyncFailure, failure_id)
    failure.resolved = True
    failure.target_stock = new_stock
    session.commit()
    logger.info(f"[STOCK] Sync failure {failure_id} resolved: product_id={product_id}, "
                f"-{quantity}, stock={new_stock}")
    return failure


def retry_pending_failures(session: Session,
                           stock_writer: Optional[StockWriter] = None) -> Tuple[int, int]:
    """Retry every unresolved failure. Returns (resolved, still_failing)."""
    resolved = failed = 0
    for failure_id in [f.id for f in list_sync_failures(session)]:
        try:
            retry_sync_failure(session, failure_id, stock_writer)
            resolved += 1
        except StockUpdateError:
            failed += 1
    return resolved, failed


def sync_failure_to_dict(failure: StockSyncFailure) -> Dict[str, Any]:
    return {
        'id': failure.id,
        'sale_id': failure.sale_id,
        'product_id': failure.product_id,
        'product_name': failure.product.name if failure.product else None,
        'quantity': failure.quantity,
        'target_stock': failure.target_stock,
        'error': failure.error,
        'attempts': failure.attempts,
        'resolved': failure.resolved,
        'created_at': failure.created_at.isoformat() if failure.created_at else None,
    }
