"""Product lookup for the POS search box and barcode scanner."""
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import or_, and_, func, desc
from sqlalchemy.orm import Session, selectinload

from zwift_pos.exceptions import NotFoundError
from zwift_pos.models import Product, SaleItem


def get_product(session: Session, product_id: int) -> Product:
    """Get an active product or raise NotFoundError."""
    product = session.query(Product).filter(
        Product.id == product_id,
        Product.active == True  # noqa: E712
    ).first()
    if not product:
        raise NotFoundError('Product not found.', payload={'product_id': product_id})
    return product


def find_by_barcode(session: Session, barcode: str) -> Optional[Product]:
    """Exact, case-insensitive barcode match among active products."""
    if not barcode:
        return None
    return session.query(Product).filter(
        Product.active == True,  # noqa: E712
        Product.barcode.isnot(None),
        func.lower(Product.barcode) == barcode.strip().lower()
    ).first()


def search_products(session: Session, search_query: str = '', category_id: Optional[int] = None,
                    limit: int = 20) -> Tuple[List[Product], Optional[int]]:
    """
    Search active products by name or barcode.

    Returns (products, exact_barcode_match_id). An exact barcode hit short-
    circuits the fuzzy search so the caller can add it to the cart directly.
    Fuzzy results are ordered by units sold, then name.
    """
    search_query = (search_query or '').strip()[:100]

    base = session.query(Product).options(selectinload(Product.category)).filter(Product.active == True)  # noqa: E712
    if category_id:
        base = base.filter(Product.category_id == category_id)

    if not search_query:
        return base.order_by(Product.name).limit(limit).all(), None

    exact = find_by_barcode(session, search_query)
    if exact and (not category_id or exact.category_id == category_id):
        return [exact], exact.id

    pattern = f'%{search_query.lower()}%'
    search_filter = or_(
        func.lower(Product.name).like(pattern),
        and_(Product.barcode.isnot(None), func.lower(Product.barcode).like(pattern))
    )

    sold = (session.query(SaleItem.product_id, func.sum(SaleItem.quantity).label('units_sold'))
            .group_by(SaleItem.product_id)
            .subquery())
    products = (base
                .outerjoin(sold, sold.c.product_id == Product.id)
                .filter(search_filter)
                .order_by(desc(func.coalesce(sold.c.units_sold, 0)), Product.name)
                .limit(limit)
                .all())
    return products, None


def current_stock_levels(session: Session, product_ids: Iterable[int]) -> Dict[int, int]:
    """Store stock per product id; unknown ids are left out."""
    ids = list(product_ids)
    if not ids:
        return {}
    rows = session.query(Product.id, Product.stock).filter(Product.id.in_(ids)).all()
    return {product_id: stock for product_id, stock in rows}


def product_to_dict(product: Product) -> dict:
    return {
        'id': product.id,
        'name': product.name,
        'barcode': product.barcode,
        'price': str(product.price),
        'purchase_price': None if product.purchase_price is None else str(product.purchase_price),
        'stock': product.stock,
        'min_stock': product.min_stock,
        'category_id': product.category_id,
        'category': product.category_name,
        'image': product.image,
    }
