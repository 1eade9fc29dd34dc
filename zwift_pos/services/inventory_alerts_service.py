"""
Inventory alerts service.
Low stock report with urgency levels and an inventory overview.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session, joinedload

from zwift_pos.exceptions import ValidationRejection
from zwift_pos.models import Product
from zwift_pos.services.pricing import max_discount_before_loss, money, to_decimal

logger = logging.getLogger(__name__)

URGENCY_CRITICAL = 'Critical'
URGENCY_HIGH = 'High'
URGENCY_MEDIUM = 'Medium'

URGENCY_ORDER = {URGENCY_CRITICAL: 0, URGENCY_HIGH: 1, URGENCY_MEDIUM: 2}

URGENCY_FILTERS = {
    'all': None,
    'critical': URGENCY_CRITICAL,
    'high': URGENCY_HIGH,
    'medium': URGENCY_MEDIUM,
}

# Stock below this share of min_stock is High urgency
HIGH_URGENCY_RATIO = Decimal('0.3')


def urgency_level(stock: int, min_stock: int) -> str:
    """Critical when out of stock, High below 30% of the minimum, else Medium."""
    if stock <= 0:
        return URGENCY_CRITICAL
    if Decimal(stock) < Decimal(min_stock) * HIGH_URGENCY_RATIO:
        return URGENCY_HIGH
    return URGENCY_MEDIUM


def _low_stock_row(product: Product) -> Dict[str, Any]:
    stock = product.stock or 0
    min_stock = product.min_stock or 0
    deficit = min_stock - stock
    price = to_decimal(product.price)
    cost = to_decimal(product.purchase_price)
    return {
        'id': product.id,
        'name': product.name,
        'barcode': product.barcode,
        'category': product.category_name,
        'current_stock': stock,
        'min_stock': min_stock,
        'price': money(price),
        'purchase_price': None if product.purchase_price is None else money(cost),
        'stock_deficit': deficit,
        'urgency_level': urgency_level(stock, min_stock),
        'stock_percentage': int((Decimal(stock) / min_stock * 100).to_integral_value()) if min_stock > 0 else 0,
        'restock_value': money(cost * deficit),
        'unit_profit': money(price - cost),
        'max_discount': max_discount_before_loss(price, product.purchase_price).quantize(Decimal('0.01')),
    }


def get_low_stock_report(session: Session, urgency_filter: str = 'all', limit: int = 50) -> Dict[str, Any]:
    """
    Active products with stock below their minimum.

    Rows are ordered by urgency, then by stock percentage. The summary counts
    cover every low-stock product; total_restock_value covers the returned
    rows only.
    """
    key = (urgency_filter or 'all').lower()
    if key not in URGENCY_FILTERS:
        raise ValidationRejection(f'Invalid urgency filter: {urgency_filter}',
                                  payload={'allowed': list(URGENCY_FILTERS)})
    limit = max(1, min(int(limit), 100))

    products = (session.query(Product)
                .options(joinedload(Product.category))
                .filter(Product.active == True, Product.stock < Product.min_stock)  # noqa: E712
                .order_by(Product.stock)
                .all())
    rows = [_low_stock_row(p) for p in products]

    wanted = URGENCY_FILTERS[key]
    filtered = [r for r in rows if wanted is None or r['urgency_level'] == wanted]
    filtered.sort(key=lambda r: (URGENCY_ORDER[r['urgency_level']], r['stock_percentage'], r['name']))
    shown = filtered[:limit]

    summary = {
        'critical_count': sum(1 for r in rows if r['urgency_level'] == URGENCY_CRITICAL),
        'high_count': sum(1 for r in rows if r['urgency_level'] == URGENCY_HIGH),
        'medium_count': sum(1 for r in rows if r['urgency_level'] == URGENCY_MEDIUM),
        'total_restock_value': money(sum((r['restock_value'] for r in shown), Decimal('0'))),
    }
    logger.info(f"[ALERTS] Low stock: {len(rows)} products ({summary['critical_count']} critical, "
                f"{summary['high_count']} high, {summary['medium_count']} medium)")
    return {
        'data': shown,
        'total_count': len(filtered),
        'showing_count': len(shown),
        'summary': summary,
        'urgency_filter_applied': key,
    }


def get_inventory_overview(session: Session, low_stock_threshold: Optional[int] = None) -> Dict[str, Any]:
    """Stock health counts and inventory valuation for active products."""
    products = session.query(Product).filter(Product.active == True).all()  # noqa: E712
    total = len(products)

    in_stock = sum(1 for p in products if p.stock > 0)
    out_of_stock = total - in_stock
    low_stock = sum(1 for p in products if 0 < p.stock < p.min_stock)

    inventory_value = sum((to_decimal(p.price) * p.stock for p in products), Decimal('0'))
    cost_value = sum((to_decimal(p.purchase_price) * p.stock for p in products), Decimal('0'))
    potential_profit = inventory_value - cost_value

    overview = {
        'summary': {
            'total_products': total,
            'in_stock': in_stock,
            'out_of_stock': out_of_stock,
            'low_stock': low_stock,
            'stock_health_percentage': round(in_stock * 100 / total) if total else 0,
        },
        'data_quality': {
            'with_barcodes': sum(1 for p in products if p.barcode and p.barcode.strip()),
            'with_purchase_prices': sum(1 for p in products if p.purchase_price is not None),
        },
        'value_analysis': {
            'total_inventory_value': money(inventory_value),
            'total_cost_value': money(cost_value),
            'potential_profit': money(potential_profit),
            'profit_margin_percentage': (potential_profit / inventory_value * 100).quantize(Decimal('0.01'))
            if inventory_value > 0 else Decimal('0'),
        },
    }
    if low_stock_threshold is not None:
        overview['summary']['below_threshold'] = sum(
            1 for p in products if 0 < p.stock <= low_stock_threshold
        )
    return overview
