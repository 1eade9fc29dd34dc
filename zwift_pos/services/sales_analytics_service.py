"""
Sales analytics service.
Recent sales, sale details, sales trend and product performance.
"""
import logging
from collections import OrderedDict
from datetime import datetime, date, time, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload, selectinload

from zwift_pos.exceptions import NotFoundError
from zwift_pos.models import Product, Sale, SaleItem
from zwift_pos.services.cache_service import get_cache
from zwift_pos.services.pricing import line_discount_amount, line_profit, line_subtotal, money, to_decimal
from zwift_pos.utils.formatters import datetime_iso

logger = logging.getLogger(__name__)

RECENT_SALES_CACHE_MODULE = 'recent_sales'

LOW_STOCK_STATUS_THRESHOLD = 10


def get_period_range(days: int = 30, end: Optional[date] = None) -> Tuple[datetime, datetime]:
    """
    Datetime range covering the last ``days`` days up to the end of ``end``.

    Returns (start_dt, end_dt) with end exclusive.
    """
    end_day = end or date.today()
    end_dt = datetime.combine(end_day, time.min) + timedelta(days=1)
    start_dt = end_dt - timedelta(days=max(1, int(days)))
    return start_dt, end_dt


def _item_to_dict(item: SaleItem) -> Dict[str, Any]:
    product = item.product
    purchase_price = product.purchase_price if product else None
    return {
        'id': item.id,
        'product_id': item.product_id,
        'product_name': product.name if product else None,
        'quantity': item.quantity,
        'price': money(item.price),
        'discount': to_decimal(item.discount),
        'subtotal': money(line_subtotal(item.quantity, item.price, item.discount)),
        'profit': money(line_profit(item.price, purchase_price, item.quantity, item.discount)),
    }


def _sale_to_dict(sale: Sale, with_items: bool = True) -> Dict[str, Any]:
    data = {
        'id': sale.id,
        'total': money(sale.total),
        'tax': money(sale.tax),
        'payment_method': sale.payment_method,
        'created_at': datetime_iso(sale.created_at),
        'item_count': sum(item.quantity for item in sale.items),
    }
    if with_items:
        data['items'] = [_item_to_dict(item) for item in sale.items]
    return data


def _load_recent_sales(session: Session, limit: int) -> List[Dict[str, Any]]:
    sales = (session.query(Sale)
             .options(selectinload(Sale.items).joinedload(SaleItem.product))
             .order_by(Sale.created_at.desc(), Sale.id.desc())
             .limit(limit)
             .all())
    return [_sale_to_dict(sale) for sale in sales]


def get_recent_sales(session: Session, limit: int = 10) -> List[Dict[str, Any]]:
    """Latest sales with their items. Cached; checkout invalidates it."""
    return get_cache().memoize(
        RECENT_SALES_CACHE_MODULE, f'limit:{limit}',
        lambda: _load_recent_sales(session, limit)
    )


def get_sale_details(session: Session, sale_id: int) -> Dict[str, Any]:
    """
    One sale with its items, gross amount, discount total and profit.

    Profit uses each product's current purchase price.
    """
    sale = (session.query(Sale)
            .options(selectinload(Sale.items).joinedload(SaleItem.product))
            .filter(Sale.id == sale_id)
            .first())
    if not sale:
        raise NotFoundError('Sale not found.', payload={'sale_id': sale_id})

    data = _sale_to_dict(sale)
    gross = sum((to_decimal(i.price) * i.quantity for i in sale.items), Decimal('0'))
    discount = sum((line_discount_amount(i.quantity, i.price, i.discount) for i in sale.items), Decimal('0'))
    data.update({
        'gross_amount': money(gross),
        'total_discount': money(discount),
        'subtotal': money(gross - discount),
        'profit': money(sum((item['profit'] for item in data['items']), Decimal('0'))),
    })
    return data


def _sales_in_range(session: Session, start_dt: datetime, end_dt: datetime) -> List[Sale]:
    return (session.query(Sale)
            .filter(Sale.created_at >= start_dt, Sale.created_at < end_dt)
            .order_by(Sale.created_at)
            .all())


def get_sales_trend(session: Session, start_dt: datetime, end_dt: datetime) -> List[Dict[str, Any]]:
    """
    Sales count and revenue per day, every day of the range included.
    """
    by_day: Dict[date, Dict[str, Any]] = OrderedDict()
    day = start_dt.date()
    while datetime.combine(day, time.min) < end_dt:
        by_day[day] = {'date': day.isoformat(), 'sales_count': 0, 'revenue': Decimal('0')}
        day += timedelta(days=1)

    for sale in _sales_in_range(session, start_dt, end_dt):
        bucket = by_day.get(sale.created_at.date())
        if bucket is None:
            continue
        bucket['sales_count'] += 1
        bucket['revenue'] += to_decimal(sale.total)

    for bucket in by_day.values():
        bucket['revenue'] = money(bucket['revenue'])
    return list(by_day.values())


def get_sales_by_payment_method(session: Session, start_dt: datetime, end_dt: datetime) -> List[Dict[str, Any]]:
    """Count, revenue and revenue share per payment method, largest first."""
    methods: Dict[str, Dict[str, Any]] = {}
    for sale in _sales_in_range(session, start_dt, end_dt):
        entry = methods.setdefault(sale.payment_method, {
            'payment_method': sale.payment_method, 'sales_count': 0, 'revenue': Decimal('0')
        })
        entry['sales_count'] += 1
        entry['revenue'] += to_decimal(sale.total)

    total = sum((m['revenue'] for m in methods.values()), Decimal('0'))
    result = []
    for entry in sorted(methods.values(), key=lambda m: m['revenue'], reverse=True):
        share = (entry['revenue'] / total * 100) if total > 0 else Decimal('0')
        result.append({
            'payment_method': entry['payment_method'],
            'sales_count': entry['sales_count'],
            'revenue': money(entry['revenue']),
            'percentage': share.quantize(Decimal('0.01')),
        })
    return result


def _stock_status(stock: int) -> str:
    if stock == 0:
        return 'Out of Stock'
    if stock < LOW_STOCK_STATUS_THRESHOLD:
        return 'Low Stock'
    return 'In Stock'


def get_top_products(session: Session, start_dt: datetime, end_dt: datetime,
                     limit: int = 10) -> List[Dict[str, Any]]:
    """
    Best-selling products in the range, by units sold.

    Revenue is net of line discounts; profit uses the current purchase price.
    """
    rows = (session.query(SaleItem)
            .join(Sale, Sale.id == SaleItem.sale_id)
            .options(joinedload(SaleItem.product).joinedload(Product.category))
            .filter(Sale.created_at >= start_dt, Sale.created_at < end_dt)
            .all())

    products: Dict[int, Dict[str, Any]] = {}
    for item in rows:
        product = item.product
        entry = products.setdefault(item.product_id, {
            'product_id': item.product_id,
            'product_name': product.name,
            'barcode': product.barcode,
            'category_name': product.category_name,
            'current_stock': product.stock,
            'total_quantity_sold': 0,
            'total_revenue': Decimal('0'),
            'total_profit': Decimal('0'),
            'sales_count': 0,
        })
        entry['total_quantity_sold'] += item.quantity
        entry['total_revenue'] += line_subtotal(item.quantity, item.price, item.discount)
        entry['total_profit'] += line_profit(item.price, product.purchase_price, item.quantity, item.discount)
        entry['sales_count'] += 1

    ranked = sorted(products.values(), key=lambda p: (-p['total_quantity_sold'], p['product_name']))[:limit]
    for entry in ranked:
        revenue = entry['total_revenue']
        entry['avg_sale_price'] = money(revenue / entry['total_quantity_sold'])
        entry['profit_margin'] = ((entry['total_profit'] / revenue * 100).quantize(Decimal('0.01'))
                                  if revenue > 0 else Decimal('0'))
        entry['total_revenue'] = money(revenue)
        entry['total_profit'] = money(entry['total_profit'])
        entry['stock_status'] = _stock_status(entry['current_stock'])
    return ranked


def _movement_status(quantity_sold: int, velocity: Decimal) -> str:
    if quantity_sold == 0:
        return 'No Movement'
    if velocity < Decimal('0.1'):
        return 'Very Slow'
    if velocity < Decimal('0.5'):
        return 'Slow'
    return 'Moderate'


def get_slow_moving_products(session: Session, days: int = 30, limit: int = 20,
                             max_daily_velocity: Any = 1) -> List[Dict[str, Any]]:
    """
    Products in stock selling fewer than ``max_daily_velocity`` units a day
    over the last ``days`` days, slowest first.
    """
    days = max(1, int(days))
    start_dt, end_dt = get_period_range(days)
    ceiling = to_decimal(max_daily_velocity)

    sold: Dict[int, int] = {}
    rows = (session.query(SaleItem.product_id, SaleItem.quantity)
            .join(Sale, Sale.id == SaleItem.sale_id)
            .filter(Sale.created_at >= start_dt, Sale.created_at < end_dt)
            .all())
    for product_id, quantity in rows:
        sold[product_id] = sold.get(product_id, 0) + quantity

    products = (session.query(Product)
                .options(joinedload(Product.category))
                .filter(Product.active == True, Product.stock > 0)  # noqa: E712
                .all())

    result = []
    for product in products:
        quantity_sold = sold.get(product.id, 0)
        velocity = Decimal(quantity_sold) / days
        if velocity >= ceiling:
            continue
        result.append({
            'id': product.id,
            'name': product.name,
            'barcode': product.barcode,
            'category_name': product.category_name,
            'current_stock': product.stock,
            'min_stock': product.min_stock,
            'price': money(product.price),
            'total_quantity_sold_in_period': quantity_sold,
            'avg_daily_velocity': velocity.quantize(Decimal('0.01')),
            'stock_value': money(to_decimal(product.price) * product.stock),
            'days_of_stock_remaining': int((product.stock / velocity).to_integral_value()) if velocity > 0 else None,
            'movement_status': _movement_status(quantity_sold, velocity),
        })

    result.sort(key=lambda p: (p['avg_daily_velocity'], p['name']))
    return result[:limit]
