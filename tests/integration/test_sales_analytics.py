"""
Integration tests for sales analytics and the /reports endpoints.
"""

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal

from zwift_pos.exceptions import NotFoundError
from zwift_pos.models import Product, Sale, SaleItem
from zwift_pos.services import sales_analytics_service
from zwift_pos.services.pricing import line_subtotal


def record_sale(session, lines, payment_method='cash', days_ago=0):
    """Store a sale directly. lines: [(product, quantity, discount), ...]."""
    total = sum((line_subtotal(qty, product.price, discount) for product, qty, discount in lines), Decimal('0'))
    sale = Sale(total=total, tax=Decimal('0'), payment_method=payment_method,
                created_at=datetime.now() - timedelta(days=days_ago))
    session.add(sale)
    session.flush()
    for product, qty, discount in lines:
        session.add(SaleItem(sale_id=sale.id, product_id=product.id, quantity=qty,
                             price=product.price, discount=Decimal(discount)))
    session.commit()
    return sale


@pytest.fixture
def sales_history(session, product, second_product):
    """Two recent sales (38.00 cash, 5.00 card) and one outside a 30 day window."""
    record_sale(session, [(product, 3, 0), (second_product, 2, 0)], 'cash', days_ago=0)
    record_sale(session, [(product, 1, 50)], 'card', days_ago=2)
    record_sale(session, [(second_product, 40, 0)], 'transfer', days_ago=40)


class TestPeriodRange:

    def test_end_is_exclusive(self):
        start_dt, end_dt = sales_analytics_service.get_period_range(7, date(2024, 3, 10))
        assert end_dt == datetime(2024, 3, 11)
        assert start_dt == datetime(2024, 3, 4)


class TestSaleViews:

    def test_sale_details(self, session, product, second_product):
        sale = record_sale(session, [(product, 2, 25), (second_product, 1, 0)])

        data = sales_analytics_service.get_sale_details(session, sale.id)

        assert data['gross_amount'] == Decimal('24.00')
        assert data['total_discount'] == Decimal('5.00')
        assert data['subtotal'] == Decimal('19.00')
        # (7.50 - 6) * 2 + (4 - 2.50)
        assert data['profit'] == Decimal('4.50')
        assert data['item_count'] == 3

    def test_missing_sale(self, session):
        with pytest.raises(NotFoundError):
            sales_analytics_service.get_sale_details(session, 404)

    def test_recent_sales_newest_first(self, session, sales_history):
        sales = sales_analytics_service.get_recent_sales(session, limit=2)
        assert [s['payment_method'] for s in sales] == ['cash', 'card']


class TestSalesTrend:

    def test_every_day_is_listed(self, session, sales_history):
        start_dt, end_dt = sales_analytics_service.get_period_range(7)
        trend = sales_analytics_service.get_sales_trend(session, start_dt, end_dt)

        assert len(trend) == 7
        assert trend[-1]['date'] == date.today().isoformat()
        assert trend[-1]['sales_count'] == 1
        assert trend[-1]['revenue'] == Decimal('38.00')
        assert trend[-3]['revenue'] == Decimal('5.00')
        assert sum(day['sales_count'] for day in trend) == 2

    def test_payment_methods(self, session, sales_history):
        start_dt, end_dt = sales_analytics_service.get_period_range(30)
        methods = sales_analytics_service.get_sales_by_payment_method(session, start_dt, end_dt)

        assert [m['payment_method'] for m in methods] == ['cash', 'card']
        assert methods[0]['revenue'] == Decimal('38.00')
        assert methods[0]['percentage'] == Decimal('88.37')
        assert methods[1]['percentage'] == Decimal('11.63')

    def test_empty_period(self, session):
        start_dt, end_dt = sales_analytics_service.get_period_range(3)
        assert sales_analytics_service.get_sales_by_payment_method(session, start_dt, end_dt) == []
        trend = sales_analytics_service.get_sales_trend(session, start_dt, end_dt)
        assert [day['sales_count'] for day in trend] == [0, 0, 0]


class TestProductPerformance:

    def test_top_products(self, session, product, second_product, sales_history):
        start_dt, end_dt = sales_analytics_service.get_period_range(30)
        top = sales_analytics_service.get_top_products(session, start_dt, end_dt)

        assert [p['product_id'] for p in top] == [product.id, second_product.id]
        best = top[0]
        assert best['total_quantity_sold'] == 4
        assert best['total_revenue'] == Decimal('35.00')
        # 3 * (10 - 6) + (5 - 6)
        assert best['total_profit'] == Decimal('11.00')
        assert best['avg_sale_price'] == Decimal('8.75')
        assert best['profit_margin'] == Decimal('31.43')
        assert best['stock_status'] == 'Low Stock'
        assert top[1]['stock_status'] == 'In Stock'

    def test_slow_moving(self, session, category, product, second_product, sales_history):
        idle = Product(name='Dusty Tin', category_id=category.id, price=Decimal('3.00'),
                       purchase_price=Decimal('1.00'), stock=12, min_stock=0)
        empty = Product(name='Sold Out Snack', category_id=category.id, price=Decimal('2.00'),
                        purchase_price=Decimal('1.00'), stock=0, min_stock=0)
        session.add_all([idle, empty])
        session.commit()

        slow = sales_analytics_service.get_slow_moving_products(session, days=30)

        assert [p['name'] for p in slow] == ['Dusty Tin', 'Mineral Water 1.5L', 'Orange Juice 1L']
        assert slow[0]['movement_status'] == 'No Movement'
        assert slow[0]['days_of_stock_remaining'] is None
        assert slow[0]['stock_value'] == Decimal('36.00')
        assert slow[1]['total_quantity_sold_in_period'] == 2
        assert slow[1]['movement_status'] == 'Very Slow'
        assert slow[2]['avg_daily_velocity'] == Decimal('0.13')
        assert slow[2]['movement_status'] == 'Slow'

    def test_fast_sellers_are_excluded(self, session, product, second_product):
        record_sale(session, [(second_product, 15, 0)])

        slow = sales_analytics_service.get_slow_moving_products(session, days=10)
        assert [p['id'] for p in slow] == [product.id]


class TestReportEndpoints:
    """Tests for /reports/*."""

    def test_trend(self, client, sales_history):
        data = client.get('/reports/sales/trend', query_string={'days': 7}).get_json()
        assert data['status'] == 'ok'
        assert len(data['trend']) == 7
        assert data['trend'][-1]['revenue'] == '38.00'

    def test_trend_explicit_dates(self, client, session):
        data = client.get('/reports/sales/trend',
                          query_string={'start': '2024-02-27', 'end': '2024-03-01'}).get_json()
        assert data['start'] == '2024-02-27'
        assert [day['date'] for day in data['trend']] == [
            '2024-02-27', '2024-02-28', '2024-02-29', '2024-03-01'
        ]

    @pytest.mark.parametrize('query', [
        {'days': 0},
        {'days': 400},
        {'start': '2024-03-01', 'end': '2024-02-01'},
        {'start': '01/03/2024', 'end': '02/03/2024'},
    ])
    def test_invalid_ranges(self, client, session, query):
        response = client.get('/reports/sales/trend', query_string=query)
        assert response.status_code == 400

    def test_payment_methods(self, client, sales_history):
        data = client.get('/reports/sales/payment-methods').get_json()
        assert {m['payment_method'] for m in data['payment_methods']} == {'cash', 'card'}

    def test_top_products(self, client, product, sales_history):
        data = client.get('/reports/products/top', query_string={'limit': 1}).get_json()
        assert len(data['products']) == 1
        assert data['products'][0]['product_id'] == product.id
        assert data['products'][0]['total_revenue'] == '35.00'

    def test_slow_moving(self, client, sales_history):
        data = client.get('/reports/products/slow-moving').get_json()
        assert data['status'] == 'ok'
        assert len(data['products']) == 2
