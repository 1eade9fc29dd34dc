"""
Integration tests for low stock alerts, restocking and store settings.
"""

import pytest
from decimal import Decimal

from zwift_pos.exceptions import ValidationRejection
from zwift_pos.models import Product
from zwift_pos.services import inventory_alerts_service


@pytest.fixture
def low_stock_products(session, category):
    """One product per urgency level plus one healthy product (price 10, cost 6, min 10)."""
    specs = [('Empty shelf', 0), ('Almost gone', 2), ('Running low', 5), ('Plenty', 20)]
    products = {}
    for name, stock in specs:
        product = Product(name=name, category_id=category.id, price=Decimal('10.00'),
                          purchase_price=Decimal('6.00'), stock=stock, min_stock=10)
        session.add(product)
        products[name] = product
    session.commit()
    return products


class TestUrgencyLevel:

    @pytest.mark.parametrize('stock, min_stock, expected', [
        (0, 10, 'Critical'),
        (-1, 10, 'Critical'),
        (2, 10, 'High'),
        (3, 10, 'Medium'),
        (9, 10, 'Medium'),
    ])
    def test_levels(self, stock, min_stock, expected):
        assert inventory_alerts_service.urgency_level(stock, min_stock) == expected


class TestLowStockReport:
    """Tests for get_low_stock_report."""

    def test_rows_and_summary(self, session, low_stock_products):
        report = inventory_alerts_service.get_low_stock_report(session)

        assert [r['name'] for r in report['data']] == ['Empty shelf', 'Almost gone', 'Running low']
        assert report['total_count'] == 3
        assert report['urgency_filter_applied'] == 'all'

        critical = report['data'][0]
        assert critical['stock_deficit'] == 10
        assert critical['stock_percentage'] == 0
        assert critical['restock_value'] == Decimal('60.00')
        assert critical['unit_profit'] == Decimal('4.00')
        assert critical['max_discount'] == Decimal('40.00')

        assert report['summary']['critical_count'] == 1
        assert report['summary']['high_count'] == 1
        assert report['summary']['medium_count'] == 1
        assert report['summary']['total_restock_value'] == Decimal('138.00')

    def test_filter_keeps_full_summary(self, session, low_stock_products):
        report = inventory_alerts_service.get_low_stock_report(session, urgency_filter='HIGH')

        assert [r['name'] for r in report['data']] == ['Almost gone']
        assert report['urgency_filter_applied'] == 'high'
        assert report['summary']['critical_count'] == 1
        assert report['summary']['total_restock_value'] == Decimal('48.00')

    def test_limit(self, session, low_stock_products):
        report = inventory_alerts_service.get_low_stock_report(session, limit=1)
        assert report['showing_count'] == 1
        assert report['total_count'] == 3

    def test_invalid_filter(self, session):
        with pytest.raises(ValidationRejection):
            inventory_alerts_service.get_low_stock_report(session, urgency_filter='urgent')

    def test_inactive_products_are_ignored(self, session, low_stock_products):
        low_stock_products['Empty shelf'].active = False
        session.commit()

        report = inventory_alerts_service.get_low_stock_report(session)
        assert report['summary']['critical_count'] == 0


class TestInventoryEndpoints:
    """Tests for /inventory/*."""

    def test_low_stock_endpoint(self, client, low_stock_products):
        response = client.get('/inventory/alerts/low-stock', query_string={'urgency': 'critical'})
        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'ok'
        assert data['data'][0]['name'] == 'Empty shelf'
        assert data['data'][0]['restock_value'] == '60.00'

    def test_low_stock_endpoint_bad_filter(self, client, session):
        response = client.get('/inventory/alerts/low-stock', query_string={'urgency': 'soon'})
        assert response.status_code == 400

    def test_overview(self, client, low_stock_products):
        data = client.get('/inventory/overview').get_json()

        assert data['summary']['total_products'] == 4
        assert data['summary']['in_stock'] == 3
        assert data['summary']['out_of_stock'] == 1
        assert data['summary']['low_stock'] == 2
        assert data['summary']['stock_health_percentage'] == 75
        assert data['summary']['below_threshold'] == 2
        assert data['data_quality']['with_barcodes'] == 0
        assert data['data_quality']['with_purchase_prices'] == 4
        assert data['value_analysis']['total_inventory_value'] == '270.00'
        assert data['value_analysis']['total_cost_value'] == '162.00'
        assert data['value_analysis']['potential_profit'] == '108.00'
        assert data['value_analysis']['profit_margin_percentage'] == '40.00'

    def test_restock(self, client, session, product):
        response = client.post('/inventory/restock', json={'product_id': product.id, 'quantity': 3})
        assert response.status_code == 200
        assert response.get_json()['product']['stock'] == 8

        response = client.post('/inventory/restock', json={'product_id': product.id, 'quantity': 0})
        assert response.status_code == 400

    def test_stock_levels(self, client, session, product, second_product):
        response = client.post('/inventory/stock-levels', json={'levels': [
            {'product_id': product.id, 'stock': 1},
            {'product_id': second_product.id, 'stock': 50},
        ]})
        assert response.status_code == 200
        assert [p['stock'] for p in response.get_json()['products']] == [1, 50]

    def test_stock_levels_validated_before_writing(self, client, session, product, second_product):
        response = client.post('/inventory/stock-levels', json={'levels': [
            {'product_id': product.id, 'stock': 1},
            {'product_id': second_product.id, 'stock': -4},
        ]})
        assert response.status_code == 400

        session.expire_all()
        assert session.get(Product, product.id).stock == 5


class TestSettingsEndpoints:

    def test_defaults_from_config(self, client, session):
        data = client.get('/inventory/settings').get_json()
        assert Decimal(data['tax_rate']) == Decimal('0.10')
        assert data['currency'] == 'USD'

    def test_update(self, client, session, product):
        response = client.post('/inventory/settings', json={'tax_rate': '0.16', 'currency': 'eur'})
        assert response.status_code == 200
        data = response.get_json()
        assert Decimal(data['tax_rate']) == Decimal('0.16')
        assert data['currency'] == 'EUR'

        cart = client.post('/pos/cart/add', json={'product_id': product.id, 'quantity': 1}).get_json()
        assert cart['totals']['tax'] == '1.60'
        assert cart['display_total'] == '€11.60'

    @pytest.mark.parametrize('payload', [
        {'tax_rate': '1.5'},
        {'tax_rate': '-0.1'},
        {'tax_rate': 'abc'},
        {'currency': 'ZZZ'},
    ])
    def test_invalid_settings(self, client, session, payload):
        response = client.post('/inventory/settings', json=payload)
        assert response.status_code == 400
