"""
Unit tests for the cart line engine and global discount.
"""

import pytest
from decimal import Decimal

from zwift_pos import signals
from zwift_pos.exceptions import (
    NotFoundError, QuantityBelowMinimumError, StockExceededError, ValidationRejection
)
from zwift_pos.services.cart_service import Cart
from zwift_pos.services.stock_reservation import StockState


class TestAddLine:
    """Tests for adding products to the cart."""

    def test_new_line_defaults(self, product_factory):
        cart = Cart()
        line = cart.add_line(product_factory())

        assert line.quantity == 1
        assert line.discount == 0
        assert line.unit_price == Decimal('10.00')
        assert cart.unique_count == 1

    def test_same_product_merges_into_one_line(self, product_factory):
        cart = Cart()
        product = product_factory()
        first = cart.add_line(product, 2)
        second = cart.add_line(product, 1)

        assert first is second
        assert len(cart) == 1
        assert first.quantity == 3

    def test_new_lines_go_first(self, product_factory):
        cart = Cart()
        cart.add_line(product_factory(1, 'A'))
        cart.add_line(product_factory(2, 'B'))
        cart.add_line(product_factory(1, 'A'))

        assert [line.product_id for line in cart] == [2, 1]

    def test_new_line_does_not_inherit_global_discount(self, product_factory):
        cart = Cart()
        cart.add_line(product_factory(1))
        cart.apply_global_discount(10)
        line = cart.add_line(product_factory(2, 'Other'))

        assert line.discount == 0
        assert cart.global_discount == Decimal('10')

    @pytest.mark.parametrize('quantity', [0, -1, '0'])
    def test_rejects_quantity_below_one(self, product_factory, quantity):
        cart = Cart()
        with pytest.raises(QuantityBelowMinimumError) as exc:
            cart.add_line(product_factory(), quantity)
        assert exc.value.payload['min_allowed'] == 1
        assert cart.is_empty

    @pytest.mark.parametrize('quantity', ['1.5', 'abc', True, None])
    def test_rejects_non_integer_quantity(self, product_factory, quantity):
        cart = Cart()
        with pytest.raises(ValidationRejection):
            cart.add_line(product_factory(), quantity)
        assert cart.is_empty

    def test_product_without_stock_cannot_be_added(self, product_factory):
        cart = Cart()
        with pytest.raises(StockExceededError) as exc:
            cart.add_line(product_factory(stock=0))
        assert exc.value.max_allowed == 0
        assert cart.is_empty
        assert cart.stock_state(1) == StockState.DEPLETED


class TestUpdateQuantity:
    """Tests for quantity edits."""

    def test_update_within_stock(self, product_factory):
        cart = Cart()
        line = cart.add_line(product_factory(stock=5), 1)
        cart.update_quantity(line.id, 5)

        assert line.quantity == 5
        assert cart.available_stock(1) == 0
        assert cart.stock_state(1) == StockState.AT_CAPACITY

    def test_rejects_above_stock_without_mutation(self, product_factory):
        cart = Cart()
        line = cart.add_line(product_factory(stock=5), 3)

        with pytest.raises(StockExceededError) as exc:
            cart.update_quantity(line.id, 6)

        assert exc.value.max_allowed == 5
        assert exc.value.requested == 6
        assert exc.value.status_code == 409
        assert line.quantity == 3
        assert cart.available_stock(1) == 2

    def test_rejects_below_one_without_mutation(self, product_factory):
        cart = Cart()
        line = cart.add_line(product_factory(), 2)

        with pytest.raises(QuantityBelowMinimumError):
            cart.update_quantity(line.id, 0)
        assert line.quantity == 2

    def test_decrease_returns_stock(self, product_factory):
        cart = Cart()
        line = cart.add_line(product_factory(stock=5), 4)
        cart.update_quantity(line.id, 1)

        assert cart.available_stock(1) == 4

    def test_unknown_line(self):
        with pytest.raises(NotFoundError):
            Cart().update_quantity('missing', 1)

    def test_quantity_never_exceeds_stock(self, product_factory):
        """Any sequence of adds and updates stays within the stock ceiling."""
        cart = Cart()
        product = product_factory(stock=7)
        line = cart.add_line(product, 2)
        attempts = [('add', 3), ('set', 9), ('add', 3), ('set', 1), ('add', 6), ('add', 1), ('set', 8)]

        for action, quantity in attempts:
            try:
                if action == 'add':
                    cart.add_line(product, quantity)
                else:
                    cart.update_quantity(line.id, quantity)
            except StockExceededError:
                pass
            assert line.quantity <= 7
            assert cart.available_stock(1) + line.quantity == 7

        assert line.quantity == 7


class TestStockExceededSignal:
    """Rejected quantities notify subscribers."""

    def test_signal_carries_bound(self, product_factory):
        received = []

        def receiver(sender, **data):
            received.append(data)

        cart = Cart()
        line = cart.add_line(product_factory(stock=2), 2)
        with signals.stock_exceeded.connected_to(receiver):
            with pytest.raises(StockExceededError):
                cart.update_quantity(line.id, 3)

        assert received == [{'product_id': 1, 'product_name': 'Test Product', 'requested': 3, 'max_allowed': 2}]


class TestDiscounts:
    """Tests for per-line and global discounts."""

    def test_concrete_scenario(self, product_factory):
        """price 10, cost 6, stock 5."""
        cart = Cart()
        line = cart.add_line(product_factory(price='10.00', purchase_price='6.00', stock=5), 3)

        assert line.subtotal == Decimal('30')
        assert line.profit_after_discount == Decimal('12')

        cart.update_discount(line.id, 20)
        assert line.subtotal == Decimal('24')
        assert line.profit_after_discount == Decimal('6')
        assert line.profit_before_discount == Decimal('12')

        with pytest.raises(StockExceededError) as exc:
            cart.update_quantity(line.id, 6)
        assert exc.value.max_allowed == 5

    def test_discount_past_break_even_is_accepted(self, product_factory):
        received = []

        def receiver(sender, **data):
            received.append(data)

        cart = Cart()
        line = cart.add_line(product_factory(price='10', purchase_price='8', stock=5), 1)
        assert line.max_discount == Decimal('20')

        with signals.discount_below_cost.connected_to(receiver):
            cart.update_discount(line.id, 50)

        assert line.discount == Decimal('50')
        assert line.profit_after_discount == Decimal('-3')
        assert line.is_loss_making
        assert len(received) == 1
        assert received[0]['max_discount'] == Decimal('20')
        assert cart.warnings()[0]['code'] == 'discount_below_cost'

    def test_invalid_discount(self, product_factory):
        cart = Cart()
        line = cart.add_line(product_factory())
        with pytest.raises(ValidationRejection):
            cart.update_discount(line.id, 'lots')
        assert line.discount == 0

    @pytest.mark.parametrize('discount', ['NaN', 'Infinity', '-Infinity', 'sNaN', Decimal('NaN')])
    @pytest.mark.parametrize('purchase_price', ['6.00', None])
    def test_non_finite_discount_is_rejected(self, product_factory, discount, purchase_price):
        cart = Cart()
        line = cart.add_line(product_factory(purchase_price=purchase_price))
        cart.update_discount(line.id, 10)

        with pytest.raises(ValidationRejection):
            cart.update_discount(line.id, discount)
        with pytest.raises(ValidationRejection):
            cart.apply_global_discount(discount)

        assert line.discount == Decimal('10')
        assert cart.global_discount == 0
        assert cart.totals(0)['subtotal'] == Decimal('9.00')

    def test_global_discount_overwrites_lines(self, product_factory):
        cart = Cart()
        a = cart.add_line(product_factory(1, 'A', price='10', purchase_price='6', stock=10), 2)
        b = cart.add_line(product_factory(2, 'B', price='4', purchase_price='1', stock=10), 5)
        cart.update_discount(a.id, 35)
        cart.update_discount(b.id, 5)

        cart.apply_global_discount(10)

        assert a.discount == b.discount == Decimal('10')
        assert a.subtotal == Decimal('18')
        assert b.subtotal == Decimal('18')
        assert a.profit_after_discount == Decimal('6')
        assert b.profit_after_discount == Decimal('13')

    def test_global_discount_zero_does_not_restore(self, product_factory):
        cart = Cart()
        line = cart.add_line(product_factory())
        cart.update_discount(line.id, 15)
        cart.apply_global_discount(25)
        cart.apply_global_discount(0)

        assert line.discount == 0


class TestRemoveAndClear:
    """Tests for removing lines and clearing the cart."""

    def test_remove_restores_stock(self, product_factory):
        cart = Cart()
        line = cart.add_line(product_factory(stock=5), 4)
        cart.remove_line(line.id)

        assert cart.is_empty
        assert cart.available_stock(1) == 5
        assert cart.stock_state(1) == StockState.AVAILABLE

    def test_clear_resets_everything(self, product_factory):
        cart = Cart()
        cart.add_line(product_factory(1, stock=3), 3)
        cart.add_line(product_factory(2, 'B', stock=4), 2)
        cart.apply_global_discount(10)

        cart.clear()

        assert cart.is_empty
        assert cart.global_discount == 0
        assert cart.available_stock(1) == 3
        assert cart.available_stock(2) == 4


class TestTotals:
    """Tests for cart projections."""

    def test_totals(self, product_factory):
        cart = Cart()
        a = cart.add_line(product_factory(1, 'A', price='10', purchase_price='6', stock=10), 3)
        cart.add_line(product_factory(2, 'B', price='4', purchase_price=None, stock=10), 2)
        cart.update_discount(a.id, 20)

        totals = cart.totals('0.10')

        assert totals['item_count'] == 5
        assert totals['unique_count'] == 2
        assert totals['subtotal'] == Decimal('32.00')
        assert totals['total_discount'] == Decimal('6.00')
        assert totals['tax'] == Decimal('3.20')
        assert totals['total'] == Decimal('35.20')
        assert totals['profit_before_discount'] == Decimal('20.00')
        assert totals['profit_after_discount'] == Decimal('14.00')

    def test_empty_cart(self):
        totals = Cart().totals('0.2')
        assert totals['subtotal'] == Decimal('0.00')
        assert totals['total'] == Decimal('0.00')
        assert totals['item_count'] == 0


class TestSessionRoundTrip:
    """The cart survives storage in the Flask session."""

    def test_restored_cart_keeps_lines_and_reservations(self, product_factory):
        cart = Cart()
        line = cart.add_line(product_factory(stock=5), 3)
        cart.update_discount(line.id, 20)

        restored = Cart.from_dict(cart.to_dict())
        restored_line = restored.get_line(line.id)

        assert restored_line.quantity == 3
        assert restored_line.discount == Decimal('20')
        assert restored_line.profit_after_discount == Decimal('6')
        assert restored.available_stock(1) == 2
        with pytest.raises(StockExceededError):
            restored.update_quantity(line.id, 6)
