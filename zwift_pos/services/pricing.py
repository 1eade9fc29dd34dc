"""
Money and percentage primitives for cart lines.

All functions work on Decimal and never round; call money() when a value
leaves the engine (API payloads, persisted totals).
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

Number = Union[int, float, str, Decimal]

ZERO = Decimal('0')
HUNDRED = Decimal('100')
CENT = Decimal('0.01')


def to_decimal(value: Optional[Number], default: Decimal = ZERO) -> Decimal:
    """Convert a number or numeric string to Decimal (None -> default)."""
    if value is None or value == '':
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f'Invalid numeric value: {value!r}') from e


def money(value: Number) -> Decimal:
    """Quantize an amount to cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def discount_factor(discount_percent: Number) -> Decimal:
    """1 - d/100. Not clamped: callers decide what a discount may be."""
    return Decimal('1') - to_decimal(discount_percent) / HUNDRED


def line_subtotal(quantity: Number, unit_price: Number, discount_percent: Number = 0) -> Decimal:
    """quantity * unit_price * (1 - discount/100)."""
    return to_decimal(quantity) * to_decimal(unit_price) * discount_factor(discount_percent)


def line_discount_amount(quantity: Number, unit_price: Number, discount_percent: Number) -> Decimal:
    """Amount taken off a line by its discount."""
    return to_decimal(unit_price) * to_decimal(quantity) * to_decimal(discount_percent) / HUNDRED


def max_discount_before_loss(unit_price: Number, purchase_price: Optional[Number]) -> Decimal:
    """
    Largest discount percentage that still sells at or above cost.

    Advisory only: the cart accepts higher discounts and reports them as
    loss-making instead of rejecting them.
    """
    price = to_decimal(unit_price)
    cost = to_decimal(purchase_price)
    if cost >= price:
        return ZERO
    ceiling = (price - cost) / price * HUNDRED
    return max(ZERO, min(HUNDRED, ceiling))


def line_profit(unit_price: Number, purchase_price: Optional[Number], quantity: Number,
                discount_percent: Number = 0) -> Decimal:
    """(unit_price * (1 - discount/100) - purchase_price) * quantity. Negative means a loss."""
    selling = to_decimal(unit_price) * discount_factor(discount_percent)
    return (selling - to_decimal(purchase_price)) * to_decimal(quantity)


def is_loss_making(unit_price: Number, purchase_price: Optional[Number], discount_percent: Number) -> bool:
    """True when the discounted unit price is below cost."""
    if purchase_price is None:
        return False
    return to_decimal(unit_price) * discount_factor(discount_percent) < to_decimal(purchase_price)
