"""
Cart service - in-progress sale held in memory for one POS session.

The Cart owns its lines, the cart-wide discount and the stock mirror. Every
mutation either completes or raises a ValidationRejection without touching
state. Derived line values are computed from quantity, unit price and
discount on every read, so they cannot drift.
"""
import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from zwift_pos.exceptions import NotFoundError, QuantityBelowMinimumError, StockExceededError, ValidationRejection
from zwift_pos.services import pricing
from zwift_pos.services.pricing import money, to_decimal
from zwift_pos.services.stock_reservation import StockMirror, StockState
from zwift_pos import signals

logger = logging.getLogger(__name__)


def _as_quantity(value: Any) -> int:
    """Accept ints and integral numeric strings; reject everything else."""
    if isinstance(value, bool):
        raise ValidationRejection(f'Invalid quantity: {value!r}')
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationRejection(f'Invalid quantity: {value!r}') from None
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationRejection(f'Quantity must be a whole number (got {value})')
    return int(number)


def _as_percent(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValidationRejection(f'Invalid discount: {value!r}')
    try:
        percent = to_decimal(value)
    except ValueError:
        raise ValidationRejection(f'Invalid discount: {value!r}') from None
    if not percent.is_finite():
        raise ValidationRejection(f'Discount must be a finite number (got {value})')
    return percent


class CartLine:
    """One product in the cart."""

    def __init__(self, product_id: int, name: str, unit_price, purchase_price=None,
                 quantity: int = 1, discount=0, barcode: Optional[str] = None,
                 image: Optional[str] = None, line_id: Optional[str] = None):
        self.id = line_id or uuid.uuid4().hex
        self.product_id = product_id
        self.name = name
        self.unit_price = to_decimal(unit_price)
        self.purchase_price = None if purchase_price is None else to_decimal(purchase_price)
        self.quantity = quantity
        self.discount = to_decimal(discount)
        self.barcode = barcode
        self.image = image

    def __repr__(self):
        return f"<CartLine(product_id={self.product_id}, quantity={self.quantity}, discount={self.discount})>"

    @property
    def has_cost(self) -> bool:
        return self.purchase_price is not None

    @property
    def subtotal(self) -> Decimal:
        return pricing.line_subtotal(self.quantity, self.unit_price, self.discount)

    @property
    def gross_amount(self) -> Decimal:
        """quantity * unit_price before the discount."""
        return pricing.line_subtotal(self.quantity, self.unit_price, 0)

    @property
    def discount_amount(self) -> Decimal:
        return pricing.line_discount_amount(self.quantity, self.unit_price, self.discount)

    @property
    def profit_before_discount(self) -> Decimal:
        return pricing.line_profit(self.unit_price, self.purchase_price, self.quantity, 0)

    @property
    def profit_after_discount(self) -> Decimal:
        return pricing.line_profit(self.unit_price, self.purchase_price, self.quantity, self.discount)

    @property
    def max_discount(self) -> Decimal:
        return pricing.max_discount_before_loss(self.unit_price, self.purchase_price)

    @property
    def is_loss_making(self) -> bool:
        return pricing.is_loss_making(self.unit_price, self.purchase_price, self.discount)

    def to_dict(self, with_derived: bool = False) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'product_id': self.product_id,
            'name': self.name,
            'unit_price': str(self.unit_price),
            'purchase_price': None if self.purchase_price is None else str(self.purchase_price),
            'quantity': self.quantity,
            'discount': str(self.discount),
            'barcode': self.barcode,
            'image': self.image,
        }
        if with_derived:
            data.update({
                'subtotal': str(money(self.subtotal)),
                'discount_amount': str(money(self.discount_amount)),
                'profit_before_discount': str(money(self.profit_before_discount)),
                'profit_after_discount': str(money(self.profit_after_discount)),
                'max_discount': str(self.max_discount.quantize(Decimal('0.01'))),
                'is_loss_making': self.is_loss_making,
                'has_cost': self.has_cost,
            })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CartLine':
        return cls(
            line_id=data['id'],
            product_id=int(data['product_id']),
            name=data['name'],
            unit_price=data['unit_price'],
            purchase_price=data.get('purchase_price'),
            quantity=int(data['quantity']),
            discount=data.get('discount') or 0,
            barcode=data.get('barcode'),
            image=data.get('image'),
        )


class Cart:
    """Ordered cart lines (newest first), a global discount and a stock mirror."""

    def __init__(self, lines: Optional[List[CartLine]] = None, global_discount=0,
                 stock: Optional[StockMirror] = None):
        self.lines: List[CartLine] = list(lines or [])
        self.global_discount = to_decimal(global_discount)
        self.stock = stock or StockMirror()

    def __len__(self):
        return len(self.lines)

    def __iter__(self):
        return iter(self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_line(self, line_id: str) -> CartLine:
        for line in self.lines:
            if line.id == line_id:
                return line
        raise NotFoundError('The item is not in the cart.', payload={'line_id': line_id})

    def line_for_product(self, product_id: int) -> Optional[CartLine]:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def stock_state(self, product_id: int) -> StockState:
        return self.stock.state(product_id)

    def available_stock(self, product_id: int) -> int:
        """Mirrored stock still available to this cart."""
        return self.stock.remaining(product_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _ensure_stock(self, product_id: int, name: str, requested_total: int) -> None:
        try:
            self.stock.ensure_within(product_id, name, requested_total)
        except StockExceededError as e:
            logger.info(f"[CART] Stock exceeded for product_id={product_id}: "
                        f"requested={requested_total}, max_allowed={e.max_allowed}")
            signals.stock_exceeded.send(
                self, product_id=product_id, product_name=name,
                requested=requested_total, max_allowed=e.max_allowed
            )
            raise

    def add_line(self, product, quantity: Any = 1) -> CartLine:
        """
        Add a product, merging into its existing line.

        ``product`` needs id, name, price, purchase_price and stock; a Product
        model instance works. New lines go to the front with no discount.
        """
        quantity = _as_quantity(quantity)
        if quantity < 1:
            raise QuantityBelowMinimumError(quantity)

        line = self.line_for_product(product.id)
        if line:
            new_total = line.quantity + quantity
            self._ensure_stock(product.id, line.name, new_total)
            self.stock.reserve(product.id, new_total)
            line.quantity = new_total
            logger.debug(f"[CART] Incremented product_id={product.id} to {new_total}")
            return line

        self.stock.track(product.id, product.stock)
        self._ensure_stock(product.id, product.name, quantity)
        line = CartLine(
            product_id=product.id,
            name=product.name,
            unit_price=product.price,
            purchase_price=product.purchase_price,
            quantity=quantity,
            discount=0,
            barcode=getattr(product, 'barcode', None),
            image=getattr(product, 'image', None),
        )
        self.stock.reserve(product.id, quantity)
        self.lines.insert(0, line)
        logger.debug(f"[CART] Added product_id={product.id} qty={quantity}")
        return line

    def update_quantity(self, line_id: str, new_quantity: Any) -> CartLine:
        """Set a line's quantity; below 1 or above the stock ceiling is rejected."""
        line = self.get_line(line_id)
        new_quantity = _as_quantity(new_quantity)
        if new_quantity < 1:
            raise QuantityBelowMinimumError(new_quantity)
        if new_quantity > line.quantity:
            self._ensure_stock(line.product_id, line.name, new_quantity)
        self.stock.reserve(line.product_id, new_quantity)
        line.quantity = new_quantity
        return line

    def update_discount(self, line_id: str, discount_percent: Any) -> CartLine:
        """
        Set a line's discount. Any value is accepted; going past the
        break-even discount only emits an advisory signal.
        """
        line = self.get_line(line_id)
        line.discount = _as_percent(discount_percent)
        self._advise_if_loss(line)
        return line

    def apply_global_discount(self, discount_percent: Any) -> None:
        """Overwrite every line's discount with one cart-wide percentage."""
        percent = _as_percent(discount_percent)
        self.global_discount = percent
        for line in self.lines:
            line.discount = percent
            self._advise_if_loss(line)
        logger.info(f"[CART] Global discount {percent}% applied to {len(self.lines)} lines")

    def remove_line(self, line_id: str) -> CartLine:
        """Remove a line and give its reservation back to the mirror."""
        line = self.get_line(line_id)
        self.stock.release(line.product_id)
        self.lines.remove(line)
        return line

    def clear(self) -> None:
        """Empty the cart, release every reservation and reset the global discount."""
        self.stock.release_all()
        self.lines = []
        self.global_discount = Decimal('0')

    def close_after_sale(self) -> Dict[int, int]:
        """
        Empty the cart once its sale is persisted.

        Unlike clear(), reservations are consumed rather than released.
        Returns the post-sale stock level per sold product.
        """
        targets = self.stock.consume_all()
        self.lines = []
        self.global_discount = Decimal('0')
        return targets

    def refresh_stock(self, levels: Dict[int, int]) -> None:
        """Bring the stock mirror in line with current store levels ({product_id: stock})."""
        for product_id, store_stock in levels.items():
            self.stock.refresh(product_id, store_stock)

    def override_stock(self, product_id: int, new_stock: int) -> None:
        """
        Apply an explicit operator stock override to the mirror.

        The store is expected to hold ``new_stock`` already (see
        stock_service.override_stock); this never happens implicitly.
        """
        self.stock.override(product_id, new_stock)
        signals.stock_overridden.send(self, product_id=product_id, new_stock=new_stock)

    def _advise_if_loss(self, line: CartLine) -> None:
        if line.is_loss_making:
            signals.discount_below_cost.send(
                self, line_id=line.id, product_id=line.product_id,
                discount=line.discount, max_discount=line.max_discount,
                profit=line.profit_after_discount
            )

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def unique_count(self) -> int:
        return len(self.lines)

    @property
    def subtotal(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), Decimal('0'))

    @property
    def total_discount(self) -> Decimal:
        return sum((line.discount_amount for line in self.lines), Decimal('0'))

    @property
    def profit_before_discount(self) -> Decimal:
        return sum((line.profit_before_discount for line in self.lines), Decimal('0'))

    @property
    def profit_after_discount(self) -> Decimal:
        return sum((line.profit_after_discount for line in self.lines), Decimal('0'))

    def tax(self, tax_rate) -> Decimal:
        return self.subtotal * to_decimal(tax_rate)

    def grand_total(self, tax_rate) -> Decimal:
        return self.subtotal + self.tax(tax_rate)

    def totals(self, tax_rate) -> Dict[str, Any]:
        """Aggregate figures, rounded to cents for display and persistence."""
        return {
            'item_count': self.item_count,
            'unique_count': self.unique_count,
            'subtotal': money(self.subtotal),
            'total_discount': money(self.total_discount),
            'tax': money(self.tax(tax_rate)),
            'total': money(self.grand_total(tax_rate)),
            'profit_before_discount': money(self.profit_before_discount),
            'profit_after_discount': money(self.profit_after_discount),
            'global_discount': self.global_discount,
        }

    def warnings(self) -> List[Dict[str, Any]]:
        """Advisory conditions for display: lines selling below cost."""
        return [
            {
                'line_id': line.id,
                'product_id': line.product_id,
                'code': 'discount_below_cost',
                'message': (f'{line.name}: discount {line.discount}% exceeds the '
                            f'{line.max_discount.quantize(Decimal("0.01"))}% break-even discount'),
            }
            for line in self.lines if line.is_loss_making
        ]

    # ------------------------------------------------------------------
    # Session storage
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lines': [line.to_dict() for line in self.lines],
            'global_discount': str(self.global_discount),
            'stock': self.stock.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Cart':
        data = data or {}
        return cls(
            lines=[CartLine.from_dict(item) for item in data.get('lines', [])],
            global_discount=data.get('global_discount') or 0,
            stock=StockMirror.from_dict(data.get('stock')),
        )
