"""Sale model."""
from sqlalchemy import Column, String, Numeric, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from zwift_pos.database import Base, BigIntPK
import enum


class PaymentMethod(enum.Enum):
    """Payment method enum."""
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    MOBILE_PAYMENT = "mobile_payment"


def normalize_payment_method(value) -> str:
    """
    Normalize a payment method to its stored string.

    None defaults to cash. Raises ValueError for unknown methods.
    """
    if value is None:
        return PaymentMethod.CASH.value

    if isinstance(value, PaymentMethod):
        return value.value

    normalized = str(value).strip().lower()
    for method in PaymentMethod:
        if normalized == method.value:
            return normalized
    allowed = ', '.join(m.value for m in PaymentMethod)
    raise ValueError(f"Invalid payment method: {value}. Must be one of: {allowed}.")


class Sale(Base):
    """Completed sale. Never mutated after creation."""

    __tablename__ = 'sale'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    total = Column(Numeric(12, 2), nullable=False)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    payment_method = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    # Relationships
    items = relationship('SaleItem', back_populates='sale', cascade='all, delete-orphan',
                         order_by='SaleItem.id')

    def __repr__(self):
        return f"<Sale(id={self.id}, total={self.total}, payment_method='{self.payment_method}')>"
