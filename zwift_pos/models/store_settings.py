"""Store settings model."""
from sqlalchemy import Column, String, Numeric, DateTime
from sqlalchemy.sql import func
from zwift_pos.database import Base, BigIntPK


class StoreSettings(Base):
    """Store-wide POS settings. A single row is expected."""

    __tablename__ = 'store_settings'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tax_rate = Column(Numeric(6, 4), nullable=False, default=0)  # decimal fraction, 0.16 = 16%
    currency = Column(String(3), nullable=False, default='USD')
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<StoreSettings(tax_rate={self.tax_rate}, currency='{self.currency}')>"
