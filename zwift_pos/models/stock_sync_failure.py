"""Stock sync failure model."""
from sqlalchemy import Column, BigInteger, Integer, Boolean, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from zwift_pos.database import Base, BigIntPK


class StockSyncFailure(Base):
    """
    A post-sale stock push that did not reach the store.

    The sale itself stands. This row keeps the units still to deduct so the
    retry applies them to the stock level current at that time.
    """

    __tablename__ = 'stock_sync_failure'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    sale_id = Column(BigInteger, ForeignKey('sale.id'), nullable=True, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)  # units sold, not yet deducted
    target_stock = Column(Integer, nullable=True)  # expected level at sale time; actual level once resolved
    error = Column(String(500), nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    resolved = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    sale = relationship('Sale')
    product = relationship('Product')

    def __repr__(self):
        return (f"<StockSyncFailure(id={self.id}, product_id={self.product_id}, "
                f"quantity={self.quantity}, resolved={self.resolved})>")
