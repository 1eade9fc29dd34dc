"""Models package - exports all SQLAlchemy models."""
from zwift_pos.models.category import Category
from zwift_pos.models.product import Product
from zwift_pos.models.sale import Sale, PaymentMethod, normalize_payment_method
from zwift_pos.models.sale_item import SaleItem
from zwift_pos.models.store_settings import StoreSettings
from zwift_pos.models.stock_sync_failure import StockSyncFailure

__all__ = [
    'Category', 'Product',
    'Sale', 'SaleItem', 'PaymentMethod', 'normalize_payment_method',
    'StoreSettings', 'StockSyncFailure',
]
