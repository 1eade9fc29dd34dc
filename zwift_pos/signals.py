"""
POS notification signals.

Engine and services emit these instead of talking to the presentation layer.
Receivers connect with ``signal.connect(fn)``; every signal is sent with the
emitting object (usually the Cart) as sender plus keyword data.
"""
from blinker import Namespace

_signals = Namespace()

# product_id, product_name, requested, max_allowed
stock_exceeded = _signals.signal('stock-exceeded')

# line_id, product_id, discount, max_discount, profit
discount_below_cost = _signals.signal('discount-below-cost')

# product_id, new_stock
stock_overridden = _signals.signal('stock-overridden')

# sale_id, total, failed_product_ids
sale_completed = _signals.signal('sale-completed')

# sale_id, product_id, quantity, target_stock, error
stock_sync_failed = _signals.signal('stock-sync-failed')
