"""Store settings service - tax rate and currency used by the POS."""
import logging
from decimal import Decimal
from typing import Dict, Any, Optional

from flask import current_app
from sqlalchemy.orm import Session

from zwift_pos.exceptions import ValidationRejection
from zwift_pos.models import StoreSettings
from zwift_pos.services.cache_service import get_cache
from zwift_pos.services.pricing import to_decimal
from zwift_pos.utils.formatters import CURRENCY_SYMBOLS

logger = logging.getLogger(__name__)

CACHE_MODULE = 'settings'


def _defaults() -> Dict[str, Any]:
    return {
        'tax_rate': to_decimal(current_app.config.get('DEFAULT_TAX_RATE', '0')),
        'currency': current_app.config.get('DEFAULT_CURRENCY', 'USD'),
    }


def _load(session: Session) -> Dict[str, Any]:
    row = session.query(StoreSettings).order_by(StoreSettings.id).first()
    if not row:
        return _defaults()
    return {'tax_rate': Decimal(str(row.tax_rate)), 'currency': row.currency}


def get_pos_settings(session: Session) -> Dict[str, Any]:
    """
    Return {'tax_rate': Decimal fraction, 'currency': code}.

    Read-only for the cart; a missing settings row falls back to config.
    """
    return get_cache().memoize(
        CACHE_MODULE, 'pos', lambda: _load(session))


def update_pos_settings(session: Session, tax_rate: Optional[Any] = None,
                        currency: Optional[str] = None) -> Dict[str, Any]:
    """Create or update the settings row and drop the cached copy."""
    row = session.query(StoreSettings).order_by(StoreSettings.id).first()
    if not row:
        defaults = _defaults()
        row = StoreSettings(tax_rate=defaults['tax_rate'], currency=defaults['currency'])
        session.add(row)

    if tax_rate is not None:
        try:
            rate = to_decimal(tax_rate)
        except ValueError:
            raise ValidationRejection(f'Invalid tax rate: {tax_rate!r}') from None
        if rate < 0 or rate >= 1:
            raise ValidationRejection('The tax rate is a fraction between 0 and 1 (e.g. 0.16)')
        row.tax_rate = rate

    if currency is not None:
        code = currency.strip().upper()
        if code not in CURRENCY_SYMBOLS:
            raise ValidationRejection(f'Unsupported currency: {currency}')
        row.currency = code

    session.commit()
    get_cache().invalidate_module(CACHE_MODULE)
    logger.info(f"[SETTINGS] tax_rate={row.tax_rate}, currency={row.currency}")
    return {'tax_rate': Decimal(str(row.tax_rate)), 'currency': row.currency}
