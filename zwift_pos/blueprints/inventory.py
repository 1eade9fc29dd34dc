"""Inventory blueprint - low stock alerts, restocking and store settings (JSON)."""
from flask import Blueprint, request, jsonify, current_app

from zwift_pos.database import get_session
from zwift_pos.exceptions import ValidationRejection
from zwift_pos.services import inventory_alerts_service, stock_service
from zwift_pos.services.product_service import product_to_dict
from zwift_pos.services.settings_service import get_pos_settings, update_pos_settings

inventory_bp = Blueprint('inventory', __name__, url_prefix='/inventory')


def _payload():
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


@inventory_bp.route('/alerts/low-stock', methods=['GET'])
def low_stock_alerts():
    """Products below their minimum stock, most urgent first."""
    db_session = get_session()
    urgency = request.args.get('urgency', 'all')
    limit = request.args.get('limit', current_app.config.get('LOW_STOCK_REPORT_LIMIT', 50), type=int)
    report = inventory_alerts_service.get_low_stock_report(db_session, urgency_filter=urgency, limit=limit)
    report['status'] = 'ok'
    return jsonify(report)


@inventory_bp.route('/overview', methods=['GET'])
def overview():
    db_session = get_session()
    data = inventory_alerts_service.get_inventory_overview(
        db_session, low_stock_threshold=current_app.config.get('LOW_STOCK_THRESHOLD')
    )
    data['status'] = 'ok'
    return jsonify(data)


@inventory_bp.route('/restock', methods=['POST'])
def restock():
    """Add received units to one product."""
    db_session = get_session()
    payload = _payload()
    try:
        product_id = int(payload.get('product_id'))
    except (TypeError, ValueError):
        raise ValidationRejection('Invalid product_id') from None

    product = stock_service.restock(db_session, product_id, payload.get('quantity'))
    return jsonify({'status': 'ok', 'product': product_to_dict(product)})


@inventory_bp.route('/stock-levels', methods=['POST'])
def stock_levels():
    """Bulk absolute stock edit: {"levels": [{"product_id": 1, "stock": 10}, ...]}."""
    db_session = get_session()
    payload = request.get_json(silent=True) or {}
    products = stock_service.set_stock_levels(db_session, payload.get('levels'))
    return jsonify({'status': 'ok', 'products': [product_to_dict(p) for p in products]})


@inventory_bp.route('/settings', methods=['GET'])
def settings_view():
    db_session = get_session()
    settings = get_pos_settings(db_session)
    return jsonify({'status': 'ok', 'tax_rate': settings['tax_rate'], 'currency': settings['currency']})


@inventory_bp.route('/settings', methods=['POST'])
def settings_update():
    """Update the tax rate (decimal fraction) and/or the currency."""
    db_session = get_session()
    payload = _payload()
    settings = update_pos_settings(
        db_session,
        tax_rate=payload.get('tax_rate'),
        currency=payload.get('currency'),
    )
    current_app.logger.info(f"[SETTINGS] Updated: tax_rate={settings['tax_rate']}, currency={settings['currency']}")
    return jsonify({'status': 'ok', 'tax_rate': settings['tax_rate'], 'currency': settings['currency']})
