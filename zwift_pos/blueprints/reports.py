"""Reports blueprint - sales trend and product performance (JSON)."""
from datetime import datetime

from flask import Blueprint, request, jsonify, current_app

from zwift_pos.database import get_session
from zwift_pos.exceptions import ValidationRejection
from zwift_pos.services import sales_analytics_service

reports_bp = Blueprint('reports', __name__, url_prefix='/reports')


def _days() -> int:
    days = request.args.get('days', current_app.config.get('REPORT_DEFAULT_DAYS', 30), type=int)
    if days < 1 or days > 365:
        raise ValidationRejection('days must be between 1 and 365')
    return days


def _date_range():
    """?start=YYYY-MM-DD&end=YYYY-MM-DD, or the last ?days= days."""
    start = request.args.get('start')
    end = request.args.get('end')
    if start and end:
        try:
            start_day = datetime.strptime(start, '%Y-%m-%d').date()
            end_day = datetime.strptime(end, '%Y-%m-%d').date()
        except ValueError:
            raise ValidationRejection('Dates must use the YYYY-MM-DD format') from None
        if end_day < start_day:
            raise ValidationRejection('end must not be before start')
        return sales_analytics_service.get_period_range((end_day - start_day).days + 1, end_day)
    return sales_analytics_service.get_period_range(_days())


@reports_bp.route('/sales/trend', methods=['GET'])
def sales_trend():
    db_session = get_session()
    start_dt, end_dt = _date_range()
    return jsonify({
        'status': 'ok',
        'start': start_dt.date().isoformat(),
        'trend': sales_analytics_service.get_sales_trend(db_session, start_dt, end_dt),
    })


@reports_bp.route('/sales/payment-methods', methods=['GET'])
def sales_by_payment_method():
    db_session = get_session()
    start_dt, end_dt = _date_range()
    return jsonify({
        'status': 'ok',
        'payment_methods': sales_analytics_service.get_sales_by_payment_method(db_session, start_dt, end_dt),
    })


@reports_bp.route('/products/top', methods=['GET'])
def top_products():
    db_session = get_session()
    start_dt, end_dt = _date_range()
    limit = max(1, min(request.args.get('limit', 10, type=int), 100))
    return jsonify({
        'status': 'ok',
        'products': sales_analytics_service.get_top_products(db_session, start_dt, end_dt, limit),
    })


@reports_bp.route('/products/slow-moving', methods=['GET'])
def slow_moving_products():
    db_session = get_session()
    limit = max(1, min(request.args.get('limit', 20, type=int), 100))
    products = sales_analytics_service.get_slow_moving_products(
        db_session, days=_days(), limit=limit,
        max_daily_velocity=current_app.config.get('SLOW_MOVING_MAX_DAILY_VELOCITY', '1')
    )
    return jsonify({'status': 'ok', 'products': products})
