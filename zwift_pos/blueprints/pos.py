"""POS blueprint - cart management, product lookup and checkout (JSON)."""
from typing import Any, Dict

from flask import Blueprint, request, session, jsonify, current_app

from zwift_pos.database import get_session
from zwift_pos.exceptions import NotFoundError, ValidationRejection
from zwift_pos.services import checkout_service, product_service, sales_analytics_service, stock_service
from zwift_pos.services.cart_service import Cart
from zwift_pos.services.settings_service import get_pos_settings
from zwift_pos.utils.formatters import format_currency

pos_bp = Blueprint('pos', __name__, url_prefix='/pos')

CART_SESSION_KEY = 'pos_cart'


def get_cart() -> Cart:
    """Load the cart from the session."""
    return Cart.from_dict(session.get(CART_SESSION_KEY))


def load_cart(db_session) -> Cart:
    """Load the cart and bring its stock mirror up to date with the store."""
    cart = get_cart()
    product_ids = cart.stock.product_ids()
    if product_ids:
        cart.refresh_stock(product_service.current_stock_levels(db_session, product_ids))
    return cart


def save_cart(cart: Cart) -> None:
    """Store the cart in the session."""
    session[CART_SESSION_KEY] = cart.to_dict()
    session.modified = True


def _payload() -> Dict[str, Any]:
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _require(payload: Dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None or value == '':
        raise ValidationRejection(f'Missing field: {key}')
    return value


def _as_id(value: Any, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationRejection(f'Invalid {field}: {value!r}') from None


def _cart_state(cart: Cart, db_session) -> Dict[str, Any]:
    """Everything the POS screen renders for a cart."""
    settings = get_pos_settings(db_session)
    totals = cart.totals(settings['tax_rate'])
    lines = []
    for line in cart:
        data = line.to_dict(with_derived=True)
        data['stock_state'] = cart.stock_state(line.product_id).value
        data['available_stock'] = cart.available_stock(line.product_id)
        lines.append(data)
    return {
        'status': 'ok',
        'lines': lines,
        'totals': totals,
        'display_total': format_currency(totals['total'], settings['currency']),
        'tax_rate': settings['tax_rate'],
        'currency': settings['currency'],
        'warnings': cart.warnings(),
    }


def _respond(cart: Cart, db_session, status: int = 200, **extra):
    # Render first so a cart that cannot be priced never reaches the session
    body = _cart_state(cart, db_session)
    save_cart(cart)
    body.update(extra)
    return jsonify(body), status


@pos_bp.route('/cart', methods=['GET'])
def cart_view():
    """Current cart with line and cart totals."""
    db_session = get_session()
    return jsonify(_cart_state(load_cart(db_session), db_session))


@pos_bp.route('/cart/add', methods=['POST'])
def cart_add():
    """Add a product (merges into its existing line)."""
    db_session = get_session()
    payload = _payload()
    product_id = _as_id(_require(payload, 'product_id'), 'product_id')
    quantity = payload.get('quantity', 1)

    product = product_service.get_product(db_session, product_id)
    cart = load_cart(db_session)
    line = cart.add_line(product, quantity)

    current_app.logger.info(f"[CART] add product_id={product_id}, qty={quantity}, lines={len(cart)}")
    return _respond(cart, db_session, line_id=line.id)


@pos_bp.route('/cart/update', methods=['POST'])
def cart_update():
    """Set a line's quantity."""
    db_session = get_session()
    payload = _payload()
    line_id = _require(payload, 'line_id')
    quantity = _require(payload, 'quantity')

    cart = load_cart(db_session)
    cart.update_quantity(line_id, quantity)
    return _respond(cart, db_session)


@pos_bp.route('/cart/discount', methods=['POST'])
def cart_discount():
    """Set one line's discount percentage."""
    db_session = get_session()
    payload = _payload()
    line_id = _require(payload, 'line_id')
    discount = _require(payload, 'discount')

    cart = load_cart(db_session)
    cart.update_discount(line_id, discount)
    return _respond(cart, db_session)


@pos_bp.route('/cart/global-discount', methods=['POST'])
def cart_global_discount():
    """Apply one discount to every line, replacing per-line discounts."""
    db_session = get_session()
    payload = _payload()
    discount = _require(payload, 'discount')

    cart = load_cart(db_session)
    cart.apply_global_discount(discount)
    return _respond(cart, db_session)


@pos_bp.route('/cart/remove', methods=['POST'])
def cart_remove():
    db_session = get_session()
    payload = _payload()
    line_id = _require(payload, 'line_id')

    cart = load_cart(db_session)
    cart.remove_line(line_id)
    return _respond(cart, db_session)


@pos_bp.route('/cart/clear', methods=['POST'])
def cart_clear():
    db_session = get_session()
    cart = load_cart(db_session)
    cart.clear()
    return _respond(cart, db_session)


@pos_bp.route('/cart/stock-override', methods=['POST'])
def cart_stock_override():
    """
    Explicit operator action: raise a product's stock so the cart can hold
    the requested quantity, then set the line to that quantity.
    """
    db_session = get_session()
    payload = _payload()
    product_id = _as_id(_require(payload, 'product_id'), 'product_id')
    quantity = _require(payload, 'quantity')

    product = product_service.get_product(db_session, product_id)
    cart = load_cart(db_session)
    new_stock = stock_service.override_stock(db_session, cart, product_id, quantity)

    line = cart.line_for_product(product_id)
    if line:
        cart.update_quantity(line.id, quantity)
    else:
        line = cart.add_line(product, quantity)

    current_app.logger.warning(f"[STOCK] Operator override product_id={product_id}: stock set to {new_stock}")
    return _respond(cart, db_session, line_id=line.id, new_stock=new_stock)


@pos_bp.route('/products/search', methods=['GET'])
def product_search():
    """Search products by name or barcode."""
    db_session = get_session()
    search_query = request.args.get('q', '').strip()
    category_id = request.args.get('category_id', type=int)
    limit = current_app.config.get('SEARCH_RESULT_LIMIT', 20)

    products, exact_match = product_service.search_products(db_session, search_query, category_id, limit)
    cart = load_cart(db_session)
    results = []
    for product in products:
        data = product_service.product_to_dict(product)
        if product.id in cart.stock:
            data['available_stock'] = cart.available_stock(product.id)
            data['stock_state'] = cart.stock_state(product.id).value
        results.append(data)

    return jsonify({
        'status': 'ok',
        'products': results,
        'exact_barcode_match': exact_match,
    })


@pos_bp.route('/scan', methods=['POST'])
def scan():
    """Barcode scan: an exact match is added to the cart directly."""
    db_session = get_session()
    payload = _payload()
    barcode = str(_require(payload, 'barcode')).strip()

    product = product_service.find_by_barcode(db_session, barcode)
    if not product:
        raise NotFoundError('No product with this barcode.', payload={'barcode': barcode})

    cart = load_cart(db_session)
    line = cart.add_line(product, 1)
    return _respond(cart, db_session, line_id=line.id, product=product_service.product_to_dict(product))


@pos_bp.route('/checkout', methods=['POST'])
def checkout():
    """Settle the cart. A failed sale write leaves the cart as it was."""
    db_session = get_session()
    payload = _payload()
    cart = load_cart(db_session)
    settings = get_pos_settings(db_session)

    result = checkout_service.settle_cart(
        db_session, cart,
        payment_method=payload.get('payment_method'),
        tax_rate=settings['tax_rate'],
    )
    save_cart(cart)

    body = result.to_dict()
    body['status'] = 'ok'
    body['display_total'] = format_currency(result.totals['total'], settings['currency'])
    if not result.stock_synced:
        body['warning'] = ('The sale was saved but stock could not be updated for some products; '
                           'retry from the stock sync failures list.')
    current_app.logger.info(f"[CHECKOUT] sale_id={result.sale_id}, total={result.totals['total']}")
    return jsonify(body), 201


@pos_bp.route('/sales/recent', methods=['GET'])
def recent_sales():
    db_session = get_session()
    limit = max(1, min(request.args.get('limit', 10, type=int), 100))
    return jsonify({'status': 'ok', 'sales': sales_analytics_service.get_recent_sales(db_session, limit)})


@pos_bp.route('/sales/<int:sale_id>', methods=['GET'])
def sale_detail(sale_id: int):
    db_session = get_session()
    return jsonify({'status': 'ok', 'sale': sales_analytics_service.get_sale_details(db_session, sale_id)})


@pos_bp.route('/stock-sync/failures', methods=['GET'])
def stock_sync_failures():
    """Post-sale stock updates waiting for a retry."""
    db_session = get_session()
    include_resolved = request.args.get('all', 'false').lower() == 'true'
    failures = stock_service.list_sync_failures(db_session, include_resolved=include_resolved)
    return jsonify({
        'status': 'ok',
        'failures': [stock_service.sync_failure_to_dict(f) for f in failures],
    })


@pos_bp.route('/stock-sync/failures/<int:failure_id>/retry', methods=['POST'])
def retry_stock_sync(failure_id: int):
    db_session = get_session()
    failure = stock_service.retry_sync_failure(db_session, failure_id)
    return jsonify({'status': 'ok', 'failure': stock_service.sync_failure_to_dict(failure)})
