"""Cart blueprint - JSON API for the user's shopping cart."""
from flask import Blueprint, jsonify, g

from now24.database import get_session
from now24.middleware import require_login
from now24.services import cart_service
from now24.utils.request_data import json_body, int_field, str_field

cart_bp = Blueprint('cart', __name__, url_prefix='/api/cart')


@cart_bp.route('', methods=['GET'])
@require_login
def get_cart():
    """Cart contents with subtotal, delivery fee, discount and total."""
    summary = cart_service.get_cart_summary(get_session(), g.user_id)
    return jsonify({'status': 'success', 'cart': summary})


@cart_bp.route('/items', methods=['POST'])
@require_login
def add_item():
    payload = json_body()
    product_id = int_field(payload, 'product_id')
    quantity = int_field(payload, 'quantity', 1)
    customizations = payload.get('customizations')
    if customizations is not None and not isinstance(customizations, list):
        customizations = None

    db_session = get_session()
    cart_service.add_item(
        db_session, g.user_id, product_id, quantity,
        customizations=customizations, note=payload.get('note'),
    )
    summary = cart_service.get_cart_summary(db_session, g.user_id)
    return jsonify({'status': 'success', 'cart': summary}), 201


@cart_bp.route('/items/<int:item_id>', methods=['PATCH'])
@require_login
def update_item(item_id):
    quantity = int_field(json_body(), 'quantity')
    db_session = get_session()
    cart_service.update_item_quantity(db_session, g.user_id, item_id, quantity)
    return jsonify({'status': 'success', 'cart': cart_service.get_cart_summary(db_session, g.user_id)})


@cart_bp.route('/items/<int:item_id>', methods=['DELETE'])
@require_login
def remove_item(item_id):
    db_session = get_session()
    cart_service.remove_item(db_session, g.user_id, item_id)
    return jsonify({'status': 'success', 'cart': cart_service.get_cart_summary(db_session, g.user_id)})


@cart_bp.route('', methods=['DELETE'])
@require_login
def clear_cart():
    db_session = get_session()
    cart_service.clear_cart(db_session, g.user_id)
    return jsonify({'status': 'success', 'cart': cart_service.get_cart_summary(db_session, g.user_id)})


@cart_bp.route('/coupon', methods=['POST'])
@require_login
def apply_coupon():
    code = str_field(json_body(), 'code')
    summary = cart_service.apply_coupon(get_session(), g.user_id, code)
    return jsonify({'status': 'success', 'cart': summary})


@cart_bp.route('/coupon', methods=['DELETE'])
@require_login
def remove_coupon():
    summary = cart_service.remove_coupon(get_session(), g.user_id)
    return jsonify({'status': 'success', 'cart': summary})
