"""Orders blueprint - checkout, history, cancellation and fulfillment status."""
from flask import Blueprint, jsonify, g, request

from now24.database import get_session
from now24.middleware import require_login, require_fulfillment_key
from now24.services import order_service
from now24.services.notification_service import get_notifier
from now24.utils.request_data import json_body, int_field, str_field

orders_bp = Blueprint('orders', __name__, url_prefix='/api/orders')


@orders_bp.route('', methods=['POST'])
@require_login
def create_order():
    """
    Create an order from the current cart.

    Body: address_id, payment_method, card_id (card methods), notes,
    delivery_instructions.
    """
    payload = json_body()
    order = order_service.create_order(
        get_session(),
        g.user_id,
        address_id=int_field(payload, 'address_id'),
        payment_method=str_field(payload, 'payment_method'),
        card_id=int_field(payload, 'card_id', None),
        notes=payload.get('notes'),
        delivery_instructions=payload.get('delivery_instructions'),
        notifier=get_notifier(),
    )
    return jsonify({'status': 'success', 'order': order.to_dict()}), 201


@orders_bp.route('', methods=['GET'])
@require_login
def list_orders():
    result = order_service.list_user_orders(
        get_session(),
        g.user_id,
        status=request.args.get('status') or None,
        page=request.args.get('page', 1, type=int),
        limit=request.args.get('limit', 20, type=int),
    )
    return jsonify({'status': 'success', **result})


@orders_bp.route('/<int:order_id>', methods=['GET'])
@require_login
def get_order(order_id):
    order = order_service.get_order(get_session(), order_id, g.user_id)
    data = order.to_dict()
    data['transactions'] = [txn.to_dict() for txn in order.transactions]
    return jsonify({'status': 'success', 'order': data})


@orders_bp.route('/<int:order_id>/cancel', methods=['POST'])
@require_login
def cancel_order(order_id):
    payload = json_body()
    order = order_service.cancel_order(
        get_session(),
        order_id,
        user_id=g.user_id,
        reason=payload.get('reason'),
        cancelled_by='customer',
        notifier=get_notifier(),
    )
    return jsonify({'status': 'success', 'order': order.to_dict()})


@orders_bp.route('/<int:order_id>/status', methods=['PATCH'])
@require_fulfillment_key
def update_status(order_id):
    """Status event from the kitchen or courier integration."""
    payload = json_body()
    order = order_service.update_order_status(
        get_session(),
        order_id,
        str_field(payload, 'status'),
        changed_by=payload.get('changed_by') or 'fulfillment',
        note=payload.get('note'),
        notifier=get_notifier(),
    )
    return jsonify({'status': 'success', 'order': order.to_dict()})
