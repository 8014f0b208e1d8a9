"""Payments blueprint - charge an order and inspect its transactions."""
from flask import Blueprint, jsonify, g

from now24.database import get_session
from now24.middleware import require_login
from now24.services.notification_service import get_notifier
from now24.services.payment_gateway import get_payment_gateway
from now24.services.payment_service import PaymentService
from now24.utils.request_data import json_body, int_field, str_field

payments_bp = Blueprint('payments', __name__, url_prefix='/api/payments')


def _payment_service() -> PaymentService:
    return PaymentService(get_session(), get_payment_gateway(), get_notifier())


@payments_bp.route('', methods=['POST'])
@require_login
def charge():
    """
    Charge an order.

    Body: order_id, payment_method, card_id (card methods), installments,
    payer (optional overrides for e-mail, name, identification).
    """
    payload = json_body()
    payer = payload.get('payer') if isinstance(payload.get('payer'), dict) else None
    service = _payment_service()
    txn = service.charge(
        g.user_id,
        int_field(payload, 'order_id'),
        str_field(payload, 'payment_method'),
        payer=payer,
        card_id=int_field(payload, 'card_id', None),
        installments=int_field(payload, 'installments', 1),
    )
    txn = service.get_transaction(txn.id)
    return jsonify({
        'status': 'success',
        'transaction': txn.to_dict(),
        'order_status': txn.order.status.value,
    }), 201


@payments_bp.route('/transactions/<int:transaction_id>', methods=['GET'])
@require_login
def get_transaction(transaction_id):
    txn = _payment_service().get_transaction(transaction_id, g.user_id)
    return jsonify({'status': 'success', 'transaction': txn.to_dict()})
