"""Saved payment cards blueprint."""
from flask import Blueprint, jsonify, g

from now24.database import get_session
from now24.middleware import require_login
from now24.services import payment_card_service
from now24.services.payment_gateway import get_payment_gateway
from now24.utils.request_data import json_body, int_field, str_field

payment_cards_bp = Blueprint('payment_cards', __name__, url_prefix='/api/payment-cards')


@payment_cards_bp.route('', methods=['GET'])
@require_login
def list_cards():
    cards = payment_card_service.list_cards(get_session(), g.user_id)
    return jsonify({'status': 'success', 'cards': [card.to_dict() for card in cards]})


@payment_cards_bp.route('', methods=['POST'])
@require_login
def add_card():
    """Save a card. Raw card fields are forwarded to the gateway, never stored."""
    payload = json_body()
    card_data = {
        'card_number': str_field(payload, 'card_number'),
        'holder_name': str_field(payload, 'holder_name'),
        'expiration_month': int_field(payload, 'expiration_month'),
        'expiration_year': int_field(payload, 'expiration_year'),
        'security_code': str_field(payload, 'security_code'),
        'card_type': payload.get('card_type'),
    }
    card = payment_card_service.add_card(get_session(), get_payment_gateway(), g.user_id, card_data)
    return jsonify({'status': 'success', 'card': card.to_dict()}), 201


@payment_cards_bp.route('/<int:card_id>/default', methods=['POST'])
@require_login
def set_default(card_id):
    card = payment_card_service.set_default_card(get_session(), card_id, g.user_id)
    return jsonify({'status': 'success', 'card': card.to_dict()})


@payment_cards_bp.route('/<int:card_id>', methods=['DELETE'])
@require_login
def remove_card(card_id):
    payment_card_service.remove_card(get_session(), card_id, g.user_id)
    return jsonify({'status': 'success'})
