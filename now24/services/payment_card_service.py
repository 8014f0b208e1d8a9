"""
Saved cards.

A card is saved as a permanent Mercado Pago customer card. The single-use
token produced by tokenization is consumed right away and never stored.
"""
import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from now24.models import AppUser, PaymentCard, PaymentMethod
from now24.exceptions import CardNotFoundError, InvalidPaymentMethodError, UserDataMissingError, Now24Error

logger = logging.getLogger(__name__)


def list_cards(session: Session, user_id: int) -> List[PaymentCard]:
    return session.query(PaymentCard).filter_by(user_id=user_id, active=True).order_by(PaymentCard.created_at, PaymentCard.id).all()


def get_card(session: Session, card_id: int, user_id: int) -> PaymentCard:
    card = session.query(PaymentCard).filter_by(id=card_id, user_id=user_id, active=True).first()
    if not card:
        raise CardNotFoundError()
    return card


def add_card(session: Session, gateway, user_id: int, card_data: Dict[str, Any]) -> PaymentCard:
    """
    Save a card for a user.

    Order matters: the gateway customer must exist before tokenizing, and
    the token is turned into a permanent card in the very next call.

    Args:
        card_data: card_number, holder_name, expiration_month, expiration_year,
            security_code and optional card_type (credit_card | debit_card)
    """
    card_type = card_data.get('card_type') or PaymentMethod.CREDIT_CARD.value
    if card_type not in (PaymentMethod.CREDIT_CARD.value, PaymentMethod.DEBIT_CARD.value):
        raise InvalidPaymentMethodError(card_type)

    user = session.get(AppUser, user_id)
    if not user or not user.email or not user.cpf:
        raise UserDataMissingError()

    identification = {'type': 'CPF', 'number': ''.join(ch for ch in user.cpf if ch.isdigit())}

    if not user.gateway_customer_id:
        user.gateway_customer_id = gateway.get_or_create_customer(
            user.email, user.first_name, user.last_name, identification
        )
        session.commit()
        logger.info(f"[CARDS] Gateway customer {user.gateway_customer_id} linked to user {user_id}")

    token = gateway.tokenize_card(dict(card_data, identification=identification))
    permanent = gateway.create_permanent_card(user.gateway_customer_id, token)

    number = str(card_data['card_number']).replace(' ', '')
    payment_method = permanent.get('payment_method') or {}

    try:
        has_default = session.query(PaymentCard.id).filter_by(
            user_id=user_id, is_default=True, active=True
        ).first() is not None

        card = PaymentCard(
            user_id=user_id,
            card_type=card_type,
            last_four=permanent.get('last_four_digits') or number[-4:],
            holder_name=card_data['holder_name'],
            brand=payment_method.get('id') or card_data.get('brand') or 'unknown',
            expiration_month=int(card_data['expiration_month']),
            expiration_year=int(card_data['expiration_year']),
            gateway_card_id=str(permanent['id']),
            is_default=not has_default,
        )
        session.add(card)
        session.commit()
    except Now24Error as e:
        session.rollback()
        raise e
    except Exception:
        session.rollback()
        raise

    logger.info(f"[CARDS] Card {card.id} saved for user {user_id} (default={card.is_default})")
    return card


def set_default_card(session: Session, card_id: int, user_id: int) -> PaymentCard:
    card = get_card(session, card_id, user_id)
    session.query(PaymentCard).filter(
        PaymentCard.user_id == user_id, PaymentCard.id != card.id
    ).update({PaymentCard.is_default: False}, synchronize_session=False)
    card.is_default = True
    session.commit()
    return card


def remove_card(session: Session, card_id: int, user_id: int) -> None:
    """Soft delete; the oldest remaining card becomes default if needed."""
    card = get_card(session, card_id, user_id)
    was_default = card.is_default
    card.active = False
    card.is_default = False
    session.flush()

    if was_default:
        replacement = session.query(PaymentCard).filter_by(user_id=user_id, active=True).order_by(
            PaymentCard.created_at, PaymentCard.id
        ).first()
        if replacement:
            replacement.is_default = True

    session.commit()
    logger.info(f"[CARDS] Card {card_id} removed for user {user_id}")
