"""
Tests for saved payment cards.
"""

import pytest

from now24.exceptions import CardNotFoundError, InvalidPaymentMethodError, UserDataMissingError
from now24.models import AppUser, PaymentCard
from now24.services import payment_card_service


def card_form(number='5031 4332 1540 6351', **overrides):
    data = {
        'card_number': number,
        'holder_name': 'MARIA SOUZA',
        'expiration_month': 11,
        'expiration_year': 2030,
        'security_code': '123',
    }
    data.update(overrides)
    return data


class TestAddCard:
    """Saving a card through the gateway vault."""

    def test_first_card_becomes_default(self, session, gateway, user):
        card = payment_card_service.add_card(session, gateway, user.id, card_form())

        assert card.is_default is True
        assert card.last_four == '6351'
        assert card.brand == 'visa'
        assert card.card_type == 'credit_card'
        assert card.gateway_card_id.startswith('card_')

    def test_token_is_consumed_and_never_stored(self, session, gateway, user):
        card = payment_card_service.add_card(session, gateway, user.id, card_form())

        token_call = gateway.calls_to('create_permanent_card')[0]
        assert token_call['token'].startswith('tok_')
        assert gateway.tokens == {}
        assert card.gateway_card_id != token_call['token']
        stored = session.get(PaymentCard, card.id)
        assert '5031433215406351' not in repr(stored.to_dict())

    def test_gateway_customer_is_created_once(self, session, gateway, user):
        payment_card_service.add_card(session, gateway, user.id, card_form())
        payment_card_service.add_card(session, gateway, user.id, card_form(number='4235647728025682'))

        customer_calls = gateway.calls_to('get_or_create_customer')
        assert len(customer_calls) == 1
        assert customer_calls[0]['identification'] == {'type': 'CPF', 'number': '12345678909'}
        assert session.get(AppUser, user.id).gateway_customer_id == gateway.customers['maria@now24.com.br']

    def test_second_card_is_not_default(self, session, gateway, user):
        payment_card_service.add_card(session, gateway, user.id, card_form())
        second = payment_card_service.add_card(session, gateway, user.id, card_form(number='4235647728025682'))
        assert second.is_default is False

    def test_debit_card(self, session, gateway, user):
        card = payment_card_service.add_card(session, gateway, user.id, card_form(card_type='debit_card'))
        assert card.card_type == 'debit_card'

    def test_invalid_card_type(self, session, gateway, user):
        with pytest.raises(InvalidPaymentMethodError):
            payment_card_service.add_card(session, gateway, user.id, card_form(card_type='pix'))
        assert gateway.calls == []

    def test_cpf_is_required(self, session, gateway, user):
        user.cpf = None
        session.commit()
        with pytest.raises(UserDataMissingError):
            payment_card_service.add_card(session, gateway, user.id, card_form())
        assert gateway.calls == []


class TestManageCards:
    def test_list_only_own_active_cards(self, session, gateway, user, other_user, credit_card):
        payment_card_service.add_card(session, gateway, other_user.id, card_form())
        cards = payment_card_service.list_cards(session, user.id)
        assert [c.id for c in cards] == [credit_card.id]

    def test_set_default(self, session, gateway, user, credit_card):
        second = payment_card_service.add_card(session, gateway, user.id, card_form())
        payment_card_service.set_default_card(session, second.id, user.id)

        assert session.get(PaymentCard, second.id).is_default is True
        assert session.get(PaymentCard, credit_card.id).is_default is False

    def test_removing_default_promotes_next(self, session, gateway, user, credit_card):
        credit_card_id = credit_card.id
        second = payment_card_service.add_card(session, gateway, user.id, card_form())

        payment_card_service.remove_card(session, credit_card_id, user.id)

        removed = session.get(PaymentCard, credit_card_id)
        assert removed.active is False
        assert removed.is_default is False
        assert session.get(PaymentCard, second.id).is_default is True
        assert [c.id for c in payment_card_service.list_cards(session, user.id)] == [second.id]

    def test_other_users_card(self, session, user, other_user, credit_card):
        with pytest.raises(CardNotFoundError):
            payment_card_service.remove_card(session, credit_card.id, other_user.id)

    def test_removed_card_cannot_be_default(self, session, user, credit_card):
        payment_card_service.remove_card(session, credit_card.id, user.id)
        with pytest.raises(CardNotFoundError):
            payment_card_service.set_default_card(session, credit_card.id, user.id)
