"""
Unit tests for the Mercado Pago REST client error mapping.
"""

import pytest
import requests

from now24.exceptions import PaymentGatewayError, PaymentGatewayUnavailableError
from now24.services.mercadopago_client import MercadoPagoClient


class FakeResponse:
    def __init__(self, status_code, body=None, text=''):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError('no json')
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error')


@pytest.fixture
def client():
    return MercadoPagoClient('TEST-token', timeout=2)


@pytest.fixture
def captured(monkeypatch):
    """Replace requests.request; tests set `captured['response']` or `captured['raise']`."""
    state = {'calls': []}

    def fake_request(method, url, **kwargs):
        state['calls'].append((method, url, kwargs))
        if 'raise' in state:
            raise state['raise']
        return state['response']

    monkeypatch.setattr(requests, 'request', fake_request)
    return state


class TestMercadoPagoClient:
    """Tests for create/get payment calls."""

    def test_requires_token(self, monkeypatch):
        monkeypatch.delenv('MP_ACCESS_TOKEN', raising=False)
        with pytest.raises(ValueError):
            MercadoPagoClient(None)

    def test_create_payment_sends_idempotency_key_and_timeout(self, client, captured):
        captured['response'] = FakeResponse(201, {'id': 123, 'status': 'approved'})
        data = client.create_payment({'transaction_amount': 49.0}, 'order-1-attempt-1')

        method, url, kwargs = captured['calls'][0]
        assert method == 'POST'
        assert url.endswith('/v1/payments')
        assert kwargs['headers']['X-Idempotency-Key'] == 'order-1-attempt-1'
        assert kwargs['headers']['Authorization'] == 'Bearer TEST-token'
        assert kwargs['timeout'] == 2
        assert data['id'] == 123

    def test_timeout_is_retryable(self, client, captured):
        captured['raise'] = requests.Timeout('read timed out')
        with pytest.raises(PaymentGatewayUnavailableError) as exc:
            client.get_payment('123')
        assert exc.value.status_code == 503
        assert exc.value.to_dict()['retryable'] is True

    def test_connection_error_is_retryable(self, client, captured):
        captured['raise'] = requests.ConnectionError('refused')
        with pytest.raises(PaymentGatewayUnavailableError):
            client.create_payment({}, 'k')

    def test_server_error_is_retryable(self, client, captured):
        captured['response'] = FakeResponse(502, text='bad gateway')
        with pytest.raises(PaymentGatewayUnavailableError):
            client.get_payment('123')

    def test_client_error_uses_gateway_message(self, client, captured):
        captured['response'] = FakeResponse(400, {
            'message': 'bad request',
            'cause': [{'code': 2067, 'description': 'Invalid user identification number'}],
        })
        with pytest.raises(PaymentGatewayError) as exc:
            client.create_payment({}, 'k')
        assert not isinstance(exc.value, PaymentGatewayUnavailableError)
        assert exc.value.message == 'Invalid user identification number'
        assert exc.value.payload['gateway_status_code'] == 400

    def test_non_json_body(self, client, captured):
        captured['response'] = FakeResponse(200, None)
        with pytest.raises(PaymentGatewayError):
            client.get_payment('123')
