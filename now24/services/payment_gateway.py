"""Payment gateway port and the Mercado Pago adapter.

Services receive a PaymentGateway instance instead of reaching for a
module-level client, so tests can hand in a fake.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from flask import current_app

from now24.exceptions import PaymentGatewayError
from now24.services.mercadopago_client import MercadoPagoClient
from now24.services.mercadopago_service import MercadoPagoService

logger = logging.getLogger(__name__)

BOLETO_METHOD_ID = 'bolbradesco'


@dataclass(frozen=True)
class GatewayPayment:
    """Gateway view of one payment."""

    gateway_transaction_id: str
    status: str
    status_detail: Optional[str] = None
    authorization_code: Optional[str] = None
    external_reference: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_mp_response(cls, data: Dict[str, Any]) -> 'GatewayPayment':
        if not data.get('id') or not data.get('status'):
            raise PaymentGatewayError("Resposta do gateway sem id ou status")
        return cls(
            gateway_transaction_id=str(data['id']),
            status=data['status'],
            status_detail=data.get('status_detail'),
            authorization_code=data.get('authorization_code'),
            external_reference=data.get('external_reference'),
            raw=data,
        )


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def tokenize_card(self, card_data: Dict[str, Any]) -> str:
        """Exchange raw card fields for a short-lived, single-use token."""
        ...

    @abstractmethod
    def get_or_create_customer(self, email: str, first_name: str, last_name: str,
                               identification: Optional[Dict[str, str]] = None) -> str:
        """Return the gateway customer id for an e-mail."""
        ...

    @abstractmethod
    def create_permanent_card(self, customer_id: str, token: str) -> Dict[str, Any]:
        """Consume a token and return the permanent card (`id`, `last_four_digits`, ...)."""
        ...

    @abstractmethod
    def charge(
        self,
        amount: int,
        payment_method: str,
        idempotency_key: str,
        description: str,
        payer: Dict[str, Any],
        external_reference: str,
        card: Optional[Dict[str, Any]] = None,
        installments: int = 1,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GatewayPayment:
        """Create a payment. `amount` is centavos."""
        ...

    @abstractmethod
    def get_payment(self, gateway_transaction_id: str) -> GatewayPayment:
        """Fetch the canonical state of a payment."""
        ...


class MercadoPagoGateway(PaymentGateway):
    """Mercado Pago adapter: REST client for payments, SDK for the card vault."""

    def __init__(self, client: MercadoPagoClient, service: MercadoPagoService,
                 currency: str = 'BRL', notification_url: Optional[str] = None):
        self.client = client
        self.service = service
        self.currency = currency
        self.notification_url = notification_url

    @classmethod
    def from_config(cls, config) -> 'MercadoPagoGateway':
        token = config.get('MP_ACCESS_TOKEN')
        timeout = float(config.get('MP_TIMEOUT_SECONDS', 10))
        return cls(
            MercadoPagoClient(token, timeout=timeout),
            MercadoPagoService(token, timeout=timeout),
            currency=config.get('MP_CURRENCY', 'BRL'),
            notification_url=config.get('MP_NOTIFICATION_URL'),
        )

    def tokenize_card(self, card_data: Dict[str, Any]) -> str:
        return self.service.create_card_token({
            'card_number': str(card_data['card_number']).replace(' ', ''),
            'cardholder': {
                'name': card_data['holder_name'],
                'identification': card_data.get('identification') or {},
            },
            'expiration_month': int(card_data['expiration_month']),
            'expiration_year': int(card_data['expiration_year']),
            'security_code': str(card_data['security_code']),
        })

    def get_or_create_customer(self, email, first_name, last_name, identification=None):
        customer = self.service.search_customer(email)
        if customer is None:
            customer = self.service.create_customer(email, first_name, last_name, identification)
        return str(customer['id'])

    def create_permanent_card(self, customer_id, token):
        return self.service.create_customer_card(customer_id, token)

    def charge(self, amount, payment_method, idempotency_key, description, payer,
               external_reference, card=None, installments=1, metadata=None):
        payload = {
            'transaction_amount': float(Decimal(int(amount)) / 100),
            'description': description,
            'external_reference': str(external_reference),
            'metadata': metadata or {},
            'payer': {
                'email': payer.get('email'),
                'first_name': payer.get('first_name'),
                'last_name': payer.get('last_name'),
                'identification': payer.get('identification') or {},
            },
        }
        if self.notification_url:
            payload['notification_url'] = self.notification_url

        if payment_method == 'pix':
            payload['payment_method_id'] = 'pix'
        elif payment_method == 'boleto':
            payload['payment_method_id'] = BOLETO_METHOD_ID
        else:
            if not card or not card.get('gateway_card_id'):
                raise PaymentGatewayError("Cartão sem referência permanente", status_code=400)
            payload['payment_method_id'] = card.get('brand')
            payload['installments'] = int(installments or 1)
            payload['saved_card_id'] = card['gateway_card_id']
            if card.get('customer_id'):
                payload['payer']['type'] = 'customer'
                payload['payer']['id'] = card['customer_id']

        return GatewayPayment.from_mp_response(self.client.create_payment(payload, idempotency_key))

    def get_payment(self, gateway_transaction_id):
        return GatewayPayment.from_mp_response(self.client.get_payment(gateway_transaction_id))


def init_payment_gateway(app, gateway: Optional[PaymentGateway] = None):
    """Register the gateway used by services (tests inject a fake)."""
    if gateway is None and app.config.get('MP_ACCESS_TOKEN'):
        gateway = MercadoPagoGateway.from_config(app.config)
    if gateway is None:
        app.logger.warning("[MP] MP_ACCESS_TOKEN not set, payment gateway disabled")
    app.extensions['now24_payment_gateway'] = gateway


def get_payment_gateway() -> PaymentGateway:
    gateway = current_app.extensions.get('now24_payment_gateway')
    if gateway is None:
        raise PaymentGatewayError("Gateway de pagamento não configurado", status_code=503)
    return gateway
