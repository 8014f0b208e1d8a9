"""
Mercado Pago Service for customers and saved cards.
Uses the official SDK for tokenization and the customer card vault.
"""

import logging
from typing import Dict, Any, Optional

import mercadopago  # type: ignore
from mercadopago.config import RequestOptions  # type: ignore
import requests

from now24.exceptions import PaymentGatewayError, PaymentGatewayUnavailableError

logger = logging.getLogger(__name__)


class MercadoPagoService:
    """Service to interact with Mercado Pago customers, card tokens and cards."""

    def __init__(self, access_token: Optional[str] = None, timeout: float = 10):
        """Initialize SDK with access token."""
        self.token = access_token
        self.request_options = RequestOptions(connection_timeout=timeout)
        if not self.token:
            logger.warning("Mercado Pago ACCESS_TOKEN not configured.")
            self.sdk = None
        else:
            self.sdk = mercadopago.SDK(self.token, request_options=self.request_options)

    def _check_sdk(self):
        """Raise error if SDK is not initialized."""
        if not self.sdk:
            raise PaymentGatewayError("Mercado Pago SDK not initialized. Missing MP_ACCESS_TOKEN.", status_code=500)

    def _call(self, operation: str, func, *args, expected=(200, 201)) -> Dict[str, Any]:
        """Run an SDK call and normalise its {'status', 'response'} envelope."""
        self._check_sdk()
        try:
            response = func(*args, request_options=self.request_options)
        except (requests.Timeout, requests.ConnectionError) as e:
            logger.error(f"[MP] {operation} unreachable: {e}")
            raise PaymentGatewayUnavailableError() from e

        status = response.get("status")
        if status in expected:
            return response["response"]
        logger.error(f"[MP] {operation} failed: {response}")
        if status is None or status >= 500:
            raise PaymentGatewayUnavailableError()
        body = response.get("response") or {}
        raise PaymentGatewayError(
            body.get("message") or f"Falha em {operation}",
            status_code=400,
            payload={'gateway_status_code': status},
        )

    def search_customer(self, email: str) -> Optional[Dict[str, Any]]:
        """Find a customer by e-mail, or None."""
        body = self._call('customer.search', self.sdk.customer().search, {"email": email})
        results = body.get("results") or []
        return results[0] if results else None

    def create_customer(self, email: str, first_name: str, last_name: str,
                        identification: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        data = {
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
        }
        if identification:
            data["identification"] = identification
        customer = self._call('customer.create', self.sdk.customer().create, data)
        logger.info(f"[MP] Customer created: {customer.get('id')}")
        return customer

    def create_card_token(self, card_data: Dict[str, Any]) -> str:
        """
        Tokenize raw card fields.

        The token is single-use and expires within minutes; callers must
        consume it immediately.
        """
        token = self._call('card_token.create', self.sdk.card_token().create, card_data)
        return token["id"]

    def create_customer_card(self, customer_id: str, token: str) -> Dict[str, Any]:
        """Turn a single-use token into a permanent customer card."""
        card = self._call('card.create', self.sdk.card().create, customer_id, {"token": token})
        logger.info(f"[MP] Customer card created for customer {customer_id}: {card.get('id')}")
        return card
