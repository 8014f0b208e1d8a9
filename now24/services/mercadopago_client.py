"""Mercado Pago REST client for payments (create / fetch)."""
import logging
import os
import time
from typing import Any, Dict, Optional

import requests

from now24.exceptions import PaymentGatewayError, PaymentGatewayUnavailableError
from now24.blueprints.metrics import gateway_request_duration_seconds

logger = logging.getLogger(__name__)


class MercadoPagoClient:
    """Cliente HTTP para a API de pagamentos do Mercado Pago."""

    BASE_URL = "https://api.mercadopago.com"

    def __init__(self, access_token: Optional[str] = None, timeout: float = 10):
        """
        Initialize Mercado Pago client.

        Args:
            access_token: MP access token. If None, reads from env MP_ACCESS_TOKEN
            timeout: seconds for connect and read
        """
        self.access_token = access_token or os.getenv('MP_ACCESS_TOKEN')
        if not self.access_token:
            raise ValueError("MP_ACCESS_TOKEN is required")

        self.timeout = timeout
        self.headers = {
            'Authorization': f'Bearer {self.access_token}',
            'Content-Type': 'application/json'
        }

    def _request(self, operation: str, method: str, url: str, **kwargs) -> Dict[str, Any]:
        """
        Single HTTP call, no retries.

        Raises:
            PaymentGatewayUnavailableError: timeout, connection error or 5xx
            PaymentGatewayError: 4xx or unreadable body
        """
        started = time.time()
        try:
            response = requests.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as e:
            logger.error(f"[MP] {operation} unreachable: {e}")
            raise PaymentGatewayUnavailableError() from e
        finally:
            gateway_request_duration_seconds.labels(operation=operation).observe(time.time() - started)

        if response.status_code >= 500:
            logger.error(f"[MP] {operation} failed with {response.status_code}: {response.text}")
            raise PaymentGatewayUnavailableError()

        try:
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as e:
            logger.error(f"[MP] {operation} rejected with {response.status_code}: {response.text}")
            raise PaymentGatewayError(
                self._error_message(response),
                payload={'gateway_status_code': response.status_code},
            ) from e
        except ValueError as e:
            logger.error(f"[MP] {operation} returned a non-JSON body")
            raise PaymentGatewayError() from e

    @staticmethod
    def _error_message(response) -> str:
        try:
            body = response.json()
        except ValueError:
            return "Erro ao processar pagamento"
        cause = body.get('cause') or []
        if cause and isinstance(cause, list) and cause[0].get('description'):
            return cause[0]['description']
        return body.get('message') or "Erro ao processar pagamento"

    def create_payment(self, payload: Dict[str, Any], idempotency_key: str) -> Dict[str, Any]:
        """
        Criar pagamento (POST /v1/payments).

        Mercado Pago returns the original payment for a repeated
        X-Idempotency-Key, so a retry after a timeout cannot double-charge.
        """
        url = f"{self.BASE_URL}/v1/payments"
        headers = dict(self.headers)
        headers['X-Idempotency-Key'] = idempotency_key

        logger.info(
            f"[MP] Creating payment method={payload.get('payment_method_id')} "
            f"amount={payload.get('transaction_amount')} ref={payload.get('external_reference')}"
        )
        data = self._request('create_payment', 'POST', url, json=payload, headers=headers)
        logger.info(f"[MP] Payment created: {data.get('id')} status={data.get('status')}")
        return data

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        """Consultar pagamento (GET /v1/payments/{id})."""
        url = f"{self.BASE_URL}/v1/payments/{payment_id}"
        data = self._request('get_payment', 'GET', url, headers=self.headers)
        logger.info(f"[MP] Payment {payment_id} status: {data.get('status')}")
        return data
