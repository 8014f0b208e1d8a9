"""
Webhooks Blueprint for Mercado Pago notifications.

Every delivery is acknowledged with HTTP 200 so Mercado Pago stops
retrying; failures are logged, sent to Sentry and counted instead. The
notification body is only a hint: payment status is always re-fetched
from the gateway before it is applied, so a delivery with a bad or missing
signature is recorded as such and reconciled all the same.
"""

import hashlib
import hmac
import logging
from datetime import datetime
from typing import Optional

import sentry_sdk
from flask import Blueprint, request, jsonify, current_app
from sqlalchemy.exc import IntegrityError

from now24.database import get_session
from now24.models import GatewayWebhookEvent
from now24.services.notification_service import get_notifier
from now24.services.payment_gateway import get_payment_gateway
from now24.services.payment_service import PaymentService
from now24.blueprints.metrics import webhook_events_total

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/webhooks')

PAYMENT_TOPICS = ('payment',)


def parse_signature_header(header: str) -> dict:
    """Split `ts=...,v1=...` into a dict."""
    parts = {}
    for chunk in (header or '').split(','):
        key, sep, value = chunk.strip().partition('=')
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def build_signature_manifest(data_id: str, request_id: str, ts: str) -> str:
    manifest = ''
    if data_id:
        manifest += f"id:{data_id.lower() if data_id.isalnum() else data_id};"
    if request_id:
        manifest += f"request-id:{request_id};"
    if ts:
        manifest += f"ts:{ts};"
    return manifest


def verify_mp_signature(secret: str, signature_header: str, request_id: str, data_id: str) -> bool:
    """Verify Mercado Pago's x-signature (HMAC-SHA256 over the id/request-id/ts manifest)."""
    parts = parse_signature_header(signature_header)
    ts, received = parts.get('ts'), parts.get('v1')
    if not ts or not received:
        logger.warning("[WEBHOOK] Missing ts or v1 in x-signature header")
        return False

    expected = hmac.new(
        secret.encode('utf-8'),
        build_signature_manifest(data_id, request_id, ts).encode('utf-8'),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(received, expected)


def _dedupe_key(topic: str, action: Optional[str], resource_id: Optional[str], delivery_id: str) -> str:
    raw = f"{topic}|{action or ''}|{resource_id or ''}|{delivery_id}"
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()


def _record_event(session, topic, action, notification_id, resource_id, payload, dedupe_key, signature_valid):
    """
    Store the delivery. Returns (event, is_new).

    A repeated delivery whose first attempt failed is handed back for
    reprocessing; any other repeat is a duplicate.
    """
    existing = session.query(GatewayWebhookEvent).filter_by(dedupe_key=dedupe_key).first()
    if existing is not None:
        return existing, existing.status == GatewayWebhookEvent.FAILED

    event = GatewayWebhookEvent(
        topic=topic,
        action=action,
        notification_id=notification_id,
        resource_id=resource_id,
        payload_json=payload,
        dedupe_key=dedupe_key,
        signature_valid=signature_valid,
        status=GatewayWebhookEvent.RECEIVED,
    )
    session.add(event)
    try:
        session.commit()
    except IntegrityError:
        # Concurrent delivery of the same notification
        session.rollback()
        return session.query(GatewayWebhookEvent).filter_by(dedupe_key=dedupe_key).first(), False
    return event, True


def _finish_event(session, event_id, status, error=None):
    event = session.get(GatewayWebhookEvent, event_id)
    event.status = status
    event.error = error
    event.processed_at = datetime.utcnow()
    session.commit()


@webhooks_bp.route('/mercadopago', methods=['POST'])
def mercadopago_webhook():
    """
    Handle Mercado Pago webhook notifications.

    Expected topics:
    - payment: re-fetch the payment and reconcile it
    - merchant_order and anything else: recorded and ignored
    """
    session = get_session()
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}

    data = payload.get('data') if isinstance(payload.get('data'), dict) else {}
    topic = payload.get('type') or payload.get('topic') or request.args.get('type') or request.args.get('topic') or 'unknown'
    action = payload.get('action')
    resource_id = request.args.get('data.id') or data.get('id') or request.args.get('id')
    resource_id = str(resource_id) if resource_id is not None else None
    notification_id = str(payload['id']) if payload.get('id') is not None else None
    request_id = request.headers.get('x-request-id', '')

    logger.info(f"[WEBHOOK] Received MP webhook: topic={topic}, action={action}, resource={resource_id}")

    signature_valid = None
    secret = current_app.config.get('MP_WEBHOOK_SECRET')
    if secret:
        signature_valid = verify_mp_signature(
            secret, request.headers.get('x-signature', ''), request_id, resource_id or ''
        )
        if not signature_valid:
            # Reconciled anyway; the body is never applied
            logger.warning(f"[WEBHOOK] Invalid x-signature for resource {resource_id}")
            webhook_events_total.labels(topic=topic, outcome='invalid_signature').inc()

    delivery_id = notification_id or request_id or hashlib.sha256(request.get_data()).hexdigest()
    event_id = None
    try:
        event, is_new = _record_event(
            session, topic, action, notification_id, resource_id, payload,
            _dedupe_key(topic, action, resource_id, delivery_id), signature_valid,
        )
        event_id = event.id
        if not is_new:
            logger.info(f"[WEBHOOK] Duplicate delivery {delivery_id} ignored")
            webhook_events_total.labels(topic=topic, outcome='duplicate').inc()
            return jsonify({'status': 'duplicate'}), 200

        if topic not in PAYMENT_TOPICS or not resource_id:
            logger.info(f"[WEBHOOK] Unhandled webhook topic: {topic}")
            _finish_event(session, event_id, GatewayWebhookEvent.IGNORED)
            webhook_events_total.labels(topic=topic, outcome='ignored').inc()
            return jsonify({'status': 'ignored'}), 200

        service = PaymentService(session, get_payment_gateway(), get_notifier())
        txn = service.reconcile(resource_id)

        if txn is None:
            _finish_event(session, event_id, GatewayWebhookEvent.IGNORED, 'no matching order')
            webhook_events_total.labels(topic=topic, outcome='unmatched').inc()
            return jsonify({'status': 'ignored'}), 200

        _finish_event(session, event_id, GatewayWebhookEvent.PROCESSED)
        webhook_events_total.labels(topic=topic, outcome='processed').inc()
        return jsonify({'status': 'processed'}), 200

    except Exception as e:
        logger.exception(f"[WEBHOOK] Error processing MP webhook for {resource_id}: {e}")
        sentry_sdk.capture_exception(e)
        session.rollback()
        webhook_events_total.labels(topic=topic, outcome='failed').inc()
        if event_id is not None:
            try:
                _finish_event(session, event_id, GatewayWebhookEvent.FAILED, str(e)[:1000])
            except Exception:
                session.rollback()
                logger.exception(f"[WEBHOOK] Could not mark event {event_id} as failed")
        return jsonify({'status': 'error'}), 200
