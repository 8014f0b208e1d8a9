"""
Customer notifications.

Notifications are fire-and-forget: `dispatch_notification` never raises,
so a broken mail server can never undo an order or a payment.
"""
import enum
import logging
from typing import Any, Dict, Optional

from flask import current_app

from now24.services.email_service import send_order_email

logger = logging.getLogger(__name__)


class NotificationKind(str, enum.Enum):
    ORDER_CREATED = 'order_created'
    ORDER_CANCELLED = 'order_cancelled'
    ORDER_STATUS_CHANGED = 'order_status_changed'


STATUS_MESSAGES = {
    'awaiting_payment': ('Aguardando pagamento', 'Estamos aguardando a confirmação do pagamento do pedido {order_number}.'),
    'confirmed': ('Pedido confirmado', 'Seu pedido {order_number} foi confirmado e logo entrará em preparo.'),
    'preparing': ('Pedido em preparo', 'Seu pedido {order_number} está sendo preparado.'),
    'out_for_delivery': ('Saiu para entrega', 'Seu pedido {order_number} saiu para entrega.'),
    'delivered': ('Pedido entregue', 'Seu pedido {order_number} foi entregue. Bom apetite!'),
    'refunded': ('Pedido reembolsado', 'O pagamento do pedido {order_number} foi estornado.'),
}


def render_notification(kind: NotificationKind, payload: Dict[str, Any]) -> Optional[Dict[str, str]]:
    """Title and body for a notification, or None when the status has no template."""
    order_number = payload.get('order_number', '')
    if kind == NotificationKind.ORDER_CREATED:
        return {
            'title': 'Pedido realizado!',
            'body': f"Recebemos seu pedido {order_number}. Total: {payload.get('total_display', '')}".strip(),
        }
    if kind == NotificationKind.ORDER_CANCELLED:
        reason = payload.get('reason')
        body = f"Seu pedido {order_number} foi cancelado."
        if reason:
            body += f" Motivo: {reason}"
        return {'title': 'Pedido cancelado', 'body': body}

    template = STATUS_MESSAGES.get(payload.get('status'))
    if template is None:
        return None
    title, body = template
    return {'title': title, 'body': body.format(order_number=order_number)}


class LogNotifier:
    """Writes notifications to the application log (development default)."""

    def notify(self, user_id: int, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        rendered = render_notification(kind, payload)
        if rendered:
            logger.info(f"[NOTIFY] user={user_id} {rendered['title']}: {rendered['body']}")


class MailNotifier:
    """Sends notifications by e-mail through Flask-Mail."""

    def notify(self, user_id: int, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        rendered = render_notification(kind, payload)
        email = payload.get('email')
        if not rendered or not email:
            return
        send_order_email(email, rendered["title"], rendered["body"], payload.get("order_number", ""))


NOTIFIERS = {
    'log': LogNotifier,
    'mail': MailNotifier,
}


def build_notifier(backend: str):
    try:
        return NOTIFIERS[backend]()
    except KeyError:
        raise ValueError(f"Unknown NOTIFIER_BACKEND: {backend}")


def init_notifier(app, notifier=None):
    """Register the notifier used by services (tests inject a fake)."""
    app.extensions['now24_notifier'] = notifier or build_notifier(app.config.get('NOTIFIER_BACKEND', 'log'))


def get_notifier():
    return current_app.extensions['now24_notifier']


def dispatch_notification(notifier, user_id: int, kind: NotificationKind, payload: Dict[str, Any]) -> None:
    """Deliver a notification; failures are logged and never propagated."""
    if notifier is None:
        return
    try:
        notifier.notify(user_id, kind, payload)
    except Exception:
        logger.exception(f"[NOTIFY] Failed to deliver '{kind.value}' to user {user_id}")
