"""
Unit tests for notification rendering and dispatch.
"""

import pytest

from now24.services import notification_service
from now24.services.notification_service import (
    NotificationKind, render_notification, dispatch_notification, build_notifier, LogNotifier, MailNotifier
)


class TestRenderNotification:
    def test_order_created(self):
        rendered = render_notification(NotificationKind.ORDER_CREATED, {
            'order_number': '#123', 'total_display': 'R$ 49,00',
        })
        assert rendered['title'] == 'Pedido realizado!'
        assert '#123' in rendered['body']
        assert 'R$ 49,00' in rendered['body']

    def test_cancel_with_reason(self):
        rendered = render_notification(NotificationKind.ORDER_CANCELLED, {
            'order_number': '#123', 'reason': 'Endereço errado',
        })
        assert rendered['body'].endswith('Motivo: Endereço errado')

    def test_status_change(self):
        rendered = render_notification(NotificationKind.ORDER_STATUS_CHANGED, {
            'order_number': '#9', 'status': 'out_for_delivery',
        })
        assert rendered['title'] == 'Saiu para entrega'

    def test_status_without_template(self):
        assert render_notification(NotificationKind.ORDER_STATUS_CHANGED, {'status': 'pending'}) is None


class TestDispatch:
    def test_failures_are_swallowed(self):
        class Broken:
            def notify(self, user_id, kind, payload):
                raise RuntimeError('smtp down')

        dispatch_notification(Broken(), 1, NotificationKind.ORDER_CREATED, {})

    def test_missing_notifier_is_a_noop(self):
        dispatch_notification(None, 1, NotificationKind.ORDER_CREATED, {})

    def test_build_notifier(self):
        assert isinstance(build_notifier('log'), LogNotifier)
        assert isinstance(build_notifier('mail'), MailNotifier)
        with pytest.raises(ValueError):
            build_notifier('sms')

    def test_mail_notifier_sends_to_payload_email(self, monkeypatch):
        sent = []
        monkeypatch.setattr(notification_service, 'send_order_email',
                            lambda to, title, body, number: sent.append((to, title, number)) or True)

        MailNotifier().notify(1, NotificationKind.ORDER_STATUS_CHANGED, {
            'order_number': '#7', 'status': 'delivered', 'email': 'maria@now24.com.br',
        })
        MailNotifier().notify(1, NotificationKind.ORDER_STATUS_CHANGED, {
            'order_number': '#8', 'status': 'delivered', 'email': None,
        })

        assert sent == [('maria@now24.com.br', 'Pedido entregue', '#7')]
