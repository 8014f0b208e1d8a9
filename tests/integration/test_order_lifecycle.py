"""
Integration tests for order cancellation, fulfillment status and queries.
"""

import pytest

from now24.exceptions import (
    BusinessLogicError, OrderAlreadyCancelledError, OrderAlreadyDeliveredError, InvalidStatusTransitionError,
    OrderNotFoundError
)
from now24.models import Order, OrderStatus, OrderStatusHistory, PaymentTransaction, Product
from now24.services import order_service
from now24.services.notification_service import NotificationKind
from now24.services.payment_service import PaymentService


@pytest.fixture
def order(session, user, address, product, make_product, fill_cart):
    fries = make_product(name='Batata Frita', price=1200, stock=20)
    fill_cart(user, [(product, 2), (fries, 3)])
    return order_service.create_order(session, user.id, address.id, 'pix')


@pytest.fixture
def payments(session, gateway, notifier):
    return PaymentService(session, gateway, notifier)


@pytest.fixture
def paid_order(order, user, payments):
    """Order confirmed by an approved pix payment."""
    payments.charge(user.id, order.id, 'pix')
    return order


def advance(session, order_id, *statuses):
    for status in statuses:
        order_service.update_order_status(session, order_id, status)


class TestFulfillmentStatus:
    """Status events coming from the kitchen and couriers."""

    def test_full_happy_path(self, session, paid_order):
        advance(session, paid_order.id, 'preparing', 'out_for_delivery', 'delivered')

        order = session.get(Order, paid_order.id)
        assert order.status == OrderStatus.DELIVERED
        assert order.confirmed_at is not None
        assert order.preparing_at is not None
        assert order.out_for_delivery_at is not None
        assert order.delivered_at is not None
        history = [h.new_status for h in order.history]
        assert history == ['pending', 'confirmed', 'preparing', 'out_for_delivery', 'delivered']
        assert order.history[1].changed_by == 'payment_gateway'
        assert all(h.changed_by == 'fulfillment' for h in order.history[2:])

    def test_skipping_a_step_is_rejected(self, session, order):
        with pytest.raises(InvalidStatusTransitionError) as exc:
            order_service.update_order_status(session, order.id, 'preparing')
        assert exc.value.to_dict()['from'] == 'pending'
        assert session.get(Order, order.id).status == OrderStatus.PENDING

    @pytest.mark.parametrize('status', ['confirmed', 'awaiting_payment', 'refunded'])
    def test_payment_statuses_are_not_accepted(self, session, order, status):
        with pytest.raises(InvalidStatusTransitionError) as exc:
            order_service.update_order_status(session, order.id, status)
        assert exc.value.to_dict()['from'] == 'pending'
        assert exc.value.to_dict()['to'] == status
        assert session.get(Order, order.id).status == OrderStatus.PENDING
        assert session.query(OrderStatusHistory).filter_by(order_id=order.id).count() == 1

    def test_paid_order_cannot_be_refunded_or_reopened(self, session, paid_order):
        for status in ('refunded', 'pending'):
            with pytest.raises(InvalidStatusTransitionError):
                order_service.update_order_status(session, paid_order.id, status)
        assert session.get(Order, paid_order.id).status == OrderStatus.CONFIRMED

    def test_payment_status_for_missing_order(self, session):
        with pytest.raises(OrderNotFoundError):
            order_service.update_order_status(session, 999, 'confirmed')

    def test_unknown_status(self, session, order):
        with pytest.raises(InvalidStatusTransitionError):
            order_service.update_order_status(session, order.id, 'shipped')

    def test_repeating_current_status_is_a_noop(self, session, paid_order, notifier):
        advance(session, paid_order.id, 'preparing')
        sent_before = len(notifier.sent)
        order_service.update_order_status(session, paid_order.id, 'preparing', notifier=notifier)

        assert session.query(OrderStatusHistory).filter_by(order_id=paid_order.id).count() == 3
        assert len(notifier.sent) == sent_before

    def test_status_change_notifies(self, session, paid_order, notifier):
        sent_before = len(notifier.sent)
        order_service.update_order_status(session, paid_order.id, 'preparing', notifier=notifier)
        assert notifier.kinds()[sent_before:] == [NotificationKind.ORDER_STATUS_CHANGED]
        assert notifier.sent[-1][2]['status'] == 'preparing'

    def test_terminal_status_cannot_move(self, session, paid_order):
        advance(session, paid_order.id, 'preparing', 'out_for_delivery', 'delivered')
        with pytest.raises(InvalidStatusTransitionError):
            order_service.update_order_status(session, paid_order.id, 'preparing')

    def test_milestone_set_only_once(self, session, order, user, gateway, payments):
        gateway.configure(status='pending')
        gateway_id = payments.charge(user.id, order.id, 'pix').gateway_transaction_id
        first = session.get(Order, order.id).awaiting_payment_at
        assert first is not None

        payments.apply_gateway_status(gateway_id, 'rejected', {'status': 'rejected'})
        assert session.get(Order, order.id).status == OrderStatus.PENDING
        payments.charge(user.id, order.id, 'pix')

        order = session.get(Order, order.id)
        assert order.status == OrderStatus.AWAITING_PAYMENT
        assert order.awaiting_payment_at == first


class TestCancelOrder:
    """Cancellation releases stock exactly once."""

    def test_cancel_while_preparing(self, session, paid_order, product, notifier):
        product_id = product.id
        advance(session, paid_order.id, 'preparing')
        assert session.get(Product, product_id).stock == 8
        sent_before = len(notifier.sent)

        order_service.cancel_order(session, paid_order.id, user_id=paid_order.user_id, reason='Demorou demais',
                                   notifier=notifier)

        order = session.get(Order, paid_order.id)
        assert order.status == OrderStatus.CANCELLED
        assert order.cancelled_at is not None
        assert order.cancel_reason == 'Demorou demais'
        assert order.cancelled_by == 'customer'
        assert session.get(Product, product_id).stock == 10
        assert session.get(Product, product_id).sales == 0
        fries = session.query(Product).filter_by(name='Batata Frita').one()
        assert fries.stock == 20
        assert notifier.kinds()[sent_before:] == [NotificationKind.ORDER_CANCELLED]

        with pytest.raises(OrderAlreadyCancelledError) as exc:
            order_service.cancel_order(session, order.id, user_id=order.user_id)
        assert exc.value.code == 'ALREADY_CANCELLED'
        assert session.get(Product, product_id).stock == 10

    def test_cannot_cancel_delivered(self, session, paid_order):
        advance(session, paid_order.id, 'preparing', 'out_for_delivery', 'delivered')
        with pytest.raises(OrderAlreadyDeliveredError):
            order_service.cancel_order(session, paid_order.id)

    def test_cannot_cancel_refunded(self, session, paid_order, gateway, payments):
        gateway_id = session.query(PaymentTransaction).one().gateway_transaction_id
        gateway.set_status(gateway_id, 'refunded')
        payments.reconcile(gateway_id)
        assert session.get(Order, paid_order.id).status == OrderStatus.REFUNDED

        with pytest.raises(InvalidStatusTransitionError):
            order_service.cancel_order(session, paid_order.id)

    def test_customer_cannot_cancel_someone_elses_order(self, session, order, other_user):
        with pytest.raises(OrderNotFoundError):
            order_service.cancel_order(session, order.id, user_id=other_user.id)

    def test_cancel_through_status_event(self, session, order, product):
        order_service.update_order_status(session, order.id, 'cancelled', changed_by='store', note='Sem entregador')
        order = session.get(Order, order.id)
        assert order.status == OrderStatus.CANCELLED
        assert order.cancelled_by == 'store'
        assert session.get(Product, product.id).stock == 10


class TestOrderQueries:
    """Listing and detail, scoped to the owner."""

    def test_get_order_scoped_to_user(self, session, order, user, other_user):
        assert order_service.get_order(session, order.id, user.id).id == order.id
        with pytest.raises(OrderNotFoundError):
            order_service.get_order(session, order.id, other_user.id)

    def test_list_orders_with_preview(self, session, order, user):
        result = order_service.list_user_orders(session, user.id)
        assert result['pagination'] == {'page': 1, 'limit': 20, 'total': 1, 'pages': 1}
        listed = result['orders'][0]
        assert listed['id'] == order.id
        assert listed['item_count'] == 5
        assert listed['items_preview'][0] == {'product_name': 'X-Burger', 'quantity': 2}
        assert 'items' not in listed

    def test_list_orders_status_filter(self, session, order, user):
        assert order_service.list_user_orders(session, user.id, status='confirmed')['orders'] == []
        assert len(order_service.list_user_orders(session, user.id, status='pending')['orders']) == 1

    def test_list_orders_unknown_status(self, session, order, user):
        with pytest.raises(BusinessLogicError) as exc:
            order_service.list_user_orders(session, user.id, status='shipped')
        assert not isinstance(exc.value, InvalidStatusTransitionError)
        assert exc.value.status_code == 400
        assert exc.value.to_dict()['field'] == 'status'
