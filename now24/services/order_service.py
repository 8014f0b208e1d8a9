"""
Order service with transactional logic.
Handles order creation from the cart, cancellation and fulfillment status.
"""
import logging
import random
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from now24.models import (
    Address, AppUser, Cart, CartItem, Coupon, Order, OrderItem, OrderStatus, OrderStatusHistory,
    PaymentCard, PaymentMethod, STATUS_MILESTONES, can_transition
)
from now24.exceptions import (
    Now24Error, BusinessLogicError, EmptyCartError, AddressNotFoundError, InvalidPaymentMethodError,
    CardRequiredError, CardNotFoundError, CardTypeMismatchError, ProductInactiveError, ProductUnavailableError,
    InsufficientStockError, CouponError, CouponInvalidError, OrderNotFoundError,
    OrderAlreadyCancelledError, OrderAlreadyDeliveredError, InvalidStatusTransitionError,
    OrderCreationError
)
from now24.services.cart_service import get_delivery_fee
from now24.services.coupon_service import coupon_failure_reason, consume_coupon
from now24.services.inventory_service import lock_products, reserve_stock, release_stock
from now24.services.notification_service import NotificationKind, dispatch_notification
from now24.services.pricing_service import line_unit_price, price_cart
from now24.blueprints.metrics import orders_created_total, order_creation_failures_total
from now24.utils.formatters import money_br

logger = logging.getLogger(__name__)

# Postgres serialization_failure / deadlock_detected
RETRYABLE_SQLSTATES = ('40001', '40P01')
ORDER_NUMBER_TRIES = 10

# Statuses fulfillment may set; the rest belong to the payment flow
FULFILLMENT_STATUSES = (
    OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED, OrderStatus.CANCELLED,
)


def generate_order_number(session: Session) -> str:
    """'#' + last 8 digits of the epoch millis + 4 random digits, unique."""
    for _ in range(ORDER_NUMBER_TRIES):
        timestamp = str(int(time.time() * 1000))[-8:]
        candidate = f"#{timestamp}{random.randint(0, 9999):04d}"
        if not session.query(Order.id).filter(Order.order_number == candidate).first():
            return candidate
    raise OrderCreationError()


def record_status_change(session: Session, order: Order, previous: Optional[OrderStatus],
                         new: OrderStatus, changed_by: str, note: Optional[str] = None) -> OrderStatusHistory:
    """Append a history row. History is never updated."""
    entry = OrderStatusHistory(
        order_id=order.id,
        previous_status=previous.value if previous else None,
        new_status=new.value,
        changed_by=changed_by,
        note=note,
    )
    session.add(entry)
    return entry


def apply_order_status(session: Session, order: Order, target, changed_by: str,
                       note: Optional[str] = None, now: Optional[datetime] = None) -> bool:
    """
    Move an order to `target` inside the caller's transaction.

    Returns False when the order is already in `target` (nothing written).

    Raises:
        InvalidStatusTransitionError: target not reachable from the current status
    """
    try:
        target = OrderStatus(target)
    except ValueError:
        raise InvalidStatusTransitionError(order.status.value, str(target))

    if order.status == target:
        return False
    if not can_transition(order.status, target):
        raise InvalidStatusTransitionError(order.status.value, target.value)

    now = now or datetime.utcnow()
    previous = order.status
    order.status = target
    order.updated_at = now
    milestone = STATUS_MILESTONES.get(target)
    if milestone and getattr(order, milestone) is None:
        setattr(order, milestone, now)

    record_status_change(session, order, previous, target, changed_by, note)
    logger.info(f"[ORDER] {order.order_number}: {previous.value} -> {target.value} by {changed_by}")
    return True


def _is_retryable(exc: DBAPIError) -> bool:
    if isinstance(exc, IntegrityError):
        return True
    orig = getattr(exc, 'orig', None)
    sqlstate = getattr(orig, 'sqlstate', None) or getattr(orig, 'pgcode', None)
    return sqlstate in RETRYABLE_SQLSTATES


def _notification_payload(session: Session, order: Order, **extra) -> Dict[str, Any]:
    user = session.get(AppUser, order.user_id)
    payload = {
        'order_id': order.id,
        'order_number': order.order_number,
        'status': order.status.value,
        'total': order.total,
        'total_display': money_br(order.total),
        'email': user.email if user else None,
    }
    payload.update(extra)
    return payload


# =====================================================
# ORDER CREATION
# =====================================================

def create_order(
    session: Session,
    user_id: int,
    address_id: int,
    payment_method: str,
    card_id: Optional[int] = None,
    notes: Optional[str] = None,
    delivery_instructions: Optional[str] = None,
    notifier=None,
    now: Optional[datetime] = None,
) -> Order:
    """
    Create an order from the user's cart in one database transaction.

    Validation, order/item inserts, stock reservation, coupon consumption and
    cart clearing commit together or not at all. Transient database
    conflicts (unique violations, serialization failures, deadlocks) restart
    the whole transaction up to ORDER_CREATE_MAX_ATTEMPTS times.

    Raises:
        Now24Error subclasses for every failed precondition
        OrderCreationError: retries exhausted
    """
    now = now or datetime.utcnow()
    max_attempts = int(current_app.config.get('ORDER_CREATE_MAX_ATTEMPTS', 3))

    for attempt in range(1, max_attempts + 1):
        try:
            order = _create_order_once(
                session, user_id, address_id, payment_method, card_id,
                notes, delivery_instructions, now,
            )
            session.commit()
            break
        except Now24Error as e:
            session.rollback()
            order_creation_failures_total.labels(code=e.code).inc()
            raise e
        except DBAPIError as e:
            session.rollback()
            if not _is_retryable(e):
                raise
            logger.warning(f"[ORDER] Transient conflict creating order for user {user_id} "
                           f"(attempt {attempt}/{max_attempts}): {e.__class__.__name__}")
            if attempt == max_attempts:
                order_creation_failures_total.labels(code=OrderCreationError.code).inc()
                raise OrderCreationError() from e
        except Exception:
            session.rollback()
            raise

    orders_created_total.inc()
    logger.info(f"[ORDER] Created {order.order_number} for user {user_id}, total={order.total}")

    dispatch_notification(
        notifier, user_id, NotificationKind.ORDER_CREATED, _notification_payload(session, order)
    )
    return order


def _create_order_once(session, user_id, address_id, payment_method, card_id, notes,
                       delivery_instructions, now) -> Order:
    # Serializes concurrent checkouts of the same user
    cart = session.query(Cart).filter(Cart.user_id == user_id).with_for_update().populate_existing().first()
    if cart is None or cart.is_expired(now):
        raise EmptyCartError()
    items = session.query(CartItem).filter(CartItem.cart_id == cart.id).order_by(CartItem.id).all()
    if not items:
        raise EmptyCartError()

    address = session.query(Address).filter_by(id=address_id, user_id=user_id, active=True).first()
    if not address:
        raise AddressNotFoundError()

    try:
        method = PaymentMethod(payment_method)
    except ValueError:
        raise InvalidPaymentMethodError(payment_method)

    card = None
    if method.is_card:
        if not card_id:
            raise CardRequiredError()
        card = session.query(PaymentCard).filter_by(id=card_id, user_id=user_id, active=True).first()
        if not card:
            raise CardNotFoundError()
        if card.card_type != method.value:
            raise CardTypeMismatchError()

    products = lock_products(session, [item.product_id for item in items])
    for item in items:
        product = products.get(item.product_id)
        if product is None or not product.active:
            raise ProductInactiveError(product.name if product else str(item.product_id))
        if not product.is_sellable:
            raise ProductUnavailableError(product.name)
    for item in items:
        product = products[item.product_id]
        if item.quantity > product.stock:
            raise InsufficientStockError(product.name, item.quantity, product.stock)

    lines = [
        {
            'product_id': item.product_id,
            'product_name': products[item.product_id].name,
            'price': products[item.product_id].price,
            'quantity': item.quantity,
            'customizations': item.customizations or [],
            'note': item.note,
        }
        for item in items
    ]
    delivery_fee = get_delivery_fee()

    coupon = None
    if cart.coupon_id:
        coupon = session.query(Coupon).filter(Coupon.id == cart.coupon_id).with_for_update().populate_existing().first()
        if coupon is None:
            raise CouponInvalidError('not_found')
        subtotal = price_cart(lines, delivery_fee)['subtotal']
        reason = coupon_failure_reason(session, coupon, user_id, subtotal, delivery_fee, now)
        if reason:
            raise CouponInvalidError(reason)

    totals = price_cart(lines, delivery_fee, coupon, now)

    order = Order(
        order_number=generate_order_number(session),
        user_id=user_id,
        address_id=address.id,
        payment_method=method,
        card_id=card.id if card else None,
        status=OrderStatus.PENDING,
        subtotal=totals['subtotal'],
        delivery_fee=totals['delivery_fee'],
        discount=totals['discount'],
        total=totals['total'],
        coupon_id=coupon.id if coupon else None,
        notes=notes,
        delivery_instructions=delivery_instructions,
        created_at=now,
    )
    session.add(order)
    session.flush()

    for line in lines:
        unit_price = line_unit_price(line['price'], line['customizations'])
        session.add(OrderItem(
            order_id=order.id,
            product_id=line['product_id'],
            product_name=line['product_name'],
            quantity=line['quantity'],
            unit_price=unit_price,
            line_total=unit_price * line['quantity'],
            customizations=line['customizations'],
            note=line['note'],
        ))

    reserve_stock(session, lines)
    record_status_change(session, order, None, OrderStatus.PENDING, 'customer', 'Pedido criado')

    if coupon is not None:
        try:
            consume_coupon(session, coupon, order.id, user_id, totals['discount'], totals['total'])
        except CouponError as e:
            raise CouponInvalidError(e.reason)

    session.query(CartItem).filter(CartItem.cart_id == cart.id).delete(synchronize_session=False)
    cart.coupon_id = None
    cart.updated_at = now
    session.flush()
    session.expire(cart)
    return order


# =====================================================
# QUERIES
# =====================================================

def get_order(session: Session, order_id: int, user_id: Optional[int] = None) -> Order:
    query = session.query(Order).filter(Order.id == order_id)
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    order = query.first()
    if not order:
        raise OrderNotFoundError()
    return order


def list_user_orders(session: Session, user_id: int, status: Optional[str] = None,
                     page: int = 1, limit: int = 20) -> Dict[str, Any]:
    """Newest first, with a three-item preview per order."""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 20), 1), 100)

    query = session.query(Order).filter(Order.user_id == user_id)
    if status:
        try:
            query = query.filter(Order.status == OrderStatus(status))
        except ValueError:
            raise BusinessLogicError(f"Status inválido: {status}", payload={'field': 'status'})

    total = query.count()
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * limit).limit(limit).all()

    results: List[Dict[str, Any]] = []
    for order in orders:
        data = order.to_dict(include_items=False)
        data['item_count'] = sum(item.quantity for item in order.items)
        data['items_preview'] = [
            {'product_name': item.product_name, 'quantity': item.quantity}
            for item in order.items[:3]
        ]
        results.append(data)

    return {
        'orders': results,
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': (total + limit - 1) // limit,
        },
    }


def lock_order(session: Session, order_id: int, user_id: Optional[int] = None) -> Order:
    """Load an order row FOR UPDATE."""
    query = session.query(Order).filter(Order.id == order_id)
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    order = query.with_for_update().populate_existing().first()
    if not order:
        raise OrderNotFoundError()
    return order


# =====================================================
# LIFECYCLE
# =====================================================

def cancel_order(
    session: Session,
    order_id: int,
    user_id: Optional[int] = None,
    reason: Optional[str] = None,
    cancelled_by: str = 'customer',
    notifier=None,
    now: Optional[datetime] = None,
) -> Order:
    """
    Cancel an order and give its stock back.

    Raises:
        OrderAlreadyCancelledError / OrderAlreadyDeliveredError
        InvalidStatusTransitionError: refunded orders
    """
    now = now or datetime.utcnow()
    try:
        order = lock_order(session, order_id, user_id)

        if order.status == OrderStatus.CANCELLED:
            raise OrderAlreadyCancelledError()
        if order.status == OrderStatus.DELIVERED:
            raise OrderAlreadyDeliveredError()

        apply_order_status(session, order, OrderStatus.CANCELLED, cancelled_by, reason, now)
        order.cancel_reason = reason
        order.cancelled_by = cancelled_by

        release_stock(session, [
            {'product_id': item.product_id, 'quantity': item.quantity}
            for item in order.items
        ])
        session.commit()

    except Now24Error as e:
        session.rollback()
        raise e
    except Exception:
        session.rollback()
        raise

    logger.info(f"[ORDER] {order.order_number} cancelled by {cancelled_by}")
    dispatch_notification(
        notifier, order.user_id, NotificationKind.ORDER_CANCELLED,
        _notification_payload(session, order, reason=reason),
    )
    return order


def update_order_status(
    session: Session,
    order_id: int,
    new_status: str,
    changed_by: str = 'fulfillment',
    note: Optional[str] = None,
    notifier=None,
    now: Optional[datetime] = None,
) -> Order:
    """
    Fulfillment-driven transition: preparing, out_for_delivery, delivered or cancelled.

    Confirmation and refunds only come from payment reconciliation.
    Cancellation is routed through cancel_order so stock is released.
    Re-sending the current status is a no-op.

    Raises:
        InvalidStatusTransitionError: status outside FULFILLMENT_STATUSES or not reachable
    """
    try:
        target = OrderStatus(new_status)
    except ValueError:
        target = None
    if target not in FULFILLMENT_STATUSES:
        current = session.query(Order.status).filter(Order.id == order_id).scalar()
        session.rollback()
        if current is None:
            raise OrderNotFoundError()
        raise InvalidStatusTransitionError(current.value, str(new_status))

    if target == OrderStatus.CANCELLED:
        return cancel_order(session, order_id, reason=note, cancelled_by=changed_by, notifier=notifier, now=now)

    try:
        order = lock_order(session, order_id)
        changed = apply_order_status(session, order, new_status, changed_by, note, now)
        session.commit()
    except Now24Error as e:
        session.rollback()
        raise e
    except Exception:
        session.rollback()
        raise

    if changed:
        dispatch_notification(
            notifier, order.user_id, NotificationKind.ORDER_STATUS_CHANGED,
            _notification_payload(session, order),
        )
    return order
