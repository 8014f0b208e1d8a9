"""Models package - exports all SQLAlchemy models."""
# Collaborator-owned records
from now24.models.app_user import AppUser
from now24.models.address import Address
from now24.models.payment_card import PaymentCard
from now24.models.product import Product, StockStatus

# Cart and coupons
from now24.models.coupon import Coupon, DiscountType
from now24.models.coupon_usage import CouponUsage
from now24.models.cart import Cart
from now24.models.cart_item import CartItem

# Orders and payments
from now24.models.order import (
    Order, OrderStatus, PaymentMethod, ORDER_TRANSITIONS, TERMINAL_STATUSES, STATUS_MILESTONES, can_transition
)
from now24.models.order_item import OrderItem
from now24.models.order_status_history import OrderStatusHistory
from now24.models.payment_transaction import (
    PaymentTransaction, TransactionStatus, GatewayPaymentStatus, GATEWAY_STATUS_MAP, TRANSACTION_RANK,
    OPEN_TRANSACTION_STATUSES, map_gateway_status
)
from now24.models.gateway_webhook_event import GatewayWebhookEvent

__all__ = [
    'AppUser', 'Address', 'PaymentCard', 'Product', 'StockStatus',
    'Coupon', 'DiscountType', 'CouponUsage', 'Cart', 'CartItem',
    'Order', 'OrderStatus', 'PaymentMethod', 'ORDER_TRANSITIONS', 'TERMINAL_STATUSES', 'STATUS_MILESTONES',
    'can_transition', 'OrderItem', 'OrderStatusHistory',
    'PaymentTransaction', 'TransactionStatus', 'GatewayPaymentStatus', 'GATEWAY_STATUS_MAP', 'TRANSACTION_RANK',
    'OPEN_TRANSACTION_STATUSES', 'map_gateway_status',
    'GatewayWebhookEvent',
]
