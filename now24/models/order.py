"""Order aggregate root and its lifecycle."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, Enum, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from now24.database import Base, BigIntPK, enum_values
import enum


class PaymentMethod(str, enum.Enum):
    """Accepted payment methods."""
    CREDIT_CARD = 'credit_card'
    DEBIT_CARD = 'debit_card'
    PIX = 'pix'
    BOLETO = 'boleto'

    @property
    def is_card(self):
        return self in (PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD)


payment_method_enum = Enum(PaymentMethod, name='payment_method', values_callable=enum_values)


class OrderStatus(str, enum.Enum):
    """Order lifecycle status."""
    PENDING = 'pending'
    AWAITING_PAYMENT = 'awaiting_payment'
    CONFIRMED = 'confirmed'
    PREPARING = 'preparing'
    OUT_FOR_DELIVERY = 'out_for_delivery'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'
    REFUNDED = 'refunded'


ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.AWAITING_PAYMENT, OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.AWAITING_PAYMENT: {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PREPARING, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.PREPARING: {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ORDER_TRANSITIONS.items() if not targets)

# Column set the first time the order reaches a status
STATUS_MILESTONES = {
    OrderStatus.AWAITING_PAYMENT: 'awaiting_payment_at',
    OrderStatus.CONFIRMED: 'confirmed_at',
    OrderStatus.PREPARING: 'preparing_at',
    OrderStatus.OUT_FOR_DELIVERY: 'out_for_delivery_at',
    OrderStatus.DELIVERED: 'delivered_at',
    OrderStatus.CANCELLED: 'cancelled_at',
    OrderStatus.REFUNDED: 'refunded_at',
}


def can_transition(current, target):
    """Return True if the lifecycle allows current -> target."""
    return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]


class Order(Base):
    """Customer order materialized from a cart. Money in centavos."""

    __tablename__ = 'orders'
    __table_args__ = (
        CheckConstraint('total >= 0', name='order_total_non_negative'),
        CheckConstraint('discount >= 0', name='order_discount_non_negative'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_number = Column(String(20), nullable=False, unique=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=False, index=True)
    address_id = Column(BigInteger, ForeignKey('address.id'), nullable=False)
    payment_method = Column(payment_method_enum, nullable=False)
    card_id = Column(BigInteger, ForeignKey('payment_card.id'), nullable=True)
    status = Column(
        Enum(OrderStatus, name='order_status', values_callable=enum_values),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
    )

    subtotal = Column(Integer, nullable=False)
    delivery_fee = Column(Integer, nullable=False)
    discount = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False)
    coupon_id = Column(BigInteger, ForeignKey('coupon.id'), nullable=True)

    notes = Column(Text, nullable=True)
    delivery_instructions = Column(Text, nullable=True)

    # Milestones
    awaiting_payment_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    preparing_at = Column(DateTime, nullable=True)
    out_for_delivery_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    cancel_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(50), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan', order_by='OrderItem.id')
    history = relationship(
        'OrderStatusHistory',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderStatusHistory.id',
    )
    transactions = relationship('PaymentTransaction', back_populates='order', order_by='PaymentTransaction.id')
    address = relationship('Address')
    coupon = relationship('Coupon')

    def to_dict(self, include_items=True):
        data = {
            'id': self.id,
            'order_number': self.order_number,
            'status': self.status.value,
            'payment_method': self.payment_method.value,
            'card_id': self.card_id,
            'address_id': self.address_id,
            'subtotal': self.subtotal,
            'delivery_fee': self.delivery_fee,
            'discount': self.discount,
            'total': self.total,
            'coupon_code': self.coupon.code if self.coupon else None,
            'notes': self.notes,
            'delivery_instructions': self.delivery_instructions,
            'cancel_reason': self.cancel_reason,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        for column in STATUS_MILESTONES.values():
            value = getattr(self, column)
            data[column] = value.isoformat() if value else None
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
            data['history'] = [entry.to_dict() for entry in self.history]
        return data

    def __repr__(self):
        return f"<Order(id={self.id}, number='{self.order_number}', status={self.status})>"
