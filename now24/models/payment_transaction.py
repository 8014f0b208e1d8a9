"""Payment transaction model and gateway status vocabulary."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from now24.database import Base, BigIntPK, JSONType, enum_values
from now24.models.order import payment_method_enum
from now24.exceptions import UnknownGatewayStatusError
import enum


class TransactionStatus(str, enum.Enum):
    """Internal payment status."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    CANCELLED = 'cancelled'
    REFUNDED = 'refunded'
    CHARGEBACK = 'chargeback'


class GatewayPaymentStatus(str, enum.Enum):
    """Mercado Pago payment status vocabulary."""
    PENDING = 'pending'
    APPROVED = 'approved'
    AUTHORIZED = 'authorized'
    IN_PROCESS = 'in_process'
    IN_MEDIATION = 'in_mediation'
    REJECTED = 'rejected'
    CANCELLED = 'cancelled'
    REFUNDED = 'refunded'
    CHARGED_BACK = 'charged_back'


GATEWAY_STATUS_MAP = {
    GatewayPaymentStatus.APPROVED: TransactionStatus.APPROVED,
    GatewayPaymentStatus.PENDING: TransactionStatus.PENDING,
    GatewayPaymentStatus.AUTHORIZED: TransactionStatus.PROCESSING,
    GatewayPaymentStatus.IN_PROCESS: TransactionStatus.PROCESSING,
    GatewayPaymentStatus.IN_MEDIATION: TransactionStatus.PROCESSING,
    GatewayPaymentStatus.REJECTED: TransactionStatus.REJECTED,
    GatewayPaymentStatus.CANCELLED: TransactionStatus.CANCELLED,
    GatewayPaymentStatus.REFUNDED: TransactionStatus.REFUNDED,
    GatewayPaymentStatus.CHARGED_BACK: TransactionStatus.CHARGEBACK,
}

# Higher rank never moves back to a lower one
TRANSACTION_RANK = {
    TransactionStatus.PENDING: 0,
    TransactionStatus.PROCESSING: 0,
    TransactionStatus.APPROVED: 1,
    TransactionStatus.REJECTED: 1,
    TransactionStatus.CANCELLED: 1,
    TransactionStatus.REFUNDED: 2,
    TransactionStatus.CHARGEBACK: 2,
}

OPEN_TRANSACTION_STATUSES = (TransactionStatus.PENDING, TransactionStatus.PROCESSING)


def map_gateway_status(raw_status):
    """Translate a raw Mercado Pago status into a TransactionStatus."""
    try:
        return GATEWAY_STATUS_MAP[GatewayPaymentStatus(str(raw_status).lower())]
    except ValueError:
        raise UnknownGatewayStatusError(raw_status)


class PaymentTransaction(Base):
    """One gateway charge attempt for an order. Retries create new rows."""

    __tablename__ = 'payment_transaction'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('orders.id'), nullable=False, index=True)
    payment_method = Column(payment_method_enum, nullable=False)
    card_id = Column(BigInteger, ForeignKey('payment_card.id'), nullable=True)
    amount = Column(Integer, nullable=False)
    installments = Column(Integer, nullable=False, default=1)
    status = Column(
        Enum(TransactionStatus, name='transaction_status', values_callable=enum_values),
        nullable=False,
        default=TransactionStatus.PENDING,
    )

    gateway_transaction_id = Column(String(100), nullable=True, unique=True, index=True)
    gateway_status = Column(String(50), nullable=True)
    gateway_status_detail = Column(String(100), nullable=True)
    authorization_code = Column(String(100), nullable=True)
    gateway_response = Column(JSONType, nullable=True)
    idempotency_key = Column(String(100), nullable=True, index=True)

    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    order = relationship('Order', back_populates='transactions')

    def to_dict(self):
        payment_data = {}
        interaction = (self.gateway_response or {}).get('point_of_interaction') or {}
        transaction_data = interaction.get('transaction_data') or {}
        if transaction_data.get('qr_code'):
            payment_data['pix_qr_code'] = transaction_data.get('qr_code')
            payment_data['pix_qr_code_base64'] = transaction_data.get('qr_code_base64')
        details = (self.gateway_response or {}).get('transaction_details') or {}
        if details.get('external_resource_url'):
            payment_data['boleto_url'] = details.get('external_resource_url')

        return {
            'id': self.id,
            'order_id': self.order_id,
            'payment_method': self.payment_method.value,
            'amount': self.amount,
            'installments': self.installments,
            'status': self.status.value,
            'gateway_transaction_id': self.gateway_transaction_id,
            'gateway_status': self.gateway_status,
            'gateway_status_detail': self.gateway_status_detail,
            'processed_at': self.processed_at.isoformat() if self.processed_at else None,
            'payment_data': payment_data,
        }

    def __repr__(self):
        return f"<PaymentTransaction(id={self.id}, order_id={self.order_id}, status={self.status})>"
