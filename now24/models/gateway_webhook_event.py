"""Gateway webhook event log."""
from datetime import datetime
from sqlalchemy import Column, String, Boolean, Text, DateTime
from now24.database import Base, BigIntPK, JSONType


class GatewayWebhookEvent(Base):
    """Log of Mercado Pago webhook deliveries, deduplicated by dedupe_key."""

    __tablename__ = 'gateway_webhook_event'

    RECEIVED = 'RECEIVED'
    PROCESSED = 'PROCESSED'
    DUPLICATE = 'DUPLICATE'
    IGNORED = 'IGNORED'
    FAILED = 'FAILED'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    topic = Column(String(50), nullable=False, index=True)
    action = Column(String(50), nullable=True)
    notification_id = Column(String(100), nullable=True)
    resource_id = Column(String(100), nullable=True, index=True)
    payload_json = Column(JSONType, nullable=False)
    dedupe_key = Column(String(64), nullable=False, unique=True)
    signature_valid = Column(Boolean, nullable=True)
    status = Column(String(20), nullable=False, default=RECEIVED, index=True)
    error = Column(Text, nullable=True)
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    processed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<GatewayWebhookEvent(topic='{self.topic}', resource_id='{self.resource_id}', status='{self.status}')>"

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'topic': self.topic,
            'action': self.action,
            'resource_id': self.resource_id,
            'payload': self.payload_json,
            'signature_valid': self.signature_valid,
            'received_at': self.received_at.isoformat() if self.received_at else None,
            'processed_at': self.processed_at.isoformat() if self.processed_at else None,
            'status': self.status,
        }
