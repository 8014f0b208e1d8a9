"""Cart model - one per user, never deleted, only emptied."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from now24.database import Base, BigIntPK


class Cart(Base):
    """Shopping cart."""

    __tablename__ = 'cart'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=False, unique=True)
    coupon_id = Column(BigInteger, ForeignKey('coupon.id'), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    items = relationship(
        'CartItem',
        back_populates='cart',
        cascade='all, delete-orphan',
        order_by='CartItem.id',
    )
    coupon = relationship('Coupon')

    def is_expired(self, now=None):
        return self.expires_at <= (now or datetime.utcnow())

    def __repr__(self):
        return f"<Cart(id={self.id}, user_id={self.user_id}, items={len(self.items)})>"
