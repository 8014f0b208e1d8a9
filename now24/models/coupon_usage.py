"""Coupon usage ledger."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, Integer, DateTime, ForeignKey, UniqueConstraint
from now24.database import Base, BigIntPK


class CouponUsage(Base):
    """One row per order that consumed a coupon."""

    __tablename__ = 'coupon_usage'
    __table_args__ = (
        UniqueConstraint('coupon_id', 'order_id', name='uq_coupon_usage_coupon_order'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    coupon_id = Column(BigInteger, ForeignKey('coupon.id'), nullable=False, index=True)
    order_id = Column(BigInteger, ForeignKey('orders.id'), nullable=False)
    user_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=False, index=True)
    discount_applied = Column(Integer, nullable=False)
    order_total = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<CouponUsage(coupon_id={self.coupon_id}, order_id={self.order_id})>"
