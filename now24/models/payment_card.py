"""Saved payment card model."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, String, Integer, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from now24.database import Base, BigIntPK


class PaymentCard(Base):
    """
    Card saved for a user.

    Only display data and the permanent Mercado Pago card id are stored.
    Card numbers, CVV and single-use tokens never reach the database.
    """

    __tablename__ = 'payment_card'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=False, index=True)
    card_type = Column(String(20), nullable=False)  # credit_card | debit_card
    last_four = Column(String(4), nullable=False)
    holder_name = Column(String(200), nullable=False)
    brand = Column(String(30), nullable=True)
    expiration_month = Column(Integer, nullable=False)
    expiration_year = Column(Integer, nullable=False)
    gateway_card_id = Column(String(100), nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    user = relationship('AppUser', back_populates='cards')

    def to_dict(self):
        return {
            'id': self.id,
            'card_type': self.card_type,
            'last_four': self.last_four,
            'holder_name': self.holder_name,
            'brand': self.brand,
            'expiration_month': self.expiration_month,
            'expiration_year': self.expiration_year,
            'is_default': self.is_default,
        }

    def __repr__(self):
        return f"<PaymentCard(id={self.id}, type='{self.card_type}', last_four='{self.last_four}')>"
