"""
Coupon rules.

Validation that needs the database (usage limits) lives here; the
discount arithmetic lives in the pricing service.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from now24.models import Coupon, CouponUsage
from now24.exceptions import (
    CouponError, CouponNotFoundError, CouponInactiveError, CouponNotYetValidError,
    CouponExpiredError, CouponUsageLimitError, CouponUserLimitError, CouponMinimumNotMetError
)

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    """Coupon codes are case-insensitive and stored upper-case."""
    return (code or '').strip().upper()


def get_coupon_by_code(session: Session, code: str, lock: bool = False) -> Coupon:
    query = session.query(Coupon).filter(Coupon.code == normalize_code(code))
    if lock:
        query = query.with_for_update()
    coupon = query.first()
    if not coupon:
        raise CouponNotFoundError()
    return coupon


def count_user_usages(session: Session, coupon_id: int, user_id: int) -> int:
    """Per-user usage, always counted from usage records."""
    return session.query(func.count(CouponUsage.id)).filter(
        CouponUsage.coupon_id == coupon_id,
        CouponUsage.user_id == user_id,
    ).scalar() or 0


def check_coupon(
    session: Session,
    coupon: Coupon,
    user_id: int,
    subtotal: int,
    delivery_fee: int,
    now: Optional[datetime] = None,
) -> None:
    """
    Validate every coupon rule for this user and amount.

    Raises the CouponError subclass naming the first rule that fails.
    """
    now = now or datetime.utcnow()

    if not coupon.active:
        raise CouponInactiveError()
    if coupon.valid_from and now < coupon.valid_from:
        raise CouponNotYetValidError()
    if coupon.valid_until and now > coupon.valid_until:
        raise CouponExpiredError()
    if coupon.is_exhausted:
        raise CouponUsageLimitError()
    if count_user_usages(session, coupon.id, user_id) >= (coupon.per_user_limit or 1):
        raise CouponUserLimitError()
    if subtotal + delivery_fee < (coupon.min_order_value or 0):
        raise CouponMinimumNotMetError(coupon.min_order_value)


def coupon_failure_reason(session: Session, coupon: Coupon, user_id: int, subtotal: int,
                          delivery_fee: int, now: Optional[datetime] = None) -> Optional[str]:
    """Return the failing rule's reason code, or None when the coupon is usable."""
    try:
        check_coupon(session, coupon, user_id, subtotal, delivery_fee, now)
    except CouponError as e:
        return e.reason
    return None


def list_available_coupons(session: Session, user_id: int, now: Optional[datetime] = None) -> List[Coupon]:
    """Active, in-window, not exhausted coupons the user can still use."""
    now = now or datetime.utcnow()
    coupons = session.query(Coupon).filter(
        Coupon.active.is_(True),
        Coupon.valid_from <= now,
        or_(Coupon.valid_until.is_(None), Coupon.valid_until >= now),
        or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
    ).order_by(Coupon.id).all()

    available = [
        c for c in coupons
        if count_user_usages(session, c.id, user_id) < (c.per_user_limit or 1)
    ]
    logger.debug(f"[COUPON] {len(available)} coupons available for user {user_id}")
    return available


def consume_coupon(session: Session, coupon: Coupon, order_id: int, user_id: int,
                   discount: int, order_total: int) -> None:
    """
    Record a coupon use inside the caller's transaction.

    The increment is conditional on the global limit, so a coupon can never
    be consumed past usage_limit even if two checkouts race.
    """
    query = session.query(Coupon).filter(Coupon.id == coupon.id)
    if coupon.usage_limit is not None:
        query = query.filter(Coupon.used_count < Coupon.usage_limit)
    updated = query.update({Coupon.used_count: Coupon.used_count + 1}, synchronize_session=False)
    if updated == 0:
        raise CouponUsageLimitError()
    session.expire(coupon, ['used_count'])

    session.add(CouponUsage(
        coupon_id=coupon.id,
        order_id=order_id,
        user_id=user_id,
        discount_applied=discount,
        order_total=order_total,
    ))
