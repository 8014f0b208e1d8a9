"""
Cart store.

One cart per user, created lazily, emptied (never deleted). An expired cart
is emptied the next time it is touched; every mutation pushes the expiry
forward.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from now24.models import Cart, CartItem, Product
from now24.exceptions import (
    CartItemNotFoundError, ProductNotFoundError, ProductInactiveError,
    ProductUnavailableError, InsufficientStockError, InvalidQuantityError, EmptyCartError
)
from now24.services.coupon_service import get_coupon_by_code, check_coupon, coupon_failure_reason
from now24.services.pricing_service import line_unit_price, price_cart

logger = logging.getLogger(__name__)


def get_delivery_fee() -> int:
    return int(current_app.config.get('DELIVERY_FEE_CENTS', 900))


def _cart_ttl() -> timedelta:
    return timedelta(days=int(current_app.config.get('CART_TTL_DAYS', 7)))


def cart_lines(cart: Cart) -> List[Dict[str, Any]]:
    """Pricing-engine input for a cart."""
    return [
        {
            'price': item.product.price,
            'quantity': item.quantity,
            'customizations': item.customizations or [],
        }
        for item in cart.items
    ]


def _touch(cart: Cart, now: datetime) -> None:
    cart.expires_at = now + _cart_ttl()
    cart.updated_at = now


def _empty(cart: Cart) -> None:
    for item in list(cart.items):
        cart.items.remove(item)
    cart.coupon = None


def get_or_create_cart(session: Session, user_id: int, now: Optional[datetime] = None) -> Cart:
    """Return the user's cart, creating it on first access and emptying it if expired."""
    now = now or datetime.utcnow()
    cart = session.query(Cart).filter_by(user_id=user_id).first()

    if cart is None:
        cart = Cart(user_id=user_id, expires_at=now + _cart_ttl())
        session.add(cart)
        try:
            session.commit()
        except IntegrityError:
            # Another request created it first
            session.rollback()
            cart = session.query(Cart).filter_by(user_id=user_id).one()
        return cart

    if cart.is_expired(now):
        logger.info(f"[CART] Cart {cart.id} expired at {cart.expires_at}, emptying")
        _empty(cart)
        _touch(cart, now)
        session.commit()

    return cart


def get_cart_summary(session: Session, user_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Cart contents with the same totals order creation would compute."""
    now = now or datetime.utcnow()
    cart = get_or_create_cart(session, user_id, now)
    delivery_fee = get_delivery_fee()
    lines = cart_lines(cart)
    totals = price_cart(lines, delivery_fee, cart.coupon, now)

    coupon_data = None
    if cart.coupon is not None:
        coupon_data = cart.coupon.to_dict()
        coupon_data['warning'] = coupon_failure_reason(
            session, cart.coupon, user_id, totals['subtotal'], delivery_fee, now
        )

    items = []
    for item in cart.items:
        unit_price = line_unit_price(item.product.price, item.customizations)
        items.append({
            'id': item.id,
            'product_id': item.product_id,
            'product_name': item.product.name,
            'quantity': item.quantity,
            'unit_price': unit_price,
            'line_total': unit_price * item.quantity,
            'customizations': item.customizations or [],
            'note': item.note,
        })

    return {
        'id': cart.id,
        'items': items,
        'item_count': sum(item.quantity for item in cart.items),
        'coupon': coupon_data,
        'expires_at': cart.expires_at.isoformat(),
        **totals,
    }


def _get_sellable_product(session: Session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if not product:
        raise ProductNotFoundError()
    if not product.active:
        raise ProductInactiveError(product.name)
    if not product.is_sellable:
        raise ProductUnavailableError(product.name)
    return product


def _get_item(cart: Cart, item_id: int) -> CartItem:
    for item in cart.items:
        if item.id == item_id:
            return item
    raise CartItemNotFoundError()


def add_item(
    session: Session,
    user_id: int,
    product_id: int,
    quantity: int = 1,
    customizations: Optional[List[Dict[str, Any]]] = None,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CartItem:
    """Add a product to the cart, merging with an existing line for the same product."""
    now = now or datetime.utcnow()
    if quantity is None or int(quantity) < 1:
        raise InvalidQuantityError()
    quantity = int(quantity)

    cart = get_or_create_cart(session, user_id, now)
    product = _get_sellable_product(session, product_id)

    item = next((i for i in cart.items if i.product_id == product.id), None)
    new_quantity = quantity + (item.quantity if item else 0)
    if new_quantity > product.stock:
        raise InsufficientStockError(product.name, new_quantity, product.stock)

    if item is None:
        item = CartItem(
            product_id=product.id,
            quantity=new_quantity,
            customizations=customizations or [],
            note=note,
        )
        cart.items.append(item)
    else:
        item.quantity = new_quantity
        if customizations is not None:
            item.customizations = customizations
        if note is not None:
            item.note = note

    _touch(cart, now)
    session.commit()
    logger.info(f"[CART] user={user_id} product={product.id} quantity={new_quantity}")
    return item


def update_item_quantity(session: Session, user_id: int, item_id: int, quantity: int,
                         now: Optional[datetime] = None) -> Optional[CartItem]:
    """Set a line's quantity; zero or less removes the line."""
    now = now or datetime.utcnow()
    cart = get_or_create_cart(session, user_id, now)
    item = _get_item(cart, item_id)

    if quantity is None or int(quantity) <= 0:
        cart.items.remove(item)
        _touch(cart, now)
        session.commit()
        return None

    product = _get_sellable_product(session, item.product_id)
    if int(quantity) > product.stock:
        raise InsufficientStockError(product.name, int(quantity), product.stock)

    item.quantity = int(quantity)
    _touch(cart, now)
    session.commit()
    return item


def remove_item(session: Session, user_id: int, item_id: int, now: Optional[datetime] = None) -> None:
    now = now or datetime.utcnow()
    cart = get_or_create_cart(session, user_id, now)
    cart.items.remove(_get_item(cart, item_id))
    _touch(cart, now)
    session.commit()


def clear_cart(session: Session, user_id: int, now: Optional[datetime] = None) -> None:
    """Remove every item and the applied coupon."""
    now = now or datetime.utcnow()
    cart = get_or_create_cart(session, user_id, now)
    _empty(cart)
    _touch(cart, now)
    session.commit()


def apply_coupon(session: Session, user_id: int, code: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Validate a coupon against the current cart and attach it."""
    now = now or datetime.utcnow()
    cart = get_or_create_cart(session, user_id, now)
    if not cart.items:
        raise EmptyCartError()

    coupon = get_coupon_by_code(session, code)
    delivery_fee = get_delivery_fee()
    totals = price_cart(cart_lines(cart), delivery_fee)
    check_coupon(session, coupon, user_id, totals['subtotal'], delivery_fee, now)

    cart.coupon = coupon
    _touch(cart, now)
    session.commit()
    logger.info(f"[CART] Coupon {coupon.code} applied to cart {cart.id}")
    return get_cart_summary(session, user_id, now)


def remove_coupon(session: Session, user_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    cart = get_or_create_cart(session, user_id, now)
    cart.coupon = None
    _touch(cart, now)
    session.commit()
    return get_cart_summary(session, user_id, now)
