"""
Inventory guard.

Every function runs inside the caller's transaction and never commits.
The caller rolls back the whole unit of work when one of them raises.
"""
import logging
from typing import Dict, Iterable, List

from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from now24.models import Product
from now24.exceptions import InsufficientStockError

logger = logging.getLogger(__name__)


def lock_products(session: Session, product_ids: Iterable[int]) -> Dict[int, Product]:
    """
    Lock product rows FOR UPDATE and return them by id.

    Rows are always locked in id order so concurrent checkouts touching the
    same products cannot deadlock.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    products = session.query(Product).filter(
        Product.id.in_(ids)
    ).order_by(Product.id).with_for_update().populate_existing().all()
    return {p.id: p for p in products}


def reserve_stock(session: Session, lines: List[Dict]) -> None:
    """
    Decrement stock and increment sales for every line, or fail.

    Each line is one conditional UPDATE (`stock >= quantity`), so stock can
    never go negative even without the row lock.

    Args:
        lines: dicts with `product_id`, `quantity` and optional `product_name`

    Raises:
        InsufficientStockError: on the first line that cannot be covered
    """
    for line in sorted(lines, key=lambda l: l['product_id']):
        quantity = int(line['quantity'])
        updated = session.query(Product).filter(
            Product.id == line['product_id'],
            Product.stock >= quantity,
        ).update(
            {
                Product.stock: Product.stock - quantity,
                Product.sales: Product.sales + quantity,
            },
            synchronize_session=False,
        )
        if updated == 0:
            logger.warning(f"[STOCK] Reservation failed for product {line['product_id']} (qty {quantity})")
            raise InsufficientStockError(line.get('product_name') or line['product_id'], quantity)

    _expire_products(session, [line['product_id'] for line in lines])


def release_stock(session: Session, lines: List[Dict]) -> None:
    """Unconditionally give quantities back (order cancellation)."""
    for line in sorted(lines, key=lambda l: l['product_id']):
        quantity = int(line['quantity'])
        session.query(Product).filter(Product.id == line['product_id']).update(
            {
                Product.stock: Product.stock + quantity,
                Product.sales: Product.sales - quantity,
            },
            synchronize_session=False,
        )
        logger.info(f"[STOCK] Restocked product {line['product_id']} (+{quantity})")

    _expire_products(session, [line['product_id'] for line in lines])


def _expire_products(session: Session, product_ids: Iterable[int]) -> None:
    """Drop cached stock/sales values so the next read sees the UPDATE."""
    for product_id in set(product_ids):
        product = session.identity_map.get(identity_key(Product, product_id))
        if product is not None:
            session.expire(product, ['stock', 'sales'])
