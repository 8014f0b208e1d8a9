"""
Concurrent checkouts against a real database file.

Each worker thread gets its own scoped session, so stock reservation and
cart clearing are exercised under actual contention. Set
NOW24_TEST_DATABASE_URL to a Postgres URL to run the same cases there.
"""

import os
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from config import TestingConfig
from now24 import create_app
from now24 import database
from now24.database import get_session, create_tables, drop_tables
from now24.exceptions import EmptyCartError, InsufficientStockError, ProductUnavailableError
from now24.models import Address, AppUser, Cart, CartItem, Order, OrderItem, Product
from now24.services import order_service

STOCK = 5
CUSTOMERS = 8


def _database_uris():
    uris = [pytest.param('file', id='sqlite-file')]
    if os.getenv('NOW24_TEST_DATABASE_URL'):
        uris.append(pytest.param(os.getenv('NOW24_TEST_DATABASE_URL'), id='postgres'))
    return uris


@pytest.fixture(params=_database_uris())
def shared_app(request, tmp_path):
    uri = request.param
    if uri == 'file':
        uri = f"sqlite:///{tmp_path / 'now24.db'}"

    class SharedDatabaseConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = uri

    app = create_app(SharedDatabaseConfig)
    with app.app_context():
        create_tables()
    yield app
    with app.app_context():
        get_session().remove()
        drop_tables()
    database.engine.dispose()


def seed_customers(app, count, quantity=1):
    """Users with an address and a cart holding `quantity` of one product."""
    with app.app_context():
        session = get_session()
        product = Product(name='X-Burger', price=2000, stock=STOCK)
        session.add(product)
        session.flush()

        customers = []
        for n in range(count):
            user = AppUser(email=f'cliente{n}@now24.com.br', full_name=f'Cliente {n}', active=True)
            session.add(user)
            session.flush()
            address = Address(user_id=user.id, label='Casa', street='Rua das Flores', number=str(n + 1),
                              district='Centro', city='São Paulo', state='SP', zip_code='01001-000',
                              is_default=True)
            cart = Cart(user_id=user.id, expires_at=datetime.utcnow() + timedelta(days=1))
            session.add_all([address, cart])
            session.flush()
            session.add(CartItem(cart_id=cart.id, product_id=product.id, quantity=quantity, customizations=[]))
            customers.append((user.id, address.id))
        session.commit()
        return product.id, customers


def checkout_all(app, customers):
    """Run one checkout per (user_id, address_id) at the same time."""
    barrier = threading.Barrier(len(customers))

    def checkout(customer):
        user_id, address_id = customer
        with app.app_context():
            barrier.wait()
            try:
                return order_service.create_order(get_session(), user_id, address_id, 'pix').id
            except (EmptyCartError, InsufficientStockError, ProductUnavailableError) as e:
                return e

    with ThreadPoolExecutor(max_workers=len(customers)) as pool:
        return list(pool.map(checkout, customers))


class TestConcurrentCheckout:
    """Parallel checkouts never oversell and never duplicate an order."""

    def test_no_oversell_under_contention(self, shared_app):
        product_id, customers = seed_customers(shared_app, CUSTOMERS)

        results = checkout_all(shared_app, customers)

        created = [r for r in results if isinstance(r, int)]
        refused = [r for r in results if not isinstance(r, int)]
        assert len(created) == STOCK
        assert len(refused) == CUSTOMERS - STOCK
        assert all(isinstance(r, (InsufficientStockError, ProductUnavailableError)) for r in refused)

        with shared_app.app_context():
            session = get_session()
            product = session.get(Product, product_id)
            reserved = sum(item.quantity for item in session.query(OrderItem).filter_by(product_id=product_id))
            assert reserved <= STOCK
            assert product.stock >= 0
            assert product.stock == STOCK - reserved
            assert product.sales == reserved

    def test_double_submit_creates_one_order(self, shared_app):
        product_id, customers = seed_customers(shared_app, 1, quantity=2)

        results = checkout_all(shared_app, customers * 2)

        assert len([r for r in results if isinstance(r, int)]) == 1
        assert len([r for r in results if isinstance(r, EmptyCartError)]) == 1

        with shared_app.app_context():
            session = get_session()
            assert session.query(Order).count() == 1
            assert session.get(Product, product_id).stock == STOCK - 2
