import pytest
from datetime import datetime, timedelta

from now24 import create_app
from now24.database import get_session, create_tables, drop_tables
from now24.exceptions import PaymentGatewayError, PaymentGatewayUnavailableError
from now24.models import (
    AppUser, Address, PaymentCard, Product, Coupon, DiscountType, Cart, CartItem
)
from now24.services.payment_gateway import GatewayPayment, PaymentGateway


class FakeGateway(PaymentGateway):
    """
    In-memory payment gateway.

    Records every call, honours idempotency keys the way Mercado Pago does
    and can be switched to refuse or time out.
    """

    def __init__(self):
        self.calls = []
        self.payments = {}
        self.payments_by_key = {}
        self.customers = {}
        self.tokens = {}
        self.next_status = 'approved'
        self.next_status_detail = 'accredited'
        self.unavailable = False
        self.refuse_reason = None
        self._seq = 5000

    def configure(self, status='approved', unavailable=False, refuse_reason=None):
        self.next_status = status
        self.unavailable = unavailable
        self.refuse_reason = refuse_reason

    def _next_id(self):
        self._seq += 1
        return self._seq

    def calls_to(self, name):
        return [kwargs for call, kwargs in self.calls if call == name]

    def store_payment(self, status, external_reference, amount=0, gateway_id=None):
        """Create or overwrite a payment the way the gateway would see it."""
        gateway_id = str(gateway_id or self._next_id())
        raw = {
            'id': gateway_id,
            'status': status,
            'status_detail': self.next_status_detail if status == 'approved' else status,
            'external_reference': str(external_reference),
            'transaction_amount': amount / 100,
            'installments': 1,
        }
        payment = GatewayPayment.from_mp_response(raw)
        self.payments[gateway_id] = payment
        return payment

    def set_status(self, gateway_id, status):
        current = self.payments[str(gateway_id)]
        return self.store_payment(
            status, current.external_reference,
            int(round(current.raw['transaction_amount'] * 100)), gateway_id,
        )

    def tokenize_card(self, card_data):
        self.calls.append(('tokenize_card', {'holder_name': card_data.get('holder_name')}))
        token = f"tok_{self._next_id()}"
        self.tokens[token] = str(card_data['card_number']).replace(' ', '')
        return token

    def get_or_create_customer(self, email, first_name, last_name, identification=None):
        self.calls.append(('get_or_create_customer', {'email': email, 'identification': identification}))
        if email not in self.customers:
            self.customers[email] = f"cus_{self._next_id()}"
        return self.customers[email]

    def create_permanent_card(self, customer_id, token):
        self.calls.append(('create_permanent_card', {'customer_id': customer_id, 'token': token}))
        number = self.tokens.pop(token)
        return {
            'id': f"card_{self._next_id()}",
            'last_four_digits': number[-4:],
            'payment_method': {'id': 'visa'},
        }

    def charge(self, amount, payment_method, idempotency_key, description, payer,
               external_reference, card=None, installments=1, metadata=None):
        self.calls.append(('charge', {
            'amount': amount,
            'payment_method': payment_method,
            'idempotency_key': idempotency_key,
            'external_reference': external_reference,
            'card': card,
            'installments': installments,
            'payer': payer,
        }))
        if self.unavailable:
            raise PaymentGatewayUnavailableError()
        if self.refuse_reason:
            raise PaymentGatewayError(self.refuse_reason, payload={'gateway_status_code': 400})
        if idempotency_key in self.payments_by_key:
            return self.payments[self.payments_by_key[idempotency_key]]

        payment = self.store_payment(self.next_status, external_reference, amount)
        self.payments_by_key[idempotency_key] = payment.gateway_transaction_id
        return payment

    def get_payment(self, gateway_transaction_id):
        self.calls.append(('get_payment', {'id': str(gateway_transaction_id)}))
        if self.unavailable:
            raise PaymentGatewayUnavailableError()
        payment = self.payments.get(str(gateway_transaction_id))
        if payment is None:
            raise PaymentGatewayError("Payment not found", status_code=404)
        return payment


class RecordingNotifier:
    """Keeps every notification for assertions."""

    def __init__(self):
        self.sent = []

    def notify(self, user_id, kind, payload):
        self.sent.append((user_id, kind, payload))

    def kinds(self):
        return [kind for _, kind, _ in self.sent]


class FailingNotifier:
    def notify(self, user_id, kind, payload):
        raise RuntimeError("notification backend down")


@pytest.fixture(scope='function')
def gateway():
    return FakeGateway()


@pytest.fixture(scope='function')
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope='function')
def app(gateway, notifier):
    """Create application instance with a fresh in-memory database."""
    app = create_app('config.TestingConfig', gateway=gateway, notifier=notifier)
    ctx = app.app_context()
    ctx.push()
    create_tables()
    yield app
    get_session().remove()
    drop_tables()
    ctx.pop()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session bound to the test app."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def user(session):
    user = AppUser(
        email='maria@now24.com.br',
        full_name='Maria Souza',
        cpf='123.456.789-09',
        phone='11999990000',
        active=True
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def other_user(session):
    user = AppUser(email='joao@now24.com.br', full_name='João Lima', cpf='987.654.321-00', active=True)
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def address(session, user):
    address = Address(
        user_id=user.id,
        label='Casa',
        street='Rua das Flores',
        number='123',
        district='Centro',
        city='São Paulo',
        state='SP',
        zip_code='01001-000',
        is_default=True
    )
    session.add(address)
    session.commit()
    return address


@pytest.fixture(scope='function')
def make_product(session):
    """Factory for catalog products."""
    def _make(name='X-Burger', price=2000, stock=10, **kwargs):
        product = Product(name=name, price=price, stock=stock, **kwargs)
        session.add(product)
        session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product()


@pytest.fixture(scope='function')
def make_coupon(session):
    """Factory for coupons, valid from yesterday by default."""
    def _make(code='BEMVINDO10', discount_type=DiscountType.PERCENTAGE, discount_value=10, **kwargs):
        kwargs.setdefault('valid_from', datetime.utcnow() - timedelta(days=1))
        coupon = Coupon(code=code, discount_type=discount_type, discount_value=discount_value, **kwargs)
        session.add(coupon)
        session.commit()
        return coupon
    return _make


@pytest.fixture(scope='function')
def fill_cart(session):
    """
    Put lines straight into a user's cart, bypassing add-time checks.

    Used to model a catalog that changed after the items were added.
    """
    def _fill(user, lines, coupon=None):
        cart = session.query(Cart).filter_by(user_id=user.id).first()
        if cart is None:
            cart = Cart(user_id=user.id, expires_at=datetime.utcnow() + timedelta(days=7))
            session.add(cart)
            session.flush()
        for product, quantity in lines:
            session.add(CartItem(cart_id=cart.id, product_id=product.id, quantity=quantity, customizations=[]))
        if coupon is not None:
            cart.coupon_id = coupon.id
        session.commit()
        return cart
    return _fill


@pytest.fixture(scope='function')
def credit_card(session, user):
    card = PaymentCard(
        user_id=user.id,
        card_type='credit_card',
        last_four='4242',
        holder_name='MARIA SOUZA',
        brand='visa',
        expiration_month=12,
        expiration_year=2030,
        gateway_card_id='card_saved_1',
        is_default=True
    )
    session.add(card)
    session.commit()
    return card


@pytest.fixture(scope='function')
def authenticated_client(client, user):
    """Create authenticated client for the default user."""
    with client.session_transaction() as sess:
        sess['user_id'] = user.id
    return client
