"""
Pytest fixtures for the point-of-sale backend tests.

Provides an in-memory database, fake outbound collaborators (tax
authority, signer, mailer, subscription server), catalog data and an
operator with an open cash session.
"""

from datetime import datetime

import pytest

from fiscalpos import create_app
from fiscalpos.extensions import db
from fiscalpos.models import Customer, FiscalSettings, Product, SubscriptionState
from fiscalpos.models.catalog import ID_TYPE_FINAL_CONSUMER, ID_TYPE_TAX_ID
from fiscalpos.services import fiscal_context, register_service
from fiscalpos.services.auth_service import create_user
from fiscalpos.services.authority_client import (
    AUTHORITY_AUTHORIZED,
    AUTHORITY_IN_PROCESS,
    AuthorityResponse,
)
from fiscalpos.services.collaborators import AUTHORITY_KEY, MAILER_KEY, SIGNER_KEY, SUBSCRIPTION_KEY
from fiscalpos.services.mailer import MailDeliveryError
from fiscalpos.services.subscription_client import SubscriptionInfo, SubscriptionUnavailableError


OPERATOR_PASSWORD = "cashier123"
ADMIN_PASSWORD = "admin1234"


class FakeAuthority:
    """
    Answers from a script of responses; AUTHORIZED when the script is empty.

    Script entries may be an AuthorityResponse or an exception instance.
    query() answers IN_PROCESS unless query_responses has something queued.
    """

    def __init__(self):
        self.reset()

    def reset(self):
        self.responses = []
        self.query_responses = []
        self.submissions = []
        self.queries = []

    def _next(self, script, default):
        item = script.pop(0) if script else default
        if isinstance(item, Exception):
            raise item
        return item

    def submit(self, signed_payload, access_key, environment):
        self.submissions.append({"payload": signed_payload, "access_key": access_key, "environment": environment})
        return self._next(
            self.responses,
            AuthorityResponse(AUTHORITY_AUTHORIZED, authorization_code=access_key, authorized_at=datetime(2026, 1, 5, 15, 0)),
        )

    def query(self, access_key, environment):
        self.queries.append({"access_key": access_key, "environment": environment})
        return self._next(self.query_responses, AuthorityResponse(AUTHORITY_IN_PROCESS))

    @property
    def calls(self):
        return len(self.submissions) + len(self.queries)


class FakeSigner:
    def __init__(self):
        self.reset()

    def reset(self):
        self.signed = []

    def sign(self, payload, certificate):
        self.signed.append(payload)
        return f"<signed>{payload}</signed>"


class FakeMailer:
    def __init__(self):
        self.reset()

    def reset(self):
        self.sent = []
        self.failures = []

    def send(self, to, subject, html):
        if self.failures:
            raise MailDeliveryError(self.failures.pop(0))
        self.sent.append({"to": to, "subject": subject, "html": html})

    def fail_next(self, *reasons):
        self.failures.extend(reasons)


class FakeSubscription:
    def __init__(self):
        self.reset()

    def reset(self):
        self.info = SubscriptionInfo(authorized=False, plan_kind="TRIAL")
        self.remaining_after_consume = 0
        self.offline = False
        self.consumed = []

    def validate(self, machine_id):
        if self.offline:
            raise SubscriptionUnavailableError("connection refused")
        return self.info

    def consume_document(self, machine_id, access_key):
        if self.offline:
            raise SubscriptionUnavailableError("connection refused")
        self.consumed.append(access_key)
        return self.remaining_after_consume


_FAKES = {
    AUTHORITY_KEY: FakeAuthority(),
    SIGNER_KEY: FakeSigner(),
    MAILER_KEY: FakeMailer(),
    SUBSCRIPTION_KEY: FakeSubscription(),
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'BCRYPT_ROUNDS': 4,
            'FREE_INVOICE_ALLOWANCE': 5,
            'NOTIFICATION_SWEEP_ENABLED': False,
            'NOTIFICATION_MAX_ATTEMPTS': 3,
            'NOTIFICATION_SWEEP_BATCH_SIZE': 5,
        },
        collaborators=_FAKES,
    )

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    for fake in _FAKES.values():
        fake.reset()

    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture
def authority(db_session):
    return _FAKES[AUTHORITY_KEY]


@pytest.fixture
def signer(db_session):
    return _FAKES[SIGNER_KEY]


@pytest.fixture
def mailer(db_session):
    return _FAKES[MAILER_KEY]


@pytest.fixture
def subscription_server(db_session):
    return _FAKES[SUBSCRIPTION_KEY]


@pytest.fixture
def operator(db_session):
    """Cashier with an open cash session (opening float 100.00)."""
    user = create_user("cashier", OPERATOR_PASSWORD, "Front Cashier")
    register_service.open_session(user.id, 10000)
    return user


@pytest.fixture
def admin(db_session):
    return create_user("admin", ADMIN_PASSWORD, "Administrator", is_admin=True)


@pytest.fixture
def products(db_session):
    """A taxed product (15%) and a zero-rated one."""
    coffee = Product(sku="COF-1", name="Coffee beans", price_cents=1000, tax_rate_bps=1500)
    bread = Product(sku="BRD-1", name="Bread", price_cents=250, tax_rate_bps=0)
    db_session.add_all([coffee, bread])
    db_session.commit()
    return {"coffee": coffee, "bread": bread}


@pytest.fixture
def customer(db_session):
    """Identified buyer, eligible for invoices."""
    buyer = Customer(
        name="ACME Trading",
        id_type=ID_TYPE_TAX_ID,
        id_number="1790012345001",
        email="billing@acme.example",
    )
    db_session.add(buyer)
    db_session.commit()
    return buyer


@pytest.fixture
def final_consumer(db_session):
    consumer = Customer(
        name="Final consumer",
        id_type=ID_TYPE_FINAL_CONSUMER,
        id_number="9999999999999",
        is_default=True,
    )
    db_session.add(consumer)
    db_session.commit()
    return consumer


@pytest.fixture
def fiscal_ready(db_session):
    """Business settings, a loaded certificate and a confirmed test environment."""
    db_session.add(FiscalSettings(
        business_tax_id="1790099999001",
        legal_name="Corner Store S.A.",
        trade_name="Corner Store",
    ))
    db_session.add(SubscriptionState())
    db_session.commit()
    fiscal_context.load_certificate(b"\x30\x82certificate", "secret", "store.p12")
    fiscal_context.confirm_environment("test")
    return fiscal_context.load_context()


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def operator_headers(client, operator):
    return auth_headers(get_auth_token(client, "cashier", OPERATOR_PASSWORD))


@pytest.fixture
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, "admin", ADMIN_PASSWORD))


@pytest.fixture
def make_sale(operator, products):
    """Factory: check out a cart for the operator and return the Sale."""
    from fiscalpos.services import cart_service, sales_service

    def _make(items=None, *, customer=None, document_kind="RECEIPT", payment_method="CASH", tendered=None):
        if items is None:
            items = [
                {"product_id": products["coffee"].id, "quantity": 2},
                {"product_id": products["bread"].id, "quantity": 3},
            ]
        cart = cart_service.build_cart(
            items,
            customer_id=customer.id if customer else None,
            document_kind=document_kind,
        )
        return sales_service.create_sale(
            operator.id,
            cart,
            payment_method=payment_method,
            amount_tendered_cents=tendered,
        )

    return _make


@pytest.fixture
def invoice(make_sale, customer, fiscal_ready):
    """Unsubmitted invoice: 2 x coffee (taxed 15%) + 3 x bread (zero-rated)."""
    return make_sale(customer=customer, document_kind="INVOICE")
