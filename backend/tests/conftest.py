"""
Pytest fixtures for marketplace backend tests.

Provides an in-memory database, test client, users with access tokens and
a small catalog.
"""

import pytest

from marketplace import create_app
from marketplace.extensions import db
from marketplace.models import Product, User
from marketplace.services.auth_service import hash_password
from marketplace.services.session_service import issue_access_token
from marketplace.time_utils import utcnow


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'JWT_SECRET_KEY': 'test-jwt-secret',
        'BCRYPT_ROUNDS': 4,
    })

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
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def make_user(db_session, name: str, email: str, role: str = "user", status: str = "active") -> User:
    user = User(
        name=name,
        email=email,
        password_hash=hash_password(PASSWORD),
        role=role,
        status=status,
        created_at=utcnow(),
    )
    db_session.add(user)
    db_session.commit()
    return user


def make_product(
    db_session,
    artisan: User,
    name: str = "Clay vase",
    price_cents: int = 2000,
    stock: int = 10,
    category: str = "ceramics",
    is_active: bool = True,
) -> Product:
    product = Product(
        artisan_id=artisan.id,
        name=name,
        description=f"Handmade {name.lower()} from the workshop",
        price_cents=price_cents,
        images=["https://cdn.example.com/item.jpg"],
        category=category,
        stock=stock,
        is_active=is_active,
    )
    db_session.add(product)
    db_session.commit()
    return product


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(user: User) -> dict:
    return auth_headers(issue_access_token(user))


@pytest.fixture(scope='function')
def buyer(db_session):
    return make_user(db_session, "Bea Buyer", "buyer@example.com")


@pytest.fixture(scope='function')
def artisan(db_session):
    return make_user(db_session, "Arturo Artisan", "artisan@example.com")


@pytest.fixture(scope='function')
def other_artisan(db_session):
    return make_user(db_session, "Olga Other", "other@example.com")


@pytest.fixture(scope='function')
def admin(db_session):
    return make_user(db_session, "Ada Admin", "admin@example.com", role="admin")


@pytest.fixture(scope='function')
def buyer_headers(buyer):
    return headers_for(buyer)


@pytest.fixture(scope='function')
def artisan_headers(artisan):
    return headers_for(artisan)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return headers_for(admin)


@pytest.fixture(scope='function')
def product(db_session, artisan):
    """Active product: 2000 cents, 10 in stock."""
    return make_product(db_session, artisan)


SHIPPING = {
    "street": "123 Market Street",
    "city": "Oaxaca",
    "postal_code": "68000",
    "country": "Mexico",
}


def order_payload(*lines, payment_method="credit_card") -> dict:
    """order_payload((product_id, qty), ...)"""
    return {
        "items": [{"product_id": pid, "quantity": qty} for pid, qty in lines],
        "shipping_address": dict(SHIPPING),
        "payment_method": payment_method,
    }
