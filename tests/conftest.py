import pytest
from decimal import Decimal
from types import SimpleNamespace

from zwift_pos import create_app
from zwift_pos.database import get_session, create_all, drop_all
from zwift_pos.models import Category, Product


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite, no Redis)."""
    app = create_app('config.TestConfig')
    return app


@pytest.fixture(scope='function')
def session(app):
    """Database session on fresh tables, inside an app context."""
    with app.app_context():
        create_all()
        session = get_session()
        yield session
        session.rollback()
        session.remove()
        drop_all()


@pytest.fixture(scope='function')
def client(app, session):
    """Create test client."""
    return app.test_client()


def make_product(product_id=1, name='Test Product', price='10.00', purchase_price='6.00', stock=5,
                 barcode=None):
    """Plain product snapshot for engine tests that need no database."""
    return SimpleNamespace(
        id=product_id,
        name=name,
        price=Decimal(price),
        purchase_price=None if purchase_price is None else Decimal(purchase_price),
        stock=stock,
        barcode=barcode,
        image=None,
    )


@pytest.fixture
def product_factory():
    return make_product


@pytest.fixture(scope='function')
def category(session):
    category = Category(name='Drinks')
    session.add(category)
    session.commit()
    return category


@pytest.fixture(scope='function')
def product(session, category):
    """price 10.00, cost 6.00, stock 5."""
    product = Product(
        name='Orange Juice 1L',
        barcode='6111000000028',
        category_id=category.id,
        price=Decimal('10.00'),
        purchase_price=Decimal('6.00'),
        stock=5,
        min_stock=2,
        active=True,
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def second_product(session, category):
    """price 4.00, cost 2.50, stock 20."""
    product = Product(
        name='Mineral Water 1.5L',
        barcode='6111000000011',
        category_id=category.id,
        price=Decimal('4.00'),
        purchase_price=Decimal('2.50'),
        stock=20,
        min_stock=10,
        active=True,
    )
    session.add(product)
    session.commit()
    return product
