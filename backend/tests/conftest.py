"""
Pytest fixtures for storefront backend tests.

Provides test database setup, catalog/identity fixtures, and a CLI runner.
"""

import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.services import catalog_service, identity_service, inventory_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_SECONDS': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def cli_runner(app):
    return app.test_cli_runner()


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


@pytest.fixture(scope='function')
def alice(db_session):
    """Customer with a profile and a primary home address."""
    user = identity_service.create_user("alice@example.com", "hash_pw1")
    identity_service.upsert_profile(
        user.id,
        first_name="Alice",
        last_name="Johnson",
        phone="1234567890",
        birth_date="1990-05-15",
        bio="Loyal customer and frequent shopper.",
    )
    identity_service.add_address(
        user.id, "123 Main St", "Nairobi", "Kenya",
        label="Home", state="Nairobi County", postal_code="00100", is_primary=True,
    )
    return user


@pytest.fixture(scope='function')
def bob(db_session):
    return identity_service.create_user("bob@example.com", "hash_pw2")


@pytest.fixture(scope='function')
def supplier(db_session):
    return catalog_service.create_supplier("TechSource Ltd", "contact@techsource.com", "+254700111222")


@pytest.fixture(scope='function')
def laptop(db_session, supplier):
    return catalog_service.create_product(
        "LAP-001", "Dell Inspiron 15", 75000,
        description="15-inch laptop with Intel i5 processor",
        weight_grams=2200,
        supplier_id=supplier.id,
    )


@pytest.fixture(scope='function')
def jacket(db_session):
    return catalog_service.create_product("CLO-001", "Blue Denim Jacket", 5500, weight_grams=1000)


@pytest.fixture(scope='function')
def sneakers(db_session):
    return catalog_service.create_product("SHO-001", "Running Sneakers", 7500, weight_grams=800)


@pytest.fixture(scope='function')
def main_warehouse(db_session):
    return inventory_service.create_warehouse("Main Warehouse", "Nairobi")


@pytest.fixture(scope='function')
def coastal_warehouse(db_session):
    return inventory_service.create_warehouse("Coastal Warehouse", "Mombasa")
