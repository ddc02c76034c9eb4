"""
Pytest fixtures for inventory engine tests.

Provides test database setup, two tenants with catalog rows, and a test client.
"""

from datetime import date

import pytest
from inventory_engine import create_app
from inventory_engine.extensions import db
from inventory_engine.models import Organization, Supplier, ProductVariant
from inventory_engine.services import allocation_service
from inventory_engine.services.allocation_service import BucketScope, BucketTerms


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Sunway Travel", code="SUN", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Boreal Tours", code="BOR", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def variant_a(db_session, org_a):
    """Double room in Organization A."""
    variant = ProductVariant(org_id=org_a.id, name="Double Room", code="DBL")
    db_session.add(variant)
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def variant_b(db_session, org_b):
    """Variant in Organization B."""
    variant = ProductVariant(org_id=org_b.id, name="Harbour Cruise", code="CRZ", variant_type="tour")
    db_session.add(variant)
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def supplier_a(db_session, org_a):
    """First supplier in Organization A (lower id)."""
    supplier = Supplier(org_id=org_a.id, name="Hotel Sol", code="SOL", default_priority=100)
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def supplier_a2(db_session, org_a, supplier_a):
    """Second supplier in Organization A (higher id than supplier_a)."""
    supplier = Supplier(org_id=org_a.id, name="Hotel Luna", code="LUN", default_priority=100)
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def make_bucket(db_session):
    """Factory: create one bucket through the allocation store."""
    def _make(org, variant, day=date(2026, 3, 1), supplier=None, **terms):
        return allocation_service.create_bucket(
            org_id=org.id,
            variant_id=variant.id,
            supplier_id=supplier.id if supplier is not None else None,
            scope=BucketScope.single(day),
            terms=BucketTerms(**terms),
        )
    return _make
