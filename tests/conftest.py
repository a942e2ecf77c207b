# tests/conftest.py
"""
Configuration globale pour les tests pytest
Base SQLite en mémoire, utilisateurs, produits et jetons de test
"""

import pytest
import os
import sys
from datetime import datetime, timedelta

# Ajouter le répertoire racine au path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.security import Principal, create_access_token
from db.models import Product
from db.session import get_db, init_db
from models.schemas import QuotationItemIn, SaleOrderItemIn
from models.user import User
from services.quotation_workflow import QuotationWorkflow


@pytest.fixture
def engine():
    """Base en mémoire partagée entre sessions (StaticPool)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# === Utilisateurs ===

def _user(db, name, email, role, **extra):
    user = User(name=name, email=email, role=role, **extra)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def customer(db):
    return _user(db, "Alice Martin", "alice@example.com", "customer")


@pytest.fixture
def other_customer(db):
    return _user(db, "Bruno Petit", "bruno@example.com", "customer")


@pytest.fixture
def vendor(db):
    return _user(db, "Rent Pro", "vendor@example.com", "vendor", company_name="Rent Pro SARL", gstin="27AAAAA0000A1Z5")


@pytest.fixture
def other_vendor(db):
    return _user(db, "Loc Express", "loc@example.com", "vendor", company_name="Loc Express")


@pytest.fixture
def admin(db):
    return _user(db, "Admin", "admin@example.com", "admin")


def principal(user):
    return Principal(id=user.id, role=user.role)


@pytest.fixture
def customer_actor(customer):
    return principal(customer)


@pytest.fixture
def other_customer_actor(other_customer):
    return principal(other_customer)


@pytest.fixture
def vendor_actor(vendor):
    return principal(vendor)


@pytest.fixture
def other_vendor_actor(other_vendor):
    return principal(other_vendor)


@pytest.fixture
def admin_actor(admin):
    return principal(admin)


# === Produits ===

def _product(db, **fields):
    product = Product(**fields)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@pytest.fixture
def laptop(db, vendor):
    """Electronics (18%) : 10/h, 100/jour, 500/semaine, 5 en stock"""
    return _product(
        db, name="Laptop Pro", category="Electronics", vendor_id=vendor.id,
        hourly_rate=10.0, daily_rate=100.0, weekly_rate=500.0, sale_price=1000.0,
        quantity_on_hand=5, is_rentable=True, is_sellable=True,
    )


@pytest.fixture
def sofa(db, vendor):
    """Furniture (12%) : 50/jour, 3 en stock"""
    return _product(
        db, name="Sofa", category="Furniture", vendor_id=vendor.id,
        daily_rate=50.0, weekly_rate=300.0, sale_price=800.0,
        quantity_on_hand=3, is_rentable=True, is_sellable=False,
    )


@pytest.fixture
def speaker(db, other_vendor):
    """Produit d'un autre vendeur"""
    return _product(
        db, name="Speaker", category="Entertainment", vendor_id=other_vendor.id,
        daily_rate=30.0, sale_price=200.0, quantity_on_hand=4, is_rentable=True, is_sellable=True,
    )


# === Devis ===

@pytest.fixture
def rental_window():
    start = datetime(2030, 1, 10, 9, 0)
    return start, start + timedelta(days=3)


@pytest.fixture
def make_item(rental_window):
    def _make(product, quantity=2, start=None, end=None):
        default_start, default_end = rental_window
        return QuotationItemIn(
            product_id=product.id,
            quantity=quantity,
            rental_start_date=start or default_start,
            rental_end_date=end or default_end,
        )
    return _make


@pytest.fixture
def make_sale_item():
    def _make(product, quantity=1):
        return SaleOrderItemIn(product_id=product.id, quantity=quantity)
    return _make


@pytest.fixture
def quotation_workflow(db):
    return QuotationWorkflow(db)


@pytest.fixture
def pending_quotation(quotation_workflow, customer_actor, laptop, make_item):
    quotation = quotation_workflow.create(customer_actor, [make_item(laptop)])
    return quotation_workflow.submit(customer_actor, quotation.id)


@pytest.fixture
def approved_quotation(quotation_workflow, pending_quotation, vendor_actor):
    return quotation_workflow.approve(vendor_actor, pending_quotation.id)


@pytest.fixture
def rental_order(quotation_workflow, approved_quotation, customer_actor):
    return quotation_workflow.convert_to_order(customer_actor, approved_quotation.id)


# === API ===

def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture
def client(session_factory):
    """Client de test FastAPI branché sur la base en mémoire."""
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    """En-têtes Authorization pour un utilisateur donné."""
    return auth_headers
