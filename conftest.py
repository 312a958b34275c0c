# conftest.py
import os

# settings are read at import time
os.environ.setdefault("APP_SECRET", "test-secret")
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from larder.db import Base, get_db, install_sqlite_pragmas, run_in_transaction
from larder.main import app
from larder.models.core import Product, Role
from larder.services.meal_plans import create_plan
from larder.services.recipes import create_recipe
from larder.services.stock import receive_lot
from larder.util import clock
from larder.util.security import create_token


@pytest.fixture()
def engine():
    # one in-memory database per test, shared by every session through StaticPool
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    install_sqlite_pragmas(eng)
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture()
def Session(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(Session):
    s = Session()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def client(Session):
    def _get_db():
        s = Session()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(scope="session")
def base_url():
    return "http://testserver"


def _headers(role: Role) -> dict:
    return {"Authorization": f"Bearer {create_token(f'{role.value.lower()}-user', role)}"}


@pytest.fixture(scope="session")
def auth_headers():
    return _headers(Role.ADMIN)


@pytest.fixture(scope="session")
def kitchen_headers():
    return _headers(Role.KITCHEN)


@pytest.fixture(scope="session")
def director_headers():
    return _headers(Role.DIRECTOR)


@pytest.fixture(scope="session")
def rng_suffix():
    import random, string
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=6))


@pytest.fixture()
def today():
    return clock.today()


@pytest.fixture()
def make_product(db):
    def _make(name="Rice", unit="kg", cost="2.50", alert_threshold="0"):
        p = Product(name=name, unit=unit, cost=Decimal(cost), alert_threshold=Decimal(alert_threshold), active=True)
        db.add(p)
        db.commit()
        return p
    return _make


@pytest.fixture()
def make_lot(db, today):
    def _make(product, quantity, expires_in_days=10, batch=None):
        batch = batch or f"B-{expires_in_days}-{quantity}"
        return run_in_transaction(db, lambda db: receive_lot(
            db, product.id, batch, quantity, today + timedelta(days=expires_in_days)))
    return _make


@pytest.fixture()
def make_plan(db, today):
    """A DRAFT plan with one item per ``(product, qty_per_portion, portions)`` line."""
    def _make(*lines, waste_rate="0", name="Week plan"):
        items = []
        for product, qty_per_portion, portions in lines:
            recipe = run_in_transaction(db, lambda db: create_recipe(
                db, name=f"Dish of {product.name}", base_portions=1, waste_rate=waste_rate,
                items=[{"product_id": product.id, "qty_per_portion": qty_per_portion}]))
            items.append({"recipe_id": recipe.id, "portions": portions, "service_date": today})
        return run_in_transaction(db, lambda db: create_plan(
            db, name=name, period_start=today, period_end=today + timedelta(days=6), items=items))
    return _make
