import os
from decimal import Decimal

import pytest

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import stockflow.models  # noqa: F401
from stockflow.core.config import settings
from stockflow.core.deps import get_db, get_sender, get_session_factory
from stockflow.core.security import hash_password
from stockflow.db.base import Base
from stockflow.main import app
from stockflow.models.category import Category
from stockflow.models.location import LOCATION_PHYSICAL, Location
from stockflow.models.product import Product
from stockflow.models.user import ROLE_ADMIN, User


class RecordingSender:
    """Notification sender double that remembers every dispatch."""

    name = "recording"

    def __init__(self, result: bool = True):
        self.result = result
        self.sent: list[tuple[str, str]] = []

    def send(self, phone: str, message: str) -> bool:
        self.sent.append((phone, message))
        return self.result


def _make_session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine, sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def sender():
    return RecordingSender()


@pytest.fixture()
def session_local():
    engine, factory = _make_session_factory()
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_local):
    session = session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def admin(db):
    user = User(email="admin@example.com", name="Admin", hashed_password=hash_password("password123"), role=ROLE_ADMIN)
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def make_product(db):
    def _make(name: str = "Kabel Roll", *, stock: int = 10, prefix: str = "ELK", **fields) -> Product:
        category = db.query(Category).filter(Category.prefix == prefix).one_or_none()
        if category is None:
            category = Category(name=f"Category {prefix}", prefix=prefix)
            db.add(category)
            db.flush()
        count = db.query(Product).filter(Product.category_id == category.id).count()
        product = Product(
            sku=f"{prefix}-{count + 1:03d}",
            name=name,
            category_id=category.id,
            current_stock=stock,
            price=fields.pop("price", Decimal("1000")),
            cost_price=fields.pop("cost_price", Decimal("600")),
            **fields,
        )
        db.add(product)
        db.commit()
        return product

    return _make


@pytest.fixture()
def make_location(db):
    def _make(name: str, *, kind: str = LOCATION_PHYSICAL, parent_id: int | None = None) -> Location:
        location = Location(name=name, type=kind, parent_id=parent_id)
        db.add(location)
        db.commit()
        return location

    return _make


@pytest.fixture()
def test_context(session_local, sender):
    original_secret = settings.secret_key
    settings.secret_key = "test-secret-key"

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_local
    app.dependency_overrides[get_sender] = lambda: sender

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    settings.secret_key = original_secret
