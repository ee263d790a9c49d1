"""pytest setup: a fresh SQLite database per test and an app client bound to it."""

from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from decimal import Decimal

# Must be set before teashop is imported: the module-level engine reads it.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTH_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from teashop.auth import issue_token
from teashop.db import get_session, make_engine, session_scope
from teashop.main import app
from teashop.models import Base, Product


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    """File-backed so that several threads can share the database."""
    eng = make_engine(f"sqlite:///{tmp_path / 'shop.db'}")
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, future=True)


@pytest.fixture
def add_product(session_factory: sessionmaker) -> Callable[..., int]:
    """Insert a product and return its id."""

    def _add(name: str = "Liubao 2015", price: str = "88.00", stock: int = 10, **extra) -> int:
        with session_factory.begin() as s:
            p = Product(name=name, price=Decimal(price), stock=stock, **extra)
            s.add(p)
            s.flush()
            return p.id

    return _add


@pytest.fixture
def stock_of(session_factory: sessionmaker) -> Callable[[int], int]:
    def _stock(product_id: int) -> int:
        with session_factory() as s:
            return s.get(Product, product_id).stock

    return _stock


@pytest.fixture
def client(session_factory: sessionmaker) -> Generator[TestClient, None, None]:
    def _override() -> Iterator[Session]:
        yield from session_scope(session_factory)

    app.dependency_overrides[get_session] = _override
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


def bearer(user_id: str = "42", role: str = "customer") -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token(user_id, role=role)}"}


@pytest.fixture
def user_headers() -> dict[str, str]:
    return bearer("42")


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return bearer("admin-1", role="admin")


@pytest.fixture
def headers_for() -> Callable[..., dict[str, str]]:
    return bearer
