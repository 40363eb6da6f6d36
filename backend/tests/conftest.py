from __future__ import annotations

from collections.abc import Callable, Generator
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, delete

from shop.api.deps import get_db
from shop.core.config import settings
from shop.core.security import create_access_token, generate_csrf_token
from shop.main import app
from shop.models import Card, Notification, Order, Product, User, now_ms

ADMIN_NAME = "shopkeeper"


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        session.rollback()
        # Clean tables after each test (children first).
        session.exec(delete(Notification))
        session.exec(delete(Order))
        session.exec(delete(Card))
        session.exec(delete(Product))
        session.exec(delete(User))
        session.commit()


@pytest.fixture(scope="function")
def client(engine, db, monkeypatch) -> Generator[TestClient, None, None]:
    monkeypatch.setattr(settings, "ADMIN_USERS", [ADMIN_NAME])

    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(db) -> Callable[..., Product]:
    """创建商品并导入指定数量的卡密（key-1, key-2, ...）"""

    def _make(
        product_id: str = "p1",
        cards: int = 0,
        price: str = "9.90",
        **fields,
    ) -> Product:
        product = Product(
            id=product_id,
            name=fields.pop("name", f"Product {product_id}"),
            price=Decimal(price),
            created_at=now_ms(),
            **fields,
        )
        db.add(product)
        db.add_all(
            [Card(product_id=product_id, card_key=f"{product_id}-key-{i + 1}") for i in range(cards)]
        )
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def make_user(db) -> Callable[..., tuple[User, dict[str, str]]]:
    """创建登录用户，返回 (用户, 带 token 和 CSRF 的请求头)"""

    def _make(user_id: str = "u1", username: str | None = None, **fields) -> tuple[User, dict[str, str]]:
        user = User(user_id=user_id, username=username or f"user_{user_id}", **fields)
        db.add(user)
        db.commit()
        db.refresh(user)
        headers = {
            "Authorization": f"Bearer {create_access_token(user_id)}",
            "X-CSRF-Token": generate_csrf_token(user_id),
        }
        return user, headers

    return _make


@pytest.fixture
def admin(make_user) -> dict[str, str]:
    """管理员请求头（用户名在 ADMIN_USERS 中）"""
    _, headers = make_user("admin1", username=ADMIN_NAME)
    return headers
