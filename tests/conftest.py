from datetime import datetime
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

import storefront.models  # noqa: F401
from storefront.core.security import create_access_token
from storefront.db.session import get_session
from storefront.main import app
from storefront.models.admin_user import AdminRole, AdminUser
from storefront.models.product import Brand, Product
from storefront.models.promotion import Promotion
from storefront.models.user import User
from storefront.services.promotion import CartLine, PromotionEngine
from storefront.services.promotion_store import SQLPromotionStore

NOW = datetime(2025, 6, 1, 12, 0, 0)


@pytest.fixture
def session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(session):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    # No context manager: skips the lifespan hook that creates the on-disk database
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user(session):
    user = User(email="ada@example.com", name="Ada")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def other_user(session):
    user = User(email="tunde@example.com", name="Tunde")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}


@pytest.fixture
def admin_headers(session, other_user):
    session.add(AdminUser(user_id=other_user.id, role=AdminRole.MARKETING_MANAGER))
    session.commit()
    return {"Authorization": f"Bearer {create_access_token({'sub': other_user.email})}"}


@pytest.fixture
def brands(session):
    brand_x = Brand(name="Brand X", slug="brand-x")
    brand_y = Brand(name="Brand Y", slug="brand-y")
    session.add(brand_x)
    session.add(brand_y)
    session.commit()
    session.refresh(brand_x)
    session.refresh(brand_y)
    return brand_x, brand_y


@pytest.fixture
def products(session, brands):
    brand_x, brand_y = brands
    shirt = Product(name="Shirt", slug="shirt", brand_id=brand_x.id, selling_price=2000.0, stock_quantity=10)
    cap = Product(name="Cap", slug="cap", brand_id=brand_y.id, selling_price=1000.0, stock_quantity=10)
    session.add(shirt)
    session.add(cap)
    session.commit()
    session.refresh(shirt)
    session.refresh(cap)
    return shirt, cap


@pytest.fixture
def cart(products):
    shirt, cap = products
    return [
        CartLine(product_id=shirt.id, quantity=1, price=shirt.selling_price, brand_id=shirt.brand_id),
        CartLine(product_id=cap.id, quantity=1, price=cap.selling_price, brand_id=cap.brand_id),
    ]


@pytest.fixture
def make_promotion(session):
    def _make(**overrides):
        fields = {
            "code": "SAVE10",
            "name": "Ten percent off",
            "discount_value": 10,
            "starts_at": datetime(2025, 1, 1),
        }
        fields.update(overrides)
        promotion = Promotion(**fields)
        session.add(promotion)
        session.commit()
        session.refresh(promotion)
        return promotion
    return _make


@pytest.fixture
def engine_at(session):
    """Engine over the test database with its clock pinned to ``now``."""
    def _engine(now=NOW, store=None):
        return PromotionEngine(store or SQLPromotionStore(session), clock=lambda: now, currency_symbol="₦")
    return _engine
