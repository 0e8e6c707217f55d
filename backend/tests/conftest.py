import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv
import pytest

# Must be set before the app (and its engine) is imported
os.environ.setdefault("PYTEST_RUN", "1")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOG_FORMAT", "plain")

# Load environment variables for tests
load_dotenv(Path(__file__).resolve().parents[1] / '.env.test')

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from marketplace.main import app  # noqa: E402
from marketplace import schemas  # noqa: E402
from marketplace.api.dependencies import (  # noqa: E402
    get_current_user,
    get_current_user_optional,
    get_db,
    get_settings,
)
from marketplace.crud import crud_order  # noqa: E402
from marketplace.models import User, UserType  # noqa: E402
from marketplace.models.base import BaseModel  # noqa: E402

from payment_helpers import fake_cardlink, payment_settings  # noqa: E402,F401


@pytest.fixture(autouse=True)
def reset_dependency_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def session_factory():
    """Fresh in-memory database wired into the app's ``get_db``."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    BaseModel.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)

    def override_db():
        db = Session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    yield Session
    engine.dispose()


@pytest.fixture
def settings_override():
    """Install payment settings on the app; call again to change them mid-test."""

    def _install(**overrides):
        cfg = payment_settings(**overrides)
        app.dependency_overrides[get_settings] = lambda: cfg
        return cfg

    return _install


@pytest.fixture
def make_user(session_factory):
    def _make(email: str, first_name: str = "Thandi", last_name: str = "Buyer") -> User:
        db = session_factory()
        user = User(
            email=email,
            password="x",
            first_name=first_name,
            last_name=last_name,
            user_type=UserType.BUYER,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        db.close()
        return user

    return _make


@pytest.fixture
def buyer(make_user):
    return make_user("buyer@test.com")


@pytest.fixture
def other_buyer(make_user):
    return make_user("other@test.com", first_name="Sipho")


@pytest.fixture
def act_as():
    """Make ``user`` the caller for both the strict and optional auth dependencies."""

    def _act(user):
        app.dependency_overrides[get_current_user] = lambda: user
        app.dependency_overrides[get_current_user_optional] = lambda: user

    return _act


@pytest.fixture
def make_order(session_factory):
    def _make(buyer, total: str = "299.99", payment_method: str = "qrpay") -> str:
        db = session_factory()
        order_in = schemas.OrderCreate(
            items=[
                schemas.OrderItemCreate(
                    product_id="prod-1",
                    seller_store_id="store-1",
                    product_name="Beaded necklace",
                    quantity=1,
                    unit_price=Decimal(total),
                )
            ],
            payment_method=payment_method,
        )
        order = crud_order.create_order_with_items(
            db, buyer_id=buyer.id, order_in=order_in, commission_rate=Decimal("0.08")
        )
        order_id = order.id
        db.close()
        return order_id

    return _make
