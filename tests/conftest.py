from __future__ import annotations

import os
from collections.abc import Generator

# Settings 在导入 app 时实例化，必填项需要先准备好
os.environ.setdefault("PROJECT_NAME", "order-payments-test")
os.environ.setdefault("POSTGRES_SERVER", "localhost")
os.environ.setdefault("POSTGRES_USER", "postgres")
os.environ.setdefault("POSTGRES_PASSWORD", "postgres")
os.environ.setdefault("POSTGRES_DB", "app_test")

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine, delete  # noqa: E402

from app.api.deps import get_db, get_providers  # noqa: E402
from app.enums import PaymentProvider  # noqa: E402
from app.main import app  # noqa: E402
from app.models import (  # noqa: E402
    Order,
    OrderAuditEntry,
    PaymentEvent,
    PaymentMethod,
    ProcessedEvent,
)
from app.payments import ProviderRegistry  # noqa: E402
from app.payments.paypal_gateway import PayPalGateway  # noqa: E402
from app.payments.stripe_gateway import StripeGateway  # noqa: E402
from tests.utils import (  # noqa: E402
    PAYPAL_BASE_URL,
    PAYPAL_WEBHOOK_ID,
    STRIPE_WEBHOOK_SECRET,
    FakePayPal,
    FakeStripeClient,
)


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
        # Clean tables after each test.
        session.exec(delete(OrderAuditEntry))
        session.exec(delete(ProcessedEvent))
        session.exec(delete(PaymentEvent))
        session.exec(delete(PaymentMethod))
        session.exec(delete(Order))
        session.commit()


@pytest.fixture
def stripe_client() -> FakeStripeClient:
    return FakeStripeClient()


@pytest.fixture
def paypal() -> FakePayPal:
    return FakePayPal()


@pytest.fixture
def providers(stripe_client, paypal) -> Generator[ProviderRegistry, None, None]:
    registry = ProviderRegistry(
        {
            PaymentProvider.stripe: StripeGateway(
                api_key="sk_test_123",
                webhook_secret=STRIPE_WEBHOOK_SECRET,
                client=stripe_client,
            ),
            PaymentProvider.paypal: PayPalGateway(
                client_id="paypal-client",
                client_secret="paypal-secret",
                webhook_id=PAYPAL_WEBHOOK_ID,
                base_url=PAYPAL_BASE_URL,
                frontend_url="http://localhost:8081",
                transport=httpx.MockTransport(paypal.handler),
            ),
        }
    )
    yield registry
    registry.close()


@pytest.fixture(scope="function")
def client(engine, db, providers) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_providers] = lambda: providers
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
