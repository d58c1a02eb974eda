import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("FASTLIPA_API_KEY", "test-fastlipa-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from paylink.db.base_model import Base
from paylink.db.database import get_db
from paylink.utils.deps import get_gateway_client
from paylink.utils.exceptions import GatewayError
from paylink.v1 import models  # noqa: F401
from paylink.v1.services.payment_service import PaymentService


class FakeFastlipaClient:
    """In-memory stand-in for the Fastlipa API that records every call"""

    def __init__(self):
        self.created = []
        self.status_checks = []
        self.create_response = {
            "status": "success",
            "message": "Transaction created",
            "data": {"tranid": "pay_test123", "amount": 1000, "number": "712345678"}
        }
        self.status_response = {
            "status": "success",
            "data": {"tranid": "pay_test123", "payment_status": "COMPLETED", "amount": 1000}
        }
        self.error = None

    async def create_transaction(self, number, amount, name):
        self.created.append({"number": number, "amount": amount, "name": name})
        if self.error:
            raise self.error
        return self.create_response

    async def status_transaction(self, transaction_id):
        self.status_checks.append(transaction_id)
        if self.error:
            raise self.error
        return self.status_response

    def fail_with(self, message="Gateway request failed: connection refused"):
        self.error = GatewayError(message)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db_session(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeFastlipaClient()


@pytest.fixture
def service(db_session, gateway):
    return PaymentService(db=db_session, gateway=gateway, base_url="http://testserver/")


@pytest.fixture
def client(db_session, gateway):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_client] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()
