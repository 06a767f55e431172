import time
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from manuflix.core.config import Settings
from manuflix.db import utcnow
from manuflix.main import create_app
from manuflix.schemas.checkout import Customer, SubscriptionPlanSchema
from manuflix.services.checkout_service import PaymentSessionOrchestrator
from manuflix.services.plan_catalog import PlanCatalog
from manuflix.services.pushinpay_service import PushinPayClient
from manuflix.services.sql_store import SqlStore

JWT_SECRET = "test-jwt-secret"
WEBHOOK_SECRET = "test-webhook-secret"
USER_ID = "5b0f7a52-1d7e-4c4e-9b1a-0d6f2f1e8a11"
OTHER_USER_ID = "a3c2e1d0-9f8e-4d7c-8b6a-5e4d3c2b1a00"
CALLBACK_URL = "https://api.manuflix.test/api/webhooks/pushinpay"

TEST_PLANS = [
    SubscriptionPlanSchema(id="monthly", name="Plano Mensal", price=Decimal("19.90"), duration_days=30),
    SubscriptionPlanSchema(id="quarterly", name="Plano Trimestral", price=Decimal("49.90"), duration_days=90),
    SubscriptionPlanSchema(
        id="lifetime", name="Acesso Vitalício", price=Decimal("29.90"), duration_days=0, is_lifetime=True
    ),
]


class FakePushinPay:
    """In-memory PushinPay behind httpx.MockTransport"""

    def __init__(self):
        self.requests = []
        self.statuses = []
        self.default_status = "pending"
        self.status_failures = 0
        self.charge_status_code = 200
        self.charge_body = None
        self.expiration = timedelta(hours=1)
        self._counter = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.method == "POST" and request.url.path.endswith("/pix/charges"):
            if self.charge_status_code >= 400:
                return httpx.Response(self.charge_status_code, json={"message": "Serviço indisponível"})
            self._counter += 1
            body = self.charge_body or {
                "id": f"charge-{self._counter}",
                "qrcode_image": "data:image/png;base64,iVBORw0KGgoAAAANSUhEUg==",
                "copy_paste": f"00020126580014br.gov.bcb.pix0136manuflix-{self._counter}",
                "expiration_date": (utcnow() + self.expiration).isoformat(),
                "status": "created",
            }
            return httpx.Response(200, json=body)

        if request.method == "GET" and "/pix/charges/" in request.url.path:
            if self.status_failures > 0:
                self.status_failures -= 1
                raise httpx.ConnectError("connection reset by peer", request=request)
            status = self.statuses.pop(0) if self.statuses else self.default_status
            charge_id = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"id": charge_id, "status": status})

        return httpx.Response(404, json={"message": "Not found"})

    @property
    def charge_requests(self):
        return [r for r in self.requests if r.method == "POST"]

    @property
    def status_calls(self) -> int:
        return sum(1 for r in self.requests if r.method == "GET")


def seed_plans(store: SqlStore) -> SqlStore:
    for plan in TEST_PLANS:
        store.add_plan(plan)
    return store


def make_token(user_id: str = USER_ID, secret: str = JWT_SECRET, audience: str = "authenticated") -> str:
    return jwt.encode(
        {"sub": user_id, "aud": audience, "exp": int(time.time()) + 3600},
        secret,
        algorithm="HS256",
    )


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        PUSHINPAY_TOKEN="test-token",
        PUSHINPAY_WEBHOOK_SECRET=WEBHOOK_SECRET,
        SUPABASE_JWT_SECRET=JWT_SECRET,
        BACKEND_URL="https://api.manuflix.test",
        POLL_INTERVAL_SECONDS=0.02,
        COUNTDOWN_TICK_SECONDS=1.0,
        TESTING=True,
    )


@pytest.fixture
def fake_pushinpay():
    return FakePushinPay()


@pytest.fixture
def gateway(fake_pushinpay):
    return PushinPayClient(
        token="test-token",
        base_url="https://pushinpay.test/v1",
        transport=httpx.MockTransport(fake_pushinpay.handler),
    )


@pytest.fixture
def store():
    return seed_plans(SqlStore.from_url("sqlite:///:memory:"))


@pytest.fixture
def make_store():
    """Seeded in-memory store of the given SqlStore subclass"""
    def _make(cls=SqlStore):
        return seed_plans(cls.from_url("sqlite:///:memory:"))
    return _make


@pytest.fixture
def make_orchestrator(gateway):
    def _make(store):
        return PaymentSessionOrchestrator(
            gateway=gateway,
            store=store,
            catalog=PlanCatalog(store),
            callback_url=CALLBACK_URL,
        )
    return _make


@pytest.fixture
def orchestrator(make_orchestrator, store):
    return make_orchestrator(store)


@pytest.fixture
def customer():
    return Customer(name="Maria Silva", email="maria@example.com", cpf="123.456.789-09")


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def app(settings, store, gateway):
    return create_app(settings=settings, store=store, gateway=gateway)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client

