import json

from fastapi.testclient import TestClient

from manuflix.main import create_app
from manuflix.services.sql_store import SqlStore
from tests.conftest import OTHER_USER_ID, make_token

CHECKOUT_BODY = {
    "plan_id": "lifetime",
    "customer": {"name": "Maria Silva", "email": "maria@example.com", "cpf": "123.456.789-09"},
}


class CountingPlanStore(SqlStore):
    plan_reads = 0

    def list_plans(self):
        self.plan_reads += 1
        return super().list_plans()


def _checkout(client, headers, body=CHECKOUT_BODY):
    return client.post("/api/checkout/pix", json=body, headers=headers)


def test_root_and_health(client):
    assert client.get("/").json()["success"] is True

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"


def test_list_plans(client):
    response = client.get("/api/plans")

    assert response.status_code == 200
    plans = response.json()["plans"]
    assert [p["id"] for p in plans] == ["monthly", "lifetime", "quarterly"]
    assert plans[1]["period"] == "pagamento único"


def test_checkout_requires_auth(client):
    assert _checkout(client, {}).status_code == 401


def test_checkout_rejects_foreign_token(client):
    headers = {"Authorization": f"Bearer {make_token(secret='another-secret')}"}
    assert _checkout(client, headers).status_code == 401


def test_create_checkout(client, auth_headers, fake_pushinpay):
    response = _checkout(client, auth_headers)

    assert response.status_code == 200
    session = response.json()["session"]
    assert session["state"] == "AWAITING_PAYMENT"
    assert session["charge_id"] == "charge-1"
    assert session["copy_paste"].startswith("000201")
    assert session["seconds_left"] > 3500
    assert json.loads(fake_pushinpay.charge_requests[0].content)["amount"] == 2990


def test_checkout_bad_customer(client, auth_headers, fake_pushinpay):
    body = {"plan_id": "lifetime", "customer": {"name": "", "email": "maria"}}
    response = _checkout(client, auth_headers, body)

    assert response.status_code == 400
    assert set(response.json()["errors"]) == {"name", "email"}
    assert fake_pushinpay.requests == []


def test_bad_customer_is_rejected_before_reading_plans(settings, make_store, gateway, auth_headers):
    store = make_store(CountingPlanStore)
    store.plan_reads = 0
    body = {"plan_id": "lifetime", "customer": {"name": "Maria", "email": "maria@"}}

    with TestClient(create_app(settings=settings, store=store, gateway=gateway)) as client:
        response = _checkout(client, auth_headers, body)

    assert response.status_code == 400
    assert store.plan_reads == 0


def test_checkout_unknown_plan(client, auth_headers):
    body = {**CHECKOUT_BODY, "plan_id": "weekly"}
    assert _checkout(client, auth_headers, body).status_code == 400


def test_checkout_gateway_failure_is_retryable(client, auth_headers, fake_pushinpay):
    fake_pushinpay.charge_status_code = 503
    response = _checkout(client, auth_headers)

    assert response.status_code == 502
    assert response.json()["retryable"] is True
    assert "Serviço indisponível" in response.json()["detail"]


def test_status_poll_settles_payment(client, auth_headers, fake_pushinpay):
    charge_id = _checkout(client, auth_headers).json()["session"]["charge_id"]
    assert client.get("/api/subscriptions/me", headers=auth_headers).json()["active"] is False

    fake_pushinpay.default_status = "paid"
    response = client.get(f"/api/checkout/pix/{charge_id}", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["status"] == "PAID"

    me = client.get("/api/subscriptions/me", headers=auth_headers).json()
    assert me["active"] is True
    assert me["subscription"]["is_lifetime"] is True
    assert me["subscription"]["expires_at"] is None


def test_status_of_another_users_charge(client, auth_headers):
    charge_id = _checkout(client, auth_headers).json()["session"]["charge_id"]
    other = {"Authorization": f"Bearer {make_token(OTHER_USER_ID)}"}

    assert client.get(f"/api/checkout/pix/{charge_id}", headers=other).status_code == 404
    assert client.delete(f"/api/checkout/pix/{charge_id}", headers=other).status_code == 404


def test_cancel_checkout(client, app, auth_headers):
    charge_id = _checkout(client, auth_headers).json()["session"]["charge_id"]

    response = client.delete(f"/api/checkout/pix/{charge_id}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["charge_id"] == charge_id
    assert app.state.registry.get(charge_id) is None

    assert client.delete(f"/api/checkout/pix/{charge_id}", headers=auth_headers).status_code == 404


def test_event_stream_ends_when_paid(client, auth_headers, fake_pushinpay):
    charge_id = _checkout(client, auth_headers).json()["session"]["charge_id"]

    with client.stream("GET", f"/api/checkout/pix/{charge_id}/events", headers=auth_headers) as response:
        assert response.status_code == 200
        fake_pushinpay.default_status = "paid"
        states = [
            json.loads(line[len("data:"):])["state"]
            for line in response.iter_lines()
            if line.startswith("data:") and line[len("data:"):].strip()
        ]

    assert states[-1] == "PAID"


def test_event_stream_unknown_session(client, auth_headers):
    assert client.get("/api/checkout/pix/charge-404/events", headers=auth_headers).status_code == 404
