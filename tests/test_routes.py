import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from config import settings
from conftest import ONLINE_CREATE, FakeLoader, backend_transport, make_backend
from storefront.main import app
from storefront.services.gateway import GatewayLoader, HostedCheckoutGateway, ScriptRegistry
from storefront.services.location import LocationLookup
from storefront.state import store

SCRIPT_URL = "https://checkout.gateway.test/v1/checkout.js"

CUSTOMER = {
    "first_name": "Asha",
    "last_name": "Rao",
    "phone": "9876543210",
    "email": "asha@example.com",
    "address": "12 MG Road",
    "zip": "500001",
}

ITEMS = [
    {"id": "frame-round", "name": "Round Titanium", "price": 1999, "quantity": 1},
    {
        "id": "case",
        "name": "Hard Case",
        "price": 200,
        "quantity": 1,
        "selected_lens": {"id": "cloth", "name": "Microfiber Cloth", "price": 50},
    },
    {"id": "spray", "name": "Lens Cleaner", "price": 125, "quantity": 2},
]


class SlowLoader(FakeLoader):
    async def ensure_loaded(self) -> bool:
        await asyncio.sleep(0.5)
        return await super().ensure_loaded()


def create_order(request):
    body = json.loads(request.content)
    if body["paymentMethod"] == "COD":
        return httpx.Response(200, json={"success": True, "internal_order_id": "ORD123"})
    return httpx.Response(200, json=ONLINE_CREATE)


def postal_handler(request):
    if request.url.path.endswith("/500001"):
        return httpx.Response(200, json=[{
            "Status": "Success",
            "PostOffice": [{"District": "Hyderabad", "State": "Telangana"}],
        }])
    return httpx.Response(200, json=[{"Status": "Error", "PostOffice": None}])


@pytest.fixture
def backend():
    return backend_transport(create=create_order, verify={"success": True, "orderId": "ORD456"})


@pytest.fixture
def client(monkeypatch, backend):
    monkeypatch.setattr(settings, "LOOKUP_DEBOUNCE_SECONDS", 0.0)
    monkeypatch.setattr(settings, "CHECKOUT_WAIT_SECONDS", 5.0)

    scripts = ScriptRegistry()
    services = store.Services(
        backend=make_backend(backend),
        scripts=scripts,
        gateway=HostedCheckoutGateway(),
        location=LocationLookup(
            base_url="https://postal.test/pincode",
            timeout=1.0,
            transport=httpx.MockTransport(postal_handler),
        ),
        loader=GatewayLoader(
            scripts,
            SCRIPT_URL,
            timeout=1.0,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"window.Razorpay = {};")),
        ),
    )
    store.reset_state(services)
    with TestClient(app) as test_client:
        yield test_client
    store.reset_state(store.Services())


def start_online_checkout(client, session_id="session-1"):
    response = client.post(
        f"/sessions/{session_id}/checkout",
        json={"items": ITEMS, "payment_method": "ONLINE", "customer": CUSTOMER},
    )
    assert response.status_code == 200
    return response.json()


def test_online_checkout_round_trip(client, backend):
    view = start_online_checkout(client)

    assert view["state"] == "AWAITING_GATEWAY"
    assert view["total"] == 2499
    assert view["gateway"]["order_id"] == "order_Rzp123"
    assert view["gateway"]["key"] == "rzp_test_key"
    assert view["gateway"]["prefill"] == {
        "name": "Asha Rao",
        "email": "asha@example.com",
        "contact": "9876543210",
    }
    assert backend.bodies("/payment/create-order")[0]["user"]["city"] == "Hyderabad"

    response = client.post(
        f"/checkouts/{view['attempt_id']}/gateway/success",
        json={
            "razorpay_order_id": "order_Rzp123",
            "razorpay_payment_id": "pay_Abc987",
            "razorpay_signature": "deadbeef",
        },
    )
    assert response.status_code == 200
    outcome = response.json()["outcome"]
    assert outcome["status"] == "SUCCESS"
    assert outcome["order_id"] == "ORD456"
    assert outcome["confirmation_link"].startswith("https://wa.me/")
    assert response.json()["gateway"] is None

    invoice = client.get(outcome["invoice_url"])
    assert invoice.status_code == 200
    assert invoice.headers["content-type"] == "application/pdf"
    assert "Invoice_ORD456.pdf" in invoice.headers["content-disposition"]
    assert invoice.content.startswith(b"%PDF")


def test_cod_checkout_completes_immediately(client, backend):
    response = client.post(
        "/sessions/session-cod/checkout",
        json={"items": ITEMS[:1], "payment_method": "COD", "customer": CUSTOMER},
    )

    assert response.status_code == 200
    view = response.json()
    assert view["state"] == "COD_CONFIRMED"
    assert view["outcome"]["status"] == "SUCCESS"
    assert view["outcome"]["order_id"] == "ORD123"
    assert view["gateway"] is None
    assert store.services.scripts.get(SCRIPT_URL) is None
    assert client.get(f"/checkouts/{view['attempt_id']}").json()["state"] == "COD_CONFIRMED"


def test_invalid_form_is_rejected_before_submission(client, backend):
    client.put("/sessions/session-2/form", json={"first_name": "Asha", "phone": "12345"})

    response = client.post("/sessions/session-2/checkout", json={"items": ITEMS, "payment_method": "COD"})

    assert response.status_code == 422
    errors = response.json()["detail"]["errors"]
    assert errors["phone"] == "Valid phone required"
    assert errors["last_name"] == "Last name is required"
    assert backend.requests == []


def test_form_updates_and_autofill(client):
    response = client.put("/sessions/session-3/form", json={"zip": "500001", "phone": "98-7654-3210"})
    assert response.status_code == 200
    assert response.json()["fields"]["phone"] == "9876543210"

    client.post("/sessions/session-3/checkout", json={"items": ITEMS, "payment_method": "COD"})
    form = client.get("/sessions/session-3/form").json()
    assert form["fields"]["city"] == "Hyderabad"
    assert form["fields"]["state"] == "Telangana"


def test_unknown_form_field(client):
    response = client.put("/sessions/session-4/form", json={"country": "IN"})
    assert response.status_code == 400


def test_second_submission_is_blocked_while_gateway_open(client):
    view = start_online_checkout(client, "session-5")

    response = client.post(
        "/sessions/session-5/checkout",
        json={"items": ITEMS, "payment_method": "ONLINE", "customer": CUSTOMER},
    )
    assert response.status_code == 409

    client.post(f"/checkouts/{view['attempt_id']}/gateway/dismiss")
    retry = start_online_checkout(client, "session-5")
    assert retry["attempt_id"] != view["attempt_id"]


def test_dismiss_cancels_and_closes_the_session(client, backend):
    view = start_online_checkout(client)

    response = client.post(f"/checkouts/{view['attempt_id']}/gateway/dismiss")
    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "CANCELLED"
    assert body["outcome"]["status"] == "CANCELLED"
    assert "resume checkout" in body["outcome"]["message"]

    late = client.post(
        f"/checkouts/{view['attempt_id']}/gateway/success",
        json={
            "razorpay_order_id": "order_Rzp123",
            "razorpay_payment_id": "pay_Abc987",
            "razorpay_signature": "deadbeef",
        },
    )
    assert late.status_code == 409
    assert backend.bodies("/payment/verify") == []


def test_gateway_failure_is_reported(client):
    view = start_online_checkout(client)

    response = client.post(
        f"/checkouts/{view['attempt_id']}/gateway/failure",
        json={"description": "Payment declined by bank", "code": "BAD_REQUEST_ERROR"},
    )

    outcome = response.json()["outcome"]
    assert outcome["status"] == "FAILED"
    assert outcome["reason"] == "Payment declined by bank"
    assert "try again" in outcome["message"]


def test_invoice_requires_success(client):
    view = start_online_checkout(client)

    response = client.get(f"/checkouts/{view['attempt_id']}/invoice")
    assert response.status_code == 409

    client.post(f"/checkouts/{view['attempt_id']}/gateway/dismiss")


def test_unknown_attempt(client):
    assert client.get("/checkouts/missing").status_code == 404
    assert client.post("/checkouts/missing/gateway/dismiss").status_code == 404


def test_location_lookup(client):
    found = client.get("/location/500001")
    assert found.status_code == 200
    assert found.json() == {"city": "Hyderabad", "state": "Telangana"}

    assert client.get("/location/999999").status_code == 404


def test_gateway_script_is_served_once_loaded(client):
    response = client.get("/gateway/checkout.js")
    assert response.status_code == 200
    assert response.content == b"window.Razorpay = {};"
    assert len(store.services.scripts) == 1

    client.get("/gateway/checkout.js")
    assert len(store.services.scripts) == 1


def test_cash_on_delivery_refused_where_unavailable(client, monkeypatch):
    no_cod = backend_transport(
        create=create_order,
        delivery={"available": True, "type": "STANDARD", "days": "3-5 Days", "cod": False},
    )
    monkeypatch.setattr(store.services, "backend", make_backend(no_cod))

    response = client.post(
        "/sessions/session-6/checkout",
        json={"items": ITEMS[:1], "payment_method": "COD", "customer": CUSTOMER},
    )

    assert response.status_code == 422
    assert "payment_method" in response.json()["detail"]["errors"]
    assert no_cod.bodies("/payment/create-order") == []

    online = client.post("/sessions/session-6/checkout", json={"items": ITEMS, "payment_method": "ONLINE"})
    assert online.status_code == 200
    client.post(f"/checkouts/{online.json()['attempt_id']}/gateway/dismiss")


def test_evicted_attempt_is_read_back_from_the_database(client, monkeypatch):
    async def stored_attempt(attempt_id):
        if attempt_id != "attempt-old":
            return {}
        return {
            "attempt_id": "attempt-old",
            "session_id": "session-old",
            "payment_method": "COD",
            "state": "COD_CONFIRMED",
            "total": 1299,
            "gateway_order_id": None,
            "order_id": "ORD900",
            "reason": None,
            "history": [],
        }

    monkeypatch.setattr(store.postgres_store, "get_attempt", stored_attempt)

    view = client.get("/checkouts/attempt-old").json()
    assert view["state"] == "COD_CONFIRMED"
    assert view["outcome"]["status"] == "SUCCESS"
    assert view["outcome"]["invoice_url"] == "/checkouts/attempt-old/invoice"

    invoice = client.get("/checkouts/attempt-old/invoice")
    assert invoice.status_code == 200
    assert "Invoice_ORD900.pdf" in invoice.headers["content-disposition"]

    assert client.get("/checkouts/attempt-missing").status_code == 404


def test_callback_before_the_gateway_opens(client, monkeypatch):
    monkeypatch.setattr(settings, "CHECKOUT_WAIT_SECONDS", 0.05)
    monkeypatch.setattr(store.services, "loader", SlowLoader())

    view = start_online_checkout(client, "session-7")
    assert view["state"] == "AWAITING_GATEWAY"
    assert view["gateway"] is None

    response = client.post(f"/checkouts/{view['attempt_id']}/gateway/dismiss")
    assert response.status_code == 409
    assert response.json()["detail"] == "Payment gateway session is not open yet"
