"""
Shared fixtures and fakes for the checkout test suite.
"""

import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from storefront.models.checkout import CartItem, CustomerDetails, DeliveryInfo, LensOption
from storefront.models.gateway import GatewayEvent, GatewayOptions
from storefront.services.backend import StorefrontBackend
from storefront.services.location import Location

STANDARD_DELIVERY = {
    "available": True,
    "type": "STANDARD",
    "days": "3-5 Days",
    "cod": True,
    "message": "Standard Delivery Available",
}


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler):
        self.requests: List[httpx.Request] = []

        def record(request: httpx.Request):
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    def paths(self) -> List[str]:
        return [request.url.path for request in self.requests]

    def bodies(self, suffix: str) -> List[Dict[str, Any]]:
        return [
            json.loads(request.content)
            for request in self.requests
            if request.url.path.endswith(suffix)
        ]


def backend_transport(
    create: Any = None,
    verify: Any = None,
    invoice: bytes = b"%PDF-1.4 invoice",
    delivery: Any = None,
) -> RecordingTransport:
    """Fake order backend.

    `create`, `verify` and `delivery` may be a JSON dict, an httpx.Response, an
    exception instance to raise, or a callable taking the request.
    """

    def respond(reply, request):
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)

    def handler(request: httpx.Request):
        path = request.url.path
        if path.endswith("/payment/create-order"):
            return respond(create, request)
        if path.endswith("/payment/verify"):
            return respond(verify, request)
        if path.endswith("/address/check-delivery"):
            return respond(delivery if delivery is not None else STANDARD_DELIVERY, request)
        if "/payment/invoice/" in path:
            return httpx.Response(200, content=invoice, headers={"Content-Type": "application/pdf"})
        return httpx.Response(404, json={"success": False, "message": "Not found"})

    return RecordingTransport(handler)


def make_backend(transport: httpx.AsyncBaseTransport) -> StorefrontBackend:
    return StorefrontBackend(base_url="http://backend.test/api", timeout=1.0, transport=transport)


class FakeLoader:
    def __init__(self, available: bool = True):
        self.available = available
        self.calls = 0

    async def ensure_loaded(self) -> bool:
        self.calls += 1
        return self.available


class FakeGateway:
    """Gateway whose customer always answers with the same event."""

    def __init__(self, event: Optional[GatewayEvent] = None):
        self.event = event or GatewayEvent.dismiss()
        self.opened: List[GatewayOptions] = []

    async def open(self, options: GatewayOptions) -> GatewayEvent:
        self.opened.append(options)
        return self.event


class FakeDelivery:
    def __init__(self, answers: Optional[Dict[str, Any]] = None):
        self.answers = answers or {}
        self.calls: List[str] = []

    async def check_delivery(self, pincode: str) -> DeliveryInfo:
        self.calls.append(pincode)
        answer = self.answers.get(pincode, STANDARD_DELIVERY)
        if isinstance(answer, Exception):
            raise answer
        return DeliveryInfo.model_validate(answer)


class FakeLookup:
    def __init__(self, known: Optional[Dict[str, Location]] = None):
        self.known = known or {}
        self.calls: List[str] = []

    async def lookup(self, code: str) -> Optional[Location]:
        self.calls.append(code)
        return self.known.get(code)


@pytest.fixture
def customer() -> CustomerDetails:
    return CustomerDetails(
        first_name="Asha",
        last_name="Rao",
        phone="9876543210",
        email="asha@example.com",
        address="12 MG Road",
        city="Hyderabad",
        state="Telangana",
        zip="500001",
    )


@pytest.fixture
def cart() -> List[CartItem]:
    """Cart totalling 1299."""
    return [
        CartItem(
            id="frame-aviator",
            name="Classic Aviator",
            price=999,
            quantity=1,
            selected_lens=LensOption(id="blue-cut", name="Blue Cut", price=300),
        )
    ]


@pytest.fixture
def online_cart() -> List[CartItem]:
    """Cart totalling 2499."""
    return [
        CartItem(id="frame-round", name="Round Titanium", price=1999, quantity=1),
        CartItem(
            id="case",
            name="Hard Case",
            price=200,
            quantity=1,
            selected_lens=LensOption(id="cloth", name="Microfiber Cloth", price=50),
        ),
        CartItem(id="spray", name="Lens Cleaner", price=125, quantity=2),
    ]


ONLINE_CREATE = {
    "success": True,
    "paymentMethod": "ONLINE",
    "order_id": "order_Rzp123",
    "internal_order_id": "ORD-1700000000",
    "amount": 249900,
    "currency": "INR",
    "key_id": "rzp_test_key",
}
