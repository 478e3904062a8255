import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as PayloadError

from config import settings
from storefront.errors import TransportError
from storefront.models.checkout import (
    DeliveryInfo,
    OrderCreationRequest,
    OrderCreationResult,
    PaymentAssertion,
    VerificationResult,
)

logger = logging.getLogger(__name__)


class StorefrontBackend:
    """Client for the order backend's payment and delivery endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.BACKEND_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _post_json(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        # 4xx bodies still carry {success: false, message}; only 5xx and
        # unreadable bodies count as transport failures.
        try:
            async with self._client() as client:
                response = await client.post(path, json=body)
        except httpx.HTTPError as e:
            logger.error(f"[Backend] POST {path} failed: {e!r}")
            raise TransportError() from e

        if response.status_code >= 500:
            logger.error(f"[Backend] POST {path} returned {response.status_code}: {response.text}")
            raise TransportError()

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"[Backend] POST {path} returned a non-JSON body ({response.status_code})")
            raise TransportError() from e

        if not isinstance(data, dict):
            logger.error(f"[Backend] POST {path} returned unexpected payload type {type(data).__name__}")
            raise TransportError()
        return data

    async def create_order(self, request: OrderCreationRequest) -> OrderCreationResult:
        logger.info(
            f"[Backend] Creating {request.payment_method.value} order for total {request.total}"
        )
        data = await self._post_json("/payment/create-order", request.to_payload())
        try:
            return OrderCreationResult.model_validate(data)
        except PayloadError as e:
            logger.error(f"[Backend] Malformed order-create response: {e}")
            raise TransportError() from e

    async def verify_payment(self, assertion: PaymentAssertion) -> VerificationResult:
        logger.info(f"[Backend] Verifying payment {assertion.payment_id} for {assertion.order_id}")
        data = await self._post_json("/payment/verify", assertion.to_payload())
        try:
            return VerificationResult.model_validate(data)
        except PayloadError as e:
            logger.error(f"[Backend] Malformed verify response: {e}")
            raise TransportError() from e

    async def check_delivery(self, pincode: str) -> DeliveryInfo:
        data = await self._post_json("/address/check-delivery", {"pincode": pincode})
        try:
            return DeliveryInfo.model_validate(data)
        except PayloadError as e:
            logger.error(f"[Backend] Malformed delivery check response: {e}")
            raise TransportError() from e

    async def download_invoice(self, order_id: str) -> bytes:
        try:
            async with self._client() as client:
                response = await client.get(f"/payment/invoice/{order_id}")
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"[Backend] Invoice download failed for {order_id}: {e!r}")
            raise TransportError("Could not download invoice.") from e
        return response.content
