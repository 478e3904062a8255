import asyncio
import logging
import re
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from config import settings
from storefront.errors import TransportError, ValidationError
from storefront.models.checkout import CustomerDetails, DeliveryInfo, PaymentMethod
from storefront.services.backend import StorefrontBackend
from storefront.services.location import Location, LocationLookup

logger = logging.getLogger(__name__)

FORM_FIELDS = ("first_name", "last_name", "phone", "email", "address", "city", "state", "zip")
DIGIT_LIMITS = {"phone": 10, "zip": 6}
MANUAL_ENTRY_HINT = "Could not find this PIN code. Please enter city and state manually."
DELIVERY_UNAVAILABLE = "Delivery not available to this PIN"
COD_UNAVAILABLE = "Cash on delivery is not available for this PIN"


class CheckoutFormController:
    """Delivery form state for one checkout session.

    Entering a full PIN code triggers a debounced lookup that autofills city
    and state, and a delivery check against the order backend. A failed
    lookup only leaves a hint. A PIN the backend cannot deliver to blocks
    checkout, and one without cash on delivery blocks COD.
    """

    def __init__(
        self,
        lookup: LocationLookup,
        debounce_seconds: Optional[float] = None,
        backend: Optional[StorefrontBackend] = None,
    ):
        self.lookup = lookup
        self.backend = backend
        self.debounce_seconds = (
            debounce_seconds if debounce_seconds is not None else settings.LOOKUP_DEBOUNCE_SECONDS
        )
        self.fields: Dict[str, str] = {name: "" for name in FORM_FIELDS}
        self.errors: Dict[str, str] = {}
        self.hints: Dict[str, str] = {}
        self.delivery: Optional[DeliveryInfo] = None
        self._locations: Dict[str, Location] = {}
        self._lookup_task: Optional[asyncio.Task] = None

    def update(self, name: str, value: str):
        if name not in self.fields:
            raise KeyError(name)

        value = (value or "").strip()
        if name in DIGIT_LIMITS:
            value = re.sub(r"\D", "", value)[:DIGIT_LIMITS[name]]

        self.fields[name] = value
        self.errors.pop(name, None)

        if name == "zip":
            self.hints.pop("zip", None)
            self.delivery = None
            self._schedule_lookup(value)

    def update_many(self, values: Dict[str, str]):
        for name, value in values.items():
            self.update(name, value)

    def _schedule_lookup(self, code: str):
        if self._lookup_task is not None and not self._lookup_task.done():
            self._lookup_task.cancel()
        self._lookup_task = None

        if len(code) == DIGIT_LIMITS["zip"]:
            self._lookup_task = asyncio.get_running_loop().create_task(self._debounced_lookup(code))

    async def _debounced_lookup(self, code: str):
        await asyncio.sleep(self.debounce_seconds)
        await asyncio.gather(self.autofill(code), self.check_delivery(code))

    async def autofill(self, code: str) -> Optional[Location]:
        location = self._locations.get(code)
        if location is None:
            location = await self.lookup.lookup(code)
            if location is not None:
                self._locations[code] = location

        # The customer may have kept typing while the lookup was in flight.
        if self.fields["zip"] != code:
            return location

        if location is None:
            self.hints["zip"] = MANUAL_ENTRY_HINT
            return None

        self.fields["city"] = location.city
        self.fields["state"] = location.state
        self.errors.pop("city", None)
        self.errors.pop("state", None)
        self.hints.pop("zip", None)
        logger.info(f"[Checkout Form] Autofilled {location.city}, {location.state} for {code}")
        return location

    async def check_delivery(self, code: str) -> Optional[DeliveryInfo]:
        if self.backend is None:
            return None
        try:
            delivery = await self.backend.check_delivery(code)
        except TransportError as e:
            logger.warning(f"[Checkout Form] Delivery check failed for {code}: {e.reason}")
            delivery = None

        if self.fields["zip"] != code:
            return delivery
        self.delivery = delivery
        return delivery

    async def settle(self):
        """Wait for any pending lookup to finish."""
        task = self._lookup_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    def close(self):
        if self._lookup_task is not None and not self._lookup_task.done():
            self._lookup_task.cancel()
        self._lookup_task = None

    def validate(self, method: Optional[PaymentMethod] = None) -> bool:
        f = self.fields
        errors: Dict[str, str] = {}
        if not f["first_name"]:
            errors["first_name"] = "First name is required"
        if not f["last_name"]:
            errors["last_name"] = "Last name is required"
        if len(f["phone"]) != DIGIT_LIMITS["phone"]:
            errors["phone"] = "Valid phone required"
        if f["email"] and "@" not in f["email"]:
            errors["email"] = "Enter a valid email"
        if not f["address"]:
            errors["address"] = "Address is required"
        if len(f["zip"]) != DIGIT_LIMITS["zip"]:
            errors["zip"] = "6-digit Pincode required"
        elif self.delivery is not None and not self.delivery.available:
            errors["zip"] = DELIVERY_UNAVAILABLE
        elif (
            self.delivery is not None
            and method == PaymentMethod.CASH_ON_DELIVERY
            and not self.delivery.cod
        ):
            errors["payment_method"] = COD_UNAVAILABLE
        if not f["city"]:
            errors["city"] = "City is required"
        if not f["state"]:
            errors["state"] = "State is required"

        self.errors = errors
        return not errors

    def customer_details(self, method: Optional[PaymentMethod] = None) -> CustomerDetails:
        if not self.validate(method):
            raise ValidationError(errors=dict(self.errors))
        try:
            return CustomerDetails(**self.fields)
        except PydanticValidationError as e:
            errors = {str(err["loc"][0]): err["msg"] for err in e.errors()}
            self.errors = errors
            raise ValidationError(errors=errors) from e

    def snapshot(self) -> Dict[str, Any]:
        return {
            "fields": dict(self.fields),
            "errors": dict(self.errors),
            "hints": dict(self.hints),
            "delivery": self.delivery.model_dump() if self.delivery else None,
        }
