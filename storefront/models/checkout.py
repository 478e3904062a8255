from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentMethod(str, Enum):
    ONLINE = "ONLINE"
    CASH_ON_DELIVERY = "COD"


class LensOption(BaseModel):
    id: str
    name: str
    price: int = Field(ge=0)


class CartItem(BaseModel):
    id: str
    name: str
    price: int = Field(ge=0)
    quantity: int = Field(ge=1)
    selected_lens: Optional[LensOption] = None

    @property
    def line_total(self) -> int:
        lens_price = self.selected_lens.price if self.selected_lens else 0
        return (self.price + lens_price) * self.quantity

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "quantity": self.quantity,
        }
        if self.selected_lens:
            payload["selectedLens"] = self.selected_lens.model_dump()
        return payload


class CustomerDetails(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    phone: str = Field(pattern=r"^\d{10}$")
    email: Optional[str] = None
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip: str = Field(pattern=r"^\d{6}$")

    @field_validator("email")
    @classmethod
    def check_email(cls, value: Optional[str]) -> Optional[str]:
        # Only a superficial shape check, the backend owns delivery.
        if not value:
            return None
        local, _, domain = value.partition("@")
        if not local or not domain:
            raise ValueError("Enter a valid email")
        return value

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class OrderCreationRequest(BaseModel):
    """Snapshot sent to order-create. Built once per submission attempt."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(gt=0)
    items: Tuple[CartItem, ...]
    payment_method: PaymentMethod
    customer: CustomerDetails

    def to_payload(self) -> Dict[str, Any]:
        customer = self.customer
        return {
            "total": self.total,
            "items": [item.to_payload() for item in self.items],
            "paymentMethod": self.payment_method.value,
            "user": {
                "name": customer.full_name,
                "email": customer.email or "",
                "phone": customer.phone,
                "address": customer.address,
                "city": customer.city,
                "state": customer.state,
                "zip": customer.zip,
            },
        }


class OrderCreationResult(BaseModel):
    success: bool
    message: Optional[str] = None
    internal_order_id: Optional[str] = None
    order_id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    key_id: Optional[str] = None


class DeliveryInfo(BaseModel):
    """Delivery availability the backend reports for a PIN code."""

    available: bool
    type: Optional[str] = None
    days: Optional[str] = None
    cod: bool = False
    message: Optional[str] = None


class PaymentAssertion(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    order_id: str = Field(alias="razorpay_order_id", min_length=1)
    payment_id: str = Field(alias="razorpay_payment_id", min_length=1)
    signature: str = Field(alias="razorpay_signature", min_length=1)

    def to_payload(self) -> Dict[str, str]:
        return self.model_dump(by_alias=True)


class VerificationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    order_id: Optional[str] = Field(default=None, alias="orderId")
    message: Optional[str] = None


class CheckoutStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class CheckoutOutcome(BaseModel):
    """Terminal value of one submission attempt."""

    model_config = ConfigDict(frozen=True)

    status: CheckoutStatus
    order_id: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, order_id: str) -> "CheckoutOutcome":
        return cls(status=CheckoutStatus.SUCCESS, order_id=order_id)

    @classmethod
    def failed(cls, reason: str) -> "CheckoutOutcome":
        return cls(status=CheckoutStatus.FAILED, reason=reason)

    @classmethod
    def cancelled(cls) -> "CheckoutOutcome":
        return cls(status=CheckoutStatus.CANCELLED)

    @property
    def is_success(self) -> bool:
        return self.status == CheckoutStatus.SUCCESS


class CheckoutState(str, Enum):
    IDLE = "IDLE"
    CREATING_ORDER = "CREATING_ORDER"
    COD_CONFIRMED = "COD_CONFIRMED"
    AWAITING_GATEWAY = "AWAITING_GATEWAY"
    VERIFYING = "VERIFYING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    CheckoutState.COD_CONFIRMED,
    CheckoutState.SUCCESS,
    CheckoutState.FAILED,
    CheckoutState.CANCELLED,
})


class CheckoutSubmission(BaseModel):
    items: List[CartItem]
    payment_method: PaymentMethod = PaymentMethod.ONLINE
    customer: Optional[Dict[str, str]] = None
