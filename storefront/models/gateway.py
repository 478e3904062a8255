from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict

from storefront.models.checkout import PaymentAssertion


class GatewayPrefill(BaseModel):
    name: str
    email: str = ""
    contact: str


class GatewayOptions(BaseModel):
    """Options handed to the hosted checkout modal."""

    model_config = ConfigDict(frozen=True)

    key: str
    amount: int
    currency: str
    order_id: str
    name: str
    description: str
    prefill: GatewayPrefill
    theme: Dict[str, str]

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump()


class GatewayEvent(BaseModel):
    """Single-shot result of one gateway session."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["success", "failure", "dismiss"]
    assertion: Optional[PaymentAssertion] = None
    error_description: Optional[str] = None

    @classmethod
    def success(cls, assertion: PaymentAssertion) -> "GatewayEvent":
        return cls(kind="success", assertion=assertion)

    @classmethod
    def failure(cls, description: Optional[str]) -> "GatewayEvent":
        return cls(kind="failure", error_description=description)

    @classmethod
    def dismiss(cls) -> "GatewayEvent":
        return cls(kind="dismiss")


class GatewayFailureReport(BaseModel):
    description: Optional[str] = None
    code: Optional[str] = None
