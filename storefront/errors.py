from typing import Dict, Optional

GENERIC_FAILURE = "Something went wrong"
ORDER_CREATION_FAILED = "Order creation failed"
GATEWAY_UNAVAILABLE = "Could not load payment gateway."
GATEWAY_FAILED = "Payment failed at the gateway"
VERIFICATION_SERVER_ERROR = "Verification server error"
VERIFICATION_FAILED = "Payment verification failed"
PAYMENT_CANCELLED = "Payment cancelled by user"


class CheckoutError(Exception):
    """Base for every failure the checkout flow knows how to report."""

    default_reason = GENERIC_FAILURE

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class ValidationError(CheckoutError):
    default_reason = "Please correct the highlighted fields"

    def __init__(self, reason: Optional[str] = None, errors: Optional[Dict[str, str]] = None):
        super().__init__(reason)
        self.errors = errors or {}


class SubmissionInProgress(CheckoutError):
    default_reason = "A checkout is already in progress"


class TransportError(CheckoutError):
    pass


class BackendRejection(CheckoutError):
    default_reason = ORDER_CREATION_FAILED


class GatewayUnavailable(CheckoutError):
    default_reason = GATEWAY_UNAVAILABLE


class GatewayFailure(CheckoutError):
    default_reason = GATEWAY_FAILED


class VerificationFailure(CheckoutError):
    default_reason = VERIFICATION_FAILED


class UserCancellation(CheckoutError):
    default_reason = PAYMENT_CANCELLED
