import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from config import settings
from config_flows.client_flows import FLOW_CONFIG
from storefront.errors import (
    BackendRejection,
    CheckoutError,
    GatewayFailure,
    GatewayUnavailable,
    SubmissionInProgress,
    TransportError,
    UserCancellation,
    VerificationFailure,
    GENERIC_FAILURE,
    VERIFICATION_FAILED,
    VERIFICATION_SERVER_ERROR,
)
from storefront.models.checkout import (
    CartItem,
    CheckoutOutcome,
    CheckoutState,
    CustomerDetails,
    OrderCreationRequest,
    OrderCreationResult,
    PaymentMethod,
)
from storefront.models.gateway import GatewayOptions, GatewayPrefill
from storefront.services.backend import StorefrontBackend
from storefront.services.gateway import GatewayLoader, PaymentGateway
from storefront.services.order_builder import OrderRequestBuilder

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    CheckoutState.IDLE: {CheckoutState.CREATING_ORDER},
    CheckoutState.CREATING_ORDER: {
        CheckoutState.COD_CONFIRMED,
        CheckoutState.AWAITING_GATEWAY,
        CheckoutState.FAILED,
    },
    CheckoutState.AWAITING_GATEWAY: {
        CheckoutState.VERIFYING,
        CheckoutState.FAILED,
        CheckoutState.CANCELLED,
    },
    CheckoutState.VERIFYING: {CheckoutState.SUCCESS, CheckoutState.FAILED},
}

Recorder = Callable[["CheckoutAttempt"], Awaitable[None]]


class CheckoutAttempt:
    """State of a single submission. Never reused across submissions."""

    def __init__(self, request: OrderCreationRequest, session_id: Optional[str] = None):
        self.id = uuid.uuid4().hex
        self.session_id = session_id
        self.request = request
        self.state = CheckoutState.IDLE
        self.history: List[Dict[str, str]] = []
        self.creation: Optional[OrderCreationResult] = None
        self.gateway_options: Optional[GatewayOptions] = None
        self.outcome: Optional[CheckoutOutcome] = None
        self.created_at = datetime.now(timezone.utc)
        self.finished_at: Optional[datetime] = None
        # Set once the attempt is waiting on the customer or has finished.
        self.checkpoint = asyncio.Event()
        self.done = asyncio.Event()

    @property
    def method(self) -> PaymentMethod:
        return self.request.payment_method

    @property
    def in_flight(self) -> bool:
        # Prepared attempts count too, the task driving them may not have started yet.
        return self.outcome is None

    @property
    def gateway_order_id(self) -> Optional[str]:
        return self.creation.order_id if self.creation else None

    def to_record(self) -> Dict[str, Any]:
        outcome = self.outcome
        return {
            "attempt_id": self.id,
            "session_id": self.session_id,
            "payment_method": self.method.value,
            "state": self.state.value,
            "total": self.request.total,
            "gateway_order_id": self.gateway_order_id,
            "order_id": outcome.order_id if outcome else None,
            "reason": outcome.reason if outcome else None,
            "history": self.history,
            "created_at": self.created_at,
        }


class PaymentOrchestrator:
    def __init__(
        self,
        backend: StorefrontBackend,
        loader: GatewayLoader,
        gateway: PaymentGateway,
        builder: Optional[OrderRequestBuilder] = None,
        client_id: Optional[str] = None,
        recorder: Optional[Recorder] = None,
    ):
        self.backend = backend
        self.loader = loader
        self.gateway = gateway
        self.builder = builder or OrderRequestBuilder()
        self.presentation = FLOW_CONFIG[client_id or settings.STOREFRONT_ID]["gateway"]
        self.recorder = recorder
        self.attempt: Optional[CheckoutAttempt] = None

    @property
    def state(self) -> CheckoutState:
        return self.attempt.state if self.attempt else CheckoutState.IDLE

    def prepare(
        self,
        cart: Iterable[CartItem],
        customer: CustomerDetails,
        method: PaymentMethod,
        session_id: Optional[str] = None,
    ) -> CheckoutAttempt:
        if self.attempt is not None and self.attempt.in_flight:
            raise SubmissionInProgress()

        request = self.builder.build(cart, customer, method)
        attempt = CheckoutAttempt(request, session_id=session_id)
        self.attempt = attempt
        return attempt

    async def submit(
        self,
        cart: Iterable[CartItem],
        customer: CustomerDetails,
        method: PaymentMethod,
    ) -> CheckoutOutcome:
        return await self.run(self.prepare(cart, customer, method))

    async def run(self, attempt: CheckoutAttempt) -> CheckoutOutcome:
        """Drive one attempt to its terminal outcome.

        Every failure is folded into the returned outcome; only task
        cancellation escapes.
        """
        if attempt.state != CheckoutState.IDLE:
            raise RuntimeError(f"Attempt {attempt.id} already started")

        try:
            outcome = await self._drive(attempt)
        except UserCancellation:
            logger.info(f"[Checkout] Attempt {attempt.id} cancelled by customer")
            await self._transition(attempt, CheckoutState.CANCELLED)
            outcome = CheckoutOutcome.cancelled()
        except CheckoutError as e:
            logger.warning(f"[Checkout] Attempt {attempt.id} failed: {type(e).__name__}: {e.reason}")
            await self._transition(attempt, CheckoutState.FAILED)
            outcome = CheckoutOutcome.failed(e.reason)
        except asyncio.CancelledError:
            logger.warning(f"[Checkout] Attempt {attempt.id} interrupted in {attempt.state.value}")
            if not attempt.state.is_terminal:
                await self._transition(attempt, CheckoutState.FAILED)
            self._finish(attempt, CheckoutOutcome.failed(GENERIC_FAILURE))
            raise
        except Exception as e:
            logger.exception(f"[Checkout] Unexpected error in attempt {attempt.id}: {e}")
            if not attempt.state.is_terminal:
                await self._transition(attempt, CheckoutState.FAILED)
            outcome = CheckoutOutcome.failed(GENERIC_FAILURE)

        self._finish(attempt, outcome)
        await self._record(attempt)
        return outcome

    async def _drive(self, attempt: CheckoutAttempt) -> CheckoutOutcome:
        request = attempt.request

        await self._transition(attempt, CheckoutState.CREATING_ORDER)
        creation = await self.backend.create_order(request)
        attempt.creation = creation
        if not creation.success:
            raise BackendRejection(creation.message)

        if request.payment_method == PaymentMethod.CASH_ON_DELIVERY:
            if not creation.internal_order_id:
                raise BackendRejection(creation.message)
            await self._transition(attempt, CheckoutState.COD_CONFIRMED)
            logger.info(f"[Checkout] COD order {creation.internal_order_id} confirmed")
            return CheckoutOutcome.success(creation.internal_order_id)

        if not (creation.order_id and creation.key_id):
            raise BackendRejection(creation.message)

        await self._transition(attempt, CheckoutState.AWAITING_GATEWAY)
        if not await self.loader.ensure_loaded():
            raise GatewayUnavailable()

        attempt.gateway_options = self._gateway_options(creation, request)
        attempt.checkpoint.set()
        event = await self.gateway.open(attempt.gateway_options)

        if event.kind == "dismiss":
            raise UserCancellation()
        if event.kind == "failure":
            raise GatewayFailure(event.error_description)

        await self._transition(attempt, CheckoutState.VERIFYING)
        try:
            verification = await self.backend.verify_payment(event.assertion)
        except TransportError as e:
            raise VerificationFailure(VERIFICATION_SERVER_ERROR) from e

        if not verification.success or not verification.order_id:
            logger.warning(
                f"[Checkout] Verification rejected for {event.assertion.order_id}: {verification.message}"
            )
            raise VerificationFailure(VERIFICATION_FAILED)

        await self._transition(attempt, CheckoutState.SUCCESS)
        logger.info(f"[Checkout] Online order {verification.order_id} verified")
        return CheckoutOutcome.success(verification.order_id)

    def _gateway_options(
        self, creation: OrderCreationResult, request: OrderCreationRequest
    ) -> GatewayOptions:
        customer = request.customer
        return GatewayOptions(
            key=creation.key_id,
            # The backend reports the amount in the gateway's minor unit.
            amount=creation.amount if creation.amount is not None else request.total * 100,
            currency=creation.currency or self.presentation["currency"],
            order_id=creation.order_id,
            name=self.presentation["name"],
            description=self.presentation["description"],
            prefill=GatewayPrefill(
                name=customer.full_name,
                email=customer.email or "",
                contact=customer.phone,
            ),
            theme=dict(self.presentation["theme"]),
        )

    async def _transition(self, attempt: CheckoutAttempt, state: CheckoutState):
        allowed = ALLOWED_TRANSITIONS.get(attempt.state, set())
        if state not in allowed:
            raise RuntimeError(
                f"Illegal checkout transition {attempt.state.value} -> {state.value}"
            )
        logger.info(f"[Checkout] Attempt {attempt.id}: {attempt.state.value} -> {state.value}")
        attempt.state = state
        attempt.history.append({
            "state": state.value,
            "at": datetime.now(timezone.utc).isoformat(),
        })
        if not state.is_terminal:
            await self._record(attempt)

    def _finish(self, attempt: CheckoutAttempt, outcome: CheckoutOutcome):
        if attempt.outcome is not None:
            return
        attempt.outcome = outcome
        attempt.finished_at = datetime.now(timezone.utc)
        attempt.checkpoint.set()
        attempt.done.set()

    async def _record(self, attempt: CheckoutAttempt):
        if self.recorder is None:
            return
        try:
            await self.recorder(attempt)
        except Exception as e:
            logger.error(f"[Checkout] Failed to record attempt {attempt.id}: {e}")
