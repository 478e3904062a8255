import asyncio
import logging
from typing import Any, Dict, Iterable, Optional, Set

from storefront.errors import GENERIC_FAILURE, PAYMENT_CANCELLED
from storefront.models.checkout import (
    CartItem,
    CheckoutOutcome,
    CheckoutState,
    CheckoutStatus,
    CustomerDetails,
    PaymentMethod,
)
from storefront.services.payments import CheckoutAttempt
from storefront.services.whatsapp import (
    build_confirmation_link,
    send_order_confirmation,
    whatsapp_enabled,
)
from storefront.state import store

logger = logging.getLogger(__name__)

# Strong references so running attempts are not garbage collected
_running: Set[asyncio.Task] = set()


async def start_checkout(
    session: "store.CheckoutSession",
    items: Iterable[CartItem],
    customer: CustomerDetails,
    method: PaymentMethod,
) -> CheckoutAttempt:
    """Start an attempt in the background and return it straight away."""
    attempt = session.orchestrator.prepare(items, customer, method, session_id=session.session_id)
    try:
        await store.record_attempt(attempt)
    except Exception as e:
        # The attempt is already in flight and must still be driven to an outcome.
        logger.error(f"[Checkout Flow] Failed to record attempt {attempt.id}: {e}")
    logger.info(
        f"[Checkout Flow] Session {session.session_id} started attempt {attempt.id} "
        f"({method.value}, total {attempt.request.total})"
    )

    task = asyncio.get_running_loop().create_task(run_checkout(session, attempt))
    _running.add(task)
    task.add_done_callback(_running.discard)
    return attempt


async def run_checkout(session: "store.CheckoutSession", attempt: CheckoutAttempt) -> CheckoutOutcome:
    outcome = await session.orchestrator.run(attempt)
    logger.info(f"[Checkout Flow] Attempt {attempt.id} finished with {outcome.status.value}")

    if outcome.is_success and whatsapp_enabled():
        try:
            await send_order_confirmation(attempt.request.customer, outcome.order_id)
        except Exception as e:
            logger.error(f"[Checkout Flow] Confirmation message failed for {outcome.order_id}: {e}")
    return outcome


async def wait_for(event: asyncio.Event, timeout: float) -> bool:
    try:
        await asyncio.wait_for(event.wait(), timeout)
    except asyncio.TimeoutError:
        return False
    return True


async def cancel_running():
    """Cancel attempts still waiting on the gateway, e.g. on shutdown."""
    tasks = list(_running)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


def outcome_message(outcome: CheckoutOutcome) -> str:
    if outcome.status == CheckoutStatus.SUCCESS:
        return f"Order #{outcome.order_id} has been placed. You can now download your invoice."
    if outcome.status == CheckoutStatus.CANCELLED:
        return f"{PAYMENT_CANCELLED}. You can resume checkout whenever you are ready."
    return f"{(outcome.reason or '').rstrip('.')}. Please try again."


def _outcome_view(attempt_id: str, outcome: CheckoutOutcome) -> Dict[str, Any]:
    view = {
        "status": outcome.status.value,
        "order_id": outcome.order_id,
        "reason": outcome.reason,
        "message": outcome_message(outcome),
    }
    if outcome.is_success:
        view["invoice_url"] = f"/checkouts/{attempt_id}/invoice"
    return view


def describe_attempt(attempt: CheckoutAttempt) -> Dict[str, Any]:
    view: Dict[str, Any] = {
        "attempt_id": attempt.id,
        "session_id": attempt.session_id,
        "state": attempt.state.value,
        "payment_method": attempt.method.value,
        "total": attempt.request.total,
        "gateway": None,
        "outcome": None,
    }

    if attempt.gateway_options is not None and attempt.outcome is None:
        view["gateway"] = attempt.gateway_options.to_payload()

    outcome: Optional[CheckoutOutcome] = attempt.outcome
    if outcome is not None:
        view["outcome"] = _outcome_view(attempt.id, outcome)
        if outcome.is_success:
            view["outcome"]["confirmation_link"] = build_confirmation_link(
                attempt.request.customer, outcome.order_id
            )
    return view


def outcome_from_record(record: Dict[str, Any]) -> Optional[CheckoutOutcome]:
    state = CheckoutState(record["state"])
    if state in (CheckoutState.SUCCESS, CheckoutState.COD_CONFIRMED) and record.get("order_id"):
        return CheckoutOutcome.success(record["order_id"])
    if state == CheckoutState.FAILED:
        return CheckoutOutcome.failed(record.get("reason") or GENERIC_FAILURE)
    if state == CheckoutState.CANCELLED:
        return CheckoutOutcome.cancelled()
    return None


def describe_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """View of a persisted attempt that is no longer held in memory."""
    outcome = outcome_from_record(record)
    return {
        "attempt_id": record["attempt_id"],
        "session_id": record.get("session_id"),
        "state": record["state"],
        "payment_method": record["payment_method"],
        "total": record["total"],
        "gateway": None,
        "outcome": _outcome_view(record["attempt_id"], outcome) if outcome else None,
    }
