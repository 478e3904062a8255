from typing import Dict

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from config import settings
from storefront.errors import SubmissionInProgress, TransportError, ValidationError
from storefront.models.checkout import CheckoutState, CheckoutSubmission, PaymentAssertion
from storefront.models.gateway import GatewayEvent, GatewayFailureReport
from storefront.services import handlers
from storefront.state import store
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


def _attempt_or_404(attempt_id: str):
    attempt = store.get_attempt(attempt_id)
    if attempt is None:
        raise HTTPException(status_code=404, detail="Checkout attempt not found")
    return attempt


async def _record_or_404(attempt_id: str):
    record = await store.load_attempt_record(attempt_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Checkout attempt not found")
    return record


@router.get("/ping")
async def ping():
    return {"status": "ok", "database": "connected" if store.postgres_store.enabled else "disabled"}


@router.get("/sessions/{session_id}/form")
async def get_form(session_id: str):
    session = store.get_or_create_session(session_id)
    return session.form.snapshot()


@router.put("/sessions/{session_id}/form")
async def update_form(session_id: str, values: Dict[str, str]):
    session = store.get_or_create_session(session_id)
    try:
        session.form.update_many(values)
    except KeyError as e:
        raise HTTPException(status_code=400, detail=f"Unknown form field: {e.args[0]}")
    return session.form.snapshot()


@router.post("/sessions/{session_id}/checkout")
async def submit_checkout(session_id: str, submission: CheckoutSubmission):
    session = store.get_or_create_session(session_id)

    if session.orchestrator.attempt is not None and session.orchestrator.attempt.in_flight:
        raise HTTPException(status_code=409, detail=SubmissionInProgress.default_reason)

    try:
        if submission.customer:
            session.form.update_many(submission.customer)
        await session.form.settle()
        customer = session.form.customer_details(submission.payment_method)
        attempt = await handlers.start_checkout(
            session, submission.items, customer, submission.payment_method
        )
    except KeyError as e:
        raise HTTPException(status_code=400, detail=f"Unknown form field: {e.args[0]}")
    except ValidationError as e:
        logger.info(f"[Checkout API] Rejected submission for {session_id}: {e.reason}")
        raise HTTPException(status_code=422, detail={"message": e.reason, "errors": e.errors})
    except SubmissionInProgress as e:
        raise HTTPException(status_code=409, detail=e.reason)

    await handlers.wait_for(attempt.checkpoint, settings.CHECKOUT_WAIT_SECONDS)
    return handlers.describe_attempt(attempt)


@router.get("/checkouts/{attempt_id}")
async def get_checkout(attempt_id: str):
    attempt = store.get_attempt(attempt_id)
    if attempt is not None:
        return handlers.describe_attempt(attempt)
    return handlers.describe_record(await _record_or_404(attempt_id))


async def _deliver(attempt_id: str, event: GatewayEvent):
    attempt = _attempt_or_404(attempt_id)
    order_id = attempt.gateway_order_id
    if attempt.state != CheckoutState.AWAITING_GATEWAY or not order_id:
        raise HTTPException(status_code=409, detail="Checkout is not waiting on the payment gateway")
    if not store.services.gateway.deliver(order_id, event):
        raise HTTPException(status_code=409, detail="Payment gateway session is not open yet")

    await handlers.wait_for(attempt.done, settings.CHECKOUT_WAIT_SECONDS)
    return handlers.describe_attempt(attempt)


@router.post("/checkouts/{attempt_id}/gateway/success")
async def gateway_success(attempt_id: str, assertion: PaymentAssertion):
    return await _deliver(attempt_id, GatewayEvent.success(assertion))


@router.post("/checkouts/{attempt_id}/gateway/failure")
async def gateway_failure(attempt_id: str, report: GatewayFailureReport):
    return await _deliver(attempt_id, GatewayEvent.failure(report.description))


@router.post("/checkouts/{attempt_id}/gateway/dismiss")
async def gateway_dismiss(attempt_id: str):
    return await _deliver(attempt_id, GatewayEvent.dismiss())


@router.get("/checkouts/{attempt_id}/invoice")
async def download_invoice(attempt_id: str):
    attempt = store.get_attempt(attempt_id)
    if attempt is not None:
        outcome = attempt.outcome
    else:
        outcome = handlers.outcome_from_record(await _record_or_404(attempt_id))
    if outcome is None or not outcome.is_success:
        raise HTTPException(status_code=409, detail="Invoice is only available after a successful checkout")

    try:
        document = await store.services.invoices.emit(outcome)
    except TransportError as e:
        raise HTTPException(status_code=502, detail=e.reason)

    return Response(
        content=document.content,
        media_type=document.media_type,
        headers={"Content-Disposition": f"attachment; filename={document.filename}"},
    )


@router.get("/location/{code}")
async def lookup_location(code: str):
    location = await store.services.location.lookup(code)
    if location is None:
        raise HTTPException(status_code=404, detail="PIN code not found")
    return location


@router.get("/gateway/checkout.js")
async def gateway_script():
    loader = store.services.loader
    if not await loader.ensure_loaded():
        raise HTTPException(status_code=503, detail="Could not load payment gateway.")
    script = store.services.scripts.get(loader.script_url)
    return Response(content=script.body, media_type="application/javascript")
