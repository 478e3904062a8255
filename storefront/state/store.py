import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging

from config import settings
from storefront.database.postgres_store import postgres_store
from storefront.services.backend import StorefrontBackend
from storefront.services.checkout_form import CheckoutFormController
from storefront.services.documents import InvoiceEmitter
from storefront.services.gateway import GatewayLoader, HostedCheckoutGateway, ScriptRegistry
from storefront.services.location import LocationLookup
from storefront.services.payments import CheckoutAttempt, PaymentOrchestrator

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Services:
    backend: StorefrontBackend = field(default_factory=StorefrontBackend)
    scripts: ScriptRegistry = field(default_factory=ScriptRegistry)
    gateway: HostedCheckoutGateway = field(default_factory=HostedCheckoutGateway)
    location: LocationLookup = field(default_factory=LocationLookup)
    loader: Optional[GatewayLoader] = None
    invoices: Optional[InvoiceEmitter] = None

    def __post_init__(self):
        if self.loader is None:
            self.loader = GatewayLoader(self.scripts)
        if self.invoices is None:
            self.invoices = InvoiceEmitter(self.backend)


@dataclass
class CheckoutSession:
    session_id: str
    form: CheckoutFormController
    orchestrator: PaymentOrchestrator
    last_seen: datetime = field(default_factory=_now)

    @property
    def busy(self) -> bool:
        attempt = self.orchestrator.attempt
        return attempt is not None and attempt.in_flight


services = Services()

# Keep in-memory state for sessions and their attempts
checkout_sessions: Dict[str, CheckoutSession] = {}
checkout_attempts: Dict[str, CheckoutAttempt] = {}


async def init_database():
    """Initialize database connection"""
    await postgres_store.init_pool()


async def close_database():
    await postgres_store.close()


async def record_attempt(attempt: CheckoutAttempt):
    """Update attempt in both cache and database"""
    checkout_attempts[attempt.id] = attempt
    await postgres_store.upsert_attempt(attempt.to_record())


def get_or_create_session(session_id: str) -> CheckoutSession:
    session = checkout_sessions.get(session_id)
    if session is None:
        session = CheckoutSession(
            session_id=session_id,
            form=CheckoutFormController(services.location, backend=services.backend),
            orchestrator=PaymentOrchestrator(
                services.backend,
                services.loader,
                services.gateway,
                recorder=record_attempt,
            ),
        )
        checkout_sessions[session_id] = session
        logger.info(f"[Store] Created checkout session {session_id}")
    session.last_seen = _now()
    return session


def get_attempt(attempt_id: str) -> Optional[CheckoutAttempt]:
    return checkout_attempts.get(attempt_id)


async def load_attempt_record(attempt_id: str) -> Optional[Dict[str, Any]]:
    """Get attempt record from cache or database"""
    attempt = checkout_attempts.get(attempt_id)
    if attempt is not None:
        return attempt.to_record()
    # Load from database if evicted or from an earlier run
    record = await postgres_store.get_attempt(attempt_id)
    return record or None


async def cleanup_stale_state(
    max_idle_seconds: Optional[float] = None,
    retention_days: Optional[int] = None,
):
    """Evict finished attempts and idle sessions, then expire old database rows.

    Sessions with an attempt still in flight are never evicted.
    """
    idle = max_idle_seconds if max_idle_seconds is not None else settings.SESSION_IDLE_SECONDS
    cutoff = _now() - timedelta(seconds=idle)

    stale_attempts = [
        attempt_id
        for attempt_id, attempt in checkout_attempts.items()
        if attempt.finished_at is not None and attempt.finished_at < cutoff
    ]
    for attempt_id in stale_attempts:
        del checkout_attempts[attempt_id]

    stale_sessions = [
        session_id
        for session_id, session in checkout_sessions.items()
        if not session.busy and session.last_seen < cutoff
    ]
    for session_id in stale_sessions:
        checkout_sessions.pop(session_id).form.close()

    if stale_attempts or stale_sessions:
        logger.info(
            f"[Store] Evicted {len(stale_attempts)} attempts and {len(stale_sessions)} sessions"
        )
    await postgres_store.cleanup_old_attempts(
        retention_days if retention_days is not None else settings.ATTEMPT_RETENTION_DAYS
    )


async def cleanup_periodically(interval: Optional[float] = None):
    interval = interval if interval is not None else settings.CLEANUP_INTERVAL_SECONDS
    while True:
        await asyncio.sleep(interval)
        try:
            await cleanup_stale_state()
        except Exception as e:
            logger.error(f"[Store] Cleanup failed: {e}")


def reset_state(new_services: Optional[Services] = None):
    """Drop every session and attempt. Used on shutdown and by tests."""
    global services
    for session in checkout_sessions.values():
        session.form.close()
    checkout_sessions.clear()
    checkout_attempts.clear()
    if new_services is not None:
        services = new_services
