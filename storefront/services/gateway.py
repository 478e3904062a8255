import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import httpx

from config import settings
from storefront.models.checkout import PaymentAssertion
from storefront.models.gateway import GatewayEvent, GatewayOptions

logger = logging.getLogger(__name__)


@dataclass
class ScriptElement:
    src: str
    body: Optional[bytes] = None
    loaded: bool = False


class ScriptRegistry:
    """Scripts attached to the current session, one entry per source URL."""

    def __init__(self):
        self._scripts: Dict[str, ScriptElement] = {}

    def get(self, src: str) -> Optional[ScriptElement]:
        return self._scripts.get(src)

    def append(self, src: str) -> ScriptElement:
        if src in self._scripts:
            raise ValueError(f"Script already attached: {src}")
        element = ScriptElement(src=src)
        self._scripts[src] = element
        return element

    def __len__(self) -> int:
        return len(self._scripts)


class GatewayLoader:
    def __init__(
        self,
        registry: ScriptRegistry,
        script_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.registry = registry
        self.script_url = script_url or settings.GATEWAY_SCRIPT_URL
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT_SECONDS
        self.transport = transport
        self._lock = asyncio.Lock()

    def is_loaded(self) -> bool:
        script = self.registry.get(self.script_url)
        return script is not None and script.loaded

    async def ensure_loaded(self) -> bool:
        """Make the gateway script available, fetching it at most once.

        Returns False when the fetch fails; the caller decides whether to abort.
        """
        if self.is_loaded():
            return True

        async with self._lock:
            # Another caller may have finished the load while we waited.
            if self.is_loaded():
                return True

            script = self.registry.get(self.script_url)
            if script is None:
                script = self.registry.append(self.script_url)

            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    response = await client.get(script.src)
                    response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"[Gateway] Failed to load {script.src}: {e!r}")
                return False

            script.body = response.content
            script.loaded = True
            logger.info(f"[Gateway] Loaded checkout script from {script.src}")
            return True


class PaymentGateway(Protocol):
    async def open(self, options: GatewayOptions) -> GatewayEvent:
        """Open a gateway session and wait for exactly one of its outcomes."""
        ...


class HostedCheckoutGateway:
    """Gateway whose modal runs in the customer's browser.

    The browser reports back through the checkout API, which hands the
    callback to `deliver`. Each session resolves at most once.
    """

    def __init__(self):
        self._pending: Dict[str, asyncio.Future] = {}

    def is_open(self, order_id: str) -> bool:
        return order_id in self._pending

    async def open(self, options: GatewayOptions) -> GatewayEvent:
        if options.order_id in self._pending:
            raise RuntimeError(f"Gateway session already open for {options.order_id}")

        # Registered before the first suspension point so callbacks can land
        # as soon as the caller yields.
        future = asyncio.get_running_loop().create_future()
        self._pending[options.order_id] = future
        logger.info(f"[Gateway] Session opened for {options.order_id}")
        try:
            return await future
        finally:
            self._pending.pop(options.order_id, None)

    def deliver(self, order_id: str, event: GatewayEvent) -> bool:
        future = self._pending.get(order_id)
        if future is None or future.done():
            logger.warning(f"[Gateway] Ignored {event.kind} callback for {order_id} (no open session)")
            return False
        future.set_result(event)
        logger.info(f"[Gateway] {event.kind} callback delivered for {order_id}")
        return True

    def succeed(self, order_id: str, assertion: PaymentAssertion) -> bool:
        return self.deliver(order_id, GatewayEvent.success(assertion))

    def fail(self, order_id: str, description: Optional[str]) -> bool:
        return self.deliver(order_id, GatewayEvent.failure(description))

    def dismiss(self, order_id: str) -> bool:
        return self.deliver(order_id, GatewayEvent.dismiss())
