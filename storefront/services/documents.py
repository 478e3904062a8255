import logging
from dataclasses import dataclass

from storefront.models.checkout import CheckoutOutcome
from storefront.services.backend import StorefrontBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvoiceDocument:
    filename: str
    content: bytes
    media_type: str = "application/pdf"


class InvoiceEmitter:
    def __init__(self, backend: StorefrontBackend):
        self.backend = backend

    async def emit(self, outcome: CheckoutOutcome) -> InvoiceDocument:
        """Fetch the invoice for a successful checkout."""
        if not outcome.is_success or not outcome.order_id:
            raise ValueError("Invoices are only available for successful orders")

        content = await self.backend.download_invoice(outcome.order_id)
        logger.info(f"[Invoice] Generated invoice for {outcome.order_id} ({len(content)} bytes)")
        return InvoiceDocument(filename=f"Invoice_{outcome.order_id}.pdf", content=content)
