import logging
from typing import Iterable

from storefront.errors import ValidationError
from storefront.models.checkout import (
    CartItem,
    CustomerDetails,
    OrderCreationRequest,
    PaymentMethod,
)

logger = logging.getLogger(__name__)


class OrderRequestBuilder:
    def build(
        self,
        cart: Iterable[CartItem],
        customer: CustomerDetails,
        method: PaymentMethod,
    ) -> OrderCreationRequest:
        """Snapshot the cart and customer into an order-create request.

        The total is always recomputed from the line items; a total the UI
        may have cached is never trusted.
        """
        # Copies, so later edits to the cart never reach the request.
        items = tuple(item.model_copy(deep=True) for item in cart)
        if not items:
            raise ValidationError("Your cart is empty")

        total = sum(item.line_total for item in items)
        if total <= 0:
            logger.warning(f"[Order Builder] Rejected cart with total {total}")
            raise ValidationError("Order total must be greater than zero")

        return OrderCreationRequest(
            total=total,
            items=items,
            payment_method=PaymentMethod(method),
            customer=customer,
        )
