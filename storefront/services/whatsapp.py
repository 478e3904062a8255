import httpx
import logging
import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from urllib.parse import quote
from config import settings
from config_flows.client_flows import FLOW_CONFIG, RATE_LIMITS
from storefront.models.checkout import CustomerDetails

logger = logging.getLogger(__name__)

# Rate limiting storage (in production, use Redis)
rate_limit_store: Dict[str, List[datetime]] = {}
RATE_LIMIT_WINDOW = 3600  # 1 hour in seconds


class RateLimitExceeded(Exception):
    pass


def whatsapp_enabled() -> bool:
    return bool(settings.WHATSAPP_TOKEN and settings.WHATSAPP_PHONE_ID)


async def is_rate_limited(phone: str) -> bool:
    """Check if phone number is rate limited"""
    now = datetime.now()
    cutoff_time = now - timedelta(seconds=RATE_LIMIT_WINDOW)

    # Remove old entries
    rate_limit_store[phone] = [
        timestamp for timestamp in rate_limit_store.get(phone, [])
        if timestamp > cutoff_time
    ]

    if len(rate_limit_store[phone]) >= RATE_LIMITS["max_messages_per_phone_per_hour"]:
        logger.warning(f"[WhatsApp] Rate limit exceeded for {phone}")
        return True

    return False


async def record_message_sent(phone: str):
    """Record that a message was sent"""
    rate_limit_store.setdefault(phone, []).append(datetime.now())


async def send_whatsapp_template(
    phone: str,
    template: str,
    parameters: list,
    transport: Optional[httpx.AsyncBaseTransport] = None,
):
    """
    Sends a templated WhatsApp message with rate limiting and retries.
    """
    if await is_rate_limited(phone):
        raise RateLimitExceeded(f"Rate limit exceeded for {phone}")

    url = f"https://graph.facebook.com/v18.0/{settings.WHATSAPP_PHONE_ID}/messages"

    headers = {
        "Authorization": f"Bearer {settings.WHATSAPP_TOKEN}",
        "Content-Type": "application/json"
    }

    body = {
        "messaging_product": "whatsapp",
        "to": phone,
        "type": "template",
        "template": {
            "name": template,
            "language": {"code": "en_US"},
            "components": [
                {
                    "type": "body",
                    "parameters": [
                        {"type": "text", "text": str(val)} for val in parameters
                    ]
                }
            ]
        }
    }

    max_retries = RATE_LIMITS["whatsapp_max_retries"]
    retry_count = 0

    while True:
        try:
            async with httpx.AsyncClient(transport=transport) as client:
                response = await client.post(url, headers=headers, json=body)
                response.raise_for_status()

            await record_message_sent(phone)
            logger.info(f"[WhatsApp] Sent template '{template}' to {phone}")
            return response.json()

        except httpx.HTTPError as e:
            retry_count += 1
            logger.error(f"[WhatsApp] Attempt {retry_count} failed to send to {phone}: {e!r}")
            if retry_count >= max_retries:
                logger.error(f"[WhatsApp] Max retries reached for {phone}")
                raise
            await asyncio.sleep(2 ** retry_count)  # Exponential backoff


def international_number(phone: str) -> str:
    return phone if len(phone) > 10 else f"91{phone}"


async def send_order_confirmation(customer: CustomerDetails, order_id: str, client_id: Optional[str] = None):
    """Send the storefront's order confirmation template to the customer."""
    flow = FLOW_CONFIG[client_id or settings.STOREFRONT_ID]["confirmation"]
    variable_map = {
        "customer_name": customer.first_name,
        "order_id": order_id,
    }
    params = [variable_map.get(param.strip("{}"), "") for param in flow["params"]]
    return await send_whatsapp_template(international_number(customer.phone), flow["template"], params)


def build_confirmation_link(customer: CustomerDetails, order_id: str, client_id: Optional[str] = None) -> str:
    """wa.me link the customer can use to confirm the order with support."""
    flow = FLOW_CONFIG[client_id or settings.STOREFRONT_ID]["confirmation"]
    message = flow["link_text"].format(
        order_id=order_id,
        first_name=customer.first_name,
        address=customer.address,
        city=customer.city,
        zip=customer.zip,
        phone=customer.phone,
    )
    return f"https://wa.me/{settings.WHATSAPP_SUPPORT_NUMBER}?text={quote(message)}"
