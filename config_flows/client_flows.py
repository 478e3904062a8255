from typing import Dict, Any

# Rate limiting configuration
RATE_LIMITS = {
    "max_messages_per_phone_per_hour": 10,
    "whatsapp_max_retries": 3,
}

# Configuration for each storefront's checkout flow
FLOW_CONFIG: Dict[str, Dict[str, Any]] = {
    "optistyle": {
        "gateway": {
            "name": "OptiStyle India",
            "description": "Eyewear Purchase",
            "currency": "INR",
            "theme": {"color": "#2563EB"},
        },
        "confirmation": {
            "template": "order_confirmation",
            "params": ["{customer_name}", "{order_id}"],
            "link_text": (
                "Hi OptiStyle, I confirm my order #{order_id}. "
                "Delivery to: {first_name}, {address}, {city} - {zip}. Contact: {phone}"
            ),
        },
    }
}
