from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    BACKEND_API_URL: str = "http://localhost:5000/api"
    GATEWAY_SCRIPT_URL: str = "https://checkout.razorpay.com/v1/checkout.js"
    POSTAL_LOOKUP_URL: str = "https://api.postalpincode.in/pincode"
    REQUEST_TIMEOUT_SECONDS: float = 15.0
    LOOKUP_DEBOUNCE_SECONDS: float = 0.6
    CHECKOUT_WAIT_SECONDS: float = 30.0
    STOREFRONT_ID: str = "optistyle"
    WHATSAPP_TOKEN: Optional[str] = None
    WHATSAPP_PHONE_ID: Optional[str] = None
    WHATSAPP_SUPPORT_NUMBER: str = "918005343226"
    DATABASE_URL: Optional[str] = None
    SESSION_IDLE_SECONDS: float = 3600.0
    CLEANUP_INTERVAL_SECONDS: float = 300.0
    ATTEMPT_RETENTION_DAYS: int = 30
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env")

settings = Settings()
