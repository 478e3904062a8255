import logging
import re
from typing import Optional

import httpx
from pydantic import BaseModel

from config import settings

logger = logging.getLogger(__name__)

POSTAL_CODE_PATTERN = re.compile(r"^\d{6}$")


class Location(BaseModel):
    city: str
    state: str


class LocationLookup:
    """Resolves an Indian PIN code to its district and state."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.POSTAL_LOOKUP_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT_SECONDS
        self.transport = transport

    async def lookup(self, code: str) -> Optional[Location]:
        if not code or not POSTAL_CODE_PATTERN.match(code):
            return None

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(f"{self.base_url}/{code}")
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            # Lookup is only an autofill aid; the customer can still type it in.
            logger.warning(f"[Location] Lookup failed for {code}: {e!r}")
            return None

        entry = payload[0] if isinstance(payload, list) and payload else None
        if not isinstance(entry, dict) or entry.get("Status") != "Success":
            logger.info(f"[Location] No match for {code}")
            return None

        offices = entry.get("PostOffice") or []
        if not offices:
            return None

        office = offices[0]
        if not office.get("District") or not office.get("State"):
            return None
        return Location(city=office["District"], state=office["State"])
