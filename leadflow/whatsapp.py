# leadflow/whatsapp.py
"""WhatsApp Cloud API transport."""
import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

import httpx

from leadflow.collaborators import MessagingTransport
from leadflow.errors import DeliveryError
from leadflow.models import DeliveryResult

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 1000


def format_phone_number(phone: str, default_country_code: str = "34") -> str:
    """Digits only, with the country code added to bare 9-digit local numbers."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 9 and not digits.startswith(default_country_code):
        digits = default_country_code + digits
    return digits


class WhatsAppTransport(MessagingTransport):
    """One authenticated session against the Cloud API for the length of a run."""

    BASE_URL = "https://graph.facebook.com/v19.0"

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        default_country_code: str = "34",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.default_country_code = default_country_code
        self._client = client
        self._ready = False
        self.message_log: list[dict] = []

    @property
    def ready(self) -> bool:
        return self._ready

    async def connect(self):
        """Open the session and verify the credentials against the sender number."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=30.0,
                headers={"Authorization": f"Bearer {self.access_token}"},
            )
        try:
            response = await self._client.get(f"{self.BASE_URL}/{self.phone_number_id}")
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("WhatsApp authentication failed: %s", e)
            self._ready = False
            return
        self._ready = True
        logger.info("WhatsApp session ready for %s", self.phone_number_id)

    def _log(self, kind: str, phone: str, text: str):
        self.message_log.append({
            "timestamp": datetime.now().isoformat(),
            "type": kind,
            "phone_number": phone,
            "message": text[:200],
        })
        if len(self.message_log) > MAX_LOG_ENTRIES:
            self.message_log = self.message_log[-MAX_LOG_ENTRIES:]

    async def send(self, destination: str, text: str) -> DeliveryResult:
        if not self._ready:
            raise DeliveryError("WhatsApp session is not ready")

        number = format_phone_number(destination, self.default_country_code)
        payload = {
            "messaging_product": "whatsapp",
            "to": number,
            "type": "text",
            "text": {"body": text},
        }
        try:
            response = await self._client.post(f"{self.BASE_URL}/{self.phone_number_id}/messages", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            reason = self._error_reason(e.response)
            self._log("ERROR", number, reason)
            raise DeliveryError(f"Could not send to {number}: {reason}") from e
        except httpx.TransportError as e:
            self._ready = False
            self._log("ERROR", number, str(e))
            raise DeliveryError(f"WhatsApp session dropped: {e}") from e

        self._log("SENT", number, text)
        return DeliveryResult(attempted=True, succeeded=True)

    @staticmethod
    def _error_reason(response: httpx.Response) -> str:
        try:
            error = response.json().get("error", {})
            return error.get("message") or f"HTTP {response.status_code}"
        except ValueError:
            return f"HTTP {response.status_code}"

    def save_log(self, path: Path):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.message_log, f, indent=2, ensure_ascii=False)

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._ready = False
