# clinicbook/modules/notifications/sms.py
"""SMS notifier (Twilio) used for confirmation codes and booking notices"""
from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Optional, Protocol

from twilio.base.exceptions import TwilioException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from clinicbook.core.config import get_settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send_text(self, phone_number: str, message: str) -> bool: ...


def mask_phone(phone_number: Optional[str]) -> str:
    """Log-safe form of a phone number: only the last 4 digits survive."""
    if not phone_number:
        return "<none>"
    digits = "".join(ch for ch in phone_number if ch.isdigit())
    return f"***{digits[-4:]}" if len(digits) > 4 else "***"


def _is_configured(account_sid: str, auth_token: str, from_number: str) -> bool:
    # Real account SIDs always start with "AC"
    return bool(account_sid and auth_token and from_number and account_sid.startswith("AC"))


class SmsNotifier:
    """
    Best-effort text sender. `send_text` never raises: delivery problems are
    logged and reported as False. Without credentials it runs in mock mode,
    logs the message and reports True so local runs stay deterministic.
    """

    def __init__(
        self,
        account_sid: str = "",
        auth_token: str = "",
        from_number: str = "",
        timeout: float = 5.0,
        client: Optional[Client] = None,
    ):
        self.from_number = from_number
        self.timeout = timeout
        if client is not None:
            self.client: Optional[Client] = client
        elif _is_configured(account_sid, auth_token, from_number):
            self.client = Client(
                account_sid,
                auth_token,
                http_client=TwilioHttpClient(timeout=timeout),
            )
        else:
            logger.warning(
                "Twilio credentials not configured or invalid; SMS runs in mock mode. "
                "Set TWILIO_ACCOUNT_SID (must start with AC), TWILIO_AUTH_TOKEN "
                "and TWILIO_PHONE_NUMBER."
            )
            self.client = None

    @property
    def mock_mode(self) -> bool:
        return self.client is None

    def _send_blocking(self, phone_number: str, message: str) -> str:
        twilio_message = self.client.messages.create(
            body=message,
            from_=self.from_number,
            to=phone_number,
        )
        return twilio_message.sid

    async def send_text(self, phone_number: str, message: str) -> bool:
        if self.client is None:
            logger.info(
                f"SMS mock: would send {len(message)} chars to {mask_phone(phone_number)}"
            )
            return True

        try:
            sid = await asyncio.wait_for(
                asyncio.to_thread(self._send_blocking, phone_number, message),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"SMS to {mask_phone(phone_number)} timed out after {self.timeout}s")
            return False
        except TwilioException as e:
            logger.error(f"Twilio error sending SMS to {mask_phone(phone_number)}: {str(e)}")
            return False
        except Exception:
            # Transport errors from the HTTP layer; delivery is best-effort
            logger.exception(f"Unexpected error sending SMS to {mask_phone(phone_number)}")
            return False

        logger.info(f"SMS sent successfully to {mask_phone(phone_number)}: {sid}")
        return True


@lru_cache()
def get_notifier() -> SmsNotifier:
    """Process-wide notifier built from settings"""
    settings = get_settings()
    return SmsNotifier(
        account_sid=settings.TWILIO_ACCOUNT_SID,
        auth_token=settings.TWILIO_AUTH_TOKEN,
        from_number=settings.TWILIO_PHONE_NUMBER,
        timeout=settings.SMS_TIMEOUT_SECONDS,
    )
