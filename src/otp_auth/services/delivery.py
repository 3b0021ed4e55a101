"""Delivery gateways — hand a code to the SMS channel.

The core only needs ``send(phone, code)``; retries, if any, belong to the
provider or the caller.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod

import httpx

from otp_auth.config import Settings, settings
from otp_auth.errors import DeliveryError
from otp_auth.models.otp import mask_phone

logger = logging.getLogger(__name__)


def build_message(code: str, cfg: Settings = settings) -> str:
    """Render the SMS body from ``sms_template``."""
    minutes = max(math.ceil(cfg.otp_ttl_seconds / 60), 1)
    return cfg.sms_template.format(app_name=cfg.app_name, code=code, minutes=minutes)


class DeliveryGateway(ABC):
    """Abstract interface every delivery channel must implement."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider name (used in logs)."""

    @abstractmethod
    async def send(self, phone: str, code: str) -> None:
        """Deliver *code* to the E.164 *phone*.

        Raises :class:`DeliveryError` on any transport failure.
        """


class LogDeliveryGateway(DeliveryGateway):
    """Development gateway — writes the message to the log instead of sending."""

    def __init__(self, cfg: Settings = settings) -> None:
        self._settings = cfg

    @property
    def name(self) -> str:
        return "log"

    async def send(self, phone: str, code: str) -> None:
        logger.info(
            "📱 OTP for %s: %s  (SMS not sent: %r)",
            phone,
            code,
            build_message(code, self._settings),
        )


class TwilioSmsGateway(DeliveryGateway):
    """Sends the code through the Twilio Messages REST API."""

    def __init__(self, cfg: Settings = settings, client: httpx.AsyncClient | None = None) -> None:
        if not cfg.twilio_account_sid or not cfg.twilio_auth_token:
            raise ValueError("Twilio credentials not configured")
        if not cfg.twilio_from_number:
            raise ValueError("TWILIO_FROM_NUMBER not configured for SMS provider")
        self._settings = cfg
        self._client = client
        self._url = (
            f"{cfg.twilio_api_base_url.rstrip('/')}/Accounts/"
            f"{cfg.twilio_account_sid}/Messages.json"
        )

    @property
    def name(self) -> str:
        return "twilio"

    async def send(self, phone: str, code: str) -> None:
        data = {
            "To": phone,
            "From": self._settings.twilio_from_number,
            "Body": build_message(code, self._settings),
        }
        auth = (self._settings.twilio_account_sid, self._settings.twilio_auth_token)
        timeout = self._settings.delivery_timeout_seconds
        try:
            if self._client is not None:
                resp = await self._client.post(self._url, data=data, auth=auth, timeout=timeout)
            else:
                async with httpx.AsyncClient() as client:
                    resp = await client.post(self._url, data=data, auth=auth, timeout=timeout)
        except httpx.HTTPError as exc:
            logger.error("Twilio request error for %s: %s", mask_phone(phone), exc)
            raise DeliveryError(f"SMS transport error: {exc}") from exc

        if resp.status_code >= 400:
            logger.error(
                "Twilio rejected SMS to %s: %s %s", mask_phone(phone), resp.status_code, resp.text
            )
            raise DeliveryError(f"SMS provider returned {resp.status_code}")

        logger.info("SMS sent to %s via Twilio", mask_phone(phone))


def build_gateway(cfg: Settings = settings) -> DeliveryGateway:
    """Pick the gateway named by ``sms_provider``."""
    provider = (cfg.sms_provider or "log").lower()
    if provider == "twilio":
        return TwilioSmsGateway(cfg)
    if provider != "log":
        logger.warning("Unknown SMS provider %r, falling back to log gateway", provider)
    return LogDeliveryGateway(cfg)
