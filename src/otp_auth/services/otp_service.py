"""OTP service — orchestrates validation, rate limiting, storage and delivery."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from otp_auth.config import Settings, settings
from otp_auth.database.engine import async_session_factory
from otp_auth.errors import DeliveryError, DeliveryFailedError, RateLimitedError
from otp_auth.models.otp import Clock, PhoneNumber, VerificationResult, utcnow
from otp_auth.services.challenge_store import (
    ChallengePolicy,
    ChallengeStore,
    InMemoryChallengeStore,
)
from otp_auth.services.delivery import DeliveryGateway, build_gateway
from otp_auth.services.otp_generator import OtpGenerator
from otp_auth.services.phone_validator import PhoneValidator
from otp_auth.services.rate_limiter import RateLimiter, RateLimitPolicy
from otp_auth.services.sql_challenge_store import SqlChallengeStore

logger = logging.getLogger(__name__)


@dataclass
class ChallengeIssued:
    """Value object returned once a code has been handed to the gateway."""

    phone: PhoneNumber
    expires_at: datetime
    resend_count: int


@dataclass
class VerificationOutcome:
    phone: PhoneNumber
    result: VerificationResult
    retry_after: int | None = None

    @property
    def success(self) -> bool:
        return self.result is VerificationResult.SUCCESS


class OtpService:
    """Entry point for the two OTP operations.

    ``send_challenge``
        normalise → admit → create/refresh → deliver.  The issuance counts
        against the rate limits once the store write succeeds; a delivery
        failure after that leaves the stored challenge valid and surfaces
        as :class:`DeliveryFailedError`.
    ``verify_challenge``
        normalise → (optional verify admission) → consume.

    The gateway call happens after the store and the rate limiter have
    released their locks and is bounded by ``delivery_timeout``.
    """

    def __init__(
        self,
        validator: PhoneValidator,
        limiter: RateLimiter,
        store: ChallengeStore,
        gateway: DeliveryGateway,
        delivery_timeout: float = 10.0,
    ) -> None:
        self._validator = validator
        self._limiter = limiter
        self._store = store
        self._gateway = gateway
        self._delivery_timeout = delivery_timeout

    @property
    def store(self) -> ChallengeStore:
        return self._store

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    async def send_challenge(self, raw_phone: str | None, origin: str) -> ChallengeIssued:
        phone = self._validator.normalize(raw_phone)
        async with self._limiter.issuance(phone.e164, origin):
            challenge, code = await self._store.create_or_refresh(phone.e164)

        try:
            await asyncio.wait_for(
                self._gateway.send(phone.e164, code), timeout=self._delivery_timeout
            )
        except (DeliveryError, asyncio.TimeoutError) as exc:
            logger.error(
                "Delivery via %s failed for %s: %s",
                self._gateway.name,
                phone.masked(),
                str(exc) or "timeout",
            )
            raise DeliveryFailedError("Failed to send OTP. Please try again shortly.") from exc

        logger.info("OTP dispatched to %s via %s", phone.masked(), self._gateway.name)
        return ChallengeIssued(
            phone=phone,
            expires_at=challenge.expires_at,
            resend_count=challenge.resend_count,
        )

    async def verify_challenge(
        self, raw_phone: str | None, supplied_code: str | None
    ) -> VerificationOutcome:
        phone = self._validator.normalize(raw_phone)
        try:
            await self._limiter.admit_verify(phone.e164)
        except RateLimitedError as exc:
            return VerificationOutcome(
                phone=phone, result=VerificationResult.RATE_LIMITED, retry_after=exc.retry_after
            )
        result = await self._store.consume(phone.e164, supplied_code or "")
        logger.info("Verification for %s: %s", phone.masked(), result.value)
        return VerificationOutcome(phone=phone, result=result)


def build_otp_service(
    cfg: Settings = settings,
    *,
    store: ChallengeStore | None = None,
    gateway: DeliveryGateway | None = None,
    clock: Clock = utcnow,
) -> OtpService:
    """Wire an :class:`OtpService` from settings."""
    generator = OtpGenerator(length=cfg.otp_length, storage_secret=cfg.otp_storage_secret)
    policy = ChallengePolicy.from_settings(cfg)
    if store is None:
        if cfg.challenge_backend == "sql":
            store = SqlChallengeStore(async_session_factory, generator, policy, clock)
        else:
            store = InMemoryChallengeStore(generator, policy, clock)
    return OtpService(
        validator=PhoneValidator(cfg.default_country_code, cfg.mobile_leading_digits),
        limiter=RateLimiter(RateLimitPolicy.from_settings(cfg), clock),
        store=store,
        gateway=gateway or build_gateway(cfg),
        delivery_timeout=cfg.delivery_timeout_seconds,
    )
