"""Challenge store — atomic create/refresh/consume of OTP challenges.

Transition rules live in :class:`ChallengeStore`; subclasses only provide
keyed persistence with compare-and-swap on ``OtpChallenge.version``.
Every public operation holds the per-phone lock for its whole
read-compare-mutate sequence.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from otp_auth.config import Settings
from otp_auth.errors import ChallengeConflictError, ResendCooldownError
from otp_auth.models.otp import (
    ChallengeStatus,
    Clock,
    OtpChallenge,
    VerificationResult,
    mask_phone,
    utcnow,
)
from otp_auth.services.keyed_locks import KeyedLocks
from otp_auth.services.otp_generator import OtpGenerator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChallengePolicy:
    ttl: timedelta = timedelta(minutes=5)
    max_attempts: int = 3
    resend_cooldown: timedelta = timedelta(seconds=30)

    @classmethod
    def from_settings(cls, cfg: Settings) -> ChallengePolicy:
        return cls(
            ttl=timedelta(seconds=cfg.otp_ttl_seconds),
            max_attempts=cfg.otp_max_attempts,
            resend_cooldown=timedelta(seconds=cfg.resend_cooldown_seconds),
        )


class ChallengeStore(ABC):
    """Abstract challenge store shared by the in-memory and SQL backends."""

    def __init__(
        self,
        generator: OtpGenerator,
        policy: ChallengePolicy | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._generator = generator
        self._policy = policy or ChallengePolicy()
        self._clock = clock
        self._locks = KeyedLocks()

    # ── Persistence hooks ────────────────────────────────

    @abstractmethod
    async def load(self, phone: str) -> OtpChallenge | None:
        """Return the stored challenge for *phone*, if any."""

    @abstractmethod
    async def _insert(self, challenge: OtpChallenge) -> None:
        """Store a challenge for a phone that has none.

        Raises :class:`ChallengeConflictError` if one appeared meanwhile.
        """

    @abstractmethod
    async def _swap(self, current: OtpChallenge, updated: OtpChallenge) -> None:
        """Replace *current* with *updated* iff the stored version still matches.

        Raises :class:`ChallengeConflictError` otherwise.
        """

    @abstractmethod
    async def purge(self, now: datetime | None = None) -> int:
        """Delete challenges past their expiry; return how many went."""

    # ── Operations ───────────────────────────────────────

    async def create_or_refresh(self, phone: str) -> tuple[OtpChallenge, str]:
        """Issue a code for *phone*.

        Returns the stored challenge and the plaintext code; the code is
        never retrievable again.
        """
        async with self._locks.hold(phone):
            now = self._clock()
            current = await self.load(phone)
            code, secret = self._generator.issue()

            if current is None:
                challenge = OtpChallenge.issue(
                    phone, secret, now, self._policy.ttl, self._policy.max_attempts
                )
                await self._insert(challenge)
                logger.info("Challenge created for %s", mask_phone(phone))
                return challenge, code

            if current.is_pending and not current.is_expired(now):
                wait = current.cooldown_remaining(now, self._policy.resend_cooldown)
                if wait > 0:
                    raise ResendCooldownError(
                        "Please wait before requesting another code",
                        retry_after=math.ceil(wait),
                    )
                challenge = current.refreshed(secret, now, self._policy.ttl)
                await self._swap(current, challenge)
                logger.info(
                    "Challenge refreshed for %s (resend #%d)",
                    mask_phone(phone),
                    challenge.resend_count,
                )
                return challenge, code

            # Resolved or lapsed: start over with a full budget.
            fresh = OtpChallenge.issue(
                phone, secret, now, self._policy.ttl, self._policy.max_attempts
            )
            challenge = replace(fresh, version=current.version + 1)
            await self._swap(current, challenge)
            logger.info(
                "Challenge replaced for %s (was %s)", mask_phone(phone), current.status.value
            )
            return challenge, code

    async def consume(self, phone: str, supplied_code: str) -> VerificationResult:
        """Check *supplied_code* against the challenge and record the outcome."""
        async with self._locks.hold(phone):
            now = self._clock()
            current = await self.load(phone)

            if current is None or current.status is ChallengeStatus.VERIFIED:
                return VerificationResult.NOT_FOUND
            if current.status is ChallengeStatus.LOCKED:
                return VerificationResult.LOCKED
            if current.status is ChallengeStatus.EXPIRED:
                return VerificationResult.EXPIRED
            if current.is_expired(now):
                await self._swap(current, current.with_status(ChallengeStatus.EXPIRED))
                logger.info("Challenge expired for %s", mask_phone(phone))
                return VerificationResult.EXPIRED

            if self._generator.matches(current.code_secret, supplied_code or ""):
                await self._swap(current, current.with_status(ChallengeStatus.VERIFIED))
                logger.info("Challenge verified for %s", mask_phone(phone))
                return VerificationResult.SUCCESS

            updated = current.after_mismatch()
            await self._swap(current, updated)
            if updated.status is ChallengeStatus.LOCKED:
                logger.warning("Challenge locked for %s", mask_phone(phone))
                return VerificationResult.LOCKED
            logger.info(
                "Invalid code for %s (%d attempts left)",
                mask_phone(phone),
                updated.attempts_remaining,
            )
            return VerificationResult.INVALID_CODE


class InMemoryChallengeStore(ChallengeStore):
    """Process-local store; a dict keyed by E.164 phone."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._challenges: dict[str, OtpChallenge] = {}

    async def load(self, phone: str) -> OtpChallenge | None:
        return self._challenges.get(phone)

    async def _insert(self, challenge: OtpChallenge) -> None:
        if challenge.phone in self._challenges:
            raise ChallengeConflictError(f"Challenge already exists for {challenge.phone}")
        self._challenges[challenge.phone] = challenge

    async def _swap(self, current: OtpChallenge, updated: OtpChallenge) -> None:
        stored = self._challenges.get(current.phone)
        if stored is None or stored.version != current.version:
            raise ChallengeConflictError(f"Challenge changed concurrently for {current.phone}")
        self._challenges[current.phone] = updated

    async def purge(self, now: datetime | None = None) -> int:
        now = now or self._clock()
        stale = [phone for phone, c in self._challenges.items() if c.is_purgeable(now)]
        for phone in stale:
            del self._challenges[phone]
        if stale:
            logger.info("Purged %d expired challenges", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._challenges)
