"""Domain value objects for phone-number OTP challenges."""

from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class PhoneNumber:
    """Canonical, validated mobile number.

    Only :class:`otp_auth.services.phone_validator.PhoneValidator` should
    build these; the stored/keyed form is :attr:`e164`.
    """

    country_code: str
    national_number: str

    @property
    def e164(self) -> str:
        return f"+{self.country_code}{self.national_number}"

    def masked(self) -> str:
        """Mask for logs: ``+91******3210``."""
        return mask_phone(self.e164)

    def __str__(self) -> str:
        return self.e164


def mask_phone(phone: str) -> str:
    if len(phone) <= 4:
        return "*" * len(phone)
    prefix = phone[:3] if phone.startswith("+") else ""
    return prefix + "*" * (len(phone) - len(prefix) - 4) + phone[-4:]


class ChallengeStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"
    LOCKED = "locked"


class VerificationResult(str, enum.Enum):
    """Outcome of a single verification attempt (never persisted)."""

    SUCCESS = "success"
    INVALID_CODE = "invalid_code"
    EXPIRED = "expired"
    LOCKED = "locked"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class OtpChallenge:
    """One outstanding (or resolved) verification for a phone number.

    Instances are immutable; every transition returns a new value with
    ``version`` bumped so that stores can compare-and-swap on it.
    """

    phone: str
    code_secret: str
    created_at: datetime
    expires_at: datetime
    attempts_remaining: int
    status: ChallengeStatus = ChallengeStatus.PENDING
    resend_count: int = 0
    last_sent_at: datetime | None = None
    version: int = 1

    @classmethod
    def issue(
        cls, phone: str, code_secret: str, now: datetime, ttl: timedelta, max_attempts: int
    ) -> OtpChallenge:
        return cls(
            phone=phone,
            code_secret=code_secret,
            created_at=now,
            expires_at=now + ttl,
            attempts_remaining=max_attempts,
            last_sent_at=now,
        )

    @property
    def is_pending(self) -> bool:
        return self.status is ChallengeStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def cooldown_remaining(self, now: datetime, cooldown: timedelta) -> float:
        """Seconds until a resend is allowed (0 when allowed)."""
        sent = self.last_sent_at or self.created_at
        return max((sent + cooldown - now).total_seconds(), 0.0)

    def refreshed(self, code_secret: str, now: datetime, ttl: timedelta) -> OtpChallenge:
        # Attempt budget is carried over: a resend never restores guesses.
        return replace(
            self,
            code_secret=code_secret,
            expires_at=now + ttl,
            resend_count=self.resend_count + 1,
            last_sent_at=now,
            version=self.version + 1,
        )

    def with_status(self, status: ChallengeStatus) -> OtpChallenge:
        return replace(self, status=status, version=self.version + 1)

    def after_mismatch(self) -> OtpChallenge:
        remaining = max(self.attempts_remaining - 1, 0)
        status = ChallengeStatus.LOCKED if remaining == 0 else self.status
        return replace(
            self, attempts_remaining=remaining, status=status, version=self.version + 1
        )

    def is_purgeable(self, now: datetime) -> bool:
        # Past expiry a Pending challenge is Expired in all but name.
        return self.is_expired(now)
