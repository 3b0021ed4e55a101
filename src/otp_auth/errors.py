"""Exception hierarchy for the OTP core.

Verification outcomes are *not* exceptions; they are reported through
:class:`otp_auth.models.otp.VerificationResult`.  Exceptions are reserved
for rejected input, policy rejections and infrastructure failures.
"""

from __future__ import annotations


class OtpError(Exception):
    """Base exception for OTP operations."""


class InvalidPhoneNumberError(OtpError):
    """Raw input is not a plausible mobile number."""


class RateLimitedError(OtpError):
    """Issuance or verification rejected by policy; retry after a wait."""

    def __init__(self, message: str, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ResendCooldownError(RateLimitedError):
    """A pending challenge was refreshed too recently."""


class DeliveryFailedError(OtpError):
    """The gateway could not deliver the code; the challenge stays valid."""


class ChallengeStorageError(OtpError):
    """The challenge could not be read or written atomically."""


class ChallengeConflictError(ChallengeStorageError):
    """A concurrent writer changed the challenge between load and swap."""


class DeliveryError(Exception):
    """Raised by a delivery gateway when the transport fails."""
