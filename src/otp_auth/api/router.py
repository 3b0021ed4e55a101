"""Mobile sign-in router — HTTP adapter over the OTP core.

Endpoints
---------
POST /auth/mobile/send-otp     → issue a code to a phone number
POST /auth/mobile/verify-otp   → check a code for a phone number
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from otp_auth.config import settings
from otp_auth.errors import (
    ChallengeStorageError,
    DeliveryFailedError,
    InvalidPhoneNumberError,
    RateLimitedError,
)
from otp_auth.models.otp import VerificationResult
from otp_auth.services.otp_service import OtpService, build_otp_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/mobile", tags=["mobile-auth"])

# Shared OTP service (built once, reused across requests)
_otp_service: OtpService | None = None


def get_otp_service() -> OtpService:
    global _otp_service
    if _otp_service is None:
        _otp_service = build_otp_service(settings)
    return _otp_service


# ── Request / response models ────────────────────────────

class SendOtpRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: str | None = Field(default=None, alias="phoneNumber")


class VerifyOtpRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: str | None = Field(default=None, alias="phoneNumber")
    otp_code: str | None = Field(default=None, alias="otpCode")


class OtpResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    phone_number: str | None = Field(default=None, serialization_alias="phoneNumber")


_VERIFY_STATUS: dict[VerificationResult, tuple[int, str]] = {
    VerificationResult.SUCCESS: (status.HTTP_200_OK, "OTP verified successfully"),
    VerificationResult.INVALID_CODE: (status.HTTP_400_BAD_REQUEST, "Invalid OTP code"),
    VerificationResult.EXPIRED: (status.HTTP_410_GONE, "OTP has expired"),
    VerificationResult.NOT_FOUND: (status.HTTP_404_NOT_FOUND, "Invalid or expired OTP"),
    VerificationResult.LOCKED: (
        status.HTTP_423_LOCKED,
        "Maximum verification attempts exceeded",
    ),
    VerificationResult.RATE_LIMITED: (
        status.HTTP_429_TOO_MANY_REQUESTS,
        "Too many attempts. Please wait a few minutes and try again.",
    ),
}


def _reply(
    status_code: int,
    success: bool,
    message: str,
    phone_number: str | None = None,
    retry_after: int | None = None,
) -> JSONResponse:
    body = OtpResponse(success=success, message=message, phone_number=phone_number)
    headers = {"Retry-After": str(retry_after)} if retry_after else None
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


def request_origin(request: Request, trusted_proxies: int = 0) -> str:
    """Client address used as the per-origin rate-limit key.

    ``X-Forwarded-For`` is client-controlled, so it is read only behind
    *trusted_proxies* of our own proxies, taking the hop the outermost of
    them appended.  Otherwise the socket peer is used.
    """
    if trusted_proxies > 0:
        hops = [hop.strip() for hop in request.headers.get("x-forwarded-for", "").split(",")]
        hops = [hop for hop in hops if hop]
        if len(hops) >= trusted_proxies:
            return hops[-trusted_proxies]
    return request.client.host if request.client else "unknown"


# ── Endpoints ────────────────────────────────────────────

@router.post("/send-otp", response_model=OtpResponse)
async def send_otp(
    body: SendOtpRequest,
    request: Request,
    service: OtpService = Depends(get_otp_service),
):
    """Issue (or refresh) a one-time code for the given phone number."""
    if not body.phone_number:
        return _reply(status.HTTP_400_BAD_REQUEST, False, "Phone number is required")

    origin = request_origin(request, settings.trusted_proxy_count)
    try:
        issued = await service.send_challenge(body.phone_number, origin)
    except InvalidPhoneNumberError as exc:
        return _reply(status.HTTP_400_BAD_REQUEST, False, str(exc))
    except RateLimitedError as exc:
        return _reply(
            status.HTTP_429_TOO_MANY_REQUESTS, False, str(exc), retry_after=exc.retry_after
        )
    except DeliveryFailedError as exc:
        return _reply(status.HTTP_503_SERVICE_UNAVAILABLE, False, str(exc))
    except ChallengeStorageError:
        logger.exception("Send OTP storage failure")
        return _reply(status.HTTP_500_INTERNAL_SERVER_ERROR, False, "Failed to send OTP")

    return _reply(status.HTTP_200_OK, True, "OTP sent successfully", issued.phone.e164)


@router.post("/verify-otp", response_model=OtpResponse)
async def verify_otp(
    body: VerifyOtpRequest,
    service: OtpService = Depends(get_otp_service),
):
    """Check a one-time code; on success the caller may start a session."""
    if not body.phone_number or not body.otp_code:
        return _reply(
            status.HTTP_400_BAD_REQUEST, False, "Phone number and OTP code are required"
        )

    try:
        outcome = await service.verify_challenge(body.phone_number, body.otp_code)
    except InvalidPhoneNumberError as exc:
        return _reply(status.HTTP_400_BAD_REQUEST, False, str(exc))
    except ChallengeStorageError:
        logger.exception("Verify OTP storage failure")
        return _reply(status.HTTP_500_INTERNAL_SERVER_ERROR, False, "Failed to verify OTP")

    status_code, message = _VERIFY_STATUS[outcome.result]
    return _reply(
        status_code,
        outcome.success,
        message,
        outcome.phone.e164 if outcome.success else None,
        retry_after=outcome.retry_after,
    )
