"""Tests for the OtpService — verifies the full send / verify flow."""

from __future__ import annotations

import asyncio

import pytest
from conftest import wrong_code

from otp_auth.config import settings
from otp_auth.errors import (
    ChallengeStorageError,
    DeliveryFailedError,
    InvalidPhoneNumberError,
    RateLimitedError,
)
from otp_auth.models.otp import ChallengeStatus, VerificationResult
from otp_auth.services.challenge_store import InMemoryChallengeStore
from otp_auth.services.otp_generator import OtpGenerator
from otp_auth.services.otp_service import OtpService, build_otp_service

PHONE = "9876543210"
E164 = "+919876543210"


def _service(gateway, clock, **overrides) -> OtpService:
    cfg = settings.model_copy(update={"challenge_backend": "memory", **overrides})
    return build_otp_service(cfg, gateway=gateway, clock=clock)


@pytest.fixture
def service(gateway, clock) -> OtpService:
    return _service(gateway, clock)


# ──────────────────────────────────────────────────────────
# Scenario A: send then verify with the delivered code
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_send_then_verify_succeeds(service, gateway, clock):
    issued = await service.send_challenge(PHONE, "originX")

    assert issued.phone.e164 == E164
    assert issued.resend_count == 0
    assert issued.expires_at == clock.now + service.store._policy.ttl
    assert gateway.sent == [(E164, gateway.last_code)]

    outcome = await service.verify_challenge("+91 98765 43210", gateway.last_code)
    assert outcome.success
    assert outcome.result is VerificationResult.SUCCESS
    assert outcome.phone.e164 == E164


# ──────────────────────────────────────────────────────────
# Scenario B: malformed phone leaves no trace
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_invalid_phone_creates_nothing(service, gateway):
    with pytest.raises(InvalidPhoneNumberError):
        await service.send_challenge("98765", "originX")

    assert gateway.sent == []
    assert len(service.store) == 0
    assert service.limiter.bucket("issue:origin:originX") is None


@pytest.mark.asyncio
async def test_invalid_phone_on_verify_is_rejected(service):
    with pytest.raises(InvalidPhoneNumberError):
        await service.verify_challenge("not a phone", "123456")


# ──────────────────────────────────────────────────────────
# Scenario C: attempt budget exhausted
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_three_wrong_codes_lock_the_challenge(service, gateway):
    await service.send_challenge(PHONE, "originX")
    code = gateway.last_code

    results = [
        (await service.verify_challenge(PHONE, wrong_code(code))).result for _ in range(3)
    ]
    assert results == [
        VerificationResult.INVALID_CODE,
        VerificationResult.INVALID_CODE,
        VerificationResult.LOCKED,
    ]
    assert (await service.verify_challenge(PHONE, code)).result is VerificationResult.LOCKED


# ──────────────────────────────────────────────────────────
# Scenario D: resend cooldown
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_immediate_resend_is_rate_limited(service, gateway, clock):
    await service.send_challenge(PHONE, "originX")
    first_code = gateway.last_code

    with pytest.raises(RateLimitedError) as excinfo:
        await service.send_challenge(PHONE, "originX")
    assert excinfo.value.retry_after == 30
    assert len(gateway.sent) == 1

    clock.advance(30)
    issued = await service.send_challenge(PHONE, "originX")
    assert issued.resend_count == 1
    assert len(gateway.sent) == 2

    second_code = gateway.last_code
    if second_code != first_code:
        outcome = await service.verify_challenge(PHONE, first_code)
        assert outcome.result is VerificationResult.INVALID_CODE
    assert (await service.verify_challenge(PHONE, second_code)).success


# ──────────────────────────────────────────────────────────
# Delivery
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_delivery_failure_keeps_challenge_valid(service, gateway):
    gateway.fail = True

    with pytest.raises(DeliveryFailedError):
        await service.send_challenge(PHONE, "originX")

    stored = await service.store.load(E164)
    assert stored.status is ChallengeStatus.PENDING
    outcome = await service.verify_challenge(PHONE, gateway.last_code)
    assert outcome.success


@pytest.mark.asyncio
async def test_slow_delivery_times_out(gateway, clock):
    service = _service(gateway, clock, delivery_timeout_seconds=0.05)
    gateway.delay = 1.0

    with pytest.raises(DeliveryFailedError):
        await service.send_challenge(PHONE, "originX")
    assert (await service.store.load(E164)).is_pending


@pytest.mark.asyncio
async def test_delivery_runs_outside_the_phone_lock(service, gateway):
    gateway.release = asyncio.Event()
    sending = asyncio.create_task(service.send_challenge(PHONE, "originX"))
    await gateway.received.wait()

    # The SMS is still "in flight", yet the challenge is already usable.
    outcome = await asyncio.wait_for(
        service.verify_challenge(PHONE, gateway.last_code), timeout=1
    )
    assert outcome.success

    gateway.release.set()
    issued = await sending
    assert issued.phone.e164 == E164


# ──────────────────────────────────────────────────────────
# Concurrency
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_parallel_sends_issue_one_code(service, gateway):
    results = await asyncio.gather(
        service.send_challenge(PHONE, "originX"),
        service.send_challenge("+91 98765 43210", "originY"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, RateLimitedError) for r in results) == 1
    assert len(gateway.sent) == 1
    assert len(service.store) == 1


@pytest.mark.asyncio
async def test_parallel_verifies_succeed_once(service, gateway):
    await service.send_challenge(PHONE, "originX")
    code = gateway.last_code

    outcomes = await asyncio.gather(*(service.verify_challenge(PHONE, code) for _ in range(4)))

    results = [o.result for o in outcomes]
    assert results.count(VerificationResult.SUCCESS) == 1
    assert results.count(VerificationResult.NOT_FOUND) == 3


# ──────────────────────────────────────────────────────────
# Other outcomes
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_verify_without_challenge_is_not_found(service):
    outcome = await service.verify_challenge(PHONE, "123456")
    assert outcome.result is VerificationResult.NOT_FOUND
    assert not outcome.success


@pytest.mark.asyncio
async def test_missing_code_counts_as_wrong(service, gateway):
    await service.send_challenge(PHONE, "originX")
    outcome = await service.verify_challenge(PHONE, None)
    assert outcome.result is VerificationResult.INVALID_CODE


@pytest.mark.asyncio
async def test_expired_code_is_reported(service, gateway, clock):
    await service.send_challenge(PHONE, "originX")
    clock.advance(301)

    outcome = await service.verify_challenge(PHONE, gateway.last_code)
    assert outcome.result is VerificationResult.EXPIRED


@pytest.mark.asyncio
async def test_verify_rate_limit_when_enabled(gateway, clock):
    service = _service(gateway, clock, verify_limit_per_phone=2)
    await service.send_challenge(PHONE, "originX")
    bad = wrong_code(gateway.last_code)

    await service.verify_challenge(PHONE, bad)
    await service.verify_challenge(PHONE, bad)
    outcome = await service.verify_challenge(PHONE, gateway.last_code)

    assert outcome.result is VerificationResult.RATE_LIMITED
    assert outcome.retry_after == 3600
    # The rejected attempt never reached the store.
    assert (await service.store.load(E164)).attempts_remaining == 1


class BrokenStore(InMemoryChallengeStore):
    async def load(self, phone):
        raise ChallengeStorageError("database unavailable")


@pytest.mark.asyncio
async def test_storage_failure_propagates(gateway, clock):
    service = build_otp_service(
        settings, store=BrokenStore(OtpGenerator()), gateway=gateway, clock=clock
    )

    with pytest.raises(ChallengeStorageError):
        await service.send_challenge(PHONE, "originX")
    with pytest.raises(ChallengeStorageError):
        await service.verify_challenge(PHONE, "123456")
    assert gateway.sent == []


class FlakyStore(InMemoryChallengeStore):
    """Fails the first write, then behaves."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.failures = 1

    async def _insert(self, challenge):
        if self.failures:
            self.failures -= 1
            raise ChallengeStorageError("database unavailable")
        await super()._insert(challenge)


@pytest.mark.asyncio
async def test_storage_failure_does_not_spend_rate_limit(gateway, clock):
    store = FlakyStore(OtpGenerator(), clock=clock)
    service = build_otp_service(settings, store=store, gateway=gateway, clock=clock)

    with pytest.raises(ChallengeStorageError):
        await service.send_challenge(PHONE, "originX")
    assert service.limiter.bucket(f"issue:phone:{E164}") is None

    # Retrying straight away is not blocked by a cooldown.
    await service.send_challenge(PHONE, "originX")
    assert service.limiter.bucket(f"issue:phone:{E164}").count == 1
    assert len(gateway.sent) == 1


@pytest.mark.asyncio
async def test_mixed_script_digits_cannot_dodge_the_cooldown(service, gateway):
    await service.send_challenge(PHONE, "originX")

    with pytest.raises(InvalidPhoneNumberError):
        await service.send_challenge("98765٤٣٢١٠", "originX")
    assert gateway.sent == [(E164, gateway.last_code)]
