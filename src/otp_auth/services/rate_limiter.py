"""Rate limiter — issuance cooldown and sliding-window caps per phone/origin.

Limits
------
* **cooldown**: one issuance per phone per ``resend_cooldown``.
* **issue**: ``issue_limit_per_phone`` per phone and ``issue_limit_per_origin``
  per requesting origin within a rolling ``issue_window``.
* **verify** (optional): ``verify_limit_per_phone`` admissions per phone
  within ``verify_window``; ``0`` disables it and leaves verification to
  the per-challenge attempt budget.

Every check-then-record runs under the per-key locks of all keys it
touches, so concurrent admissions for one phone are serialised.  Keys
whose windows have emptied are dropped, so memory tracks only recently
active phones and origins.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from otp_auth.config import Settings
from otp_auth.errors import RateLimitedError
from otp_auth.models.otp import Clock, mask_phone, utcnow
from otp_auth.services.keyed_locks import KeyedLocks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    resend_cooldown: timedelta = timedelta(seconds=30)
    issue_window: timedelta = timedelta(hours=1)
    issue_limit_per_phone: int = 5
    issue_limit_per_origin: int = 20
    verify_window: timedelta = timedelta(hours=1)
    verify_limit_per_phone: int = 0
    sweep_interval: timedelta = timedelta(minutes=1)

    @classmethod
    def from_settings(cls, cfg: Settings) -> RateLimitPolicy:
        return cls(
            resend_cooldown=timedelta(seconds=cfg.resend_cooldown_seconds),
            issue_window=timedelta(seconds=cfg.issue_window_seconds),
            issue_limit_per_phone=cfg.issue_limit_per_phone,
            issue_limit_per_origin=cfg.issue_limit_per_origin,
            verify_window=timedelta(seconds=cfg.verify_window_seconds),
            verify_limit_per_phone=cfg.verify_limit_per_phone,
        )


@dataclass
class RateLimitBucket:
    """Sliding-window event log for one key.

    Each event leaves the window exactly ``window`` after it happened, so
    the count never drops retroactively and never exceeds ``limit``.
    """

    key: str
    limit: int
    window: timedelta
    events: deque[datetime] = field(default_factory=deque)

    def prune(self, now: datetime) -> None:
        while self.events and now - self.events[0] >= self.window:
            self.events.popleft()

    @property
    def count(self) -> int:
        return len(self.events)

    @property
    def window_start(self) -> datetime | None:
        return self.events[0] if self.events else None

    def is_full(self) -> bool:
        return self.count >= self.limit

    def retry_after(self, now: datetime) -> int:
        if not self.events:
            return 0
        return max(math.ceil((self.events[0] + self.window - now).total_seconds()), 1)

    def record(self, now: datetime) -> None:
        self.events.append(now)


class RateLimiter:
    """In-process, mutex-guarded rate limiter.

    Idle buckets and stale cooldown marks are swept at most once per
    ``sweep_interval``, piggybacked on admissions.
    """

    def __init__(self, policy: RateLimitPolicy | None = None, clock: Clock = utcnow) -> None:
        self._policy = policy or RateLimitPolicy()
        self._clock = clock
        self._locks = KeyedLocks()
        self._buckets: dict[str, RateLimitBucket] = {}
        self._last_issued: dict[str, datetime] = {}
        self._last_sweep = clock()

    @property
    def policy(self) -> RateLimitPolicy:
        return self._policy

    # ── Admission ────────────────────────────────────────

    @asynccontextmanager
    async def issuance(self, phone: str, origin: str) -> AsyncIterator[None]:
        """Admit one code issuance for the duration of the block.

        Raises :class:`RateLimitedError` on entry.  The issuance is counted
        only if the block completes; both keys stay locked until then.
        """
        phone_key = f"issue:phone:{phone}"
        origin_key = f"issue:origin:{origin or 'unknown'}"
        self._maybe_sweep()
        async with self._locks.hold_many([phone_key, origin_key]):
            now = self._clock()

            last = self._last_issued.get(phone)
            if last is not None:
                wait = (last + self._policy.resend_cooldown - now).total_seconds()
                if wait > 0:
                    logger.info("Resend cooldown active for %s", mask_phone(phone))
                    raise RateLimitedError(
                        "Please wait before requesting another code",
                        retry_after=math.ceil(wait),
                    )

            for key in (phone_key, origin_key):
                bucket = self._peek(key, now)
                if bucket is not None and bucket.is_full():
                    logger.warning("Issue limit reached (%s scope)", key.split(":", 2)[1])
                    raise RateLimitedError(
                        "Too many code requests. Try again later.",
                        retry_after=bucket.retry_after(now),
                    )

            yield

            window = self._policy.issue_window
            self._bucket(phone_key, self._policy.issue_limit_per_phone, window).record(now)
            self._bucket(origin_key, self._policy.issue_limit_per_origin, window).record(now)
            self._last_issued[phone] = now

    async def admit_issue(self, phone: str, origin: str) -> None:
        """Admit and count one code issuance or raise :class:`RateLimitedError`."""
        async with self.issuance(phone, origin):
            pass

    async def admit_verify(self, phone: str) -> None:
        """Admit one verification attempt or raise :class:`RateLimitedError`."""
        if self._policy.verify_limit_per_phone <= 0:
            return
        key = f"verify:phone:{phone}"
        self._maybe_sweep()
        async with self._locks.hold(key):
            now = self._clock()
            bucket = self._peek(key, now)
            if bucket is not None and bucket.is_full():
                logger.warning("Verify limit reached for %s", mask_phone(phone))
                raise RateLimitedError(
                    "Too many attempts. Please wait a few minutes and try again.",
                    retry_after=bucket.retry_after(now),
                )
            limit, window = self._policy.verify_limit_per_phone, self._policy.verify_window
            self._bucket(key, limit, window).record(now)

    # ── Inspection / housekeeping ────────────────────────

    def bucket(self, key: str) -> RateLimitBucket | None:
        return self._buckets.get(key)

    @property
    def tracked_keys(self) -> int:
        """Buckets plus cooldown marks currently held in memory."""
        return len(self._buckets) + len(self._last_issued)

    def sweep(self, now: datetime | None = None) -> int:
        """Drop buckets and cooldown marks that no longer constrain anything."""
        now = now or self._clock()
        self._last_sweep = now
        removed = 0
        for key in list(self._buckets):
            bucket = self._buckets[key]
            bucket.prune(now)
            if not bucket.events:
                del self._buckets[key]
                removed += 1
        for phone in list(self._last_issued):
            if now - self._last_issued[phone] >= self._policy.resend_cooldown:
                del self._last_issued[phone]
        return removed

    def _maybe_sweep(self) -> None:
        now = self._clock()
        if now - self._last_sweep >= self._policy.sweep_interval:
            removed = self.sweep(now)
            if removed:
                logger.debug(
                    "Swept %d idle rate-limit buckets (%d keys tracked)",
                    removed,
                    self.tracked_keys,
                )

    def _peek(self, key: str, now: datetime) -> RateLimitBucket | None:
        bucket = self._buckets.get(key)
        if bucket is None:
            return None
        bucket.prune(now)
        if not bucket.events:
            del self._buckets[key]
            return None
        return bucket

    def _bucket(self, key: str, limit: int, window: timedelta) -> RateLimitBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = RateLimitBucket(key=key, limit=limit, window=window)
        return bucket
