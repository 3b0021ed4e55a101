"""Shared fixtures: a controllable clock and an in-memory delivery gateway."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from otp_auth.errors import DeliveryError
from otp_auth.services.delivery import DeliveryGateway


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingGateway(DeliveryGateway):
    """Remembers every (phone, code) it was asked to send.

    ``fail`` makes it raise after recording; ``release`` (when set) makes
    it block until the event fires.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False
        self.delay = 0.0
        self.release: asyncio.Event | None = None
        self.received = asyncio.Event()

    @property
    def name(self) -> str:
        return "recording"

    async def send(self, phone: str, code: str) -> None:
        self.sent.append((phone, code))
        self.received.set()
        if self.release is not None:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise DeliveryError("gateway down")

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


def wrong_code(code: str) -> str:
    """A code of the same length guaranteed to differ from *code*."""
    return f"{(int(code) + 1) % 10 ** len(code):0{len(code)}d}"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()
