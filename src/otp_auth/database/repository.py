"""Challenge repository — data access layer for OTP challenge rows."""

from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from otp_auth.models.challenge_record import OtpChallengeRecord
from otp_auth.models.otp import ChallengeStatus, OtpChallenge


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands timezone-aware columns back naive.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def to_domain(record: OtpChallengeRecord) -> OtpChallenge:
    return OtpChallenge(
        phone=record.phone,
        code_secret=record.code_secret,
        created_at=_aware(record.created_at),
        expires_at=_aware(record.expires_at),
        attempts_remaining=record.attempts_remaining,
        status=ChallengeStatus(record.status),
        resend_count=record.resend_count,
        last_sent_at=_aware(record.last_sent_at),
        version=record.version,
    )


def _columns(challenge: OtpChallenge) -> dict:
    return {
        "code_secret": challenge.code_secret,
        "status": challenge.status.value,
        "attempts_remaining": challenge.attempts_remaining,
        "resend_count": challenge.resend_count,
        "version": challenge.version,
        "created_at": challenge.created_at,
        "expires_at": challenge.expires_at,
        "last_sent_at": challenge.last_sent_at,
    }


class ChallengeRepository:
    """Encapsulates all database queries related to OTP challenges."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_phone(self, phone: str) -> OtpChallenge | None:
        """Look up the challenge for an E.164 phone number."""
        stmt = select(OtpChallengeRecord).where(OtpChallengeRecord.phone == phone)
        result = await self._session.execute(stmt)
        record = result.scalar_one_or_none()
        return to_domain(record) if record else None

    async def insert(self, challenge: OtpChallenge) -> None:
        """Add a new row; a duplicate phone fails on flush."""
        self._session.add(OtpChallengeRecord(phone=challenge.phone, **_columns(challenge)))
        await self._session.flush()

    async def compare_and_swap(self, expected_version: int, challenge: OtpChallenge) -> bool:
        """Overwrite the row only if it is still at *expected_version*.

        Returns ``True`` when exactly one row was updated.
        """
        stmt = (
            update(OtpChallengeRecord)
            .where(
                OtpChallengeRecord.phone == challenge.phone,
                OtpChallengeRecord.version == expected_version,
            )
            .values(**_columns(challenge))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def delete_purgeable(self, now: datetime) -> int:
        """Delete challenges past their expiry; return the row count."""
        stmt = (
            delete(OtpChallengeRecord)
            .where(OtpChallengeRecord.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0
