"""SQL challenge store — durable challenges with optimistic versioning."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otp_auth.database.repository import ChallengeRepository
from otp_auth.errors import ChallengeConflictError, ChallengeStorageError
from otp_auth.models.otp import OtpChallenge
from otp_auth.services.challenge_store import ChallengeStore

logger = logging.getLogger(__name__)


class SqlChallengeStore(ChallengeStore):
    """Challenge store backed by the ``otp_challenges`` table.

    The per-phone lock serialises writers inside one process; the
    ``version`` compare-and-swap catches writers in *other* processes.
    A lost swap is reported as :class:`ChallengeConflictError` and is not
    retried.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._session_factory = session_factory

    async def load(self, phone: str) -> OtpChallenge | None:
        try:
            async with self._session_factory() as session:
                return await ChallengeRepository(session).find_by_phone(phone)
        except SQLAlchemyError as exc:
            logger.exception("Challenge load failed")
            raise ChallengeStorageError("Unable to read challenge") from exc

    async def _insert(self, challenge: OtpChallenge) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                await ChallengeRepository(session).insert(challenge)
        except IntegrityError as exc:
            raise ChallengeConflictError("Challenge created concurrently") from exc
        except SQLAlchemyError as exc:
            logger.exception("Challenge insert failed")
            raise ChallengeStorageError("Unable to write challenge") from exc

    async def _swap(self, current: OtpChallenge, updated: OtpChallenge) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                swapped = await ChallengeRepository(session).compare_and_swap(
                    current.version, updated
                )
        except SQLAlchemyError as exc:
            logger.exception("Challenge update failed")
            raise ChallengeStorageError("Unable to write challenge") from exc
        if not swapped:
            logger.warning("Version conflict on challenge (expected v%d)", current.version)
            raise ChallengeConflictError("Challenge changed concurrently")

    async def purge(self, now: datetime | None = None) -> int:
        now = now or self._clock()
        try:
            async with self._session_factory() as session, session.begin():
                removed = await ChallengeRepository(session).delete_purgeable(now)
        except SQLAlchemyError as exc:
            logger.exception("Challenge purge failed")
            raise ChallengeStorageError("Unable to purge challenges") from exc
        if removed:
            logger.info("Purged %d expired challenges", removed)
        return removed
