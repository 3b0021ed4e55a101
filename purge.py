"""Purge script — deletes OTP challenges past their expiry from the database."""

import asyncio

from otp_auth.config import settings
from otp_auth.database.engine import async_session_factory, init_db
from otp_auth.services.challenge_store import ChallengePolicy
from otp_auth.services.otp_generator import OtpGenerator
from otp_auth.services.sql_challenge_store import SqlChallengeStore


async def purge() -> None:
    """Remove every challenge whose expiry has passed."""
    await init_db()
    store = SqlChallengeStore(
        async_session_factory,
        OtpGenerator(settings.otp_length, settings.otp_storage_secret),
        ChallengePolicy.from_settings(settings),
    )
    removed = await store.purge()
    print(f"✅ Purged {removed} expired OTP challenges.")


if __name__ == "__main__":
    asyncio.run(purge())
