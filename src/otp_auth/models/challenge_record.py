"""SQLAlchemy OTP challenge model."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


class OtpChallengeRecord(Base):
    """Durable form of :class:`otp_auth.models.otp.OtpChallenge`.

    One row per phone number.  ``code_secret`` holds only the salted hash
    of the issued code; ``version`` is bumped on every write and used as
    the compare-and-swap token.
    """

    __tablename__ = "otp_challenges"

    phone: Mapped[str] = mapped_column(String(32), primary_key=True)
    code_secret: Mapped[str] = mapped_column(String(160), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    attempts_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    resend_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_otp_challenges_expires_at", "expires_at"),
        Index("ix_otp_challenges_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<OtpChallengeRecord phone={self.phone!r} status={self.status!r} "
            f"version={self.version}>"
        )
