"""SQLAlchemy models backing ``SQLCredentialStore``.

Layout preserves the three things a durable store must never lose: the
username to user-handle mapping, the global credential-ID uniqueness index
(the primary key of ``keyceremony_credentials``) and each credential's counter.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from keyceremony.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------


class UserRow(Base):
    __tablename__ = "keyceremony_users"

    handle: Mapped[bytes] = mapped_column(LargeBinary(64), primary_key=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


# ---------------------------------------------------------------------------
# Credential  (many-to-one with UserRow)
# ---------------------------------------------------------------------------


class CredentialRow(Base):
    __tablename__ = "keyceremony_credentials"

    credential_id: Mapped[bytes] = mapped_column(LargeBinary(1023), primary_key=True)
    user_handle: Mapped[bytes] = mapped_column(LargeBinary(64), nullable=False, index=True)
    public_key: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    sign_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    transports: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON array
    aaguid: Mapped[str | None] = mapped_column(String(36), nullable=True)
    backed_up: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    flagged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Pending challenge  (at most one per user)
# ---------------------------------------------------------------------------


class ChallengeRow(Base):
    __tablename__ = "keyceremony_challenges"

    user_handle: Mapped[bytes] = mapped_column(LargeBinary(64), primary_key=True)
    challenge: Mapped[bytes] = mapped_column(LargeBinary(64), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # CeremonyType value
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_keyceremony_challenges_issued_at", "issued_at"),)
