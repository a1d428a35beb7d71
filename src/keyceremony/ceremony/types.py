"""Ceremony value types: identities, credential records, pending challenges, results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from keyceremony.ceremony.errors import CLIENT_MESSAGES, CeremonyError, FailureReason
from keyceremony.ceremony.ids import derive_user_handle, normalize_username


def utcnow() -> datetime:
    return datetime.now(UTC)


class CeremonyType(StrEnum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


class Transport(StrEnum):
    USB = "usb"
    NFC = "nfc"
    BLE = "ble"
    INTERNAL = "internal"
    HYBRID = "hybrid"


def parse_transports(raw: object) -> frozenset[Transport]:
    """Keep the transport hints we understand, silently dropping the rest."""
    if not isinstance(raw, (list, tuple, set, frozenset)):
        return frozenset()
    known = {t.value for t in Transport}
    return frozenset(Transport(item) for item in raw if isinstance(item, str) and item in known)


@dataclass(frozen=True)
class UserIdentity:
    """A username and the opaque handle derived from it."""

    username: str
    handle: bytes

    @classmethod
    def from_username(cls, username: object) -> UserIdentity:
        name = normalize_username(username)
        return cls(username=name, handle=derive_user_handle(name))


@dataclass(frozen=True)
class CredentialRecord:
    credential_id: bytes
    public_key: bytes
    sign_count: int = 0
    transports: frozenset[Transport] = frozenset()
    aaguid: str | None = None
    backed_up: bool = False
    created_at: datetime = field(default_factory=utcnow)
    last_used_at: datetime | None = None
    flagged_at: datetime | None = None

    @property
    def flagged(self) -> bool:
        return self.flagged_at is not None


@dataclass(frozen=True)
class PendingChallenge:
    challenge: bytes
    ceremony: CeremonyType
    issued_at: datetime = field(default_factory=utcnow)

    def is_expired(self, ttl_seconds: int, now: datetime | None = None) -> bool:
        now = now or utcnow()
        issued = self.issued_at
        if issued.tzinfo is None:
            issued = issued.replace(tzinfo=UTC)
        return now - issued > timedelta(seconds=ttl_seconds)


@dataclass
class UserState:
    """Aggregate root owned by a CredentialStore. Callers receive copies."""

    identity: UserIdentity
    credentials: dict[bytes, CredentialRecord] = field(default_factory=dict)
    pending: PendingChallenge | None = None


# ---------------------------------------------------------------------------
# Verifier outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VerifiedRegistration:
    credential_id: bytes
    public_key: bytes
    sign_count: int
    transports: frozenset[Transport]
    aaguid: str | None = None
    backed_up: bool = False

    def to_record(self, now: datetime | None = None) -> CredentialRecord:
        return CredentialRecord(
            credential_id=self.credential_id,
            public_key=self.public_key,
            sign_count=self.sign_count,
            transports=self.transports,
            aaguid=self.aaguid,
            backed_up=self.backed_up,
            created_at=now or utcnow(),
        )


@dataclass(frozen=True)
class VerifiedAuthentication:
    credential_id: bytes
    new_sign_count: int
    user_verified: bool = False


@dataclass(frozen=True)
class Rejected:
    """A response the verifier refused. *detail* is for server logs only."""

    detail: str


# ---------------------------------------------------------------------------
# Orchestrator outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CeremonyResult:
    verified: bool
    failure: FailureReason | None = None
    detail: str | None = None
    client_message: str | None = None

    @classmethod
    def success(cls) -> CeremonyResult:
        return cls(verified=True)

    @classmethod
    def failed(cls, reason: FailureReason, detail: str | None = None) -> CeremonyResult:
        return cls(verified=False, failure=reason, detail=detail)

    @classmethod
    def from_error(cls, exc: CeremonyError) -> CeremonyResult:
        return cls(
            verified=False,
            failure=exc.reason,
            detail=str(exc) or None,
            client_message=exc.client_message,
        )

    @property
    def error(self) -> str | None:
        if self.verified or self.failure is None:
            return None
        return self.client_message or CLIENT_MESSAGES[self.failure]

    def to_payload(self) -> dict[str, object]:
        if self.verified:
            return {"verified": True}
        return {"verified": False, "error": self.error}
