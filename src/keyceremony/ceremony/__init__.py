"""WebAuthn ceremony core: challenge issuance, response verification, credential records."""

from keyceremony.ceremony.errors import (
    CeremonyError,
    CloneDetected,
    FailureReason,
    InvalidInput,
    NoActiveCeremony,
    NotRegistered,
    StoreConflict,
    VerificationFailed,
)
from keyceremony.ceremony.issuer import ChallengeIssuer
from keyceremony.ceremony.orchestrator import CeremonyOrchestrator
from keyceremony.ceremony.store import (
    CredentialStore,
    InMemoryCredentialStore,
    build_credential_store,
)
from keyceremony.ceremony.types import (
    CeremonyResult,
    CeremonyType,
    CredentialRecord,
    Transport,
    UserIdentity,
)
from keyceremony.ceremony.verifier import ResponseVerifier

__all__ = [
    "CeremonyError",
    "CeremonyOrchestrator",
    "CeremonyResult",
    "CeremonyType",
    "ChallengeIssuer",
    "CloneDetected",
    "CredentialRecord",
    "CredentialStore",
    "FailureReason",
    "InMemoryCredentialStore",
    "InvalidInput",
    "NoActiveCeremony",
    "NotRegistered",
    "ResponseVerifier",
    "StoreConflict",
    "Transport",
    "UserIdentity",
    "VerificationFailed",
    "build_credential_store",
]
