"""Ceremony failure taxonomy.

Stores and the issuer raise these; the orchestrator turns them into
``CeremonyResult`` values so nothing reaches the transport layer unhandled.
"""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar


class FailureReason(StrEnum):
    INVALID_INPUT = "invalid_input"
    NOT_REGISTERED = "not_registered"
    NO_ACTIVE_CEREMONY = "no_active_ceremony"
    VERIFICATION_FAILED = "verification_failed"
    CLONE_DETECTED = "clone_detected"
    STORE_CONFLICT = "store_conflict"


# What the client is told. Verification, clone and conflict failures share one
# message so responses cannot be used as an oracle.
CLIENT_MESSAGES: dict[FailureReason, str] = {
    FailureReason.INVALID_INPUT: "Invalid request",
    FailureReason.NOT_REGISTERED: "User not registered",
    FailureReason.NO_ACTIVE_CEREMONY: "No active ceremony",
    FailureReason.VERIFICATION_FAILED: "Verification failed",
    FailureReason.CLONE_DETECTED: "Verification failed",
    FailureReason.STORE_CONFLICT: "Verification failed",
}


class CeremonyError(Exception):
    """Base class for ceremony-level failures."""

    reason: ClassVar[FailureReason] = FailureReason.VERIFICATION_FAILED

    @property
    def client_message(self) -> str:
        return CLIENT_MESSAGES[self.reason]


class InvalidInput(CeremonyError):
    """Missing or malformed request fields."""

    reason = FailureReason.INVALID_INPUT


class UsernameRequired(InvalidInput):
    @property
    def client_message(self) -> str:
        return "Username required"


class NotRegistered(CeremonyError):
    """Authentication requested for a user holding no credentials."""

    reason = FailureReason.NOT_REGISTERED


class NoActiveCeremony(CeremonyError):
    """No unexpired challenge of the requested ceremony type is outstanding."""

    reason = FailureReason.NO_ACTIVE_CEREMONY


class VerificationFailed(CeremonyError):
    reason = FailureReason.VERIFICATION_FAILED


class UnknownCredential(VerificationFailed):
    """The user holds no credential with the given ID."""


class CloneDetected(CeremonyError):
    """The reported signature counter did not advance past the stored one."""

    reason = FailureReason.CLONE_DETECTED

    def __init__(self, credential_id: bytes, stored: int, reported: int) -> None:
        super().__init__(f"signature counter {reported} does not advance past stored {stored}")
        self.credential_id = credential_id
        self.stored = stored
        self.reported = reported


class StoreConflict(CeremonyError):
    """A credential with the same ID is already registered."""

    reason = FailureReason.STORE_CONFLICT
