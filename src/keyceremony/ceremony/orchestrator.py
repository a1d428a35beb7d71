"""Ceremony state machine.

Per (user, ceremony type) the states are ``Idle -> ChallengeIssued -> {Verified | Rejected}``.
The pending challenge is consumed before verification starts, so a terminal
state always returns the user to ``Idle`` and a challenge can verify at most once.

``register`` and ``authenticate`` never raise for ceremony failures; they return a
``CeremonyResult`` carrying the failure reason.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from keyceremony.ceremony.errors import (
    CeremonyError,
    CloneDetected,
    FailureReason,
    InvalidInput,
    NoActiveCeremony,
    UnknownCredential,
    VerificationFailed,
)
from keyceremony.ceremony.issuer import ChallengeIssuer
from keyceremony.ceremony.store import CredentialStore
from keyceremony.ceremony.types import (
    CeremonyResult,
    CeremonyType,
    PendingChallenge,
    Rejected,
    UserIdentity,
    utcnow,
)
from keyceremony.ceremony.verifier import ResponseVerifier
from keyceremony.ceremony.webauthn import bytes_to_base64url, decode_base64url_field
from keyceremony.config import Settings

logger = logging.getLogger(__name__)

_WARN_REASONS = frozenset(
    {
        FailureReason.VERIFICATION_FAILED,
        FailureReason.CLONE_DETECTED,
        FailureReason.STORE_CONFLICT,
    }
)


class CeremonyOrchestrator:
    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        *,
        issuer: ChallengeIssuer | None = None,
        verifier: ResponseVerifier | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.settings = settings
        self.clock = clock
        self.issuer = issuer or ChallengeIssuer(store, settings, clock=clock)
        self.verifier = verifier or ResponseVerifier(settings)

    # ------------------------------------------------------------------
    # option issuance
    # ------------------------------------------------------------------

    async def begin_registration(self, username: object) -> dict[str, Any]:
        """Raises UsernameRequired on a bad username."""
        return await self.issuer.issue_registration_options(username)

    async def begin_authentication(self, username: object) -> dict[str, Any]:
        """Raises UsernameRequired on a bad username, NotRegistered without credentials."""
        return await self.issuer.issue_authentication_options(username)

    # ------------------------------------------------------------------
    # verification
    # ------------------------------------------------------------------

    async def register(self, username: object, attestation_response: object) -> CeremonyResult:
        try:
            await self._register(username, attestation_response)
        except CeremonyError as exc:
            return self._failed(CeremonyType.REGISTRATION, username, exc)
        return CeremonyResult.success()

    async def authenticate(self, username: object, assertion_response: object) -> CeremonyResult:
        try:
            await self._authenticate(username, assertion_response)
        except CeremonyError as exc:
            return self._failed(CeremonyType.AUTHENTICATION, username, exc)
        return CeremonyResult.success()

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _failed(
        self, ceremony: CeremonyType, username: object, exc: CeremonyError
    ) -> CeremonyResult:
        result = CeremonyResult.from_error(exc)
        level = logging.WARNING if exc.reason in _WARN_REASONS else logging.INFO
        logger.log(level, "%s failed for %r: %s (%s)", ceremony, username, exc.reason, exc)
        return result

    async def _consume(self, identity: UserIdentity, ceremony: CeremonyType) -> PendingChallenge:
        pending = await self.store.consume_pending_challenge(identity, ceremony)
        if pending.is_expired(self.settings.challenge_ttl_seconds, now=self.clock()):
            raise NoActiveCeremony(f"{ceremony} challenge expired")
        return pending

    async def _register(self, username: object, response: object) -> None:
        identity = UserIdentity.from_username(username)
        if not isinstance(response, dict) or not response:
            raise InvalidInput("attestation response missing")

        pending = await self._consume(identity, CeremonyType.REGISTRATION)
        outcome = await self.verifier.verify_registration(
            response,
            expected_challenge=pending.challenge,
            expected_origin=self.settings.effective_origin(),
            expected_rp_id=self.settings.effective_rp_id(),
        )
        if isinstance(outcome, Rejected):
            raise VerificationFailed(outcome.detail)

        await self.store.add_credential(identity, outcome.to_record(now=self.clock()))
        logger.info(
            "registered credential %s for %s (counter=%d)",
            bytes_to_base64url(outcome.credential_id),
            identity.username,
            outcome.sign_count,
        )

    async def _authenticate(self, username: object, response: object) -> None:
        identity = UserIdentity.from_username(username)
        if not isinstance(response, dict) or not response:
            raise InvalidInput("assertion response missing")
        credential_id = decode_base64url_field(response, "rawId", "id")
        if credential_id is None:
            raise InvalidInput("assertion carries no credential ID")

        pending = await self._consume(identity, CeremonyType.AUTHENTICATION)
        stored = await self.store.get_credential(identity, credential_id)
        if stored is None:
            raise UnknownCredential("credential not registered for user")

        outcome = await self.verifier.verify_authentication(
            response,
            expected_challenge=pending.challenge,
            expected_origin=self.settings.effective_origin(),
            expected_rp_id=self.settings.effective_rp_id(),
            stored=stored,
            expected_user_handle=identity.handle,
        )
        if isinstance(outcome, Rejected):
            raise VerificationFailed(outcome.detail)

        if (
            self.settings.allow_counterless_authenticators
            and outcome.new_sign_count == 0
            and stored.sign_count == 0
        ):
            logger.info(
                "authenticated %s with counterless credential %s",
                identity.username,
                bytes_to_base64url(credential_id),
            )
            return

        try:
            await self.store.update_counter(identity, credential_id, outcome.new_sign_count)
        except CloneDetected as exc:
            await self.store.flag_credential(identity, credential_id)
            logger.warning(
                "possible cloned authenticator: credential %s of %s reported counter %d "
                "(stored %d); flagged for review",
                bytes_to_base64url(credential_id),
                identity.username,
                exc.reported,
                exc.stored,
            )
            raise
        logger.info(
            "authenticated %s with credential %s (counter=%d)",
            identity.username,
            bytes_to_base64url(credential_id),
            outcome.new_sign_count,
        )
