"""Response verification adapter over py_webauthn.

Bad responses come back as ``Rejected`` values rather than exceptions. The
signature counter is deliberately not compared here: the verifier is handed a
current count of zero and counter policy is left to the credential store.
"""

from __future__ import annotations

import asyncio
from typing import Any

from webauthn.helpers.exceptions import (
    InvalidAuthenticationResponse,
    InvalidAuthenticatorDataStructure,
    InvalidJSONStructure,
    InvalidRegistrationResponse,
    UnsupportedPublicKeyType,
)

from keyceremony.ceremony import webauthn
from keyceremony.ceremony.types import (
    CredentialRecord,
    Rejected,
    Transport,
    VerifiedAuthentication,
    VerifiedRegistration,
    parse_transports,
)
from keyceremony.config import Settings

_REJECTIONS = (
    InvalidRegistrationResponse,
    InvalidAuthenticationResponse,
    InvalidAuthenticatorDataStructure,
    InvalidJSONStructure,
    UnsupportedPublicKeyType,
    # malformed base64 / missing members surface as plain Python errors
    ValueError,
    KeyError,
    TypeError,
)


class ResponseVerifier:
    """Checks client responses against the challenge, origin and RP ID they must be bound to."""

    def __init__(self, settings: Settings) -> None:
        self.require_user_verification = settings.user_verification == "required"
        self.default_transports = frozenset(Transport(t) for t in settings.default_transports)

    async def verify_registration(
        self,
        response: dict[str, Any],
        *,
        expected_challenge: bytes,
        expected_origin: str,
        expected_rp_id: str,
    ) -> VerifiedRegistration | Rejected:
        try:
            verified = await asyncio.to_thread(
                webauthn.verify_registration,
                credential_json=response,
                expected_challenge=expected_challenge,
                expected_rp_id=expected_rp_id,
                expected_origin=expected_origin,
                require_user_verification=self.require_user_verification,
            )
        except _REJECTIONS as exc:
            return Rejected(f"{type(exc).__name__}: {exc}")

        raw = response.get("response")
        transports = parse_transports(raw.get("transports") if isinstance(raw, dict) else None)
        return VerifiedRegistration(
            credential_id=verified.credential_id,
            public_key=verified.credential_public_key,
            sign_count=verified.sign_count,
            transports=transports or self.default_transports,
            aaguid=verified.aaguid or None,
            backed_up=bool(verified.credential_backed_up),
        )

    async def verify_authentication(
        self,
        response: dict[str, Any],
        *,
        expected_challenge: bytes,
        expected_origin: str,
        expected_rp_id: str,
        stored: CredentialRecord,
        expected_user_handle: bytes | None = None,
    ) -> VerifiedAuthentication | Rejected:
        raw = response.get("response")
        if expected_user_handle is not None and isinstance(raw, dict):
            handle = webauthn.decode_base64url_field(raw, "userHandle")
            if raw.get("userHandle") and handle != expected_user_handle:
                return Rejected("userHandle does not belong to the claimed user")

        try:
            verified = await asyncio.to_thread(
                webauthn.verify_authentication,
                credential_json=response,
                expected_challenge=expected_challenge,
                expected_rp_id=expected_rp_id,
                expected_origin=expected_origin,
                credential_public_key=stored.public_key,
                credential_current_sign_count=0,
                require_user_verification=self.require_user_verification,
            )
        except _REJECTIONS as exc:
            return Rejected(f"{type(exc).__name__}: {exc}")

        if verified.credential_id != stored.credential_id:
            return Rejected("assertion credential ID does not match the stored credential")
        return VerifiedAuthentication(
            credential_id=verified.credential_id,
            new_sign_count=verified.new_sign_count,
            user_verified=bool(getattr(verified, "user_verified", False)),
        )
