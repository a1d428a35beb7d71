"""Thin wrapper around py_webauthn for option construction and verification."""

from __future__ import annotations

import binascii
import json
from base64 import urlsafe_b64decode, urlsafe_b64encode
from collections.abc import Iterable
from typing import Any

from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.authentication.verify_authentication_response import VerifiedAuthentication
from webauthn.helpers import (
    parse_authentication_credential_json,
    parse_registration_credential_json,
)
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)
from webauthn.registration.verify_registration_response import VerifiedRegistration

from keyceremony.ceremony.types import CredentialRecord
from keyceremony.config import Settings


def _uv(settings: Settings) -> UserVerificationRequirement:
    """Map setting string to webauthn enum value."""
    return UserVerificationRequirement(settings.user_verification)


def _att(settings: Settings) -> AttestationConveyancePreference:
    return AttestationConveyancePreference(settings.attestation)


def _selection(settings: Settings) -> AuthenticatorSelectionCriteria:
    attachment = settings.authenticator_attachment
    return AuthenticatorSelectionCriteria(
        authenticator_attachment=AuthenticatorAttachment(attachment) if attachment else None,
        resident_key=ResidentKeyRequirement(settings.resident_key),
        user_verification=_uv(settings),
    )


def bytes_to_base64url(b: bytes) -> str:
    return urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def base64url_to_bytes(s: str) -> bytes:
    padding = 4 - len(s) % 4
    if padding != 4:
        s += "=" * padding
    return urlsafe_b64decode(s)


def decode_base64url_field(payload: dict[str, Any], *keys: str) -> bytes | None:
    """Return the first present, decodable base64url value among *keys*, else None."""
    for key in keys:
        value = payload.get(key)
        if not isinstance(value, str) or not value:
            continue
        try:
            return base64url_to_bytes(value)
        except (binascii.Error, ValueError):
            return None
    return None


def descriptors(records: Iterable[CredentialRecord]) -> list[PublicKeyCredentialDescriptor]:
    """Build credential descriptors (ID plus transport hints) for allow/exclude lists."""
    return [
        PublicKeyCredentialDescriptor(
            id=record.credential_id,
            transports=[AuthenticatorTransport(t.value) for t in sorted(record.transports)],
        )
        for record in records
    ]


def make_registration_options(
    *,
    rp_id: str,
    rp_name: str,
    user_id: bytes,
    user_name: str,
    user_display_name: str,
    challenge: bytes,
    settings: Settings,
    exclude_credentials: list[PublicKeyCredentialDescriptor] | None = None,
) -> dict[str, Any]:
    """Build PublicKeyCredentialCreationOptions and return as JSON-safe dict."""
    opts = generate_registration_options(
        rp_id=rp_id,
        rp_name=rp_name,
        user_id=user_id,
        user_name=user_name,
        user_display_name=user_display_name,
        challenge=challenge,
        timeout=settings.challenge_ttl_seconds * 1000,
        attestation=_att(settings),
        authenticator_selection=_selection(settings),
        exclude_credentials=exclude_credentials or [],
    )
    result: dict[str, Any] = json.loads(options_to_json(opts))
    return result


def make_authentication_options(
    *,
    rp_id: str,
    challenge: bytes,
    settings: Settings,
    allow_credentials: list[PublicKeyCredentialDescriptor] | None = None,
) -> dict[str, Any]:
    """Build PublicKeyCredentialRequestOptions and return as JSON-safe dict."""
    opts = generate_authentication_options(
        rp_id=rp_id,
        challenge=challenge,
        timeout=settings.challenge_ttl_seconds * 1000,
        user_verification=_uv(settings),
        allow_credentials=allow_credentials or [],
    )
    result: dict[str, Any] = json.loads(options_to_json(opts))
    return result


def verify_registration(
    *,
    credential_json: dict[str, Any],
    expected_challenge: bytes,
    expected_rp_id: str,
    expected_origin: str,
    require_user_verification: bool = False,
) -> VerifiedRegistration:
    """Verify a registration response. Raises py_webauthn exceptions on failure."""
    cred = parse_registration_credential_json(json.dumps(credential_json))
    return verify_registration_response(
        credential=cred,
        expected_challenge=expected_challenge,
        expected_rp_id=expected_rp_id,
        expected_origin=expected_origin,
        require_user_verification=require_user_verification,
    )


def verify_authentication(
    *,
    credential_json: dict[str, Any],
    expected_challenge: bytes,
    expected_rp_id: str,
    expected_origin: str,
    credential_public_key: bytes,
    credential_current_sign_count: int,
    require_user_verification: bool = False,
) -> VerifiedAuthentication:
    """Verify an authentication response. Raises py_webauthn exceptions on failure."""
    cred = parse_authentication_credential_json(json.dumps(credential_json))
    return verify_authentication_response(
        credential=cred,
        expected_challenge=expected_challenge,
        expected_rp_id=expected_rp_id,
        expected_origin=expected_origin,
        credential_public_key=credential_public_key,
        credential_current_sign_count=credential_current_sign_count,
        require_user_verification=require_user_verification,
    )
