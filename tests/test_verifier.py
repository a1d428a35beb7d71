"""ResponseVerifier tests against real py_webauthn verification.

Each negative case builds a response that is valid in every respect but one.
"""

from __future__ import annotations

from dataclasses import replace

import pytest
from softauth import ORIGIN, RP_ID, SoftwareAuthenticator, b64url, unb64url

from keyceremony.ceremony.ids import derive_user_handle, new_challenge
from keyceremony.ceremony.types import (
    Rejected,
    Transport,
    VerifiedAuthentication,
    VerifiedRegistration,
)
from keyceremony.ceremony.verifier import ResponseVerifier
from keyceremony.ceremony.webauthn import make_authentication_options, make_registration_options


@pytest.fixture()
def verifier(settings):
    return ResponseVerifier(settings)


def _creation_options(settings, challenge: bytes) -> dict:
    return make_registration_options(
        rp_id=RP_ID,
        rp_name=settings.rp_name,
        user_id=derive_user_handle("alice"),
        user_name="alice",
        user_display_name="alice",
        challenge=challenge,
        settings=settings,
    )


def _request_options(settings, challenge: bytes) -> dict:
    return make_authentication_options(rp_id=RP_ID, challenge=challenge, settings=settings)


async def _register(verifier, settings, authenticator, **create_kwargs) -> VerifiedRegistration:
    challenge = new_challenge()
    response = authenticator.create(_creation_options(settings, challenge), **create_kwargs)
    outcome = await verifier.verify_registration(
        response, expected_challenge=challenge, expected_origin=ORIGIN, expected_rp_id=RP_ID
    )
    assert isinstance(outcome, VerifiedRegistration), outcome
    return outcome


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegistration:
    async def test_valid_response(self, verifier, settings, authenticator):
        outcome = await _register(verifier, settings, authenticator)
        [cid] = authenticator.credentials
        assert outcome.credential_id == cid
        assert outcome.sign_count == 0
        assert outcome.transports == {Transport.INTERNAL}
        assert outcome.public_key

    async def test_initial_counter_is_preserved(self, verifier, settings, authenticator):
        outcome = await _register(verifier, settings, authenticator, initial_counter=9)
        assert outcome.sign_count == 9
        assert outcome.to_record().sign_count == 9

    async def test_unknown_transports_dropped_and_default_filled(self, verifier, settings):
        auth = SoftwareAuthenticator(origin=ORIGIN, transports=("smoke-signal",))
        outcome = await _register(verifier, settings, auth)
        assert outcome.transports == {Transport.INTERNAL}

    async def test_origin_mismatch(self, verifier, settings, authenticator):
        challenge = new_challenge()
        response = authenticator.create(
            _creation_options(settings, challenge), origin="https://evil.example"
        )
        outcome = await verifier.verify_registration(
            response, expected_challenge=challenge, expected_origin=ORIGIN, expected_rp_id=RP_ID
        )
        assert isinstance(outcome, Rejected)

    async def test_rp_id_mismatch(self, verifier, settings, authenticator):
        challenge = new_challenge()
        response = authenticator.create(
            _creation_options(settings, challenge), rp_id="evil.example"
        )
        outcome = await verifier.verify_registration(
            response, expected_challenge=challenge, expected_origin=ORIGIN, expected_rp_id=RP_ID
        )
        assert isinstance(outcome, Rejected)

    async def test_challenge_mismatch(self, verifier, settings, authenticator):
        response = authenticator.create(_creation_options(settings, new_challenge()))
        outcome = await verifier.verify_registration(
            response,
            expected_challenge=new_challenge(),
            expected_origin=ORIGIN,
            expected_rp_id=RP_ID,
        )
        assert isinstance(outcome, Rejected)

    @pytest.mark.parametrize(
        "response",
        [
            {},
            {"id": "abc", "rawId": "abc", "type": "public-key"},
            {
                "id": "abc",
                "rawId": "abc",
                "type": "public-key",
                "response": {"clientDataJSON": "!"},
            },
        ],
    )
    async def test_malformed_response_is_rejected_not_raised(self, verifier, response):
        outcome = await verifier.verify_registration(
            response,
            expected_challenge=new_challenge(),
            expected_origin=ORIGIN,
            expected_rp_id=RP_ID,
        )
        assert isinstance(outcome, Rejected)
        assert outcome.detail


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class TestAuthentication:
    async def _stored(self, verifier, settings, authenticator):
        return (await _register(verifier, settings, authenticator)).to_record()

    async def test_valid_assertion_reports_counter(self, verifier, settings, authenticator):
        stored = await self._stored(verifier, settings, authenticator)
        challenge = new_challenge()
        response = authenticator.get(
            _request_options(settings, challenge), counter=5, credential_id=stored.credential_id
        )
        outcome = await verifier.verify_authentication(
            response,
            expected_challenge=challenge,
            expected_origin=ORIGIN,
            expected_rp_id=RP_ID,
            stored=stored,
            expected_user_handle=derive_user_handle("alice"),
        )
        assert isinstance(outcome, VerifiedAuthentication), outcome
        assert outcome.new_sign_count == 5
        assert outcome.credential_id == stored.credential_id

    async def test_counter_not_enforced_by_verifier(self, verifier, settings, authenticator):
        stored = await self._stored(verifier, settings, authenticator)
        stored = replace(stored, sign_count=10)
        challenge = new_challenge()
        response = authenticator.get(
            _request_options(settings, challenge), counter=3, credential_id=stored.credential_id
        )
        outcome = await verifier.verify_authentication(
            response,
            expected_challenge=challenge,
            expected_origin=ORIGIN,
            expected_rp_id=RP_ID,
            stored=stored,
        )
        assert isinstance(outcome, VerifiedAuthentication)
        assert outcome.new_sign_count == 3

    async def test_origin_mismatch(self, verifier, settings, authenticator):
        stored = await self._stored(verifier, settings, authenticator)
        challenge = new_challenge()
        response = authenticator.get(
            _request_options(settings, challenge),
            origin="https://localhost.evil.example",
            credential_id=stored.credential_id,
        )
        outcome = await verifier.verify_authentication(
            response,
            expected_challenge=challenge,
            expected_origin=ORIGIN,
            expected_rp_id=RP_ID,
            stored=stored,
        )
        assert isinstance(outcome, Rejected)

    async def test_rp_id_mismatch(self, verifier, settings, authenticator):
        stored = await self._stored(verifier, settings, authenticator)
        challenge = new_challenge()
        response = authenticator.get(
            _request_options(settings, challenge), credential_id=stored.credential_id
        )
        outcome = await verifier.verify_authentication(
            response,
            expected_challenge=challenge,
            expected_origin=ORIGIN,
            expected_rp_id="example.com",
            stored=stored,
        )
        assert isinstance(outcome, Rejected)

    async def test_signature_from_another_key(self, verifier, settings, authenticator):
        stored = await self._stored(verifier, settings, authenticator)
        impostor = SoftwareAuthenticator(origin=ORIGIN)
        impostor.create(
            _creation_options(settings, new_challenge()), credential_id=stored.credential_id
        )
        challenge = new_challenge()
        response = impostor.get(
            _request_options(settings, challenge), credential_id=stored.credential_id
        )
        outcome = await verifier.verify_authentication(
            response,
            expected_challenge=challenge,
            expected_origin=ORIGIN,
            expected_rp_id=RP_ID,
            stored=stored,
        )
        assert isinstance(outcome, Rejected)

    async def test_user_handle_mismatch(self, verifier, settings, authenticator):
        stored = await self._stored(verifier, settings, authenticator)
        challenge = new_challenge()
        response = authenticator.get(
            _request_options(settings, challenge),
            credential_id=stored.credential_id,
            user_handle=derive_user_handle("bob"),
        )
        outcome = await verifier.verify_authentication(
            response,
            expected_challenge=challenge,
            expected_origin=ORIGIN,
            expected_rp_id=RP_ID,
            stored=stored,
            expected_user_handle=derive_user_handle("alice"),
        )
        assert isinstance(outcome, Rejected)
        assert "userHandle" in outcome.detail

    async def test_credential_id_swap(self, verifier, settings, authenticator):
        stored = await self._stored(verifier, settings, authenticator)
        challenge = new_challenge()
        response = authenticator.get(
            _request_options(settings, challenge), credential_id=stored.credential_id
        )
        response["id"] = response["rawId"] = b64url(b"someone-else")
        outcome = await verifier.verify_authentication(
            response,
            expected_challenge=challenge,
            expected_origin=ORIGIN,
            expected_rp_id=RP_ID,
            stored=stored,
        )
        assert isinstance(outcome, Rejected)


def test_require_user_verification_follows_settings(settings):
    assert ResponseVerifier(settings).require_user_verification is False
    strict = settings.model_copy(update={"user_verification": "required"})
    assert ResponseVerifier(strict).require_user_verification is True


def test_user_handle_round_trips_through_options(settings):
    options = _creation_options(settings, new_challenge())
    assert unb64url(options["user"]["id"]) == derive_user_handle("alice")
