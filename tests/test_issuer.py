"""Tests for user handles, challenge generation and option issuance."""

from __future__ import annotations

import pytest
from softauth import unb64url

from keyceremony.ceremony.errors import FailureReason, NotRegistered, UsernameRequired
from keyceremony.ceremony.ids import derive_user_handle, new_challenge, normalize_username
from keyceremony.ceremony.issuer import ChallengeIssuer
from keyceremony.ceremony.types import CeremonyType, CredentialRecord, Transport, UserIdentity

# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


class TestIds:
    def test_handle_is_deterministic_and_distinct(self):
        assert derive_user_handle("alice") == derive_user_handle("alice")
        assert derive_user_handle("alice") != derive_user_handle("Alice")
        assert len(derive_user_handle("alice")) == 32

    def test_handle_does_not_contain_username(self):
        assert b"alice" not in derive_user_handle("alice")

    @pytest.mark.parametrize("bad", [None, "", "   ", "x" * 256, 42])
    def test_bad_usernames_rejected(self, bad):
        with pytest.raises(UsernameRequired) as exc_info:
            normalize_username(bad)
        assert exc_info.value.reason is FailureReason.INVALID_INPUT
        assert exc_info.value.client_message == "Username required"

    def test_long_but_valid_username(self):
        assert normalize_username("x" * 255) == "x" * 255

    def test_challenges_are_fresh(self):
        assert len(new_challenge()) == 32
        assert len({new_challenge(16) for _ in range(50)}) == 50

    def test_short_challenges_refused(self):
        with pytest.raises(ValueError):
            new_challenge(15)


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


@pytest.fixture()
def issuer(store, settings, clock):
    return ChallengeIssuer(store, settings, clock=clock)


class TestRegistrationOptions:
    async def test_options_shape(self, issuer, store, settings):
        options = await issuer.issue_registration_options("alice")

        assert options["rp"] == {"id": "localhost", "name": settings.rp_name}
        assert unb64url(options["user"]["id"]) == derive_user_handle("alice")
        assert options["user"]["name"] == "alice"
        assert options["user"]["displayName"] == "alice"
        assert options["authenticatorSelection"]["authenticatorAttachment"] == "platform"
        assert options["authenticatorSelection"]["residentKey"] == "required"
        assert options["authenticatorSelection"]["userVerification"] == "preferred"
        assert options["attestation"] == "none"
        assert options["timeout"] == settings.challenge_ttl_seconds * 1000
        assert options.get("excludeCredentials", []) == []

        challenge = unb64url(options["challenge"])
        assert len(challenge) == settings.challenge_bytes
        pending = await store.consume_pending_challenge(
            UserIdentity.from_username("alice"), CeremonyType.REGISTRATION
        )
        assert pending.challenge == challenge

    async def test_existing_credentials_are_excluded(self, issuer, store):
        alice = UserIdentity.from_username("alice")
        await store.add_credential(
            alice,
            CredentialRecord(
                credential_id=b"existing",
                public_key=b"pk",
                transports=frozenset({Transport.USB}),
            ),
        )
        options = await issuer.issue_registration_options("alice")
        [excluded] = options["excludeCredentials"]
        assert unb64url(excluded["id"]) == b"existing"
        assert excluded["transports"] == ["usb"]

    async def test_each_issuance_replaces_the_last(self, issuer, store):
        first = await issuer.issue_registration_options("alice")
        second = await issuer.issue_registration_options("alice")
        assert first["challenge"] != second["challenge"]
        pending = await store.consume_pending_challenge(
            UserIdentity.from_username("alice"), CeremonyType.REGISTRATION
        )
        assert pending.challenge == unb64url(second["challenge"])

    async def test_blank_username(self, issuer):
        with pytest.raises(UsernameRequired):
            await issuer.issue_registration_options("  ")

    async def test_issued_at_uses_clock(self, issuer, store, clock):
        await issuer.issue_registration_options("alice")
        state = await store.get_or_create_user(UserIdentity.from_username("alice"))
        assert state.pending.issued_at == clock.now


class TestAuthenticationOptions:
    async def test_unknown_user_is_not_registered_and_nothing_stored(self, issuer, store):
        with pytest.raises(NotRegistered) as exc_info:
            await issuer.issue_authentication_options("mallory")
        assert exc_info.value.client_message == "User not registered"
        state = await store.get_or_create_user(UserIdentity.from_username("mallory"))
        assert state.pending is None

    async def test_allow_list_covers_every_credential(self, issuer, store, settings):
        alice = UserIdentity.from_username("alice")
        for cid, transport in [(b"phone", Transport.HYBRID), (b"laptop", Transport.INTERNAL)]:
            await store.add_credential(
                alice,
                CredentialRecord(
                    credential_id=cid, public_key=b"pk", transports=frozenset({transport})
                ),
            )

        options = await issuer.issue_authentication_options("alice")

        allowed = {unb64url(d["id"]): d["transports"] for d in options["allowCredentials"]}
        assert allowed == {b"phone": ["hybrid"], b"laptop": ["internal"]}
        assert options["rpId"] == "localhost"
        assert options["userVerification"] == "preferred"
        pending = await store.consume_pending_challenge(alice, CeremonyType.AUTHENTICATION)
        assert pending.challenge == unb64url(options["challenge"])

    async def test_challenge_size_follows_settings(self, store, settings, clock):
        wide = settings.model_copy(update={"challenge_bytes": 64})
        issuer = ChallengeIssuer(store, wide, clock=clock)
        options = await issuer.issue_registration_options("alice")
        assert len(unb64url(options["challenge"])) == 64
