"""Credential store contract and the in-memory backend.

A store exclusively owns every ``UserState``. Two operations carry the
protocol's atomicity requirements and must be a single unit per user:

* ``consume_pending_challenge`` (read + clear) so one challenge verifies at most once.
* ``update_counter`` (read + compare + write) so two racing assertions cannot both
  pass the monotonicity check against a stale counter.
"""

from __future__ import annotations

import abc
import asyncio
import copy
import logging
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING

from keyceremony.ceremony.errors import (
    CloneDetected,
    NoActiveCeremony,
    StoreConflict,
    UnknownCredential,
)
from keyceremony.ceremony.types import (
    CeremonyType,
    CredentialRecord,
    PendingChallenge,
    UserIdentity,
    UserState,
    utcnow,
)

if TYPE_CHECKING:
    from keyceremony.config import Settings

logger = logging.getLogger(__name__)


class CredentialStore(abc.ABC):
    """Durable mapping from user identity to credentials and the pending challenge."""

    async def init_schema(self) -> None:
        """Prepare backing storage. No-op unless the backend needs it."""

    async def close(self) -> None:
        """Release backing resources."""

    @abc.abstractmethod
    async def get_or_create_user(self, identity: UserIdentity) -> UserState: ...

    @abc.abstractmethod
    async def set_pending_challenge(
        self,
        identity: UserIdentity,
        challenge: bytes,
        ceremony: CeremonyType,
        *,
        issued_at: datetime | None = None,
    ) -> None:
        """Replace any outstanding challenge for *identity*."""

    @abc.abstractmethod
    async def consume_pending_challenge(
        self, identity: UserIdentity, ceremony: CeremonyType
    ) -> PendingChallenge:
        """Return and clear the pending challenge, or raise NoActiveCeremony.

        A challenge issued for the other ceremony type is left in place.
        """

    @abc.abstractmethod
    async def add_credential(self, identity: UserIdentity, record: CredentialRecord) -> None:
        """Attach *record* to *identity*. Raises StoreConflict on a duplicate credential ID."""

    @abc.abstractmethod
    async def update_counter(
        self, identity: UserIdentity, credential_id: bytes, new_counter: int
    ) -> CredentialRecord:
        """Advance the signature counter, or raise CloneDetected if it does not advance."""

    @abc.abstractmethod
    async def list_credentials(self, identity: UserIdentity) -> list[CredentialRecord]: ...

    @abc.abstractmethod
    async def get_credential(
        self, identity: UserIdentity, credential_id: bytes
    ) -> CredentialRecord | None: ...

    @abc.abstractmethod
    async def flag_credential(self, identity: UserIdentity, credential_id: bytes) -> None:
        """Mark a credential for administrative review."""

    @abc.abstractmethod
    async def purge_expired_challenges(self, older_than: datetime) -> int:
        """Drop challenges issued before *older_than*. Returns the count removed."""


class InMemoryCredentialStore(CredentialStore):
    """Process-local store. Mutations are serialised with one lock per known user handle."""

    def __init__(self) -> None:
        self._users: dict[bytes, UserState] = {}
        self._owners: dict[bytes, bytes] = {}  # credential_id -> user handle
        self._locks: defaultdict[bytes, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _state(self, identity: UserIdentity) -> UserState:
        state = self._users.get(identity.handle)
        if state is None:
            state = self._users[identity.handle] = UserState(identity=identity)
        return state

    async def get_or_create_user(self, identity: UserIdentity) -> UserState:
        async with self._locks[identity.handle]:
            return copy.deepcopy(self._state(identity))

    async def set_pending_challenge(
        self,
        identity: UserIdentity,
        challenge: bytes,
        ceremony: CeremonyType,
        *,
        issued_at: datetime | None = None,
    ) -> None:
        async with self._locks[identity.handle]:
            self._state(identity).pending = PendingChallenge(
                challenge=challenge,
                ceremony=ceremony,
                issued_at=issued_at or utcnow(),
            )

    async def consume_pending_challenge(
        self, identity: UserIdentity, ceremony: CeremonyType
    ) -> PendingChallenge:
        if identity.handle not in self._users:
            raise NoActiveCeremony("no challenge outstanding")
        async with self._locks[identity.handle]:
            state = self._users.get(identity.handle)
            pending = state.pending if state is not None else None
            if pending is None:
                raise NoActiveCeremony("no challenge outstanding")
            if pending.ceremony != ceremony:
                raise NoActiveCeremony(f"outstanding challenge is for {pending.ceremony}")
            state.pending = None  # type: ignore[union-attr]
            return pending

    async def add_credential(self, identity: UserIdentity, record: CredentialRecord) -> None:
        async with self._locks[identity.handle]:
            # No await between the uniqueness check and the insert.
            if record.credential_id in self._owners:
                raise StoreConflict("credential ID already registered")
            self._state(identity).credentials[record.credential_id] = record
            self._owners[record.credential_id] = identity.handle

    async def update_counter(
        self, identity: UserIdentity, credential_id: bytes, new_counter: int
    ) -> CredentialRecord:
        if identity.handle not in self._users:
            raise UnknownCredential("credential not registered for user")
        async with self._locks[identity.handle]:
            state = self._users.get(identity.handle)
            stored = state.credentials.get(credential_id) if state is not None else None
            if stored is None:
                raise UnknownCredential("credential not registered for user")
            if new_counter <= stored.sign_count:
                raise CloneDetected(credential_id, stored.sign_count, new_counter)
            updated = replace(stored, sign_count=new_counter, last_used_at=utcnow())
            state.credentials[credential_id] = updated  # type: ignore[union-attr]
            return updated

    async def list_credentials(self, identity: UserIdentity) -> list[CredentialRecord]:
        state = self._users.get(identity.handle)
        if state is None:
            return []
        return sorted(state.credentials.values(), key=lambda c: c.created_at)

    async def get_credential(
        self, identity: UserIdentity, credential_id: bytes
    ) -> CredentialRecord | None:
        state = self._users.get(identity.handle)
        if state is None:
            return None
        return state.credentials.get(credential_id)

    async def flag_credential(self, identity: UserIdentity, credential_id: bytes) -> None:
        if identity.handle not in self._users:
            raise UnknownCredential("credential not registered for user")
        async with self._locks[identity.handle]:
            state = self._users.get(identity.handle)
            stored = state.credentials.get(credential_id) if state is not None else None
            if stored is None:
                raise UnknownCredential("credential not registered for user")
            if stored.flagged_at is None:
                flagged = replace(stored, flagged_at=utcnow())
                state.credentials[credential_id] = flagged  # type: ignore[union-attr]

    async def purge_expired_challenges(self, older_than: datetime) -> int:
        count = 0
        for handle, state in list(self._users.items()):
            async with self._locks[handle]:
                if state.pending is not None and state.pending.issued_at < older_than:
                    state.pending = None
                    count += 1
        return count


def build_credential_store(settings: Settings) -> CredentialStore:
    """Instantiate the backend named by ``settings.store_backend``."""
    if settings.store_backend == "sql":
        from keyceremony.ceremony.sql_store import SQLCredentialStore

        return SQLCredentialStore.from_settings(settings)
    if settings.env == "production":
        logger.warning("in-memory credential store in production; state is lost on restart")
    return InMemoryCredentialStore()
