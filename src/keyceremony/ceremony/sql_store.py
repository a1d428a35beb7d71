"""SQLAlchemy-backed credential store.

Atomicity comes from the database rather than from process-local locks, so
several application processes may share one store:

* consuming a challenge is a compare-and-delete keyed on the challenge bytes;
  of two racing requests only one sees ``rowcount == 1``.
* a counter update is a conditional ``UPDATE ... WHERE sign_count < :new``;
  a stale or replayed counter matches no row.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from keyceremony.ceremony.errors import (
    CloneDetected,
    NoActiveCeremony,
    StoreConflict,
    UnknownCredential,
)
from keyceremony.ceremony.models import ChallengeRow, CredentialRow, UserRow
from keyceremony.ceremony.store import CredentialStore
from keyceremony.ceremony.types import (
    CeremonyType,
    CredentialRecord,
    PendingChallenge,
    UserIdentity,
    UserState,
    parse_transports,
    utcnow,
)
from keyceremony.config import Settings
from keyceremony.db.base import Base
from keyceremony.db.engine import create_async_engine_from_settings


def _aware(dt: datetime | None) -> datetime | None:
    # SQLite drops tzinfo; everything is stored in UTC.
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def _to_record(row: CredentialRow) -> CredentialRecord:
    return CredentialRecord(
        credential_id=row.credential_id,
        public_key=row.public_key,
        sign_count=row.sign_count,
        transports=parse_transports(json.loads(row.transports) if row.transports else []),
        aaguid=row.aaguid,
        backed_up=row.backed_up,
        created_at=_aware(row.created_at) or utcnow(),
        last_used_at=_aware(row.last_used_at),
        flagged_at=_aware(row.flagged_at),
    )


class SQLCredentialStore(CredentialStore):
    """Credential store over an async SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_settings(cls, settings: Settings) -> SQLCredentialStore:
        engine = create_async_engine_from_settings(settings)
        return cls(async_sessionmaker(engine, expire_on_commit=False), engine)

    async def init_schema(self) -> None:
        if self._engine is None:
            return
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _ensure_user(self, db: AsyncSession, identity: UserIdentity) -> None:
        if await db.get(UserRow, identity.handle) is not None:
            return
        db.add(UserRow(handle=identity.handle, username=identity.username))
        try:
            await db.commit()
        except IntegrityError:
            # A concurrent request created the same user first.
            await db.rollback()

    async def _credential_row(
        self, db: AsyncSession, identity: UserIdentity, credential_id: bytes
    ) -> CredentialRow | None:
        result = await db.execute(
            select(CredentialRow).filter(
                CredentialRow.credential_id == credential_id,
                CredentialRow.user_handle == identity.handle,
            )
        )
        return result.scalars().first()

    async def _credential_rows(
        self, db: AsyncSession, identity: UserIdentity
    ) -> list[CredentialRow]:
        result = await db.execute(
            select(CredentialRow)
            .filter(CredentialRow.user_handle == identity.handle)
            .order_by(CredentialRow.created_at)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # users & challenges
    # ------------------------------------------------------------------

    async def get_or_create_user(self, identity: UserIdentity) -> UserState:
        async with self._session_factory() as db:
            await self._ensure_user(db, identity)
            rows = await self._credential_rows(db, identity)
            pending_row = await db.get(ChallengeRow, identity.handle)
            pending = None
            if pending_row is not None:
                pending = PendingChallenge(
                    challenge=pending_row.challenge,
                    ceremony=CeremonyType(pending_row.kind),
                    issued_at=_aware(pending_row.issued_at) or utcnow(),
                )
            return UserState(
                identity=identity,
                credentials={row.credential_id: _to_record(row) for row in rows},
                pending=pending,
            )

    async def set_pending_challenge(
        self,
        identity: UserIdentity,
        challenge: bytes,
        ceremony: CeremonyType,
        *,
        issued_at: datetime | None = None,
    ) -> None:
        issued_at = issued_at or utcnow()
        async with self._session_factory() as db:
            await self._ensure_user(db, identity)
            await db.execute(
                delete(ChallengeRow).filter(ChallengeRow.user_handle == identity.handle)
            )
            db.add(
                ChallengeRow(
                    user_handle=identity.handle,
                    challenge=challenge,
                    kind=ceremony.value,
                    issued_at=issued_at,
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                # A concurrent issuance inserted first; the newest write still wins.
                await db.rollback()
                await db.execute(
                    update(ChallengeRow)
                    .filter(ChallengeRow.user_handle == identity.handle)
                    .values(challenge=challenge, kind=ceremony.value, issued_at=issued_at)
                )
                await db.commit()

    async def consume_pending_challenge(
        self, identity: UserIdentity, ceremony: CeremonyType
    ) -> PendingChallenge:
        async with self._session_factory() as db:
            row = await db.get(ChallengeRow, identity.handle)
            if row is None:
                raise NoActiveCeremony("no challenge outstanding")
            if row.kind != ceremony.value:
                raise NoActiveCeremony(f"outstanding challenge is for {row.kind}")
            pending = PendingChallenge(
                challenge=row.challenge,
                ceremony=ceremony,
                issued_at=_aware(row.issued_at) or utcnow(),
            )
            result = await db.execute(
                delete(ChallengeRow)
                .filter(
                    ChallengeRow.user_handle == identity.handle,
                    ChallengeRow.challenge == pending.challenge,
                    ChallengeRow.kind == ceremony.value,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if result.rowcount != 1:  # type: ignore[attr-defined]
                raise NoActiveCeremony("challenge consumed by a concurrent request")
            return pending

    async def purge_expired_challenges(self, older_than: datetime) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                delete(ChallengeRow).filter(ChallengeRow.issued_at < older_than)
            )
            await db.commit()
            count: int = result.rowcount  # type: ignore[attr-defined]
            return count

    # ------------------------------------------------------------------
    # credentials
    # ------------------------------------------------------------------

    async def add_credential(self, identity: UserIdentity, record: CredentialRecord) -> None:
        async with self._session_factory() as db:
            await self._ensure_user(db, identity)
            transports = sorted(t.value for t in record.transports)
            db.add(
                CredentialRow(
                    credential_id=record.credential_id,
                    user_handle=identity.handle,
                    public_key=record.public_key,
                    sign_count=record.sign_count,
                    transports=json.dumps(transports) if transports else None,
                    aaguid=record.aaguid,
                    backed_up=record.backed_up,
                    created_at=record.created_at,
                    last_used_at=record.last_used_at,
                    flagged_at=record.flagged_at,
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise StoreConflict("credential ID already registered") from None

    async def update_counter(
        self, identity: UserIdentity, credential_id: bytes, new_counter: int
    ) -> CredentialRecord:
        async with self._session_factory() as db:
            result = await db.execute(
                update(CredentialRow)
                .filter(
                    CredentialRow.credential_id == credential_id,
                    CredentialRow.user_handle == identity.handle,
                    CredentialRow.sign_count < new_counter,
                )
                .values(sign_count=new_counter, last_used_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            row = await self._credential_row(db, identity, credential_id)
            if row is None:
                raise UnknownCredential("credential not registered for user")
            if result.rowcount != 1:  # type: ignore[attr-defined]
                raise CloneDetected(credential_id, row.sign_count, new_counter)
            return _to_record(row)

    async def list_credentials(self, identity: UserIdentity) -> list[CredentialRecord]:
        async with self._session_factory() as db:
            return [_to_record(row) for row in await self._credential_rows(db, identity)]

    async def get_credential(
        self, identity: UserIdentity, credential_id: bytes
    ) -> CredentialRecord | None:
        async with self._session_factory() as db:
            row = await self._credential_row(db, identity, credential_id)
            return _to_record(row) if row is not None else None

    async def flag_credential(self, identity: UserIdentity, credential_id: bytes) -> None:
        async with self._session_factory() as db:
            result = await db.execute(
                update(CredentialRow)
                .filter(
                    CredentialRow.credential_id == credential_id,
                    CredentialRow.user_handle == identity.handle,
                    CredentialRow.flagged_at.is_(None),
                )
                .values(flagged_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if result.rowcount == 0:  # type: ignore[attr-defined]
                if await self._credential_row(db, identity, credential_id) is None:
                    raise UnknownCredential("credential not registered for user")
