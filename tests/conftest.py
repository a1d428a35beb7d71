"""Common test fixtures and helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from softauth import ORIGIN, RP_ID, SoftwareAuthenticator

from keyceremony.ceremony.orchestrator import CeremonyOrchestrator
from keyceremony.ceremony.sql_store import SQLCredentialStore
from keyceremony.ceremony.store import InMemoryCredentialStore
from keyceremony.config import Settings


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        rp_id=RP_ID,
        origin=ORIGIN,
        env="development",
        database_url=f"sqlite:///{tmp_path / 'keyceremony_test.db'}",
    )


@pytest.fixture(params=["memory", "sql"])
async def store(request, settings):
    if request.param == "memory":
        yield InMemoryCredentialStore()
        return
    sql_store = SQLCredentialStore.from_settings(settings)
    await sql_store.init_schema()
    yield sql_store
    await sql_store.close()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def orchestrator(store, settings, clock):
    return CeremonyOrchestrator(store, settings, clock=clock)


@pytest.fixture()
def authenticator():
    return SoftwareAuthenticator(origin=ORIGIN)
