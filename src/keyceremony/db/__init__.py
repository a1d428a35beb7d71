"""Database helpers."""

from keyceremony.db.base import Base
from keyceremony.db.engine import (
    async_to_sync_url,
    create_async_engine_from_settings,
    create_engine_from_url,
    sync_to_async_url,
)

__all__ = [
    "Base",
    "async_to_sync_url",
    "create_async_engine_from_settings",
    "create_engine_from_url",
    "sync_to_async_url",
]
