"""Key-value stores that hold the service-account credential JSON.

The bridge never writes credentials; it only reads one entry (by default
``gcp_service_account_json``) per token exchange.  Backends:

- :class:`EnvKVStore`: the upper-cased key as a process environment variable
- :class:`FileKVStore`: one file per key inside a directory (mounted secrets)
- :class:`PostgresKVStore`: a ``key``/``value`` table read through asyncpg
- :class:`MemoryKVStore`: a fixed mapping (tests and the ``call`` CLI command)

All backends return ``None`` for a missing key; deciding whether that is an
error is the caller's job.  Values are never logged.
"""

from __future__ import annotations

import abc
import logging
import os
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import asyncpg

from calendar_bridge.config import CredentialsConfig

if TYPE_CHECKING:
    from asyncpg import Pool

logger = logging.getLogger(__name__)


class KVStore(abc.ABC):
    """Read-only async key-value lookup."""

    @abc.abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored under *key*, or ``None`` when absent."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None


class MemoryKVStore(KVStore):
    def __init__(self, entries: Mapping[str, str] | None = None) -> None:
        self._entries = dict(entries or {})

    async def get(self, key: str) -> str | None:
        return self._entries.get(key)

    def __repr__(self) -> str:
        return f"MemoryKVStore(keys={sorted(self._entries)!r})"


class EnvKVStore(KVStore):
    """Resolve ``key`` as the environment variable ``prefix + key.upper()``."""

    def __init__(self, *, prefix: str = "", environ: Mapping[str, str] | None = None) -> None:
        self._prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def env_name(self, key: str) -> str:
        return f"{self._prefix}{key.upper()}"

    async def get(self, key: str) -> str | None:
        value = self._environ.get(self.env_name(key))
        if not value:
            return None
        logger.debug("Resolved KV entry %r from environment", key)
        return value


class FileKVStore(KVStore):
    """Read ``directory/<key>``; keys containing path separators are rejected."""

    def __init__(self, directory: Path | str) -> None:
        self._directory = Path(directory)

    async def get(self, key: str) -> str | None:
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise ValueError(f"Invalid KV key for file store: {key!r}")
        path = self._directory / key
        if not path.is_file():
            return None
        value = path.read_text(encoding="utf-8").strip()
        return value or None

    def __repr__(self) -> str:
        return f"FileKVStore(directory={str(self._directory)!r})"


class PostgresKVStore(KVStore):
    """Read entries from a ``(key TEXT PRIMARY KEY, value TEXT)`` table.

    Parameters
    ----------
    dsn:
        Connection string used to lazily create a small pool on first lookup.
    pool:
        An existing asyncpg pool.  When given, the store does not own it and
        :meth:`close` leaves it open.
    table:
        Table name; must already be validated as an SQL identifier.
    """

    def __init__(
        self,
        *,
        dsn: str | None = None,
        pool: Pool | None = None,
        table: str = "kv_entries",
    ) -> None:
        if dsn is None and pool is None:
            raise ValueError("PostgresKVStore requires a dsn or a pool")
        self._dsn = dsn
        self._pool = pool
        self._owns_pool = pool is None
        self._table = table

    async def _get_pool(self) -> Any:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(self._dsn, min_size=1, max_size=2)
        return self._pool

    async def get(self, key: str) -> str | None:
        pool = await self._get_pool()
        try:
            async with _acquire_conn(pool) as conn:
                row = await conn.fetchrow(
                    f"SELECT value FROM {self._table} WHERE key = $1",
                    key,
                )
        except asyncpg.exceptions.UndefinedTableError:
            logger.warning(
                "KV lookup for %r skipped; table %s does not exist", key, self._table
            )
            return None
        if row is None:
            return None
        return row["value"]

    async def close(self) -> None:
        if self._owns_pool and self._pool is not None:
            await self._pool.close()
            self._pool = None

    def __repr__(self) -> str:
        return f"PostgresKVStore(table={self._table!r})"


@asynccontextmanager
async def _acquire_conn(pool: Any) -> AsyncIterator[Any]:
    """Acquire a DB connection, including AsyncMock-friendly test doubles."""
    acquired = pool.acquire()
    if hasattr(acquired, "__aenter__"):
        async with acquired as conn:
            yield conn
        return
    if hasattr(acquired, "__await__"):
        acquired = await acquired
    yield acquired


def create_kv_store(config: CredentialsConfig) -> KVStore:
    """Build the KV store selected by ``config.backend``."""
    if config.backend == "env":
        return EnvKVStore()
    if config.backend == "file":
        assert config.directory is not None
        return FileKVStore(config.directory)
    if config.backend == "postgres":
        return PostgresKVStore(dsn=config.dsn, table=config.table)
    raise ValueError(f"Unknown credential backend: {config.backend!r}")
