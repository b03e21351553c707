"""PostgreSQL connection settings and the asyncpg pool behind ``CalendarStore``."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, quote, unquote, urlparse

import asyncpg

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5432
SSL_MODES = frozenset({"disable", "allow", "prefer", "require", "verify-ca", "verify-full"})
_MAINTENANCE_DATABASE = "postgres"


def _clean_sslmode(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip().lower() or None


@dataclass(frozen=True)
class ConnectionSettings:
    """Where the calendar tables live; ``sslmode`` uses the libpq names."""

    database: str
    host: str = "localhost"
    port: int = DEFAULT_PORT
    user: str = "jobai"
    password: str = "jobai"
    sslmode: str | None = None

    def __post_init__(self) -> None:
        if not self.database:
            raise ValueError("Database name must not be empty")
        if self.sslmode is not None and self.sslmode not in SSL_MODES:
            raise ValueError(
                f"Unsupported sslmode {self.sslmode!r}; expected one of {sorted(SSL_MODES)}"
            )

    def __repr__(self) -> str:
        return (
            f"ConnectionSettings(database={self.database!r}, host={self.host!r}, "
            f"port={self.port}, user={self.user!r}, sslmode={self.sslmode!r})"
        )

    @classmethod
    def from_url(cls, url: str, *, default_database: str) -> ConnectionSettings:
        """Parse ``postgres[ql][+driver]://user:password@host:port/name?sslmode=...``."""
        parsed = urlparse(url)
        if not parsed.scheme.startswith("postgres"):
            raise ValueError(f"Not a PostgreSQL URL (scheme {parsed.scheme!r})")
        sslmode = parse_qs(parsed.query).get("sslmode", [None])[0]
        return cls(
            database=unquote(parsed.path.lstrip("/")) or default_database,
            host=parsed.hostname or "localhost",
            port=parsed.port or DEFAULT_PORT,
            user=unquote(parsed.username) if parsed.username else "jobai",
            password=unquote(parsed.password) if parsed.password else "jobai",
            sslmode=_clean_sslmode(sslmode),
        )

    @classmethod
    def from_env(
        cls, default_database: str, environ: Mapping[str, str] | None = None
    ) -> ConnectionSettings:
        """``DATABASE_URL`` when set, otherwise the ``POSTGRES_*`` variables.

        A database named by the environment wins over *default_database*.
        """
        env = os.environ if environ is None else environ
        url = env.get("DATABASE_URL")
        if url:
            return cls.from_url(url, default_database=default_database)
        return cls(
            database=env.get("POSTGRES_DB") or default_database,
            host=env.get("POSTGRES_HOST", "localhost"),
            port=int(env.get("POSTGRES_PORT", DEFAULT_PORT)),
            user=env.get("POSTGRES_USER", "jobai"),
            password=env.get("POSTGRES_PASSWORD", "jobai"),
            sslmode=_clean_sslmode(env.get("POSTGRES_SSLMODE")),
        )

    @property
    def migration_url(self) -> str:
        """SQLAlchemy URL (psycopg driver) handed to Alembic."""
        url = (
            f"postgresql+psycopg://{quote(self.user, safe='')}:{quote(self.password, safe='')}"
            f"@{self.host}:{self.port}/{quote(self.database, safe='')}"
        )
        if self.sslmode is not None:
            url += f"?sslmode={self.sslmode}"
        return url

    def asyncpg_kwargs(self, *, database: str | None = None) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": database or self.database,
        }
        if self.sslmode is not None:
            kwargs["ssl"] = self.sslmode
        return kwargs


class Database:
    """Owns the asyncpg pool that the calendar store queries through."""

    def __init__(
        self,
        settings: ConnectionSettings,
        *,
        min_pool_size: int = 1,
        max_pool_size: int = 10,
        command_timeout: float = 30.0,
    ) -> None:
        self.settings = settings
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.command_timeout = command_timeout
        self.pool: asyncpg.Pool | None = None

    @classmethod
    def from_env(cls, default_database: str) -> Database:
        return cls(ConnectionSettings.from_env(default_database))

    @property
    def name(self) -> str:
        return self.settings.database

    @property
    def url(self) -> str:
        return self.settings.migration_url

    async def provision(self) -> None:
        """Create the calendar database through the maintenance database if missing."""
        conn = await asyncpg.connect(
            **self.settings.asyncpg_kwargs(database=_MAINTENANCE_DATABASE)
        )
        try:
            exists = await conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", self.name)
            if exists:
                logger.debug("Database %s already exists", self.name)
                return
            # CREATE DATABASE takes no bind parameters.
            quoted = self.name.replace('"', '""')
            await conn.execute(f'CREATE DATABASE "{quoted}" TEMPLATE template0')
            logger.info("Created database %s", self.name)
        finally:
            await conn.close()

    async def connect(self) -> asyncpg.Pool:
        """Open the pool; a second call returns the pool already open."""
        if self.pool is not None:
            return self.pool
        self.pool = await asyncpg.create_pool(
            **self.settings.asyncpg_kwargs(),
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=self.command_timeout,
        )
        logger.info(
            "Opened connection pool for %s at %s:%s",
            self.name,
            self.settings.host,
            self.settings.port,
        )
        return self.pool

    def require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise RuntimeError(f"Database {self.name!r} is not connected")
        return self.pool

    async def close(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None
        logger.info("Closed connection pool for %s", self.name)
