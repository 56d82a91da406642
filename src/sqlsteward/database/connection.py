"""
Database connection management for sqlsteward.

The target database and the executed scripts table share one small asyncpg
pool. Scripts run by external programs get the same coordinates through the
libpq environment variables.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import asyncpg
from pydantic import BaseModel, Field, field_validator

from ..exceptions import DatabaseConfigurationError, DatabaseConnectionError


logger = logging.getLogger(__name__)

_URL_SCHEMES = ("postgresql", "postgres")


class ConnectionConfig(BaseModel):
    """Where the maintained database lives and how to log in to it."""

    host: str = Field("localhost", description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Maintained database")
    user: str = Field(..., description="Role used to run the scripts")
    password: str = Field("", description="Password of that role")

    # Scripts run one after the other
    min_size: int = Field(1, description="Connections opened up front")
    max_size: int = Field(2, description="Upper bound on open connections")

    command_timeout: Optional[float] = Field(None, description="Per statement timeout in seconds")
    server_settings: Dict[str, str] = Field(
        default_factory=lambda: {"application_name": "sqlsteward"},
        description="Session settings sent on connect",
    )
    ssl_mode: Optional[str] = Field(None, description="libpq sslmode")

    @field_validator("database")
    @classmethod
    def validate_database(cls, v):
        if not v or not v.strip():
            raise ValueError("Database name is required")
        return v

    @classmethod
    def from_url(cls, url: str) -> "ConnectionConfig":
        """Build the configuration from a postgresql:// URL."""
        parsed = urlparse(url)
        if parsed.scheme not in _URL_SCHEMES:
            raise DatabaseConfigurationError(f"Invalid database URL scheme: {parsed.scheme}")

        database = parsed.path.lstrip("/")
        if not database:
            raise DatabaseConfigurationError("Database name is required", details={"url": url})

        options = {key: values[0] for key, values in parse_qs(parsed.query).items()}
        return cls(
            host=parsed.hostname or "localhost",
            port=parsed.port or 5432,
            database=database,
            user=parsed.username or "",
            password=parsed.password or "",
            ssl_mode=options.get("sslmode"),
        )

    @property
    def location(self) -> str:
        return f"{self.host}:{self.port}/{self.database}"

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for asyncpg.connect and asyncpg.create_pool."""
        kwargs: Dict[str, Any] = dict(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            command_timeout=self.command_timeout,
            server_settings=self.server_settings,
        )
        if self.ssl_mode:
            kwargs["ssl"] = self.ssl_mode
        return kwargs

    def to_environment(self) -> Dict[str, str]:
        """libpq environment variables, for scripts run by external programs."""
        env = {
            "PGHOST": self.host,
            "PGPORT": str(self.port),
            "PGDATABASE": self.database,
            "PGUSER": self.user,
            "PGPASSWORD": self.password,
        }
        if self.ssl_mode:
            env["PGSSLMODE"] = self.ssl_mode
        return env


class ConnectionPool:
    """
    Lazily opened asyncpg pool.

    Use it as an async context manager around one maintenance run:
    the pool opens on entry and closes on exit.
    """

    def __init__(self, config: ConnectionConfig):
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    async def initialize(self) -> None:
        async with self._lock:
            if self._pool is not None:
                return

            logger.info(f"Connecting to {self.config.location} as {self.config.user}")
            try:
                self._pool = await asyncpg.create_pool(
                    **self.config.to_connection_kwargs(),
                    min_size=self.config.min_size,
                    max_size=self.config.max_size,
                )
            except Exception as e:
                logger.error(f"Could not connect to {self.config.location}: {e}")
                raise DatabaseConnectionError(
                    f"Failed to initialize connection pool: {e}",
                    details={"database": self.config.location},
                    cause=e,
                ) from e

    async def close(self) -> None:
        async with self._lock:
            if self._pool is None:
                return
            logger.debug(f"Closing connections to {self.config.location}")
            pool, self._pool = self._pool, None
            await pool.close()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        if self._pool is None:
            raise DatabaseConnectionError("Pool is not connected")

        async with self._pool.acquire() as connection:
            yield connection

    async def execute(self, query: str, *args) -> str:
        """Run a statement on a pooled connection and return its status tag."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
