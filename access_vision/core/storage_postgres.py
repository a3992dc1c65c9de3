"""PostgreSQL roster/log gateway."""
from __future__ import annotations

import asyncio
import os
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from psycopg2 import pool
from psycopg2.extensions import connection as Connection
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from access_vision.config import DatabaseConfig, get_database_config_from_env
from access_vision.core.circuit_breaker import CircuitBreaker
from access_vision.core.exceptions import CircuitOpenError, DatabaseError
from access_vision.core.gateway import RosterLogGateway
from access_vision.core.logger import get_logger
from access_vision.core.types import AccessEvent, RosterEntry

logger = get_logger("storage")

SCHEMA_STATEMENTS = (
    'CREATE EXTENSION IF NOT EXISTS "pgcrypto"',
    """
    CREATE TABLE IF NOT EXISTS people (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        person_type TEXT NOT NULL CHECK (person_type IN ('student', 'teacher', 'staff')),
        has_facial_data BOOLEAN NOT NULL DEFAULT FALSE,
        active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS access_logs (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        person_id UUID,
        person_name TEXT NOT NULL,
        person_type TEXT,
        access_type TEXT NOT NULL CHECK (access_type IN ('entry', 'exit')),
        method TEXT NOT NULL CHECK (method IN ('facial', 'fingerprint')),
        granted BOOLEAN NOT NULL,
        location TEXT NOT NULL DEFAULT 'Main Gate',
        "timestamp" TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS access_logs_timestamp_idx
    ON access_logs ("timestamp" DESC)
    """,
)


class PostgresGateway(RosterLogGateway):
    """Roster and access log backed by the ``people`` and ``access_logs`` tables."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "access_vision",
        user: str = "access",
        password: str = "access",
        min_connections: int = 1,
        max_connections: int = 10,
    ):
        """Initialize the gateway; the pool is created lazily.

        Args:
            host: PostgreSQL host.
            port: PostgreSQL port.
            database: Database name.
            user: Database user.
            password: Database password.
            min_connections: Minimum number of connections in pool.
            max_connections: Maximum number of connections in pool.
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_connections = min_connections
        self.max_connections = max_connections
        self._pool: pool.ThreadedConnectionPool | None = None
        self._pool_lock = threading.Lock()
        self._breaker = CircuitBreaker(
            name="postgres",
            failure_threshold=5,
            recovery_timeout=60.0,
            expected_exception=DatabaseError,
        )

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "PostgresGateway":
        return cls(
            host=config.host,
            port=config.port,
            database=config.database,
            user=config.user,
            password=config.password,
        )

    def _get_pool(self) -> pool.ThreadedConnectionPool:
        if self._pool is None:
            with self._pool_lock:
                if self._pool is None:
                    connect_kwargs: dict[str, Any] = {
                        "host": self.host,
                        "port": self.port,
                        "database": self.database,
                        "user": self.user,
                        "password": self.password,
                    }
                    ssl_mode = os.getenv("DB_SSLMODE", "prefer")
                    if ssl_mode != "disable":
                        connect_kwargs["sslmode"] = ssl_mode
                    try:
                        self._pool = pool.ThreadedConnectionPool(
                            minconn=self.min_connections,
                            maxconn=self.max_connections,
                            **connect_kwargs,
                        )
                    except Exception as e:
                        logger.error(f"Failed to create connection pool: {e}")
                        raise DatabaseError(f"Failed to create connection pool: {e}") from e
                    logger.info(
                        f"Created connection pool: {self.min_connections}-{self.max_connections} connections"
                    )
        return self._pool

    def _acquire(self) -> Connection:
        try:
            conn = self._get_pool().getconn()
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Failed to get database connection: {e}") from e
        if conn is None:
            raise DatabaseError("Failed to get connection from pool")
        return conn

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(DatabaseError),
        reraise=True,
    )
    def _get_connection(self) -> Connection:
        """Get a pooled connection through the circuit breaker.

        Raises:
            DatabaseError: If no connection can be obtained.
            CircuitOpenError: If recent attempts kept failing.
        """
        return self._breaker.call(self._acquire)

    def _put_connection(self, conn: Connection) -> None:
        if self._pool and conn:
            try:
                self._pool.putconn(conn)
            except Exception as e:
                logger.warning(f"Error returning connection to pool: {e}")

    @contextmanager
    def _transaction(self) -> Iterator[Connection]:
        """Yield a connection; commit on success, roll back on error.

        Raises:
            DatabaseError: If the transaction fails.
        """
        conn = None
        try:
            conn = self._get_connection()
            yield conn
            conn.commit()
        except CircuitOpenError:
            raise
        except Exception as e:
            if conn:
                try:
                    conn.rollback()
                except Exception as rollback_error:
                    logger.warning(f"Rollback failed: {rollback_error}")
            logger.error(f"Transaction failed: {e}")
            if isinstance(e, DatabaseError):
                raise
            raise DatabaseError(f"Transaction failed: {e}") from e
        finally:
            if conn:
                self._put_connection(conn)

    def ensure_initialized(self) -> None:
        """Create the ``people`` and ``access_logs`` tables if missing."""
        with self._transaction() as conn:
            with conn.cursor() as cur:
                for statement in SCHEMA_STATEMENTS:
                    cur.execute(statement)
        logger.info("Database schema initialized")

    def list_enrollable(self) -> list[RosterEntry]:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id::text, first_name, last_name, person_type
                    FROM people
                    WHERE active AND has_facial_data
                    ORDER BY last_name, first_name
                    """
                )
                rows = cur.fetchall()
        return [
            RosterEntry(id=row[0], display_name=f"{row[1]} {row[2]}", person_type=row[3])
            for row in rows
        ]

    def _insert_access_event(self, event: AccessEvent) -> None:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO access_logs
                        (person_id, person_name, person_type, access_type,
                         method, granted, location, "timestamp")
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        event.person_id,
                        event.person_name,
                        event.person_type,
                        event.access_type,
                        event.method,
                        event.granted,
                        event.location,
                        event.timestamp,
                    ),
                )

    async def append_access_event(self, event: AccessEvent) -> None:
        await asyncio.to_thread(self._insert_access_event, event)

    def recent_access_events(self, limit: int = 50) -> list[AccessEvent]:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT person_id::text, person_name, person_type, "timestamp",
                           method, granted, access_type, location
                    FROM access_logs
                    ORDER BY "timestamp" DESC
                    LIMIT %s
                    """,
                    (limit,),
                )
                rows = cur.fetchall()
        return [
            AccessEvent(
                person_id=row[0],
                person_name=row[1],
                person_type=row[2],
                timestamp=row[3],
                method=row[4],
                granted=row[5],
                access_type=row[6],
                location=row[7],
            )
            for row in rows
        ]

    def health(self) -> dict[str, Any]:
        return {"circuit": self._breaker.snapshot()}

    def close(self) -> None:
        """Close every pooled connection."""
        with self._pool_lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None
                logger.info("Closed connection pool")


def get_gateway_from_env(config: Optional[DatabaseConfig] = None) -> PostgresGateway:
    """Create a Postgres gateway from DB_* environment variables."""
    return PostgresGateway.from_config(config or get_database_config_from_env())
