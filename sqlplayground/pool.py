"""
Connection Pool for the SQL Sandbox
===================================
A bounded pool of live backend connections with an explicit lifecycle:

    pool = ConnectionPool(PoolSettings.from_config())
    pool.open()        # creates the engine and warms min_size connections
    conn = pool.acquire()
    try:
        ...
    finally:
        pool.release(conn)
    pool.close()

Built on SQLAlchemy's QueuePool, which serializes checkout/checkin and never
hands the same connection to two callers. The pool is the only component that
opens network connections.
"""

import threading
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.pool import PoolProxiedConnection, QueuePool

from .backends import BackendAdapter, adapter_for_url
from .config import PoolSettings
from .errors import ConnectionAcquireError, PoolInitializationError

logger = logging.getLogger(__name__)


class ConnectionPool:
    """Bounded set of backend connections shared by every sandbox call"""

    def __init__(self, settings: PoolSettings, adapter: Optional[BackendAdapter] = None):
        self.settings = settings
        self.adapter = adapter or adapter_for_url(settings.database_url)
        self._engine: Optional[Engine] = None
        self._lock = threading.Lock()
        self._grow_lock = threading.Lock()
        self._closed = False
        self.opened_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def backend(self) -> str:
        return self.adapter.name

    def open(self) -> "ConnectionPool":
        """
        Create the engine and open min_size connections

        Raises:
            PoolInitializationError: backend unreachable or misconfigured
        """
        with self._lock:
            if self._engine is not None:
                return self

            engine = None
            try:
                options = {
                    "poolclass": QueuePool,
                    "pool_size": self.settings.max_size,
                    "max_overflow": 0,           # max_size is a hard bound
                    "pool_timeout": self.settings.timeout_seconds,
                    "pool_recycle": self.settings.recycle_seconds,
                    "pool_pre_ping": True,       # Verify connections before use
                    "echo": self.settings.echo,
                }
                options.update(self.adapter.engine_options())
                if self.settings.connect_args:
                    options.setdefault("connect_args", {}).update(self.settings.connect_args)

                engine = create_engine(self.settings.database_url, **options)
                self.adapter.configure(engine)
                self._open_connections(engine, self.settings.min_size)
            except Exception as e:
                if engine is not None:
                    engine.dispose()
                logger.error(f"Failed to initialize connection pool for {self.settings.display_url}: {e}")
                raise PoolInitializationError(
                    f"Failed to initialize connection pool for backend '{self.adapter.name}': {e}"
                ) from e

            self._engine = engine
            self._closed = False
            self.opened_at = datetime.now(timezone.utc)

        logger.info(
            f"Connection pool opened: {self.settings.display_url} "
            f"(min={self.settings.min_size}, max={self.settings.max_size}, increment={self.settings.increment})"
        )
        return self

    def close(self):
        """Dispose every pooled connection. Connections still checked out are closed on release."""
        with self._lock:
            engine = self._engine
            self._engine = None
            self._closed = True
        if engine is not None:
            engine.dispose()
            logger.info("Connection pool closed")

    def acquire(self) -> PoolProxiedConnection:
        """
        Borrow a connection, blocking up to timeout_seconds

        The pool is opened on first use if open() was never called.

        Raises:
            PoolInitializationError: the pool could not be created
            ConnectionAcquireError: pool closed, exhausted past the timeout, or backend unreachable
        """
        engine = self._engine
        if engine is None:
            if self._closed:
                raise ConnectionAcquireError("Connection pool is closed")
            engine = self.open()._engine

        try:
            self._grow(engine)
            connection = engine.raw_connection()
        except PoolTimeoutError as e:
            logger.error(f"No connection available after {self.settings.timeout_seconds}s")
            raise ConnectionAcquireError(
                f"No database connection available within {self.settings.timeout_seconds} seconds"
            ) from e
        except DBAPIError as e:
            logger.error(f"Backend unreachable while acquiring a connection: {e.orig}")
            raise ConnectionAcquireError(f"Could not connect to the database: {e.orig}") from e

        logger.debug(f"Connection acquired ({self._describe(engine)})")
        return connection

    def release(self, connection: PoolProxiedConnection, invalidate: bool = False,
                error: Optional[BaseException] = None):
        """Return a borrowed connection; invalidated connections are discarded instead of reused"""
        if invalidate:
            logger.warning("Discarding pooled connection after failure")
            connection.invalidate(error)
        try:
            connection.close()
        except SQLAlchemyError as e:
            logger.warning(f"Error returning connection to pool: {e}")

    @contextmanager
    def connection(self) -> Iterator[PoolProxiedConnection]:
        """Borrow a connection for the duration of a with block"""
        conn = self.acquire()
        invalidate = False
        error = None
        try:
            yield conn
        except BaseException as e:
            invalidate = self.is_disconnect(e, conn)
            error = e
            raise
        finally:
            self.release(conn, invalidate=invalidate, error=error)

    def is_dbapi_error(self, exc: BaseException) -> bool:
        return isinstance(exc, self.adapter.dbapi_error) and self.adapter.dbapi_error is not Exception

    def is_disconnect(self, exc: BaseException, connection: Optional[PoolProxiedConnection] = None) -> bool:
        """True when exc means the backend link is gone"""
        engine = self._engine
        if engine is None or not self.is_dbapi_error(exc):
            return False
        dbapi_connection = connection.dbapi_connection if connection is not None else None
        return bool(engine.dialect.is_disconnect(exc, dbapi_connection, None))

    def status(self) -> Dict[str, Any]:
        engine = self._engine
        status = {
            "backend": self.adapter.name,
            "open": engine is not None,
            "min_size": self.settings.min_size,
            "max_size": self.settings.max_size,
            "size": 0,
            "checked_in": 0,
            "checked_out": 0,
        }
        if engine is not None:
            pool = engine.pool
            status["checked_in"] = pool.checkedin()
            status["checked_out"] = pool.checkedout()
            status["size"] = status["checked_in"] + status["checked_out"]
        return status

    def _open_connections(self, engine: Engine, count: int):
        """Open count new connections and park them in the pool"""
        connections = []
        try:
            for _ in range(count):
                connections.append(engine.raw_connection())
        finally:
            for conn in connections:
                conn.close()

    def _grow(self, engine: Engine):
        """Best-effort pre-open of increment connections when the idle set is empty"""
        if self.settings.increment <= 1:
            return
        # Another caller is already growing the pool
        if not self._grow_lock.acquire(blocking=False):
            return
        try:
            pool = engine.pool
            if pool.checkedin() > 0:
                return
            # Slots never opened so far; the caller takes one of the new connections
            unopened = self.settings.max_size - (pool.size() + pool.overflow())
            extra = min(self.settings.increment, unopened)
            if extra <= 1:
                return
            self._open_connections(engine, extra)
            logger.info(f"Connection pool grew by {extra} ({self._describe(engine)})")
        except PoolTimeoutError:
            logger.warning("Could not grow connection pool: slots were taken by concurrent callers")
        except DBAPIError as e:
            logger.warning(f"Could not grow connection pool: {e.orig}")
        finally:
            self._grow_lock.release()

    @staticmethod
    def _describe(engine: Engine) -> str:
        pool = engine.pool
        return f"checked out {pool.checkedout()}, idle {pool.checkedin()}"

    def __enter__(self) -> "ConnectionPool":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
