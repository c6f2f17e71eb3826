"""
SQL Sandbox Manager
===================
Process-wide wiring of the sandbox engine: one ConnectionPool built from
Config, opened at application startup and closed at shutdown, plus the core
entry points used by the web layer and the CLI.

    from sqlplayground.sandbox_manager import execute_script
    result = execute_script("CREATE TABLE t (id INT);", "alice_1", "setup")

Every entry point also accepts an explicit pool, so tests and embedders can
run against their own ConnectionPool instead of the process default.
"""

import threading
import logging
from typing import List, Optional, Sequence, Union

from .config import Config, PoolSettings
from .coordinator import ExecutionCoordinator, ExecutionMode, ExecutionResult
from .namespacer import SessionNamespacer
from .pool import ConnectionPool
from .query_validator import QueryValidator, ValidationResult
from .splitter import Statement, StatementSplitter

logger = logging.getLogger(__name__)

_pool: Optional[ConnectionPool] = None
_pool_lock = threading.Lock()

_splitter = StatementSplitter(Config.SANDBOX_COMMENT_MARKER, Config.SANDBOX_BLOCK_TERMINATOR)
_namespacer = SessionNamespacer(Config.SANDBOX_SESSION_TOKEN_MAX_LENGTH)


def get_connection_pool() -> ConnectionPool:
    """The process default pool, created from Config on first use (not opened)"""
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = ConnectionPool(PoolSettings.from_config())
        return _pool


def set_connection_pool(pool: Optional[ConnectionPool]) -> Optional[ConnectionPool]:
    """Replace the process default pool; returns the previous one (not closed)"""
    global _pool
    with _pool_lock:
        previous, _pool = _pool, pool
    return previous


def startup_connection_pool() -> ConnectionPool:
    """Open the default pool. Raises PoolInitializationError."""
    pool = get_connection_pool()
    pool.open()
    return pool


def shutdown_connection_pool():
    global _pool
    with _pool_lock:
        pool, _pool = _pool, None
    if pool is not None:
        pool.close()


def _coordinator(pool: Optional[ConnectionPool]) -> ExecutionCoordinator:
    return ExecutionCoordinator(
        pool or get_connection_pool(),
        splitter=_splitter,
        namespacer=_namespacer,
        max_result_rows=Config.SANDBOX_MAX_RESULT_ROWS,
        max_script_length=Config.SANDBOX_MAX_SCRIPT_LENGTH,
    )


def execute_script(text: Union[str, Sequence[str]], session_token: Optional[str] = None,
                   mode: Union[ExecutionMode, str] = ExecutionMode.ADHOC,
                   pool: Optional[ConnectionPool] = None) -> ExecutionResult:
    """Split, namespace and run a script under the adhoc or setup policy"""
    return _coordinator(pool).execute(text, session_token, mode)


def validate_query(text: str, pool: Optional[ConnectionPool] = None) -> ValidationResult:
    """Dry-run syntax check; never changes backend state"""
    return QueryValidator(pool or get_connection_pool(), splitter=_splitter).validate(text)


def split_statements(text: str) -> List[Statement]:
    return _splitter.split(text)


def namespace_statement(text: str, session_token: str) -> str:
    return _namespacer.rewrite(text, session_token)
