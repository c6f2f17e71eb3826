"""
Execution Coordinator
=====================
Runs one sandbox call end to end:

    split -> namespace -> acquire -> (begin) -> run statements -> commit/rollback -> release

Two success policies:
- adhoc: every statement autocommits on its own; a failure is recorded and the
  remaining statements still run. Success only if every statement succeeded.
- setup: one explicit transaction; the first failure stops the run and rolls
  back everything executed in the call. Success only if all statements ran and
  the transaction committed.

The borrowed connection is released on every exit path. A connection whose
backend link dropped, or whose call failed unexpectedly, is invalidated.
"""

import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from .backends import StatementRun
from .errors import ConnectionLostError, ScriptTooLargeError, StatementExecutionError
from .namespacer import SessionNamespacer
from .pool import ConnectionPool
from .splitter import Statement, StatementSplitter

logger = logging.getLogger(__name__)

EMPTY_QUERY_ERROR = "Empty query"


class ExecutionMode(str, Enum):
    ADHOC = "adhoc"
    SETUP = "setup"


@dataclass
class StatementOutcome:
    """Result of one statement"""
    ordinal: int
    statement: str
    kind: str
    success: bool
    rows_affected: Optional[int] = None
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    truncated: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    execution_time_ms: int = 0

    @classmethod
    def from_run(cls, statement: Statement, text: str, run: StatementRun, elapsed_ms: int) -> "StatementOutcome":
        return cls(
            ordinal=statement.ordinal,
            statement=text,
            kind=statement.kind.value,
            success=True,
            rows_affected=run.row_count,
            columns=run.columns,
            rows=run.rows,
            truncated=run.truncated,
            execution_time_ms=elapsed_ms,
        )

    @classmethod
    def from_error(cls, statement: Statement, error: StatementExecutionError, elapsed_ms: int) -> "StatementOutcome":
        return cls(
            ordinal=statement.ordinal,
            statement=error.statement or statement.text,
            kind=statement.kind.value,
            success=False,
            error=error.message,
            error_code=error.code,
            execution_time_ms=elapsed_ms,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "ordinal": self.ordinal,
            "statement": self.statement,
            "kind": self.kind,
            "success": self.success,
            "rows_affected": self.rows_affected,
            "execution_time_ms": self.execution_time_ms,
        }
        if self.columns:
            data["columns"] = self.columns
            data["rows"] = self.rows
            data["truncated"] = self.truncated
        if not self.success:
            data["error"] = self.error
            data["error_code"] = self.error_code
        return data


@dataclass
class ExecutionResult:
    """Outcome of one execute() call"""
    success: bool
    mode: ExecutionMode
    session_token: Optional[str] = None
    outcomes: List[StatementOutcome] = field(default_factory=list)
    total_statements: int = 0
    rolled_back: bool = False
    transactional_ddl: bool = True
    error: Optional[str] = None
    execution_time_ms: int = 0

    @property
    def errors(self) -> List[str]:
        messages = [o.error for o in self.outcomes if not o.success and o.error]
        if self.error and self.error not in messages:
            messages.append(self.error)
        return messages

    @property
    def failed_statement(self) -> Optional[StatementOutcome]:
        return next((o for o in self.outcomes if not o.success), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "mode": self.mode.value,
            "session_token": self.session_token,
            "results": [o.to_dict() for o in self.outcomes],
            "total_statements": self.total_statements,
            "executed_statements": len(self.outcomes),
            "rolled_back": self.rolled_back,
            "transactional_ddl": self.transactional_ddl,
            "error": self.error,
            "errors": self.errors,
            "execution_time_ms": self.execution_time_ms,
        }


def _elapsed_ms(start_time: float) -> int:
    return int((time.time() - start_time) * 1000)


def _preview(text: str) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= 100 else flat[:100] + "..."


class ExecutionCoordinator:
    """Executes scripts against a ConnectionPool under the adhoc or setup policy"""

    def __init__(self, pool: ConnectionPool, splitter: Optional[StatementSplitter] = None,
                 namespacer: Optional[SessionNamespacer] = None, max_result_rows: int = 1000,
                 max_script_length: Optional[int] = None):
        self.pool = pool
        self.splitter = splitter or StatementSplitter()
        self.namespacer = namespacer or SessionNamespacer()
        self.max_result_rows = max_result_rows
        self.max_script_length = max_script_length

    def execute(self, script: Union[str, Sequence[str]], session_token: Optional[str] = None,
                mode: Union[ExecutionMode, str] = ExecutionMode.ADHOC) -> ExecutionResult:
        """
        Run a script (or a list of scripts) and report every statement

        Raises:
            NamespaceSanitizationError: session_token has no usable characters
            ScriptTooLargeError: script exceeds max_script_length
            PoolInitializationError / ConnectionAcquireError: no connection
            ConnectionLostError: backend link dropped mid-call
        """
        start_time = time.time()
        mode = ExecutionMode(mode)

        # Fails fast on unusable session identifiers, before any statement
        token = self.namespacer.namespace_for(session_token).token if session_token is not None else None
        statements = self._split(script)

        result = ExecutionResult(
            success=False,
            mode=mode,
            session_token=token,
            total_statements=len(statements),
            transactional_ddl=self.pool.adapter.transactional_ddl,
        )
        if not statements:
            result.error = EMPTY_QUERY_ERROR
            return result

        texts = [self.namespacer.rewrite(s.text, token) if token else s.text for s in statements]

        connection = self.pool.acquire()
        invalidate = False
        error = None
        try:
            if mode is ExecutionMode.SETUP:
                self._run_setup(connection, statements, texts, result)
            else:
                self._run_adhoc(connection, statements, texts, result)
        except ConnectionLostError as e:
            invalidate = True
            error = e
            raise
        except Exception as e:
            invalidate = True
            error = e
            if self.pool.is_disconnect(e, connection):
                logger.error(f"Connection lost during {mode.value} execution: {e}")
                raise ConnectionLostError(f"Connection lost: {e}") from e
            logger.error(f"Unexpected error during {mode.value} execution: {e}")
            self._rollback_quietly(connection)
            raise
        finally:
            self.pool.release(connection, invalidate=invalidate, error=error)
            result.execution_time_ms = _elapsed_ms(start_time)

        if not result.success and result.error is None and result.failed_statement is not None:
            result.error = result.failed_statement.error
        logger.info(
            f"{mode.value} execution finished: success={result.success}, "
            f"{len(result.outcomes)}/{result.total_statements} statements, {result.execution_time_ms}ms"
        )
        return result

    def _split(self, script: Union[str, Sequence[str]]) -> List[Statement]:
        scripts = [script] if isinstance(script, str) or script is None else list(script)
        statements = []
        for text in scripts:
            if self.max_script_length is not None and text and len(text) > self.max_script_length:
                raise ScriptTooLargeError(
                    f"Script is {len(text)} characters, the limit is {self.max_script_length}"
                )
            for statement in self.splitter.split(text or ""):
                statements.append(Statement(len(statements) + 1, statement.text, statement.kind))
        return statements

    def _run_adhoc(self, connection, statements: List[Statement], texts: List[str], result: ExecutionResult):
        dbapi_connection = connection.dbapi_connection
        self.pool.adapter.set_autocommit(dbapi_connection, True)

        for statement, text in zip(statements, texts):
            result.outcomes.append(self._run_statement(connection, statement, text))

        result.success = all(o.success for o in result.outcomes)

    def _run_setup(self, connection, statements: List[Statement], texts: List[str], result: ExecutionResult):
        adapter = self.pool.adapter
        dbapi_connection = connection.dbapi_connection
        adapter.set_autocommit(dbapi_connection, False)
        adapter.begin(dbapi_connection)

        for statement, text in zip(statements, texts):
            outcome = self._run_statement(connection, statement, text)
            result.outcomes.append(outcome)
            if not outcome.success:
                logger.warning(f"Setup stopped at statement {statement.ordinal}, rolling back")
                self._rollback(connection, text)
                result.rolled_back = True
                return

        try:
            dbapi_connection.commit()
        except adapter.dbapi_error as e:
            if self.pool.is_disconnect(e, connection):
                raise ConnectionLostError(f"Connection lost during commit: {e}") from e
            logger.warning(f"Commit failed, rolling back: {e}")
            self._rollback(connection, None)
            result.rolled_back = True
            result.error = f"Commit failed: {adapter.error_message(e)}"
            return

        result.success = True

    def _run_statement(self, connection, statement: Statement, text: str) -> StatementOutcome:
        adapter = self.pool.adapter
        logger.debug(f"Executing statement {statement.ordinal}: {_preview(text)}")
        start_time = time.time()
        try:
            run = adapter.run(connection.dbapi_connection, text, self.max_result_rows)
        except adapter.dbapi_error as e:
            if self.pool.is_disconnect(e, connection):
                logger.error(f"Connection lost while executing statement {statement.ordinal}")
                self._rollback_quietly(connection)
                raise ConnectionLostError(f"Connection lost: {e}", statement=text) from e
            failure = StatementExecutionError(adapter.error_message(e), code=adapter.error_code(e), statement=text)
            logger.warning(f"Statement {statement.ordinal} failed: {failure}")
            return StatementOutcome.from_error(statement, failure, _elapsed_ms(start_time))

        return StatementOutcome.from_run(statement, text, run, _elapsed_ms(start_time))

    def _rollback(self, connection, statement: Optional[str]):
        try:
            connection.dbapi_connection.rollback()
        except self.pool.adapter.dbapi_error as e:
            if self.pool.is_disconnect(e, connection):
                raise ConnectionLostError(f"Connection lost during rollback: {e}", statement=statement) from e
            raise

    def _rollback_quietly(self, connection):
        """Best-effort rollback on a path that is already failing"""
        try:
            connection.dbapi_connection.rollback()
        except Exception as e:
            logger.warning(f"Rollback after failure also failed: {e}")
