"""
Backend Adapters
================
One adapter per relational engine. The pool, coordinator and validator only
talk to the BackendAdapter interface; everything dialect specific (autocommit
switching, transaction start, parse-only checks, error codes) lives here.

Adapters work on the raw DB-API connection behind a pooled connection.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlparse import lexer, tokens

from .errors import ValidationError

logger = logging.getLogger(__name__)

# Statements that change the schema; some parse-only facilities execute them
DDL_PATTERN = re.compile(
    r"^\s*(?:CREATE|ALTER|DROP|TRUNCATE|RENAME|COMMENT|GRANT|REVOKE|ANALYZE|AUDIT|NOAUDIT|PURGE|FLASHBACK)\b",
    re.IGNORECASE,
)

# Statements that end or escape the surrounding transaction
TRANSACTION_CONTROL_PATTERN = re.compile(
    r"^\s*(?:COMMIT|ROLLBACK|ABORT|END|SAVEPOINT|RELEASE|VACUUM|CHECKPOINT|ATTACH|DETACH|PRAGMA"
    r"|START\s+TRANSACTION|SET\s+TRANSACTION|PREPARE\s+TRANSACTION)\b"
    r"|^\s*BEGIN(?:\s+(?:TRANSACTION|WORK|DEFERRED|IMMEDIATE|EXCLUSIVE)\b)?\s*;?\s*$",
    re.IGNORECASE,
)

# Statements PostgreSQL accepts in PREPARE
PREPARABLE_PATTERN = re.compile(r"^\s*(?:SELECT|INSERT|UPDATE|DELETE|VALUES|WITH|MERGE)\b", re.IGNORECASE)


def strip_comments(sql: str) -> str:
    """Statement text with every comment replaced by a space (sqlparse lexer)"""
    return "".join(" " if ttype in tokens.Comment else value for ttype, value in lexer.tokenize(sql))


def is_transaction_control(sql: str) -> bool:
    return bool(TRANSACTION_CONTROL_PATTERN.match(strip_comments(sql)))


def is_ddl(sql: str) -> bool:
    return bool(DDL_PATTERN.match(strip_comments(sql)))


def is_preparable(sql: str) -> bool:
    return bool(PREPARABLE_PATTERN.match(strip_comments(sql)))


@dataclass
class StatementRun:
    """Raw outcome of one statement on the backend"""
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: Optional[int] = None
    truncated: bool = False

    @property
    def returns_rows(self) -> bool:
        return bool(self.columns)


class BackendAdapter:
    """Generic DB-API behaviour; subclasses override what their driver does differently"""

    name = "generic"
    transactional_ddl = False

    # Driver exception base class, taken from the engine's dialect in configure()
    dbapi_error: Type[BaseException] = Exception

    def configure(self, engine: Engine):
        """Hook called once after the engine is created"""
        self.dbapi_error = engine.dialect.loaded_dbapi.Error

    def engine_options(self) -> Dict[str, Any]:
        return {}

    def set_autocommit(self, dbapi_connection, enabled: bool):
        # Switching modes inside an open transaction is an error for most drivers
        dbapi_connection.rollback()
        if hasattr(dbapi_connection, "autocommit"):
            dbapi_connection.autocommit = enabled

    def begin(self, dbapi_connection):
        """Start an explicit transaction. DB-API drivers begin implicitly."""

    def run(self, dbapi_connection, sql: str, max_rows: int) -> StatementRun:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(sql)
            result = StatementRun()
            if cursor.description:
                result.columns = [column[0] for column in cursor.description]
                fetched = cursor.fetchmany(max_rows + 1)
                result.truncated = len(fetched) > max_rows
                result.rows = [dict(zip(result.columns, row)) for row in fetched[:max_rows]]
            rowcount = getattr(cursor, "rowcount", -1)
            if rowcount is not None and rowcount >= 0:
                result.row_count = rowcount
            elif result.columns:
                result.row_count = len(result.rows)
            return result
        finally:
            cursor.close()

    def parse_only(self, dbapi_connection, sql: str) -> bool:
        """
        Check a statement without running it

        Returns:
            True when the backend checked the statement natively, False when
            it has no facility for this statement (caller uses a heuristic)

        Raises:
            ValidationError: the backend rejected the statement
        """
        return False

    def error_code(self, exc: BaseException) -> Optional[str]:
        return None

    def error_message(self, exc: BaseException) -> str:
        message = str(exc).strip()
        return message or exc.__class__.__name__

    def _validation_error(self, exc: BaseException) -> ValidationError:
        return ValidationError(self.error_message(exc), code=self.error_code(exc))


class SQLiteAdapter(BackendAdapter):
    """Local development and tests"""

    name = "sqlite"
    transactional_ddl = True

    def engine_options(self) -> Dict[str, Any]:
        return {"connect_args": {"check_same_thread": False}}

    def configure(self, engine: Engine):
        super().configure(engine)

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            # Transactions are issued explicitly by begin()
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    def set_autocommit(self, dbapi_connection, enabled: bool):
        # With isolation_level=None the driver autocommits until BEGIN
        dbapi_connection.rollback()

    def begin(self, dbapi_connection):
        dbapi_connection.execute("BEGIN")

    def parse_only(self, dbapi_connection, sql: str) -> bool:
        cursor = dbapi_connection.cursor()
        try:
            if dbapi_connection.in_transaction and not is_transaction_control(sql):
                # Runs inside the caller's transaction, which is rolled back, so
                # later statements can see objects created by earlier ones
                cursor.execute(sql)
            else:
                # Compiles without running
                cursor.execute(f"EXPLAIN {sql}")
        except self.dbapi_error as e:
            raise self._validation_error(e) from e
        finally:
            cursor.close()
        return True

    def error_code(self, exc: BaseException) -> Optional[str]:
        return getattr(exc, "sqlite_errorname", None)


class PostgresAdapter(BackendAdapter):
    """psycopg2"""

    name = "postgresql"
    transactional_ddl = True

    def parse_only(self, dbapi_connection, sql: str) -> bool:
        if is_transaction_control(sql):
            return False

        cursor = dbapi_connection.cursor()
        try:
            if is_preparable(sql):
                cursor.execute(f"PREPARE sandbox_parse_check AS {sql}")
                cursor.execute("DEALLOCATE sandbox_parse_check")
            else:
                # Caller rolls the surrounding transaction back
                cursor.execute(sql)
        except self.dbapi_error as e:
            raise self._validation_error(e) from e
        finally:
            cursor.close()
        return True

    def error_code(self, exc: BaseException) -> Optional[str]:
        return getattr(exc, "pgcode", None) or getattr(exc, "sqlstate", None)

    def error_message(self, exc: BaseException) -> str:
        message = getattr(getattr(exc, "diag", None), "message_primary", None)
        return message or super().error_message(exc)


class OracleAdapter(BackendAdapter):
    """python-oracledb"""

    name = "oracle"
    transactional_ddl = False

    PARSE_BLOCK = """
        DECLARE
            c INTEGER;
        BEGIN
            c := DBMS_SQL.OPEN_CURSOR;
            BEGIN
                DBMS_SQL.PARSE(c, :stmt, DBMS_SQL.NATIVE);
                :valid := 1;
            EXCEPTION
                WHEN OTHERS THEN
                    :valid := 0;
                    :err := SQLERRM;
            END;
            DBMS_SQL.CLOSE_CURSOR(c);
        END;"""

    def configure(self, engine: Engine):
        super().configure(engine)
        import oracledb

        # Return CLOB/BLOB columns as str/bytes so rows are plain values
        oracledb.defaults.fetch_lobs = False

    def parse_only(self, dbapi_connection, sql: str) -> bool:
        if is_ddl(sql):
            # DBMS_SQL.PARSE executes DDL immediately
            return False

        cursor = dbapi_connection.cursor()
        try:
            valid = cursor.var(int)
            err = cursor.var(str)
            cursor.execute(self.PARSE_BLOCK, stmt=sql, valid=valid, err=err)
        finally:
            cursor.close()

        if valid.getvalue() != 1:
            message = err.getvalue() or "Invalid SQL"
            code = message.split(":", 1)[0] if message.startswith("ORA-") else None
            raise ValidationError(message, code=code)
        return True

    def error_code(self, exc: BaseException) -> Optional[str]:
        if exc.args:
            return getattr(exc.args[0], "full_code", None)
        return None


class MySQLAdapter(BackendAdapter):
    """PyMySQL"""

    name = "mysql"
    transactional_ddl = False

    # ER_UNSUPPORTED_PS: statement cannot be prepared
    UNSUPPORTED_PREPARE = 1295

    def set_autocommit(self, dbapi_connection, enabled: bool):
        dbapi_connection.rollback()
        dbapi_connection.autocommit(enabled)

    def begin(self, dbapi_connection):
        dbapi_connection.begin()

    def parse_only(self, dbapi_connection, sql: str) -> bool:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PREPARE sandbox_parse_check FROM %s", (sql,))
            cursor.execute("DEALLOCATE PREPARE sandbox_parse_check")
        except self.dbapi_error as e:
            if self.error_code(e) == str(self.UNSUPPORTED_PREPARE):
                return False
            raise self._validation_error(e) from e
        finally:
            cursor.close()
        return True

    def error_code(self, exc: BaseException) -> Optional[str]:
        if exc.args and isinstance(exc.args[0], int):
            return str(exc.args[0])
        return None

    def error_message(self, exc: BaseException) -> str:
        if len(exc.args) > 1:
            return str(exc.args[1])
        return super().error_message(exc)


_ADAPTERS: Dict[str, Type[BackendAdapter]] = {
    "sqlite": SQLiteAdapter,
    "postgresql": PostgresAdapter,
    "oracle": OracleAdapter,
    "mysql": MySQLAdapter,
    "mariadb": MySQLAdapter,
}


def register_adapter(backend_name: str, adapter_class: Type[BackendAdapter]):
    """Plug in an adapter for another backend"""
    _ADAPTERS[backend_name.lower()] = adapter_class


def adapter_for_url(database_url: str) -> BackendAdapter:
    """Select the adapter from the URL's backend name (postgresql+psycopg2 -> postgresql)"""
    backend = make_url(database_url).get_backend_name()
    adapter_class = _ADAPTERS.get(backend)
    if adapter_class is None:
        logger.warning(f"No dedicated adapter for backend '{backend}', using generic DB-API behaviour")
        return BackendAdapter()
    return adapter_class()
