"""
SQL Query Validator
===================
Dry-run syntax check. Each statement is handed to the backend's parse-only
facility on a pooled connection inside a transaction that is always rolled
back, so validation never changes row counts or schema state. Statements the
backend cannot check natively go through a local sqlparse heuristic.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlparse import parse, tokens

from .errors import ValidationError
from .pool import ConnectionPool
from .splitter import StatementSplitter

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Outcome of a dry-run check"""
    valid: bool
    error: Optional[str] = None
    error_code: Optional[str] = None
    method: str = "native"
    statement_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = {"valid": self.valid, "method": self.method, "statement_count": self.statement_count}
        if not self.valid:
            data["error"] = self.error
            data["error_code"] = self.error_code
        return data


def heuristic_check(sql: str):
    """
    Local syntax check for statements the backend cannot parse without running

    Catches what a tokenizer can see: unknown leading words, stray or
    unterminated quotes and unbalanced parentheses.

    Raises:
        ValidationError: describing the first problem found
    """
    parsed = [stmt for stmt in parse(sql) if stmt.value.strip()]
    if not parsed:
        raise ValidationError("Empty query")

    for stmt in parsed:
        first = stmt.token_first(skip_cm=True)
        if first is None:
            continue
        if first.ttype not in tokens.Keyword and not first.value.startswith("("):
            raise ValidationError(f"Unrecognized statement start near '{first.value.split()[0][:30]}'")

        depth = 0
        for token in stmt.flatten():
            if token.ttype is tokens.Error:
                raise ValidationError(f"Unexpected character {token.value!r} (unterminated quote?)")
            if token.ttype is tokens.Punctuation:
                if token.value == "(":
                    depth += 1
                elif token.value == ")":
                    depth -= 1
                    if depth < 0:
                        raise ValidationError("Unbalanced parentheses: unexpected ')'")
        if depth > 0:
            raise ValidationError("Unbalanced parentheses: missing ')'")


def _method_label(methods) -> str:
    if len(methods) > 1:
        return "mixed"
    return next(iter(methods), "native")


class QueryValidator:
    """Parse-only validation against the sandbox backend"""

    def __init__(self, pool: ConnectionPool, splitter: Optional[StatementSplitter] = None):
        self.pool = pool
        self.splitter = splitter or StatementSplitter()

    def validate(self, query: str) -> ValidationResult:
        statements = self.splitter.split(query or "")
        if not statements:
            return ValidationResult(valid=False, error="Empty query", method="none")

        adapter = self.pool.adapter
        methods = set()
        with self.pool.connection() as connection:
            dbapi_connection = connection.dbapi_connection
            adapter.set_autocommit(dbapi_connection, False)
            adapter.begin(dbapi_connection)
            try:
                for statement in statements:
                    if adapter.parse_only(dbapi_connection, statement.text):
                        methods.add("native")
                    else:
                        methods.add("heuristic")
                        heuristic_check(statement.text)
            except ValidationError as e:
                logger.info(f"Validation failed at statement {statement.ordinal}: {e.message}")
                return ValidationResult(
                    valid=False,
                    error=e.message,
                    error_code=e.code,
                    method=_method_label(methods),
                    statement_count=len(statements),
                )
            finally:
                # Nothing checked here may persist
                dbapi_connection.rollback()

        return ValidationResult(valid=True, method=_method_label(methods), statement_count=len(statements))
