"""
Session Namespacer
==================
Rewrites schema object names so many learners can share one physical schema:
every table/type/view a session creates, and every reference to one, becomes
<token>_<name>, where <token> is the sanitized session identifier.

Rewriting is pattern based, not a parse. String literals, quoted identifiers
and comments are masked out first (sqlparse lexer) so names inside them are
never touched. Schema-qualified names, keywords, built-in type names and
catalog objects are left alone. Applying the rewrite twice is a no-op.
"""

import re
import time
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set, Tuple

from sqlparse import lexer, tokens

from .errors import NamespaceSanitizationError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_MAX_LENGTH = 20

# Backend catalog objects and system views that must never be namespaced
SYSTEM_OBJECTS = frozenset({
    # Oracle
    "dual", "user_tables", "all_tables", "dba_tables", "user_types", "all_types",
    "user_views", "all_views", "user_objects", "all_objects", "dba_objects",
    "user_tab_columns", "all_tab_columns", "user_constraints", "all_constraints",
    "user_cons_columns", "user_indexes", "all_indexes", "user_ind_columns",
    "user_sequences", "user_source", "all_source", "user_procedures",
    "user_triggers", "user_errors", "user_users", "all_users", "dba_users",
    "user_type_attrs", "user_coll_types", "dictionary", "dict", "tab", "cat",
    # PostgreSQL
    "information_schema", "pg_catalog", "pg_tables", "pg_views", "pg_class",
    "pg_namespace", "pg_type", "pg_proc", "pg_indexes", "pg_attribute",
    "pg_stat_activity", "pg_roles", "pg_user", "pg_settings",
    # SQLite
    "sqlite_master", "sqlite_schema", "sqlite_sequence", "sqlite_temp_master",
    # MySQL
    "mysql", "performance_schema", "sys",
})

# Grammar words that can follow a reference keyword without being an object name.
# Soft keywords that are legal table names (action, temp, key, ...) stay out.
RESERVED_WORDS = frozenset({
    "select", "values", "set", "where", "on", "of", "as", "is", "in", "not",
    "null", "default", "all", "any", "some", "exists", "lateral", "only",
    "table", "unnest", "nowait", "skip", "wait", "cascade", "restrict", "no",
    "and", "or", "by", "group", "order", "having", "limit", "offset",
    "fetch", "for", "union", "intersect", "except", "minus", "join", "inner",
    "left", "right", "full", "outer", "cross", "natural", "using", "with",
    "recursive", "if", "then", "else", "end", "case", "when", "begin",
    "declare", "return", "returning", "loop", "while", "primary",
    "foreign", "unique", "check", "constraint", "references", "index", "view",
    "into", "cursor", "overriding",
})

# Words the CREATE rule can capture in place of the defined name
CREATE_GRAMMAR_WORDS = frozenset({"if", "as"})

# Built-in type names; only skipped where a type is expected (TABLE OF NUMBER, REF CURSOR)
BUILTIN_TYPES = frozenset({
    "number", "integer", "int", "smallint", "bigint", "decimal", "numeric",
    "float", "real", "double", "varchar", "varchar2", "nvarchar2", "char",
    "nchar", "text", "clob", "nclob", "blob", "raw", "date", "timestamp",
    "interval", "boolean", "binary_integer", "pls_integer", "simple_integer",
    "rowid", "urowid", "xmltype", "long", "binary_float", "binary_double",
    "serial", "bigserial", "uuid", "json", "jsonb", "bytea", "record",
})

_TYPE_RULES = ("table_of", "ref")

# Functions whose argument syntax contains FROM
FROM_FUNCTIONS = frozenset({"EXTRACT", "TRIM", "SUBSTRING", "OVERLAY", "POSITION"})

_NAME = r"(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?![\w$#]|\s*\.)"
_NOT_CALL = r"(?!\s*\()"

# Object definitions: the defined name always gets the prefix
CREATE_PATTERN = re.compile(
    r"\bCREATE\s+(?:OR\s+REPLACE\s+)?(?:(?:NON)?EDITIONABLE\s+)?"
    r"(?:(?:GLOBAL|LOCAL)\s+)?(?:(?:TEMPORARY|TEMP)\s+)?"
    r"(?:TABLE|VIEW|MATERIALIZED\s+VIEW|TYPE(?:\s+BODY\b)?|TRIGGER|(?:UNIQUE\s+|BITMAP\s+)?INDEX)\s+"
    r"(?:IF\s+NOT\s+EXISTS\s+)?" + _NAME,
    re.IGNORECASE,
)

# Object references, each applied unless the name is reserved or a catalog object
REFERENCE_PATTERNS = {
    "from": re.compile(r"\b(?:FROM|JOIN)\s+" + _NAME + _NOT_CALL, re.IGNORECASE),
    "into": re.compile(r"\bINTO\s+" + _NAME, re.IGNORECASE),
    "table_of": re.compile(r"\bTABLE\s+OF\s+" + _NAME, re.IGNORECASE),
    "ref": re.compile(r"\bREF\s+" + _NAME + _NOT_CALL, re.IGNORECASE),
    "update": re.compile(r"\bUPDATE\s+" + _NAME, re.IGNORECASE),
    "references": re.compile(r"\bREFERENCES\s+" + _NAME, re.IGNORECASE),
    "using": re.compile(r"\bUSING\s+" + _NAME + _NOT_CALL, re.IGNORECASE),
    "ddl": re.compile(
        r"\b(?:DROP|ALTER|TRUNCATE|LOCK|ANALYZE|COMMENT\s+ON)\s+"
        r"(?:TABLE|VIEW|MATERIALIZED\s+VIEW|TYPE(?:\s+BODY\b)?|TRIGGER|INDEX)\s+"
        r"(?:IF\s+EXISTS\s+)?" + _NAME,
        re.IGNORECASE,
    ),
    "rename": re.compile(r"\bRENAME\s+TO\s+" + _NAME, re.IGNORECASE),
    "index_on": re.compile(r"\bINDEX\s+(?:IF\s+NOT\s+EXISTS\s+)?\w+\s+ON\s+" + _NAME, re.IGNORECASE),
    "trigger_on": re.compile(
        r"\b(?:BEFORE|AFTER|INSTEAD\s+OF)\s+(?:INSERT|UPDATE|DELETE)\b[\w\s,]*?\bON\s+" + _NAME,
        re.IGNORECASE,
    ),
}

# Additional items of a comma separated FROM list: ", name [alias]"
_FROM_LIST_ITEM = re.compile(
    r"(?:\s+(?:AS\s+)?[A-Za-z_]\w*)?\s*,\s*" + _NAME + _NOT_CALL,
    re.IGNORECASE,
)

# CTE names defined by WITH name [(cols)] AS (
_CTE_NAME = re.compile(
    r"(?:\bWITH\s+(?:RECURSIVE\s+)?|\)\s*,\s*)([A-Za-z_]\w*)\s*(?:\([^()]*\)\s*)?AS\s*\(",
    re.IGNORECASE,
)

_CLAUSE_KEYWORD = re.compile(
    r"\b(SELECT|INSERT|MERGE|FETCH|RETURNING|COLLECT|IMMEDIATE|JOIN)\b",
    re.IGNORECASE,
)

_INVALID_TOKEN_CHARS = re.compile(r"[^A-Za-z0-9_]")


def sanitize_session_id(session_id: str, max_length: int = DEFAULT_TOKEN_MAX_LENGTH) -> str:
    """
    Reduce a raw session identifier to a legal identifier prefix

    Everything outside [A-Za-z0-9_] is removed; a token that would start with
    a digit gets a leading "s" so the prefixed names stay legal unquoted
    identifiers; the result is cut to max_length.

    Raises:
        NamespaceSanitizationError: when no alphanumeric character remains
    """
    if max_length < 1:
        raise ValueError("max_length must be at least 1")
    if session_id is None:
        raise NamespaceSanitizationError("Session identifier is required")

    token = _INVALID_TOKEN_CHARS.sub("", str(session_id))
    if not any(ch.isalnum() for ch in token):
        raise NamespaceSanitizationError(
            f"Session identifier {session_id!r} contains no usable characters"
        )
    if token[0].isdigit():
        token = "s" + token
    return token[:max_length]


def build_session_id(user_id: Optional[str] = None) -> str:
    """Session identifier convention of the web layer: <userId>_<epoch millis>"""
    return f"{user_id or 'anonymous'}_{int(time.time() * 1000)}"


@dataclass(frozen=True)
class SessionNamespace:
    """Sanitized per-session naming convention"""
    token: str

    @classmethod
    def from_session_id(cls, session_id: str, max_length: int = DEFAULT_TOKEN_MAX_LENGTH) -> "SessionNamespace":
        return cls(sanitize_session_id(session_id, max_length))

    @property
    def prefix(self) -> str:
        return f"{self.token}_"

    def owns(self, name: str) -> bool:
        return name.lower().startswith(self.prefix.lower())

    def qualify(self, name: str) -> str:
        return name if self.owns(name) else self.prefix + name


def _mask(statement: str) -> Tuple[str, str]:
    """
    Return (source, masked) where masked has literals, quoted identifiers and
    comments overwritten with a filler that is neither a word nor whitespace
    character. Offsets in both strings line up.
    """
    source_parts = []
    masked_parts = []
    for ttype, value in lexer.tokenize(statement):
        source_parts.append(value)
        if ttype in tokens.String or ttype in tokens.Comment:
            masked_parts.append("".join("\n" if ch == "\n" else "#" for ch in value))
        else:
            masked_parts.append(value)
    return "".join(source_parts), "".join(masked_parts)


def _enclosing_call(masked: str, pos: int) -> Optional[str]:
    """Name of the function whose parentheses enclose pos, if any"""
    depth = 0
    for i in range(pos - 1, -1, -1):
        ch = masked[i]
        if ch == ")":
            depth += 1
        elif ch == "(":
            if depth == 0:
                match = re.search(r"([A-Za-z_]\w*)\s*$", masked[:i])
                return match.group(1).upper() if match else None
            depth -= 1
    return None


def _last_clause_keyword(masked: str, pos: int) -> Optional[str]:
    found = None
    for match in _CLAUSE_KEYWORD.finditer(masked, 0, pos):
        found = match.group(1).upper()
    return found


class SessionNamespacer:
    """Applies the session naming convention to statement text"""

    def __init__(self, max_token_length: int = DEFAULT_TOKEN_MAX_LENGTH,
                 system_objects: Iterable[str] = SYSTEM_OBJECTS):
        self.max_token_length = max_token_length
        self.system_objects = frozenset(name.lower() for name in system_objects)

    def namespace_for(self, session_id: str) -> SessionNamespace:
        return SessionNamespace.from_session_id(session_id, self.max_token_length)

    def rewrite(self, statement: str, session_token: str) -> str:
        """Prefix every created or referenced object name with the session token"""
        namespace = self.namespace_for(session_token)
        if not statement or not statement.strip():
            return statement

        source, masked = _mask(statement)
        cte_names = {m.group(1).lower() for m in _CTE_NAME.finditer(masked)}
        spans: Set[Tuple[int, int]] = set()

        for match in CREATE_PATTERN.finditer(masked):
            name = match.group("name")
            if name.lower() not in CREATE_GRAMMAR_WORDS and not namespace.owns(name):
                spans.add(match.span("name"))

        for rule, pattern in REFERENCE_PATTERNS.items():
            for match in pattern.finditer(masked):
                if not self._applies(rule, match, masked):
                    continue
                if rule in _TYPE_RULES and match.group("name").lower() in BUILTIN_TYPES:
                    continue
                self._collect_reference(match, namespace, cte_names, spans)
                if rule == "from":
                    self._collect_from_list(match.end(), masked, namespace, cte_names, spans)

        if not spans:
            return statement

        rewritten = source
        for start, end in sorted(spans, reverse=True):
            rewritten = rewritten[:start] + namespace.prefix + rewritten[start:end] + rewritten[end:]
        return rewritten

    def _applies(self, rule: str, match, masked: str) -> bool:
        start = match.start()
        preceding = masked[max(0, start - 40):start]
        if rule == "from":
            if _enclosing_call(masked, start) in FROM_FUNCTIONS:
                return False
            # IS [NOT] DISTINCT FROM <expression>
            return not re.search(r"\bDISTINCT\s+$", preceding, re.IGNORECASE)
        if rule == "into":
            return _last_clause_keyword(masked, start) not in ("SELECT", "FETCH", "RETURNING", "COLLECT", "IMMEDIATE")
        if rule == "update":
            # MySQL ON DUPLICATE KEY UPDATE <column>, ON UPDATE <action|default>
            return not re.search(r"\b(?:KEY|ON)\s+$", preceding, re.IGNORECASE)
        if rule == "using":
            # MERGE INTO target USING source; JOIN ... USING and EXECUTE ... USING take no tables
            return _last_clause_keyword(masked, start) == "MERGE"
        return True

    def _collect_reference(self, match, namespace: SessionNamespace, cte_names: Set[str],
                           spans: Set[Tuple[int, int]]):
        name = match.group("name")
        lowered = name.lower()
        if (lowered in RESERVED_WORDS or lowered in self.system_objects
                or lowered in cte_names or namespace.owns(name)):
            return
        spans.add(match.span("name"))

    def _collect_from_list(self, pos: int, masked: str, namespace: SessionNamespace,
                           cte_names: Set[str], spans: Set[Tuple[int, int]]):
        while True:
            item = _FROM_LIST_ITEM.match(masked, pos)
            if not item:
                return
            self._collect_reference(item, namespace, cte_names, spans)
            pos = item.end()


_default_namespacer = SessionNamespacer()


def namespace_statement(statement: str, session_token: str) -> str:
    """Rewrite one statement into the session's namespace"""
    return _default_namespacer.rewrite(statement, session_token)


def namespace_statements(statements: List[str], session_token: str) -> List[str]:
    return [_default_namespacer.rewrite(statement, session_token) for statement in statements]
