"""
SQL Statement Splitter
======================
Splits a free-form SQL script into discrete executable statements without a
full SQL parser. The scanner walks the script line by line and tracks:
- whether it is inside a procedural block (BEGIN/DECLARE or a
  CREATE PROCEDURE/FUNCTION/TRIGGER/PACKAGE/TYPE header)
- whether a block terminator is pending (an END; line was seen)
- the text accumulated for the current statement
- quoting state (string literals, quoted identifiers, /* */ comments,
  dollar-quoted bodies) so terminators inside them are ignored

Simple statements end at a semicolon, which is dropped from the emitted text.
Procedural blocks end only at a standalone terminator line ("/"), which is
also dropped; their own END; is kept.

Known limitation: nested procedural blocks are not tracked. The state machine
is flat, so an inner anonymous block followed by another BEGIN can close the
outer block early.
"""

import re
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

logger = logging.getLogger(__name__)


class StatementKind(str, Enum):
    """Classification of a split statement"""
    SIMPLE = "simple"
    PROCEDURAL_BLOCK = "procedural-block"


@dataclass(frozen=True)
class Statement:
    """One executable unit extracted from a script"""
    ordinal: int
    text: str
    kind: StatementKind = StatementKind.SIMPLE

    @property
    def is_procedural(self) -> bool:
        return self.kind is StatementKind.PROCEDURAL_BLOCK


# Lines that open a procedural block. BEGIN; and BEGIN TRANSACTION are
# transaction control, not blocks.
BLOCK_HEADER_PATTERN = re.compile(
    r"^(?:"
    r"BEGIN\b(?!\s*;)(?!\s+(?:TRANSACTION|WORK|DEFERRED|IMMEDIATE|EXCLUSIVE|ISOLATION|READ)\b)"
    r"|DECLARE\b"
    r"|CREATE\s+(?:OR\s+REPLACE\s+)?(?:(?:NON)?EDITIONABLE\s+)?"
    r"(?:PROCEDURE|FUNCTION|TRIGGER|PACKAGE|TYPE)\b"
    r")",
    re.IGNORECASE,
)

# A type specification has no BEGIN/END: its closing ";" ends it
TYPE_SPEC_PATTERN = re.compile(
    r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:(?:NON)?EDITIONABLE\s+)?TYPE\s+(?!BODY\b)",
    re.IGNORECASE,
)

# END; or END name; (but not END IF; / END LOOP; / END CASE;)
BLOCK_END_PATTERN = re.compile(r"^END(?:\s+(?!IF\b|LOOP\b|CASE\b)\w+)?\s*;$", re.IGNORECASE)

# Lines that can only start a new statement, used to close a block whose
# terminator line was forgotten
NEW_STATEMENT_PATTERN = re.compile(r"^(?:CREATE|DECLARE)\b", re.IGNORECASE)

_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")


@dataclass
class _Piece:
    text: str
    terminated: bool
    has_code: bool


class _ScanState:
    """Quoting state carried across lines"""

    def __init__(self):
        self.quote: Optional[str] = None
        self.block_comment = False
        self.saw_dollar = False

    @property
    def quoted(self) -> bool:
        return self.quote is not None or self.block_comment

    def scan(self, line: str, comment_marker: str, split: bool = True) -> List[_Piece]:
        """Cut a line at unquoted semicolons (when split is set)"""
        pieces = []
        start = 0
        has_code = False
        i = 0
        n = len(line)

        while i < n:
            if self.block_comment:
                end = line.find("*/", i)
                if end == -1:
                    break
                self.block_comment = False
                i = end + 2
                continue

            if self.quote is not None:
                end = line.find(self.quote, i)
                if end == -1:
                    break
                i = end + len(self.quote)
                # A doubled quote character is an escaped quote
                if len(self.quote) == 1 and i < n and line[i] == self.quote:
                    i += 1
                    continue
                self.quote = None
                continue

            ch = line[i]
            if line.startswith(comment_marker, i):
                break
            if line.startswith("/*", i):
                self.block_comment = True
                i += 2
                continue
            if ch in ("'", '"', "`"):
                self.quote = ch
                has_code = True
                i += 1
                continue
            if ch == "$" and (i == 0 or not (line[i - 1].isalnum() or line[i - 1] == "_")):
                match = _DOLLAR_TAG.match(line, i)
                if match:
                    self.quote = match.group(0)
                    self.saw_dollar = True
                    has_code = True
                    i = match.end()
                    continue
            if ch == ";" and split:
                pieces.append(_Piece(line[start:i], True, has_code))
                start = i + 1
                has_code = False
                i += 1
                continue
            if not ch.isspace():
                has_code = True
            i += 1

        pieces.append(_Piece(line[start:], False, has_code))
        return pieces


class _SplitRun:
    """State of one split() call"""

    def __init__(self, splitter: "StatementSplitter"):
        self.marker = splitter.comment_marker
        self.terminator = splitter.block_terminator
        self.end_with_terminator = splitter._end_with_terminator
        self.statements: List[Statement] = []
        self.lines: List[str] = []
        self.has_code = False
        self.in_block = False
        self.type_spec = False
        self.terminator_pending = False
        self.state = _ScanState()

    def feed(self, line: str):
        stripped = line.strip()
        if self.in_block:
            self._feed_block(line, stripped)
        else:
            self._feed_simple(line, stripped)

    def finish(self) -> List[Statement]:
        if self.lines:
            self._emit()
        return self.statements

    def _feed_simple(self, line: str, stripped: str):
        if not self.state.quoted:
            if not self.has_code:
                if stripped == self.terminator:
                    # Stray terminator between statements
                    return
                if BLOCK_HEADER_PATTERN.match(stripped):
                    self.in_block = True
                    self.type_spec = bool(TYPE_SPEC_PATTERN.match(stripped))
                    self._feed_block(line, stripped)
                    return
            elif stripped == self.terminator:
                self._emit()
                return

        for piece in self.state.scan(line, self.marker, split=True):
            self._append(piece.text, piece.has_code)
            if piece.terminated:
                self._emit()

    def _feed_block(self, line: str, stripped: str):
        if not self.state.quoted:
            if stripped == self.terminator:
                self._emit()
                return

            is_content = bool(stripped) and not stripped.startswith(self.marker)
            if self.terminator_pending and is_content:
                if self.type_spec or NEW_STATEMENT_PATTERN.match(stripped):
                    # Terminator line was omitted: close the block and start over
                    self._emit()
                    self._feed_simple(line, stripped)
                    return
                self.terminator_pending = False

            if self.end_with_terminator.match(stripped):
                self._append(line[:line.rfind(self.terminator)].rstrip(), True)
                self._emit()
                return

        pieces = self.state.scan(line, self.marker, split=True)
        self._append(line, any(p.has_code for p in pieces))
        if self.state.quoted:
            return

        # Dollar-quoted bodies (PostgreSQL) end at the ";" after the body
        if self.state.saw_dollar and len(pieces) > 1 and not pieces[-1].has_code:
            self._emit()
            return

        code = stripped.split(self.marker, 1)[0].strip()
        if BLOCK_END_PATTERN.match(code) or (self.type_spec and code.endswith(";")):
            self.terminator_pending = True

    def _append(self, text: str, has_code: bool):
        if text.strip() or self.lines:
            self.lines.append(text)
        self.has_code = self.has_code or has_code

    def _emit(self):
        kind = StatementKind.PROCEDURAL_BLOCK if self.in_block else StatementKind.SIMPLE
        text = "\n".join(self.lines).strip()
        if self.has_code and text:
            self.statements.append(Statement(len(self.statements) + 1, text, kind))
        elif text:
            logger.debug("Discarding comment-only fragment")

        self.lines = []
        self.has_code = False
        self.in_block = False
        self.type_spec = False
        self.terminator_pending = False
        self.state.saw_dollar = False


class StatementSplitter:
    """Turns raw script text into an ordered list of Statements"""

    def __init__(self, comment_marker: str = "--", block_terminator: str = "/"):
        if not comment_marker or not block_terminator:
            raise ValueError("comment_marker and block_terminator must not be empty")
        self.comment_marker = comment_marker
        self.block_terminator = block_terminator
        self._end_with_terminator = re.compile(
            r"^END\b[^;]*;?\s*" + re.escape(block_terminator) + r"$",
            re.IGNORECASE,
        )

    def split(self, script: str) -> List[Statement]:
        run = _SplitRun(self)
        for line in (script or "").splitlines():
            run.feed(line)
        statements = run.finish()
        logger.debug(f"Split script into {len(statements)} statement(s)")
        return statements


_default_splitter = StatementSplitter()


def split_statements(script: str) -> List[Statement]:
    """Split a script using the default comment marker and terminator"""
    return _default_splitter.split(script)
