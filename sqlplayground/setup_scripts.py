"""
Setup script resolution
=======================
The content pipeline hands the sandbox generated learning material; a resolver
turns it into the list of raw SQL scripts that initialize a session (run in
setup mode).
"""

import re
import logging
from typing import List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

# Statements that make a code block worth running as setup
SETUP_KEYWORDS = ("CREATE", "INSERT", "ALTER", "DROP", "TRUNCATE")

CODE_BLOCK_PATTERN = re.compile(
    r"```[ \t]*(?P<lang>[A-Za-z0-9_+-]*)[ \t]*\r?\n(?P<body>.*?)```",
    re.DOTALL,
)

SQL_LANGUAGES = frozenset({"", "sql", "plsql", "oracle", "mysql", "postgresql", "postgres", "psql", "sqlite"})

DEFAULT_SETUP_SCRIPTS = [
    """
-- Basic sample schema used when the learning content carries no SQL
CREATE TABLE departments (
    deptno VARCHAR(3) PRIMARY KEY,
    deptname VARCHAR(36) NOT NULL
);

CREATE TABLE employees (
    empno VARCHAR(6) PRIMARY KEY,
    firstname VARCHAR(12),
    lastname VARCHAR(15),
    workdept VARCHAR(3) REFERENCES departments(deptno),
    salary DECIMAL(8,2)
);

INSERT INTO departments VALUES ('A00', 'SPIFFY COMPUTER SERVICE DIV.');
INSERT INTO departments VALUES ('B01', 'PLANNING');
INSERT INTO departments VALUES ('C01', 'INFORMATION CENTRE');

INSERT INTO employees VALUES ('000010', 'CHRISTINE', 'HAAS', 'A00', 72750);
INSERT INTO employees VALUES ('000020', 'MICHAEL', 'THOMPSON', 'B01', 61250);
INSERT INTO employees VALUES ('000030', 'SALLY', 'KWAN', 'C01', 58250);
""".strip(),
]


class SetupScriptResolver(Protocol):
    """Produces the raw SQL scripts that initialize a session's sandbox"""

    def resolve(self, source: str) -> List[str]:
        ...


def is_setup_script(code: str) -> bool:
    upper = code.upper()
    return any(re.search(rf"\b{keyword}\b", upper) for keyword in SETUP_KEYWORDS)


class MarkdownSetupScriptResolver:
    """
    Pull fenced SQL code blocks out of generated markdown content

    Blocks tagged sql (or a SQL dialect) and untagged blocks are kept in
    document order when they contain a setup statement. When nothing usable
    is found the fallback scripts are returned.
    """

    def __init__(self, fallback_scripts: Optional[Sequence[str]] = None):
        self.fallback_scripts = list(DEFAULT_SETUP_SCRIPTS if fallback_scripts is None else fallback_scripts)

    def extract_code_blocks(self, text: str) -> List[str]:
        blocks = []
        for match in CODE_BLOCK_PATTERN.finditer(text or ""):
            if match.group("lang").lower() not in SQL_LANGUAGES:
                continue
            code = match.group("body").strip()
            if code and is_setup_script(code):
                blocks.append(code)
        return blocks

    def resolve(self, source: str) -> List[str]:
        scripts = self.extract_code_blocks(source)
        if not scripts:
            logger.info("No SQL setup blocks found in content, using fallback setup scripts")
            return list(self.fallback_scripts)
        logger.debug(f"Resolved {len(scripts)} setup script(s) from content")
        return scripts
