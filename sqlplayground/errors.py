"""
Sandbox Engine Error Taxonomy
=============================
Every failure raised by the SQL sandbox engine derives from SandboxError so the
web layer can tell "backend unreachable" apart from "bad SQL".
"""
from typing import Optional


class SandboxError(Exception):
    """Base class for all sandbox engine errors"""
    pass


class PoolInitializationError(SandboxError):
    """Raised when the connection pool cannot be created or warmed up"""
    pass


class ConnectionAcquireError(SandboxError):
    """Raised when no pooled connection could be obtained in time"""
    pass


class ConnectionLostError(SandboxError):
    """Raised when the backend connection drops while a call is in flight"""

    def __init__(self, message: str, statement: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.statement = statement


class StatementExecutionError(SandboxError):
    """One statement was rejected by the backend"""

    def __init__(self, message: str, code: Optional[str] = None, statement: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.statement = statement

    def __str__(self):
        if self.code:
            return f"{self.code}: {self.message}"
        return self.message


class ValidationError(SandboxError):
    """A parse-only check failed. Never implies that anything was mutated."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class NamespaceSanitizationError(SandboxError, ValueError):
    """Session identifier cannot be reduced to a legal, non-empty token"""
    pass


class ScriptTooLargeError(SandboxError, ValueError):
    """Submitted script exceeds the configured maximum length"""
    pass
