"""
Centralized Configuration for the SQL Sandbox Engine
====================================================
All configuration values are read from environment variables (a local .env file
is honoured). Every setting has a default that works for local development, so
the engine starts against a SQLite file with no configuration at all.
"""
import os
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from sqlalchemy.engine import URL, make_url

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


def _build_database_url() -> str:
    """Resolve the sandbox backend URL from the environment"""
    url = os.getenv("SANDBOX_DATABASE_URL", "").strip()
    if url:
        return url

    # Host/credentials/connect string style configuration
    host = os.getenv("SANDBOX_DB_HOST", "").strip()
    if host:
        port = os.getenv("SANDBOX_DB_PORT", "").strip()
        return URL.create(
            drivername=os.getenv("SANDBOX_DB_DIALECT", "oracle+oracledb").strip(),
            username=os.getenv("SANDBOX_DB_USER", "system"),
            password=os.getenv("SANDBOX_DB_PASSWORD", "oracle"),
            host=host,
            port=int(port) if port else None,
            database=os.getenv("SANDBOX_DB_NAME", "XE"),
        ).render_as_string(hide_password=False)

    return "sqlite:///./sandbox.db"


class Config:
    """Engine configuration, read once at import"""

    # ==================== BACKEND ====================
    SANDBOX_DATABASE_URL: str = _build_database_url()

    # Connection pool settings
    SANDBOX_POOL_MIN: int = int(os.getenv("SANDBOX_POOL_MIN", "2"))
    SANDBOX_POOL_MAX: int = int(os.getenv("SANDBOX_POOL_MAX", "5"))
    SANDBOX_POOL_INCREMENT: int = int(os.getenv("SANDBOX_POOL_INCREMENT", "1"))
    SANDBOX_POOL_TIMEOUT: int = int(os.getenv("SANDBOX_POOL_TIMEOUT", "30"))
    SANDBOX_POOL_RECYCLE: int = int(os.getenv("SANDBOX_POOL_RECYCLE", "300"))

    # ==================== EXECUTION LIMITS ====================
    SANDBOX_MAX_RESULT_ROWS: int = int(os.getenv("SANDBOX_MAX_RESULT_ROWS", "1000"))
    SANDBOX_MAX_SCRIPT_LENGTH: int = int(os.getenv("SANDBOX_MAX_SCRIPT_LENGTH", "100000"))

    # ==================== SCRIPT SYNTAX ====================
    SANDBOX_SESSION_TOKEN_MAX_LENGTH: int = int(os.getenv("SANDBOX_SESSION_TOKEN_MAX_LENGTH", "20"))
    SANDBOX_COMMENT_MARKER: str = os.getenv("SANDBOX_COMMENT_MARKER", "--")
    SANDBOX_BLOCK_TERMINATOR: str = os.getenv("SANDBOX_BLOCK_TERMINATOR", "/")

    # ==================== SERVER ====================
    PORT: int = int(os.getenv("PORT", "5000"))
    HOST: str = os.getenv("HOST", "0.0.0.0")

    # Frontend URLs (comma-separated list for multiple domains)
    FRONTEND_URLS: List[str] = [
        url.strip()
        for url in os.getenv("FRONTEND_URLS", "").split(",")
        if url.strip()
    ]

    # ==================== LOGGING ====================
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    ENABLE_SQL_LOGGING: bool = os.getenv("ENABLE_SQL_LOGGING", "false").lower() == "true"

    @staticmethod
    def get_cors_origins() -> List[str]:
        """CORS origins: configured frontends plus local development hosts"""
        origins = list(Config.FRONTEND_URLS)
        origins.extend([
            "http://localhost:5000",
            "http://localhost:3000",
            "http://127.0.0.1:5000",
            "http://127.0.0.1:3000"
        ])
        return list(dict.fromkeys(origins))

    # ==================== VALIDATION ====================
    @classmethod
    def validate_config(cls) -> None:
        """Validate critical configuration settings"""
        errors = []

        if not cls.SANDBOX_DATABASE_URL:
            errors.append("SANDBOX_DATABASE_URL is required")
        if cls.SANDBOX_POOL_MIN < 0:
            errors.append("SANDBOX_POOL_MIN must not be negative")
        if cls.SANDBOX_POOL_MAX < 1:
            errors.append("SANDBOX_POOL_MAX must be at least 1")
        if cls.SANDBOX_POOL_MIN > cls.SANDBOX_POOL_MAX:
            errors.append("SANDBOX_POOL_MIN must not exceed SANDBOX_POOL_MAX")
        if cls.SANDBOX_POOL_INCREMENT < 1:
            errors.append("SANDBOX_POOL_INCREMENT must be at least 1")
        if cls.SANDBOX_POOL_TIMEOUT < 1:
            errors.append("SANDBOX_POOL_TIMEOUT must be at least 1 second")
        if cls.SANDBOX_MAX_RESULT_ROWS < 1:
            errors.append("SANDBOX_MAX_RESULT_ROWS must be at least 1")
        if not 1 <= cls.SANDBOX_SESSION_TOKEN_MAX_LENGTH <= 30:
            errors.append("SANDBOX_SESSION_TOKEN_MAX_LENGTH must be between 1 and 30")
        if not cls.SANDBOX_COMMENT_MARKER.strip():
            errors.append("SANDBOX_COMMENT_MARKER must not be blank")
        if not cls.SANDBOX_BLOCK_TERMINATOR.strip():
            errors.append("SANDBOX_BLOCK_TERMINATOR must not be blank")

        if errors:
            raise ValueError("Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors))

    @classmethod
    def summary(cls) -> Dict[str, Any]:
        """Configuration summary without secrets"""
        try:
            backend_url = make_url(cls.SANDBOX_DATABASE_URL).render_as_string(hide_password=True)
        except Exception:
            backend_url = "<unparseable>"
        return {
            "backend_url": backend_url,
            "pool_min": cls.SANDBOX_POOL_MIN,
            "pool_max": cls.SANDBOX_POOL_MAX,
            "pool_increment": cls.SANDBOX_POOL_INCREMENT,
            "pool_timeout": cls.SANDBOX_POOL_TIMEOUT,
            "max_result_rows": cls.SANDBOX_MAX_RESULT_ROWS,
            "session_token_max_length": cls.SANDBOX_SESSION_TOKEN_MAX_LENGTH,
            "cors_origins": len(cls.get_cors_origins()),
            "log_level": cls.LOG_LEVEL,
        }


@dataclass(frozen=True)
class PoolSettings:
    """Explicit connection pool configuration"""
    database_url: str
    min_size: int = 2
    max_size: int = 5
    increment: int = 1
    timeout_seconds: int = 30
    recycle_seconds: int = 300
    echo: bool = False
    connect_args: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.database_url:
            raise ValueError("database_url is required")
        if self.min_size < 0:
            raise ValueError("min_size must not be negative")
        if self.max_size < 1:
            raise ValueError("max_size must be at least 1")
        if self.min_size > self.max_size:
            raise ValueError("min_size must not exceed max_size")
        if self.increment < 1:
            raise ValueError("increment must be at least 1")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    @classmethod
    def from_config(cls, config=Config) -> "PoolSettings":
        return cls(
            database_url=config.SANDBOX_DATABASE_URL,
            min_size=config.SANDBOX_POOL_MIN,
            max_size=config.SANDBOX_POOL_MAX,
            increment=config.SANDBOX_POOL_INCREMENT,
            timeout_seconds=config.SANDBOX_POOL_TIMEOUT,
            recycle_seconds=config.SANDBOX_POOL_RECYCLE,
            echo=config.ENABLE_SQL_LOGGING,
        )

    @property
    def display_url(self) -> str:
        return make_url(self.database_url).render_as_string(hide_password=True)


# Validate configuration on import
try:
    Config.validate_config()
except ValueError as e:
    logger.error(f"Configuration Error: {e}")
    raise
