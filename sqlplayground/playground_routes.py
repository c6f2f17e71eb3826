"""
SQL Playground API Routes
=========================
Endpoints for running learner SQL in the shared sandbox backend:
- POST /api/playground/execute   adhoc execution, optional session namespace
- POST /api/playground/validate  dry-run syntax check
- POST /api/playground/setup     initialize a fresh session (all-or-nothing)
- GET  /api/playground/health    connection pool status

Statement failures are not HTTP errors: the backend's error text is returned
with success=false so learners can read it.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from .coordinator import ExecutionMode
from .errors import (
    ConnectionAcquireError,
    ConnectionLostError,
    NamespaceSanitizationError,
    PoolInitializationError,
    ScriptTooLargeError,
)
from .namespacer import build_session_id
from .pool import ConnectionPool
from .sandbox_manager import execute_script, get_connection_pool, validate_query
from .sanitize import sanitize_json_data
from .schemas import (
    ExecuteRequest,
    ExecutionResponse,
    PoolHealthResponse,
    SetupRequest,
    SetupResponse,
    ValidateRequest,
    ValidationResponse,
)
from .setup_scripts import MarkdownSetupScriptResolver

logger = logging.getLogger(__name__)

# Create router
playground_router = APIRouter(prefix="/api/playground", tags=["playground"])

setup_script_resolver = MarkdownSetupScriptResolver()


def get_pool() -> ConnectionPool:
    return get_connection_pool()


def _engine_http_error(e: Exception) -> HTTPException:
    """Map engine errors onto HTTP errors; backend availability problems are 503"""
    if isinstance(e, PoolInitializationError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Sandbox database unavailable: {e}"
        )
    if isinstance(e, ConnectionAcquireError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Sandbox database busy or unreachable: {e}"
        )
    if isinstance(e, ConnectionLostError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Sandbox database connection lost: {e}"
        )
    if isinstance(e, (NamespaceSanitizationError, ScriptTooLargeError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.error(f"Unexpected sandbox failure: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to execute SQL: {str(e)}"
    )


def _require_query(query: Optional[str]) -> str:
    if not query or not query.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Empty query"
        )
    return query


@playground_router.post("/execute", response_model=ExecutionResponse)
def execute_sql(request: ExecuteRequest, pool: ConnectionPool = Depends(get_pool)):
    """Run a query or multi-statement block, statement by statement"""
    query = _require_query(request.query)
    try:
        result = execute_script(query, request.session_id, ExecutionMode.ADHOC, pool=pool)
    except Exception as e:
        raise _engine_http_error(e)

    return sanitize_json_data(result.to_dict())


@playground_router.post("/validate", response_model=ValidationResponse)
def validate_sql(request: ValidateRequest, pool: ConnectionPool = Depends(get_pool)):
    """Check syntax without changing anything"""
    query = _require_query(request.query)
    try:
        result = validate_query(query, pool=pool)
    except Exception as e:
        raise _engine_http_error(e)

    return sanitize_json_data(result.to_dict())


@playground_router.post("/setup", response_model=SetupResponse)
def setup_session(
    request: SetupRequest,
    x_user_id: Optional[str] = Header(default=None),
    pool: ConnectionPool = Depends(get_pool)
):
    """Start a new session and create its sandbox objects in one transaction"""
    if request.scripts:
        scripts = [script for script in request.scripts if script and script.strip()]
    else:
        scripts = setup_script_resolver.resolve(request.content or "")
    if not scripts:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Empty query"
        )

    session_id = build_session_id(x_user_id or "anonymous")
    try:
        result = execute_script(scripts, session_id, ExecutionMode.SETUP, pool=pool)
    except Exception as e:
        raise _engine_http_error(e)

    response_data = result.to_dict()
    # Callers reuse the sanitized token as sessionId for /execute
    response_data["session_id"] = result.session_token
    return sanitize_json_data(response_data)


@playground_router.get("/health", response_model=PoolHealthResponse)
def pool_health(pool: ConnectionPool = Depends(get_pool)):
    pool_status = pool.status()
    return {"status": "healthy" if pool_status["open"] else "unavailable", **pool_status}
