"""
Pydantic schemas for request/response validation
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from enum import Enum


class ExecutionModeEnum(str, Enum):
    ADHOC = "adhoc"
    SETUP = "setup"


# Base model for camelCase aliasing
class CamelCaseModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True
    )


# Requests
class ExecuteRequest(CamelCaseModel):
    query: str
    session_id: Optional[str] = None


class ValidateRequest(CamelCaseModel):
    query: str


class SetupRequest(CamelCaseModel):
    """Either explicit scripts or generated content to extract them from"""
    scripts: Optional[List[str]] = None
    content: Optional[str] = None


# Responses
class StatementOutcomeResponse(CamelCaseModel):
    ordinal: int
    statement: str
    kind: str
    success: bool
    rows_affected: Optional[int] = None
    columns: List[str] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    truncated: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    execution_time_ms: int = 0


class ExecutionResponse(CamelCaseModel):
    success: bool
    mode: ExecutionModeEnum
    session_token: Optional[str] = None
    results: List[StatementOutcomeResponse] = Field(default_factory=list)
    total_statements: int = 0
    executed_statements: int = 0
    rolled_back: bool = False
    transactional_ddl: bool = True
    error: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    execution_time_ms: int = 0


class SetupResponse(ExecutionResponse):
    session_id: str


class ValidationResponse(CamelCaseModel):
    valid: bool
    error: Optional[str] = None
    error_code: Optional[str] = None
    method: str
    statement_count: int = 0


class PoolHealthResponse(CamelCaseModel):
    status: str
    backend: str
    open: bool
    size: int
    checked_in: int
    checked_out: int
    min_size: int
    max_size: int
