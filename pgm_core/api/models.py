"""
Pydantic models for API requests and responses.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ApplyRequest(BaseModel):
    """Request model for planning or applying a project."""
    path: Optional[str] = Field(None, description="Project directory (default: PGM_PATH or 'postgres')")
    dsn: Optional[str] = Field(None, description="Target connection string (default: DATABASE_URL)")
    dry_run: bool = Field(True, description="Only report what would change")
    fake: bool = Field(False, description="Record pending migrations without executing them")
    strict: bool = Field(False, description="Fail when an applied migration was modified")


class ActionModel(BaseModel):
    action: str
    object_kind: str
    name: str
    fingerprint: str
    sequence: Optional[int] = None
    sql: Optional[str] = None
    fallback_sql: Optional[str] = None
    recheck: bool = False


class ApplyResponse(BaseModel):
    """Result of a plan or apply run."""
    status: str = Field(..., json_schema_extra={"example": "preview"})
    mode: str = Field(..., json_schema_extra={"example": "dry_run"})
    changes_count: int
    changes_applied: int = 0
    actions: List[ActionModel]
    warnings: List[str]
    report: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., json_schema_extra={"example": "healthy"})
    timestamp: str
    version: str = Field(..., json_schema_extra={"example": "0.3.0"})


class ErrorResponse(BaseModel):
    """Error response model."""
    status: str = "error"
    error: str
    detail: str = Field(..., json_schema_extra={"example": "An error occurred"})
