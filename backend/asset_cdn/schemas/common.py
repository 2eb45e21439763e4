"""Shared response schemas."""
from typing import Literal, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: int
    details: Optional[list[str]] = None


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded", "down"]
    version: str
    timestamp: str
    database: bool
    storage: bool
