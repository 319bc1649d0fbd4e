"""Shared response models used across routers."""

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """Standard error response body."""
    detail: str


class ArchiveErrorDetail(ErrorDetail):
    """Business-rule rejection with a stable error code."""
    error: str


class HealthOut(BaseModel):
    app: str
    version: str
    uptime_seconds: int
    status: str
    db: str
