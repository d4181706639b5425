"""
System-related API models: health.
"""

from typing import Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    database: bool
    upstream: Optional[bool] = None


class ErrorResponse(BaseModel):
    """Error response."""
    success: bool = False
    error: str
    code: Optional[str] = None
