"""Response envelope shared by every sync endpoint."""

from pydantic import BaseModel


class ErrorBody(BaseModel):
    code: str
    message: str
    details: list[dict] | None = None


class APIResponse(BaseModel):
    """``{"success": ..., "data": ...}`` on success, ``error`` filled in on failure."""
    success: bool = True
    data: dict | list | None = None
    error: ErrorBody | None = None
