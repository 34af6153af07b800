"""
==============================================================================
Common Schemas Module
==============================================================================

Base envelope for successful API responses. Errors use the
AppException shape: {"success": false, "error": {...}}.

==============================================================================
"""

from pydantic import BaseModel, Field


class SuccessResponse(BaseModel):
    """Standard success response wrapper."""
    success: bool = Field(default=True)
