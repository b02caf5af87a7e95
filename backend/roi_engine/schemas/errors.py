# backend/roi_engine/schemas/errors.py
"""
Pydantic schemas for error responses.

Every error leaving the API has the same shape so the dashboard can show
a message without knowing which layer failed. Built by the exception
handlers in main.py.
"""

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """
    Standard error response format.

    Example:
        {"error": "InvalidPortfolioKeyError",
         "message": "Invalid portfolio key 't9_x_semi': unknown tier 'T9'",
         "details": {"field": "portfolio_key"}}
    """

    error: str = Field(
        ...,
        description="Error type (e.g., 'DataGapError')"
    )
    message: str = Field(
        ...,
        description="Human-readable error message"
    )
    details: dict | None = Field(
        default=None,
        description="Additional error context (optional)"
    )


class ValidationErrorDetail(BaseModel):
    """
    Row or field level validation failures.

    Used for request validation (422) and rejected CSV imports, where
    `details` lists every offending field or row.
    """

    error: str = Field(default="ValidationError")
    message: str = Field(default="Request validation failed")
    details: list[dict] = Field(
        ...,
        description="List of validation errors"
    )
