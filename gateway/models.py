"""
HTTP response models for the Gateway.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class HelloResponse(BaseModel):
    """Payload of the demo API route."""

    hello: str = Field(default="from waf-challenge")


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error message")
    error_code: str = Field(..., description="Error code (e.g., 'REQUEST_BLOCKED')")
    details: Optional[Dict[str, Any]] = Field(
        None, description="Additional error details"
    )

    model_config = ConfigDict(use_enum_values=True)


class ChallengeResponse(BaseModel):
    """Returned instead of the API response when the client must prove it is a browser."""

    challenge_type: str = Field(..., description="'challenge' (silent) or 'captcha' (interactive)")
    message: str = Field(..., description="Human-readable explanation")
    matched_rule: Optional[str] = Field(None, description="Rule that required the challenge")
    token_header: str = Field(..., description="Header to carry the token on the retried request")
    challenge_path: str = Field(..., description="Endpoint that issues the token")
    trace_id: str = Field(..., description="Trace ID for end-to-end correlation")

    model_config = ConfigDict(use_enum_values=True)


class TokenResponse(BaseModel):
    """Returned by the challenge endpoint once the client has passed it."""

    token: str = Field(..., description="Challenge token to present on retried requests")
    token_header: str = Field(..., description="Header to carry the token in")
    token_cookie: Optional[str] = Field(None, description="Cookie the token was also set in, if any")
    trace_id: str = Field(..., description="Trace ID for end-to-end correlation")
