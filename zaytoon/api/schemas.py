"""Pydantic models for the API layer.

Defines request/response schemas for all endpoints.
"""

from typing import Literal

from pydantic import BaseModel, StrictStr


class ChatRequest(BaseModel):
    """Body of POST /ai-response. Presence of the prompt is checked by the route."""
    prompt: StrictStr | None = None


class ChatResponse(BaseModel):
    """Model reply relayed verbatim."""
    response: str


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    """Component health summary."""
    status: Literal["healthy", "degraded"]
    components: dict[str, Literal["ok", "error"]]
