"""Schemas for the chat turn, the action proxy, and the shared error envelope."""

from typing import Any, Literal

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Request body for POST /chat. The bearer token normally travels in the Authorization header."""

    tenant_id: str = Field(..., min_length=1, description="Bot (tenant) id returned at registration.")
    message: str = Field(..., min_length=1, description="End-user message for the bot.")
    user_token: str | None = Field(None, description="Legacy: bearer token in the body when no Authorization header is sent.")


class ChatResponse(BaseModel):
    tenant_id: str
    answer: str = Field(..., description="Model answer, with an action summary appended when an action ran.")
    served_from_cache: bool = False


class ActionRequest(BaseModel):
    """Request body for POST /proxy."""

    tenant_id: str = Field(..., min_length=1)
    endpoint: str = Field(..., min_length=1, description="Path on the tenant's API, e.g. /refund")
    method: str = Field("GET", description="GET, POST, PUT, PATCH or DELETE")
    payload: dict[str, Any] | None = None


class ActionResponse(BaseModel):
    status: Literal["success"] = "success"
    data: Any = None
    upstream_http_status: int


class ErrorEnvelope(BaseModel):
    status: Literal["failed"] = "failed"
    error: str
    code: str

    model_config = {
        "json_schema_extra": {
            "examples": [{"status": "failed", "error": "Forbidden: insufficient role for endpoint", "code": "insufficient_role"}]
        }
    }
