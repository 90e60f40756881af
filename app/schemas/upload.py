"""Schemas for the knowledge upload endpoint."""

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    """Response after a knowledge file was extracted and indexed for a bot."""

    tenant_id: str = Field(..., description="Bot (tenant) the knowledge was indexed for.")
    status: str = Field(..., description="'complete' when indexing succeeded.")

    model_config = {
        "json_schema_extra": {
            "examples": [{"tenant_id": "bot-2f7c0d1e-8f55-4d0b-9a47-1b1f3f0f6a42", "status": "complete"}]
        }
    }
