"""
API handlers: read request data (e.g. UploadFile), call services, map results/errors to HTTP.

Responsibility: Bridge HTTP types and services. Marshalling and exception-to-HTTP mapping.
Lives in the API layer so services stay free of FastAPI/HTTP types.
"""

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any

from fastapi import Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.config import MAX_UPLOAD_BYTES
from app.core.errors import AppError, InputError, InvalidTenantConfigError
from app.core.response_cache import ResponseCache
from app.core.tenant_db import TenantStore
from app.ingest.loader import bytes_to_text, ensure_supported
from app.schemas.chat import ErrorEnvelope
from app.schemas.tenant import BotCreateResponse
from app.schemas.upload import UploadResponse
from app.services.ingestion_service import ingest

logger = logging.getLogger(__name__)


# --- error mapping ---

def error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorEnvelope(error=message, code=code).model_dump())


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    logger.info("[api] %s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.code)
    return error_response(exc.status_code, exc.message, exc.code)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Missing or invalid field: {field}" if field else "Invalid request"
    return error_response(400, message, InputError.code)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("[api] unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal server error", AppError.code)


# --- bot registry ---

def parse_endpoint_policies(raw: str | None) -> list[Any] | None:
    """Parse the endpoint_policies form field (a JSON array). None when the field was not sent."""
    if raw is None or not raw.strip():
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidTenantConfigError("endpoint_policies must be a JSON array") from e
    if not isinstance(value, list):
        raise InvalidTenantConfigError("endpoint_policies must be a JSON array")
    return value


CLEARABLE_TEXT_FIELDS = ("business_name", "system_policy_text", "identity_client_id")


def with_cleared_text_fields(fields: dict[str, Any], form: Mapping[str, Any]) -> dict[str, Any]:
    """FastAPI reads a blank form value as "not sent"; keep blanks for optional text fields so they can be cleared."""
    return {**fields, **{k: "" for k in CLEARABLE_TEXT_FIELDS if fields.get(k) is None and form.get(k) == ""}}


async def read_knowledge_file(upload: UploadFile) -> tuple[str, str]:
    """Return (filename, extracted text). Rejects unsupported types, oversize and empty files."""
    filename = upload.filename or ""
    ensure_supported(filename)
    content = await upload.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise InputError(f"File too large (max {MAX_UPLOAD_BYTES // (1024 * 1024)} MB)")
    text = await asyncio.to_thread(bytes_to_text, content, filename)
    logger.info("[handlers:read_knowledge_file] filename=%s bytes=%d chars=%d", filename, len(content), len((text or "").strip()))
    return filename, (text or "").strip()


async def _index(store: TenantStore, tenant_id: str, filename: str, text: str, replace: bool) -> None:
    """Run ingestion off the event loop and record the resulting embedding status."""
    if not text:
        store.set_embedding_status(tenant_id, "failed")
        raise InputError("Failed to extract text from file")
    store.set_embedding_status(tenant_id, "pending")
    ok = await asyncio.to_thread(ingest, tenant_id, text, filename, replace)
    if not ok:
        store.set_embedding_status(tenant_id, "failed")
        raise AppError("Failed to process document")
    store.set_embedding_status(tenant_id, "complete")


async def handle_create_bot(store: TenantStore, fields: dict[str, Any], upload: UploadFile | None) -> BotCreateResponse:
    if upload is None:
        raise InputError("No knowledge file uploaded")
    ensure_supported(upload.filename or "")
    config = store.create({k: v for k, v in fields.items() if v is not None})
    filename, text = await read_knowledge_file(upload)
    await _index(store, config.tenant_id, filename, text, replace=False)
    logger.info("[handlers:create_bot] tenant_id=%s complete", config.tenant_id)
    return BotCreateResponse(tenant_id=config.tenant_id, status="complete")


async def handle_update_bot(
    store: TenantStore,
    cache: ResponseCache,
    tenant_id: str,
    fields: dict[str, Any],
    upload: UploadFile | None,
) -> dict[str, str]:
    """
    Partial update. A replacement file is read and checked before anything is written;
    an empty string clears an optional field. Cached answers are dropped once the
    record changes, even when re-indexing then fails.
    """
    store.get(tenant_id)
    document = None
    if upload is not None:
        document = await read_knowledge_file(upload)
        if not document[1]:
            raise InputError("Failed to extract text from file")
    store.update(tenant_id, {k: v for k, v in fields.items() if v is not None})
    try:
        if document is not None:
            await _index(store, tenant_id, *document, replace=True)
    finally:
        cache.invalidate_tenant(tenant_id)
    return {"status": "success", "tenant_id": tenant_id}


async def handle_upload(store: TenantStore, cache: ResponseCache, tenant_id: str, upload: UploadFile) -> UploadResponse:
    store.get(tenant_id)
    filename, text = await read_knowledge_file(upload)
    await _index(store, tenant_id, filename, text, replace=False)
    cache.invalidate_tenant(tenant_id)
    return UploadResponse(tenant_id=tenant_id, status="complete")
