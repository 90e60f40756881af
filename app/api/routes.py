"""
API route aggregator: register endpoints; no logic here, only delegation to handlers and the orchestrator.
"""

import logging

from fastapi import APIRouter, Depends, File, Form, Header, Request, UploadFile

from app.agent.graph import Orchestrator
from app.api.dependencies import get_orchestrator, get_response_cache, get_tenant_store
from app.api.handlers import (
    handle_create_bot,
    handle_update_bot,
    handle_upload,
    parse_endpoint_policies,
    with_cleared_text_fields,
)
from app.auth.token_verifier import extract_bearer_token
from app.core.response_cache import ResponseCache
from app.core.tenant_db import TenantStore
from app.schemas.chat import ActionRequest, ActionResponse, ChatRequest, ChatResponse, ErrorEnvelope
from app.schemas.tenant import BotCreateResponse, BotDetailResponse
from app.schemas.upload import UploadResponse

logger = logging.getLogger(__name__)
router = APIRouter()

_ERRORS = {code: {"model": ErrorEnvelope} for code in (400, 401, 403, 404, 500, 502, 503)}


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "Agentic bot backend running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


@router.delete("/cache", tags=["system"], summary="Flush the response cache")
def flush_cache(cache: ResponseCache = Depends(get_response_cache)) -> dict:
    cache.flush()
    return {"flushed": True}


# --- Bot registry ---

@router.post(
    "/bots",
    response_model=BotCreateResponse,
    responses=_ERRORS,
    tags=["bots"],
    summary="Register a bot and index its knowledge base",
    description="Multipart form: bot configuration fields plus one .pdf, .txt, .xlsx or .xls knowledge file. endpoint_policies is a JSON array.",
)
async def create_bot(
    display_name: str = Form(...),
    persona: str = Form(...),
    upstream_base_url: str = Form(...),
    identity_issuer: str = Form(...),
    identity_audience: str = Form(...),
    roles_claim_path: str = Form(...),
    business_name: str = Form(""),
    system_policy_text: str = Form(""),
    identity_client_id: str | None = Form(None),
    endpoint_policies: str | None = Form(None),
    default_deny: bool = Form(False),
    knowledge_base: UploadFile | None = File(None),
    store: TenantStore = Depends(get_tenant_store),
) -> BotCreateResponse:
    fields = {
        "display_name": display_name,
        "persona": persona,
        "business_name": business_name,
        "system_policy_text": system_policy_text,
        "upstream_base_url": upstream_base_url,
        "identity_issuer": identity_issuer,
        "identity_audience": identity_audience,
        "identity_client_id": identity_client_id,
        "roles_claim_path": roles_claim_path,
        "endpoint_policies": parse_endpoint_policies(endpoint_policies),
        "default_deny": default_deny,
    }
    return await handle_create_bot(store, fields, knowledge_base)


@router.get("/bots/{tenant_id}", response_model=BotDetailResponse, responses=_ERRORS, tags=["bots"])
def get_bot(tenant_id: str, store: TenantStore = Depends(get_tenant_store)) -> BotDetailResponse:
    return BotDetailResponse(bot=store.get(tenant_id))


@router.put(
    "/bots/{tenant_id}",
    responses=_ERRORS,
    tags=["bots"],
    summary="Update a bot; optionally replace its knowledge base",
)
async def update_bot(
    request: Request,
    tenant_id: str,
    display_name: str | None = Form(None),
    persona: str | None = Form(None),
    business_name: str | None = Form(None),
    system_policy_text: str | None = Form(None),
    upstream_base_url: str | None = Form(None),
    identity_issuer: str | None = Form(None),
    identity_audience: str | None = Form(None),
    identity_client_id: str | None = Form(None),
    roles_claim_path: str | None = Form(None),
    endpoint_policies: str | None = Form(None),
    default_deny: bool | None = Form(None),
    knowledge_base: UploadFile | None = File(None),
    store: TenantStore = Depends(get_tenant_store),
    cache: ResponseCache = Depends(get_response_cache),
) -> dict:
    fields = {
        "display_name": display_name,
        "persona": persona,
        "business_name": business_name,
        "system_policy_text": system_policy_text,
        "upstream_base_url": upstream_base_url,
        "identity_issuer": identity_issuer,
        "identity_audience": identity_audience,
        "identity_client_id": identity_client_id,
        "roles_claim_path": roles_claim_path,
        "endpoint_policies": parse_endpoint_policies(endpoint_policies),
        "default_deny": default_deny,
    }
    fields = with_cleared_text_fields(fields, await request.form())
    return await handle_update_bot(store, cache, tenant_id, fields, knowledge_base)


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses=_ERRORS,
    tags=["bots"],
    summary="Add a knowledge file to an existing bot",
)
async def upload_knowledge(
    tenant_id: str = Form(...),
    knowledge_base: UploadFile = File(...),
    store: TenantStore = Depends(get_tenant_store),
    cache: ResponseCache = Depends(get_response_cache),
) -> UploadResponse:
    return await handle_upload(store, cache, tenant_id, knowledge_base)


# --- Chat turn ---

@router.post(
    "/chat",
    response_model=ChatResponse,
    responses=_ERRORS,
    tags=["chat"],
    summary="Send one message to a bot",
    description="Retrieval-grounded answer; when the model requests an action the Authorization bearer token is verified and the call is made on the user's behalf.",
)
def post_chat(
    body: ChatRequest,
    authorization: str | None = Header(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> ChatResponse:
    token = extract_bearer_token(authorization) or body.user_token
    result = orchestrator.run_turn(body.tenant_id, body.message, token)
    return ChatResponse(tenant_id=result.tenant_id, answer=result.answer, served_from_cache=result.served_from_cache)


# --- Action proxy ---

@router.post(
    "/proxy",
    response_model=ActionResponse,
    responses=_ERRORS,
    tags=["actions"],
    summary="Call a tenant API endpoint on behalf of the authenticated user",
)
def post_proxy(
    body: ActionRequest,
    authorization: str | None = Header(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> ActionResponse:
    token = extract_bearer_token(authorization)
    result = orchestrator.execute_action(body.tenant_id, token, body.endpoint, body.method, body.payload)
    return ActionResponse(data=result.body, upstream_http_status=result.http_status)
