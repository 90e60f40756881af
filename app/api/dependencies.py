"""
Process-wide service wiring. Each collaborator is built once and handed to the
orchestrator explicitly; tests swap them through app.dependency_overrides.
"""

from functools import lru_cache

from app.agent.decision import DecisionEngine
from app.agent.graph import Orchestrator
from app.auth.token_verifier import TokenVerifier
from app.core.response_cache import ResponseCache
from app.core.tenant_db import TenantStore
from app.services.action_dispatcher import ActionDispatcher
from app.services.retrieval_service import KnowledgeRetriever


@lru_cache
def get_tenant_store() -> TenantStore:
    return TenantStore()


@lru_cache
def get_response_cache() -> ResponseCache:
    return ResponseCache()


@lru_cache
def get_orchestrator() -> Orchestrator:
    return Orchestrator(
        tenant_store=get_tenant_store(),
        retriever=KnowledgeRetriever(),
        decision_engine=DecisionEngine(),
        token_verifier=TokenVerifier(),
        dispatcher=ActionDispatcher(),
        cache=get_response_cache(),
    )
