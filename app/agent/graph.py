"""
LangGraph orchestrator: cache_check -> retrieve -> decide -> (respond | authorize
-> dispatch -> compose) -> cache_write.

One turn runs as one sequential graph invocation. Error states are AppError
exceptions raised from a node; they end the run and are never cached. A failed
or non-2xx action call does not fail the turn; it becomes a caveat on the answer.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Literal, TypedDict

import httpx
from langgraph.graph import END, StateGraph

from app.agent.decision import Decision, DecisionEngine
from app.auth.access_policy import is_permitted
from app.auth.token_verifier import TokenVerifier, VerifiedPrincipal
from app.core.config import ACTION_CAVEAT_BODY_LIMIT, RETRIEVAL_TOP_K
from app.core.errors import (
    ActionTransportError,
    AuthorizationError,
    InputError,
    InvalidEndpointError,
    KnowledgeBaseNotFoundError,
    MissingEndpointError,
    MissingTokenError,
)
from app.core.response_cache import ResponseCache, make_cache_key
from app.core.tenant_db import TenantStore
from app.schemas.tenant import TenantConfig, is_plain_endpoint
from app.services.action_dispatcher import ActionDispatcher, DispatchResult
from app.services.retrieval_service import KnowledgeRetriever, RetrievedChunk

logger = logging.getLogger(__name__)

ACTION_DELIMITER = "\n\n---\n"


class TurnState(TypedDict, total=False):
    tenant: TenantConfig
    message: str
    bearer_token: str | None
    cache_key: str
    chunks: list[RetrievedChunk]
    decision: Decision
    principal: VerifiedPrincipal
    dispatch_result: DispatchResult | None
    dispatch_error: str | None
    answer: str
    served_from_cache: bool


@dataclass(frozen=True)
class TurnResult:
    tenant_id: str
    answer: str
    served_from_cache: bool


def _render_body(body: Any) -> str:
    if isinstance(body, (dict, list)):
        return json.dumps(body, default=str)
    return str(body or "")


def compose_answer(
    decision: Decision,
    result: DispatchResult | None,
    transport_error: str | None = None,
) -> str:
    """Append a delimited, deterministic summary of the action outcome to the model's answer."""
    target = f"{decision.method} {decision.endpoint}"
    if result is None:
        summary = f"Action failed: {target} could not be reached ({transport_error or 'unknown error'})"
    elif result.ok:
        summary = f"Action result: {target} (HTTP {result.http_status})\n{_render_body(result.body)}"
    else:
        body = _render_body(result.body)[:ACTION_CAVEAT_BODY_LIMIT]
        summary = f"Action failed: {target} returned HTTP {result.http_status}\n{body}"
    return f"{decision.answer}{ACTION_DELIMITER}{summary}"


class Orchestrator:
    """Sequences cache, retrieval, decision, authorization and dispatch for one turn."""

    def __init__(
        self,
        tenant_store: TenantStore,
        retriever: KnowledgeRetriever,
        decision_engine: DecisionEngine,
        token_verifier: TokenVerifier,
        dispatcher: ActionDispatcher,
        cache: ResponseCache,
        top_k: int = RETRIEVAL_TOP_K,
    ) -> None:
        self.tenant_store = tenant_store
        self.retriever = retriever
        self.decision_engine = decision_engine
        self.token_verifier = token_verifier
        self.dispatcher = dispatcher
        self.cache = cache
        self.top_k = top_k
        self._graph = self.build_graph()

    # --- nodes ---

    def _cache_check(self, state: TurnState) -> dict:
        key = make_cache_key(state["tenant"].tenant_id, state["message"])
        cached = self.cache.get(key)
        logger.info("[graph:cache_check] tenant=%s hit=%s", state["tenant"].tenant_id, cached is not None)
        if cached is not None:
            return {"cache_key": key, "answer": cached, "served_from_cache": True}
        return {"cache_key": key, "served_from_cache": False}

    def _retrieve(self, state: TurnState) -> dict:
        tenant = state["tenant"]
        chunks = self.retriever.retrieve(tenant.tenant_id, state["message"], self.top_k)
        if not chunks:
            raise KnowledgeBaseNotFoundError("No knowledge base for tenant")
        return {"chunks": chunks}

    def _decide(self, state: TurnState) -> dict:
        decision = self.decision_engine.decide(state["tenant"], state["message"], state["chunks"])
        if decision.wants_action and not decision.endpoint:
            raise MissingEndpointError("Model requested an action without specifying a target endpoint")
        return {"decision": decision}

    def _respond(self, state: TurnState) -> dict:
        return {"answer": state["decision"].answer}

    def _authorize_node(self, state: TurnState) -> dict:
        decision = state["decision"]
        principal = self.authorize(state["tenant"], state.get("bearer_token"), decision.endpoint, decision.method)
        return {"principal": principal}

    def _dispatch(self, state: TurnState) -> dict:
        decision = state["decision"]
        try:
            result = self.dispatcher.dispatch(
                state["tenant"], state["principal"], decision.endpoint, decision.method, decision.payload,
            )
        except httpx.HTTPError as e:
            logger.warning("[graph:dispatch] %s %s failed: %s", decision.method, decision.endpoint, type(e).__name__)
            return {"dispatch_result": None, "dispatch_error": type(e).__name__}
        return {"dispatch_result": result, "dispatch_error": None}

    def _compose(self, state: TurnState) -> dict:
        answer = compose_answer(state["decision"], state.get("dispatch_result"), state.get("dispatch_error"))
        return {"answer": answer}

    def _cache_write(self, state: TurnState) -> dict:
        self.cache.put(state["cache_key"], state["answer"])
        return {}

    # --- routing ---

    @staticmethod
    def _route_after_cache(state: TurnState) -> Literal["retrieve", "__end__"]:
        return END if state.get("served_from_cache") else "retrieve"

    @staticmethod
    def _route_after_decide(state: TurnState) -> Literal["respond", "authorize"]:
        return "authorize" if state["decision"].wants_action else "respond"

    def build_graph(self):
        graph = StateGraph(TurnState)

        graph.add_node("cache_check", self._cache_check)
        graph.add_node("retrieve", self._retrieve)
        graph.add_node("decide", self._decide)
        graph.add_node("respond", self._respond)
        graph.add_node("authorize", self._authorize_node)
        graph.add_node("dispatch", self._dispatch)
        graph.add_node("compose", self._compose)
        graph.add_node("cache_write", self._cache_write)

        graph.set_entry_point("cache_check")
        graph.add_conditional_edges("cache_check", self._route_after_cache)
        graph.add_edge("retrieve", "decide")
        graph.add_conditional_edges("decide", self._route_after_decide)
        graph.add_edge("respond", "cache_write")
        graph.add_edge("authorize", "dispatch")
        graph.add_edge("dispatch", "compose")
        graph.add_edge("compose", "cache_write")
        graph.add_edge("cache_write", END)

        return graph.compile()

    # --- public API ---

    def authorize(
        self,
        tenant: TenantConfig,
        bearer_token: str | None,
        endpoint: str,
        method: str | None = None,
    ) -> VerifiedPrincipal:
        """Check the endpoint shape, require and verify a token, then check the endpoint policy."""
        # the string checked against policies is the string dispatched
        if not is_plain_endpoint(endpoint):
            raise InvalidEndpointError(f"Invalid endpoint: {endpoint!r}")
        if not bearer_token:
            raise MissingTokenError("Authentication required for this action")
        principal = self.token_verifier.verify(
            bearer_token, tenant.identity_issuer, tenant.identity_audience, tenant.roles_claim_path,
        )
        if not is_permitted(tenant, endpoint, principal.roles, method):
            raise AuthorizationError("Forbidden: insufficient role for endpoint")
        return principal

    def run_turn(self, tenant_id: str, message: str, bearer_token: str | None = None) -> TurnResult:
        if not message or not message.strip():
            raise InputError("Missing required field: message")
        tenant = self.tenant_store.get(tenant_id)
        logger.info("[run_turn] START tenant=%s message_len=%d has_token=%s", tenant_id, len(message), bool(bearer_token))
        final = self._graph.invoke({"tenant": tenant, "message": message, "bearer_token": bearer_token})
        result = TurnResult(
            tenant_id=tenant.tenant_id,
            answer=final["answer"],
            served_from_cache=bool(final.get("served_from_cache")),
        )
        logger.info("[run_turn] END tenant=%s cached=%s answer_len=%d", tenant_id, result.served_from_cache, len(result.answer))
        return result

    def execute_action(
        self,
        tenant_id: str,
        bearer_token: str | None,
        endpoint: str,
        method: str = "GET",
        payload: dict[str, Any] | None = None,
    ) -> DispatchResult:
        """Standalone action boundary: same authorize-then-dispatch path a turn takes."""
        if not endpoint:
            raise InputError("Missing endpoint")
        tenant = self.tenant_store.get(tenant_id)
        principal = self.authorize(tenant, bearer_token, endpoint, method)
        try:
            return self.dispatcher.dispatch(tenant, principal, endpoint, method, payload)
        except httpx.HTTPError as e:
            logger.warning("[execute_action] %s %s failed: %s", method, endpoint, type(e).__name__)
            raise ActionTransportError("Proxy request failed") from e
