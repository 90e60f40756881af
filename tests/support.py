"""
Test doubles and constants shared across test modules.

The fakes stand in for the orchestrator's collaborators so turns can be driven
without a vector store, a model provider, an identity provider or a tenant API.
"""

from typing import Any

from app.agent.decision import Decision
from app.auth.token_verifier import VerifiedPrincipal
from app.core.errors import TenantNotFoundError, TokenInvalid
from app.schemas.tenant import TenantConfig
from app.services.action_dispatcher import DispatchResult
from app.services.retrieval_service import RetrievedChunk

ISSUER = "https://acme.auth.test/"
AUDIENCE = "https://api.acme.test"
ROLES_CLAIM = "https://acme.test/roles"
KID = "key-1"


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def principal(roles: tuple[str, ...] = ("admin",), audience: tuple[str, ...] = (AUDIENCE,)) -> VerifiedPrincipal:
    return VerifiedPrincipal(
        subject="user-1",
        roles=frozenset(roles),
        audience=audience,
        issuer=ISSUER,
        raw_token="tok",
    )


def chunk(text: str, score: float = 0.9, index: int = 0) -> RetrievedChunk:
    return RetrievedChunk(text=text, relevance_score=score, source_filename="faq.txt", source_chunk_index=index)


class FakeStore:
    def __init__(self, *tenants: TenantConfig) -> None:
        self.tenants = {t.tenant_id: t for t in tenants}

    def get(self, tenant_id: str) -> TenantConfig:
        if tenant_id not in self.tenants:
            raise TenantNotFoundError("Bot not found")
        return self.tenants[tenant_id]


class FakeRetriever:
    def __init__(self, chunks: list[RetrievedChunk] | None = None, error: Exception | None = None) -> None:
        self.chunks = chunks if chunks is not None else [chunk("Refunds are processed within 5 days.")]
        self.error = error
        self.calls: list[tuple[str, str, int]] = []

    def retrieve(self, tenant_id: str, query_text: str, k: int) -> list[RetrievedChunk]:
        self.calls.append((tenant_id, query_text, k))
        if self.error is not None:
            raise self.error
        return list(self.chunks)


class FakeEngine:
    def __init__(self, decision: Decision | None = None, error: Exception | None = None) -> None:
        self.decision = decision or Decision(action="none", answer="Refunds take 5 days.")
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def decide(self, tenant: TenantConfig, user_message: str, chunks: list[RetrievedChunk], available_endpoints: str | None = None) -> Decision:
        self.calls.append((tenant.tenant_id, user_message))
        if self.error is not None:
            raise self.error
        return self.decision


class FakeVerifier:
    """Accepts exactly one token value; anything else is rejected like a bad signature."""

    def __init__(self, valid_token: str = "tok", roles: tuple[str, ...] = ("admin",), error: Exception | None = None) -> None:
        self.valid_token = valid_token
        self.roles = roles
        self.error = error
        self.calls: list[tuple[str, str, str]] = []

    def verify(self, raw_token: str | None, issuer: str, audience: str, roles_claim_path: str = "") -> VerifiedPrincipal:
        self.calls.append((issuer, audience, roles_claim_path))
        if self.error is not None:
            raise self.error
        if raw_token != self.valid_token:
            raise TokenInvalid("Invalid or expired access token")
        return principal(self.roles)


class FakeDispatcher:
    def __init__(self, result: DispatchResult | None = None, error: Exception | None = None) -> None:
        self.result = result or DispatchResult(http_status=200, body={"refund_id": "r-1"})
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def dispatch(self, tenant, principal, endpoint, method, payload=None) -> DispatchResult:
        self.calls.append({"tenant_id": tenant.tenant_id, "endpoint": endpoint, "method": method, "payload": payload})
        if self.error is not None:
            raise self.error
        return self.result
