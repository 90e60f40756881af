"""
API tests: routes, error envelopes and bot registry over FastAPI's TestClient.

Collaborators are swapped through app.dependency_overrides; ingestion is patched
so tests do not require Milvus or the HF API.
"""

import json
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from app.agent.decision import Decision
from app.agent.graph import Orchestrator
from app.api.dependencies import get_orchestrator, get_response_cache, get_tenant_store
from app.core.errors import DecisionParseError
from app.core.response_cache import ResponseCache, make_cache_key
from app.core.tenant_db import TenantStore
from app.main import app
from app.services.action_dispatcher import DispatchResult
from tests.support import FakeDispatcher, FakeEngine, FakeRetriever, FakeVerifier

REFUND = Decision(action="call_api", endpoint="/refund", method="POST", payload={"order": "A1"}, answer="Refunding A1.")

BOT_FORM = {
    "display_name": "Acme Support",
    "persona": "friendly support agent",
    "upstream_base_url": "https://api.acme.test",
    "identity_issuer": "acme.auth.test",
    "identity_audience": "https://api.acme.test",
    "roles_claim_path": "https://acme.test/roles",
    "endpoint_policies": json.dumps([{"endpoint": "/refund", "method": "POST", "roles": ["admin"]}]),
}


def knowledge_file(name: str = "faq.txt", content: bytes = b"Refunds take 5 days.") -> dict:
    return {"knowledge_base": (name, content, "text/plain")}


@pytest.fixture
def store(tmp_path, tenant_data) -> TenantStore:
    store = TenantStore(tmp_path / "tenants.db")
    store.create(tenant_data())
    return store


@pytest.fixture
def cache() -> ResponseCache:
    return ResponseCache()


@pytest.fixture
def wire(store, cache):
    """Install an orchestrator built over fakes; returns a function to (re)configure it."""

    def _wire(retriever=None, engine=None, verifier=None, dispatcher=None) -> Orchestrator:
        orchestrator = Orchestrator(
            tenant_store=store,
            retriever=retriever or FakeRetriever(),
            decision_engine=engine or FakeEngine(),
            token_verifier=verifier or FakeVerifier(),
            dispatcher=dispatcher or FakeDispatcher(),
            cache=cache,
        )
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        return orchestrator

    app.dependency_overrides[get_tenant_store] = lambda: store
    app.dependency_overrides[get_response_cache] = lambda: cache
    _wire()
    yield _wire
    app.dependency_overrides.clear()


@pytest.fixture
def client(wire) -> TestClient:
    return TestClient(app)


def assert_failed(response, status_code: int, code: str) -> dict:
    assert response.status_code == status_code
    body = response.json()
    assert body["status"] == "failed"
    assert body["code"] == code
    assert body["error"]
    return body


def test_root_and_health(client: TestClient) -> None:
    assert client.get("/").status_code == 200
    assert client.get("/health").json() == {"ok": True}


class TestChat:
    def test_answer(self, client: TestClient) -> None:
        response = client.post("/chat", json={"tenant_id": "t1", "message": "How long do refunds take?"})
        assert response.status_code == 200
        assert response.json() == {"tenant_id": "t1", "answer": "Refunds take 5 days.", "served_from_cache": False}

    def test_repeat_served_from_cache(self, client: TestClient) -> None:
        client.post("/chat", json={"tenant_id": "t1", "message": "Hours?"})
        response = client.post("/chat", json={"tenant_id": "t1", "message": "  hours? "})
        assert response.json()["served_from_cache"] is True

    def test_action_with_authorization_header(self, client: TestClient, wire) -> None:
        wire(engine=FakeEngine(REFUND))
        response = client.post(
            "/chat",
            json={"tenant_id": "t1", "message": "Refund A1"},
            headers={"Authorization": "Bearer tok"},
        )
        assert response.status_code == 200
        assert response.json()["answer"].startswith("Refunding A1.\n\n---\nAction result: POST /refund (HTTP 200)")

    def test_action_with_legacy_body_token(self, client: TestClient, wire) -> None:
        wire(engine=FakeEngine(REFUND))
        response = client.post("/chat", json={"tenant_id": "t1", "message": "Refund A1", "user_token": "tok"})
        assert response.status_code == 200

    def test_action_without_token(self, client: TestClient, wire) -> None:
        dispatcher = FakeDispatcher()
        wire(engine=FakeEngine(REFUND), dispatcher=dispatcher)
        response = client.post("/chat", json={"tenant_id": "t1", "message": "Refund A1"})
        assert_failed(response, 401, "missing_auth")
        assert dispatcher.calls == []

    def test_action_with_bad_token(self, client: TestClient, wire) -> None:
        wire(engine=FakeEngine(REFUND))
        response = client.post(
            "/chat", json={"tenant_id": "t1", "message": "Refund A1"}, headers={"Authorization": "Bearer forged"},
        )
        assert_failed(response, 401, "invalid_auth")

    def test_insufficient_role(self, client: TestClient, wire) -> None:
        wire(engine=FakeEngine(REFUND), verifier=FakeVerifier(roles=("support",)))
        response = client.post(
            "/chat", json={"tenant_id": "t1", "message": "Refund A1"}, headers={"Authorization": "Bearer tok"},
        )
        body = assert_failed(response, 403, "insufficient_role")
        assert body["error"] == "Forbidden: insufficient role for endpoint"

    def test_upstream_failure_is_caveat(self, client: TestClient, wire) -> None:
        wire(engine=FakeEngine(REFUND), dispatcher=FakeDispatcher(DispatchResult(http_status=500, body="boom")))
        response = client.post(
            "/chat", json={"tenant_id": "t1", "message": "Refund A1"}, headers={"Authorization": "Bearer tok"},
        )
        assert response.status_code == 200
        assert "Action failed: POST /refund returned HTTP 500" in response.json()["answer"]

    def test_unknown_tenant(self, client: TestClient) -> None:
        assert_failed(client.post("/chat", json={"tenant_id": "nope", "message": "hi"}), 404, "tenant_not_found")

    def test_empty_knowledge(self, client: TestClient, wire) -> None:
        wire(retriever=FakeRetriever(chunks=[]))
        body = assert_failed(client.post("/chat", json={"tenant_id": "t1", "message": "hi"}), 404, "missing_knowledge")
        assert body["error"] == "No knowledge base for tenant"

    def test_unparseable_decision(self, client: TestClient, wire) -> None:
        wire(engine=FakeEngine(error=DecisionParseError("Failed to parse LLM response")))
        assert_failed(client.post("/chat", json={"tenant_id": "t1", "message": "hi"}), 502, "decision_parse")

    @pytest.mark.parametrize(
        "payload",
        [{"tenant_id": "t1"}, {"message": "hi"}, {"tenant_id": "t1", "message": ""}],
    )
    def test_missing_fields(self, client: TestClient, payload) -> None:
        body = assert_failed(client.post("/chat", json=payload), 400, "invalid_input")
        assert body["error"].startswith("Missing or invalid field")

    def test_blank_message(self, client: TestClient) -> None:
        assert_failed(client.post("/chat", json={"tenant_id": "t1", "message": "   "}), 400, "invalid_input")

    def test_internal_fault_hides_detail(self, wire) -> None:
        wire(retriever=FakeRetriever(error=KeyError("milvus-password")))
        client = TestClient(app, raise_server_exceptions=False)
        body = assert_failed(client.post("/chat", json={"tenant_id": "t1", "message": "hi"}), 500, "internal_error")
        assert body["error"] == "Internal server error"
        assert "milvus-password" not in json.dumps(body)


class TestProxy:
    def test_success(self, client: TestClient, wire) -> None:
        dispatcher = FakeDispatcher(DispatchResult(http_status=201, body={"refund_id": "r-1"}))
        wire(dispatcher=dispatcher)
        response = client.post(
            "/proxy",
            json={"tenant_id": "t1", "endpoint": "/refund", "method": "POST", "payload": {"order": "A1"}},
            headers={"Authorization": "Bearer tok"},
        )
        assert response.status_code == 200
        assert response.json() == {"status": "success", "data": {"refund_id": "r-1"}, "upstream_http_status": 201}
        assert dispatcher.calls[0]["payload"] == {"order": "A1"}

    def test_requires_authorization_header(self, client: TestClient) -> None:
        response = client.post("/proxy", json={"tenant_id": "t1", "endpoint": "/refund", "method": "POST"})
        assert_failed(response, 401, "missing_auth")

    def test_role_denied(self, client: TestClient, wire) -> None:
        wire(verifier=FakeVerifier(roles=("viewer",)))
        response = client.post(
            "/proxy",
            json={"tenant_id": "t1", "endpoint": "/refund", "method": "POST"},
            headers={"Authorization": "Bearer tok"},
        )
        assert_failed(response, 403, "insufficient_role")

    def test_unreachable_upstream(self, client: TestClient, wire) -> None:
        wire(dispatcher=FakeDispatcher(error=httpx.ConnectError("connection refused")))
        response = client.post(
            "/proxy",
            json={"tenant_id": "t1", "endpoint": "/orders"},
            headers={"Authorization": "Bearer tok"},
        )
        assert_failed(response, 502, "upstream_unreachable")

    @pytest.mark.parametrize("endpoint", ["refund", "//refund", "/public/../refund"])
    def test_endpoint_not_a_plain_path(self, client: TestClient, wire, endpoint) -> None:
        dispatcher = FakeDispatcher()
        wire(verifier=FakeVerifier(roles=("viewer",)), dispatcher=dispatcher)
        response = client.post(
            "/proxy",
            json={"tenant_id": "t1", "endpoint": endpoint, "method": "POST"},
            headers={"Authorization": "Bearer tok"},
        )
        assert_failed(response, 400, "invalid_endpoint")
        assert dispatcher.calls == []


class TestBots:
    def test_create_indexes_knowledge(self, client: TestClient, store) -> None:
        with patch("app.api.handlers.ingest", return_value=True) as ingest:
            response = client.post("/bots", data=BOT_FORM, files=knowledge_file())
        assert response.status_code == 200
        tenant_id = response.json()["tenant_id"]
        assert tenant_id.startswith("bot-")
        assert response.json()["status"] == "complete"
        ingest.assert_called_once_with(tenant_id, "Refunds take 5 days.", "faq.txt", False)

        bot = client.get(f"/bots/{tenant_id}").json()["bot"]
        assert bot["embedding_status"] == "complete"
        assert bot["identity_issuer"] == "https://acme.auth.test/"
        assert bot["endpoint_policies"][0]["allowed_roles"] == ["admin"]

    def test_create_rejects_bad_policies(self, client: TestClient) -> None:
        form = dict(BOT_FORM, endpoint_policies="{not json")
        with patch("app.api.handlers.ingest") as ingest:
            response = client.post("/bots", data=form, files=knowledge_file())
        assert_failed(response, 400, "invalid_tenant_config")
        ingest.assert_not_called()

    def test_create_rejects_file_type(self, client: TestClient) -> None:
        with patch("app.api.handlers.ingest") as ingest:
            response = client.post("/bots", data=BOT_FORM, files=knowledge_file("notes.docx"))
        assert_failed(response, 400, "invalid_file_type")
        ingest.assert_not_called()

    def test_create_requires_file(self, client: TestClient) -> None:
        assert_failed(client.post("/bots", data=BOT_FORM), 400, "invalid_input")

    def test_create_requires_fields(self, client: TestClient) -> None:
        form = {k: v for k, v in BOT_FORM.items() if k != "persona"}
        body = assert_failed(client.post("/bots", data=form, files=knowledge_file()), 400, "invalid_input")
        assert "persona" in body["error"]

    def test_indexing_failure(self, client: TestClient) -> None:
        with patch("app.api.handlers.ingest", return_value=False):
            response = client.post("/bots", data=BOT_FORM, files=knowledge_file())
        assert_failed(response, 500, "internal_error")

    def test_get_unknown(self, client: TestClient) -> None:
        assert_failed(client.get("/bots/missing"), 404, "tenant_not_found")

    def test_update_invalidates_cache(self, client: TestClient, store, cache) -> None:
        cache.put(make_cache_key("t1", "hi"), "old answer")
        cache.put(make_cache_key("t2", "hi"), "other tenant")
        response = client.put("/bots/t1", data={"persona": "terse agent"})
        assert response.json() == {"status": "success", "tenant_id": "t1"}
        assert store.get("t1").persona == "terse agent"
        assert cache.get(make_cache_key("t1", "hi")) is None
        assert cache.get(make_cache_key("t2", "hi")) == "other tenant"

    def test_update_with_file_replaces_knowledge(self, client: TestClient) -> None:
        with patch("app.api.handlers.ingest", return_value=True) as ingest:
            response = client.put("/bots/t1", data={}, files=knowledge_file(content=b"New hours 9-5."))
        assert response.status_code == 200
        ingest.assert_called_once_with("t1", "New hours 9-5.", "faq.txt", True)

    def test_update_rejects_bad_policy(self, client: TestClient, store) -> None:
        policies = json.dumps([{"endpoint": "refund", "roles": ["admin"]}])
        assert_failed(client.put("/bots/t1", data={"endpoint_policies": policies}), 400, "invalid_tenant_config")
        assert store.get("t1").policy_for("/refund") is not None

    def test_update_unknown(self, client: TestClient) -> None:
        assert_failed(client.put("/bots/missing", data={"persona": "x"}), 404, "tenant_not_found")

    def test_update_with_bad_file_changes_nothing(self, client: TestClient, store, cache) -> None:
        cache.put(make_cache_key("t1", "hi"), "old answer")
        with patch("app.api.handlers.ingest") as ingest:
            response = client.put("/bots/t1", data={"persona": "terse agent"}, files=knowledge_file("x.exe"))
        assert_failed(response, 400, "invalid_file_type")
        ingest.assert_not_called()
        assert store.get("t1").persona == "friendly support agent"
        assert cache.get(make_cache_key("t1", "hi")) == "old answer"

    def test_update_with_empty_file_changes_nothing(self, client: TestClient, store) -> None:
        with patch("app.api.handlers.ingest") as ingest:
            response = client.put("/bots/t1", data={"persona": "terse agent"}, files=knowledge_file(content=b"  "))
        assert_failed(response, 400, "invalid_input")
        ingest.assert_not_called()
        assert store.get("t1").persona == "friendly support agent"

    def test_update_then_indexing_failure_still_invalidates_cache(self, client: TestClient, store, cache) -> None:
        cache.put(make_cache_key("t1", "hi"), "old answer")
        with patch("app.api.handlers.ingest", return_value=False):
            response = client.put("/bots/t1", data={"persona": "terse agent"}, files=knowledge_file())
        assert_failed(response, 500, "internal_error")
        assert store.get("t1").persona == "terse agent"
        assert store.get("t1").embedding_status == "failed"
        assert cache.get(make_cache_key("t1", "hi")) is None

    def test_update_blank_clears_optional_text(self, client: TestClient, store) -> None:
        store.update("t1", {"system_policy_text": "No refunds on sale items.", "business_name": "Acme"})
        response = client.put("/bots/t1", data={"system_policy_text": "", "persona": ""})
        assert response.status_code == 200
        bot = store.get("t1")
        assert bot.system_policy_text == ""
        assert bot.business_name == "Acme"
        assert bot.persona == "friendly support agent"


class TestUpload:
    def test_upload_appends(self, client: TestClient, store, cache) -> None:
        cache.put(make_cache_key("t1", "hi"), "stale")
        with patch("app.api.handlers.ingest", return_value=True) as ingest:
            response = client.post("/upload", data={"tenant_id": "t1"}, files=knowledge_file())
        assert response.json() == {"tenant_id": "t1", "status": "complete"}
        ingest.assert_called_once_with("t1", "Refunds take 5 days.", "faq.txt", False)
        assert store.get("t1").embedding_status == "complete"
        assert len(cache) == 0

    def test_upload_empty_file(self, client: TestClient, store) -> None:
        with patch("app.api.handlers.ingest") as ingest:
            response = client.post("/upload", data={"tenant_id": "t1"}, files=knowledge_file(content=b"   "))
        assert_failed(response, 400, "invalid_input")
        ingest.assert_not_called()
        assert store.get("t1").embedding_status == "failed"

    def test_upload_unknown_tenant(self, client: TestClient) -> None:
        with patch("app.api.handlers.ingest") as ingest:
            response = client.post("/upload", data={"tenant_id": "missing"}, files=knowledge_file())
        assert_failed(response, 404, "tenant_not_found")
        ingest.assert_not_called()


def test_flush_cache(client: TestClient, cache) -> None:
    cache.put("t1:hi", "x")
    assert client.delete("/cache").json() == {"flushed": True}
    assert len(cache) == 0
