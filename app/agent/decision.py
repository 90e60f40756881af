"""
Decision engine: grounded prompt + fixed output schema -> validated Decision.

The schema makes the model separate "should an action run" from "what do I tell
the user", so the orchestrator never parses free text for intent. The model
output is parsed exactly once; a bad parse is terminal for the turn.
"""

import logging
from typing import Any, Callable, Literal

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from app.agent.llm import generate_structured
from app.auth.access_policy import describe_endpoints
from app.core.errors import DecisionParseError
from app.schemas.tenant import HTTP_METHODS, TenantConfig
from app.services.retrieval_service import RetrievedChunk

logger = logging.getLogger(__name__)

ACTION_NONE = "none"
ACTION_CALL_API = "call_api"

DECISION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "action": {"type": "string", "enum": [ACTION_NONE, ACTION_CALL_API]},
        "endpoint": {"type": ["string", "null"]},
        "method": {"type": ["string", "null"], "enum": sorted(HTTP_METHODS) + [None]},
        "payload": {"type": ["object", "null"], "additionalProperties": True},
        "answer": {"type": "string"},
    },
    "required": ["action", "answer"],
}

GenerateFn = Callable[[str, str, dict[str, Any]], str]


class Decision(BaseModel):
    """One model decision. endpoint/method/payload are only kept for call_api."""

    action: Literal["none", "call_api"]
    answer: str
    endpoint: str | None = None
    method: str | None = None
    payload: dict[str, Any] | None = None

    @field_validator("action", mode="before")
    @classmethod
    def _lower_action(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().upper()
            return v or None
        return v

    @field_validator("method")
    @classmethod
    def _known_method(cls, v: str | None) -> str | None:
        if v is not None and v not in HTTP_METHODS:
            raise ValueError(f"unsupported method {v!r}")
        return v

    @model_validator(mode="after")
    def _action_fields(self) -> "Decision":
        if self.action == ACTION_NONE:
            self.endpoint = None
            self.method = None
            self.payload = None
        else:
            self.endpoint = (self.endpoint or "").strip() or None
            self.method = self.method or "GET"
            self.payload = self.payload or {}
        return self

    @property
    def wants_action(self) -> bool:
        return self.action == ACTION_CALL_API


def parse_decision(raw: str) -> Decision:
    """Validate raw model output against the decision schema. Raises DecisionParseError."""
    if not raw or not raw.strip():
        raise DecisionParseError("Failed to parse LLM response: empty output")
    try:
        return Decision.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("[decision:parse] invalid model output errors=%d sample=%r", e.error_count(), raw[:200])
        raise DecisionParseError("Failed to parse LLM response") from e


def build_system_instruction(tenant: TenantConfig) -> str:
    rules = tenant.system_policy_text.strip() or "None."
    return (
        f"You are {tenant.display_name}, a {tenant.persona}.\n"
        f"Follow these business rules strictly: {rules}\n"
        "Use the company knowledge and the available API list to assist the user. "
        "Cite knowledge passages by their number (e.g. #1) when you rely on them.\n"
        "Only request an API call when the user's request needs one, and only for an endpoint "
        "from the list. Set action to \"call_api\" with endpoint, method and payload in that case; "
        "otherwise set action to \"none\".\n"
        "Always respond with a valid JSON object that includes an \"answer\" for the user."
    )


def format_chunks(chunks: list[RetrievedChunk]) -> str:
    return "\n\n".join(f"#{i} {c.text}" for i, c in enumerate(chunks, 1))


def build_user_prompt(
    tenant: TenantConfig,
    user_message: str,
    chunks: list[RetrievedChunk],
    available_endpoints: str | None = None,
) -> str:
    endpoints = available_endpoints if available_endpoints is not None else describe_endpoints(tenant)
    return (
        f'User message: "{user_message}"\n\n'
        f"Company knowledge:\n{format_chunks(chunks)}\n\n"
        f"Available internal API endpoints:\n{endpoints}\n"
    )


class DecisionEngine:
    """Builds the prompt, calls the model once, returns a validated Decision."""

    def __init__(self, generate: GenerateFn = generate_structured) -> None:
        self._generate = generate

    def decide(
        self,
        tenant: TenantConfig,
        user_message: str,
        chunks: list[RetrievedChunk],
        available_endpoints: str | None = None,
    ) -> Decision:
        system_instruction = build_system_instruction(tenant)
        user_prompt = build_user_prompt(tenant, user_message, chunks, available_endpoints)
        logger.info("[decision:decide] IN  tenant=%s chunks=%d prompt_len=%d", tenant.tenant_id, len(chunks), len(user_prompt))
        raw = self._generate(system_instruction, user_prompt, DECISION_SCHEMA)
        decision = parse_decision(raw)
        logger.info(
            "[decision:decide] OUT action=%s endpoint=%s method=%s answer_len=%d",
            decision.action, decision.endpoint, decision.method, len(decision.answer),
        )
        return decision
