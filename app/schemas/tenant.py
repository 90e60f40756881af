"""Schemas for tenant (bot) configuration and endpoint access policies."""

import re
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

HTTP_METHODS: frozenset[str] = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})
TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]{1,128}$")
# Plain absolute path: no empty or dot segments, no trailing slash, no query, fragment or escapes.
ENDPOINT_PATTERN = re.compile(r"^/$|^(?:/(?!\.{1,2}(?:/|$))[A-Za-z0-9_~.:@\-]+)+$")

EmbeddingStatus = Literal["pending", "complete", "failed"]


def is_plain_endpoint(endpoint: str | None) -> bool:
    """True when endpoint is matched and forwarded as exactly the same string."""
    return bool(endpoint) and ENDPOINT_PATTERN.match(endpoint) is not None


def normalize_issuer(issuer: str) -> str:
    """
    Turn a bare identity-provider domain or issuer URL into the exact issuer string
    tokens carry: scheme + host + trailing slash (e.g. https://tenant.auth0.com/).
    """
    value = (issuer or "").strip()
    if not value:
        return value
    if not re.match(r"^https?://", value):
        value = f"https://{value}"
    return value if value.endswith("/") else f"{value}/"


class EndpointPolicy(BaseModel):
    """
    Role rule for one first-party endpoint, matched by exact string.

    Accepts the legacy registry shape {endpoint, method, roles} as input.
    """

    endpoint_pattern: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("endpoint_pattern", "endpointPattern", "endpoint"),
    )
    allowed_methods: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("allowed_methods", "allowedMethods", "methods"),
    )
    allowed_roles: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("allowed_roles", "allowedRoles", "roles"),
    )
    public: bool = False

    @model_validator(mode="before")
    @classmethod
    def _single_method_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and "method" in data and not any(
            k in data for k in ("allowed_methods", "allowedMethods", "methods")
        ):
            data = dict(data)
            method = data.pop("method")
            data["allowed_methods"] = [] if method in (None, "", "ANY") else [method]
        return data

    @field_validator("endpoint_pattern")
    @classmethod
    def _plain_endpoint(cls, v: str) -> str:
        v = v.strip()
        if not is_plain_endpoint(v):
            raise ValueError(f"endpoint must be a plain path starting with a single '/': {v!r}")
        return v

    @field_validator("allowed_methods")
    @classmethod
    def _known_methods(cls, v: list[str]) -> list[str]:
        methods = [str(m).strip().upper() for m in v if str(m).strip()]
        unknown = [m for m in methods if m not in HTTP_METHODS]
        if unknown:
            raise ValueError(f"unsupported HTTP methods: {', '.join(unknown)}")
        return methods

    @field_validator("allowed_roles")
    @classmethod
    def _roles_as_strings(cls, v: list[Any]) -> list[str]:
        return [str(r).strip() for r in v if str(r).strip()]


class TenantConfig(BaseModel):
    """One registered bot: persona, business rules, identity provider, and API policies."""

    tenant_id: str
    display_name: str = Field(..., min_length=1)
    business_name: str = ""
    persona: str = Field(..., min_length=1)
    system_policy_text: str = ""
    upstream_base_url: str = Field(..., min_length=1)
    identity_issuer: str = Field(..., min_length=1)
    identity_audience: str = Field(..., min_length=1)
    identity_client_id: str | None = None
    roles_claim_path: str = Field(..., min_length=1)
    endpoint_policies: list[EndpointPolicy] = Field(default_factory=list)
    default_deny: bool = False
    embedding_status: EmbeddingStatus = "pending"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("tenant_id")
    @classmethod
    def _tenant_id_format(cls, v: str) -> str:
        if not TENANT_ID_PATTERN.match(v or ""):
            raise ValueError("tenant_id may only contain letters, digits, '_' and '-'")
        return v

    @field_validator("upstream_base_url")
    @classmethod
    def _http_base_url(cls, v: str) -> str:
        v = v.strip()
        if not re.match(r"^https?://[^/\s]+", v):
            raise ValueError("upstream_base_url must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("identity_issuer")
    @classmethod
    def _issuer(cls, v: str) -> str:
        return normalize_issuer(v)

    @field_validator("endpoint_policies")
    @classmethod
    def _unique_endpoints(cls, v: list[EndpointPolicy]) -> list[EndpointPolicy]:
        seen: set[str] = set()
        for policy in v:
            if policy.endpoint_pattern in seen:
                raise ValueError(f"duplicate endpoint policy for {policy.endpoint_pattern!r}")
            seen.add(policy.endpoint_pattern)
        return v

    def policy_for(self, endpoint: str) -> EndpointPolicy | None:
        for policy in self.endpoint_policies:
            if policy.endpoint_pattern == endpoint:
                return policy
        return None


class BotCreateResponse(BaseModel):
    tenant_id: str
    status: EmbeddingStatus


class BotDetailResponse(BaseModel):
    status: Literal["success"] = "success"
    bot: TenantConfig
