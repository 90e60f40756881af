"""
Action dispatch: forward an authorized call to the tenant's first-party API on
behalf of the user.

The user's own verified token is the only credential attached. Non-2xx upstream
responses are returned as results, not raised; httpx transport errors propagate
so the caller decides how to narrate them.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.auth.token_verifier import VerifiedPrincipal
from app.core.config import ACTION_HTTP_TIMEOUT
from app.core.errors import AudienceMismatch, InputError, InvalidEndpointError
from app.schemas.tenant import HTTP_METHODS, TenantConfig, is_plain_endpoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    http_status: int
    body: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.http_status < 300


def build_target_url(base_url: str, endpoint: str) -> str:
    """Plain concatenation; endpoint is forwarded exactly as it was authorized."""
    return f"{base_url.rstrip('/')}{endpoint}"


class ActionDispatcher:
    """Thin httpx proxy; preconditions (verified token, policy check) belong to the caller."""

    def __init__(
        self,
        timeout: float = ACTION_HTTP_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self._transport = transport

    def dispatch(
        self,
        tenant: TenantConfig,
        principal: VerifiedPrincipal,
        endpoint: str,
        method: str,
        payload: dict[str, Any] | None = None,
    ) -> DispatchResult:
        # Re-check audience in case a verifier was shared across tenants.
        if tenant.identity_audience not in principal.audience:
            raise AudienceMismatch("Access token audience does not match API audience for this bot.")
        method = (method or "GET").upper()
        if method not in HTTP_METHODS:
            raise InputError(f"Unsupported HTTP method: {method}")
        if not is_plain_endpoint(endpoint):
            raise InvalidEndpointError(f"Invalid endpoint: {endpoint!r}")

        url = build_target_url(tenant.upstream_base_url, endpoint)
        headers = {
            "Authorization": f"Bearer {principal.raw_token}",
            "X-Agent-User": principal.subject or "unknown",
        }
        logger.info("[dispatcher:dispatch] IN  tenant=%s %s %s sub=%s", tenant.tenant_id, method, url, principal.subject)
        with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
            if method == "GET":
                response = client.request(method, url, headers=headers)
            else:
                response = client.request(method, url, headers=headers, json=payload or {})

        content_type = response.headers.get("content-type", "")
        body: Any
        if "application/json" in content_type:
            try:
                body = response.json()
            except ValueError:
                logger.warning("[dispatcher:dispatch] upstream declared JSON but body did not parse; passing text through")
                body = response.text
        else:
            body = response.text
        logger.info("[dispatcher:dispatch] OUT status=%d content_type=%s", response.status_code, content_type or "-")
        return DispatchResult(http_status=response.status_code, body=body)
