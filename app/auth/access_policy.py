"""
Access policy evaluation: which caller roles may trigger which tenant endpoint.

Pure functions over TenantConfig; no I/O. Endpoints are matched by exact string.
An endpoint without a policy entry is open unless the tenant opted into default-deny.
"""

import logging
from collections.abc import Iterable

from app.schemas.tenant import TenantConfig

logger = logging.getLogger(__name__)


def is_permitted(
    tenant: TenantConfig,
    endpoint: str,
    principal_roles: Iterable[str],
    method: str | None = None,
) -> bool:
    """
    Return True when a caller holding principal_roles may invoke endpoint.

    - no entry for endpoint: permit (open-by-default), or deny if tenant.default_deny
    - entry marked public: permit
    - entry with allowed_methods and a method outside them: deny
    - otherwise permit iff principal_roles and allowed_roles intersect
    """
    policy = tenant.policy_for(endpoint)
    if policy is None:
        if tenant.default_deny:
            logger.info("[access_policy] tenant=%s endpoint=%s no rule, default-deny", tenant.tenant_id, endpoint)
            return False
        logger.warning("[access_policy] tenant=%s endpoint=%s has no rule; permitting (open-by-default)", tenant.tenant_id, endpoint)
        return True

    if method and policy.allowed_methods and method.upper() not in policy.allowed_methods:
        logger.info("[access_policy] tenant=%s endpoint=%s method=%s not allowed", tenant.tenant_id, endpoint, method)
        return False

    if policy.public:
        return True

    roles = {str(r) for r in principal_roles}
    permitted = bool(roles & set(policy.allowed_roles))
    logger.info(
        "[access_policy] tenant=%s endpoint=%s required=%s held=%s permitted=%s",
        tenant.tenant_id, endpoint, policy.allowed_roles, sorted(roles), permitted,
    )
    return permitted


def describe_endpoints(tenant: TenantConfig) -> str:
    """Human-readable endpoint listing for the model prompt, one line per policy entry."""
    if not tenant.endpoint_policies:
        return "None provided."
    lines = []
    for p in tenant.endpoint_policies:
        methods = ", ".join(p.allowed_methods) if p.allowed_methods else "ANY"
        roles = "public" if p.public else (", ".join(p.allowed_roles) or "none")
        lines.append(f"- {p.endpoint_pattern} ({methods}) roles: {roles}")
    return "\n".join(lines)
