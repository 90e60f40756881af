"""
Shared fixtures: tenant configs, RSA signing keys, and JWT minting for auth tests.
"""

import json
import time
from typing import Any, Callable

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from app.schemas.tenant import TenantConfig

from tests.support import AUDIENCE, ISSUER, KID, ROLES_CLAIM


def _tenant_data(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "tenant_id": "t1",
        "display_name": "Acme Support",
        "business_name": "Acme Inc.",
        "persona": "friendly support agent",
        "system_policy_text": "Refunds need an order number.",
        "upstream_base_url": "https://api.acme.test",
        "identity_issuer": "acme.auth.test",
        "identity_audience": AUDIENCE,
        "roles_claim_path": ROLES_CLAIM,
        "endpoint_policies": [{"endpoint": "/refund", "method": "POST", "roles": ["admin"]}],
    }
    data.update(overrides)
    return data


@pytest.fixture
def tenant_data() -> Callable[..., dict[str, Any]]:
    return _tenant_data


@pytest.fixture
def make_tenant() -> Callable[..., TenantConfig]:
    def _make(**overrides: Any) -> TenantConfig:
        return TenantConfig.model_validate(_tenant_data(**overrides))
    return _make


@pytest.fixture
def tenant(make_tenant) -> TenantConfig:
    return make_tenant()


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def jwks(signing_key) -> dict[str, Any]:
    jwk = json.loads(RSAAlgorithm.to_jwk(signing_key.public_key()))
    jwk.update({"kid": KID, "alg": "RS256", "use": "sig"})
    return {"keys": [jwk]}


@pytest.fixture
def mint_token(signing_key) -> Callable[..., str]:
    """Sign a token for ISSUER/AUDIENCE; keyword overrides replace or (with None) drop claims."""

    def _mint(key: rsa.RSAPrivateKey | None = None, kid: str | None = KID, **claims: Any) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "sub": "user-123",
            "iss": ISSUER,
            "aud": AUDIENCE,
            "iat": now,
            "exp": now + 300,
            ROLES_CLAIM: ["admin"],
        }
        payload.update(claims)
        payload = {k: v for k, v in payload.items() if v is not None}
        headers = {"kid": kid} if kid else None
        return jwt.encode(payload, key or signing_key, algorithm="RS256", headers=headers)

    return _mint
