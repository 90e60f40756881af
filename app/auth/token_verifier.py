"""
Bearer token verification against a tenant's identity provider.

Signing keys come from the issuer's well-known JWKS document and are cached by
(jwks_url, kid) for the process lifetime: a key id never changes its key, and
rotation introduces new ids, which trigger a refetch on first sight. Refetches
for one issuer are spaced at least refetch_interval apart, so a stream of tokens
with made-up kids cannot turn into a stream of requests to the provider.
"""

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx
import jwt

from app.core.config import JWKS_HTTP_TIMEOUT, JWKS_REFETCH_INTERVAL_SECONDS, TOKEN_ALGORITHMS, TOKEN_LEEWAY_SECONDS
from app.core.errors import ServiceUnavailableError, TokenInvalid
from app.schemas.tenant import normalize_issuer

logger = logging.getLogger(__name__)

JWKS_PATH = ".well-known/jwks.json"


@dataclass(frozen=True)
class VerifiedPrincipal:
    """Outcome of a successful verification. Lives for one request; never cached."""

    subject: str
    roles: frozenset[str]
    audience: tuple[str, ...]
    issuer: str
    raw_token: str = field(repr=False)


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an 'Authorization: Bearer <token>' header value, else None."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def roles_from_claims(claims: Mapping[str, Any], roles_claim_path: str) -> frozenset[str]:
    """
    Read the caller's roles from verified claims.

    roles_claim_path is first tried as a literal claim name (namespaced claims such
    as "https://example.com/roles" contain dots), then as a dotted path into
    nested objects (e.g. "realm_access.roles").
    """
    if not roles_claim_path:
        return frozenset()
    value: Any = claims.get(roles_claim_path)
    if value is None and "." in roles_claim_path:
        value = claims
        for part in roles_claim_path.split("."):
            if not isinstance(value, Mapping):
                value = None
                break
            value = value.get(part)
    if value is None:
        return frozenset()
    if isinstance(value, str):
        return frozenset(v for v in value.split() if v)
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(str(v) for v in value if str(v).strip())
    return frozenset({str(value)})


def _audience_tuple(aud: Any) -> tuple[str, ...]:
    if aud is None:
        return ()
    if isinstance(aud, str):
        return (aud,)
    return tuple(str(a) for a in aud)


class TokenVerifier:
    """Verifies signature, issuer, audience and expiry. Tenant-agnostic; issuer/audience are per call."""

    def __init__(
        self,
        algorithms: tuple[str, ...] = TOKEN_ALGORITHMS,
        leeway: int = TOKEN_LEEWAY_SECONDS,
        timeout: float = JWKS_HTTP_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
        refetch_interval: float = JWKS_REFETCH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.algorithms = algorithms
        self.leeway = leeway
        self.timeout = timeout
        self.refetch_interval = refetch_interval
        self._transport = transport
        self._clock = clock
        self._keys: dict[tuple[str, str], jwt.PyJWK] = {}
        self._fetched_at: dict[str, float] = {}
        self._lock = threading.Lock()

    def _fetch_jwks(self, jwks_url: str) -> dict[str, Any]:
        logger.info("[token_verifier:fetch_jwks] IN  url=%s", jwks_url)
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(jwks_url)
        except httpx.HTTPError as e:
            logger.warning("[token_verifier:fetch_jwks] request failed: %s", e)
            raise ServiceUnavailableError("Identity provider key discovery is unreachable") from e
        if response.status_code != 200:
            logger.warning("[token_verifier:fetch_jwks] status=%s", response.status_code)
            raise ServiceUnavailableError(f"Identity provider key discovery returned {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise ServiceUnavailableError("Identity provider returned an unreadable key set") from e

    def _signing_key(self, issuer: str, kid: str | None) -> jwt.PyJWK:
        jwks_url = f"{issuer}{JWKS_PATH}"
        cache_key = (jwks_url, kid or "")
        with self._lock:
            cached = self._keys.get(cache_key)
            last_fetch = self._fetched_at.get(jwks_url)
        if cached is not None:
            return cached
        if last_fetch is not None and self._clock() - last_fetch < self.refetch_interval:
            logger.warning("[token_verifier:signing_key] unknown kid=%s for %s; refetch throttled", kid, jwks_url)
            raise TokenInvalid("Token signed with an unknown key")

        data = self._fetch_jwks(jwks_url)
        try:
            key_set = jwt.PyJWKSet.from_dict(data)
        except jwt.PyJWTError as e:
            raise ServiceUnavailableError("Identity provider returned no usable signing keys") from e

        with self._lock:
            self._fetched_at[jwks_url] = self._clock()
            for key in key_set.keys:
                if key.key_id:
                    self._keys[(jwks_url, key.key_id)] = key
            # tokens without a kid are only accepted when the issuer publishes exactly one key
            if kid is None and len(key_set.keys) == 1:
                self._keys[cache_key] = key_set.keys[0]
            found = self._keys.get(cache_key)
        logger.info("[token_verifier:fetch_jwks] OUT keys=%d kid_found=%s", len(key_set.keys), found is not None)
        if found is None:
            raise TokenInvalid("Token signed with an unknown key")
        return found

    def verify(self, raw_token: str | None, issuer: str, audience: str, roles_claim_path: str = "") -> VerifiedPrincipal:
        """
        Validate raw_token for (issuer, audience). Raises TokenInvalid for a missing,
        malformed, badly signed, expired, or wrong-issuer/audience token.
        """
        if not raw_token or not raw_token.strip():
            raise TokenInvalid("Missing access token")
        iss = normalize_issuer(issuer)

        try:
            header = jwt.get_unverified_header(raw_token)
        except jwt.PyJWTError as e:
            raise TokenInvalid("Malformed access token") from e
        alg = header.get("alg")
        if alg not in self.algorithms:
            raise TokenInvalid(f"Unsupported token algorithm: {alg}")

        signing_key = self._signing_key(iss, header.get("kid"))
        try:
            claims = jwt.decode(
                raw_token,
                signing_key.key,
                algorithms=[alg],
                audience=audience,
                issuer=iss,
                leeway=self.leeway,
                options={"require": ["exp", "iss", "aud"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenInvalid("Access token has expired") from e
        except jwt.PyJWTError as e:
            logger.info("[token_verifier:verify] rejected: %s", type(e).__name__)
            raise TokenInvalid("Invalid or expired access token") from e

        principal = VerifiedPrincipal(
            subject=str(claims.get("sub") or ""),
            roles=roles_from_claims(claims, roles_claim_path),
            audience=_audience_tuple(claims.get("aud")),
            issuer=str(claims.get("iss") or iss),
            raw_token=raw_token,
        )
        logger.info("[token_verifier:verify] OUT sub=%s roles=%s", principal.subject, sorted(principal.roles))
        return principal
