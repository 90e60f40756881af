"""
Application errors for clean API error handling.

Every error carries a stable `code` and the HTTP status it maps to, so the API
layer can render the `{"status": "failed", "error": ...}` envelope without
knowing which service raised it.
"""


class AppError(Exception):
    """Base class for errors that are reported to the caller."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# --- 400 ---

class InputError(AppError):
    """A required field is missing or malformed."""

    status_code = 400
    code = "invalid_input"


class InvalidTenantConfigError(InputError):
    """Tenant configuration failed validation at write time."""

    code = "invalid_tenant_config"


class InvalidFileTypeError(InputError):
    """Raised when one or more files have disallowed extensions."""

    code = "invalid_file_type"

    def __init__(self, invalid: list[str]) -> None:
        self.invalid = invalid
        super().__init__(f"Rejected: {', '.join(invalid)}")


class MissingEndpointError(InputError):
    """The model asked for an action but gave no target endpoint."""

    code = "missing_endpoint"


class InvalidEndpointError(InputError):
    """Endpoint is not a plain absolute path, so it cannot be matched against policies."""

    code = "invalid_endpoint"


# --- 401 / 403 ---

class AuthenticationError(AppError):
    status_code = 401
    code = "invalid_auth"


class MissingTokenError(AuthenticationError):
    code = "missing_auth"


class TokenInvalid(AuthenticationError):
    """Token is malformed, badly signed, expired, or for another issuer/audience."""

    code = "invalid_auth"


class AudienceMismatch(AuthenticationError):
    code = "audience_mismatch"


class AuthorizationError(AppError):
    status_code = 403
    code = "insufficient_role"


# --- 404 ---

class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class TenantNotFoundError(NotFoundError):
    code = "tenant_not_found"


class KnowledgeBaseNotFoundError(NotFoundError):
    code = "missing_knowledge"


# --- 502 ---

class UpstreamDecisionError(AppError):
    """The language model (or its configuration) misbehaved."""

    status_code = 502
    code = "decision_error"


class DecisionParseError(UpstreamDecisionError):
    code = "decision_parse"


class DecisionTransportError(UpstreamDecisionError):
    code = "decision_transport"


class ActionTransportError(AppError):
    """The tenant's API could not be reached from the standalone action boundary."""

    status_code = 502
    code = "upstream_unreachable"


# --- 503 ---

class ServiceUnavailableError(AppError):
    """Raised when a required service (e.g. vector store, embeddings API) is unavailable or misconfigured."""

    status_code = 503
    code = "service_unavailable"


class RetrievalUnavailable(ServiceUnavailableError):
    code = "retrieval_unavailable"
