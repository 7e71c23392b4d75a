"""Domain-specific exceptions for signaling operations.

Every error carries a stable ``code`` and the HTTP status it maps to, so the API
layer can render it without knowing the individual classes. These exceptions are
safe to import from the storage and API layers.
"""

from __future__ import annotations

from typing import Any


class SignalingError(Exception):
    code: str = "SIGNALING_ERROR"
    status_code: int = 500
    default_detail: str = "Signaling error"

    def __init__(self, detail: str | None = None, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail
        self.errors = errors or []


class ValidationError(SignalingError):
    code = "VALIDATION_ERROR"
    status_code = 400
    default_detail = "Invalid request."

    @classmethod
    def for_field(cls, location: str, name: str, description: str) -> ValidationError:
        return cls(description, errors=[{"location": location, "name": name, "description": description}])


class NoRecipientError(ValidationError):
    code = "NO_RECIPIENT"
    default_detail = "No user to call found."


class AuthError(SignalingError):
    code = "AUTH_ERROR"
    status_code = 401
    default_detail = "Unauthorized."


class MissingCredentialError(AuthError):
    code = "MISSING_CREDENTIAL"
    default_detail = "A credential is required."


class InvalidCredentialError(AuthError):
    code = "INVALID_CREDENTIAL"
    default_detail = "Invalid session credential."


class UnsupportedAuthSchemeError(AuthError):
    code = "UNSUPPORTED_AUTH_SCHEME"
    default_detail = "Unsupported authorization scheme."


class InvalidAssertionError(AuthError):
    code = "INVALID_ASSERTION"
    default_detail = "BrowserID assertion is invalid."


class ForbiddenError(SignalingError):
    code = "FORBIDDEN"
    status_code = 403
    default_detail = "Forbidden."


class NotFoundError(SignalingError):
    code = "NOT_FOUND"
    status_code = 404
    default_detail = "Not found."


class DuplicateKeyError(SignalingError):
    code = "DUPLICATE_KEY"
    status_code = 409
    default_detail = "A record with the same unique key already exists."


class UpstreamDependencyError(SignalingError):
    code = "UPSTREAM_UNAVAILABLE"
    status_code = 503
    default_detail = "Service unavailable."


class SchemaError(SignalingError):
    code = "SCHEMA_ERROR"
    status_code = 500
    default_detail = "Storage schema could not be provisioned."
