"""
tokenization.exceptions — Failures raised inside the tokenization library.

Every exception is caught at the interceptor boundary and classified into
one of the TOK_ERROR_* codes; none of their text reaches the caller on the
fail-closed path.
"""

from __future__ import annotations


class TokenizationError(Exception):
    """Base class for all tokenization library failures."""


class ConfigurationError(TokenizationError):
    """Raised when the interceptor configuration is rejected at load time."""


class TenantExtractionError(TokenizationError):
    """
    Raised when no tenant value can be extracted from the configured source.

    Attributes:
        location: Configured tenant source (headers, body or jwt).
        reason:   Human-readable sub-cause, for logs only.
    """

    def __init__(self, *, location: str, reason: str) -> None:
        self.location = location
        self.reason = reason
        super().__init__(f"Tenant information not found in {location}: {reason}")


class CredentialError(TokenizationError):
    """
    Raised when an OAuth2 access token cannot be obtained.

    status_code mirrors the identity provider's HTTP status; 503 when the
    provider could not be reached at all.
    """

    def __init__(self, message: str, *, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(message)


class TokenizationServiceError(TokenizationError):
    """
    Raised when the tokenization service call fails.

    status_code is None for transport failures (timeout, connection refused)
    and for malformed 200 replies.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
