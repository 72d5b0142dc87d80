"""
tokenization — PCI tokenization library for the gateway REQUEST interceptor.

Extracts the sensitive object from a request body, resolves the tenant,
exchanges the object for a token and applies the reject_on_error policy.
The gateway-facing handler lives in gateway.interceptors.request_interceptor.
"""

from tokenization.client import TokenizationClient
from tokenization.credentials import CredentialCache
from tokenization.exceptions import (
    ConfigurationError,
    CredentialError,
    TenantExtractionError,
    TokenizationError,
    TokenizationServiceError,
)
from tokenization.models import ErrorCode, InboundRequest, TokenizationConfig
from tokenization.tenant import TenantResolver

__all__ = [
    "ConfigurationError",
    "CredentialCache",
    "CredentialError",
    "ErrorCode",
    "InboundRequest",
    "TenantExtractionError",
    "TenantResolver",
    "TokenizationClient",
    "TokenizationConfig",
    "TokenizationError",
    "TokenizationServiceError",
]
