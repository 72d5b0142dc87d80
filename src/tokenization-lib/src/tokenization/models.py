"""
tokenization.models — Configuration, tenant context and pipeline results.

Configuration is validated once per load (TokenizationConfig.from_dict) and is
immutable afterwards. Per-request values (TenantObject, pipeline results) are
ephemeral and never persisted.

Pipeline stages thread one of four results:
    Skip            request not intercepted, forward untouched
    Continue        forward downstream with the (possibly) rewritten body
    ShortCircuit    answer the caller directly, backend is bypassed
    Failure         classified error, turned into Continue or ShortCircuit
                    by the policy engine according to reject_on_error
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from tokenization import paths
from tokenization.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------
DEFAULT_TIMEOUT_MS: int = 5000
DEFAULT_AUTH_REALM: str = "core-apps"
DEFAULT_AUTH_SCOPE: str = "openid"
DEFAULT_RESOLVER_REFERENCE: str = "tenantId"
TOKEN_EXPIRY_MARGIN_SECONDS: int = 60
DEFAULT_TOKEN_EXPIRES_IN_SECONDS: int = 900  # 15 minutes

TRACE_ID_HEADER: str = "x-trace-id"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ErrorCode(StrEnum):
    TENANT_EXTRACTION_FAILED = "TOK_ERROR_1001"
    TOKENIZATION_ERROR = "TOK_ERROR_1002"
    SERVICE_UNAVAILABLE = "TOK_ERROR_1003"
    AUTH_TOKEN_ERROR = "TOK_ERROR_1004"


class TenantLocation(StrEnum):
    HEADERS = "headers"
    BODY = "body"
    JWT = "jwt"


class ResolverMethod(StrEnum):
    GET = "GET"
    POST = "POST"


class TenantType(StrEnum):
    GUID = "guid"
    STRING = "string"


class ResponseShape(StrEnum):
    SUCCESS = "success"
    BUSINESS_ERROR = "business_error"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

_KNOWN_KEYS = frozenset(
    {
        "intercept_path_pattern_list",
        "intercept_object_key",
        "is_graphql_request",
        "graphql_operation_names",
        "token_service_endpoint",
        "token_service_timeout",
        "is_token_gateway_url",
        "iam_service_url",
        "token_service_auth_client_id",
        "token_service_auth_secret",
        "token_service_auth_realm",
        "token_service_scope",
        "has_tenant_guid",
        "has_tenant",
        "tenant_guid_resolver_url",
        "tenant_guid_resolver_method",
        "tenant_guid_resolver_reference",
        "tenant_information_location",
        "tenant_information_reference",
        "reject_on_error",
    }
)


def _required_str(raw: dict[str, Any], key: str) -> str:
    if key not in raw or raw[key] is None:
        raise ConfigurationError(f"{key} is required")
    value = raw[key]
    if not isinstance(value, str):
        raise ConfigurationError(f"{key} must be a string")
    return value


def _optional_str(raw: dict[str, Any], key: str, default: str | None = None) -> str | None:
    value = raw.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigurationError(f"{key} must be a string")
    return value


def _optional_bool(raw: dict[str, Any], key: str, default: bool | None) -> bool | None:
    value = raw.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigurationError(f"{key} must be a boolean")
    return value


def _str_list(raw: dict[str, Any], key: str, *, required: bool) -> tuple[str, ...]:
    value = raw.get(key)
    if value is None:
        if required:
            raise ConfigurationError(f"{key} is required")
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"{key} must be a list of strings")
    return tuple(value)


def _enum_value(
    raw: dict[str, Any], key: str, enum_type: type[StrEnum], default: Any = None
) -> Any:
    value = raw.get(key)
    if value is None:
        if default is None:
            raise ConfigurationError(f"{key} is required")
        return default
    try:
        return enum_type(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_type)
        raise ConfigurationError(f"{key} must be one of: {allowed}") from exc


@dataclass(frozen=True)
class TokenizationConfig:
    """Validated interceptor configuration.

    token_service_timeout is in milliseconds, as configured on the route;
    use timeout_seconds when handing it to requests.
    """

    intercept_path_pattern_list: tuple[str, ...]
    intercept_object_key: str
    token_service_endpoint: str
    tenant_information_location: TenantLocation
    tenant_information_reference: str
    has_tenant_guid: bool = False
    has_tenant: bool = False
    is_graphql_request: bool = False
    graphql_operation_names: tuple[str, ...] = ()
    token_service_timeout: float = DEFAULT_TIMEOUT_MS
    is_token_gateway_url: bool = False
    iam_service_url: str | None = None
    token_service_auth_client_id: str | None = None
    token_service_auth_secret: str | None = field(default=None, repr=False)
    token_service_auth_realm: str = DEFAULT_AUTH_REALM
    token_service_scope: str = DEFAULT_AUTH_SCOPE
    tenant_guid_resolver_url: str | None = None
    tenant_guid_resolver_method: ResolverMethod = ResolverMethod.GET
    tenant_guid_resolver_reference: str = DEFAULT_RESOLVER_REFERENCE
    reject_on_error: bool = True
    compiled_patterns: tuple[re.Pattern[str], ...] = field(
        init=False, repr=False, compare=False, default=()
    )

    def __post_init__(self) -> None:
        if self.has_tenant_guid and self.has_tenant:
            raise ConfigurationError("Cannot have both has_tenant_guid and has_tenant set to true")
        if not self.has_tenant_guid and not self.has_tenant:
            raise ConfigurationError("Either has_tenant_guid or has_tenant must be set to true")

        if self.is_token_gateway_url:
            for key in (
                "iam_service_url",
                "token_service_auth_client_id",
                "token_service_auth_secret",
            ):
                if not getattr(self, key):
                    raise ConfigurationError(f"{key} is required when is_token_gateway_url is true")

        if not paths.is_root_key(self.intercept_object_key) and not paths.split_path(
            self.intercept_object_key
        ):
            raise ConfigurationError(
                "intercept_object_key must be a whole-body key or a dotted path"
            )

        if not self.intercept_path_pattern_list:
            raise ConfigurationError(
                "intercept_path_pattern_list must contain at least one pattern"
            )
        if self.token_service_timeout <= 0:
            raise ConfigurationError("token_service_timeout must be greater than zero")

        compiled = []
        for pattern in self.intercept_path_pattern_list:
            try:
                compiled.append(re.compile(pattern))
            except re.error as exc:
                raise ConfigurationError(
                    f"Invalid intercept path pattern {pattern!r}: {exc}"
                ) from exc
        object.__setattr__(self, "compiled_patterns", tuple(compiled))

    @property
    def timeout_seconds(self) -> float:
        return self.token_service_timeout / 1000

    @property
    def tenant_type(self) -> TenantType:
        return TenantType.GUID if self.has_tenant_guid else TenantType.STRING

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TokenizationConfig:
        """Validate a raw route configuration mapping and apply defaults.

        Raises ConfigurationError on any schema or cross-field violation.
        """
        if not isinstance(raw, dict):
            raise ConfigurationError("configuration must be a JSON object")

        timeout = raw.get("token_service_timeout", DEFAULT_TIMEOUT_MS)
        if isinstance(timeout, bool) or not isinstance(timeout, int | float):
            raise ConfigurationError("token_service_timeout must be a number")

        return cls(
            intercept_path_pattern_list=_str_list(
                raw, "intercept_path_pattern_list", required=True
            ),
            intercept_object_key=_required_str(raw, "intercept_object_key"),
            token_service_endpoint=_required_str(raw, "token_service_endpoint"),
            tenant_information_location=_enum_value(
                raw, "tenant_information_location", TenantLocation
            ),
            tenant_information_reference=_required_str(raw, "tenant_information_reference"),
            has_tenant_guid=bool(_optional_bool(raw, "has_tenant_guid", False)),
            has_tenant=bool(_optional_bool(raw, "has_tenant", False)),
            is_graphql_request=bool(_optional_bool(raw, "is_graphql_request", False)),
            graphql_operation_names=_str_list(raw, "graphql_operation_names", required=False),
            token_service_timeout=timeout,
            is_token_gateway_url=bool(_optional_bool(raw, "is_token_gateway_url", False)),
            iam_service_url=_optional_str(raw, "iam_service_url"),
            token_service_auth_client_id=_optional_str(raw, "token_service_auth_client_id"),
            token_service_auth_secret=_optional_str(raw, "token_service_auth_secret"),
            token_service_auth_realm=_optional_str(
                raw, "token_service_auth_realm", DEFAULT_AUTH_REALM
            )
            or DEFAULT_AUTH_REALM,
            token_service_scope=_optional_str(raw, "token_service_scope", DEFAULT_AUTH_SCOPE)
            or DEFAULT_AUTH_SCOPE,
            tenant_guid_resolver_url=_optional_str(raw, "tenant_guid_resolver_url"),
            tenant_guid_resolver_method=_enum_value(
                raw, "tenant_guid_resolver_method", ResolverMethod, ResolverMethod.GET
            ),
            tenant_guid_resolver_reference=_optional_str(
                raw, "tenant_guid_resolver_reference", DEFAULT_RESOLVER_REFERENCE
            )
            or DEFAULT_RESOLVER_REFERENCE,
            reject_on_error=bool(_optional_bool(raw, "reject_on_error", True)),
        )

    @staticmethod
    def unknown_keys(raw: dict[str, Any]) -> list[str]:
        return sorted(set(raw) - _KNOWN_KEYS)


# ---------------------------------------------------------------------------
# Credential cache entry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CachedToken:
    """Single cached OAuth2 access token, scoped to one realm."""

    token: str = field(repr=False)
    expires_at: float  # Unix epoch seconds, safety margin already applied
    realm: str

    def is_valid(self, realm: str, now: float) -> bool:
        return self.realm == realm and now < self.expires_at


# ---------------------------------------------------------------------------
# Tenant context, sent to the tokenization service as tenantObject
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TenantObject:
    """Per-request tenant identity.

    The resolver_* fields are only populated in GUID mode; they are passed
    through to the tokenization service, which performs the GUID resolution.
    """

    type: TenantType
    value: str
    resolver_url: str | None = None
    resolver_method: ResolverMethod | None = None
    resolver_reference: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": str(self.type), "value": self.value}
        if self.type == TenantType.GUID:
            data["tenantResolverUrl"] = self.resolver_url
            data["tenantResolverMethod"] = str(self.resolver_method or ResolverMethod.GET)
            data["tenantResolverReference"] = self.resolver_reference or DEFAULT_RESOLVER_REFERENCE
        return data


# ---------------------------------------------------------------------------
# Inbound request: read-only view handed to the library by the interceptor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InboundRequest:
    uri: str
    method: str
    headers: dict[str, str]
    body: str | None

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


# ---------------------------------------------------------------------------
# Pipeline results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Skip:
    reason: str


@dataclass(frozen=True)
class Continue:
    body: Any
    trace_id: str | None = None


@dataclass(frozen=True)
class ShortCircuit:
    status_code: int
    body: dict[str, Any]
    trace_id: str | None = None


@dataclass(frozen=True)
class Failure:
    """A classified pipeline error awaiting the reject_on_error decision."""

    code: ErrorCode
    description: str
    detail: str
    http_status: int


Outcome = Skip | Continue | ShortCircuit
