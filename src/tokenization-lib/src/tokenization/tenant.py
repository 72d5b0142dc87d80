"""
tokenization.tenant — Resolves the caller's tenant identity.

The configured tenant_information_location selects one extractor:

    headers    request header named by tenant_information_reference
    body       dotted path into the JSON request body
    jwt        dotted claim path in the bearer token payload

The bearer token is decoded WITHOUT signature verification: it has already
been authenticated upstream in the gateway, this module only reads claims.

Every failure surfaces as TenantExtractionError; the sub-cause is only
logged, callers see TOK_ERROR_1001.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from typing import Any

import jwt
from aws_lambda_powertools import Logger

from tokenization import paths
from tokenization.exceptions import TenantExtractionError
from tokenization.models import (
    InboundRequest,
    TenantLocation,
    TenantObject,
    TenantType,
    TokenizationConfig,
)

logger = Logger(service="tokenization-lib")

_BEARER_PREFIX = "Bearer "


def _fail(location: TenantLocation, reason: str) -> TenantExtractionError:
    logger.warning("Tenant extraction failed", tenant_location=str(location), reason=reason)
    return TenantExtractionError(location=str(location), reason=reason)


def _as_tenant_value(location: TenantLocation, value: Any) -> str:
    if value is paths.MISSING or value is None:
        raise _fail(location, "reference not found")
    if isinstance(value, bool) or isinstance(value, Mapping | list):
        raise _fail(location, f"reference resolved to a {type(value).__name__}")
    text = str(value).strip()
    if not text:
        raise _fail(location, "reference resolved to an empty value")
    return text


def from_headers(request: InboundRequest, reference: str) -> str:
    return _as_tenant_value(TenantLocation.HEADERS, request.header(reference))


def from_body(request: InboundRequest, reference: str) -> str:
    if not request.body:
        raise _fail(TenantLocation.BODY, "request body is empty")
    try:
        body = json.loads(request.body)
    except json.JSONDecodeError as exc:
        raise _fail(TenantLocation.BODY, "request body is not valid JSON") from exc
    if not isinstance(body, Mapping):
        raise _fail(TenantLocation.BODY, "request body is not a JSON object")
    return _as_tenant_value(TenantLocation.BODY, paths.get(body, reference))


def from_jwt(request: InboundRequest, reference: str) -> str:
    auth_header = request.header("Authorization")
    if not auth_header:
        raise _fail(TenantLocation.JWT, "no Authorization header")

    token = auth_header.strip()
    if token.startswith(_BEARER_PREFIX):
        token = token[len(_BEARER_PREFIX) :].strip()

    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as exc:
        raise _fail(TenantLocation.JWT, f"token could not be decoded: {exc}") from exc

    return _as_tenant_value(TenantLocation.JWT, paths.get(claims, reference))


_EXTRACTORS: dict[TenantLocation, Callable[[InboundRequest, str], str]] = {
    TenantLocation.HEADERS: from_headers,
    TenantLocation.BODY: from_body,
    TenantLocation.JWT: from_jwt,
}


class TenantResolver:
    """Extracts the tenant value for one configuration."""

    def __init__(self, conf: TokenizationConfig) -> None:
        self._location = conf.tenant_information_location
        self._reference = conf.tenant_information_reference
        self._extract = _EXTRACTORS[self._location]

    def resolve(self, request: InboundRequest) -> str:
        return self._extract(request, self._reference)


def build_tenant_object(conf: TokenizationConfig, tenant_value: str) -> TenantObject:
    if conf.tenant_type == TenantType.GUID:
        return TenantObject(
            type=TenantType.GUID,
            value=tenant_value,
            resolver_url=conf.tenant_guid_resolver_url,
            resolver_method=conf.tenant_guid_resolver_method,
            resolver_reference=conf.tenant_guid_resolver_reference,
        )
    return TenantObject(type=TenantType.STRING, value=tenant_value)
