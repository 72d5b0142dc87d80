"""
gateway.interceptors.request_interceptor — PCI tokenization REQUEST interceptor.

On every request routed through the gateway:
  1. Matches the request URI against intercept_path_pattern_list
  2. Parses the JSON body, applies the GraphQL operation allow-list and
     extracts the PCI object at intercept_object_key
  3. Resolves the tenant from headers, body or the bearer JWT claims
  4. Exchanges the PCI object for a token at the tokenization service,
     authenticating via OAuth2 client credentials when required
  5. Rewrites the body (CONTINUE) or short-circuits (RESPOND) according
     to reject_on_error; x-trace-id is propagated in both directions

Card data never appears in logs.

Configuration: JSON in PCI_TOKENIZATION_CONFIG, or an SSM parameter named by
PCI_TOKENIZATION_CONFIG_PARAM (SecureString, cached for 60s).
"""

from __future__ import annotations

import json
import os
import time
from typing import Any

import boto3
from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.utilities.typing import LambdaContext
from tokenization import paths, policy
from tokenization.client import TokenizationClient
from tokenization.credentials import CredentialCache
from tokenization.exceptions import (
    ConfigurationError,
    TenantExtractionError,
    TokenizationServiceError,
)
from tokenization.matcher import matches, should_intercept_graphql
from tokenization.models import (
    Continue,
    InboundRequest,
    Outcome,
    ResponseShape,
    ShortCircuit,
    Skip,
    TokenizationConfig,
)
from tokenization.tenant import TenantResolver, build_tenant_object

from gateway.interceptors import envelope

logger = Logger(service="pci-tokenization")
tracer = Tracer()

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
CONFIG_ENV = "PCI_TOKENIZATION_CONFIG"
CONFIG_PARAM_ENV = "PCI_TOKENIZATION_CONFIG_PARAM"
CONFIG_CACHE_TTL_SECONDS = 60
CONFIG_ERROR_CODE = "TOK_CONFIG_ERROR"

# ---------------------------------------------------------------------------
# Global clients/cache: one set per execution environment (worker)
# ---------------------------------------------------------------------------
_ssm_client = None
_cloudwatch_client = None
_tokenization_client: TokenizationClient | None = None

_inline_config: tuple[str, TokenizationConfig] | None = None
_config_cache: TokenizationConfig | None = None
_config_cache_expiry: float = 0


def get_ssm():
    global _ssm_client
    if _ssm_client is None:
        region = os.environ.get("AWS_REGION", "eu-west-2")
        _ssm_client = boto3.client("ssm", region_name=region)
    return _ssm_client


def get_cloudwatch():
    global _cloudwatch_client
    if _cloudwatch_client is None:
        region = os.environ.get("AWS_REGION", "eu-west-2")
        _cloudwatch_client = boto3.client("cloudwatch", region_name=region)
    return _cloudwatch_client


def get_tokenization_client() -> TokenizationClient:
    """Lazy initialization; the CredentialCache inside lives for the worker's lifetime."""
    global _tokenization_client
    if _tokenization_client is None:
        _tokenization_client = TokenizationClient(CredentialCache())
    return _tokenization_client


def _parse_config(raw_json: str, source: str) -> TokenizationConfig:
    try:
        raw = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{source} is not valid JSON") from exc
    if isinstance(raw, dict):
        unknown = TokenizationConfig.unknown_keys(raw)
        if unknown:
            logger.warning("Ignoring unknown configuration keys", keys=unknown, source=source)
    return TokenizationConfig.from_dict(raw)


def get_config() -> TokenizationConfig:
    """Load and validate the interceptor configuration.

    Raises ConfigurationError when no valid configuration is available.
    """
    global _inline_config, _config_cache, _config_cache_expiry

    inline = os.environ.get(CONFIG_ENV)
    if inline:
        if _inline_config is None or _inline_config[0] != inline:
            _inline_config = (inline, _parse_config(inline, CONFIG_ENV))
        return _inline_config[1]

    param_name = os.environ.get(CONFIG_PARAM_ENV)
    if not param_name:
        raise ConfigurationError(f"Neither {CONFIG_ENV} nor {CONFIG_PARAM_ENV} is set")

    now = time.time()
    if _config_cache is not None and now < _config_cache_expiry:
        return _config_cache

    try:
        response = get_ssm().get_parameter(Name=param_name, WithDecryption=True)
        value = response["Parameter"]["Value"]
    except Exception:
        logger.exception("Failed to fetch config from SSM", parameter=param_name)
        if _config_cache is not None:
            # Stale but previously validated
            return _config_cache
        raise ConfigurationError(f"Unable to load configuration from {param_name}") from None

    _config_cache = _parse_config(value, param_name)
    _config_cache_expiry = now + CONFIG_CACHE_TTL_SECONDS
    return _config_cache


@tracer.capture_method
def intercept(
    conf: TokenizationConfig,
    request: InboundRequest,
    *,
    client: TokenizationClient,
    cloudwatch_client: Any = None,
) -> Outcome:
    """Run the tokenization pipeline for one request."""
    # 1. URI gate
    if not matches(request.uri, conf.compiled_patterns):
        return Skip("uri not matched")
    logger.info("Request intercepted", method=request.method)

    # 2. Body, GraphQL filter, PCI object
    if not request.body:
        logger.warning("No request body found")
        return Skip("no request body")
    try:
        body = json.loads(request.body)
    except json.JSONDecodeError:
        logger.error("Failed to parse request body as JSON")
        return Skip("body is not JSON")

    if not should_intercept_graphql(conf, body):
        logger.info("GraphQL operation not configured for interception")
        return Skip("graphql operation not allowed")

    pci_object = paths.get(body, conf.intercept_object_key)
    if pci_object is paths.MISSING or pci_object is None:
        logger.warning("PCI object not found", path=conf.intercept_object_key)
        return Skip("pci object not found")

    # 3. Tenant
    try:
        tenant_value = TenantResolver(conf).resolve(request)
    except TenantExtractionError as exc:
        logger.error("Failed to extract tenant information", tenant_location=exc.location)
        return policy.apply_failure(conf, policy.failure_for_tenant_error(exc))
    tenant_object = build_tenant_object(conf, tenant_value)

    # 4. Tokenization service
    try:
        response = client.call(conf, pci_object, tenant_object)
    except TokenizationServiceError as exc:
        logger.error("Tokenization service call failed", status_code=exc.status_code)
        return policy.apply_failure(conf, policy.failure_for_service_error(exc))

    # 5. Policy
    if policy.classify(response) == ResponseShape.UNKNOWN:
        policy.emit_contract_violation_metric(
            cloudwatch_client or get_cloudwatch(), endpoint=conf.token_service_endpoint
        )
    return policy.apply_response(conf, response, body)


def render(event: dict[str, Any], outcome: Outcome) -> dict[str, Any]:
    if isinstance(outcome, ShortCircuit):
        return envelope.respond(outcome.status_code, outcome.body, outcome.trace_id)
    if isinstance(outcome, Continue):
        return envelope.continue_request(event, outcome.body, outcome.trace_id)
    return envelope.passthrough(event)


@logger.inject_lambda_context(clear_state=True)
@tracer.capture_lambda_handler
def handler(event: dict[str, Any], context: LambdaContext) -> dict[str, Any]:
    """Gateway REQUEST interceptor entry point."""
    try:
        conf = get_config()
    except ConfigurationError:
        logger.exception("Invalid PCI tokenization configuration")
        return envelope.respond(500, {"errorCode": CONFIG_ERROR_CODE})

    try:
        request = envelope.inbound_request(event)
    except ValueError:
        logger.exception("Unreadable request body")
        return envelope.passthrough(event)

    outcome = intercept(conf, request, client=get_tokenization_client())

    trace_id = getattr(outcome, "trace_id", None)
    if trace_id:
        logger.append_keys(trace_id=trace_id)
    if isinstance(outcome, Skip):
        logger.debug("Request not tokenized", reason=outcome.reason)
    elif isinstance(outcome, Continue):
        logger.info("Forwarding request downstream")
    return render(event, outcome)
