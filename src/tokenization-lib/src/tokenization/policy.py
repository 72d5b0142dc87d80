"""
tokenization.policy — Turns tokenization replies and failures into outcomes.

reject_on_error selects the failure policy:
    True  (fail-closed)  every classified failure short-circuits the request
                         with a body exposing only the error code
    False (fail-open)    the request continues with an errorObject
                         annotation for the backend to handle

A reply that is neither {pciObject, traceId} nor {errorObject, traceId}
breaks the service contract. The original, untokenized body is forwarded in
that case whatever reject_on_error says; callers must log it and emit the
TokenizationContractViolation metric (emit_contract_violation_metric).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from aws_lambda_powertools import Logger

from tokenization import paths
from tokenization.exceptions import TenantExtractionError, TokenizationServiceError
from tokenization.models import (
    Continue,
    ErrorCode,
    Failure,
    ResponseShape,
    ShortCircuit,
    TokenizationConfig,
)

logger = Logger(service="tokenization-lib")

METRIC_NAMESPACE = "platform/gateway"
CONTRACT_VIOLATION_METRIC = "TokenizationContractViolation"


def classify(response: Any) -> ResponseShape:
    if not isinstance(response, Mapping):
        return ResponseShape.UNKNOWN
    if response.get("pciObject") is not None and response.get("traceId") is not None:
        return ResponseShape.SUCCESS
    if isinstance(response.get("errorObject"), Mapping) and response.get("traceId") is not None:
        return ResponseShape.BUSINESS_ERROR
    return ResponseShape.UNKNOWN


def describe_shape(response: Any) -> dict[str, str]:
    """Key -> type name of an unexpected reply, safe to log (no values)."""
    if not isinstance(response, Mapping):
        return {"<root>": type(response).__name__}
    return {str(key): type(value).__name__ for key, value in response.items()}


def _trace_id(response: Mapping[str, Any]) -> str:
    return str(response["traceId"])


def apply_response(
    conf: TokenizationConfig, response: Any, body: Any
) -> Continue | ShortCircuit:
    """Apply a decoded tokenization reply to the parsed request body."""
    shape = classify(response)
    whole_body = paths.is_root_key(conf.intercept_object_key)

    if shape == ResponseShape.SUCCESS:
        trace_id = _trace_id(response)
        if whole_body:
            body = response["pciObject"]
        else:
            paths.set(body, conf.intercept_object_key, response["pciObject"])
        logger.info("Tokenization successful", trace_id=trace_id)
        return Continue(body=body, trace_id=trace_id)

    if shape == ResponseShape.BUSINESS_ERROR:
        trace_id = _trace_id(response)
        error_object = dict(response["errorObject"])
        if conf.reject_on_error:
            error_code = error_object.get("errorCode") or ErrorCode.TOKENIZATION_ERROR
            logger.error(
                "Rejecting request due to tokenization error",
                error_code=str(error_code),
                trace_id=trace_id,
            )
            return ShortCircuit(
                status_code=400, body={"errorCode": str(error_code)}, trace_id=trace_id
            )

        logger.info("Sending tokenization error downstream", trace_id=trace_id)
        if whole_body:
            body = {"errorObject": error_object}
        else:
            paths.delete(body, conf.intercept_object_key)
            body["errorObject"] = error_object
        return Continue(body=body, trace_id=trace_id)

    logger.error(
        "UNEXPECTED response format from tokenization service; forwarding original body",
        expected="{pciObject, traceId} or {errorObject, traceId}",
        actual_shape=describe_shape(response),
    )
    return Continue(body=body, trace_id=None)


# ---------------------------------------------------------------------------
# Pre-tokenization failures
# ---------------------------------------------------------------------------


def failure_for_tenant_error(error: TenantExtractionError) -> Failure:
    return Failure(
        code=ErrorCode.TENANT_EXTRACTION_FAILED,
        description="Failed to extract tenant information",
        detail=f"Tenant information not found in {error.location}",
        http_status=400,
    )


def failure_for_service_error(error: TokenizationServiceError) -> Failure:
    if error.status_code == 401:
        return Failure(
            code=ErrorCode.AUTH_TOKEN_ERROR,
            description="Authentication with tokenization service failed",
            detail=str(error),
            http_status=401,
        )
    return Failure(
        code=ErrorCode.SERVICE_UNAVAILABLE,
        description="Tokenization service is currently unavailable",
        detail=str(error),
        http_status=503,
    )


def apply_failure(conf: TokenizationConfig, failure: Failure) -> Continue | ShortCircuit:
    if conf.reject_on_error:
        logger.error(
            "Rejecting request",
            error_code=str(failure.code),
            status_code=failure.http_status,
        )
        return ShortCircuit(status_code=failure.http_status, body={"errorCode": str(failure.code)})

    logger.info("Sending error downstream, reject_on_error=false", error_code=str(failure.code))
    return Continue(
        body={
            "errorObject": {
                "errorCode": str(failure.code),
                "description": failure.description,
                "details": failure.detail,
            }
        }
    )


def emit_contract_violation_metric(cloudwatch_client: Any, *, endpoint: str) -> None:
    """Publish a TokenizationContractViolation count metric.

    Never raises; the request has already been let through.
    """
    try:
        cloudwatch_client.put_metric_data(
            Namespace=METRIC_NAMESPACE,
            MetricData=[
                {
                    "MetricName": CONTRACT_VIOLATION_METRIC,
                    "Value": 1,
                    "Unit": "Count",
                    "Dimensions": [{"Name": "token_service_endpoint", "Value": endpoint}],
                }
            ],
        )
    except Exception:
        logger.exception("Failed to emit TokenizationContractViolation metric", endpoint=endpoint)
