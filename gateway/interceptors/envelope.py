"""
gateway.interceptors.envelope — Interceptor event parsing and output shapes.

Inbound event (API Gateway style):
    {"rawPath" | "path", "rawQueryString"?, "httpMethod", "headers",
     "body", "isBase64Encoded"?}

Interceptor output, one of:
    {"action": "CONTINUE", "request": {"headers", "body"}, "responseHeaders"}
    {"action": "RESPOND",  "response": {"statusCode", "headers", "body"}}
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from tokenization.models import TRACE_ID_HEADER, InboundRequest

CONTINUE = "CONTINUE"
RESPOND = "RESPOND"


def _request_uri(event: dict[str, Any]) -> str:
    path = event.get("rawPath") or event.get("path") or "/"
    query = event.get("rawQueryString")
    if query:
        return f"{path}?{query}"
    return str(path)


def _http_method(event: dict[str, Any]) -> str:
    method = event.get("httpMethod")
    if not method:
        method = event.get("requestContext", {}).get("http", {}).get("method")
    return str(method or "").upper()


def raw_body(event: dict[str, Any]) -> str | None:
    """Return the request body as text, decoding base64 payloads.

    Raises ValueError if a base64 body cannot be decoded as UTF-8 text.
    """
    body = event.get("body")
    if body is None:
        return None
    if event.get("isBase64Encoded"):
        try:
            return base64.b64decode(body).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise ValueError("Request body is not valid base64 UTF-8") from exc
    return str(body)


def inbound_request(event: dict[str, Any]) -> InboundRequest:
    headers = event.get("headers") or {}
    return InboundRequest(
        uri=_request_uri(event),
        method=_http_method(event),
        headers={str(k): str(v) for k, v in headers.items()},
        body=raw_body(event),
    )


def passthrough(event: dict[str, Any]) -> dict[str, Any]:
    """Forward the request exactly as received."""
    return {
        "action": CONTINUE,
        "request": {
            "headers": dict(event.get("headers") or {}),
            "body": event.get("body"),
            "isBase64Encoded": bool(event.get("isBase64Encoded")),
        },
        "responseHeaders": {},
    }


def continue_request(
    event: dict[str, Any], body: Any, trace_id: str | None = None
) -> dict[str, Any]:
    """Forward the request downstream with a rewritten JSON body."""
    headers = dict(event.get("headers") or {})
    response_headers: dict[str, str] = {}
    if trace_id:
        headers[TRACE_ID_HEADER] = trace_id
        response_headers[TRACE_ID_HEADER] = trace_id
    return {
        "action": CONTINUE,
        "request": {"headers": headers, "body": json.dumps(body)},
        "responseHeaders": response_headers,
    }


def respond(status_code: int, body: dict[str, Any], trace_id: str | None = None) -> dict[str, Any]:
    """Short-circuit: answer the caller directly, the backend is never called."""
    headers = {"Content-Type": "application/json"}
    if trace_id:
        headers[TRACE_ID_HEADER] = trace_id
    return {
        "action": RESPOND,
        "response": {"statusCode": status_code, "headers": headers, "body": json.dumps(body)},
    }
