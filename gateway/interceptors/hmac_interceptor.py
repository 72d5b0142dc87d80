"""
gateway.interceptors.hmac_interceptor — HMAC request-signature REQUEST interceptor.

Runs independently of the PCI tokenization interceptor, ahead of it in the
gateway pipeline.

  - X-Hmac-Signature must carry the hex HMAC-SHA256 of the raw body bytes,
    keyed with HMAC_SECRET_KEY; "hmac-sha256-hex=" and "sha256=" prefixes
    are accepted
  - an empty or absent body is signed as the empty string
  - comparison is constant-time

Responses: 401 for a missing or mismatched signature, 400 for an unreadable
body, 500 when the secret is not configured. HMAC_ENABLED=false turns the
check off.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os
from typing import Any

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from gateway.interceptors import envelope

logger = Logger(service="hmac-interceptor")

SIGNATURE_HEADER = "X-Hmac-Signature"
_SIGNATURE_PREFIXES = ("hmac-sha256-hex=", "sha256=")


def calculate_signature(secret_key: str, body: bytes | str) -> str:
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret_key.encode("utf-8"), body, hashlib.sha256).hexdigest()


def strip_prefix(signature: str) -> str:
    for prefix in _SIGNATURE_PREFIXES:
        if signature.startswith(prefix):
            return signature[len(prefix) :]
    return signature


def _enabled() -> bool:
    return os.environ.get("HMAC_ENABLED", "true").strip().lower() not in {"false", "0", "no"}


def body_bytes(event: dict[str, Any]) -> bytes:
    """Raw request body as signed by the caller; base64 bodies are decoded to bytes.

    Raises ValueError if a base64 body cannot be decoded.
    """
    body = event.get("body")
    if body is None:
        return b""
    if event.get("isBase64Encoded"):
        try:
            return base64.b64decode(body)
        except binascii.Error as exc:
            raise ValueError("Request body is not valid base64") from exc
    return str(body).encode("utf-8")


def _signature_header(event: dict[str, Any]) -> str | None:
    wanted = SIGNATURE_HEADER.lower()
    for name, value in (event.get("headers") or {}).items():
        if str(name).lower() == wanted:
            return str(value)
    return None


def verify(event: dict[str, Any], secret_key: str) -> dict[str, Any] | None:
    """Return a RESPOND envelope on failure, None when the signature is valid."""
    try:
        body = body_bytes(event)
    except ValueError:
        logger.error("Unable to read body")
        return envelope.respond(400, {"message": "Unable to read request body"})

    provided = _signature_header(event)
    if not provided:
        logger.warning("Missing X-Hmac-Signature header")
        return envelope.respond(401, {"message": "Missing HMAC signature header"})

    expected = calculate_signature(secret_key, body)
    provided_digest = strip_prefix(provided.strip()).encode("utf-8")
    if not hmac.compare_digest(provided_digest, expected.encode("utf-8")):
        logger.warning("Signature mismatch", body_length=len(body))
        return envelope.respond(401, {"message": "Invalid HMAC signature"})
    return None


@logger.inject_lambda_context(clear_state=True)
def handler(event: dict[str, Any], context: LambdaContext) -> dict[str, Any]:
    """Gateway REQUEST interceptor entry point."""
    if not _enabled():
        logger.warning("HMAC signature check is disabled")
        return envelope.passthrough(event)

    secret_key = os.environ.get("HMAC_SECRET_KEY")
    if not secret_key:
        logger.error("HMAC_SECRET_KEY not set")
        return envelope.respond(500, {"message": "Internal signature error"})

    rejection = verify(event, secret_key)
    if rejection is not None:
        return rejection
    return envelope.passthrough(event)
