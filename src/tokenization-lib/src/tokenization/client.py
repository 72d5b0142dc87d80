"""
tokenization.client — Outbound call to the tokenization service.

POSTs {pciObject, tenantObject} as JSON and returns the decoded reply.
When the endpoint sits behind the token gateway (is_token_gateway_url) a
bearer token from the CredentialCache is attached.

No automatic retries: token_service_timeout is a hard bound, a timeout is
reported like any other transport failure.
"""

from __future__ import annotations

import json
from typing import Any

import requests
from aws_lambda_powertools import Logger

from tokenization.credentials import CredentialCache
from tokenization.exceptions import CredentialError, TokenizationServiceError
from tokenization.models import TenantObject, TokenizationConfig

logger = Logger(service="tokenization-lib")

_ERROR_MESSAGE_FIELDS = ("error_msg", "error", "message")


def _error_detail(body: str) -> str | None:
    """Best-effort message from a JSON error body."""
    if not body:
        return None
    try:
        decoded = json.loads(body)
    except json.JSONDecodeError:
        return None
    if not isinstance(decoded, dict):
        return None
    for key in _ERROR_MESSAGE_FIELDS:
        if decoded.get(key):
            return str(decoded[key])
    return None


class TokenizationClient:
    def __init__(
        self,
        credentials: CredentialCache,
        *,
        session: requests.Session | None = None,
    ) -> None:
        self._credentials = credentials
        self._session = session or requests.Session()

    def call(
        self, conf: TokenizationConfig, pci_object: Any, tenant_object: TenantObject
    ) -> Any:
        """Exchange pci_object for a token.

        Returns the decoded JSON reply; its shape is checked by the policy
        engine. Raises TokenizationServiceError.
        """
        headers = {"Content-Type": "application/json"}

        if conf.is_token_gateway_url:
            try:
                access_token = self._credentials.get_token(conf)
            except CredentialError as exc:
                logger.error("OAuth2 authentication failed", status_code=exc.status_code)
                raise TokenizationServiceError(
                    f"Authentication failed: {exc}", status_code=exc.status_code
                ) from exc
            headers["Authorization"] = f"Bearer {access_token}"

        payload = {"pciObject": pci_object, "tenantObject": tenant_object.to_dict()}

        try:
            response = self._session.post(
                conf.token_service_endpoint,
                data=json.dumps(payload),
                headers=headers,
                timeout=conf.timeout_seconds,
            )
        except requests.exceptions.RequestException as exc:
            logger.error("Failed to call tokenization service", error=type(exc).__name__)
            raise TokenizationServiceError("Network error calling tokenization service") from exc

        if response.status_code != 200:
            logger.error("Tokenization service HTTP error", status_code=response.status_code)
            message = f"Tokenization service returned HTTP {response.status_code}"
            detail = _error_detail(response.text)
            if detail:
                message = f"{message}: {detail}"
            raise TokenizationServiceError(message, status_code=response.status_code)

        if not response.text:
            logger.error("Tokenization service returned empty response")
            raise TokenizationServiceError("Empty response from tokenization service")

        try:
            return json.loads(response.text)
        except json.JSONDecodeError as exc:
            logger.error("Failed to decode tokenization response")
            raise TokenizationServiceError(
                "Invalid JSON response from tokenization service"
            ) from exc
