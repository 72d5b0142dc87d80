"""
tokenization.credentials — OAuth2 client-credentials token cache.

Holds ONE access token at a time, keyed by realm. A cached token is reused
until its expiry (provider expires_in minus a 60s safety margin); a request
for a different realm evicts it.

One CredentialCache is created per worker (Lambda execution environment) and
reused across warm invocations. Workers never share tokens, so a refresh may
happen once per worker; the token is short-lived and this is accepted.
No locking: a worker handles one request at a time.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import requests
from aws_lambda_powertools import Logger

from tokenization.exceptions import CredentialError
from tokenization.models import (
    DEFAULT_TOKEN_EXPIRES_IN_SECONDS,
    TOKEN_EXPIRY_MARGIN_SECONDS,
    CachedToken,
    TokenizationConfig,
)

logger = Logger(service="tokenization-lib")


def token_endpoint(iam_service_url: str, realm: str) -> str:
    return f"{iam_service_url.rstrip('/')}/realms/{realm}/protocol/openid-connect/token"


def _expires_in(payload: dict[str, Any]) -> float:
    value = payload.get("expires_in")
    if isinstance(value, bool) or not isinstance(value, int | float):
        return DEFAULT_TOKEN_EXPIRES_IN_SECONDS
    return value


class CredentialCache:
    """Single-slot, realm-keyed OAuth2 access token cache.

    session and clock are injectable so tests can drive expiry and the
    identity provider without global state.
    """

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session = session or requests.Session()
        self._clock = clock
        self._entry: CachedToken | None = None

    @property
    def entry(self) -> CachedToken | None:
        return self._entry

    def invalidate(self) -> None:
        self._entry = None

    def get_token(self, conf: TokenizationConfig) -> str:
        """Return a valid access token for conf's realm, fetching one if needed.

        Raises CredentialError; the cache is left untouched on failure.
        """
        realm = conf.token_service_auth_realm
        if self._entry is not None and self._entry.is_valid(realm, self._clock()):
            logger.debug("Using cached OAuth2 token", realm=realm)
            return self._entry.token

        logger.info("Requesting new OAuth2 token", realm=realm)
        url = token_endpoint(conf.iam_service_url or "", realm)
        form = {
            "client_id": conf.token_service_auth_client_id,
            "client_secret": conf.token_service_auth_secret,
            "grant_type": "client_credentials",
            "scope": conf.token_service_scope,
        }

        try:
            response = self._session.post(url, data=form, timeout=conf.timeout_seconds)
        except requests.exceptions.RequestException as exc:
            logger.error("Failed to call IAM service", realm=realm, error=str(exc))
            raise CredentialError("Network error calling IAM service", status_code=503) from exc

        if response.status_code != 200:
            logger.error("IAM authentication failed", realm=realm, status_code=response.status_code)
            raise CredentialError(
                f"IAM service authentication failed with status: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("Failed to decode IAM response", realm=realm)
            raise CredentialError(
                "Invalid JSON response from IAM service", status_code=401
            ) from exc

        if not isinstance(payload, dict) or not payload.get("access_token"):
            logger.error("No access token in IAM response", realm=realm)
            raise CredentialError("IAM service did not return access token", status_code=401)

        now = self._clock()
        self._entry = CachedToken(
            token=str(payload["access_token"]),
            expires_at=now + _expires_in(payload) - TOKEN_EXPIRY_MARGIN_SECONDS,
            realm=realm,
        )
        logger.info(
            "Obtained and cached OAuth2 token", realm=realm, expires_at=self._entry.expires_at
        )
        return self._entry.token
