"""
tests/test_credentials.py — CredentialCache behaviour with a fake clock and transport.

Coverage assertions:
  - Same realm within the expiry window: exactly one outbound fetch.
  - After expires_at: a new fetch.
  - Different realm: a new fetch that replaces the single cache slot.
  - IAM failures leave the cache untouched and carry the HTTP status.
"""

from __future__ import annotations

import dataclasses
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests
from tokenization.credentials import CredentialCache, token_endpoint
from tokenization.exceptions import CredentialError
from tokenization.models import TokenizationConfig


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _response(status_code: int = 200, payload: Any = None, *, bad_json: bool = False) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    if bad_json:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def conf() -> TokenizationConfig:
    return TokenizationConfig.from_dict(
        {
            "intercept_path_pattern_list": ["^/v1/payments"],
            "intercept_object_key": "card",
            "token_service_endpoint": "http://tokenizer.local/tokenize",
            "has_tenant": True,
            "tenant_information_location": "headers",
            "tenant_information_reference": "x-tenant-id",
            "is_token_gateway_url": True,
            "iam_service_url": "http://iam.local/",
            "token_service_auth_client_id": "pci-gateway",
            "token_service_auth_secret": "local-secret",  # pragma: allowlist secret
            "token_service_timeout": 2500,
        }
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock()
    session.post.return_value = _response(payload={"access_token": "tok-1", "expires_in": 300})
    return session


@pytest.fixture
def cache(session, clock) -> CredentialCache:
    return CredentialCache(session=session, clock=clock)


def test_token_endpoint_strips_trailing_slash():
    assert (
        token_endpoint("http://iam.local/", "core-apps")
        == "http://iam.local/realms/core-apps/protocol/openid-connect/token"
    )


def test_fetch_request_shape(cache, session, conf):
    assert cache.get_token(conf) == "tok-1"

    session.post.assert_called_once()
    args, kwargs = session.post.call_args
    assert args[0] == "http://iam.local/realms/core-apps/protocol/openid-connect/token"
    assert kwargs["data"] == {
        "client_id": "pci-gateway",
        "client_secret": "local-secret",  # pragma: allowlist secret
        "grant_type": "client_credentials",
        "scope": "openid",
    }
    assert kwargs["timeout"] == 2.5


def test_second_call_in_window_uses_cache(cache, session, conf, clock):
    cache.get_token(conf)
    clock.now += 200
    assert cache.get_token(conf) == "tok-1"
    assert session.post.call_count == 1


def test_expiry_applies_safety_margin(cache, conf, clock):
    cache.get_token(conf)
    assert cache.entry is not None
    assert cache.entry.expires_at == clock.now + 300 - 60


def test_call_after_expiry_refetches(cache, session, conf, clock):
    cache.get_token(conf)
    session.post.return_value = _response(payload={"access_token": "tok-2", "expires_in": 300})
    clock.now += 240  # exactly expires_at
    assert cache.get_token(conf) == "tok-2"
    assert session.post.call_count == 2


def test_realm_change_refetches_and_replaces(cache, session, conf):
    cache.get_token(conf)
    other = dataclasses.replace(conf, token_service_auth_realm="partner-apps")
    session.post.return_value = _response(payload={"access_token": "tok-partner"})

    assert cache.get_token(other) == "tok-partner"
    assert session.post.call_count == 2
    assert "/realms/partner-apps/" in session.post.call_args.args[0]
    assert cache.entry.realm == "partner-apps"

    # Single slot: going back to the first realm fetches again
    session.post.return_value = _response(payload={"access_token": "tok-3"})
    assert cache.get_token(conf) == "tok-3"
    assert session.post.call_count == 3


def test_default_expires_in(cache, session, conf, clock):
    session.post.return_value = _response(payload={"access_token": "tok-1"})
    cache.get_token(conf)
    assert cache.entry.expires_at == clock.now + 900 - 60


def test_network_error(cache, session, conf):
    session.post.side_effect = requests.exceptions.ConnectTimeout("timed out")
    with pytest.raises(CredentialError, match="Network error") as exc_info:
        cache.get_token(conf)
    assert exc_info.value.status_code == 503
    assert cache.entry is None


@pytest.mark.parametrize("status_code", [401, 403, 500])
def test_non_200_status(cache, session, conf, status_code):
    session.post.return_value = _response(status_code, {"error": "unauthorized_client"})
    with pytest.raises(CredentialError, match=f"status: {status_code}") as exc_info:
        cache.get_token(conf)
    assert exc_info.value.status_code == status_code
    assert cache.entry is None


def test_failure_keeps_previous_entry(cache, session, conf, clock):
    cache.get_token(conf)
    previous = cache.entry
    clock.now += 10_000
    session.post.return_value = _response(500)
    with pytest.raises(CredentialError):
        cache.get_token(conf)
    assert cache.entry is previous


def test_missing_access_token(cache, session, conf):
    session.post.return_value = _response(payload={"token_type": "Bearer"})
    with pytest.raises(CredentialError, match="did not return access token") as exc_info:
        cache.get_token(conf)
    assert exc_info.value.status_code == 401


def test_invalid_json(cache, session, conf):
    session.post.return_value = _response(bad_json=True)
    with pytest.raises(CredentialError, match="Invalid JSON") as exc_info:
        cache.get_token(conf)
    assert exc_info.value.status_code == 401


def test_invalidate(cache, session, conf):
    cache.get_token(conf)
    cache.invalidate()
    cache.get_token(conf)
    assert session.post.call_count == 2
