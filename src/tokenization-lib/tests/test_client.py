from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
import requests
from tokenization.client import TokenizationClient
from tokenization.exceptions import CredentialError, TokenizationServiceError
from tokenization.models import TenantObject, TenantType, TokenizationConfig

TENANT = TenantObject(type=TenantType.STRING, value="acme")
PCI = {"number": "4111111111111111"}


def _conf(**overrides) -> TokenizationConfig:
    raw = dict(
        intercept_path_pattern_list=["^/v1/payments"],
        intercept_object_key="card",
        token_service_endpoint="http://tokenizer.local/tokenize",
        has_tenant=True,
        tenant_information_location="headers",
        tenant_information_reference="x-tenant-id",
    )
    raw.update(overrides)
    return TokenizationConfig.from_dict(raw)


def _gateway_conf() -> TokenizationConfig:
    return _conf(
        is_token_gateway_url=True,
        iam_service_url="http://iam.local",
        token_service_auth_client_id="pci-gateway",
        token_service_auth_secret="local-secret",  # pragma: allowlist secret
    )


def _response(status_code: int = 200, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    return response


@pytest.fixture
def credentials() -> MagicMock:
    credentials = MagicMock()
    credentials.get_token.return_value = "access-123"
    return credentials


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock()
    session.post.return_value = _response(
        text=json.dumps({"pciObject": {"token": "tok_abc"}, "traceId": "t-1"})
    )
    return session


@pytest.fixture
def client(credentials, session) -> TokenizationClient:
    return TokenizationClient(credentials, session=session)


def test_success_returns_decoded_reply(client, session, credentials):
    reply = client.call(_conf(token_service_timeout=1500), PCI, TENANT)

    assert reply == {"pciObject": {"token": "tok_abc"}, "traceId": "t-1"}
    args, kwargs = session.post.call_args
    assert args[0] == "http://tokenizer.local/tokenize"
    assert json.loads(kwargs["data"]) == {
        "pciObject": PCI,
        "tenantObject": {"type": "string", "value": "acme"},
    }
    assert kwargs["headers"] == {"Content-Type": "application/json"}
    assert kwargs["timeout"] == 1.5
    credentials.get_token.assert_not_called()


def test_gateway_url_attaches_bearer_token(client, session, credentials):
    client.call(_gateway_conf(), PCI, TENANT)
    credentials.get_token.assert_called_once()
    assert session.post.call_args.kwargs["headers"]["Authorization"] == "Bearer access-123"


def test_credential_failure_carries_status(client, session, credentials):
    credentials.get_token.side_effect = CredentialError(
        "IAM service authentication failed with status: 401", status_code=401
    )
    with pytest.raises(TokenizationServiceError, match="Authentication failed") as exc_info:
        client.call(_gateway_conf(), PCI, TENANT)
    assert exc_info.value.status_code == 401
    session.post.assert_not_called()


@pytest.mark.parametrize(
    "exc",
    [
        requests.exceptions.ReadTimeout("slow"),
        requests.exceptions.ConnectionError("refused"),
    ],
)
def test_transport_failure_has_no_status(client, session, exc):
    session.post.side_effect = exc
    with pytest.raises(TokenizationServiceError, match="Network error") as exc_info:
        client.call(_conf(), PCI, TENANT)
    assert exc_info.value.status_code is None


@pytest.mark.parametrize(
    "body, expected",
    [
        ('{"error_msg": "vault down", "error": "x"}', "HTTP 500: vault down"),
        ('{"error": "bad gateway", "message": "y"}', "HTTP 500: bad gateway"),
        ('{"message": "try later"}', "HTTP 500: try later"),
        ("<html>oops</html>", "HTTP 500"),
        ("", "HTTP 500"),
    ],
)
def test_http_error_message(client, session, body, expected):
    session.post.return_value = _response(500, body)
    with pytest.raises(TokenizationServiceError) as exc_info:
        client.call(_conf(), PCI, TENANT)
    assert str(exc_info.value).endswith(expected)
    assert exc_info.value.status_code == 500


def test_http_401_from_service(client, session):
    session.post.return_value = _response(401, '{"error": "invalid token"}')
    with pytest.raises(TokenizationServiceError) as exc_info:
        client.call(_conf(), PCI, TENANT)
    assert exc_info.value.status_code == 401


def test_empty_body(client, session):
    session.post.return_value = _response(200, "")
    with pytest.raises(TokenizationServiceError, match="Empty response") as exc_info:
        client.call(_conf(), PCI, TENANT)
    assert exc_info.value.status_code is None


def test_invalid_json(client, session):
    session.post.return_value = _response(200, "not json")
    with pytest.raises(TokenizationServiceError, match="Invalid JSON"):
        client.call(_conf(), PCI, TENANT)


def test_unexpected_shape_is_returned_for_policy(client, session):
    session.post.return_value = _response(200, '{"unexpected": true}')
    assert client.call(_conf(), PCI, TENANT) == {"unexpected": True}
