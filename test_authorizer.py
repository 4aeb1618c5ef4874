"""
OAuth2 授权测试
"""
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.core.config import GoogleSettings
from app.core.exceptions import AuthExpiredError, ExchangeError
from app.models.token import AuthorizationToken
from app.services.authorizer import Authorizer

API_URL = "https://www.googleapis.com/drive/v3/about"


def _authorizer(transport=None) -> Authorizer:
    settings = GoogleSettings(client_id="test-client", client_secret="test-secret")
    return Authorizer(settings, timeout=5, transport=transport)


def _expired_token(refresh_token=None) -> AuthorizationToken:
    return AuthorizationToken(
        access_token="old-access",
        refresh_token=refresh_token,
        expiry=datetime.now(timezone.utc) - timedelta(minutes=5),
    )


def test_consent_url_requests_offline_access():
    url = _authorizer().build_consent_url("state-token")
    parsed = urlparse(url)
    query = {k: v[0] for k, v in parse_qs(parsed.query).items()}

    assert parsed.netloc == "accounts.google.com"
    assert query["client_id"] == "test-client"
    assert query["redirect_uri"] == "http://localhost:8080/callback"
    assert query["response_type"] == "code"
    assert query["access_type"] == "offline"
    assert query["state"] == "state-token"
    assert query["scope"] == "https://www.googleapis.com/auth/drive.file"


def test_consent_url_is_deterministic():
    authorizer = _authorizer()
    assert authorizer.build_consent_url("s") == authorizer.build_consent_url("s")


@pytest.mark.asyncio
async def test_exchange_code_success(fake_google):
    token = await _authorizer(fake_google.transport()).exchange_code("good")

    assert token.access_token == "access-1"
    assert token.refresh_token == "refresh-1"
    assert token.scopes == ["https://www.googleapis.com/auth/drive.file"]
    assert not token.is_expired()

    form = parse_qs(fake_google.token_requests[0].content.decode())
    assert form["grant_type"] == ["authorization_code"]
    assert form["client_secret"] == ["test-secret"]


@pytest.mark.asyncio
async def test_exchange_code_rejected(fake_google):
    with pytest.raises(ExchangeError) as exc_info:
        await _authorizer(fake_google.transport()).exchange_code("bad")

    assert exc_info.value.status_code == 400
    assert "invalid_grant" in exc_info.value.message


@pytest.mark.asyncio
async def test_exchange_code_network_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExchangeError):
        await _authorizer(httpx.MockTransport(handler)).exchange_code("good")


@pytest.mark.asyncio
async def test_exchange_code_malformed_response():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>oops</html>"))

    with pytest.raises(ExchangeError):
        await _authorizer(transport).exchange_code("good")


@pytest.mark.asyncio
async def test_authenticated_client_attaches_credential(fake_google):
    token = AuthorizationToken(
        access_token="access-1",
        expiry=datetime.now(timezone.utc) + timedelta(hours=1),
    )

    async with _authorizer(fake_google.transport()).authenticated_client(token) as client:
        first = await client.get(API_URL)
        second = await client.get(API_URL)

    assert first.status_code == 200
    assert second.status_code == 200
    assert fake_google.api_auth == ["Bearer access-1"] * 2
    assert fake_google.token_requests == []


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_persisted(fake_google):
    saved = []
    client = _authorizer(fake_google.transport()).authenticated_client(
        _expired_token(refresh_token="refresh-1"), on_refresh=saved.append
    )

    async with client:
        response = await client.get(API_URL)
        await client.get(API_URL)

    assert response.status_code == 200
    # 只刷新一次
    assert len(fake_google.token_requests) == 1
    assert fake_google.api_auth == ["Bearer access-2"] * 2
    assert len(saved) == 1
    assert saved[0].access_token == "access-2"
    assert saved[0].refresh_token == "refresh-1"


@pytest.mark.asyncio
async def test_expired_token_without_refresh_fails_without_network(fake_google):
    client = _authorizer(fake_google.transport()).authenticated_client(_expired_token())

    async with client:
        with pytest.raises(AuthExpiredError):
            await client.get(API_URL)

    assert fake_google.requests == []


@pytest.mark.asyncio
async def test_rejected_refresh_token_raises_auth_expired(fake_google):
    client = _authorizer(fake_google.transport()).authenticated_client(
        _expired_token(refresh_token="revoked")
    )

    async with client:
        with pytest.raises(AuthExpiredError):
            await client.get(API_URL)

    assert fake_google.remote_requests == []


@pytest.mark.asyncio
async def test_unauthorized_response_triggers_refresh_and_replay(fake_google):
    token = AuthorizationToken(
        access_token="stale-access",
        refresh_token="refresh-1",
        expiry=datetime.now(timezone.utc) + timedelta(hours=1),
    )

    async with _authorizer(fake_google.transport()).authenticated_client(token) as client:
        response = await client.get(API_URL)

    assert response.status_code == 200
    assert fake_google.api_auth == ["Bearer stale-access", "Bearer access-2"]
    assert len(fake_google.token_requests) == 1


def test_refresh_request_has_deadline():
    request = _authorizer().build_refresh_request(_expired_token(refresh_token="refresh-1"))

    assert request.extensions["timeout"] == httpx.Timeout(5).as_dict()


@pytest.mark.asyncio
async def test_every_call_carries_timeout(fake_google):
    seen = []

    def handler(request):
        seen.append((request.url.host, request.extensions.get("timeout")))
        return fake_google.handler(request)

    authorizer = _authorizer(httpx.MockTransport(handler))
    async with authorizer.authenticated_client(_expired_token(refresh_token="refresh-1")) as client:
        await client.get(API_URL)

    assert [host for host, _ in seen] == ["oauth2.googleapis.com", "www.googleapis.com"]
    assert all(timeout == httpx.Timeout(5).as_dict() for _, timeout in seen)
