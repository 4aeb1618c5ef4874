"""
Token 存储测试
"""
import json
from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import TokenDecodeError, TokenNotFoundError
from app.models.token import AuthorizationToken
from app.services.token_store import TokenStore


def _token(**overrides) -> AuthorizationToken:
    data = dict(
        access_token="ya29.access",
        token_type="Bearer",
        refresh_token="1//refresh",
        expiry=datetime(2030, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc),
        scopes=["https://www.googleapis.com/auth/drive.file"],
    )
    data.update(overrides)
    return AuthorizationToken(**data)


def test_save_then_load_round_trip(tmp_path):
    store = TokenStore(tmp_path / "token.json")
    token = _token()

    store.save(token)

    assert store.load() == token


def test_round_trip_without_refresh_token_or_expiry(tmp_path):
    store = TokenStore(tmp_path / "token.json")
    token = _token(refresh_token=None, expiry=None, scopes=[])

    store.save(token)

    assert store.load() == token


def test_save_writes_json_fields(tmp_path):
    path = tmp_path / "nested" / "token.json"
    TokenStore(path).save(_token())

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["access_token"] == "ya29.access"
    assert data["refresh_token"] == "1//refresh"
    assert data["expiry"] == "2030-01-02T03:04:05.678901+00:00"
    assert data["scope"] == "https://www.googleapis.com/auth/drive.file"


def test_save_overwrites_previous_token_without_leftovers(tmp_path):
    store = TokenStore(tmp_path / "token.json")
    store.save(_token(access_token="first"))
    store.save(_token(access_token="second"))

    assert store.load().access_token == "second"
    assert [p.name for p in tmp_path.iterdir()] == ["token.json"]


def test_load_missing_file(tmp_path):
    store = TokenStore(tmp_path / "token.json")

    assert not store.exists()
    with pytest.raises(TokenNotFoundError) as exc_info:
        store.load()
    assert exc_info.value.status_code == 401
    assert exc_info.value.kind == "token_not_found"


@pytest.mark.parametrize("content", [
    "not json at all",
    "[]",
    '{"refresh_token": "x"}',
    '{"access_token": "a", "expiry": "yesterday"}',
    '{"access_token": "a", "scope": 42}',
])
def test_load_malformed_file(tmp_path, content):
    path = tmp_path / "token.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(TokenDecodeError) as exc_info:
        TokenStore(path).load()
    assert exc_info.value.kind == "token_invalid"


def test_clear(tmp_path):
    store = TokenStore(tmp_path / "token.json")
    store.save(_token())

    assert store.clear() is True
    assert not store.exists()
    assert store.clear() is False


def test_token_expiry_leeway():
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)

    assert not _token(expiry=now + timedelta(minutes=5)).is_expired(now)
    assert _token(expiry=now + timedelta(seconds=5)).is_expired(now)
    assert _token(expiry=now - timedelta(seconds=1)).is_expired(now)
    assert not _token(expiry=None).is_expired(now)


def test_token_from_refresh_response_keeps_refresh_token():
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    previous = _token()

    token = AuthorizationToken.from_token_response(
        {"access_token": "new", "expires_in": 3600, "token_type": "Bearer"},
        now=now,
        previous=previous,
    )

    assert token.access_token == "new"
    assert token.refresh_token == previous.refresh_token
    assert token.scopes == previous.scopes
    assert token.expiry == now + timedelta(seconds=3600)


def test_empty_refresh_token_round_trip(tmp_path):
    store = TokenStore(tmp_path / "token.json")
    token = _token(refresh_token="")

    assert token.refresh_token is None
    assert not token.can_refresh

    store.save(token)
    assert store.load() == token
