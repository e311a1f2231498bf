"""Silent refresh and the per-environment token holder."""
from datetime import datetime, timedelta, timezone

import pytest

from xrmpub.auth import TokenManager, TokenStore, refresh_silently
from xrmpub.auth import manager as manager_mod
from xrmpub.errors import RefreshFailedError
from xrmpub.models import Environment, Token

pytestmark = pytest.mark.unit

ENV = Environment("Dev", "https://dev.crm.dynamics.com")


def _token(access, refresh="rt"):
    return Token(access, refresh, datetime.now(timezone.utc) + timedelta(hours=1))


def test_refresh_silently_requires_cached_token(tmp_path):
    with pytest.raises(RefreshFailedError):
        refresh_silently(ENV, TokenStore(tmp_path))


def test_refresh_silently_saves_new_token(tmp_path, monkeypatch):
    store = TokenStore(tmp_path)
    store.save("Dev", _token("old", "cached-rt"))
    seen = {}

    def fake_refresh(refresh_token, org_url, session=None):
        seen["args"] = (refresh_token, org_url)
        return _token("new", "rotated")

    monkeypatch.setattr(manager_mod, "refresh_with_token", fake_refresh)
    token = refresh_silently(ENV, store)

    assert seen["args"] == ("cached-rt", ENV.url)
    assert token.access_token == "new"
    assert store.load("Dev").refresh_token == "rotated"


def test_manager_refresh_replaces_token(tmp_path, monkeypatch):
    store = TokenStore(tmp_path)
    store.save("Dev", _token("a1"))
    monkeypatch.setattr(manager_mod, "refresh_with_token", lambda *a, **k: _token("a2"))

    manager = TokenManager(ENV, _token("a1"), store)
    assert manager.refresh("a1") == "a2"
    assert manager.access_token == "a2"


def test_manager_skips_grant_when_token_already_replaced(tmp_path, monkeypatch):
    calls = []
    monkeypatch.setattr(
        manager_mod, "refresh_with_token", lambda *a, **k: calls.append(a) or _token("a3")
    )
    manager = TokenManager(ENV, _token("a2"), TokenStore(tmp_path))

    assert manager.refresh("a1") == "a2"
    assert calls == []


def test_manager_refresh_failure_propagates(tmp_path):
    manager = TokenManager(ENV, _token("a1"), TokenStore(tmp_path))
    with pytest.raises(RefreshFailedError):
        manager.refresh("a1")
    assert manager.access_token == "a1"
