"""Credential store and token model behaviour."""
import os
import stat
from datetime import datetime, timedelta, timezone

import pytest

from xrmpub.auth import TokenStore
from xrmpub.models import Token

pytestmark = pytest.mark.unit


def _token(minutes: int, access: str = "at", refresh: str = "rt") -> Token:
    return Token(access, refresh, datetime.now(timezone.utc) + timedelta(minutes=minutes))


def test_token_expiry_uses_five_minute_skew():
    now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert Token("a", "r", now + timedelta(minutes=10)).is_expired(now) is False
    assert Token("a", "r", now + timedelta(minutes=4)).is_expired(now) is True
    assert Token("a", "r", now - timedelta(minutes=1)).is_expired(now) is True


def test_token_round_trips_through_dict():
    token = _token(60)
    restored = Token.from_dict(token.to_dict())
    assert restored == token


def test_unparseable_expiry_is_expired():
    token = Token.from_dict({"access_token": "a", "refresh_token": "r", "expires_at": "soon"})
    assert token.is_expired()


def test_save_and_load(tmp_path):
    store = TokenStore(tmp_path)
    token = _token(60)
    store.save("Dev", token)

    assert store.load("Dev") == token
    assert store.load_valid("Dev") == token
    assert store.load("Other") is None


def test_token_file_is_owner_only(tmp_path):
    store = TokenStore(tmp_path / "tokens")
    store.save("Dev", _token(60))
    path = store.path_for("Dev")
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    assert stat.S_IMODE(os.stat(path.parent).st_mode) == 0o700


def test_environment_names_are_sanitized(tmp_path):
    store = TokenStore(tmp_path)
    assert store.path_for("a/b\\c").name == "token-a_b_c.json"


def test_load_valid_ignores_expired(tmp_path):
    store = TokenStore(tmp_path)
    store.save("Dev", _token(2))
    assert store.load("Dev") is not None
    assert store.load_valid("Dev") is None


def test_unreadable_token_file_is_ignored(tmp_path):
    store = TokenStore(tmp_path)
    store.path_for("Dev").write_text("{broken", encoding="utf-8")
    assert store.load("Dev") is None


def test_delete(tmp_path):
    store = TokenStore(tmp_path)
    store.save("Dev", _token(60))
    assert store.delete("Dev") is True
    assert store.delete("Dev") is False
    assert store.load("Dev") is None


def test_default_directory_follows_env(_isolated_config_dir):
    assert TokenStore().directory == _isolated_config_dir
