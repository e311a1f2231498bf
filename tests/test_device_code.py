"""Device code issuance, polling and refresh grants against a fake transport."""
import threading

import pytest
import requests

from xrmpub.auth import device_code as dc
from xrmpub.errors import (
    AuthCancelledError,
    AuthDeniedError,
    AuthTimeoutError,
    ChallengeFailedError,
    RefreshFailedError,
)
from xrmpub.models import DeviceChallenge

pytestmark = pytest.mark.unit

ORG = "https://dev.crm.dynamics.com"

CHALLENGE = DeviceChallenge(
    device_code="dev-code",
    user_code="ABCD-EFGH",
    verification_uri="https://microsoft.com/devicelogin",
    interval=5,
    expires_in=900,
    message="Go sign in",
)


class Sleeper:
    """Records sleeps and advances a shared fake clock."""

    def __init__(self, clock):
        self.clock = clock
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)
        self.clock.advance(seconds)


def test_scope_requests_offline_access():
    assert dc.scope_for(ORG + "/") == ORG + "/.default offline_access"


def test_begin_device_auth(fake_session_factory, make_response):
    session = fake_session_factory([
        make_response(200, {
            "device_code": "dev-code",
            "user_code": "ABCD-EFGH",
            "verification_uri": "https://microsoft.com/devicelogin",
            "interval": 5,
            "expires_in": 900,
            "message": "Go sign in",
        })
    ])
    challenge = dc.begin_device_auth(ORG, session=session)

    assert challenge == CHALLENGE
    call = session.calls[0]
    assert call["url"].endswith("/devicecode")
    assert call["data"]["scope"] == ORG + "/.default offline_access"
    assert call["data"]["client_id"] == dc.CLIENT_ID


@pytest.mark.parametrize(
    "response",
    [
        requests.ConnectionError("offline"),
        "http_400",
        "not_json",
        "no_code",
    ],
)
def test_begin_device_auth_failures(fake_session_factory, make_response, response):
    if response == "http_400":
        response = make_response(400, {"error": "invalid_client"})
    elif response == "not_json":
        response = make_response(200, None, text="<html>")
    elif response == "no_code":
        response = make_response(200, {"user_code": "X"})
    session = fake_session_factory([response])
    with pytest.raises(ChallengeFailedError):
        dc.begin_device_auth(ORG, session=session)


def test_poll_pending_slow_down_then_success(fake_session_factory, make_response, fake_clock):
    sleeper = Sleeper(fake_clock)
    session = fake_session_factory([
        make_response(400, {"error": "authorization_pending"}),
        make_response(400, {"error": "slow_down"}),
        make_response(200, {"access_token": "at", "refresh_token": "rt", "expires_in": 3600}),
    ])

    token = dc.poll_for_token(CHALLENGE, ORG, session=session, sleep=sleeper, clock=fake_clock)

    assert token.access_token == "at"
    assert token.refresh_token == "rt"
    assert not token.is_expired()
    assert sleeper.calls == [5, 5, 10]
    assert session.calls[0]["data"]["grant_type"] == dc.DEVICE_CODE_GRANT
    assert session.calls[0]["data"]["device_code"] == "dev-code"


def test_poll_denied(fake_session_factory, make_response, fake_clock):
    session = fake_session_factory([
        make_response(400, {"error": "authorization_declined", "error_description": "nope"}),
    ])
    with pytest.raises(AuthDeniedError) as excinfo:
        dc.poll_for_token(CHALLENGE, ORG, session=session, sleep=Sleeper(fake_clock), clock=fake_clock)
    assert excinfo.value.code == "authorization_declined"
    assert excinfo.value.description == "nope"


def test_poll_survives_transport_errors(fake_session_factory, make_response, fake_clock):
    session = fake_session_factory([
        requests.ConnectionError("blip"),
        make_response(502, None, text="bad gateway"),
        make_response(200, {"access_token": "at", "expires_in": 3600}),
    ])
    token = dc.poll_for_token(CHALLENGE, ORG, session=session, sleep=Sleeper(fake_clock), clock=fake_clock)
    assert token.access_token == "at"
    assert len(session.calls) == 3


def test_poll_times_out(fake_session_factory, make_response, fake_clock):
    session = fake_session_factory([make_response(400, {"error": "authorization_pending"})] * 100)
    with pytest.raises(AuthTimeoutError):
        dc.poll_for_token(
            CHALLENGE, ORG, session=session, sleep=Sleeper(fake_clock), clock=fake_clock, timeout=30
        )
    # 30s budget at a 5s interval
    assert len(session.calls) <= 6


def test_poll_cancelled(fake_session_factory, make_response, fake_clock):
    cancel = threading.Event()
    session = fake_session_factory([make_response(400, {"error": "authorization_pending"})] * 10)

    def sleep(seconds):
        fake_clock.advance(seconds)
        if len(session.calls) == 2:
            cancel.set()

    with pytest.raises(AuthCancelledError):
        dc.poll_for_token(CHALLENGE, ORG, session=session, cancel=cancel, sleep=sleep, clock=fake_clock)
    assert len(session.calls) == 2


def test_refresh_with_token(fake_session_factory, make_response):
    session = fake_session_factory([
        make_response(200, {"access_token": "new-at", "refresh_token": "new-rt", "expires_in": 3600}),
    ])
    token = dc.refresh_with_token("old-rt", ORG, session=session)
    assert (token.access_token, token.refresh_token) == ("new-at", "new-rt")
    assert session.calls[0]["data"]["grant_type"] == "refresh_token"
    assert session.calls[0]["data"]["refresh_token"] == "old-rt"


def test_refresh_keeps_refresh_token_when_not_rotated(fake_session_factory, make_response):
    session = fake_session_factory([make_response(200, {"access_token": "new-at", "expires_in": 60})])
    assert dc.refresh_with_token("old-rt", ORG, session=session).refresh_token == "old-rt"


@pytest.mark.parametrize(
    "response",
    [
        requests.Timeout("slow"),
        "error_body",
        "no_access_token",
    ],
)
def test_refresh_failures(fake_session_factory, make_response, response):
    if response == "error_body":
        response = make_response(400, {"error": "invalid_grant", "error_description": "expired"})
    elif response == "no_access_token":
        response = make_response(200, {"token_type": "Bearer"})
    session = fake_session_factory([response])
    with pytest.raises(RefreshFailedError):
        dc.refresh_with_token("rt", ORG, session=session)


def test_refresh_without_refresh_token_makes_no_request(fake_session_factory):
    session = fake_session_factory([])
    with pytest.raises(RefreshFailedError):
        dc.refresh_with_token("", ORG, session=session)
    assert session.calls == []
