"""Remote client request primitive: headers, error mapping and the single refresh+retry."""
from urllib.parse import unquote

import pytest
import requests

from xrmpub.client import RemoteClient
from xrmpub.errors import RefreshFailedError, RemoteAPIError, UnauthorizedError
from xrmpub.webresources import WebResourceType

pytestmark = pytest.mark.unit

ORG = "https://dev.crm.dynamics.com"


class FakeTokens:
    def __init__(self, access_token="token-1", refreshed="token-2", fail=False):
        self.access_token = access_token
        self._refreshed = refreshed
        self._fail = fail
        self.refresh_calls = 0

    def refresh(self, stale_access_token=None):
        self.refresh_calls += 1
        if self._fail:
            raise RefreshFailedError("refresh token expired")
        self.access_token = self._refreshed
        return self._refreshed


def _client(session, tokens=None):
    return RemoteClient(ORG, tokens or FakeTokens(), session=session, timeout=7)


def test_request_attaches_auth_and_odata_headers(fake_session_factory, make_response):
    session = fake_session_factory([make_response(204, None)])
    _client(session).update_web_resource_content("R1", "YQ==")

    call = session.calls[0]
    assert call["method"] == "PATCH"
    assert call["url"] == ORG + "/api/data/v9.2/webresourceset(R1)"
    assert call["headers"]["Authorization"] == "Bearer token-1"
    assert call["headers"]["OData-Version"] == "4.0"
    assert call["headers"]["OData-MaxVersion"] == "4.0"
    assert call["data"] == '{"content": "YQ=="}'
    assert call["timeout"] == 7


def test_unauthorized_refreshes_once_and_retries(fake_session_factory, make_response):
    tokens = FakeTokens()
    session = fake_session_factory([make_response(401, None, text="expired"), make_response(204, None)])

    _client(session, tokens).publish_web_resource("R1")

    assert tokens.refresh_calls == 1
    assert len(session.calls) == 2
    assert session.calls[1]["headers"]["Authorization"] == "Bearer token-2"


def test_failed_refresh_surfaces_unauthorized_without_third_attempt(fake_session_factory, make_response):
    tokens = FakeTokens(fail=True)
    session = fake_session_factory([make_response(401, None), make_response(204, None)])

    with pytest.raises(UnauthorizedError):
        _client(session, tokens).publish_web_resource("R1")

    assert tokens.refresh_calls == 1
    assert len(session.calls) == 1


def test_second_unauthorized_is_not_retried_again(fake_session_factory, make_response):
    tokens = FakeTokens()
    session = fake_session_factory([
        make_response(401, None),
        make_response(401, None),
        make_response(204, None),
    ])

    with pytest.raises(UnauthorizedError):
        _client(session, tokens).publish_web_resource("R1")

    assert tokens.refresh_calls == 1
    assert len(session.calls) == 2


def test_non_2xx_raises_remote_api_error(fake_session_factory, make_response):
    session = fake_session_factory([make_response(500, None, text="boom")])
    with pytest.raises(RemoteAPIError) as excinfo:
        _client(session).publish_web_resource("R1")
    assert excinfo.value.status_code == 500
    assert excinfo.value.body == "boom"
    assert str(excinfo.value) == "API error 500: boom"
    assert len(session.calls) == 1


def test_transport_error_is_status_zero(fake_session_factory):
    session = fake_session_factory([requests.ConnectionError("dns")])
    with pytest.raises(RemoteAPIError) as excinfo:
        _client(session).list_solutions()
    assert excinfo.value.status_code == 0


def test_list_web_resources_query_and_parse(fake_session_factory, make_response):
    session = fake_session_factory([
        make_response(200, {"value": [
            {"webresourceid": "R1", "name": "new_/a.js", "displayname": "a.js",
             "webresourcetype": 3, "versionnumber": 12345},
        ]})
    ])
    resources = _client(session).list_web_resources()

    assert [r.id for r in resources] == ["R1"]
    assert resources[0].web_resource_type == 3
    url = unquote(session.calls[0]["url"])
    assert "$select=webresourceid,name,displayname,webresourcetype,versionnumber" in url
    assert "(webresourcetype eq 1 or webresourcetype eq 2 or webresourcetype eq 3) and ismanaged eq false" in url
    assert url.endswith("$orderby=name")


def test_publish_sends_parameter_xml(fake_session_factory, make_response):
    session = fake_session_factory([make_response(204, None)])
    _client(session).publish_web_resource("R1")
    call = session.calls[0]
    assert call["url"].endswith("/PublishXml")
    assert "<webresource>R1</webresource>" in call["data"]


def test_list_solutions(fake_session_factory, make_response):
    session = fake_session_factory([
        make_response(200, {"value": [
            {"solutionid": "S1", "uniquename": "core", "friendlyname": "Core", "version": "1.0.0.0"},
        ]})
    ])
    solutions = _client(session).list_solutions()
    assert solutions[0].unique_name == "core"
    url = unquote(session.calls[0]["url"])
    assert "ismanaged eq false" in url
    assert "createdon desc" in url


def test_add_to_solution_payload(fake_session_factory, make_response):
    import json

    session = fake_session_factory([make_response(204, None)])
    _client(session).add_web_resource_to_solution("core", "R1")
    body = json.loads(session.calls[0]["data"])
    assert body == {
        "ComponentId": "R1",
        "ComponentType": 61,
        "SolutionUniqueName": "core",
        "AddRequiredComponents": False,
        "DoNotIncludeSubcomponents": False,
    }


def test_create_reads_id_from_body(fake_session_factory, make_response):
    import json

    session = fake_session_factory([make_response(201, {"webresourceid": "NEW1", "name": "new_/a.js"})])
    rid = _client(session).create_web_resource("new_/a.js", "a.js", "YQ==", WebResourceType.JS)

    assert rid == "NEW1"
    call = session.calls[0]
    assert call["headers"]["Prefer"] == "return=representation"
    assert json.loads(call["data"])["webresourcetype"] == 3


def test_create_falls_back_to_entity_id_header(fake_session_factory, make_response):
    guid = "0f8fad5b-d9cb-469f-a165-70867728950e"
    session = fake_session_factory([
        make_response(204, None, headers={"OData-EntityId": f"{ORG}/api/data/v9.2/webresourceset({guid})"})
    ])
    assert _client(session).create_web_resource("n", "n", "", WebResourceType.CSS) == guid


def test_create_without_any_id_fails(fake_session_factory, make_response):
    session = fake_session_factory([make_response(204, None)])
    with pytest.raises(RemoteAPIError):
        _client(session).create_web_resource("n", "n", "", WebResourceType.CSS)


def test_default_session_retries_connects_only():
    from xrmpub.transport import build_session

    retries = build_session().get_adapter(ORG).max_retries
    assert retries.connect == 2
    assert retries.read == 0
    assert retries.status == 0
