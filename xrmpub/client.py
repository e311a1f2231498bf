"""Dynamics 365 Web API client for web resources and solutions.

All calls go through ``RemoteClient._request``, which attaches the bearer
token, enforces the request timeout and applies the unauthorized policy: on a
401 the token source is refreshed exactly once and the request is retried
exactly once. Anything else that is not 2xx raises RemoteAPIError.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote

import requests

from xrmpub.errors import RefreshFailedError, RemoteAPIError, UnauthorizedError
from xrmpub.logger import get_logger
from xrmpub.models import Solution, WebResource
from xrmpub.settings import REQUEST_TIMEOUT_SECS
from xrmpub.transport import build_session
from xrmpub.webresources import LISTED_TYPES, WebResourceType

logger = get_logger(__name__)

API_PATH = "/api/data/v9.2"
# Solution component type code for web resources
WEB_RESOURCE_COMPONENT_TYPE = 61

_ENTITY_ID_RE = re.compile(r"\(([0-9a-fA-F-]{36})\)\s*$")


class TokenSource(Protocol):
    @property
    def access_token(self) -> str: ...

    def refresh(self, stale_access_token: Optional[str] = None) -> str: ...


class RemoteClient:
    """Typed wrapper over the organization's Web API."""

    def __init__(
        self,
        org_url: str,
        tokens: TokenSource,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT_SECS,
    ):
        self.org_url = org_url.rstrip("/")
        self.base_url = self.org_url + API_PATH
        self.tokens = tokens
        self.session = session or build_session()
        self.timeout = timeout

    def _send(self, method: str, path: str, access_token: str, body: Any,
              extra_headers: Optional[Dict[str, str]]) -> requests.Response:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
        }
        if extra_headers:
            headers.update(extra_headers)
        data = json.dumps(body) if body is not None else None
        try:
            return self.session.request(
                method,
                self.base_url + path,
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise RemoteAPIError(0, f"{method} {path} failed: {exc}") from exc

    def _request(self, method: str, path: str, body: Any = None,
                 headers: Optional[Dict[str, str]] = None) -> requests.Response:
        access_token = self.tokens.access_token
        response = self._send(method, path, access_token, body, headers)

        if response.status_code == 401:
            logger.info(f"[client] 401 on {method} {path}, refreshing token once")
            try:
                access_token = self.tokens.refresh(access_token)
            except RefreshFailedError as exc:
                raise UnauthorizedError(f"unauthorized and refresh failed: {exc}") from exc
            response = self._send(method, path, access_token, body, headers)
            if response.status_code == 401:
                raise UnauthorizedError("unauthorized: token rejected after refresh")

        if not 200 <= response.status_code < 300:
            raise RemoteAPIError(response.status_code, response.text)
        return response

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteAPIError(response.status_code, f"invalid JSON: {response.text[:200]}") from exc
        if not isinstance(data, dict):
            raise RemoteAPIError(response.status_code, "expected a JSON object")
        return data

    # ------------------------------------------------------------------
    # Web resources
    # ------------------------------------------------------------------
    def list_web_resources(self) -> List[WebResource]:
        """Unmanaged HTML/CSS/JS web resources ordered by name."""
        type_filter = " or ".join(f"webresourcetype eq {int(t)}" for t in LISTED_TYPES)
        flt = quote(f"({type_filter}) and ismanaged eq false")
        path = (
            "/webresourceset?$select=webresourceid,name,displayname,webresourcetype,versionnumber"
            f"&$filter={flt}&$orderby=name"
        )
        data = self._json(self._request("GET", path))
        return [WebResource.from_dict(item) for item in data.get("value") or []]

    def update_web_resource_content(self, resource_id: str, base64_content: str) -> None:
        self._request("PATCH", f"/webresourceset({resource_id})", {"content": base64_content})

    def publish_web_resource(self, resource_id: str) -> None:
        param_xml = (
            "<importexportxml><webresources>"
            f"<webresource>{resource_id}</webresource>"
            "</webresources></importexportxml>"
        )
        self._request("POST", "/PublishXml", {"ParameterXml": param_xml})

    def create_web_resource(self, name: str, display_name: str, base64_content: str,
                            resource_type: WebResourceType) -> str:
        """Create a web resource and return its id."""
        response = self._request(
            "POST",
            "/webresourceset",
            {
                "name": name,
                "displayname": display_name,
                "content": base64_content,
                "webresourcetype": int(resource_type),
            },
            headers={"Prefer": "return=representation"},
        )
        resource_id = ""
        if response.content:
            resource_id = WebResource.from_dict(self._json(response)).id
        if not resource_id:
            match = _ENTITY_ID_RE.search(response.headers.get("OData-EntityId", ""))
            if match:
                resource_id = match.group(1)
        if not resource_id:
            raise RemoteAPIError(response.status_code, "create response carried no webresourceid")
        return resource_id

    # ------------------------------------------------------------------
    # Solutions
    # ------------------------------------------------------------------
    def list_solutions(self) -> List[Solution]:
        """Unmanaged solutions, newest first."""
        path = (
            "/solutions?$select=solutionid,uniquename,friendlyname,version"
            f"&$filter={quote('ismanaged eq false')}&$orderby={quote('createdon desc')}"
        )
        data = self._json(self._request("GET", path))
        return [Solution.from_dict(item) for item in data.get("value") or []]

    def add_web_resource_to_solution(self, solution_unique_name: str, resource_id: str) -> None:
        self._request(
            "POST",
            "/AddSolutionComponent",
            {
                "ComponentId": resource_id,
                "ComponentType": WEB_RESOURCE_COMPONENT_TYPE,
                "SolutionUniqueName": solution_unique_name,
                "AddRequiredComponents": False,
                "DoNotIncludeSubcomponents": False,
            },
        )
