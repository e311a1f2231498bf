"""Data model: environments, bindings, the configuration document and tokens."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from xrmpub.settings import DEFAULT_PUBLISHER_PREFIX, INITIAL_BINDING_VERSION, TOKEN_EXPIRY_SKEW_SECS


def _as_mapping(data: Any) -> Mapping[str, Any]:
    return data if isinstance(data, Mapping) else {}


def _read_str(data: Mapping[str, Any], key: str, default: str = "") -> str:
    value = data.get(key)
    return value if isinstance(value, str) else default


def _read_bool(data: Mapping[str, Any], key: str, default: bool = False) -> bool:
    value = data.get(key)
    return value if isinstance(value, bool) else default


def _read_int(data: Mapping[str, Any], key: str, default: int = 0) -> int:
    value = data.get(key)
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return default


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Environment:
    name: str
    url: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "Environment":
        payload = _as_mapping(data)
        return cls(name=_read_str(payload, "name"), url=_read_str(payload, "url"))

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "url": self.url}


@dataclass
class Binding:
    """A local file bound to one remote web resource inside one environment."""

    environment: str
    local_path: str
    web_resource_name: str
    web_resource_id: str
    last_known_version: str = INITIAL_BINDING_VERSION
    auto_publish: bool = True

    @property
    def key(self) -> tuple[str, str]:
        return (self.environment, self.web_resource_id)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "Binding":
        payload = _as_mapping(data)
        return cls(
            environment=_read_str(payload, "environment"),
            local_path=_read_str(payload, "localPath"),
            web_resource_name=_read_str(payload, "webResourceName"),
            web_resource_id=_read_str(payload, "webResourceId"),
            last_known_version=_read_str(payload, "lastKnownVersion", INITIAL_BINDING_VERSION),
            auto_publish=_read_bool(payload, "autoPublish", False),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environment": self.environment,
            "localPath": self.local_path,
            "webResourceName": self.web_resource_name,
            "webResourceId": self.web_resource_id,
            "lastKnownVersion": self.last_known_version,
            "autoPublish": self.auto_publish,
        }


@dataclass
class ConfigDocument:
    """Aggregate root persisted as config.json."""

    current_environment: str = ""
    environments: List[Environment] = field(default_factory=list)
    publisher_prefix: str = DEFAULT_PUBLISHER_PREFIX
    bindings: List[Binding] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "ConfigDocument":
        payload = _as_mapping(data)
        environments: List[Environment] = []
        seen: set[str] = set()
        for item in payload.get("environments") or []:
            if not isinstance(item, Mapping):
                continue
            env = Environment.from_dict(item)
            # Skip nameless and duplicate entries from hand-edited files
            if not env.name or env.name in seen:
                continue
            seen.add(env.name)
            environments.append(env)

        bindings: List[Binding] = []
        keys: dict[tuple[str, str], int] = {}
        for item in payload.get("bindings") or []:
            if not isinstance(item, Mapping):
                continue
            binding = Binding.from_dict(item)
            if not binding.environment or not binding.web_resource_id:
                continue
            if binding.key in keys:
                bindings[keys[binding.key]] = binding
                continue
            keys[binding.key] = len(bindings)
            bindings.append(binding)

        current = _read_str(payload, "currentEnvironment")
        if current not in seen:
            current = ""
        prefix = payload.get("publisherPrefix")
        return cls(
            current_environment=current,
            environments=environments,
            publisher_prefix=prefix if isinstance(prefix, str) else DEFAULT_PUBLISHER_PREFIX,
            bindings=bindings,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentEnvironment": self.current_environment,
            "environments": [env.to_dict() for env in self.environments],
            "publisherPrefix": self.publisher_prefix,
            "bindings": [b.to_dict() for b in self.bindings],
        }

    def clone(self) -> "ConfigDocument":
        return copy.deepcopy(self)


@dataclass
class Token:
    access_token: str
    refresh_token: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Expired when within the skew window of ``expires_at``."""
        now = now or utcnow()
        return now + timedelta(seconds=TOKEN_EXPIRY_SKEW_SECS) > self.expires_at

    @classmethod
    def from_expires_in(cls, access_token: str, refresh_token: str, expires_in: int,
                        now: Optional[datetime] = None) -> "Token":
        now = now or utcnow()
        return cls(access_token, refresh_token, now + timedelta(seconds=int(expires_in)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "Token":
        payload = _as_mapping(data)
        raw = _read_str(payload, "expires_at")
        try:
            expires_at = datetime.fromisoformat(raw)
        except ValueError:
            # Unparseable expiry is treated as already expired
            expires_at = datetime.fromtimestamp(0, timezone.utc)
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return cls(
            access_token=_read_str(payload, "access_token"),
            refresh_token=_read_str(payload, "refresh_token"),
            expires_at=expires_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class DeviceChallenge:
    device_code: str
    user_code: str
    verification_uri: str
    interval: int
    expires_in: int
    message: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "DeviceChallenge":
        payload = _as_mapping(data)
        return cls(
            device_code=_read_str(payload, "device_code"),
            user_code=_read_str(payload, "user_code"),
            verification_uri=_read_str(payload, "verification_uri"),
            interval=max(1, _read_int(payload, "interval", 5)),
            expires_in=_read_int(payload, "expires_in", 900),
            message=_read_str(payload, "message"),
        )


@dataclass(frozen=True)
class WebResource:
    id: str
    name: str
    display_name: str = ""
    web_resource_type: int = 0
    version_number: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "WebResource":
        payload = _as_mapping(data)
        return cls(
            id=_read_str(payload, "webresourceid"),
            name=_read_str(payload, "name"),
            display_name=_read_str(payload, "displayname"),
            web_resource_type=_read_int(payload, "webresourcetype"),
            version_number=_read_int(payload, "versionnumber"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "displayName": self.display_name,
            "webResourceType": self.web_resource_type,
            "versionNumber": self.version_number,
        }


@dataclass(frozen=True)
class Solution:
    id: str
    unique_name: str
    friendly_name: str = ""
    version: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "Solution":
        payload = _as_mapping(data)
        return cls(
            id=_read_str(payload, "solutionid"),
            unique_name=_read_str(payload, "uniquename"),
            friendly_name=_read_str(payload, "friendlyname"),
            version=_read_str(payload, "version"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "uniqueName": self.unique_name,
            "friendlyName": self.friendly_name,
            "version": self.version,
        }
