"""Publish pipeline: read, encode, upload, publish, bump version, persist.

The work is split so that only the orchestrator thread writes the binding
store: ``prepare`` and ``commit`` run on the orchestrator, ``upload`` runs
on a worker.
"""

from __future__ import annotations

import base64
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

from xrmpub.client import RemoteClient
from xrmpub.config_store import ConfigStore
from xrmpub.errors import (
    ConfigError,
    NotBoundError,
    PersistFailedError,
    ReadFailedError,
)
from xrmpub.logger import ContextLogger, get_logger
from xrmpub.models import Binding
from xrmpub.settings import READ_ATTEMPTS, READ_RETRY_DELAY_SECS

logger = get_logger(__name__)

_VERSION_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")
FALLBACK_VERSION = "1.0.1"


def increment_version(version: str) -> str:
    """Bump the patch component of ``major.minor.patch``; anything else becomes 1.0.1."""
    match = _VERSION_RE.match(version or "")
    if not match:
        return FALLBACK_VERSION
    major, minor, patch = (int(part) for part in match.groups())
    return f"{major}.{minor}.{patch + 1}"


@dataclass(frozen=True)
class PublishOutcome:
    binding: Binding
    new_version: str

    @property
    def environment(self) -> str:
        return self.binding.environment

    @property
    def resource_id(self) -> str:
        return self.binding.web_resource_id

    @property
    def local_path(self) -> str:
        return self.binding.local_path


class PublishPipeline:
    def __init__(
        self,
        store: ConfigStore,
        client: Optional[RemoteClient] = None,
        *,
        read_attempts: int = READ_ATTEMPTS,
        retry_delay: float = READ_RETRY_DELAY_SECS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.client = client
        self.read_attempts = max(1, read_attempts)
        self.retry_delay = retry_delay
        self._sleep = sleep

    def prepare(self, environment: str, resource_id: str) -> Binding:
        binding = self.store.get_binding(environment, resource_id)
        if binding is None:
            raise NotBoundError(
                f"resource {resource_id} is not bound in {environment!r}",
                resource_id=resource_id,
            )
        return binding

    def read_content(self, binding: Binding) -> bytes:
        """Read the bound file, retrying while an editor's atomic save is in progress."""
        last_error: Optional[OSError] = None
        for attempt in range(self.read_attempts):
            if attempt:
                self._sleep(self.retry_delay)
            try:
                with open(binding.local_path, "rb") as f:
                    return f.read()
            except OSError as exc:
                last_error = exc
        raise ReadFailedError(
            f"cannot read {binding.local_path}: {last_error}",
            local_path=binding.local_path,
            resource_id=binding.web_resource_id,
            cause=last_error,
        )

    def upload(self, binding: Binding, client: Optional[RemoteClient] = None) -> PublishOutcome:
        """Push the file content and publish it. AuthError and RemoteAPIError propagate.

        ``client`` overrides the pipeline's own client for this call.
        """
        client = client or self.client
        log = ContextLogger(
            logger,
            environment=binding.environment,
            resource_id=binding.web_resource_id,
            path=binding.local_path,
        )
        content = self.read_content(binding)
        encoded = base64.b64encode(content).decode("ascii")

        log.info(f"[publish] Uploading {binding.web_resource_name} ({len(content)} bytes)")
        client.update_web_resource_content(binding.web_resource_id, encoded)
        client.publish_web_resource(binding.web_resource_id)

        new_version = increment_version(binding.last_known_version)
        log.info(f"[publish] Published {binding.web_resource_name} as {new_version}")
        return PublishOutcome(binding=binding, new_version=new_version)

    def commit(self, outcome: PublishOutcome) -> Binding:
        try:
            return self.store.update_binding_version(
                outcome.environment, outcome.resource_id, outcome.new_version
            )
        except (ConfigError, OSError) as exc:
            raise PersistFailedError(
                f"published {outcome.binding.web_resource_name} but could not save version "
                f"{outcome.new_version}: {exc}",
                local_path=outcome.local_path,
                resource_id=outcome.resource_id,
                cause=exc,
            ) from exc

    def publish(self, environment: str, resource_id: str) -> Binding:
        return self.commit(self.upload(self.prepare(environment, resource_id)))


__all__ = ["PublishPipeline", "PublishOutcome", "increment_version"]
