"""Create new web resources from local files.

Each file is read, created remotely, optionally added to a solution and then
published. Failures are collected per file so one bad file does not abort
the batch. Binding the created resources is left to the orchestrator.
"""

from __future__ import annotations

import base64
import posixpath
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from xrmpub.client import RemoteClient
from xrmpub.errors import PublisherError
from xrmpub.logger import get_logger
from xrmpub.webresources import CreateFileInfo

logger = get_logger(__name__)


@dataclass(frozen=True)
class CreatedResource:
    file: CreateFileInfo
    resource_id: str


@dataclass(frozen=True)
class CreateFailure:
    name: str
    error: str


@dataclass
class CreateReport:
    created: List[CreatedResource] = field(default_factory=list)
    failed: List[CreateFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        if self.ok:
            return f"Created {len(self.created)} web resources"
        if self.created:
            return (
                f"Created {len(self.created)}, failed {len(self.failed)}: "
                f"{self.failed[-1].error}"
            )
        return f"Failed to create resources: {self.failed[-1].error}"


class ResourceCreator:
    def __init__(self, client: RemoteClient):
        self.client = client

    def create_all(
        self,
        files: Iterable[CreateFileInfo],
        solution_unique_name: Optional[str] = None,
    ) -> CreateReport:
        report = CreateReport()
        for info in files:
            try:
                with open(info.local_path, "rb") as f:
                    content = f.read()
            except OSError as exc:
                report.failed.append(CreateFailure(info.web_resource_name, str(exc)))
                continue

            try:
                resource_id = self.client.create_web_resource(
                    info.web_resource_name,
                    posixpath.basename(info.web_resource_name),
                    base64.b64encode(content).decode("ascii"),
                    info.resource_type,
                )
            except PublisherError as exc:
                logger.warning(f"[create] Failed to create {info.web_resource_name}: {exc}")
                report.failed.append(CreateFailure(info.web_resource_name, str(exc)))
                continue

            # The resource exists from here on, so it is bound even if later steps fail
            if solution_unique_name:
                try:
                    self.client.add_web_resource_to_solution(solution_unique_name, resource_id)
                except PublisherError as exc:
                    report.failed.append(
                        CreateFailure(f"{info.web_resource_name} (add to solution)", str(exc))
                    )
            try:
                self.client.publish_web_resource(resource_id)
            except PublisherError as exc:
                report.failed.append(CreateFailure(f"{info.web_resource_name} (publish)", str(exc)))

            report.created.append(CreatedResource(info, resource_id))
            logger.info(f"[create] Created {info.web_resource_name} ({resource_id})")
        return report


__all__ = ["ResourceCreator", "CreateReport", "CreatedResource", "CreateFailure"]
