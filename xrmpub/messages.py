"""Messages delivered to the orchestrator's inbox.

Worker tasks and the watch engine never touch shared state; they describe
what happened with one of these values and the orchestrator applies it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from xrmpub.models import DeviceChallenge, Solution, Token, WebResource

if TYPE_CHECKING:
    from xrmpub.create import CreateReport
    from xrmpub.publish import PublishOutcome


@dataclass(frozen=True)
class Message:
    pass


@dataclass(frozen=True)
class FileChanged(Message):
    path: str
    generation: int


# Authentication -------------------------------------------------------------
@dataclass(frozen=True)
class AuthChallengeIssued(Message):
    environment: str
    generation: int
    challenge: DeviceChallenge


@dataclass(frozen=True)
class AuthSucceeded(Message):
    environment: str
    generation: int
    token: Token


@dataclass(frozen=True)
class AuthFailed(Message):
    environment: str
    generation: int
    error: Exception


# Remote listings ------------------------------------------------------------
@dataclass(frozen=True)
class ResourcesLoaded(Message):
    environment: str
    resources: List[WebResource] = field(default_factory=list)


@dataclass(frozen=True)
class SolutionsLoaded(Message):
    environment: str
    solutions: List[Solution] = field(default_factory=list)
    resource_id: str = ""


@dataclass(frozen=True)
class AddedToSolution(Message):
    environment: str
    resource_id: str
    solution_unique_name: str


# Publishing -----------------------------------------------------------------
@dataclass(frozen=True)
class PublishUploaded(Message):
    outcome: "PublishOutcome"


@dataclass(frozen=True)
class PublishFailed(Message):
    environment: str
    resource_id: str
    local_path: str
    error: Exception


@dataclass(frozen=True)
class ResourcesCreated(Message):
    environment: str
    report: "CreateReport"


@dataclass(frozen=True)
class TaskFailed(Message):
    """Any other worker failure; ``task`` names what was attempted."""

    task: str
    environment: str
    error: Exception
    resource_id: Optional[str] = None


__all__ = [
    "Message",
    "FileChanged",
    "AuthChallengeIssued",
    "AuthSucceeded",
    "AuthFailed",
    "ResourcesLoaded",
    "SolutionsLoaded",
    "AddedToSolution",
    "PublishUploaded",
    "PublishFailed",
    "ResourcesCreated",
    "TaskFailed",
]
