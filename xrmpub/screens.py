"""Screen states of the orchestrator.

Each variant carries only the data its screen needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from xrmpub.models import DeviceChallenge


@dataclass(frozen=True)
class EnvironmentSelect:
    pass


@dataclass(frozen=True)
class ConfirmDelete:
    environment: str


@dataclass(frozen=True)
class Authenticating:
    environment: str
    generation: int
    challenge: Optional[DeviceChallenge] = None


@dataclass(frozen=True)
class ResourceList:
    environment: str


@dataclass(frozen=True)
class SolutionPicker:
    environment: str
    resource_id: str = ""


Screen = Union[EnvironmentSelect, ConfirmDelete, Authenticating, ResourceList, SolutionPicker]


@dataclass(frozen=True)
class Status:
    text: str = ""
    is_error: bool = False


__all__ = [
    "EnvironmentSelect",
    "ConfirmDelete",
    "Authenticating",
    "ResourceList",
    "SolutionPicker",
    "Screen",
    "Status",
]
