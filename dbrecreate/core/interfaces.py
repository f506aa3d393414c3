"""Capabilities the recreation core consumes but never implements.

Deployments wire concrete clients for the directory, the database
management endpoint, remote file access and mailbox statistics into a
:class:`Services` bundle. Tests use in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from dbrecreate.core.models import (
    DatabaseRecord,
    DirectoryIdentity,
    DisconnectRecord,
    Prompt,
    ReplicaCopy,
    TopologyReport,
)


class DirectoryService(Protocol):
    def find_referencing_identities(self, entity_name: str) -> Sequence[DirectoryIdentity]: ...


class EntityManager(Protocol):
    def get_entity(self, name: str) -> Optional[DatabaseRecord]: ...

    def get_copies(self, name: str) -> Sequence[ReplicaCopy]: ...

    def set_circular_logging(self, name: str, enabled: bool) -> None: ...

    def dismount(self, name: str) -> None: ...

    def mount(self, name: str, force: bool) -> None: ...

    def remove_copy(self, copy_name: str) -> None: ...

    def add_copy(
        self,
        name: str,
        server: str,
        activation_preference: int,
        lag_days: float,
        seed_postponed: bool,
    ) -> None: ...

    def suspend_copy(self, copy_name: str, activation_only: bool) -> None: ...

    def seed_copy(self, copy_name: str, delete_existing: bool) -> None: ...

    def set_provisioning_excluded(self, name: str, excluded: bool) -> None: ...


class RemoteFiles(Protocol):
    def delete_all(self, server: str, directory: str) -> None: ...


class StatisticsService(Protocol):
    def get_disconnected_stats(self, entity_name: str) -> Sequence[DisconnectRecord]: ...


class Confirmation(Protocol):
    def __call__(self, prompt: Prompt) -> bool: ...


class ReportSink(Protocol):
    def publish(self, report: TopologyReport) -> None: ...


@dataclass
class StaticConfirmation:
    """Answers prompts from flags fixed up front, for non-interactive callers."""

    allow_missing_statistics: bool = False
    allow_safety_window: bool = False
    confirm_destructive: bool = False
    asked: List[Prompt] = field(default_factory=list)

    def __call__(self, prompt: Prompt) -> bool:
        self.asked.append(prompt)
        answers = {
            "missing_statistics": self.allow_missing_statistics,
            "safety_window": self.allow_safety_window,
            "destructive": self.confirm_destructive,
        }
        return answers.get(prompt.kind.value, False)


@dataclass
class Services:
    directory: DirectoryService
    manager: EntityManager
    files: RemoteFiles
    stats: StatisticsService
    report_sink: Optional[ReportSink] = None


def copy_identity(entity_name: str, server: str) -> str:
    return f"{entity_name}\\{server}"
