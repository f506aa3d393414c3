from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from dbrecreate.core import config
from dbrecreate.core.exceptions import DestructivePhaseError
from dbrecreate.core.interfaces import EntityManager, copy_identity
from dbrecreate.core.logging import log_event
from dbrecreate.core.metrics import STEP_FAILURES
from dbrecreate.core.models import CopyStatus, ReplicaCopy, StepFailure, TopologySnapshot
from dbrecreate.replication.poller import ConvergencePoller


class CopyState(str, Enum):
    REMOVED = "Removed"
    ADDED = "Added"
    SUSPENDED = "Suspended"
    SEEDED = "Seeded"
    SUSPENDED_ACTIVATION_ONLY = "SuspendedActivationOnly"


@dataclass
class RestorationOutcome:
    failures: List[StepFailure] = field(default_factory=list)
    states: Dict[str, CopyState] = field(default_factory=dict)


class ReplicaLifecycleController:
    """Tears down and rebuilds the passive copies captured in a snapshot.

    Removal is all-or-nothing. Restoration isolates failures per copy and
    processes copies one at a time, most preferred first.
    """

    def __init__(
        self,
        manager: EntityManager,
        poller: ConvergencePoller,
        seed_timeout: Optional[float] = None,
    ) -> None:
        self.manager = manager
        self.poller = poller
        self.seed_timeout = config.SEED_TIMEOUT_SECONDS if seed_timeout is None else seed_timeout

    def remove_all(self, snapshot: TopologySnapshot) -> Dict[str, CopyState]:
        states: Dict[str, CopyState] = {}
        for copy in snapshot.copies:
            try:
                self.manager.remove_copy(copy.name)
            except Exception as exc:
                log_event("copy_remove_failed", log_type="replica", level="ERROR", copy=copy.name, error=str(exc))
                raise DestructivePhaseError(
                    "remove_copies",
                    f"removing {copy.name} failed: {exc}; remaining copies need manual cleanup",
                ) from exc
            states[copy.name] = CopyState.REMOVED
            log_event("copy_removed", log_type="replica", copy=copy.name)
        return states

    def restore_all(self, snapshot: TopologySnapshot) -> RestorationOutcome:
        outcome = RestorationOutcome()
        for copy in sorted(snapshot.copies, key=lambda item: item.activation_preference):
            outcome.states[copy.name] = self._restore(snapshot.entity, copy, outcome.failures)
        return outcome

    def _restore(self, entity: str, copy: ReplicaCopy, failures: List[StepFailure]) -> CopyState:
        name = copy_identity(entity, copy.server)
        state = CopyState.REMOVED

        try:
            self.manager.add_copy(
                entity,
                copy.server,
                copy.activation_preference,
                copy.lag_days if copy.lag_enabled else 0,
                seed_postponed=True,
            )
        except Exception as exc:
            self._fail(failures, "add_copy", name, "ADD_FAILED", f"adding copy failed: {exc}")
            return state
        state = CopyState.ADDED
        if self.poller.wait(lambda: self._status(entity, name) is not CopyStatus.UNKNOWN, step="add_copy"):
            log_event("copy_added", log_type="replica", copy=name, activation_preference=copy.activation_preference)
            if self._suspend(entity, name, failures):
                state = CopyState.SUSPENDED
                if self._seed(entity, name, failures):
                    state = CopyState.SEEDED
        else:
            # Suspend and seed are skipped; a lagged copy must still never be activatable.
            self._fail(failures, "add_copy", name, "CONVERGENCE_TIMEOUT", "copy status still Unknown after add")

        if copy.lag_enabled:
            try:
                self.manager.suspend_copy(name, activation_only=True)
            except Exception as exc:
                self._fail(
                    failures,
                    "suspend_activation",
                    name,
                    "ACTIVATION_SUSPEND_FAILED",
                    f"blocking activation of lagged copy failed: {exc}",
                )
                return state
            state = CopyState.SUSPENDED_ACTIVATION_ONLY
        log_event("copy_restored", log_type="replica", copy=name, state=state.value)
        return state

    def _suspend(self, entity: str, name: str, failures: List[StepFailure]) -> bool:
        try:
            self.manager.suspend_copy(name, activation_only=False)
        except Exception as exc:
            self._fail(failures, "suspend_copy", name, "SUSPEND_FAILED", f"suspending copy failed: {exc}")
            return False
        if not self.poller.wait(
            lambda: self._status(entity, name) not in (CopyStatus.FAILED, CopyStatus.UNKNOWN), step="suspend_copy"
        ):
            self._fail(failures, "suspend_copy", name, "CONVERGENCE_TIMEOUT", "copy did not settle after suspend")
        return True

    def _seed(self, entity: str, name: str, failures: List[StepFailure]) -> bool:
        try:
            self.manager.seed_copy(name, delete_existing=True)
        except Exception as exc:
            self._fail(failures, "seed_copy", name, "SEED_FAILED", f"seeding copy failed: {exc}")
            return False
        if not self.poller.wait(
            lambda: self._status(entity, name) is CopyStatus.HEALTHY, timeout=self.seed_timeout, step="seed_copy"
        ):
            self._fail(failures, "seed_copy", name, "CONVERGENCE_TIMEOUT", "copy not Healthy after seeding")
        return True

    def _status(self, entity: str, copy_name: str) -> CopyStatus:
        for copy in self.manager.get_copies(entity):
            if copy.name.lower() == copy_name.lower():
                return copy.status
        return CopyStatus.UNKNOWN

    @staticmethod
    def _fail(failures: List[StepFailure], step: str, copy_name: str, code: str, message: str) -> None:
        STEP_FAILURES.labels(step=step).inc()
        log_event("copy_step_failed", log_type="replica", level="WARN", step=step, copy=copy_name, code=code, message=message)
        failures.append(StepFailure(step=step, code=code, message=message, copy_name=copy_name))
