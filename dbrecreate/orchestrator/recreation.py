from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from dbrecreate.core.exceptions import ConvergenceTimeoutError, DestructivePhaseError
from dbrecreate.core.interfaces import EntityManager, RemoteFiles
from dbrecreate.core.logging import log_event, update_run_context
from dbrecreate.core.metrics import PHASE_LATENCY, STEP_FAILURES
from dbrecreate.core.models import DatabaseRecord, RunContext, StepFailure
from dbrecreate.core.utils import parent_directory
from dbrecreate.replication.lifecycle import CopyState, ReplicaLifecycleController
from dbrecreate.replication.poller import ConvergencePoller

DISABLE_CIRCULAR_LOGGING = "disable_circular_logging"
REMOVE_COPIES = "remove_copies"
DISMOUNT = "dismount"
DELETE_FILES = "delete_files"
MOUNT = "mount"
RESTORE_COPIES = "restore_copies"
RESTORE_CIRCULAR_LOGGING = "restore_circular_logging"
RESTORE_PROVISIONING = "restore_provisioning"


@dataclass
class OrchestrationResult:
    phases: List[str] = field(default_factory=list)
    failures: List[StepFailure] = field(default_factory=list)
    manual_actions: List[str] = field(default_factory=list)
    copy_states: Dict[str, CopyState] = field(default_factory=dict)


class RecreationOrchestrator:
    """Runs the destructive phase sequence for one confirmed entity.

    Phases up to and including the mount raise :class:`DestructivePhaseError`
    and stop the run; later phases only record failures. Completed phases are
    never rolled back.
    """

    def __init__(
        self,
        manager: EntityManager,
        files: RemoteFiles,
        poller: ConvergencePoller,
        lifecycle: ReplicaLifecycleController,
    ) -> None:
        self.manager = manager
        self.files = files
        self.poller = poller
        self.lifecycle = lifecycle

    def run(self, context: RunContext, result: Optional[OrchestrationResult] = None) -> OrchestrationResult:
        result = result if result is not None else OrchestrationResult()
        entity = context.entity
        name = entity.name

        with self._phase(DISABLE_CIRCULAR_LOGGING, result):
            if entity.circular_logging:
                self.manager.set_circular_logging(name, False)
                if not self.poller.wait(lambda: not self._read(name).circular_logging, step=DISABLE_CIRCULAR_LOGGING):
                    raise ConvergenceTimeoutError("disabling circular logging", self.poller.timeout)

        with self._phase(REMOVE_COPIES, result):
            self.lifecycle.remove_all(context.snapshot)

        with self._phase(DISMOUNT, result):
            self.manager.dismount(name)

        with self._phase(DELETE_FILES, result):
            for directory in self._directories(entity.edb_file_path, entity.log_folder_path):
                log_event("delete_started", log_type="phase", server=entity.server, directory=directory)
                self.files.delete_all(entity.server, directory)

        with self._phase(MOUNT, result):
            self.manager.mount(name, force=True)
            if not self.poller.wait(lambda: self._read(name).mounted, step=MOUNT):
                raise ConvergenceTimeoutError("mounting", self.poller.timeout)

        update_run_context(phase=RESTORE_COPIES)
        started = time.monotonic()
        restoration = self.lifecycle.restore_all(context.snapshot)
        PHASE_LATENCY.labels(phase=RESTORE_COPIES).observe(time.monotonic() - started)
        result.copy_states = restoration.states
        result.failures.extend(restoration.failures)
        result.phases.append(RESTORE_COPIES)

        update_run_context(phase=RESTORE_CIRCULAR_LOGGING)
        if entity.circular_logging:
            try:
                self.manager.set_circular_logging(name, True)
            except Exception as exc:
                self._record(result, RESTORE_CIRCULAR_LOGGING, "CIRCULAR_LOGGING_RESTORE_FAILED", str(exc))
                result.manual_actions.append(f"Re-enable circular logging on '{name}' manually.")
        result.phases.append(RESTORE_CIRCULAR_LOGGING)

        update_run_context(phase=RESTORE_PROVISIONING)
        self._restore_provisioning(context, result)
        result.phases.append(RESTORE_PROVISIONING)
        return result

    def _restore_provisioning(self, context: RunContext, result: OrchestrationResult) -> None:
        name = context.entity.name
        if not context.entity.provisioning_excluded:
            return
        if context.snapshot.lagged_copies:
            message = (
                f"'{name}' stays excluded from provisioning because it has lagged copies."
                f" Wait {context.max_lag_days:g} days for the lagged copies to catch up,"
                " then clear the exclusion manually."
            )
            result.manual_actions.append(message)
            log_event("provisioning_left_excluded", log_type="phase", level="WARN", max_lag_days=context.max_lag_days)
            return
        try:
            self.manager.set_provisioning_excluded(name, False)
        except Exception as exc:
            self._record(result, RESTORE_PROVISIONING, "PROVISIONING_RESTORE_FAILED", str(exc))
            result.manual_actions.append(f"Clear the provisioning exclusion on '{name}' manually.")
            return
        log_event("provisioning_restored", log_type="phase")

    def _read(self, name: str) -> DatabaseRecord:
        entity = self.manager.get_entity(name)
        if entity is None:
            raise LookupError(f"database '{name}' not visible yet")
        return entity

    @staticmethod
    def _directories(edb_file_path: str, log_folder_path: str) -> List[str]:
        directories = [parent_directory(edb_file_path)]
        if log_folder_path.rstrip("\\/").lower() != directories[0].rstrip("\\/").lower():
            directories.append(log_folder_path)
        return directories

    @staticmethod
    def _record(result: OrchestrationResult, step: str, code: str, message: str) -> None:
        STEP_FAILURES.labels(step=step).inc()
        log_event("step_failed", log_type="phase", level="WARN", step=step, code=code, message=message)
        result.failures.append(StepFailure(step=step, code=code, message=message))

    @contextmanager
    def _phase(self, phase: str, result: OrchestrationResult) -> Iterator[None]:
        update_run_context(phase=phase)
        log_event("phase_started", log_type="phase")
        started = time.monotonic()
        try:
            yield
        except DestructivePhaseError:
            log_event("phase_failed", log_type="phase", level="ERROR")
            raise
        except Exception as exc:
            log_event("phase_failed", log_type="phase", level="ERROR", error=str(exc))
            raise DestructivePhaseError(phase, str(exc)) from exc
        finally:
            PHASE_LATENCY.labels(phase=phase).observe(time.monotonic() - started)
        result.phases.append(phase)
        log_event("phase_completed", log_type="phase")
