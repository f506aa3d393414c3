"""End-to-end recreation run: gate, confirm, rebuild, verify, report."""

from __future__ import annotations

from typing import List, Optional
from uuid import uuid4

from dbrecreate.audit.lease import EntityLease
from dbrecreate.audit.logger import append_audit_record
from dbrecreate.core.config import RecreateSettings, load_settings
from dbrecreate.core.exceptions import EntityNotFoundError, PreconditionFailedError, RecreateError
from dbrecreate.core.interfaces import Confirmation, Services
from dbrecreate.core.logging import log_event, set_run_context, update_run_context
from dbrecreate.core.metrics import RUN_COUNT
from dbrecreate.core.models import (
    AuditRecord,
    CheckOutcome,
    PrecheckVerdict,
    Prompt,
    PromptKind,
    ReplicaCopy,
    RunContext,
    RunSummary,
    StepFailure,
    TopologyReport,
)
from dbrecreate.core.utils import utc_timestamp
from dbrecreate.orchestrator.recreation import OrchestrationResult, RecreationOrchestrator
from dbrecreate.prechecks.pipeline import PrecheckPipeline
from dbrecreate.replication.lifecycle import ReplicaLifecycleController
from dbrecreate.replication.poller import ConvergencePoller
from dbrecreate.replication.topology import find_mismatches, topology_rows

COMPLETED = "COMPLETED"
COMPLETED_WITH_ERRORS = "COMPLETED_WITH_ERRORS"
BLOCKED = "BLOCKED"
DECLINED = "DECLINED"
FAILED = "FAILED"


class RecreationWorkflow:
    def __init__(
        self,
        services: Services,
        settings: Optional[RecreateSettings] = None,
        poller: Optional[ConvergencePoller] = None,
        audit_path: Optional[str] = None,
    ) -> None:
        self.services = services
        self.settings = settings or load_settings()
        self.poller = poller or ConvergencePoller(
            timeout=self.settings.poll_timeout_seconds,
            interval=self.settings.poll_interval_seconds,
        )
        self.audit_path = audit_path

    def precheck(self, name: str, confirm: Confirmation) -> PrecheckVerdict:
        pipeline = PrecheckPipeline(
            directory=self.services.directory,
            manager=self.services.manager,
            stats=self.services.stats,
            confirm=confirm,
            system_identity_pattern=self.settings.system_identity_pattern,
        )
        return pipeline.run(name)

    def run(self, name: str, confirm: Confirmation) -> RunSummary:
        run_id = str(uuid4())
        set_run_context(run_id=run_id, entity=name, phase="precheck")
        if self.settings.lock_dir:
            with EntityLease(self.settings.lock_dir, name):
                return self._run(run_id, name, confirm)
        return self._run(run_id, name, confirm)

    def _run(self, run_id: str, name: str, confirm: Confirmation) -> RunSummary:
        summary = RunSummary(run_id=run_id, entity=name, decision=BLOCKED, timestamp=utc_timestamp())
        verdict = self.precheck(name, confirm)
        summary.checks = list(verdict.results)
        if not verdict.passed or verdict.context is None:
            failed = verdict.failed_check
            summary.error = failed.message if failed else "Prechecks did not pass"
            return self._finish(summary, failed_step=failed.check if failed else None)

        context = verdict.context
        update_run_context(phase="confirm")
        if not confirm(Prompt(kind=PromptKind.DESTRUCTIVE, message=_destructive_prompt(context))):
            summary.decision = DECLINED
            summary.error = "Operator declined the destructive run"
            return self._finish(summary, failed_step="confirm")

        lifecycle = ReplicaLifecycleController(
            self.services.manager,
            self.poller,
            seed_timeout=self.settings.seed_timeout_seconds,
        )
        orchestrator = RecreationOrchestrator(self.services.manager, self.services.files, self.poller, lifecycle)
        result = OrchestrationResult()
        try:
            orchestrator.run(context, result)
        except RecreateError as exc:
            summary.phases = result.phases
            summary.decision = FAILED
            summary.error = exc.message
            summary.failures.append(StepFailure(step=getattr(exc, "phase", "orchestrate"), code=exc.code, message=exc.message))
            self._finish(summary, failed_step=getattr(exc, "phase", None))
            raise

        summary.phases = result.phases
        summary.failures.extend(result.failures)
        summary.manual_actions.extend(result.manual_actions)

        if not context.snapshot.is_empty():
            update_run_context(phase="verify_topology")
            current = self._read_copies(name, summary)
            if current is not None:
                for problem in find_mismatches(context.snapshot, current):
                    summary.failures.append(
                        StepFailure(step="verify_topology", code="TOPOLOGY_MISMATCH", message=problem)
                    )
                summary.report = TopologyReport(
                    run_id=run_id,
                    entity=name,
                    before=topology_rows(context.snapshot.copies),
                    after=topology_rows([copy for copy in current if copy.server.lower() != context.entity.server.lower()]),
                )
                self._publish(summary.report)

        summary.decision = COMPLETED_WITH_ERRORS if summary.failures else COMPLETED
        return self._finish(summary)

    def _read_copies(self, name: str, summary: RunSummary) -> Optional[List[ReplicaCopy]]:
        try:
            return list(self.services.manager.get_copies(name))
        except Exception as exc:
            summary.failures.append(
                StepFailure(step="verify_topology", code="TOPOLOGY_UNAVAILABLE", message=f"Listing copies failed: {exc}")
            )
            return None

    def _publish(self, report: TopologyReport) -> None:
        sink = self.services.report_sink
        if sink is None:
            return
        try:
            sink.publish(report)
        except Exception as exc:
            log_event("report_publish_failed", log_type="report", level="WARN", error=str(exc))

    def _finish(self, summary: RunSummary, failed_step: Optional[str] = None) -> RunSummary:
        summary.timestamp = utc_timestamp()
        RUN_COUNT.labels(decision=summary.decision).inc()
        reasons = [result.code for result in summary.checks if result.outcome.value.startswith("fail")]
        reasons.extend(failure.code for failure in summary.failures)
        append_audit_record(
            AuditRecord(
                run_id=summary.run_id,
                entity=summary.entity,
                decision=summary.decision,
                reasons=reasons,
                timestamp=summary.timestamp,
                failed_step=failed_step,
                phases=summary.phases,
            ),
            path=self.audit_path,
        )
        log_event(
            "run_finished",
            log_type="audit",
            level="INFO" if summary.decision == COMPLETED else "WARN",
            decision=summary.decision,
            reason_codes=reasons,
            manual_actions=summary.manual_actions,
        )
        return summary


def _destructive_prompt(context: RunContext) -> str:
    copies = ", ".join(copy.name for copy in context.snapshot.copies) or "none"
    return (
        f"All files of '{context.entity.name}' under {context.entity.edb_file_path} and"
        f" {context.entity.log_folder_path} on {context.entity.server} will be deleted."
        f" Passive copies to remove and reseed: {copies}. Proceed?"
    )


def raise_for_blocked(summary: RunSummary) -> RunSummary:
    """Turn a run stopped by its prechecks into the matching exception."""
    if summary.decision != BLOCKED:
        return summary
    failed = next(
        (result for result in summary.checks if result.outcome in (CheckOutcome.FAIL_HARD, CheckOutcome.FAIL_SOFT)),
        None,
    )
    if failed is not None and failed.code == "ENTITY_NOT_FOUND":
        raise EntityNotFoundError(summary.entity)
    raise PreconditionFailedError(
        failed.check if failed is not None else "precheck",
        summary.error or "Prechecks did not pass",
    )
