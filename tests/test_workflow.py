from __future__ import annotations

import pytest

from dbrecreate.audit.lease import EntityLease
from dbrecreate.audit.logger import read_audit_logs
from dbrecreate.core.exceptions import (
    DestructivePhaseError,
    EntityNotFoundError,
    PreconditionFailedError,
    RunInProgressError,
)
from dbrecreate.core.interfaces import StaticConfirmation
from dbrecreate.core.models import DirectoryIdentity, PromptKind
from dbrecreate.orchestrator.workflow import RecreationWorkflow, raise_for_blocked
from fakes import make_copy, make_entity


def test_idle_database_without_copies_runs_to_completion(build_services, settings, audit_path) -> None:
    services = build_services(entity=make_entity("DB1", retention_days=30), disconnected_days_ago=[40])
    confirm = StaticConfirmation(confirm_destructive=True)

    summary = RecreationWorkflow(services, settings, audit_path=audit_path).run("DB1", confirm)

    assert summary.decision == "COMPLETED"
    assert [prompt.kind for prompt in confirm.asked] == [PromptKind.DESTRUCTIVE]
    assert [call[0] for call in services.manager.mutations] == ["dismount", "delete_all", "delete_all", "mount"]
    assert summary.report is None
    assert services.report_sink.reports == []
    assert read_audit_logs(path=audit_path)[0].decision == "COMPLETED"


def test_declined_safety_window_prompt_means_no_mutation(build_services, settings, audit_path) -> None:
    services = build_services(
        entity=make_entity("DB2", retention_days=14),
        copies=[make_copy("DB2", "MBX2", 1, lag_days=7)],
        disconnected_days_ago=[10],
    )
    confirm = StaticConfirmation(confirm_destructive=True)

    summary = RecreationWorkflow(services, settings, audit_path=audit_path).run("DB2", confirm)

    assert summary.decision == "BLOCKED"
    assert [prompt.kind for prompt in confirm.asked] == [PromptKind.SAFETY_WINDOW]
    assert services.manager.mutations == []
    record = read_audit_logs(path=audit_path)[0]
    assert record.failed_step == "safety_window"
    assert record.reasons == ["INSIDE_SAFETY_WINDOW"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"entity": make_entity("OTHER")},
        {"identities": [DirectoryIdentity(name="alice", home_entity="DB1")]},
        {"stats_error": RuntimeError("stats offline")},
        {"entity": make_entity(recovery=True)},
    ],
)
def test_hard_precheck_failures_never_mutate(build_services, settings, audit_path, overrides) -> None:
    services = build_services(**overrides)
    confirm = StaticConfirmation(allow_missing_statistics=True, allow_safety_window=True, confirm_destructive=True)

    summary = RecreationWorkflow(services, settings, audit_path=audit_path).run("DB1", confirm)

    assert summary.decision == "BLOCKED"
    assert services.manager.mutations == []
    assert confirm.asked == []


def test_entity_lookup_error_is_blocked_and_audited(build_services, settings, audit_path) -> None:
    services = build_services()

    def unreachable(name: str):
        raise ConnectionError("management endpoint unreachable")

    services.manager.get_entity = unreachable

    summary = RecreationWorkflow(services, settings, audit_path=audit_path).run(
        "DB1", StaticConfirmation(confirm_destructive=True)
    )

    assert summary.decision == "BLOCKED"
    assert services.manager.mutations == []
    record = read_audit_logs(path=audit_path)[0]
    assert record.failed_step == "existence"
    assert record.reasons == ["ENTITY_LOOKUP_FAILED"]


def test_declining_final_confirmation_means_no_mutation(lagged_services, settings, audit_path) -> None:
    summary = RecreationWorkflow(lagged_services, settings, audit_path=audit_path).run("DB2", StaticConfirmation())

    assert summary.decision == "DECLINED"
    assert lagged_services.manager.mutations == []


def test_full_run_restores_topology_and_reports(lagged_services, settings, audit_path) -> None:
    confirm = StaticConfirmation(confirm_destructive=True)

    summary = RecreationWorkflow(lagged_services, settings, audit_path=audit_path).run("DB2", confirm)

    assert summary.decision == "COMPLETED"
    assert summary.failures == []
    assert len(summary.manual_actions) == 1 and "7 days" in summary.manual_actions[0]
    report = lagged_services.report_sink.reports[0]
    assert report.run_id == summary.run_id
    assert [row.name for row in report.before] == ["DB2\\MBX2", "DB2\\MBX3"]
    assert [(row.name, row.activation_suspended) for row in report.after] == [
        ("DB2\\MBX2", False),
        ("DB2\\MBX3", True),
    ]


def test_restoration_problems_complete_with_errors(lagged_services, settings, audit_path) -> None:
    lagged_services.manager.failures["add_copy:DB2\\MBX2"] = RuntimeError("server offline")

    summary = RecreationWorkflow(lagged_services, settings, audit_path=audit_path).run(
        "DB2", StaticConfirmation(confirm_destructive=True)
    )

    assert summary.decision == "COMPLETED_WITH_ERRORS"
    steps = [failure.step for failure in summary.failures]
    assert steps == ["add_copy", "verify_topology"]
    assert lagged_services.manager.calls_named("add_copy")[-1][1] == "DB2\\MBX3"


def test_report_sink_errors_are_ignored(lagged_services, settings, audit_path) -> None:
    lagged_services.report_sink.error = RuntimeError("bucket gone")

    summary = RecreationWorkflow(lagged_services, settings, audit_path=audit_path).run(
        "DB2", StaticConfirmation(confirm_destructive=True)
    )

    assert summary.decision == "COMPLETED"
    assert summary.report is not None


def test_destructive_failure_is_audited_and_raised(build_services, settings, audit_path) -> None:
    services = build_services(files_error=OSError("share unreachable"), disconnected_days_ago=[90])

    with pytest.raises(DestructivePhaseError):
        RecreationWorkflow(services, settings, audit_path=audit_path).run(
            "DB1", StaticConfirmation(confirm_destructive=True)
        )

    record = read_audit_logs(path=audit_path)[0]
    assert record.decision == "FAILED"
    assert record.failed_step == "delete_files"
    assert record.phases == ["disable_circular_logging", "remove_copies", "dismount"]


def test_stale_lock_file_from_crashed_run_does_not_refuse(build_services, settings, audit_path) -> None:
    services = build_services(disconnected_days_ago=[90])
    lease = EntityLease(settings.lock_dir, "DB1")
    lease.path.parent.mkdir(parents=True, exist_ok=True)
    lease.path.write_text("dead-run 1\n", encoding="utf-8")

    summary = RecreationWorkflow(services, settings, audit_path=audit_path).run(
        "DB1", StaticConfirmation(confirm_destructive=True)
    )

    assert summary.decision == "COMPLETED"


def test_concurrent_run_is_refused(build_services, settings, audit_path) -> None:
    services = build_services(disconnected_days_ago=[90])

    with EntityLease(settings.lock_dir, "DB1"):
        with pytest.raises(RunInProgressError):
            RecreationWorkflow(services, settings, audit_path=audit_path).run(
                "DB1", StaticConfirmation(confirm_destructive=True)
            )

    assert services.manager.calls == []
    summary = RecreationWorkflow(services, settings, audit_path=audit_path).run(
        "DB1", StaticConfirmation(confirm_destructive=True)
    )
    assert summary.decision == "COMPLETED"


def test_blocked_runs_map_to_errors(build_services, lagged_services, settings, audit_path) -> None:
    workflow = RecreationWorkflow(build_services(entity=make_entity("OTHER")), settings, audit_path=audit_path)
    with pytest.raises(EntityNotFoundError):
        raise_for_blocked(workflow.run("DB1", StaticConfirmation(confirm_destructive=True)))

    services = build_services(identities=[DirectoryIdentity(name="alice", home_entity="DB1")])
    workflow = RecreationWorkflow(services, settings, audit_path=audit_path)
    with pytest.raises(PreconditionFailedError) as excinfo:
        raise_for_blocked(workflow.run("DB1", StaticConfirmation(confirm_destructive=True)))
    assert excinfo.value.check == "references"
    assert "alice" in excinfo.value.message

    declined = RecreationWorkflow(lagged_services, settings, audit_path=audit_path).run("DB2", StaticConfirmation())
    assert raise_for_blocked(declined) is declined
