from __future__ import annotations

import fnmatch
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from dbrecreate.core import config
from dbrecreate.core.exceptions import TopologyUnavailableError
from dbrecreate.core.interfaces import Confirmation, DirectoryService, EntityManager, StatisticsService
from dbrecreate.core.logging import log_event
from dbrecreate.core.models import (
    CheckOutcome,
    CheckResult,
    DatabaseRecord,
    DirectoryIdentity,
    DisconnectRecord,
    PrecheckVerdict,
    Prompt,
    PromptKind,
    RunContext,
)
from dbrecreate.core.utils import utc_now
from dbrecreate.prechecks.safety import (
    most_recent_disconnect,
    safe_after,
    safety_window_days,
    within_safety_window,
)
from dbrecreate.replication.topology import capture


class PrecheckPipeline:
    """Ordered safety checks that gate every destructive action.

    Checks run strictly in order. The first hard failure ends the pipeline;
    a soft failure asks ``confirm`` and ends the pipeline when declined.
    Nothing here writes to the entity.
    """

    def __init__(
        self,
        directory: DirectoryService,
        manager: EntityManager,
        stats: StatisticsService,
        confirm: Confirmation,
        system_identity_pattern: Optional[str] = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.directory = directory
        self.manager = manager
        self.stats = stats
        self.confirm = confirm
        self.system_identity_pattern = (
            config.SYSTEM_IDENTITY_PATTERN if system_identity_pattern is None else system_identity_pattern
        )
        self._now = now

    def run(self, name: str) -> PrecheckVerdict:
        results: List[CheckResult] = []

        def stop() -> PrecheckVerdict:
            failed = results[-1]
            log_event(
                "precheck_blocked",
                log_type="precheck",
                level="WARN",
                check=failed.check,
                reason_codes=[failed.code],
                message=failed.message,
            )
            return PrecheckVerdict(results=results)

        entity = self._check_exists(name, results)
        if entity is None:
            return stop()

        self._check_references(entity, results)
        if results[-1].outcome is CheckOutcome.FAIL_HARD:
            return stop()

        disconnects = self._check_statistics(entity, results)
        if results[-1].outcome in (CheckOutcome.FAIL_HARD, CheckOutcome.FAIL_SOFT):
            return stop()

        self._check_not_recovery(entity, results)
        if results[-1].outcome is CheckOutcome.FAIL_HARD:
            return stop()

        try:
            snapshot = capture(self.manager, entity)
        except TopologyUnavailableError as exc:
            results.append(_result("topology", CheckOutcome.FAIL_HARD, exc.code, exc.message))
            return stop()
        results.append(
            _result(
                "topology",
                CheckOutcome.PASS,
                "TOPOLOGY_CAPTURED",
                f"Captured {len(snapshot.copies)} passive cop{'y' if len(snapshot.copies) == 1 else 'ies'}",
            )
        )

        max_lag = snapshot.max_lag_days
        if snapshot.lagged_copies:
            lag_message = f"Lagged copies {[copy.name for copy in snapshot.lagged_copies]}, max lag {max_lag:g} days"
        else:
            lag_message = "No lagged copies"
        results.append(_result("lag", CheckOutcome.PASS, "LAG_ANALYZED", lag_message))

        window = safety_window_days(entity.retention_days, max_lag)
        last_disconnect = most_recent_disconnect(disconnects) if disconnects is not None else None
        self._check_safety_window(last_disconnect, window, results)
        if results[-1].outcome is CheckOutcome.FAIL_SOFT:
            return stop()

        context = RunContext(
            entity=entity,
            snapshot=snapshot,
            max_lag_days=max_lag,
            safety_window_days=window,
            most_recent_disconnect=last_disconnect,
        )
        log_event("precheck_passed", log_type="precheck", safety_window_days=window, max_lag_days=max_lag)
        return PrecheckVerdict(results=results, context=context)

    def _check_exists(self, name: str, results: List[CheckResult]) -> Optional[DatabaseRecord]:
        try:
            entity = self.manager.get_entity(name)
        except Exception as exc:
            results.append(
                _result(
                    "existence",
                    CheckOutcome.FAIL_HARD,
                    "ENTITY_LOOKUP_FAILED",
                    f"Looking up database '{name}' failed: {exc}",
                )
            )
            return None
        if entity is None:
            results.append(_result("existence", CheckOutcome.FAIL_HARD, "ENTITY_NOT_FOUND", f"Database '{name}' not found"))
            return None
        results.append(_result("existence", CheckOutcome.PASS, "ENTITY_FOUND", f"Database '{entity.name}' found"))
        return entity

    def _check_references(self, entity: DatabaseRecord, results: List[CheckResult]) -> None:
        try:
            identities = self.directory.find_referencing_identities(entity.name)
        except Exception as exc:
            results.append(
                _result(
                    "references",
                    CheckOutcome.FAIL_HARD,
                    "REFERENCE_LOOKUP_FAILED",
                    f"Directory lookup for references to '{entity.name}' failed: {exc}",
                )
            )
            return
        blocking = [identity for identity in identities if self._references(identity, entity.name)]
        if blocking:
            names = ", ".join(identity.name for identity in blocking)
            results.append(
                _result(
                    "references",
                    CheckOutcome.FAIL_HARD,
                    "LIVE_REFERENCES",
                    f"{len(blocking)} identities still reference '{entity.name}' and must be moved first: {names}",
                )
            )
            return
        results.append(_result("references", CheckOutcome.PASS, "NO_REFERENCES", "No identities reference the database"))

    def _references(self, identity: DirectoryIdentity, entity_name: str) -> bool:
        if self.system_identity_pattern and fnmatch.fnmatch(identity.name, self.system_identity_pattern):
            return False
        target = entity_name.lower()
        return (identity.home_entity or "").lower() == target or (identity.archive_entity or "").lower() == target

    def _check_statistics(
        self, entity: DatabaseRecord, results: List[CheckResult]
    ) -> Optional[Sequence[DisconnectRecord]]:
        if not entity.mounted:
            prompt = Prompt(
                kind=PromptKind.MISSING_STATISTICS,
                message=(
                    f"Database '{entity.name}' is dismounted so disconnect statistics cannot be read."
                    " Continue without them?"
                ),
            )
            if self.confirm(prompt):
                results.append(
                    _result(
                        "statistics",
                        CheckOutcome.OVERRIDDEN,
                        "STATISTICS_UNAVAILABLE",
                        "Database dismounted; operator chose to continue without statistics",
                    )
                )
            else:
                results.append(
                    _result(
                        "statistics",
                        CheckOutcome.FAIL_SOFT,
                        "STATISTICS_UNAVAILABLE",
                        "Database dismounted; disconnect statistics unavailable",
                    )
                )
            return None
        try:
            records = list(self.stats.get_disconnected_stats(entity.name))
        except Exception as exc:
            results.append(
                _result(
                    "statistics",
                    CheckOutcome.FAIL_HARD,
                    "STATISTICS_FAILED",
                    f"Reading disconnect statistics failed: {exc}",
                )
            )
            return None
        results.append(
            _result("statistics", CheckOutcome.PASS, "STATISTICS_COLLECTED", f"{len(records)} disconnect records")
        )
        return records

    def _check_not_recovery(self, entity: DatabaseRecord, results: List[CheckResult]) -> None:
        if entity.recovery:
            results.append(
                _result(
                    "recovery",
                    CheckOutcome.FAIL_HARD,
                    "RECOVERY_DATABASE",
                    f"'{entity.name}' is a recovery database and cannot be recreated",
                )
            )
            return
        results.append(_result("recovery", CheckOutcome.PASS, "NOT_RECOVERY", "Not a recovery database"))

    def _check_safety_window(
        self, last_disconnect: Optional[datetime], window: float, results: List[CheckResult]
    ) -> None:
        if last_disconnect is None:
            results.append(
                _result(
                    "safety_window",
                    CheckOutcome.PASS,
                    "NO_DISCONNECTS",
                    f"No disconnect timestamps; safety window of {window:g} days not applicable",
                )
            )
            return
        if not within_safety_window(last_disconnect, window, self._now()):
            results.append(
                _result(
                    "safety_window",
                    CheckOutcome.PASS,
                    "OUTSIDE_SAFETY_WINDOW",
                    f"Last disconnect {last_disconnect.isoformat()} is older than {window:g} days",
                )
            )
            return
        safe_date = safe_after(last_disconnect, window)
        message = (
            f"Content was disconnected on {last_disconnect.isoformat()}, inside the {window:g} day safety window."
            f" It is safe to recreate after {safe_date.isoformat()}."
        )
        if self.confirm(Prompt(kind=PromptKind.SAFETY_WINDOW, message=message + " Continue anyway?")):
            results.append(_result("safety_window", CheckOutcome.OVERRIDDEN, "INSIDE_SAFETY_WINDOW", message))
        else:
            results.append(_result("safety_window", CheckOutcome.FAIL_SOFT, "INSIDE_SAFETY_WINDOW", message))


def _result(check: str, outcome: CheckOutcome, code: str, message: str) -> CheckResult:
    return CheckResult(check=check, outcome=outcome, code=code, message=message)
