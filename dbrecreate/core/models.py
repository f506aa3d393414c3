from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field


class CopyStatus(str, Enum):
    UNKNOWN = "Unknown"
    INITIALIZING = "Initializing"
    SUSPENDED = "Suspended"
    SEEDING = "Seeding"
    FAILED = "Failed"
    HEALTHY = "Healthy"


class DatabaseRecord(BaseModel):
    name: str
    mounted: bool
    recovery: bool = False
    retention_days: float = 0
    circular_logging: bool = False
    provisioning_excluded: bool = False
    server: str
    edb_file_path: str
    log_folder_path: str


class ReplicaCopy(BaseModel):
    name: str
    server: str
    activation_preference: int
    lag_enabled: bool = False
    lag_days: float = 0
    status: CopyStatus = CopyStatus.UNKNOWN
    activation_suspended: bool = False


class DirectoryIdentity(BaseModel):
    name: str
    home_entity: Optional[str] = None
    archive_entity: Optional[str] = None


class DisconnectRecord(BaseModel):
    identity: str
    disconnect_date: datetime


class TopologySnapshot(BaseModel):
    entity: str
    copies: Tuple[ReplicaCopy, ...] = ()
    captured_at: datetime

    model_config = {"frozen": True}

    @property
    def lagged_copies(self) -> List[ReplicaCopy]:
        return [copy for copy in self.copies if copy.lag_enabled]

    @property
    def max_lag_days(self) -> float:
        lags = [copy.lag_days for copy in self.lagged_copies]
        return max(lags) if lags else 0

    def is_empty(self) -> bool:
        return not self.copies


class CheckOutcome(str, Enum):
    PASS = "pass"
    FAIL_HARD = "fail_hard"
    FAIL_SOFT = "fail_soft"
    OVERRIDDEN = "overridden"


class CheckResult(BaseModel):
    check: str
    outcome: CheckOutcome
    code: str
    message: str


class PromptKind(str, Enum):
    MISSING_STATISTICS = "missing_statistics"
    SAFETY_WINDOW = "safety_window"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class Prompt:
    kind: PromptKind
    message: str


@dataclass(frozen=True)
class RunContext:
    entity: DatabaseRecord
    snapshot: TopologySnapshot
    max_lag_days: float
    safety_window_days: float
    most_recent_disconnect: Optional[datetime] = None


@dataclass(frozen=True)
class PrecheckVerdict:
    results: List[CheckResult]
    context: Optional[RunContext] = None

    @property
    def passed(self) -> bool:
        return all(result.outcome in (CheckOutcome.PASS, CheckOutcome.OVERRIDDEN) for result in self.results)

    @property
    def failed_check(self) -> Optional[CheckResult]:
        for result in self.results:
            if result.outcome in (CheckOutcome.FAIL_HARD, CheckOutcome.FAIL_SOFT):
                return result
        return None


class StepFailure(BaseModel):
    step: str
    code: str
    message: str
    copy_name: Optional[str] = None


class TopologyRow(BaseModel):
    name: str
    status: CopyStatus
    activation_preference: int
    lag_days: float
    activation_suspended: bool


class TopologyReport(BaseModel):
    run_id: str
    entity: str
    before: List[TopologyRow] = Field(default_factory=list)
    after: List[TopologyRow] = Field(default_factory=list)


class RunSummary(BaseModel):
    run_id: str
    entity: str
    decision: str
    checks: List[CheckResult] = Field(default_factory=list)
    phases: List[str] = Field(default_factory=list)
    failures: List[StepFailure] = Field(default_factory=list)
    manual_actions: List[str] = Field(default_factory=list)
    report: Optional[TopologyReport] = None
    error: Optional[str] = None
    timestamp: str


class AuditRecord(BaseModel):
    run_id: str
    entity: str
    decision: str
    reasons: List[str]
    timestamp: str
    failed_step: Optional[str] = None
    phases: List[str] = Field(default_factory=list)
