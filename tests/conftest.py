from __future__ import annotations

from datetime import timedelta

import pytest

from dbrecreate.core.config import RecreateSettings
from dbrecreate.core.interfaces import Services
from dbrecreate.core.utils import utc_now
from dbrecreate.replication.poller import ConvergencePoller
from fakes import FakeDirectory, FakeEntityManager, FakeFiles, FakeStats, ListReportSink, make_copy, make_entity


@pytest.fixture
def instant_poller() -> ConvergencePoller:
    return ConvergencePoller(timeout=0, interval=0)


@pytest.fixture
def settings(tmp_path) -> RecreateSettings:
    return RecreateSettings(
        poll_timeout_seconds=0,
        poll_interval_seconds=0,
        seed_timeout_seconds=0,
        lock_dir=str(tmp_path / "locks"),
    )


@pytest.fixture
def audit_path(tmp_path) -> str:
    return str(tmp_path / "audit.log")


@pytest.fixture
def build_services():
    def _build(
        entity=None,
        copies=(),
        identities=(),
        disconnected_days_ago=(),
        stats_error=None,
        files_error=None,
    ) -> Services:
        entity = entity if entity is not None else make_entity()
        manager = FakeEntityManager(entity, copies)
        now = utc_now()
        return Services(
            directory=FakeDirectory(identities),
            manager=manager,
            files=FakeFiles(manager, files_error),
            stats=FakeStats([now - timedelta(days=value) for value in disconnected_days_ago], stats_error),
            report_sink=ListReportSink(),
        )

    return _build


@pytest.fixture
def lagged_services(build_services) -> Services:
    entity = make_entity("DB2", retention_days=14, provisioning_excluded=True)
    copies = [make_copy("DB2", "MBX2", 2), make_copy("DB2", "MBX3", 3, lag_days=7)]
    return build_services(entity=entity, copies=copies, disconnected_days_ago=[60])
