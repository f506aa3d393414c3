from __future__ import annotations

import pytest

from dbrecreate.core.exceptions import DestructivePhaseError
from dbrecreate.core.models import CopyStatus
from dbrecreate.replication.lifecycle import CopyState, ReplicaLifecycleController
from dbrecreate.replication.topology import capture
from fakes import FakeEntityManager, make_copy, make_entity


def _setup(copies, poller):
    entity = make_entity("DB3")
    manager = FakeEntityManager(entity, copies)
    snapshot = capture(manager, entity)
    return manager, snapshot, ReplicaLifecycleController(manager, poller, seed_timeout=0)


def test_copies_are_restored_in_preference_order_one_at_a_time(instant_poller) -> None:
    manager, snapshot, controller = _setup(
        [make_copy("DB3", "MBX4", 3), make_copy("DB3", "MBX2", 1), make_copy("DB3", "MBX3", 2)], instant_poller
    )
    controller.remove_all(snapshot)
    manager.calls.clear()

    outcome = controller.restore_all(snapshot)

    assert outcome.failures == []
    assert [call[:2] for call in manager.mutations] == [
        ("add_copy", "DB3\\MBX2"),
        ("suspend_copy", "DB3\\MBX2"),
        ("seed_copy", "DB3\\MBX2"),
        ("add_copy", "DB3\\MBX3"),
        ("suspend_copy", "DB3\\MBX3"),
        ("seed_copy", "DB3\\MBX3"),
        ("add_copy", "DB3\\MBX4"),
        ("suspend_copy", "DB3\\MBX4"),
        ("seed_copy", "DB3\\MBX4"),
    ]
    assert set(outcome.states.values()) == {CopyState.SEEDED}


def test_add_uses_captured_configuration_with_seeding_postponed(instant_poller) -> None:
    manager, snapshot, controller = _setup([make_copy("DB3", "MBX2", 2, lag_days=7)], instant_poller)
    controller.remove_all(snapshot)

    controller.restore_all(snapshot)

    assert manager.calls_named("add_copy") == [("add_copy", "DB3\\MBX2", 2, 7, True)]
    assert manager.calls_named("seed_copy") == [("seed_copy", "DB3\\MBX2", True)]


def test_lagged_copy_ends_suspended_for_activation(instant_poller) -> None:
    manager, snapshot, controller = _setup(
        [make_copy("DB3", "MBX2", 1), make_copy("DB3", "MBX3", 2, lag_days=7)], instant_poller
    )
    controller.remove_all(snapshot)

    outcome = controller.restore_all(snapshot)

    assert outcome.states["DB3\\MBX3"] is CopyState.SUSPENDED_ACTIVATION_ONLY
    assert outcome.states["DB3\\MBX2"] is CopyState.SEEDED
    assert manager.calls_named("suspend_copy")[-1] == ("suspend_copy", "DB3\\MBX3", True)
    lagged = [copy for copy in manager.get_copies("DB3") if copy.server == "MBX3"][0]
    assert lagged.activation_suspended is True


def test_remove_failure_is_fatal(instant_poller) -> None:
    manager, snapshot, controller = _setup(
        [make_copy("DB3", "MBX2", 1), make_copy("DB3", "MBX3", 2)], instant_poller
    )
    manager.failures["remove_copy:DB3\\MBX2"] = RuntimeError("copy busy")

    with pytest.raises(DestructivePhaseError) as excinfo:
        controller.remove_all(snapshot)

    assert excinfo.value.phase == "remove_copies"
    assert manager.calls_named("remove_copy") == [("remove_copy", "DB3\\MBX2")]


def test_add_that_never_leaves_unknown_moves_on_to_next_copy(instant_poller) -> None:
    manager, snapshot, controller = _setup(
        [make_copy("DB3", "MBX2", 1), make_copy("DB3", "MBX3", 2)], instant_poller
    )
    controller.remove_all(snapshot)
    manager.add_status = CopyStatus.UNKNOWN

    outcome = controller.restore_all(snapshot)

    assert [failure.step for failure in outcome.failures] == ["add_copy", "add_copy"]
    assert manager.calls_named("suspend_copy") == []
    assert outcome.states == {"DB3\\MBX2": CopyState.ADDED, "DB3\\MBX3": CopyState.ADDED}


def test_lagged_copy_stuck_in_unknown_is_still_blocked_from_activation(instant_poller) -> None:
    manager, snapshot, controller = _setup([make_copy("DB3", "MBX2", 1, lag_days=7)], instant_poller)
    controller.remove_all(snapshot)
    manager.add_status = CopyStatus.UNKNOWN

    outcome = controller.restore_all(snapshot)

    assert [(failure.step, failure.code) for failure in outcome.failures] == [("add_copy", "CONVERGENCE_TIMEOUT")]
    assert manager.calls_named("seed_copy") == []
    assert manager.calls_named("suspend_copy") == [("suspend_copy", "DB3\\MBX2", True)]
    assert outcome.states["DB3\\MBX2"] is CopyState.SUSPENDED_ACTIVATION_ONLY
    live = [copy for copy in manager.get_copies("DB3") if copy.server == "MBX2"][0]
    assert live.lag_enabled is True
    assert live.activation_suspended is True


def test_add_error_is_isolated_to_that_copy(instant_poller) -> None:
    manager, snapshot, controller = _setup(
        [make_copy("DB3", "MBX2", 1), make_copy("DB3", "MBX3", 2)], instant_poller
    )
    controller.remove_all(snapshot)
    manager.failures["add_copy:DB3\\MBX2"] = RuntimeError("server not in DAG")

    outcome = controller.restore_all(snapshot)

    assert outcome.failures[0].code == "ADD_FAILED"
    assert outcome.states["DB3\\MBX2"] is CopyState.REMOVED
    assert outcome.states["DB3\\MBX3"] is CopyState.SEEDED


def test_seed_timeout_is_reported_and_lagged_copy_still_blocked(instant_poller) -> None:
    manager, snapshot, controller = _setup([make_copy("DB3", "MBX2", 1, lag_days=3)], instant_poller)
    controller.remove_all(snapshot)
    manager.seed_status = CopyStatus.SEEDING

    outcome = controller.restore_all(snapshot)

    assert [(failure.step, failure.code) for failure in outcome.failures] == [("seed_copy", "CONVERGENCE_TIMEOUT")]
    assert outcome.states["DB3\\MBX2"] is CopyState.SUSPENDED_ACTIVATION_ONLY


def test_suspend_that_reports_failed_is_non_fatal(instant_poller) -> None:
    manager, snapshot, controller = _setup([make_copy("DB3", "MBX2", 1)], instant_poller)
    controller.remove_all(snapshot)
    manager.suspend_status = CopyStatus.FAILED

    outcome = controller.restore_all(snapshot)

    assert [failure.step for failure in outcome.failures] == ["suspend_copy"]
    assert manager.calls_named("seed_copy") == [("seed_copy", "DB3\\MBX2", True)]
    assert outcome.states["DB3\\MBX2"] is CopyState.SEEDED


def test_empty_snapshot_touches_nothing(instant_poller) -> None:
    manager, snapshot, controller = _setup([], instant_poller)

    assert controller.remove_all(snapshot) == {}
    outcome = controller.restore_all(snapshot)

    assert outcome.states == {}
    assert manager.mutations == []
