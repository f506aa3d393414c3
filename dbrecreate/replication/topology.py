from __future__ import annotations

from typing import List, Sequence

from dbrecreate.core.exceptions import TopologyUnavailableError
from dbrecreate.core.interfaces import EntityManager
from dbrecreate.core.logging import log_event
from dbrecreate.core.models import DatabaseRecord, ReplicaCopy, TopologyRow, TopologySnapshot
from dbrecreate.core.utils import utc_now


def capture(manager: EntityManager, entity: DatabaseRecord) -> TopologySnapshot:
    """Snapshot every copy except the one hosted on the mounted-on server."""
    try:
        listed = list(manager.get_copies(entity.name))
    except Exception as exc:
        raise TopologyUnavailableError(f"Listing copies of '{entity.name}' failed: {exc}") from exc

    copies = tuple(copy.model_copy() for copy in listed if copy.server.lower() != entity.server.lower())
    snapshot = TopologySnapshot(entity=entity.name, copies=copies, captured_at=utc_now())
    log_event(
        "topology_captured",
        log_type="precheck",
        copies=[copy.name for copy in snapshot.copies],
        max_lag_days=snapshot.max_lag_days,
    )
    return snapshot


def topology_rows(copies: Sequence[ReplicaCopy]) -> List[TopologyRow]:
    return [
        TopologyRow(
            name=copy.name,
            status=copy.status,
            activation_preference=copy.activation_preference,
            lag_days=copy.lag_days if copy.lag_enabled else 0,
            activation_suspended=copy.activation_suspended,
        )
        for copy in sorted(copies, key=lambda item: item.activation_preference)
    ]


def find_mismatches(snapshot: TopologySnapshot, current: Sequence[ReplicaCopy]) -> List[str]:
    """Captured copies with no live counterpart on the same host, preference and lag."""
    by_server = {copy.server.lower(): copy for copy in current}
    problems: List[str] = []
    for expected in snapshot.copies:
        live = by_server.get(expected.server.lower())
        if live is None:
            problems.append(f"{expected.name}: copy missing after restoration")
            continue
        if live.activation_preference != expected.activation_preference:
            problems.append(
                f"{expected.name}: activation preference {live.activation_preference}"
                f" != captured {expected.activation_preference}"
            )
        if live.lag_enabled != expected.lag_enabled or live.lag_days != expected.lag_days:
            problems.append(
                f"{expected.name}: lag {live.lag_days}d (enabled={live.lag_enabled})"
                f" != captured {expected.lag_days}d (enabled={expected.lag_enabled})"
            )
    return problems
