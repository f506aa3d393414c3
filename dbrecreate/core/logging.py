from __future__ import annotations

import json
from contextvars import ContextVar
from typing import Any

from dbrecreate.core.utils import utc_timestamp

_run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)
_entity_var: ContextVar[str | None] = ContextVar("entity", default=None)
_phase_var: ContextVar[str | None] = ContextVar("phase", default=None)


def set_run_context(*, run_id: str, entity: str | None = None, phase: str | None = None) -> None:
    _run_id_var.set(run_id)
    _entity_var.set(entity)
    _phase_var.set(phase)


def update_run_context(*, entity: str | None = None, phase: str | None = None) -> None:
    if entity is not None:
        _entity_var.set(entity)
    if phase is not None:
        _phase_var.set(phase)


def get_run_id() -> str | None:
    return _run_id_var.get()


def log_stdout(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=True, default=str))


def log_event(
    event: str,
    *,
    log_type: str,
    level: str = "INFO",
    phase: str | None = None,
    **fields: Any,
) -> None:
    payload: dict[str, Any] = {
        "timestamp": utc_timestamp(),
        "level": level,
        "service": "db-recreate",
        "log_type": log_type,
        "run_id": _run_id_var.get(),
        "entity": _entity_var.get(),
        "phase": phase or _phase_var.get(),
        "event": event,
    }
    payload.update(fields)
    log_stdout(payload)
