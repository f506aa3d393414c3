from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

from dbrecreate.core import config
from dbrecreate.core.models import AuditRecord


def append_audit_record(record: AuditRecord, path: Optional[str] = None) -> None:
    target = Path(path or config.AUDIT_LOG_PATH)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("a", encoding="utf-8") as handle:
        handle.write(record.model_dump_json() + "\n")


def read_audit_logs(
    limit: Optional[int] = None,
    decision: Optional[str] = None,
    entity: Optional[str] = None,
    path: Optional[str] = None,
) -> List[AuditRecord]:
    target = Path(path or config.AUDIT_LOG_PATH)
    if not target.exists():
        return []
    records: List[AuditRecord] = []
    with target.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                record = AuditRecord(**json.loads(line))
            except json.JSONDecodeError:
                continue
            if decision and record.decision != decision:
                continue
            if entity and record.entity.lower() != entity.lower():
                continue
            records.append(record)
            if limit is not None and len(records) >= limit:
                break
    return records


def ensure_audit_log_ready(path: Optional[str] = None) -> None:
    target = Path(path or config.AUDIT_LOG_PATH)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("a", encoding="utf-8"):
        return
