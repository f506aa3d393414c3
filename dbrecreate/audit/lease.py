from __future__ import annotations

import fcntl
import os
import re
from pathlib import Path
from types import TracebackType
from typing import IO, Optional, Type

from dbrecreate.core.exceptions import RunInProgressError
from dbrecreate.core.logging import get_run_id, log_event


class EntityLease:
    """Exclusive flock held on a per-entity lock file for the whole of one run.

    The lock file itself is left in place on release. Only the flock marks a
    run as in progress, and the OS drops it when the holding process dies.
    """

    def __init__(self, lock_dir: str, entity: str) -> None:
        safe_name = re.sub(r"[^A-Za-z0-9_.-]", "_", entity.lower())
        self.entity = entity
        self.path = Path(lock_dir) / f"{safe_name}.lock"
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+", encoding="utf-8")
        try:
            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            handle.close()
            raise RunInProgressError(self.entity) from exc
        handle.seek(0)
        handle.truncate()
        handle.write(f"{get_run_id() or ''} {os.getpid()}\n")
        handle.flush()
        self._handle = handle
        log_event("lease_acquired", log_type="audit", lock=str(self.path))

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle, fcntl.LOCK_UN)
        except OSError as exc:
            log_event("lease_release_failed", log_type="audit", level="WARN", lock=str(self.path), error=str(exc))
        self._handle.close()
        self._handle = None
        log_event("lease_released", log_type="audit", lock=str(self.path))

    def __enter__(self) -> "EntityLease":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()
