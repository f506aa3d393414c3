from __future__ import annotations

import time
from typing import Callable, Optional

from dbrecreate.core import config
from dbrecreate.core.logging import log_event
from dbrecreate.core.metrics import CONVERGENCE_TIMEOUTS


class ConvergencePoller:
    """Waits for an eventually consistent read to reflect a write.

    The predicate must be a side-effect free read. Errors it raises are
    treated as "not converged yet" and retried until the deadline.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.timeout = config.POLL_TIMEOUT_SECONDS if timeout is None else timeout
        self.interval = config.POLL_INTERVAL_SECONDS if interval is None else interval
        self._clock = clock
        self._sleep = sleep

    def wait(
        self,
        predicate: Callable[[], bool],
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
        step: str = "poll",
    ) -> bool:
        timeout = self.timeout if timeout is None else timeout
        interval = self.interval if interval is None else interval
        deadline = self._clock() + timeout
        attempts = 0
        while True:
            attempts += 1
            try:
                if predicate():
                    return True
            except Exception as exc:
                log_event(
                    "poll_read_failed",
                    log_type="poll",
                    level="WARN",
                    step=step,
                    attempt=attempts,
                    error=str(exc),
                )
            if self._clock() >= deadline:
                break
            self._sleep(interval)
        CONVERGENCE_TIMEOUTS.labels(step=step).inc()
        log_event("poll_timeout", log_type="poll", level="WARN", step=step, attempts=attempts, timeout=timeout)
        return False
