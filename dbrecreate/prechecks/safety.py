from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from dbrecreate.core.models import DisconnectRecord
from dbrecreate.core.utils import days, ensure_aware


def safety_window_days(retention_days: float, max_lag_days: float) -> float:
    return max(retention_days, max_lag_days)


def most_recent_disconnect(records: Iterable[DisconnectRecord]) -> Optional[datetime]:
    stamps = [ensure_aware(record.disconnect_date) for record in records]
    return max(stamps) if stamps else None


def safe_after(last_disconnect: datetime, window_days: float) -> datetime:
    return ensure_aware(last_disconnect) + days(window_days)


def within_safety_window(last_disconnect: Optional[datetime], window_days: float, now: datetime) -> bool:
    """True while content disconnected inside the window could still be reconnected.

    A disconnect exactly ``window_days`` ago is still inside the window.
    """
    if last_disconnect is None:
        return False
    return ensure_aware(last_disconnect) >= ensure_aware(now) - days(window_days)
