from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import PurePosixPath, PureWindowsPath


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    return utc_now().isoformat()


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days(value: float) -> timedelta:
    return timedelta(days=value)


def parent_directory(path: str) -> str:
    # Management hosts report Windows paths; anything without a backslash is POSIX.
    if "\\" in path:
        return str(PureWindowsPath(path).parent)
    return str(PurePosixPath(path).parent)
