from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError

from dbrecreate.core.exceptions import MalformedInputError


API_TOKEN = os.getenv("API_TOKEN", "dev-token")
AUDIT_LOG_PATH = os.getenv("AUDIT_LOG_PATH", "data/audit.log")
LOCK_DIR = os.getenv("LOCK_DIR", "data/locks")
SETTINGS_PATH = os.getenv("SETTINGS_PATH", "")

POLL_TIMEOUT_SECONDS = float(os.getenv("POLL_TIMEOUT_SECONDS", "300"))
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "5"))
SEED_TIMEOUT_SECONDS = float(os.getenv("SEED_TIMEOUT_SECONDS", "3600"))

SYSTEM_IDENTITY_PATTERN = os.getenv("SYSTEM_IDENTITY_PATTERN", "HealthMailbox*")

MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "http://minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() == "true"
REPORT_BUCKET = os.getenv("REPORT_BUCKET", "db-recreate-reports")


class RecreateSettings(BaseModel):
    poll_timeout_seconds: float = POLL_TIMEOUT_SECONDS
    poll_interval_seconds: float = POLL_INTERVAL_SECONDS
    seed_timeout_seconds: float = SEED_TIMEOUT_SECONDS
    system_identity_pattern: str = SYSTEM_IDENTITY_PATTERN
    lock_dir: str = LOCK_DIR


def load_settings(path: str | None = None) -> RecreateSettings:
    """Environment defaults, optionally overridden by a YAML settings file."""
    path = path if path is not None else SETTINGS_PATH
    if not path:
        return RecreateSettings()
    try:
        raw = Path(path).read_bytes()
    except OSError as exc:
        raise MalformedInputError(f"Settings file not readable: {path}", "SETTINGS_UNREADABLE") from exc
    try:
        parsed = yaml.safe_load(raw.decode("utf-8"))
    except (UnicodeDecodeError, yaml.YAMLError) as exc:
        raise MalformedInputError("Failed to parse settings YAML", "PARSE_ERROR") from exc
    if parsed is None:
        return RecreateSettings()
    if not isinstance(parsed, dict):
        raise MalformedInputError("settings must be a YAML object", "SCHEMA_INVALID")
    try:
        return RecreateSettings(**parsed)
    except ValidationError as exc:
        raise MalformedInputError("settings schema invalid", "SCHEMA_INVALID") from exc
