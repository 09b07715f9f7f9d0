"""Startup-time helpers for safe config logging."""

from paysub.common.config import CommonSettings
from paysub.common.logging import logger

_SECRET_MARKERS = ("key", "secret", "password", "token", "database_url")


def _safe_value(name: str, value: object) -> object:
    """Redact settings whose name looks secret-like; report unset values."""

    if value is None or value == "":
        return "<unset>"
    if any(marker in name for marker in _SECRET_MARKERS):
        return "<redacted>"
    return value


def log_startup_config(config: CommonSettings, fields: list[str]) -> None:
    """Log selected settings for quick troubleshooting."""

    snapshot: dict[str, object] = {"service": config.service_name}
    for name in fields:
        snapshot[name] = _safe_value(name, getattr(config, name, None))
    logger.info("startup_config=%s", snapshot)
