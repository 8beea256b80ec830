"""Startup-time config summary with secrets redacted."""

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from orderpay.common.config import CommonSettings, settings
from orderpay.common.logging import logger


SECRET_MARKERS = ("secret", "password")


def _redact(name: str, value):
    if value is None or value == "":
        return "<unset>"
    if any(marker in name for marker in SECRET_MARKERS):
        return "<redacted>"
    if name.endswith("_url") and isinstance(value, str):
        try:
            return make_url(value).render_as_string(hide_password=True)
        except ArgumentError:
            return value
    return value


def startup_config(service_name: str, fields: list[str], source: CommonSettings = settings) -> dict:
    """Selected settings by field name; secret-like names and URL passwords are masked."""

    config = {"service": service_name}
    for name in fields:
        config[name] = _redact(name, getattr(source, name, None))
    return config


def log_startup_config(service_name: str, fields: list[str]) -> None:
    logger.info("startup_config=%s", startup_config(service_name, fields))
