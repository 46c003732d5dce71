"""Process-wide logging setup and secret redaction helpers."""

from __future__ import annotations

import logging
from typing import Any

_CONFIGURED = False

_SENSITIVE_KEYS = {"api_token", "instance_password", "password", "authorization"}


def configure_logging(level: str = "INFO") -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    _CONFIGURED = True


def redact(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with secret values masked."""
    redacted: dict[str, Any] = {}
    for key, value in data.items():
        if key.lower() in _SENSITIVE_KEYS and value:
            redacted[key] = "***"
        elif isinstance(value, dict):
            redacted[key] = redact(value)
        else:
            redacted[key] = value
    return redacted
