"""Structured JSON log records for engine decisions."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Any, Dict, Optional


def _default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def log_json(
    logger: logging.Logger,
    event: str,
    payload: Dict[str, Any],
    *,
    level: int = logging.INFO,
) -> None:
    """Emit ``payload`` as a single sorted JSON line tagged with ``event``."""

    if not logger.isEnabledFor(level):
        return
    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True, default=_default)
    except (TypeError, ValueError):
        fallback = {
            "event": event,
            "error": "serialization_failed",
            "payload_repr": repr(payload),
        }
        message = json.dumps(fallback, ensure_ascii=False, sort_keys=True)
    logger.log(level, message)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once using ``ADAPTIVE_LOG_LEVEL`` by default."""

    if level is None:
        from env_validation import load_settings

        level = load_settings().log_level
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger().setLevel(numeric)
