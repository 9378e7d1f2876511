"""
Structured logging helpers for measure calculation runs.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """
    Emit one structured log line as compact JSON.
    """

    payload = {"event": event, **{name: _jsonable(value) for name, value in fields.items()}}
    logger.log(level, json.dumps(payload, default=str, sort_keys=True))


def _jsonable(value: Any) -> Any:
    # NaN is not valid JSON.
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value
