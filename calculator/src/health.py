"""
Calculator health check reporting per-facility engine status.

Exposes ``get_health_status()`` which summarizes every engine known to
the :class:`~calculator.src.dispatcher.CalculatorService`: last completed
cycle, next alarm, last cycle result and scheduling-thread liveness. Also
provides ``write_health_file()`` for Docker healthcheck integration via a
JSON file on disk.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from calculator.src.engine import from_epoch_ms

logger = logging.getLogger(__name__)

# Default health file path (inside the Docker volume).
HEALTH_FILE_PATH = "/data/health.json"


def _iso(ms: int | None) -> str | None:
    return from_epoch_ms(ms).isoformat() if ms is not None else None


def _engine_status(service: Any, instance_key: str, engine: Any) -> dict[str, Any]:
    last = engine.last_calculation()
    result = engine.last_result
    return {
        "facility_id": engine.facility_id,
        "running": service.is_running(instance_key),
        "last_calculation": _iso(last.timestamp if last is not None else None),
        "next_alarm": _iso(engine.get_alarm()),
        "last_cycle": (
            {
                "available": len(result.available),
                "missing": result.missing,
                "counter_value": result.counter_value,
            }
            if result is not None
            else None
        ),
    }


def get_health_status(service: Any) -> dict[str, Any]:
    """Build a health status dict for the calculator daemon.

    Engines whose status cannot be read are reported with an ``error``
    entry instead of failing the whole check.

    Args:
        service: The CalculatorService (must have ``engines()`` and
            ``is_running()``).

    Returns:
        Dict with a ``facilities`` map and a ``checked_at`` timestamp.
    """
    facilities: dict[str, Any] = {}
    for instance_key, engine in sorted(service.engines().items()):
        try:
            facilities[instance_key] = _engine_status(service, instance_key, engine)
        except Exception:
            logger.warning(
                "Health check: failed to read state of %s",
                instance_key,
                exc_info=True,
            )
            facilities[instance_key] = {"error": "state unavailable"}

    return {
        "facilities": facilities,
        "engine_count": len(facilities),
        "checked_at": datetime.now(tz=UTC).isoformat(),
    }


def write_health_file(service: Any, path: str = HEALTH_FILE_PATH) -> None:
    """Write health status to a JSON file for Docker healthcheck.

    Errors during write are logged but not raised.

    Args:
        service: The CalculatorService.
        path: Filesystem path for the health file.
    """
    try:
        status = get_health_status(service)
        Path(path).write_text(json.dumps(status), encoding="utf-8")
    except Exception:
        logger.warning("Health check: failed to write health file", exc_info=True)
