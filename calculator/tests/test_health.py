"""
Unit tests for the calculator health check module.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

from calculator.src.health import get_health_status, write_health_file
from calculator.src.models import CycleResult, FacilityConfig, LastCalculation

T_MS = 1_792_238_400_000  # 2026-10-17T12:00:00Z


def _mock_engine(facility_config: dict, *, started: bool = True) -> MagicMock:
    engine = MagicMock()
    if not started:
        engine.facility_id = None
        engine.last_calculation.return_value = None
        engine.get_alarm.return_value = None
        engine.last_result = None
        return engine
    engine.facility_id = "F1"
    engine.last_calculation.return_value = LastCalculation(
        timestamp=T_MS,
        facility_id="F1",
        config=FacilityConfig.model_validate(facility_config),
    )
    engine.get_alarm.return_value = T_MS + 900_000
    engine.last_result = CycleResult(
        start=T_MS - 900_000,
        stop=T_MS,
        available=["grid_transformers_avg_watts"],
        missing=["office_avg_watts", "pue_1_ratio"],
        kwh_results={"grid_transformers_avg_watts": 1.5},
        counter_value=11.5,
    )
    return engine


def _mock_service(engines: dict, running: bool = True) -> MagicMock:
    service = MagicMock()
    service.engines.return_value = engines
    service.is_running.return_value = running
    return service


class TestGetHealthStatus:
    """Health status summarizes every engine."""

    def test_started_engine(self, facility_config: dict) -> None:
        service = _mock_service({"facility-F1": _mock_engine(facility_config)})

        status = get_health_status(service)

        assert status["engine_count"] == 1
        entry = status["facilities"]["facility-F1"]
        assert entry["facility_id"] == "F1"
        assert entry["running"] is True
        assert entry["last_calculation"] == "2026-10-17T12:00:00+00:00"
        assert entry["next_alarm"] == "2026-10-17T12:15:00+00:00"
        assert entry["last_cycle"] == {
            "available": 1,
            "missing": ["office_avg_watts", "pue_1_ratio"],
            "counter_value": 11.5,
        }
        assert "checked_at" in status

    def test_unstarted_engine(self, facility_config: dict) -> None:
        service = _mock_service(
            {"facility-F2": _mock_engine(facility_config, started=False)}, running=False,
        )

        entry = get_health_status(service)["facilities"]["facility-F2"]

        assert entry == {
            "facility_id": None,
            "running": False,
            "last_calculation": None,
            "next_alarm": None,
            "last_cycle": None,
        }

    def test_broken_engine_isolated(self, facility_config: dict) -> None:
        broken = MagicMock()
        broken.last_calculation.side_effect = RuntimeError("db locked")
        service = _mock_service(
            {"facility-F0": broken, "facility-F1": _mock_engine(facility_config)},
        )

        facilities = get_health_status(service)["facilities"]

        assert facilities["facility-F0"] == {"error": "state unavailable"}
        assert facilities["facility-F1"]["facility_id"] == "F1"

    def test_no_engines(self) -> None:
        status = get_health_status(_mock_service({}))

        assert status["facilities"] == {}
        assert status["engine_count"] == 0


class TestWriteHealthFile:
    """Health file is written for the Docker healthcheck."""

    def test_writes_json(self, tmp_path, facility_config: dict) -> None:
        path = tmp_path / "health.json"
        service = _mock_service({"facility-F1": _mock_engine(facility_config)})

        write_health_file(service, str(path))

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["engine_count"] == 1
        assert data["facilities"]["facility-F1"]["last_cycle"]["counter_value"] == 11.5

    def test_write_error_not_raised(self, tmp_path) -> None:
        service = _mock_service({})

        with patch("calculator.src.health.Path.write_text", side_effect=OSError("disk full")):
            write_health_file(service, str(tmp_path / "health.json"))
