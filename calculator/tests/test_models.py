"""
Unit tests for facility config snapshots and engine bookkeeping models.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

import pytest
from calculator.src.models import FacilityConfig, LastCalculation
from pydantic import ValidationError


class TestFacilityConfig:
    """Registry JSON is accepted and round-trips through snapshots."""

    def test_parses_registry_shape(self, facility_config: dict) -> None:
        config = FacilityConfig.model_validate(facility_config)

        assert config.id == "F1"
        assert config.country_code == "NLD"
        ts = config.time_series_config
        assert ts.endpoint == "https://influx.example.com:8086"
        assert ts.bucket == "FACILITY-NLD-001"
        assert ts.data_points[0].field == "grid_transformers_avg_watts"
        assert ts.data_points[0].granularity_seconds == 60

    def test_snapshot_round_trip_keeps_unknown_fields(self, facility_config: dict) -> None:
        snapshot = FacilityConfig.model_validate(facility_config).to_snapshot()

        assert snapshot["countryCode"] == "NLD"
        assert snapshot["timeSeriesConfig"]["dataPoints"][0]["granularitySeconds"] == 60
        assert snapshot["location"] == {"city": "Amsterdam"}
        assert FacilityConfig.model_validate(snapshot) == FacilityConfig.model_validate(
            facility_config
        )

    def test_tags(self, facility_config: dict) -> None:
        config = FacilityConfig.model_validate(facility_config)

        assert config.tags() == {"facility_id": "F1", "country_code": "NLD"}
        assert config.tags("F9") == {"facility_id": "F9", "country_code": "NLD"}

    def test_missing_time_series_config_rejected(self, facility_config: dict) -> None:
        del facility_config["timeSeriesConfig"]
        with pytest.raises(ValidationError):
            FacilityConfig.model_validate(facility_config)

    def test_blank_bucket_rejected(self, facility_config: dict) -> None:
        facility_config["timeSeriesConfig"]["bucket"] = "  "
        with pytest.raises(ValidationError):
            FacilityConfig.model_validate(facility_config)


class TestLastCalculation:
    """Bookkeeping serializes with the persisted camelCase keys."""

    def test_dump_uses_aliases(self, facility_config: dict) -> None:
        last = LastCalculation(
            timestamp=1_792_238_400_000,
            facility_id="F1",
            config=FacilityConfig.model_validate(facility_config),
            is_initial=False,
        )
        dumped = last.model_dump(mode="json", by_alias=True)

        assert dumped["timestamp"] == 1_792_238_400_000
        assert dumped["facilityId"] == "F1"
        assert dumped["isInitial"] is False
        assert LastCalculation.model_validate(dumped) == last
