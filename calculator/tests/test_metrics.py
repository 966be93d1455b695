"""
Unit tests for the facility metric allow-list.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

import pytest
from calculator.src.metrics import (
    GRID_TRANSFORMER_METRIC,
    REQUIRED_METRICS,
    FacilityMetric,
    is_watts_series,
    watts_metrics,
    watts_to_kwh_per_minute,
)


class TestAllowList:
    """The closed set of facility metrics."""

    def test_unknown_metric_name_rejected(self) -> None:
        """Names outside the allow-list do not resolve."""
        with pytest.raises(ValueError):
            FacilityMetric("grid_transformer_avg_watts")

    def test_required_metrics_are_unique(self) -> None:
        assert len(set(REQUIRED_METRICS)) == len(REQUIRED_METRICS)

    def test_grid_transformer_is_required(self) -> None:
        assert GRID_TRANSFORMER_METRIC in REQUIRED_METRICS

    def test_required_covers_power_pue_and_emission_factors(self) -> None:
        """Every required metric is a watts, PUE or emission-factor series."""
        for metric in REQUIRED_METRICS:
            assert (
                metric.value.endswith("_avg_watts")
                or metric.value.startswith("pue_")
                or metric.value.endswith("_emission_factor_grams")
            )


class TestWattsSeries:
    """Selection of series that integrate into energy."""

    @pytest.mark.parametrize(
        ("metric", "expected"),
        [
            (FacilityMetric.GRID_TRANSFORMERS_AVG_WATTS, True),
            (FacilityMetric.IT_POWER_USAGE_LEVEL1_AVG_WATTS, True),
            (FacilityMetric.RENEWABLE_ENERGY_CERTIFICATES_WATTS, False),
            (FacilityMetric.PUE_1_RATIO, False),
            (FacilityMetric.GRID_EMISSION_FACTOR_GRAMS, False),
        ],
    )
    def test_is_watts_series(self, metric: FacilityMetric, expected: bool) -> None:
        assert is_watts_series(metric) is expected

    def test_watts_metrics_preserves_order(self) -> None:
        metrics = [
            FacilityMetric.PUE_1_RATIO,
            FacilityMetric.OFFICE_AVG_WATTS,
            FacilityMetric.GRID_TRANSFORMERS_AVG_WATTS,
        ]
        assert watts_metrics(metrics) == [
            FacilityMetric.OFFICE_AVG_WATTS,
            FacilityMetric.GRID_TRANSFORMERS_AVG_WATTS,
        ]

    def test_one_minute_bucket_energy(self) -> None:
        """6000 W for one minute is 0.1 kWh."""
        assert watts_to_kwh_per_minute(6000.0) == pytest.approx(0.1)
        assert watts_to_kwh_per_minute(0.0) == 0.0
