"""
Facility metric allow-list and derived-field constants.

Every field name the engine reads is a member of :class:`FacilityMetric`,
a closed enumeration mirroring the facility data points published by the
Facility Registry. A typo in a metric name therefore fails at import time
instead of silently querying an empty series.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

from enum import StrEnum

# Measurement holding every facility-level series (raw and derived).
FACILITY_MEASUREMENT = "facility"

# Derived cumulative counter written by the engine, in kWh.
TOTAL_PRIMARY_ENERGY_USE_FIELD = "total_primary_energy_use"

# Field-name suffix marking a power series sampled as average watts.
_WATTS_SUFFIX = "_avg_watts"


class FacilityMetric(StrEnum):
    """Facility-level fields published under measurement ``facility``."""

    HEATPUMP_AVG_WATTS = "heatpump_avg_watts"
    OFFICE_AVG_WATTS = "office_avg_watts"
    TOTAL_GENERATOR_AVG_WATTS = "total_generator_avg_watts"
    GRID_TRANSFORMERS_AVG_WATTS = "grid_transformers_avg_watts"
    ONSITE_RENEWABLE_ENERGY_AVG_WATTS = "onsite_renewable_energy_avg_watts"
    IT_POWER_USAGE_LEVEL1_AVG_WATTS = "it_power_usage_level1_avg_watts"
    IT_POWER_USAGE_LEVEL2_AVG_WATTS = "it_power_usage_level2_avg_watts"
    RENEWABLE_ENERGY_CERTIFICATES_WATTS = "renewable_energy_certificates_watts"
    GENERATOR_LOAD_FACTOR_RATIO = "generator_load_factor_ratio"
    GRID_EMISSION_FACTOR_GRAMS = "grid_emission_factor_grams"
    BACKUP_EMISSION_FACTOR_GRAMS = "backup_emission_factor_grams"
    PUE_1_RATIO = "pue_1_ratio"
    PUE_2_RATIO = "pue_2_ratio"
    DC_WATER_USAGE_CUBIC_METERS = "dc_water_usage_cubic_meters"
    OFFICE_WATER_USAGE_CUBIC_METERS = "office_water_usage_cubic_meters"
    ELECTRICITY_SOURCE = "electricity_source"


# The grid-transformer feed drives the primary energy counter.
GRID_TRANSFORMER_METRIC = FacilityMetric.GRID_TRANSFORMERS_AVG_WATTS

# Metrics that must be present for a complete cycle, in query order:
# power series first, then PUE, then emission factors.
REQUIRED_METRICS: tuple[FacilityMetric, ...] = (
    FacilityMetric.GRID_TRANSFORMERS_AVG_WATTS,
    FacilityMetric.ONSITE_RENEWABLE_ENERGY_AVG_WATTS,
    FacilityMetric.TOTAL_GENERATOR_AVG_WATTS,
    FacilityMetric.IT_POWER_USAGE_LEVEL1_AVG_WATTS,
    FacilityMetric.IT_POWER_USAGE_LEVEL2_AVG_WATTS,
    FacilityMetric.HEATPUMP_AVG_WATTS,
    FacilityMetric.OFFICE_AVG_WATTS,
    FacilityMetric.PUE_1_RATIO,
    FacilityMetric.PUE_2_RATIO,
    FacilityMetric.GRID_EMISSION_FACTOR_GRAMS,
    FacilityMetric.BACKUP_EMISSION_FACTOR_GRAMS,
)


def is_watts_series(metric: FacilityMetric) -> bool:
    """Return whether *metric* is a power series in average watts."""
    return metric.value.endswith(_WATTS_SUFFIX)


def watts_metrics(metrics: list[FacilityMetric]) -> list[FacilityMetric]:
    """Return the members of *metrics* that can be integrated into kWh."""
    return [m for m in metrics if is_watts_series(m)]


def watts_to_kwh_per_minute(watts: float) -> float:
    """Energy of a 1-minute bucket at constant *watts*, in kWh."""
    return watts * (1 / 60) / 1000
