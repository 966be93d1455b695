"""
Pydantic models for facility config snapshots and engine bookkeeping.

``FacilityConfig`` mirrors the subset of the Facility Registry response
the engine relies on. Unknown registry fields are kept (``extra="allow"``)
so the persisted snapshot round-trips without loss. Field names follow
Python style; the registry's camelCase names are accepted as aliases and
used again when the snapshot is serialized.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DataPoint(BaseModel):
    """A time series a facility declares it streams.

    Attributes:
        measurement: Influx measurement (``facility``, ``rack``, ``server``).
        field: Metric name with unit suffix.
        granularity_seconds: Sampling granularity in seconds.
        tags: Tag set written with every sample.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    measurement: str
    field: str
    granularity_seconds: int | None = Field(default=None, alias="granularitySeconds")
    tags: dict[str, str] = Field(default_factory=dict)


class TimeSeriesConfig(BaseModel):
    """InfluxDB connection descriptor for one facility.

    Attributes:
        endpoint: InfluxDB URL including port.
        org: InfluxDB organization.
        bucket: Bucket holding the facility's samples.
        token: Facility-scoped write token.
        data_points: Series the facility declares it streams.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    endpoint: str
    org: str
    bucket: str
    token: str
    data_points: list[DataPoint] = Field(default_factory=list, alias="dataPoints")

    @field_validator("endpoint", "org", "bucket", "token")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        """Connection fields must be non-empty."""
        if not v.strip():
            raise ValueError("time series connection fields must not be empty")
        return v


class FacilityConfig(BaseModel):
    """Facility Registry snapshot taken when an engine is started.

    Attributes:
        id: Facility identifier (``FACILITY-<COUNTRY>-<N>``).
        country_code: ISO 3166-1 alpha-3 country code.
        time_series_config: Connection info for the facility's bucket.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    country_code: str = Field(alias="countryCode")
    time_series_config: TimeSeriesConfig = Field(alias="timeSeriesConfig")

    def tags(self, facility_id: str | None = None) -> dict[str, str]:
        """Tag set identifying this facility's series."""
        return {
            "facility_id": facility_id or self.id,
            "country_code": self.country_code,
        }

    def to_snapshot(self) -> dict:
        """Serialize to the registry's JSON shape for durable storage."""
        return self.model_dump(mode="json", by_alias=True)


class LastCalculation(BaseModel):
    """Bookkeeping persisted after every completed cycle.

    Attributes:
        timestamp: Wall-clock end of the last completed cycle (epoch ms).
        facility_id: Owning facility.
        config: Config snapshot used for the cycle.
        is_initial: Whether the cycle was the initial one run by ``start``.
    """

    model_config = ConfigDict(populate_by_name=True)

    timestamp: int
    facility_id: str = Field(alias="facilityId")
    config: FacilityConfig
    is_initial: bool = Field(default=False, alias="isInitial")


class CycleResult(BaseModel):
    """Outcome of one calculation cycle.

    Attributes:
        start: Window start (epoch ms, inclusive).
        stop: Window stop (epoch ms, exclusive).
        available: Required metrics with at least one sample.
        missing: Required metrics with no samples (or a failed check).
        kwh_results: Energy per integrated watts metric, in kWh.
        counter_value: Cumulative counter written this cycle, if any.
    """

    start: int
    stop: int
    available: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    kwh_results: dict[str, float] = Field(default_factory=dict)
    counter_value: float | None = None
