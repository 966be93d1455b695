"""
Calculator daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
Per-facility time-series connection info is NOT configured here; it comes
from the Facility Registry snapshot handed to the dispatcher. Only the
shared read credential and the daemon's own knobs live in the environment.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings


class CalculatorSettings(BaseSettings):
    """Impact calculator daemon configuration.

    Attributes:
        influx_read_token: Shared InfluxDB read token used for every
            facility's queries. Write tokens are facility-scoped and come
            from the registry config.
        state_path: SQLite file holding durable engine state.
        registry_base_url: Facility Registry base URL (must be HTTPS).
        registry_api_key: Optional bearer token for the registry.
        facility_ids: Comma-separated facility IDs dispatched at startup.
        starting_point: Epoch-ms starting point for startup dispatch
            (``0`` means "use the default lookback window").
        calculation_interval_s: Seconds between calculation cycles.
        counter_lookback_days: Lookback window for the cumulative counter's
            last-value lookup.
        health_path: JSON health file path for the Docker healthcheck.
    """

    influx_read_token: str
    state_path: str = "/data/calculator-state.db"
    registry_base_url: str = "https://registrar.svc.nadiki.work"
    registry_api_key: str = ""
    facility_ids: str = ""
    starting_point: int = 0
    calculation_interval_s: int = 900
    counter_lookback_days: int = 30
    health_path: str = "/data/health.json"

    @field_validator("registry_base_url")
    @classmethod
    def registry_base_url_must_be_https(cls, v: str) -> str:
        """Reject plain-HTTP registry URLs at startup."""
        if not v.startswith("https://"):
            raise ValueError(
                "REGISTRY_BASE_URL must use HTTPS (got: "
                f"'{v[:20]}...')."
            )
        return v

    @field_validator("calculation_interval_s")
    @classmethod
    def interval_must_be_positive(cls, v: int) -> int:
        """Validate calculation interval is at least 1 second."""
        if v < 1:
            raise ValueError("CALCULATION_INTERVAL_S must be >= 1")
        return v

    @field_validator("counter_lookback_days")
    @classmethod
    def lookback_must_be_positive(cls, v: int) -> int:
        """Validate counter lookback is at least 1 day."""
        if v < 1:
            raise ValueError("COUNTER_LOOKBACK_DAYS must be >= 1")
        return v

    @field_validator("starting_point")
    @classmethod
    def starting_point_not_negative(cls, v: int) -> int:
        """Validate starting point is 0 (sentinel) or a positive epoch-ms."""
        if v < 0:
            raise ValueError("STARTING_POINT must be >= 0")
        return v

    @property
    def facility_id_list(self) -> list[str]:
        """Parsed, de-duplicated list of startup facility IDs."""
        ids: list[str] = []
        for raw in self.facility_ids.split(","):
            facility_id = raw.strip()
            if facility_id and facility_id not in ids:
                ids.append(facility_id)
        return ids

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
