"""
Shared test fixtures for calculator tests.

Provides an in-memory stand-in for the InfluxDB bucket (used as both the
read and the write handle), a controllable clock, a temporary state store
and a registry-shaped facility config.

CHANGELOG:
- 2026-10-17: Initial creation
- 2026-10-17: FakeBucket windows follow the epoch-minute grid

TODO:
- None
"""

from datetime import UTC, datetime, timedelta

import pytest
from calculator.src.state_store import StateStore

# All CalculatorSettings environment variable names, used for cleanup.
_ALL_CALCULATOR_ENV_VARS = (
    "INFLUX_READ_TOKEN",
    "STATE_PATH",
    "REGISTRY_BASE_URL",
    "REGISTRY_API_KEY",
    "FACILITY_IDS",
    "STARTING_POINT",
    "CALCULATION_INTERVAL_S",
    "COUNTER_LOOKBACK_DAYS",
    "HEALTH_PATH",
)

T0 = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeBucket:
    """In-memory facility bucket implementing the reader and writer API.

    ``samples`` maps field name to ``(time, value)`` pairs. Points written
    through ``write_point`` are appended to ``writes`` and also become
    samples, so ``last_value`` sees the engine's own counter writes.
    """

    def __init__(self) -> None:
        self.samples: dict[str, list[tuple[datetime, float]]] = {}
        self.writes: list[dict] = []
        self.fail_fields: set[str] = set()
        self.fail_window_fields: set[str] = set()
        self.fail_writes = False
        self.fail_last_value = False
        self.validation_windows: list[tuple[datetime, datetime]] = []
        self.window_queries: list[tuple[datetime, datetime]] = []
        self.closed = 0

    # -- seeding helpers ------------------------------------------------

    def add_constant(
        self, field: str, watts: float, start: datetime, minutes: int,
    ) -> None:
        """Add one sample per minute at constant *watts*."""
        series = self.samples.setdefault(field, [])
        for i in range(minutes):
            series.append((start + timedelta(minutes=i, seconds=30), watts))

    def add_sample(self, field: str, ts: datetime, value: float) -> None:
        self.samples.setdefault(field, []).append((ts, value))

    def counter_writes(self) -> list[float]:
        return [
            w["value"] for w in self.writes
            if w["field"] == "total_primary_energy_use"
        ]

    # -- reader API ------------------------------------------------------

    def has_samples(self, measurement, field, tags, start, stop) -> bool:
        self.validation_windows.append((start, stop))
        if field in self.fail_fields:
            raise RuntimeError(f"query failed for {field}")
        return any(start <= ts < stop for ts, _ in self.samples.get(field, []))

    def query_window(
        self, measurement, field, tags, start, stop, every="1m", aggregate="mean",
    ) -> list[tuple[datetime, float]]:
        """Emulate ``aggregateWindow(every: 1m, createEmpty: true)``.

        Windows sit on the epoch-minute grid and the first and last are
        clipped to the range, so an unaligned range yields partial rows.
        Each row is stamped with its (clipped) window stop.
        """
        self.window_queries.append((start, stop))
        if field in self.fail_window_fields:
            raise RuntimeError(f"window query failed for {field}")
        rows = []
        lo = start.replace(second=0, microsecond=0)
        while lo < stop:
            hi = lo + timedelta(minutes=1)
            win_lo, win_hi = max(lo, start), min(hi, stop)
            values = [v for ts, v in self.samples.get(field, []) if win_lo <= ts < win_hi]
            rows.append((win_hi, sum(values) / len(values) if values else 0.0))
            lo = hi
        return rows

    def last_value(self, measurement, field, tags, lookback_days) -> float | None:
        if self.fail_last_value:
            raise RuntimeError("last value lookup failed")
        series = self.samples.get(field, [])
        if not series:
            return None
        return max(series, key=lambda row: row[0])[1]

    # -- writer API ------------------------------------------------------

    def write_point(self, measurement, tags, field, value, ts) -> None:
        if self.fail_writes:
            raise RuntimeError("write failed")
        self.writes.append(
            {
                "measurement": measurement,
                "tags": dict(tags),
                "field": field,
                "value": value,
                "ts": ts,
            }
        )
        # Same series and timestamp overwrites, as InfluxDB does.
        series = [row for row in self.samples.get(field, []) if row[0] != ts]
        series.append((ts, value))
        self.samples[field] = series

    def close(self) -> None:
        self.closed += 1


@pytest.fixture(autouse=True)
def _clean_calculator_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all calculator env vars and isolate from .env files."""
    for var in _ALL_CALCULATOR_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def clock() -> FakeClock:
    """A clock frozen at T0 until advanced."""
    return FakeClock()


@pytest.fixture()
def bucket() -> FakeBucket:
    """Empty in-memory facility bucket."""
    return FakeBucket()


@pytest.fixture()
def handle_factory(bucket: FakeBucket):
    """Handle factory returning the fake bucket as reader and writer.

    The factory records every ``(ts_config, read_token)`` call on
    ``factory.calls``.
    """

    def factory(ts_config, read_token):
        factory.calls.append((ts_config, read_token))
        return bucket, bucket

    factory.calls = []
    return factory


@pytest.fixture()
def store(tmp_path) -> StateStore:
    """State store in a temporary SQLite file."""
    state = StateStore(path=tmp_path / "state.db")
    yield state
    state.close()


@pytest.fixture()
def facility_config() -> dict:
    """Registry-shaped config for facility F1."""
    return {
        "id": "F1",
        "countryCode": "NLD",
        "location": {"city": "Amsterdam"},
        "installedCapacity": 2_000_000.0,
        "timeSeriesConfig": {
            "endpoint": "https://influx.example.com:8086",
            "org": "leitmotiv",
            "bucket": "FACILITY-NLD-001",
            "token": "facility-write-token",
            "dataPoints": [
                {
                    "measurement": "facility",
                    "field": "grid_transformers_avg_watts",
                    "granularitySeconds": 60,
                    "tags": {"facility_id": "F1", "country_code": "NLD"},
                },
            ],
        },
    }
