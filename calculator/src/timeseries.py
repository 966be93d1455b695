"""
Time-series gateway adapter over the InfluxDB 2.x client.

The engine talks to the facility bucket through two handles:

- :class:`TimeSeriesReader` uses the shared read token configured for the
  daemon. Reads are centralized: every facility is queried with the same
  credential.
- :class:`TimeSeriesWriter` uses the facility's own write token from its
  registry config, so a facility can only ever write into its own bucket.

Writes use the synchronous write API: a point is flushed before
``write_point`` returns. Query and write errors (``ApiException``,
``urllib3`` errors) are NOT caught here; callers decide whether a failure
is isolated or propagated.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

import logging
from datetime import datetime

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS

from calculator.src.flux import build_flux_query
from calculator.src.models import TimeSeriesConfig

logger = logging.getLogger(__name__)

# Default HTTP timeout for InfluxDB calls, in milliseconds.
_DEFAULT_TIMEOUT_MS = 30_000


class TimeSeriesReader:
    """Read handle over one facility bucket.

    Args:
        url: InfluxDB endpoint.
        org: InfluxDB organization.
        bucket: Bucket to query.
        token: Read token (shared across facilities).
        timeout_ms: HTTP timeout in milliseconds.
    """

    def __init__(
        self,
        url: str,
        org: str,
        bucket: str,
        token: str,
        timeout_ms: int = _DEFAULT_TIMEOUT_MS,
    ) -> None:
        self._org = org
        self._bucket = bucket
        self._client = InfluxDBClient(url=url, token=token, org=org, timeout=timeout_ms)
        self._query_api = self._client.query_api()

    @property
    def bucket(self) -> str:
        """Bucket this handle reads from."""
        return self._bucket

    def _records(self, query: str) -> list:
        tables = self._query_api.query(query, org=self._org)
        return [record for table in tables for record in table.records]

    def has_samples(
        self,
        measurement: str,
        field: str,
        tags: dict[str, str],
        start: datetime,
        stop: datetime,
    ) -> bool:
        """Return whether at least one sample exists in ``[start, stop)``."""
        query = build_flux_query(
            self._bucket, start, stop, measurement, field, tags, aggregate="count",
        )
        total = 0
        for record in self._records(query):
            value = record.get_value()
            if value is not None:
                total += int(value)
        return total > 0

    def query_window(
        self,
        measurement: str,
        field: str,
        tags: dict[str, str],
        start: datetime,
        stop: datetime,
        every: str = "1m",
        aggregate: str = "mean",
    ) -> list[tuple[datetime, float]]:
        """Return ``(time, value)`` rows bucketed into *every* windows.

        Empty windows are emitted as explicit zeros, so gaps in the raw
        series do not shrink the number of buckets.
        """
        query = build_flux_query(
            self._bucket,
            start,
            stop,
            measurement,
            field,
            tags,
            aggregate=aggregate,
            every=every,
            create_empty=True,
            fill_value=0.0,
        )
        rows: list[tuple[datetime, float]] = []
        for record in self._records(query):
            value = record.get_value()
            rows.append((record.get_time(), float(value) if value is not None else 0.0))
        rows.sort(key=lambda row: row[0])
        return rows

    def last_value(
        self,
        measurement: str,
        field: str,
        tags: dict[str, str],
        lookback_days: int,
    ) -> float | None:
        """Return the most recent value within the lookback, or ``None``."""
        query = build_flux_query(
            self._bucket,
            f"-{lookback_days}d",
            None,
            measurement,
            field,
            tags,
            aggregate="last",
        )
        latest: tuple[datetime, float] | None = None
        for record in self._records(query):
            value = record.get_value()
            if value is None:
                continue
            ts = record.get_time()
            if latest is None or ts > latest[0]:
                latest = (ts, float(value))
        return latest[1] if latest is not None else None

    def close(self) -> None:
        """Close the underlying client."""
        self._client.close()


class TimeSeriesWriter:
    """Write handle over one facility bucket.

    Args:
        url: InfluxDB endpoint.
        org: InfluxDB organization.
        bucket: Bucket to write to.
        token: Facility-scoped write token.
        timeout_ms: HTTP timeout in milliseconds.
    """

    def __init__(
        self,
        url: str,
        org: str,
        bucket: str,
        token: str,
        timeout_ms: int = _DEFAULT_TIMEOUT_MS,
    ) -> None:
        self._org = org
        self._bucket = bucket
        self._client = InfluxDBClient(url=url, token=token, org=org, timeout=timeout_ms)
        self._write_api = self._client.write_api(write_options=SYNCHRONOUS)

    def write_point(
        self,
        measurement: str,
        tags: dict[str, str],
        field: str,
        value: float,
        ts: datetime,
    ) -> None:
        """Write one float sample and flush it before returning."""
        point = Point(measurement)
        for key, tag_value in sorted(tags.items()):
            point = point.tag(key, tag_value)
        point = point.field(field, float(value)).time(ts, WritePrecision.MS)
        self._write_api.write(bucket=self._bucket, org=self._org, record=point)
        logger.debug(
            "Wrote %s.%s=%s to bucket %s", measurement, field, value, self._bucket,
        )

    def close(self) -> None:
        """Close the write API and the underlying client."""
        self._write_api.close()
        self._client.close()


def open_handles(
    ts_config: TimeSeriesConfig,
    read_token: str,
    timeout_ms: int = _DEFAULT_TIMEOUT_MS,
) -> tuple[TimeSeriesReader, TimeSeriesWriter]:
    """Build the read and write handles for one facility.

    Args:
        ts_config: Facility time-series connection descriptor.
        read_token: Shared read token.
        timeout_ms: HTTP timeout in milliseconds.

    Returns:
        ``(reader, writer)`` bound to the facility bucket.
    """
    reader = TimeSeriesReader(
        url=ts_config.endpoint,
        org=ts_config.org,
        bucket=ts_config.bucket,
        token=read_token,
        timeout_ms=timeout_ms,
    )
    writer = TimeSeriesWriter(
        url=ts_config.endpoint,
        org=ts_config.org,
        bucket=ts_config.bucket,
        token=ts_config.token,
        timeout_ms=timeout_ms,
    )
    return reader, writer
