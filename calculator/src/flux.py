"""
Flux query builder for the facility time-series bucket.

Queries are declarative filter pipelines::

    from(bucket) |> range |> filter(measurement) |> filter(field)
                 |> filter(tags...) [|> aggregateWindow | reducer] [|> fill]

String literals are escaped so facility IDs or tag values can never break
out of the query.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

import re
from datetime import UTC, datetime

AGGREGATES = frozenset({"sum", "mean", "last", "count"})

# Flux duration literals, e.g. 1m, 15m, 30d.
_DURATION_RE = re.compile(r"-?\d+(ns|us|ms|s|mo|m|h|d|w|y)")


def flux_string(value: str) -> str:
    """Render *value* as a double-quoted Flux string literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def flux_time(ts: datetime) -> str:
    """Render *ts* as an RFC3339 UTC time literal.

    Naive datetimes are interpreted as UTC.
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_flux_query(
    bucket: str,
    start: datetime | str,
    stop: datetime | None,
    measurement: str,
    field: str,
    tags: dict[str, str] | None = None,
    *,
    aggregate: str | None = None,
    every: str | None = None,
    create_empty: bool = False,
    fill_value: float | None = None,
) -> str:
    """Build a Flux query over one field of one measurement.

    Args:
        bucket: Bucket to read from.
        start: Inclusive range start. A ``str`` is passed through verbatim
            so relative durations such as ``-30d`` can be used.
        stop: Exclusive range stop, or ``None`` for "now".
        measurement: ``_measurement`` to filter on.
        field: ``_field`` to filter on.
        tags: Tag equality filters, rendered in sorted key order.
        aggregate: One of ``sum``, ``mean``, ``last``, ``count``. Applied per
            window when *every* is set, otherwise over the whole range.
        every: Window width (e.g. ``"1m"``) for ``aggregateWindow``.
        create_empty: Emit rows for empty windows (``aggregateWindow`` only).
        fill_value: Replace null values with this constant.

    Returns:
        The Flux query text.

    Raises:
        ValueError: If *aggregate* is unknown or *every* is given without
            an aggregate.
    """
    if aggregate is not None and aggregate not in AGGREGATES:
        raise ValueError(f"unsupported aggregate {aggregate!r}")
    if every is not None and aggregate is None:
        raise ValueError("every requires an aggregate function")
    if every is not None and not _DURATION_RE.fullmatch(every):
        raise ValueError(f"invalid window duration {every!r}")
    if isinstance(start, str) and not _DURATION_RE.fullmatch(start):
        raise ValueError(f"invalid relative start {start!r}")

    start_literal = start if isinstance(start, str) else flux_time(start)
    range_args = f"start: {start_literal}"
    if stop is not None:
        range_args += f", stop: {flux_time(stop)}"

    lines = [
        f"from(bucket: {flux_string(bucket)})",
        f"  |> range({range_args})",
        f"  |> filter(fn: (r) => r._measurement == {flux_string(measurement)})",
        f"  |> filter(fn: (r) => r._field == {flux_string(field)})",
    ]
    for key in sorted(tags or {}):
        lines.append(
            f"  |> filter(fn: (r) => r[{flux_string(key)}] == {flux_string(tags[key])})"
        )

    if every is not None:
        create = "true" if create_empty else "false"
        lines.append(
            f"  |> aggregateWindow(every: {every}, fn: {aggregate}, createEmpty: {create})"
        )
    elif aggregate is not None:
        lines.append(f"  |> {aggregate}()")

    if fill_value is not None:
        lines.append(f"  |> fill(value: {float(fill_value)!r})")

    return "\n".join(lines)
