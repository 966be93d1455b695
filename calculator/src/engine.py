"""
Per-facility impact calculation engine.

One :class:`CalculatorEngine` exists per facility, addressed by the
instance key ``facility-<facility_id>``. Its durable fields live in the
:class:`~calculator.src.state_store.StateStore`; read/write handles to
the time-series bucket are in-memory only and rebuilt lazily from the
persisted config whenever they are missing (e.g. after a restart).

Lifecycle:
1. ``start()`` persists the facility config, resets the cumulative
   ``total_primary_energy_use`` counter to zero, runs an initial cycle
   and arms the alarm ``interval`` from now.
2. ``run()`` sleeps until the alarm is due, clears it and calls
   ``alarm()``.
3. ``alarm()`` runs one cycle over ``[lastCalculation.timestamp, now)``
   and re-arms the alarm whether the cycle succeeded or not.

Cycle windows are truncated to whole UTC minutes, the same grid
``aggregateWindow`` aligns its buckets to, so each bucket covers one
full minute of energy.

A cycle (``perform_calculation``) validates the required metrics,
integrates every available ``*_avg_watts`` series over 1-minute buckets
into kWh, and adds the grid-transformer energy to the cumulative counter.
Per-metric failures are isolated; counter read/write failures propagate.

CHANGELOG:
- 2026-10-17: Initial creation
- 2026-10-17: Minute-aligned cycle windows; lastCalculation marks a
  completed start; reject negative starting points

TODO:
- None
"""

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError

from calculator.src.errors import EngineStateError
from calculator.src.metrics import (
    FACILITY_MEASUREMENT,
    GRID_TRANSFORMER_METRIC,
    REQUIRED_METRICS,
    TOTAL_PRIMARY_ENERGY_USE_FIELD,
    FacilityMetric,
    watts_metrics,
    watts_to_kwh_per_minute,
)
from calculator.src.models import CycleResult, FacilityConfig, LastCalculation
from calculator.src.state_store import StateStore
from calculator.src.timeseries import open_handles

logger = logging.getLogger(__name__)

ENTITY_FACILITY = "facility"

# Durable keys, one row each per instance.
KEY_ENTITY = "entity"
KEY_FACILITY_ID = "facilityId"
KEY_CONFIG = "config"
KEY_LAST_CALCULATION = "lastCalculation"
KEY_ALARM = "alarm"

DEFAULT_INTERVAL_S = 15 * 60

# Upper bound on a single wait in run(), so a re-armed alarm is noticed.
_MAX_WAIT_S = 60.0


def utc_now() -> datetime:
    """Return the current wall-clock time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def to_epoch_ms(ts: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return int(ts.timestamp() * 1000)


def from_epoch_ms(ms: int | float) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


def floor_minute(ts: datetime) -> datetime:
    """Truncate *ts* to the start of its UTC minute.

    ``aggregateWindow(every: 1m)`` buckets are aligned to whole minutes
    since the epoch, so cycle windows must fall on the same grid for
    every bucket to span exactly one minute.
    """
    return ts.astimezone(UTC).replace(second=0, microsecond=0)


class CalculatorEngine:
    """Stateful, self-scheduling calculator for one facility.

    All public operations hold a per-instance lock, so at most one of
    ``start``, ``alarm`` or ``perform_calculation`` runs at a time.

    Args:
        instance_key: Durable identity (``facility-<id>``).
        store: Durable state store shared by all engines.
        read_token: Shared InfluxDB read token.
        interval_s: Seconds between cycles.
        counter_lookback_days: Lookback for the counter's last value.
        handle_factory: Builds ``(reader, writer)`` from a
            :class:`~calculator.src.models.TimeSeriesConfig` and the
            read token.
        clock: Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        instance_key: str,
        store: StateStore,
        read_token: str,
        *,
        interval_s: int = DEFAULT_INTERVAL_S,
        counter_lookback_days: int = 30,
        handle_factory: Callable = open_handles,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.instance_key = instance_key
        self._store = store
        self._read_token = read_token
        self._interval = timedelta(seconds=interval_s)
        self._counter_lookback_days = counter_lookback_days
        self._handle_factory = handle_factory
        self._clock = clock
        self._lock = threading.RLock()
        self._reader = None
        self._writer = None
        self.last_result: CycleResult | None = None

    # ------------------------------------------------------------------
    # Durable state accessors
    # ------------------------------------------------------------------

    @property
    def facility_id(self) -> str | None:
        """Persisted facility identifier, if the engine was started."""
        return self._store.get(self.instance_key, KEY_FACILITY_ID)

    def is_started(self) -> bool:
        """Whether ``start()`` has completed for this instance.

        ``lastCalculation`` is only written once the counter reset and the
        initial cycle have succeeded, so a start that failed part way is
        retried in full.
        """
        return self._store.has(self.instance_key, KEY_LAST_CALCULATION)

    def last_calculation(self) -> LastCalculation | None:
        """Persisted bookkeeping of the last completed cycle."""
        raw = self._store.get(self.instance_key, KEY_LAST_CALCULATION)
        return LastCalculation.model_validate(raw) if raw is not None else None

    def get_alarm(self) -> int | None:
        """Epoch-ms time the next cycle is due, or ``None`` if unarmed."""
        return self._store.get(self.instance_key, KEY_ALARM)

    def set_alarm(self, scheduled_ms: int) -> None:
        """Arm (or move) the single pending alarm."""
        self._store.put(self.instance_key, KEY_ALARM, int(scheduled_ms))

    def delete_alarm(self) -> None:
        """Disarm the pending alarm."""
        self._store.delete(self.instance_key, KEY_ALARM)

    def _log_extra(self, facility_id: str | None = None) -> dict:
        return {
            "instance_key": self.instance_key,
            "facility_id": facility_id or self.facility_id,
        }

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def _ensure_handles(self, config: FacilityConfig, force: bool = False) -> None:
        """Build read/write handles from *config* if absent (or forced)."""
        if self._reader is not None and self._writer is not None and not force:
            return
        self.close()
        self._reader, self._writer = self._handle_factory(
            config.time_series_config, self._read_token,
        )

    def close(self) -> None:
        """Release in-memory handles. Durable state is untouched."""
        for handle in (self._reader, self._writer):
            if handle is None:
                continue
            try:
                handle.close()
            except Exception:
                logger.warning(
                    "Failed to close time series handle",
                    exc_info=True,
                    extra={"instance_key": self.instance_key},
                )
        self._reader = None
        self._writer = None

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def start(
        self,
        facility_id: str,
        config: FacilityConfig | dict,
        starting_point: int = 0,
    ) -> CycleResult | None:
        """Start calculating for *facility_id*.

        On a fresh instance: persist identity and config, reset the
        cumulative counter, run the initial cycle, record
        ``lastCalculation`` and arm the alarm. A start that failed part way
        counts as not started and is repeated from the reset on.

        On an instance whose start already completed, only the config
        snapshot is refreshed and the handles rebuilt; the counter is not
        reset and no cycle runs. The alarm is armed if none is pending.

        Args:
            facility_id: Facility identifier (non-empty).
            config: Registry config snapshot.
            starting_point: Epoch-ms window start for the initial cycle;
                ``0`` means ``now - interval``.

        Returns:
            The initial cycle's result, or ``None`` when the instance was
            already started.

        Raises:
            EngineStateError: On an empty facility ID, a negative starting
                point or an invalid config.
        """
        if not facility_id or not facility_id.strip():
            raise EngineStateError("facility_id must be a non-empty string")
        if starting_point < 0:
            raise EngineStateError(
                f"starting_point must be 0 or a positive epoch-ms (got {starting_point})"
            )
        facility_config = _coerce_config(config)

        with self._lock:
            extra = self._log_extra(facility_id)
            if self.is_started():
                self._store.put(self.instance_key, KEY_CONFIG, facility_config.to_snapshot())
                self._ensure_handles(facility_config, force=True)
                if self.get_alarm() is None:
                    self.set_alarm(to_epoch_ms(self._clock() + self._interval))
                logger.info(
                    "Calculator %s already started, config refreshed",
                    self.instance_key,
                    extra=extra,
                )
                return None

            self._store.put(self.instance_key, KEY_ENTITY, ENTITY_FACILITY)
            self._store.put(self.instance_key, KEY_FACILITY_ID, facility_id)
            self._store.put(self.instance_key, KEY_CONFIG, facility_config.to_snapshot())

            self._ensure_handles(facility_config, force=True)

            undeclared = undeclared_metrics(facility_config)
            if undeclared:
                logger.info(
                    "Facility %s does not declare required metrics: %s",
                    facility_id,
                    ", ".join(undeclared),
                    extra=extra,
                )

            self._writer.write_point(
                FACILITY_MEASUREMENT,
                facility_config.tags(facility_id),
                TOTAL_PRIMARY_ENERGY_USE_FIELD,
                0.0,
                self._clock(),
            )
            logger.info("Reset %s to 0", TOTAL_PRIMARY_ENERGY_USE_FIELD, extra=extra)

            result = self.perform_calculation(
                facility_id, facility_config, starting_point, is_initial=True,
            )
            self._record_last_calculation(result.stop, facility_id, facility_config)

            if self.get_alarm() is None:
                self.set_alarm(to_epoch_ms(self._clock() + self._interval))

            logger.info(
                "Calculator %s started, next cycle at %s",
                self.instance_key,
                from_epoch_ms(self.get_alarm()).isoformat(),
                extra=extra,
            )
            return result

    def alarm(self) -> CycleResult | None:
        """Handle a due alarm: run one cycle and re-arm.

        The next alarm is armed for ``now + interval`` even if loading
        state or the cycle fails. ``lastCalculation`` only advances when
        the cycle completes.

        Returns:
            The cycle result, or ``None`` if the cycle was skipped or
            failed.
        """
        with self._lock:
            now = self._clock()
            result: CycleResult | None = None
            try:
                facility_id = self._store.get(self.instance_key, KEY_FACILITY_ID)
                raw_config = self._store.get(self.instance_key, KEY_CONFIG)
                if facility_id is None or raw_config is None:
                    logger.error(
                        "Calculator %s has no persisted facility/config, skipping cycle",
                        self.instance_key,
                        extra={"instance_key": self.instance_key},
                    )
                    return None

                config = FacilityConfig.model_validate(raw_config)
                self._ensure_handles(config)

                last = self.last_calculation()
                if last is not None:
                    starting_point = last.timestamp
                else:
                    starting_point = to_epoch_ms(now - self._interval)

                result = self.perform_calculation(
                    facility_id, config, starting_point, is_initial=False,
                )
                self._record_last_calculation(result.stop, facility_id, config)
            except Exception:
                logger.exception(
                    "Calculation cycle failed for %s",
                    self.instance_key,
                    extra={"instance_key": self.instance_key},
                )
                result = None
            finally:
                self.set_alarm(to_epoch_ms(now + self._interval))
            return result

    def _record_last_calculation(
        self, stop_ms: int, facility_id: str, config: FacilityConfig,
    ) -> None:
        last = LastCalculation(
            timestamp=stop_ms,
            facility_id=facility_id,
            config=config,
            is_initial=False,
        )
        self._store.put(
            self.instance_key,
            KEY_LAST_CALCULATION,
            last.model_dump(mode="json", by_alias=True),
        )

    # ------------------------------------------------------------------
    # Calculation cycle
    # ------------------------------------------------------------------

    def perform_calculation(
        self,
        facility_id: str,
        config: FacilityConfig,
        starting_point: int,
        is_initial: bool,
    ) -> CycleResult:
        """Run one calculate-integrate-store cycle over ``[start, now)``.

        Both window edges are truncated to whole UTC minutes so every
        1-minute bucket is complete; the partial current minute is left
        for the next cycle. The counter point is stamped with the
        untruncated ``now`` so it always lands after the start reset.

        Args:
            facility_id: Facility identifier used for tag filters.
            config: Config snapshot (connection info, country code).
            starting_point: Epoch-ms window start; ``0`` means
                ``now - interval``.
            is_initial: When true the counter's previous value is taken
                as ``0`` instead of being read back.

        Returns:
            The cycle's :class:`~calculator.src.models.CycleResult`.

        Raises:
            EngineStateError: If *starting_point* is not before now.
            Exception: Counter read/write failures are not caught.
        """
        with self._lock:
            self._ensure_handles(config)
            extra = self._log_extra(facility_id)

            now = self._clock()
            stop = floor_minute(now)
            if starting_point:
                start = floor_minute(from_epoch_ms(starting_point))
            else:
                start = floor_minute(stop - self._interval)
            if start >= stop:
                raise EngineStateError(
                    f"window start {start.isoformat()} is not before {stop.isoformat()}"
                )

            tags = config.tags(facility_id)
            result = CycleResult(start=to_epoch_ms(start), stop=to_epoch_ms(stop))

            available, missing = self._validate_metrics(tags, start, stop, extra)
            result.available = [m.value for m in available]
            result.missing = [m.value for m in missing]
            if missing:
                logger.warning(
                    "Missing metrics for %s in [%s, %s): %s",
                    facility_id,
                    start.isoformat(),
                    stop.isoformat(),
                    ", ".join(result.missing),
                    extra=extra,
                )

            for metric in watts_metrics(available):
                result.kwh_results[metric.value] = self._calculate_kwh(
                    metric, tags, start, stop, extra,
                )

            grid_kwh = result.kwh_results.get(GRID_TRANSFORMER_METRIC.value)
            if grid_kwh is not None:
                if is_initial:
                    previous = 0.0
                else:
                    previous = self._reader.last_value(
                        FACILITY_MEASUREMENT,
                        TOTAL_PRIMARY_ENERGY_USE_FIELD,
                        tags,
                        self._counter_lookback_days,
                    ) or 0.0
                result.counter_value = previous + grid_kwh
                self._writer.write_point(
                    FACILITY_MEASUREMENT,
                    tags,
                    TOTAL_PRIMARY_ENERGY_USE_FIELD,
                    result.counter_value,
                    now,
                )

            logger.info(
                "Cycle for %s: %d available, %d missing, kWh=%s, counter=%s",
                facility_id,
                len(result.available),
                len(result.missing),
                result.kwh_results,
                result.counter_value,
                extra=extra,
            )
            self.last_result = result
            return result

    def _validate_metrics(
        self,
        tags: dict[str, str],
        start: datetime,
        stop: datetime,
        extra: dict,
    ) -> tuple[list[FacilityMetric], list[FacilityMetric]]:
        """Partition the required metrics into available and missing."""
        available: list[FacilityMetric] = []
        missing: list[FacilityMetric] = []
        for metric in REQUIRED_METRICS:
            try:
                present = self._reader.has_samples(
                    FACILITY_MEASUREMENT, metric.value, tags, start, stop,
                )
            except Exception:
                logger.exception(
                    "Validation query failed for %s", metric.value, extra=extra,
                )
                present = False
            (available if present else missing).append(metric)
        return available, missing

    def _calculate_kwh(
        self,
        metric: FacilityMetric,
        tags: dict[str, str],
        start: datetime,
        stop: datetime,
        extra: dict,
    ) -> float:
        """Integrate one watts series over 1-minute buckets into kWh."""
        try:
            rows = self._reader.query_window(
                FACILITY_MEASUREMENT, metric.value, tags, start, stop,
                every="1m", aggregate="mean",
            )
        except Exception:
            logger.exception(
                "kWh aggregation failed for %s", metric.value, extra=extra,
            )
            return 0.0
        return sum(watts_to_kwh_per_minute(watts) for _, watts in rows)

    # ------------------------------------------------------------------
    # Scheduling loop
    # ------------------------------------------------------------------

    def run(self, stop_event: threading.Event) -> None:
        """Fire ``alarm()`` whenever the persisted alarm is due.

        Runs until *stop_event* is set. A started instance without a
        pending alarm (e.g. a crash between firing and re-arming) gets one
        armed ``interval`` from now. Unstarted instances idle until
        started.
        """
        logger.info(
            "Scheduling loop for %s running",
            self.instance_key,
            extra={"instance_key": self.instance_key},
        )
        while not stop_event.is_set():
            try:
                delay = self._seconds_until_due()
                if delay is None:
                    stop_event.wait(timeout=_MAX_WAIT_S)
                    continue
                if delay > 0:
                    stop_event.wait(timeout=min(delay, _MAX_WAIT_S))
                    continue
                self.delete_alarm()
                self.alarm()
            except Exception:
                logger.exception(
                    "Unexpected error in scheduling loop for %s",
                    self.instance_key,
                    extra={"instance_key": self.instance_key},
                )
                stop_event.wait(timeout=_MAX_WAIT_S)
        logger.info(
            "Scheduling loop for %s stopped",
            self.instance_key,
            extra={"instance_key": self.instance_key},
        )

    def _seconds_until_due(self) -> float | None:
        """Seconds until the alarm fires; ``None`` if nothing to schedule."""
        with self._lock:
            alarm_at = self.get_alarm()
            if alarm_at is None:
                if not self.is_started():
                    return None
                self.set_alarm(to_epoch_ms(self._clock() + self._interval))
                logger.warning(
                    "Calculator %s had no pending alarm, re-armed",
                    self.instance_key,
                    extra={"instance_key": self.instance_key},
                )
                return self._interval.total_seconds()
            return (alarm_at - to_epoch_ms(self._clock())) / 1000


def _coerce_config(config: FacilityConfig | dict) -> FacilityConfig:
    if isinstance(config, FacilityConfig):
        return config
    try:
        return FacilityConfig.model_validate(config)
    except ValidationError as exc:
        raise EngineStateError(f"invalid facility config: {exc}") from exc


def undeclared_metrics(config: FacilityConfig) -> list[str]:
    """Required metrics the facility does not list in its data points."""
    declared = {dp.field for dp in config.time_series_config.data_points}
    if not declared:
        return []
    return [m.value for m in REQUIRED_METRICS if m.value not in declared]
