"""
Calculator dispatcher: one engine (and one scheduling thread) per facility.

``create_facility_calculator`` derives the instance key
``facility-<facility_id>``, locates or creates the engine for it, runs
its ``start()`` synchronously and makes sure its scheduling loop thread is
running. ``rehydrate`` does the same for every instance found in the
durable store after a restart, without re-running ``start()``.

CHANGELOG:
- 2026-10-17: Initial creation
- 2026-10-17: rehydrate() skips instances with an incomplete start

TODO:
- None
"""

import logging
import threading
from collections.abc import Callable
from datetime import datetime

from calculator.src.engine import DEFAULT_INTERVAL_S, CalculatorEngine, utc_now
from calculator.src.errors import EngineStateError
from calculator.src.models import FacilityConfig
from calculator.src.state_store import StateStore
from calculator.src.timeseries import open_handles

logger = logging.getLogger(__name__)

INSTANCE_KEY_PREFIX = "facility-"


def instance_key_for(facility_id: str) -> str:
    """Derive the durable instance key for *facility_id*."""
    return f"{INSTANCE_KEY_PREFIX}{facility_id}"


class CalculatorService:
    """Keyed registry of per-facility calculator engines.

    Args:
        store: Durable state store shared by all engines.
        read_token: Shared InfluxDB read token.
        interval_s: Seconds between cycles.
        counter_lookback_days: Lookback for the counter's last value.
        handle_factory: Builds ``(reader, writer)`` handles.
        clock: Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        store: StateStore,
        read_token: str,
        *,
        interval_s: int = DEFAULT_INTERVAL_S,
        counter_lookback_days: int = 30,
        handle_factory: Callable = open_handles,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._read_token = read_token
        self._interval_s = interval_s
        self._counter_lookback_days = counter_lookback_days
        self._handle_factory = handle_factory
        self._clock = clock
        self._lock = threading.Lock()
        self._engines: dict[str, CalculatorEngine] = {}
        self._threads: dict[str, threading.Thread] = {}
        self.stop_event = threading.Event()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_facility_calculator(
        self,
        facility_id: str,
        config: FacilityConfig | dict,
        starting_point: int = 0,
    ) -> None:
        """Start (or refresh) the calculator for *facility_id*.

        Blocks until the engine's initial cycle has completed.

        Args:
            facility_id: Facility identifier (non-empty).
            config: Registry config snapshot for the facility.
            starting_point: Epoch-ms start of the initial window, ``0``
                for the default lookback.

        Raises:
            EngineStateError: On an empty facility ID or invalid config.
            Exception: Any failure of the engine's ``start()``.
        """
        if not facility_id or not facility_id.strip():
            raise EngineStateError("facility_id must be a non-empty string")
        engine = self.get_engine(instance_key_for(facility_id))
        engine.start(facility_id, config, starting_point)
        self._ensure_running(engine)

    def rehydrate(self) -> list[str]:
        """Resume the scheduling loop of every started instance.

        Instances whose ``start()`` never completed are left idle; they
        are started again when their facility is next dispatched.

        Returns:
            Instance keys that were resumed.
        """
        keys = []
        for key in self._store.instance_keys():
            engine = self.get_engine(key)
            if not engine.is_started():
                logger.warning(
                    "Calculator %s has an incomplete start, waiting for dispatch",
                    key,
                    extra={"instance_key": key},
                )
                continue
            self._ensure_running(engine)
            keys.append(key)
        if keys:
            logger.info("Rehydrated %d calculator(s): %s", len(keys), ", ".join(keys))
        return keys

    def get_engine(self, instance_key: str) -> CalculatorEngine:
        """Return the engine for *instance_key*, creating it if needed."""
        with self._lock:
            engine = self._engines.get(instance_key)
            if engine is None:
                engine = CalculatorEngine(
                    instance_key,
                    self._store,
                    self._read_token,
                    interval_s=self._interval_s,
                    counter_lookback_days=self._counter_lookback_days,
                    handle_factory=self._handle_factory,
                    clock=self._clock,
                )
                self._engines[instance_key] = engine
            return engine

    def engines(self) -> dict[str, CalculatorEngine]:
        """Snapshot of the known engines keyed by instance key."""
        with self._lock:
            return dict(self._engines)

    def is_running(self, instance_key: str) -> bool:
        """Return whether the engine's scheduling thread is alive."""
        with self._lock:
            thread = self._threads.get(instance_key)
        return thread is not None and thread.is_alive()

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop every scheduling loop and release engine handles.

        The durable store is left open; its owner closes it.
        """
        self.stop_event.set()
        with self._lock:
            threads = list(self._threads.values())
            engines = list(self._engines.values())
        for thread in threads:
            thread.join(timeout=timeout)
        for engine in engines:
            engine.close()
        logger.info("Calculator service stopped (%d engine(s))", len(engines))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_running(self, engine: CalculatorEngine) -> None:
        """Start *engine*'s scheduling thread unless it is already alive."""
        with self._lock:
            thread = self._threads.get(engine.instance_key)
            if thread is not None and thread.is_alive():
                return
            if self.stop_event.is_set():
                return
            thread = threading.Thread(
                target=engine.run,
                args=(self.stop_event,),
                daemon=True,
                name=f"calc-{engine.instance_key}",
            )
            self._threads[engine.instance_key] = thread
            thread.start()
