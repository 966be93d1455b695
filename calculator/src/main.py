"""
Calculator daemon entry point -- one scheduling thread per facility.

On startup:
1. Configures structured JSON logging and loads settings.
2. Opens the durable state store and resumes every persisted facility
   calculator (restart recovery).
3. Fetches each configured facility from the registry and dispatches it
   if no calculator exists for it yet.
4. Writes the health file every ``calculation_interval_s`` until a signal
   arrives.

Handles SIGTERM and SIGINT for graceful shutdown inside Docker:
- Sets a ``shutdown_event`` that ends the main wait.
- Stops every engine's scheduling loop.
- Closes the state store.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

import logging
import signal
import threading
from types import FrameType

from calculator.src.config import CalculatorSettings
from calculator.src.dispatcher import CalculatorService, instance_key_for
from calculator.src.errors import RegistryError
from calculator.src.health import write_health_file
from calculator.src.logging_config import setup_logging
from calculator.src.registry import RegistryClient
from calculator.src.state_store import StateStore

logger = logging.getLogger(__name__)

# Module-level shutdown event shared between signal handlers and main().
shutdown_event = threading.Event()


def _dispatch_configured(
    settings: CalculatorSettings,
    service: CalculatorService,
    registry: RegistryClient,
    already_running: set[str],
) -> int:
    """Dispatch every configured facility that has no calculator yet.

    A facility that cannot be fetched or started is logged and skipped so
    one bad facility does not keep the others from starting.

    Returns:
        Number of facilities dispatched.
    """
    dispatched = 0
    for facility_id in settings.facility_id_list:
        if instance_key_for(facility_id) in already_running:
            logger.info("Calculator for %s already persisted, not re-dispatching", facility_id)
            continue
        try:
            config = registry.get_facility(facility_id)
            service.create_facility_calculator(
                facility_id, config, settings.starting_point,
            )
            dispatched += 1
        except RegistryError:
            logger.exception("Could not fetch facility %s from registry", facility_id)
        except Exception:
            logger.exception("Could not start calculator for %s", facility_id)
    return dispatched


def _signal_handler(
    signum: int,
    _frame: FrameType | None,
) -> None:
    """Handle SIGTERM/SIGINT by signalling shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, initiating graceful shutdown", sig_name)
    shutdown_event.set()


def main() -> None:
    """Calculator daemon entry point.

    Blocks until a signal sets ``shutdown_event``, then stops every
    engine loop and closes the state store.
    """
    setup_logging()

    settings = CalculatorSettings()

    store = StateStore(path=settings.state_path)
    service = CalculatorService(
        store,
        settings.influx_read_token,
        interval_s=settings.calculation_interval_s,
        counter_lookback_days=settings.counter_lookback_days,
    )
    registry = RegistryClient(
        base_url=settings.registry_base_url,
        api_key=settings.registry_api_key,
    )

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    logger.info(
        "Calculator daemon starting -- cycle every %ds, %d configured facilit(y/ies)",
        settings.calculation_interval_s,
        len(settings.facility_id_list),
    )

    try:
        resumed = set(service.rehydrate())
        _dispatch_configured(settings, service, registry, resumed)

        while not shutdown_event.is_set():
            write_health_file(service, settings.health_path)
            shutdown_event.wait(timeout=settings.calculation_interval_s)

        logger.info("Shutdown event received, stopping calculators")
    finally:
        service.shutdown()
        registry.close()
        store.close()
        logger.info("Calculator daemon shut down cleanly")


if __name__ == "__main__":
    main()
