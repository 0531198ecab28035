"""Worker runner for the ordering service.

Starts the background workers:
- outbox: polls pending outbox entries and publishes them to ``order_events``
- payments: a Protean Engine that runs the ``payment_events`` subscriber with
  the broker subscription's retries and dead-letter stream

Usage:
    python src/server.py                    # Run both workers
    python src/server.py --worker outbox    # Run only the outbox drain
    python src/server.py --worker payments  # Run only the payment subscriber
"""

import argparse
import signal
import threading

import structlog
from ordering.config import OrderingSettings
from ordering.domain import ordering
from ordering.services import OrderingServices
from ordering.utils.logging import configure_logging
from protean.server.engine import Engine

logger = structlog.get_logger(__name__)

WORKERS = ("outbox", "payments")


def _drain_in_domain_context(services: OrderingServices, stop: threading.Event) -> None:
    with ordering.domain_context():
        services.drain.run(stop)


def run(worker_names, services: OrderingServices) -> None:
    """Run the selected workers until a shutdown signal arrives."""
    stop = threading.Event()
    logger.info("workers_starting", workers=list(worker_names))
    try:
        if "payments" not in worker_names:
            # The Engine owns the signal handlers whenever it runs
            for sig in (signal.SIGINT, signal.SIGTERM):
                signal.signal(sig, lambda *_: stop.set())
            _drain_in_domain_context(services, stop)
            return

        drain_thread = None
        if "outbox" in worker_names:
            drain_thread = threading.Thread(
                target=_drain_in_domain_context, args=(services, stop), name="outbox-drain", daemon=True
            )
            drain_thread.start()
        try:
            Engine(ordering).run()
        finally:
            stop.set()
            if drain_thread is not None:
                drain_thread.join(timeout=services.settings.outbox_poll_interval_seconds * 5)
    finally:
        services.close()
        logger.info("workers_stopped")


def main():
    parser = argparse.ArgumentParser(description="FoodStream ordering workers")
    parser.add_argument(
        "--worker",
        choices=WORKERS,
        help="Run a single worker (default: run all)",
    )
    args = parser.parse_args()

    configure_logging()
    ordering.init()
    services = OrderingServices.build(OrderingSettings.from_env())

    worker_names = [args.worker] if args.worker else list(WORKERS)

    run(worker_names, services)


if __name__ == "__main__":
    main()
