"""Broker connection lifecycle.

One ``BrokerConnectionManager`` is built at the composition root and injected
into the outbox drain. It hands out the domain's Protean broker, tracks
whether that broker is reachable, and once a caller reports it lost, refuses
to use it again until the back-off delay has passed and the broker answers a
reconnect.
"""

import threading
import time
from collections.abc import Callable
from enum import Enum

import structlog
from protean.port.broker import BaseBroker
from protean.utils.globals import current_domain

logger = structlog.get_logger(__name__)


class BrokerUnavailable(Exception):
    """The message broker cannot be reached right now."""


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    BACKING_OFF = "backing_off"


class BrokerConnectionManager:
    def __init__(
        self,
        broker_name: str = "default",
        reconnect_delay: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.broker_name = broker_name
        self.reconnect_delay = reconnect_delay
        self._clock = clock
        self._lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._retry_at = 0.0
        self.last_error: str | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    def broker(self) -> BaseBroker:
        """Return the broker once it is known to be reachable.

        Must run inside a domain context. Raises ``BrokerUnavailable`` while
        backing off or when the broker does not answer.
        """
        with self._lock:
            broker = current_domain.brokers[self.broker_name]
            if self._state == ConnectionState.CONNECTED:
                return broker

            if self._state == ConnectionState.BACKING_OFF and self._clock() < self._retry_at:
                raise BrokerUnavailable(f"Broker unavailable, retrying in {self._retry_at - self._clock():.1f}s")

            try:
                reachable = broker.ensure_connection()
            except Exception as exc:
                self._back_off(str(exc))
                raise BrokerUnavailable(str(exc)) from exc
            if not reachable:
                self._back_off(f"Broker '{self.broker_name}' did not answer")
                raise BrokerUnavailable(self.last_error)

            self._state = ConnectionState.CONNECTED
            self.last_error = None
            logger.info("broker_connection_established", broker=self.broker_name)
            return broker

    def connection_lost(self, error) -> None:
        """Stop using the broker and start backing off."""
        with self._lock:
            self._back_off(str(error))

    def _back_off(self, error: str) -> None:
        self._state = ConnectionState.BACKING_OFF
        self._retry_at = self._clock() + self.reconnect_delay
        self.last_error = error
        logger.warning("broker_connection_lost", broker=self.broker_name, error=error, retry_in=self.reconnect_delay)

    def close(self) -> None:
        with self._lock:
            self._state = ConnectionState.DISCONNECTED
