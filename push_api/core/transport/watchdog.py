"""Watchdog de reconexión MQTT.

Respaldo del reconnect interno de paho: si la conexión sigue caída,
cada `interval` segundos ejecuta una reconexión completa. Se desarma
solo en cuanto la conexión vuelve.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ReconnectWatchdog:
    """Timer periódico cancelable con arm() idempotente."""

    def __init__(
        self,
        interval: float,
        action: Callable[[], None],
        is_connected: Callable[[], bool],
        name: str = "mqtt-watchdog",
    ):
        self._interval = interval
        self._action = action
        self._is_connected = is_connected
        self._name = name

        self._lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._fired = 0

    @property
    def armed(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    @property
    def fired(self) -> int:
        """Veces que el watchdog ejecutó la acción."""
        return self._fired

    def arm(self) -> bool:
        """Arma el watchdog. Devuelve False si ya estaba armado."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return False
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._run,
                args=(stop_event,),
                name=self._name,
                daemon=True,
            )
            self._thread.start()
        logger.info("[WATCHDOG] Armed, reconnect attempt every %.0fs", self._interval)
        return True

    def disarm(self) -> bool:
        """Desarma el watchdog. Devuelve False si no estaba armado."""
        # Sin join: se llama desde el callback de paho y el hilo del
        # watchdog puede estar esperando ese mismo connect.
        with self._lock:
            stop_event = self._stop_event
            self._stop_event = None
            self._thread = None

        if stop_event is None:
            return False

        stop_event.set()
        logger.info("[WATCHDOG] Disarmed")
        return True

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._interval):
            if self._is_connected():
                logger.info("[WATCHDOG] Connection is back, stopping")
                break
            self._fired += 1
            try:
                logger.info("[WATCHDOG] Reconnect attempt #%d", self._fired)
                self._action()
            except Exception as e:
                logger.error("[WATCHDOG] Reconnect attempt failed: %s", e)

        with self._lock:
            if self._stop_event is stop_event:
                self._stop_event = None
                self._thread = None
