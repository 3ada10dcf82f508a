"""Servicio de push Redis → MQTT - Punto de entrada principal.

Usa la arquitectura modular:
- redis/          → Lectura de lecturas e identidad del gateway
- normalization/  → Crudo → envelopes
- transport/      → Publicación MQTT
- monitoring/     → Stats y health
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from typing import Any, Callable, Dict, Iterable, Optional

from common.config import Settings

from .core.domain.reading import PublishResult
from .core.monitoring.health import HealthStatus
from .core.monitoring.metrics import PUSH_CYCLE_ERRORS, PUSH_CYCLES_SKIPPED
from .core.monitoring.stats import Stats
from .core.normalization.sensor_normalizer import SensorNormalizer
from .core.redis.connection import RedisStoreConnection
from .core.transport.mqtt_client import MQTTBusConnection

logger = logging.getLogger(__name__)

POLL_THREAD_JOIN_TIMEOUT = 5.0


class PushService:
    """Orquesta el ciclo lectura → normalización → publicación.

    Componentes:
    - RedisStoreConnection: lectura de SENSOR_DATA_KEY e identidad
    - SensorNormalizer: decodificación y formato
    - MQTTBusConnection: publicación con reconexión + watchdog
    - Stats: contadores del proceso
    """

    def __init__(
        self,
        settings: Settings,
        store_factory: Optional[Callable[[Settings], RedisStoreConnection]] = None,
        bus_factory: Optional[Callable[[Settings], MQTTBusConnection]] = None,
        normalizer: Optional[SensorNormalizer] = None,
        install_signal_handlers: bool = True,
    ):
        self._settings = settings
        self._store_factory = store_factory or RedisStoreConnection
        self._bus_factory = bus_factory or MQTTBusConnection
        self._normalizer = normalizer or SensorNormalizer()
        self._install_signal_handlers = install_signal_handlers

        self._store: Optional[RedisStoreConnection] = None
        self._bus: Optional[MQTTBusConnection] = None
        self._stats = Stats()

        self._running = False
        self._lifecycle_lock = threading.RLock()
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._stopped_event = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None

        self._hooks_installed = False
        self._previous_signal_handlers: Dict[int, Any] = {}
        self._previous_threading_hook = None
        self._previous_sys_hook = None

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> Stats:
        return self._stats

    @property
    def store(self) -> Optional[RedisStoreConnection]:
        return self._store

    @property
    def bus(self) -> Optional[MQTTBusConnection]:
        return self._bus

    def initialize(self) -> None:
        """Conecta Redis y luego MQTT. Cualquier fallo se propaga."""
        logger.info("[SERVICE] Initializing with config: %s", self._settings.safe_dict())

        self._store = self._store_factory(self._settings)
        self._store.connect()

        self._bus = self._bus_factory(self._settings)
        self._bus.connect()

        logger.info("[SERVICE] Connections established")

    def start(self) -> None:
        """Inicia el servicio.

        Idempotente: si ya está corriendo no hace nada. Si algo falla
        detiene lo que se haya iniciado y relanza.
        """
        with self._lifecycle_lock:
            if self._running:
                logger.warning("[SERVICE] Already running")
                return

            logger.info("[SERVICE] Starting push service")
            self._stop_event.clear()
            self._stopped_event.clear()
            try:
                self.initialize()
                self._running = True

                if self._settings.auto_register_on_start:
                    self.register_device()

                self.poll_once()
                self._start_polling()
                self._install_shutdown_hooks()
            except Exception as e:
                logger.error("[SERVICE] Start failed: %s", e)
                self.stop()
                raise

        logger.info(
            "[SERVICE] Started, polling %s every %dms",
            self._settings.sensor_data_key,
            self._settings.poll_interval_ms,
        )

    def _start_polling(self) -> None:
        self._poll_thread = threading.Thread(
            target=self._poll_loop,
            name="push-poll",
            daemon=True,
        )
        self._poll_thread.start()

    def _poll_loop(self) -> None:
        interval = self._settings.poll_interval_seconds
        while not self._stop_event.wait(interval):
            self.poll_once()

    def stop(self) -> None:
        """Detiene el servicio. Seguro a mitad de ciclo y repetible."""
        with self._lifecycle_lock:
            if self._store is None and self._bus is None and not self._running:
                self._stopped_event.set()
                return

            logger.info("[SERVICE] Stopping push service")
            self._running = False
            self._stop_event.set()
            thread, self._poll_thread = self._poll_thread, None

            bus, self._bus = self._bus, None
            store, self._store = self._store, None

        for name, connection in (("mqtt", bus), ("redis", store)):
            if connection is None:
                continue
            try:
                connection.disconnect()
            except Exception as e:
                logger.error("[SERVICE] Error closing %s: %s", name, e)

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=POLL_THREAD_JOIN_TIMEOUT)

        self._restore_shutdown_hooks()
        self._stopped_event.set()
        logger.info("[SERVICE] Stopped. %s", self._stats)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Bloquea hasta que el servicio se detenga."""
        return self._stopped_event.wait(timeout)

    # ------------------------------------------------------------------
    # Shutdown hooks
    # ------------------------------------------------------------------

    def _handle_signal(self, signum, frame) -> None:
        logger.info("[SERVICE] Received %s, shutting down", signal.Signals(signum).name)
        self.stop()

    def _handle_thread_exception(self, args) -> None:
        logger.critical(
            "[SERVICE] Uncaught exception in thread %s: %s",
            args.thread.name if args.thread else "?",
            args.exc_value,
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )
        self.stop()

    def _handle_process_exception(self, exc_type, exc_value, exc_traceback) -> None:
        logger.critical(
            "[SERVICE] Uncaught exception: %s",
            exc_value,
            exc_info=(exc_type, exc_value, exc_traceback),
        )
        self.stop()

    def _install_shutdown_hooks(self) -> None:
        if self._hooks_installed:
            return

        # signal.signal solo puede llamarse desde el hilo principal.
        if self._install_signal_handlers and threading.current_thread() is threading.main_thread():
            for signum in (signal.SIGTERM, signal.SIGINT):
                self._previous_signal_handlers[signum] = signal.signal(signum, self._handle_signal)

        self._previous_threading_hook = threading.excepthook
        self._previous_sys_hook = sys.excepthook
        threading.excepthook = self._handle_thread_exception
        sys.excepthook = self._handle_process_exception
        self._hooks_installed = True

    def _restore_shutdown_hooks(self) -> None:
        if not self._hooks_installed:
            return

        if threading.current_thread() is threading.main_thread():
            for signum, previous in self._previous_signal_handlers.items():
                signal.signal(signum, previous)
        self._previous_signal_handlers.clear()

        threading.excepthook = self._previous_threading_hook
        sys.excepthook = self._previous_sys_hook
        self._hooks_installed = False

    # ------------------------------------------------------------------
    # Ciclo de push
    # ------------------------------------------------------------------

    def _skip(self, reason: str) -> int:
        PUSH_CYCLES_SKIPPED.labels(reason=reason).inc()
        return 0

    def poll_once(self) -> int:
        """Ejecuta un ciclo de push. Nunca lanza.

        Returns:
            Lecturas publicadas con ack en este ciclo
        """
        if not self._running:
            return self._skip("not_running")

        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("[SERVICE] Previous cycle still running, skipping")
            return self._skip("in_progress")

        try:
            store, bus = self._store, self._bus

            if store is None or not store.is_ready():
                logger.debug("[SERVICE] Redis not ready, skipping cycle")
                if store is not None:
                    store.ensure_reconnecting()
                return self._skip("redis_not_ready")

            if bus is None or not bus.is_ready():
                logger.debug("[SERVICE] MQTT not ready, skipping cycle")
                return self._skip("mqtt_not_ready")

            raw_readings = store.read_batch(self._settings.sensor_data_key)
            if not raw_readings:
                logger.debug("[SERVICE] No sensor data")
                return 0

            envelopes = self._normalizer.normalize_and_format(raw_readings)
            if not envelopes:
                logger.warning("[SERVICE] No valid readings after normalization")
                return 0

            results = bus.publish_batch(envelopes)
            published = self.update_stats(results)
            logger.info("[SERVICE] Cycle done, %d readings published", published)
            return published

        except Exception as e:
            self._stats.record_error()
            PUSH_CYCLE_ERRORS.inc()
            logger.error("[SERVICE] Cycle failed: %s", e, exc_info=True)
            return 0

        finally:
            self._cycle_lock.release()

    def update_stats(self, results: Iterable[PublishResult]) -> int:
        return self._stats.record_results(results)

    # ------------------------------------------------------------------
    # Registro de dispositivo
    # ------------------------------------------------------------------

    def register_device(self) -> bool:
        """Lee SN/IP de Redis y los publica en el topic de registro.

        Best effort: los errores se loguean y cuentan, no se propagan.
        """
        try:
            store, bus = self._store, self._bus
            if store is None or not store.is_ready():
                raise RuntimeError("Redis not ready, cannot read device identity")
            if bus is None or not bus.is_ready():
                raise RuntimeError("MQTT not ready, cannot publish registration")

            identity = store.read_device_identity()
            bus.publish_device_registration(identity)
            logger.info(
                "[SERVICE] Device registered - SN: %s, IP: %s",
                identity.serial_number,
                identity.ip_address,
            )
            return True

        except Exception as e:
            self._stats.record_error()
            logger.error("[SERVICE] Device registration failed: %s", e)
            return False

    def manual_register_device(self) -> bool:
        """Registro bajo demanda (endpoint HTTP)."""
        logger.info("[SERVICE] Manual device registration requested")
        return self.register_device()

    # ------------------------------------------------------------------
    # Observabilidad
    # ------------------------------------------------------------------

    def _store_ready(self) -> bool:
        store = self._store
        return store.is_ready() if store is not None else False

    def _bus_ready(self) -> bool:
        bus = self._bus
        return bus.is_ready() if bus is not None else False

    def get_stats(self) -> dict:
        """Estadísticas del servicio."""
        return {
            **self._stats.to_dict(),
            "is_running": self._running,
            "redis_connected": self._store_ready(),
            "mqtt_connected": self._bus_ready(),
        }

    def health_check(self) -> dict:
        """Health check: stopped / degraded / healthy."""
        status = HealthStatus(
            running=self._running,
            redis_ready=self._store_ready(),
            mqtt_ready=self._bus_ready(),
            config={
                "auto_register": self._settings.auto_register_on_start,
                "device_registration_topic": self._settings.device_registration_topic,
                "poll_interval": self._settings.poll_interval_ms,
            },
            stats=self.get_stats(),
        )
        return status.to_dict()
