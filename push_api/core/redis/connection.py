"""Conexión resiliente a Redis (lado de lectura del pipeline)."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

import orjson
import redis

from common.config import Settings

from ..domain.connection_state import ConnectionState
from ..domain.errors import ConnectError, MissingField, NotConnected
from ..domain.reading import DeviceIdentity
from ..monitoring.metrics import set_connection_state
from .backoff import ReconnectExecutor, ReconnectPolicy

logger = logging.getLogger(__name__)

BACKEND = "redis"
TRANSPORT_ERRORS = (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError)


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def policy_from_settings(settings: Settings) -> ReconnectPolicy:
    return ReconnectPolicy(
        base_delay=settings.redis_retry_base_delay,
        max_delay=settings.redis_retry_max_delay,
        max_attempts=settings.redis_retry_max_attempts,
        max_total_seconds=settings.redis_retry_max_total_seconds,
    )


class RedisStoreConnection:
    """Gestiona la conexión a Redis con su propia política de reconexión.

    Responsabilidades:
    - Conexión inicial con backoff acotado
    - Lecturas puntuales, batch (MGET) e identidad del dispositivo
    - Reconexión en segundo plano tras errores de transporte
    """

    def __init__(
        self,
        settings: Settings,
        client_factory: Optional[Callable[[], redis.Redis]] = None,
        executor: Optional[ReconnectExecutor] = None,
    ):
        self._settings = settings
        self._client_factory = client_factory or self._default_client
        self._executor = executor or ReconnectExecutor(policy_from_settings(settings))

        self._client: Optional[redis.Redis] = None
        self._state = ConnectionState.DISCONNECTED
        self._healthy = False
        self._closing = False
        self._lock = threading.RLock()
        self._reconnect_thread: Optional[threading.Thread] = None

    def _default_client(self) -> redis.Redis:
        return redis.Redis(
            host=self._settings.redis_host,
            port=self._settings.redis_port,
            password=self._settings.redis_password,
            db=self._settings.redis_db,
            decode_responses=False,
            socket_timeout=self._settings.redis_connect_timeout,
            socket_connect_timeout=self._settings.redis_connect_timeout,
        )

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._client

    def _set_state(self, state: ConnectionState) -> None:
        with self._lock:
            if self._state == state:
                return
            logger.info("[REDIS] State %s -> %s", self._state.value, state.value)
            self._state = state
        set_connection_state(BACKEND, state)

    def _attempt(self) -> redis.Redis:
        client = self._client_factory()
        client.ping()
        return client

    def _establish(self) -> None:
        client = self._executor.execute(self._attempt, should_continue=lambda: not self._closing)
        with self._lock:
            if self._closing:
                client.close()
                return
            previous, self._client = self._client, client
            self._healthy = True
        if previous is not None and previous is not client:
            try:
                previous.close()
            except Exception as e:
                logger.debug("[REDIS] Error closing stale client: %s", e)
        self._set_state(ConnectionState.CONNECTED)
        logger.info(
            "[REDIS] Connected to %s:%d db=%d",
            self._settings.redis_host,
            self._settings.redis_port,
            self._settings.redis_db,
        )

    def connect(self) -> None:
        """Conecta a Redis aplicando la política de reintentos.

        Raises:
            ConnectRefused: el servidor rechazó la conexión
            RetryBudgetExceeded: se agotaron tiempo o intentos
        """
        self._closing = False
        self._set_state(ConnectionState.CONNECTING)
        try:
            self._establish()
        except ConnectError as e:
            self._set_state(ConnectionState.DISCONNECTED)
            logger.error("[REDIS] Connection failed: %s", e)
            raise

    def is_ready(self) -> bool:
        with self._lock:
            return (
                self._state == ConnectionState.CONNECTED
                and self._client is not None
                and self._healthy
            )

    def _require_ready(self) -> redis.Redis:
        with self._lock:
            if not self.is_ready():
                raise NotConnected(BACKEND)
            return self._client

    def _on_transport_error(self, error: Exception) -> None:
        """Marca el transporte como caído y lanza la reconexión en background."""
        with self._lock:
            if self._closing:
                return
            self._healthy = False
            if self._state != ConnectionState.CONNECTED:
                return
        logger.error("[REDIS] Transport error: %s", error)
        self._set_state(ConnectionState.RECONNECTING)
        self._start_background_reconnect()

    def _start_background_reconnect(self) -> None:
        with self._lock:
            if self._reconnect_thread is not None and self._reconnect_thread.is_alive():
                return
            self._reconnect_thread = threading.Thread(
                target=self._background_reconnect,
                name="redis-reconnect",
                daemon=True,
            )
            self._reconnect_thread.start()

    def _background_reconnect(self) -> None:
        try:
            self._establish()
        except ConnectError as e:
            self._set_state(ConnectionState.DISCONNECTED)
            logger.error("[REDIS] Background reconnect gave up: %s", e)

    def ensure_reconnecting(self) -> bool:
        """Relanza la reconexión si la anterior se rindió.

        Solo aplica a un store que llegó a conectar y no se está cerrando;
        cada llamada arranca la política con presupuesto nuevo.

        Returns:
            True si se lanzó un nuevo intento en background
        """
        with self._lock:
            if self._closing or self._client is None:
                return False
            if self._state != ConnectionState.DISCONNECTED:
                return False
            if self._reconnect_thread is not None and self._reconnect_thread.is_alive():
                return False
            logger.info("[REDIS] Retrying connection after previous give-up")
            self._set_state(ConnectionState.RECONNECTING)
            self._start_background_reconnect()
        return True

    def get_value(self, key: str) -> Optional[str]:
        """Lee un valor puntual como texto (None si no existe)."""
        client = self._require_ready()
        try:
            value = client.get(key)
        except TRANSPORT_ERRORS as e:
            self._on_transport_error(e)
            raise
        logger.debug("[REDIS] GET %s -> %r", key, value)
        return _to_text(value)

    def read_batch(self, key: str) -> List[Any]:
        """Lee el array JSON de lecturas guardado en `key`.

        Returns:
            Lista de items crudos; vacía si la clave no existe
        """
        client = self._require_ready()
        try:
            data = client.get(key)
        except TRANSPORT_ERRORS as e:
            self._on_transport_error(e)
            raise

        if not data:
            logger.warning("[REDIS] Key not found: %s", key)
            return []

        readings = orjson.loads(data)
        if not isinstance(readings, list):
            logger.warning("[REDIS] Key %s does not hold a JSON array", key)
            return []

        logger.debug("[REDIS] Read %d devices from %s", len(readings), key)
        return readings

    def read_device_identity(self) -> DeviceIdentity:
        """Lee DeviceSN e IP en un solo round-trip.

        Raises:
            MissingField: si falta alguna de las dos claves
        """
        client = self._require_ready()
        sn_key = self._settings.device_sn_key
        ip_key = self._settings.device_ip_key
        try:
            serial, ip = client.mget([sn_key, ip_key])
        except TRANSPORT_ERRORS as e:
            self._on_transport_error(e)
            raise

        serial = _to_text(serial)
        ip = _to_text(ip)
        if not serial:
            raise MissingField(sn_key)
        if not ip:
            raise MissingField(ip_key)

        identity = DeviceIdentity(serial_number=serial, ip_address=ip)
        logger.info("[REDIS] Device identity: SN=%s IP=%s", serial, ip)
        return identity

    def read_many(self, keys: Sequence[str]) -> Dict[str, Any]:
        """Lectura batch (MGET) con éxito parcial.

        Las claves ausentes quedan en None; las que no parsean como JSON
        se loguean y se excluyen del resultado.
        """
        keys = list(keys)
        if not keys:
            return {}

        client = self._require_ready()
        try:
            values = client.mget(keys)
        except TRANSPORT_ERRORS as e:
            self._on_transport_error(e)
            raise

        results: Dict[str, Any] = {}
        for key, raw in zip(keys, values):
            if raw is None:
                logger.debug("[REDIS] Key %s has no value", key)
                results[key] = None
                continue
            try:
                results[key] = orjson.loads(raw)
            except orjson.JSONDecodeError as e:
                logger.warning("[REDIS] Cannot parse value of %s: %s", key, e)

        logger.info(
            "[REDIS] Batch read: %d/%d keys with value",
            sum(1 for v in results.values() if v is not None),
            len(keys),
        )
        return results

    def ping(self) -> bool:
        client = self._client
        if client is None:
            return False
        try:
            return bool(client.ping())
        except Exception as e:
            logger.warning("[REDIS] Ping failed: %s", e)
            return False

    def disconnect(self) -> None:
        """Cierra la conexión; nunca propaga errores."""
        with self._lock:
            self._closing = True
            client = self._client
            self._client = None
            self._healthy = False
        try:
            if client is not None:
                client.close()
                logger.info("[REDIS] Connection closed")
        except Exception as e:
            logger.error("[REDIS] Error closing connection: %s", e)
        self._set_state(ConnectionState.DISCONNECTED)

    @property
    def stats(self) -> dict:
        return {
            "state": self.state.value,
            "ready": self.is_ready(),
            "host": f"{self._settings.redis_host}:{self._settings.redis_port}",
            **self._executor.stats,
        }
