"""Cliente MQTT para publicación de lecturas.

Dos mecanismos de reconexión conviven:
- el reconnect interno de paho (reconnect_delay_set)
- un watchdog externo que, si la conexión sigue caída, destruye el
  cliente y reconecta desde cero

Máquina de estados:
    disconnected -connect-> connecting -CONNACK-> connected
    connected -disconnect/fallo-> reconnecting (watchdog armado)
    reconnecting -watchdog-> connecting
    reconnecting -reconnect interno ok-> connected (watchdog desarmado)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import orjson
import paho.mqtt.client as mqtt

from common.config import Settings

from ..domain.connection_state import ConnectionState
from ..domain.errors import (
    ConnectError,
    ConnectRefused,
    ConnectTimeout,
    IncompleteIdentity,
    NotConnected,
    PublishFailure,
)
from ..domain.reading import DeviceIdentity, PublishEnvelope, PublishResult, utc_now_iso
from ..monitoring.metrics import PUSH_ENVELOPES_PUBLISHED, set_connection_state
from .watchdog import ReconnectWatchdog

logger = logging.getLogger(__name__)

BACKEND = "mqtt"
QOS_AT_LEAST_ONCE = 1
UNKNOWN_DEVICE = "unknown_device"


def _serial_from_device_info(record: Mapping[str, Any]) -> Optional[str]:
    device_info = record.get("device_info")
    if isinstance(device_info, Mapping):
        return device_info.get("serial_number")
    return None


def _raw_serial(record: Mapping[str, Any]) -> Optional[str]:
    return record.get("SN")


def _address_name(record: Mapping[str, Any]) -> Optional[str]:
    address = record.get("ADDRESS")
    if address in (None, ""):
        return None
    return f"device_{address}"


# Orden de resolución del nombre de dispositivo; gana el primero no vacío.
# Si ninguno aplica se usa UNKNOWN_DEVICE.
DEVICE_NAME_FALLBACKS: Tuple[Callable[[Mapping[str, Any]], Optional[str]], ...] = (
    _serial_from_device_info,
    _raw_serial,
    _address_name,
)


def resolve_device_name(record: Mapping[str, Any]) -> str:
    for candidate in DEVICE_NAME_FALLBACKS:
        name = candidate(record)
        if name:
            return str(name)
    logger.warning("[MQTT] Cannot resolve device name, using %s", UNKNOWN_DEVICE)
    return UNKNOWN_DEVICE


def _as_record(reading: Any) -> Dict[str, Any]:
    if hasattr(reading, "to_dict"):
        return reading.to_dict()
    return dict(reading)


def _is_failure(reason_code: Any) -> bool:
    if isinstance(reason_code, int):
        return reason_code != 0
    return bool(getattr(reason_code, "is_failure", False))


class MQTTBusConnection:
    """Conexión resiliente al broker MQTT.

    Responsabilidades:
    - Conexión con last will, keepalive y timeout acotado
    - Reconexión doble (paho + watchdog) sin intentos concurrentes
    - Publicación de lecturas, registro de dispositivo y presencia
    """

    def __init__(
        self,
        settings: Settings,
        client_factory: Optional[Callable[[], mqtt.Client]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._settings = settings
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep

        self._client: Optional[mqtt.Client] = None
        self._state = ConnectionState.DISCONNECTED
        self._lock = threading.RLock()
        self._connected_event = threading.Event()
        self._connect_error: Optional[ConnectError] = None
        self._closing = False
        self._has_connected = False
        self._reconnect_count = 0

        self._watchdog = ReconnectWatchdog(
            interval=settings.mqtt_watchdog_interval,
            action=self._watchdog_reconnect,
            is_connected=self.is_ready,
        )

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    @property
    def client_id(self) -> str:
        return self._settings.mqtt_client_id

    @property
    def will_topic(self) -> str:
        return f"{self._settings.device_topic_prefix}/status"

    @property
    def status_topic(self) -> str:
        return f"{self._settings.device_topic_prefix}/service/status"

    def reading_topic(self, device_name: str) -> str:
        return f"{self._settings.device_topic_prefix}/{device_name}/seninf"

    def sensor_value_topic(self, device_name: str, sensor_id: str) -> str:
        return f"{self._settings.device_topic_prefix}/{device_name}/{sensor_id}"

    def feeding_topic(self, device_name: str) -> str:
        return f"{self._settings.device_topic_prefix}/{device_name}/feeding"

    def _presence_payload(self, status: str) -> Dict[str, Any]:
        return {
            "clientId": self.client_id,
            "status": status,
            "timestamp": utc_now_iso(),
        }

    # ------------------------------------------------------------------
    # Estado
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def watchdog(self) -> ReconnectWatchdog:
        return self._watchdog

    def _set_state(self, state: ConnectionState) -> None:
        with self._lock:
            if self._state == state:
                return
            logger.info("[MQTT] State %s -> %s", self._state.value, state.value)
            self._state = state
        set_connection_state(BACKEND, state)

    def is_ready(self) -> bool:
        with self._lock:
            client = self._client
            if self._state != ConnectionState.CONNECTED or client is None:
                return False
        return bool(client.is_connected())

    def _require_ready(self) -> mqtt.Client:
        with self._lock:
            client = self._client
        if client is None or not self.is_ready():
            raise NotConnected(BACKEND)
        return client

    # ------------------------------------------------------------------
    # Conexión
    # ------------------------------------------------------------------

    def _default_client(self) -> mqtt.Client:
        return mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            protocol=mqtt.MQTTv311,
            clean_session=True,
        )

    def _build_client(self) -> mqtt.Client:
        s = self._settings
        client = self._client_factory()

        if s.mqtt_username:
            client.username_pw_set(s.mqtt_username, s.mqtt_password)
        if s.broker_uses_tls:
            client.tls_set()

        client.will_set(
            self.will_topic,
            payload=orjson.dumps(self._presence_payload("offline")),
            qos=QOS_AT_LEAST_ONCE,
            retain=True,
        )
        client.reconnect_delay_set(min_delay=1, max_delay=max(1, int(s.mqtt_reconnect_period)))

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_connect_fail = self._on_connect_fail
        return client

    def _teardown_client(self) -> None:
        """Destruye el cliente actual; sus callbacks quedan obsoletos."""
        with self._lock:
            old = self._client
            self._client = None
        if old is None:
            return
        for step in ("disconnect", "loop_stop"):
            try:
                getattr(old, step)()
            except Exception as e:
                logger.debug("[MQTT] Teardown step %s failed: %s", step, e)

    def _open(self) -> None:
        """Crea un cliente nuevo y espera el CONNACK."""
        s = self._settings
        self._teardown_client()

        with self._lock:
            self._connected_event.clear()
            self._connect_error = None
            client = self._build_client()
            self._client = client

        self._set_state(ConnectionState.CONNECTING)
        logger.info("[MQTT] Connecting to %s:%d", s.broker_host, s.broker_port)
        client.connect_async(s.broker_host, s.broker_port, keepalive=s.mqtt_keepalive)
        client.loop_start()

        if not self._connected_event.wait(s.mqtt_connect_timeout):
            raise ConnectTimeout(BACKEND, f"no CONNACK within {s.mqtt_connect_timeout:.0f}s")
        if self._connect_error is not None:
            raise self._connect_error

    def connect(self) -> None:
        """Conecta al broker.

        Raises:
            ConnectTimeout: el broker no respondió dentro del timeout
            ConnectRefused: el broker rechazó la conexión o no es alcanzable
        """
        self._closing = False
        try:
            self._open()
        except ConnectError as e:
            logger.error("[MQTT] Connection failed: %s", e)
            self._watchdog.disarm()
            self._teardown_client()
            self._set_state(ConnectionState.DISCONNECTED)
            raise

    def _watchdog_reconnect(self) -> None:
        """Reconexión completa disparada por el watchdog."""
        if self._closing or self.is_ready():
            return
        self._reconnect_count += 1
        logger.info("[MQTT] Full reconnect (attempt %d)", self._reconnect_count)
        try:
            self._open()
        except ConnectError:
            # El cliente nuevo sigue con su reconnect interno hasta el próximo disparo.
            self._set_state(ConnectionState.RECONNECTING)
            raise

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback de conexión."""
        if client is not self._client:
            return

        if _is_failure(reason_code):
            logger.error("[MQTT] Broker refused connection: %s", reason_code)
            self._connect_error = ConnectRefused(BACKEND, f"broker refused: {reason_code}")
            self._connected_event.set()
            return

        if self._has_connected and self._state != ConnectionState.CONNECTING:
            self._reconnect_count += 1
        self._has_connected = True

        self._set_state(ConnectionState.CONNECTED)
        self._connected_event.set()
        logger.info("[MQTT] Connected to %s", self._settings.mqtt_broker_url)

        self._watchdog.disarm()
        self.publish_status("online")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        """Callback de desconexión."""
        if client is not self._client:
            return

        if self._closing:
            self._set_state(ConnectionState.DISCONNECTED)
            return

        logger.warning("[MQTT] Disconnected (rc=%s)", reason_code)
        self._set_state(ConnectionState.RECONNECTING)
        self._watchdog.arm()

    def _on_connect_fail(self, client, userdata):
        """Callback de fallo de conexión TCP (reintento interno de paho)."""
        if client is not self._client or self._closing:
            return

        logger.warning("[MQTT] Connect attempt failed")
        if not self._connected_event.is_set():
            self._connect_error = ConnectRefused(BACKEND, "broker unreachable")
            self._connected_event.set()

        if self.state != ConnectionState.CONNECTING:
            self._set_state(ConnectionState.RECONNECTING)
            self._watchdog.arm()

    def disconnect(self) -> None:
        """Cierre ordenado: offline, flush breve y desconexión. No lanza."""
        self._closing = True
        self._watchdog.disarm()

        with self._lock:
            client = self._client

        if client is not None:
            try:
                self.publish_status("offline")
                self._sleep(self._settings.mqtt_flush_delay)
                client.disconnect()
                client.loop_stop()
                logger.info("[MQTT] Connection closed")
            except Exception as e:
                logger.error("[MQTT] Error closing connection: %s", e)

        with self._lock:
            self._client = None
        self._set_state(ConnectionState.DISCONNECTED)

    # ------------------------------------------------------------------
    # Publicación
    # ------------------------------------------------------------------

    def _send(
        self,
        client: mqtt.Client,
        topic: str,
        payload: Mapping[str, Any],
        retain: bool = False,
    ) -> mqtt.MQTTMessageInfo:
        try:
            info = client.publish(topic, orjson.dumps(payload), qos=QOS_AT_LEAST_ONCE, retain=retain)
        except (ValueError, RuntimeError) as e:
            # paho rechaza topics vacíos, con wildcards o payloads demasiado grandes.
            raise PublishFailure(topic, str(e)) from e
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishFailure(topic, mqtt.error_string(info.rc))
        return info

    def _await_ack(self, topic: str, info: mqtt.MQTTMessageInfo) -> None:
        try:
            info.wait_for_publish(timeout=self._settings.mqtt_publish_ack_timeout)
        except (RuntimeError, ValueError) as e:
            raise PublishFailure(topic, str(e)) from e
        if not info.is_published():
            raise PublishFailure(topic, "no acknowledgement from broker")

    def _publish_and_wait(self, topic: str, payload: Mapping[str, Any]) -> None:
        client = self._require_ready()
        info = self._send(client, topic, payload)
        self._await_ack(topic, info)

    def publish_reading(self, device_name: str, reading: Any) -> None:
        """Publica una lectura y espera el ack del broker.

        Raises:
            NotConnected: la conexión no está lista
            PublishFailure: el broker no confirmó la publicación
        """
        topic = self.reading_topic(device_name)
        payload = {
            **_as_record(reading),
            "timestamp": utc_now_iso(),
            "published_by": self.client_id,
        }
        self._publish_and_wait(topic, payload)
        logger.debug("[MQTT] Published reading to %s", topic)

    def publish_batch(
        self,
        readings: Iterable[Any],
        device_name: Optional[str] = None,
    ) -> List[PublishResult]:
        """Publica un envelope por dispositivo con todas sus lecturas.

        Dispara todas las publicaciones y luego espera cada ack; el fallo
        de un dispositivo no impide registrar el resto.

        Args:
            readings: SensorEnvelope o diccionarios ya formateados
            device_name: Nombre fijo para todas las lecturas (opcional)

        Returns:
            Un PublishResult por dispositivo, en orden de aparición
        """
        client = self._require_ready()

        groups: Dict[str, List[Dict[str, Any]]] = {}
        for reading in readings:
            record = _as_record(reading)
            name = device_name or resolve_device_name(record)
            groups.setdefault(name, []).append(record)

        in_flight = []
        for name, records in groups.items():
            envelope = PublishEnvelope(
                device_name=name,
                sensors=tuple(records),
                published_by=self.client_id,
            )
            topic = self.reading_topic(name)
            try:
                info = self._send(client, topic, envelope.to_dict())
                in_flight.append((name, topic, len(records), info, None))
            except PublishFailure as e:
                in_flight.append((name, topic, len(records), None, e))

        results: List[PublishResult] = []
        for name, topic, count, info, error in in_flight:
            if error is None:
                try:
                    self._await_ack(topic, info)
                except PublishFailure as e:
                    error = e

            if error is None:
                PUSH_ENVELOPES_PUBLISHED.labels(status="success").inc()
                logger.info("[MQTT] Published %d sensors for device %s", count, name)
                results.append(PublishResult(name, topic, count))
            else:
                PUSH_ENVELOPES_PUBLISHED.labels(status="failed").inc()
                logger.error("[MQTT] Publish failed for device %s: %s", name, error)
                results.append(PublishResult(name, topic, count, error=str(error)))

        failed = sum(1 for r in results if not r.ok)
        if failed:
            logger.warning("[MQTT] Batch publish finished, %d/%d devices failed", failed, len(results))
        return results

    def publish_sensor_values(
        self,
        device_name: str,
        values: Mapping[str, Any],
    ) -> List[PublishResult]:
        """Publica el valor de cada sensor en {prefix}/{device}/{sensorId}.

        Las claves con valor None se ignoran.
        """
        client = self._require_ready()

        in_flight = []
        for sensor_id, value in values.items():
            if value is None:
                continue
            topic = self.sensor_value_topic(device_name, sensor_id)
            body = value if isinstance(value, Mapping) else {"value": value}
            payload = {
                **body,
                "sensorId": sensor_id,
                "timestamp": utc_now_iso(),
                "published_by": self.client_id,
            }
            try:
                in_flight.append((sensor_id, topic, self._send(client, topic, payload), None))
            except PublishFailure as e:
                in_flight.append((sensor_id, topic, None, e))

        results: List[PublishResult] = []
        for sensor_id, topic, info, error in in_flight:
            if error is None:
                try:
                    self._await_ack(topic, info)
                except PublishFailure as e:
                    error = e
            if error is not None:
                logger.error("[MQTT] Publish failed for sensor %s: %s", sensor_id, error)
            results.append(PublishResult(device_name, topic, 1, str(error) if error else None))
        return results

    def publish_feeding_data(self, device_name: str, feeding: Mapping[str, Any]) -> None:
        """Publica el día de alimentación del lote en {prefix}/{device}/feeding.

        Raises:
            NotConnected: la conexión no está lista
            PublishFailure: el broker no confirmó la publicación
        """
        topic = self.feeding_topic(device_name)
        payload = {
            "feedDay": feeding.get("feedDay"),
            "timestamp": feeding.get("timestamp"),
        }
        self._publish_and_wait(topic, payload)
        logger.info("[MQTT] Published feeding data to %s", topic)

    def publish_device_registration(self, identity: DeviceIdentity) -> None:
        """Publica la identidad del gateway en el topic de registro.

        Raises:
            NotConnected: la conexión no está lista
            IncompleteIdentity: falta SN o IP
            PublishFailure: el broker no confirmó la publicación
        """
        self._require_ready()
        missing = identity.missing_fields
        if missing:
            raise IncompleteIdentity(missing)

        topic = self._settings.device_registration_topic
        payload = {
            "deviceSN": identity.serial_number,
            "ip": identity.ip_address,
            "clientId": self.client_id,
            "registeredAt": utc_now_iso(),
            "action": "register",
        }
        self._publish_and_wait(topic, payload)
        logger.info(
            "[MQTT] Device registered - SN: %s, IP: %s",
            identity.serial_number,
            identity.ip_address,
        )

    def publish_status(self, status: str) -> None:
        """Heartbeat de presencia (retained). Nunca lanza."""
        try:
            with self._lock:
                client = self._client
            if client is None:
                return
            # Sin esperar ack: se invoca desde el hilo de red de paho.
            self._send(client, self.status_topic, self._presence_payload(status), retain=True)
            logger.debug("[MQTT] Status updated: %s", status)
        except Exception as e:
            logger.error("[MQTT] Status publish failed: %s", e)

    # ------------------------------------------------------------------
    # Observabilidad
    # ------------------------------------------------------------------

    @property
    def reconnect_count(self) -> int:
        return self._reconnect_count

    @property
    def stats(self) -> dict:
        return {
            "state": self.state.value,
            "ready": self.is_ready(),
            "broker": f"{self._settings.broker_host}:{self._settings.broker_port}",
            "reconnect_count": self._reconnect_count,
            "watchdog_armed": self._watchdog.armed,
        }
