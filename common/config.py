from __future__ import annotations

import logging
import os
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = ("redis_password", "mqtt_password")
VALID_BROKER_SCHEMES = ("mqtt", "mqtts", "tcp", "ssl")


class ConfigError(ValueError):
    """Configuración inválida o incompleta."""


def _default_env_file() -> str:
    # config.env en el directorio de trabajo.
    return str(Path.cwd() / "config.env")


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    raw = _env_str(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    # Redis
    redis_host: str = "127.0.0.1"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    redis_connect_timeout: float = 5.0
    redis_retry_base_delay: float = 0.1
    redis_retry_max_delay: float = 3.0
    redis_retry_max_attempts: int = 10
    redis_retry_max_total_seconds: float = 3600.0

    # MQTT
    mqtt_broker_url: str = "mqtt://localhost:1883"
    mqtt_client_id: str = "mqtt-push-service"
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_keepalive: int = 60
    mqtt_connect_timeout: float = 30.0
    mqtt_reconnect_period: float = 5.0
    mqtt_watchdog_interval: float = 20.0
    mqtt_publish_ack_timeout: float = 30.0
    mqtt_flush_delay: float = 1.0

    # Servicio
    poll_interval_ms: int = 5000
    log_level: str = "info"
    log_dir: str = "logs"
    stats_log_interval: float = 60.0
    http_port: int = 0

    # Sensores
    sensor_data_key: str = "SENINF"
    device_topic_prefix: str = "device"

    # Registro de dispositivo
    device_registration_topic: str = "device/name"
    device_sn_key: str = "DeviceSN"
    device_ip_key: str = "ip"
    auto_register_on_start: bool = True

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def broker_host(self) -> str:
        return urlparse(self.mqtt_broker_url).hostname or "localhost"

    @property
    def broker_port(self) -> int:
        parsed = urlparse(self.mqtt_broker_url)
        if parsed.port:
            return parsed.port
        return 8883 if self.broker_uses_tls else 1883

    @property
    def broker_uses_tls(self) -> bool:
        return urlparse(self.mqtt_broker_url).scheme in ("mqtts", "ssl")

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def safe_dict(self) -> Dict[str, Any]:
        """Vista de la configuración con credenciales ocultas (para logs)."""
        data = self.as_dict()
        for key in SENSITIVE_KEYS:
            if data.get(key):
                data[key] = "***"
        return data

    def validate(self) -> None:
        required = {
            "REDIS_HOST": self.redis_host,
            "REDIS_PORT": self.redis_port,
            "MQTT_BROKER_URL": self.mqtt_broker_url,
            "SENSOR_DATA_KEY": self.sensor_data_key,
        }
        missing = [k for k, v in required.items() if v is None or v == ""]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

        if not 1 <= self.redis_port <= 65535:
            raise ConfigError("REDIS_PORT must be within 1-65535")

        if self.poll_interval_ms <= 0:
            raise ConfigError("POLL_INTERVAL must be positive")

        if self.poll_interval_ms < 1000:
            logger.warning(
                "[CONFIG] POLL_INTERVAL=%dms is below 1s, this may load the system",
                self.poll_interval_ms,
            )

        parsed = urlparse(self.mqtt_broker_url)
        if parsed.scheme not in VALID_BROKER_SCHEMES or not parsed.hostname:
            raise ConfigError(f"Invalid MQTT_BROKER_URL: {self.mqtt_broker_url!r}")


def get_settings(env_file: Optional[str] = None) -> Settings:
    # Carga el archivo env (si existe) sin pisar variables reales de entorno.
    env_file = env_file or os.getenv("IOT_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    settings = Settings(
        redis_host=_env_str("REDIS_HOST", "127.0.0.1"),
        redis_port=_env_int("REDIS_PORT", 6379),
        redis_password=_env_str("REDIS_PASSWORD"),
        redis_db=_env_int("REDIS_DB", 0),
        redis_connect_timeout=_env_float("REDIS_CONNECT_TIMEOUT", 5.0),
        redis_retry_base_delay=_env_float("REDIS_RETRY_BASE_DELAY", 0.1),
        redis_retry_max_delay=_env_float("REDIS_RETRY_MAX_DELAY", 3.0),
        redis_retry_max_attempts=_env_int("REDIS_RETRY_MAX_ATTEMPTS", 10),
        redis_retry_max_total_seconds=_env_float("REDIS_RETRY_MAX_TOTAL_SECONDS", 3600.0),
        mqtt_broker_url=_env_str("MQTT_BROKER_URL", "mqtt://localhost:1883"),
        mqtt_client_id=_env_str("MQTT_CLIENT_ID", f"mqtt-push-service-{int(time.time() * 1000)}"),
        mqtt_username=_env_str("MQTT_USERNAME"),
        mqtt_password=_env_str("MQTT_PASSWORD"),
        mqtt_keepalive=_env_int("MQTT_KEEPALIVE", 60),
        mqtt_connect_timeout=_env_float("MQTT_CONNECT_TIMEOUT", 30.0),
        mqtt_reconnect_period=_env_float("MQTT_RECONNECT_PERIOD", 5.0),
        mqtt_watchdog_interval=_env_float("MQTT_WATCHDOG_INTERVAL", 20.0),
        mqtt_publish_ack_timeout=_env_float("MQTT_PUBLISH_ACK_TIMEOUT", 30.0),
        mqtt_flush_delay=_env_float("MQTT_FLUSH_DELAY", 1.0),
        poll_interval_ms=_env_int("POLL_INTERVAL", 5000),
        log_level=_env_str("LOG_LEVEL", "info"),
        log_dir=_env_str("LOG_DIR", "logs"),
        stats_log_interval=_env_float("STATS_LOG_INTERVAL", 60.0),
        http_port=_env_int("HTTP_PORT", 0),
        sensor_data_key=_env_str("SENSOR_DATA_KEY", "SENINF"),
        device_topic_prefix=_env_str("DEVICE_TOPIC_PREFIX", "device"),
        device_registration_topic=_env_str("DEVICE_REGISTRATION_TOPIC", "device/name"),
        device_sn_key=_env_str("DEVICE_SN_KEY", "DeviceSN"),
        device_ip_key=_env_str("DEVICE_IP_KEY", "ip"),
        auto_register_on_start=_env_bool("AUTO_REGISTER_ON_START", True),
    )
    settings.validate()
    return settings
