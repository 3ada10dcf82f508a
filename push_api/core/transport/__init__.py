"""Transport layer - Publicación MQTT con reconexión resiliente."""

from .mqtt_client import MQTTBusConnection, resolve_device_name
from .watchdog import ReconnectWatchdog

__all__ = ["MQTTBusConnection", "ReconnectWatchdog", "resolve_device_name"]
