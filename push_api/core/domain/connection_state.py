"""Estado de conexión compartido por Redis y MQTT."""

from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    """Estados de una conexión a backend."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
