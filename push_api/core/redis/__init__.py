"""Redis layer - Lectura resiliente de lecturas de sensores."""

from .backoff import ReconnectExecutor, ReconnectPolicy
from .connection import RedisStoreConnection

__all__ = ["RedisStoreConnection", "ReconnectExecutor", "ReconnectPolicy"]
