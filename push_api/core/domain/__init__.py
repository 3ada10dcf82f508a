"""Domain layer - Modelos, errores y catálogo de unidades."""

from .connection_state import ConnectionState
from .errors import (
    ConnectError,
    ConnectRefused,
    ConnectTimeout,
    DecodeFailure,
    IncompleteIdentity,
    MissingField,
    NotConnected,
    PublishFailure,
    PushServiceError,
    RetryBudgetExceeded,
)
from .reading import (
    DeviceIdentity,
    NormalizedReading,
    NormalizedValue,
    PublishEnvelope,
    PublishResult,
    RawReading,
    RawValueSpec,
    SensorEnvelope,
    SensorStatus,
)
from .units import DEFAULT_CATALOG, SensorUnit, UnitCatalog

__all__ = [
    "ConnectionState",
    "ConnectError",
    "ConnectRefused",
    "ConnectTimeout",
    "DecodeFailure",
    "IncompleteIdentity",
    "MissingField",
    "NotConnected",
    "PublishFailure",
    "PushServiceError",
    "RetryBudgetExceeded",
    "DeviceIdentity",
    "NormalizedReading",
    "NormalizedValue",
    "PublishEnvelope",
    "PublishResult",
    "RawReading",
    "RawValueSpec",
    "SensorEnvelope",
    "SensorStatus",
    "DEFAULT_CATALOG",
    "SensorUnit",
    "UnitCatalog",
]
