"""Modelos de dominio para lecturas de sensores.

Flujo de los contratos:
    Redis (RawReading) → normalización (NormalizedReading)
    → SensorEnvelope → PublishEnvelope (MQTT)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SensorStatus(str, Enum):
    """Estado de preparación de un sensor."""
    NO_VALUES = "no_values"
    INVALID_RANGE = "invalid_range"
    INCOMPLETE_INFO = "incomplete_info"
    ACTIVE = "active"
    ERROR = "error"


@dataclass(frozen=True)
class RawValueSpec:
    """Especificación de un valor tal como viene de Redis."""
    id: Any = None
    name_raw: str = ""
    code: Optional[str] = None
    min: Any = None
    max: Any = None
    calc: Any = None

    @classmethod
    def from_dict(cls, data: Any) -> "RawValueSpec":
        if not isinstance(data, Mapping):
            return cls()
        return cls(
            id=data.get("_id"),
            name_raw=data.get("name") or "",
            code=data.get("code"),
            min=data.get("min"),
            max=data.get("max"),
            calc=data.get("calc"),
        )


@dataclass(frozen=True)
class RawReading:
    """Lectura cruda de un dispositivo (item del array SENINF).

    Formato esperado en Redis:
    {
        "SN": "S1",
        "ADDRESS": 1,
        "DES": "\\xe6\\xba\\xab...",
        "name": "...",
        "profile": "...",
        "value": [{"_id": "...", "name": "...", "code": "A", "min": -1, "max": 60}]
    }
    """
    serial: Optional[str] = None
    address: Any = None
    description_raw: str = ""
    name_raw: str = ""
    profile: str = ""
    value_specs: Tuple[RawValueSpec, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RawReading":
        values = data.get("value") or []
        if not isinstance(values, (list, tuple)):
            values = []
        return cls(
            serial=data.get("SN"),
            address=data.get("ADDRESS"),
            description_raw=data.get("DES") or "",
            name_raw=data.get("name") or "",
            profile=data.get("profile") or "",
            value_specs=tuple(RawValueSpec.from_dict(v) for v in values),
        )

    @property
    def has_identity(self) -> bool:
        return self.serial not in (None, "") and self.address not in (None, "")


@dataclass(frozen=True)
class NormalizedValue:
    """Valor normalizado con rango validado."""
    id: Any
    name: str
    min: Optional[float]
    max: Optional[float]
    code: Optional[str]
    calc: Any
    type: str
    unit: Optional[str] = None

    @property
    def range_valid(self) -> bool:
        if self.min is None or self.max is None:
            return False
        return self.min < self.max

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "unit": self.unit,
            "code": self.code,
            "range": {
                "min": self.min,
                "max": self.max,
                "valid": self.range_valid,
            },
            "calculation": self.calc,
        }


@dataclass(frozen=True)
class NormalizedReading:
    """Lectura de dispositivo decodificada y clasificada."""
    serial: str
    description: str
    address: Any
    name: str
    profile: str
    values: Tuple[NormalizedValue, ...]
    status: SensorStatus
    processed_at: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True)
class SensorEnvelope:
    """Forma lista para publicar de una lectura."""
    reading: NormalizedReading

    @property
    def serial_number(self) -> str:
        return self.reading.serial

    def to_dict(self) -> Dict[str, Any]:
        r = self.reading
        return {
            "device_info": {
                "serial_number": r.serial,
                "description": r.description,
                "address": r.address,
                "name": r.name,
                "status": r.status.value,
            },
            "sensor_values": [v.to_dict() for v in r.values],
            "profile": r.profile,
            "metadata": {
                "processed_at": r.processed_at,
                "total_sensors": len(r.values),
            },
        }


@dataclass(frozen=True)
class PublishEnvelope:
    """Mensaje MQTT que agrupa las lecturas de un dispositivo.

    Inmutable; se entrega una sola vez al BusConnection y no se reintenta.
    """
    device_name: str
    sensors: Tuple[Mapping[str, Any], ...]
    published_by: str
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_info": {
                "device_name": self.device_name,
                "total_sensors": len(self.sensors),
                "status": "active",
            },
            "sensors": [
                {
                    "device_info": s.get("device_info"),
                    "sensor_values": s.get("sensor_values"),
                    "profile": s.get("profile"),
                    "metadata": s.get("metadata"),
                }
                for s in self.sensors
            ],
            "timestamp": self.timestamp,
            "published_by": self.published_by,
        }


@dataclass(frozen=True)
class DeviceIdentity:
    """Identidad del gateway leída de Redis (DeviceSN + ip)."""
    serial_number: Optional[str]
    ip_address: Optional[str]

    @property
    def missing_fields(self) -> List[str]:
        missing = []
        if not self.serial_number:
            missing.append("serial_number")
        if not self.ip_address:
            missing.append("ip_address")
        return missing


@dataclass(frozen=True)
class PublishResult:
    """Resultado de publicar el envelope de un dispositivo."""
    device_name: str
    topic: str
    reading_count: int
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
