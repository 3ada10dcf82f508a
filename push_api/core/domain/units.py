"""Catálogo de tipos de sensor por código de un carácter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

UNKNOWN_TYPE = "unknown"


@dataclass(frozen=True)
class SensorUnit:
    """Tipo de sensor: nombre legible, unidad e icono."""
    code: str
    name: str
    unit: str
    img: str = "gas.png"


_UNITS: tuple[SensorUnit, ...] = (
    SensorUnit("B", "濕度", "%", "humidity.png"),
    SensorUnit("C", "二氧化碳", "ppm", "co2.png"),
    SensorUnit("D", "氨氣濃度", "ppm"),
    SensorUnit("E", "PM 1.0", "µg/m³"),
    SensorUnit("F", "PM 2.5", "µg/m³"),
    SensorUnit("G", "PM10", "µg/m³"),
    SensorUnit("A", "溫度", "℃", "temperature.png"),
    SensorUnit("H", "硫化氫濃度", "ppm"),
    SensorUnit("I", "照度", "lux"),
    SensorUnit("J", "氧氣濃度", "%"),
    SensorUnit("K", "飼料供給量", "kg"),
    SensorUnit("L", "飲用水量", "L"),
    SensorUnit("M", "液位", "cm"),
    SensorUnit("N", "水位狀態", "state"),
    SensorUnit("O", "即時重量", "g"),
    SensorUnit("P", "瞬間功率", "KW"),
    SensorUnit("Q", "重量", "g"),
    SensorUnit("R", "風速", "m/s"),
    SensorUnit("S", "負壓", "pa"),
    SensorUnit("9", "虛擬", "虛擬"),
    SensorUnit("T", "開關量", "開關量"),
    SensorUnit("X", "電流", "A"),
    SensorUnit("W", "電壓", "V"),
    SensorUnit("Z", "度", "KWh"),
    SensorUnit("Y", "即時功率", "W"),
    SensorUnit("U", "功率因數", "PF"),
    SensorUnit("V", "風向", "°"),
    SensorUnit("a", "紫外線強度", "mW/cm²"),
    SensorUnit("b", "光量子", "umol/m²s"),
    SensorUnit("c", "雨滴感知", " "),
    SensorUnit("d", "電導度", "us/cm"),
    SensorUnit("e", "PH", "PH"),
    SensorUnit("f", "水活性", "aw"),
    SensorUnit("g", "異常值", ""),
)


class UnitCatalog:
    """Tabla estática código → tipo de sensor. Sin estado."""

    def __init__(self, units: tuple[SensorUnit, ...] = _UNITS):
        self._units = units
        self._by_code: Dict[str, SensorUnit] = {u.code: u for u in units}
        self._by_name: Dict[str, SensorUnit] = {u.name: u for u in units}

    def get_by_code(self, code: Optional[str]) -> Optional[SensorUnit]:
        if not isinstance(code, str):
            return None
        return self._by_code.get(code)

    def get_by_name(self, name: str) -> Optional[SensorUnit]:
        return self._by_name.get(name)

    def all_units(self) -> List[SensorUnit]:
        return list(self._units)

    def type_name(self, code: Optional[str]) -> str:
        """Nombre del tipo para `code`, o "unknown" si no existe."""
        unit = self.get_by_code(code)
        return unit.name if unit else UNKNOWN_TYPE

    def unit_for(self, code: Optional[str]) -> Optional[str]:
        unit = self.get_by_code(code)
        return unit.unit if unit else None


DEFAULT_CATALOG = UnitCatalog()
