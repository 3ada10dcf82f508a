"""Normalización de lecturas crudas de Redis.

Responsabilidades:
- Decodificar textos con escapes legacy (\\xHH → UTF-8)
- Parsear y validar rangos numéricos
- Clasificar el estado del sensor
- Dar forma de envelope a las lecturas válidas

Nunca lanza por datos malformados de un item: la lectura se descarta
o se conserva el texto original.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, List, Optional, Sequence

from ..domain.errors import DecodeFailure
from ..domain.reading import (
    NormalizedReading,
    NormalizedValue,
    RawReading,
    RawValueSpec,
    SensorEnvelope,
    SensorStatus,
)
from ..domain.units import DEFAULT_CATALOG, UnitCatalog

logger = logging.getLogger(__name__)

LEGACY_ESCAPE = re.compile(r"\\x([0-9a-fA-F]{2})")
LEGACY_TEXT_ENCODING = "utf-8"


def _decode_escapes(text: str) -> str:
    """Reconstruye los bytes de los escapes y los decodifica en UTF-8.

    Raises:
        DecodeFailure: si el texto mezcla caracteres fuera de un byte
            o los bytes no forman UTF-8 válido
    """
    latin = LEGACY_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), text)
    try:
        return latin.encode("latin-1").decode(LEGACY_TEXT_ENCODING)
    except (UnicodeEncodeError, UnicodeDecodeError) as e:
        raise DecodeFailure(text, str(e)) from e


def decode_legacy_text(text: Any) -> str:
    """Decodifica un texto con escapes legacy; idempotente.

    Si no hay escapes el texto se devuelve tal cual. Si la decodificación
    falla se devuelve el original y se loguea un warning.
    """
    if not isinstance(text, str) or not text:
        return ""

    if not LEGACY_ESCAPE.search(text):
        return text

    try:
        return _decode_escapes(text)
    except DecodeFailure as e:
        logger.warning("[NORMALIZER] %s (text=%r)", e, text[:80])
        return text


def parse_number(value: Any) -> Optional[float]:
    """Convierte a float; ausente o no numérico → None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed):
        return None
    return parsed


class SensorNormalizer:
    """Convierte lecturas crudas en envelopes listos para publicar."""

    def __init__(self, catalog: Optional[UnitCatalog] = None):
        self._catalog = catalog or DEFAULT_CATALOG
        self._dropped = 0

    @property
    def dropped(self) -> int:
        """Lecturas descartadas por falta de SN/ADDRESS."""
        return self._dropped

    def normalize_value(self, item: Any) -> NormalizedValue:
        if not isinstance(item, RawValueSpec):
            item = RawValueSpec.from_dict(item)

        return NormalizedValue(
            id=item.id,
            name=decode_legacy_text(item.name_raw),
            min=parse_number(item.min),
            max=parse_number(item.max),
            code=item.code,
            calc=item.calc if item.calc not in ("", None) else None,
            type=self._catalog.type_name(item.code),
            unit=self._catalog.unit_for(item.code),
        )

    @staticmethod
    def determine_status(
        values: Sequence[NormalizedValue],
        name: str,
        description: str,
    ) -> SensorStatus:
        # Primer requisito incumplido, en este orden.
        if not values:
            return SensorStatus.NO_VALUES
        if not any(v.range_valid for v in values):
            return SensorStatus.INVALID_RANGE
        if not name or not description:
            return SensorStatus.INCOMPLETE_INFO
        return SensorStatus.ACTIVE

    def normalize_reading(self, raw: Any) -> Optional[NormalizedReading]:
        """Normaliza una lectura; None si falta SN o ADDRESS."""
        if isinstance(raw, dict):
            raw = RawReading.from_dict(raw)
        if not isinstance(raw, RawReading):
            logger.warning("[NORMALIZER] Invalid reading format: %s", type(raw).__name__)
            self._dropped += 1
            return None

        if not raw.has_identity:
            logger.warning(
                "[NORMALIZER] Reading missing required field (SN=%r ADDRESS=%r)",
                raw.serial,
                raw.address,
            )
            self._dropped += 1
            return None

        name = decode_legacy_text(raw.name_raw)
        description = decode_legacy_text(raw.description_raw)

        try:
            values = tuple(self.normalize_value(item) for item in raw.value_specs)
            status = self.determine_status(values, name, description)
        except Exception as e:
            logger.exception("[NORMALIZER] Value processing failed for SN=%s: %s", raw.serial, e)
            values = ()
            status = SensorStatus.ERROR

        return NormalizedReading(
            serial=str(raw.serial),
            description=description,
            address=raw.address,
            name=name,
            profile=raw.profile,
            values=values,
            status=status,
        )

    def normalize_and_format(self, raw_readings: Any) -> List[SensorEnvelope]:
        """Punto de entrada del pipeline: crudo → envelopes."""
        if not isinstance(raw_readings, (list, tuple)):
            logger.warning(
                "[NORMALIZER] Sensor data is not a sequence: %s",
                type(raw_readings).__name__,
            )
            return []

        envelopes: List[SensorEnvelope] = []
        for raw in raw_readings:
            normalized = self.normalize_reading(raw)
            if normalized is not None:
                envelopes.append(SensorEnvelope(normalized))

        logger.debug(
            "[NORMALIZER] %d/%d readings normalized",
            len(envelopes),
            len(raw_readings),
        )
        return envelopes
