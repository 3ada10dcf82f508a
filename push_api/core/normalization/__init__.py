"""Normalization layer - Decodificación y validación de lecturas."""

from .sensor_normalizer import SensorNormalizer, decode_legacy_text, parse_number

__all__ = ["SensorNormalizer", "decode_legacy_text", "parse_number"]
