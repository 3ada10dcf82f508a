"""Tests de normalización de lecturas.

Ejecutar:
    pytest tests/test_sensor_normalizer.py -v
"""

import pytest

from push_api.core.domain.reading import RawReading, SensorEnvelope, SensorStatus
from push_api.core.domain.units import DEFAULT_CATALOG, UNKNOWN_TYPE, SensorUnit, UnitCatalog
from push_api.core.normalization.sensor_normalizer import (
    SensorNormalizer,
    decode_legacy_text,
    parse_number,
)


@pytest.fixture
def normalizer() -> SensorNormalizer:
    return SensorNormalizer()


def _value(code="A", min_=-1, max_=60, name="temp", _id="t1"):
    return {"_id": _id, "name": name, "code": code, "min": min_, "max": max_, "calc": ""}


# =============================================================================
# CATÁLOGO DE UNIDADES
# =============================================================================

class TestUnitCatalog:
    """Tabla estática código → tipo."""

    def test_known_codes(self):
        assert DEFAULT_CATALOG.type_name("A") == "溫度"
        assert DEFAULT_CATALOG.unit_for("A") == "℃"
        assert DEFAULT_CATALOG.type_name("B") == "濕度"
        assert DEFAULT_CATALOG.type_name("g") == "異常值"

    def test_unknown_code_maps_to_unknown(self):
        assert DEFAULT_CATALOG.type_name("?") == UNKNOWN_TYPE
        assert DEFAULT_CATALOG.type_name(None) == UNKNOWN_TYPE
        assert DEFAULT_CATALOG.unit_for("?") is None

    def test_codes_are_case_sensitive(self):
        assert DEFAULT_CATALOG.type_name("a") == "紫外線強度"
        assert DEFAULT_CATALOG.type_name("A") != DEFAULT_CATALOG.type_name("a")

    def test_lookup_by_name(self):
        unit = DEFAULT_CATALOG.get_by_name("二氧化碳")
        assert unit is not None
        assert unit.code == "C"
        assert DEFAULT_CATALOG.get_by_name("nope") is None

    def test_all_units_is_a_copy(self):
        units = DEFAULT_CATALOG.all_units()
        units.clear()
        assert len(DEFAULT_CATALOG.all_units()) > 30

    def test_custom_catalog(self):
        catalog = UnitCatalog((SensorUnit("Q", "caudal", "L/min"),))
        assert catalog.type_name("Q") == "caudal"
        assert catalog.type_name("A") == UNKNOWN_TYPE


# =============================================================================
# DECODIFICACIÓN LEGACY
# =============================================================================

class TestDecodeLegacyText:
    """Escapes \\xHH → UTF-8."""

    def test_decodes_utf8_escapes(self):
        assert decode_legacy_text("\\xe6\\xba\\xab\\xe5\\xba\\xa6") == "溫度"

    def test_mixed_ascii_and_escapes(self):
        assert decode_legacy_text("Zona \\xe6\\xba\\xab") == "Zona 溫"

    def test_plain_text_unchanged(self):
        assert decode_legacy_text("hello") == "hello"

    def test_idempotent(self):
        once = decode_legacy_text("\\xe6\\xba\\xab\\xe5\\xba\\xa6")
        assert decode_legacy_text(once) == once

    @pytest.mark.parametrize("value", [None, "", 42, ["x"]])
    def test_non_string_returns_empty(self, value):
        assert decode_legacy_text(value) == ""

    def test_invalid_utf8_returns_original(self):
        text = "\\xff\\xfe"
        assert decode_legacy_text(text) == text

    def test_truncated_sequence_returns_original(self):
        text = "\\xe6\\xba"
        assert decode_legacy_text(text) == text


# =============================================================================
# PARSEO NUMÉRICO
# =============================================================================

class TestParseNumber:

    @pytest.mark.parametrize(
        "value,expected",
        [(1, 1.0), ("2.5", 2.5), (-3, -3.0), ("0", 0.0)],
    )
    def test_numeric_values(self, value, expected):
        assert parse_number(value) == expected

    @pytest.mark.parametrize("value", [None, "", "abc", True, float("nan"), {}])
    def test_absent_or_invalid(self, value):
        assert parse_number(value) is None


# =============================================================================
# NORMALIZACIÓN DE VALORES Y ESTADO
# =============================================================================

class TestNormalizeValue:

    def test_known_code(self, normalizer):
        value = normalizer.normalize_value(_value())
        assert value.type == "溫度"
        assert value.min == -1.0
        assert value.max == 60.0
        assert value.range_valid is True
        assert value.calc is None

    def test_unknown_code(self, normalizer):
        assert normalizer.normalize_value(_value(code="?")).type == "unknown"

    @pytest.mark.parametrize(
        "min_,max_",
        [(10, 10), (60, -1), (None, 60), ("x", 60), (0, None)],
    )
    def test_invalid_ranges(self, normalizer, min_, max_):
        assert normalizer.normalize_value(_value(min_=min_, max_=max_)).range_valid is False

    def test_decodes_value_name(self, normalizer):
        value = normalizer.normalize_value(_value(name="\\xe6\\xba\\xab"))
        assert value.name == "溫"

    def test_non_mapping_value(self, normalizer):
        value = normalizer.normalize_value("garbage")
        assert value.type == "unknown"
        assert value.range_valid is False

    def test_to_dict_shape(self, normalizer):
        data = normalizer.normalize_value(_value()).to_dict()
        assert set(data) == {"id", "name", "type", "unit", "code", "range", "calculation"}
        assert data["range"] == {"min": -1.0, "max": 60.0, "valid": True}


class TestDetermineStatus:
    """Primer requisito incumplido gana."""

    def test_no_values(self, normalizer):
        assert normalizer.determine_status((), "n", "d") == SensorStatus.NO_VALUES

    def test_no_valid_range(self, normalizer):
        values = (normalizer.normalize_value(_value(min_=5, max_=5)),)
        assert normalizer.determine_status(values, "n", "d") == SensorStatus.INVALID_RANGE

    def test_one_valid_range_is_enough(self, normalizer):
        values = (
            normalizer.normalize_value(_value(min_=5, max_=5)),
            normalizer.normalize_value(_value(min_=0, max_=5)),
        )
        assert normalizer.determine_status(values, "n", "d") == SensorStatus.ACTIVE

    def test_missing_name_or_description(self, normalizer):
        values = (normalizer.normalize_value(_value()),)
        assert normalizer.determine_status(values, "", "d") == SensorStatus.INCOMPLETE_INFO
        assert normalizer.determine_status(values, "n", "") == SensorStatus.INCOMPLETE_INFO

    def test_range_checked_before_identity_text(self, normalizer):
        values = (normalizer.normalize_value(_value(min_=None)),)
        assert normalizer.determine_status(values, "", "") == SensorStatus.INVALID_RANGE


# =============================================================================
# NORMALIZACIÓN DE LECTURAS
# =============================================================================

class TestNormalizeReading:

    def test_full_reading(self, normalizer, raw_reading):
        reading = normalizer.normalize_reading(raw_reading)

        assert reading is not None
        assert reading.serial == "S1"
        assert reading.description == "溫度"
        assert reading.status == SensorStatus.ACTIVE
        assert len(reading.values) == 1

    def test_accepts_raw_reading_model(self, normalizer, raw_reading):
        reading = normalizer.normalize_reading(RawReading.from_dict(raw_reading))
        assert reading.serial == "S1"

    @pytest.mark.parametrize("field,value", [("SN", None), ("SN", ""), ("ADDRESS", None), ("ADDRESS", "")])
    def test_missing_identity_is_dropped(self, normalizer, raw_reading, field, value):
        raw_reading[field] = value
        assert normalizer.normalize_reading(raw_reading) is None
        assert normalizer.dropped == 1

    def test_address_zero_is_valid(self, normalizer, raw_reading):
        raw_reading["ADDRESS"] = 0
        reading = normalizer.normalize_reading(raw_reading)
        assert reading is not None
        assert reading.address == 0

    def test_missing_values_list(self, normalizer, raw_reading):
        raw_reading["value"] = "not a list"
        reading = normalizer.normalize_reading(raw_reading)
        assert reading.status == SensorStatus.NO_VALUES
        assert reading.values == ()

    def test_value_failure_marks_error(self, normalizer, raw_reading, monkeypatch):
        def boom(item):
            raise RuntimeError("bad value")

        monkeypatch.setattr(normalizer, "normalize_value", boom)
        reading = normalizer.normalize_reading(raw_reading)

        assert reading.status == SensorStatus.ERROR
        assert reading.values == ()

    def test_non_dict_item_is_dropped(self, normalizer):
        assert normalizer.normalize_reading("S1") is None


class TestNormalizeAndFormat:

    def test_envelope_shape(self, normalizer, raw_reading):
        envelopes = normalizer.normalize_and_format([raw_reading])

        assert len(envelopes) == 1
        assert isinstance(envelopes[0], SensorEnvelope)

        data = envelopes[0].to_dict()
        assert data["device_info"] == {
            "serial_number": "S1",
            "description": "溫度",
            "address": 1,
            "name": "Galpón 1",
            "status": "active",
        }
        assert data["sensor_values"][0]["type"] == "溫度"
        assert data["profile"] == "poultry"
        assert data["metadata"]["total_sensors"] == 1
        assert data["metadata"]["processed_at"].endswith("Z")

    def test_invalid_items_are_skipped(self, normalizer, raw_reading):
        envelopes = normalizer.normalize_and_format([raw_reading, {"ADDRESS": 2}, 7])
        assert [e.serial_number for e in envelopes] == ["S1"]

    @pytest.mark.parametrize("value", [None, {"SN": "S1"}, "text", 3])
    def test_non_sequence_input(self, normalizer, value):
        assert normalizer.normalize_and_format(value) == []

    def test_empty_input(self, normalizer):
        assert normalizer.normalize_and_format([]) == []
