"""
Tests for the Field Mappings module.
"""

from etl.hankinnat.field_mappings import (
    INVOICE_COLUMNS,
    INVOICE_FIELD_ALIASES,
    map_invoice_fields,
    normalize_header,
    resolve_field,
)


class TestFieldMappings:
    """Test suite for header normalization and field resolution."""

    def test_normalize_header(self):
        assert normalize_header("  Lasku_ID ") == "lasku_id"
        assert normalize_header("\ufeffLasku_id") == "lasku_id"
        assert normalize_header(None) is None

    def test_invoice_columns(self):
        assert INVOICE_COLUMNS[0] == "lasku_id"
        assert INVOICE_COLUMNS[-1] == "data_year"
        assert len(INVOICE_COLUMNS) == len(INVOICE_FIELD_ALIASES) + 1

    def test_finnish_name_preferred(self):
        record = {"lasku_id": "FI-1", "invoice_id": "EN-1"}
        assert resolve_field(record, "lasku_id") == "FI-1"

    def test_empty_candidate_falls_through(self):
        record = {"toimittaja_nimi": "  ", "supplier_name": "Oy Ab"}
        assert resolve_field(record, "toimittaja_nimi") == "Oy Ab"

    def test_null_marker_falls_through(self):
        record = {"hankintayksikko": "NULL", "procurement_unit": "Valtiokonttori"}
        assert resolve_field(record, "hankintayksikko") == "Valtiokonttori"

    def test_null_marker_without_alternative(self):
        record = {"hankintakategoria": "N/A", "procurement_category": ""}
        assert resolve_field(record, "hankintakategoria") == "N/A"

    def test_unresolved_field(self):
        assert resolve_field({"tili": None}, "tili") is None
        assert resolve_field({}, "sektori") is None

    def test_map_invoice_fields(self):
        record = {
            "invoice_id": "L1",
            "hankintayksikko": " Valtiokonttori ",
            "supplier_city": "Espoo",
            "extra_column": "ignored",
        }

        invoice = map_invoice_fields(record)

        assert set(invoice) == set(INVOICE_FIELD_ALIASES)
        assert invoice["lasku_id"] == "L1"
        assert invoice["hankintayksikko"] == "Valtiokonttori"
        assert invoice["toimittaja_kunta"] == "Espoo"
        assert invoice["tiliointisumma"] is None
