import pytest

from deskbot.services.invoice_parser import (
    NOT_PROVIDED,
    format_invoice_summary,
    normalize_amount,
    normalize_date,
    parse_invoice_fields,
    strip_field_patterns,
    validate_field_value,
)


class TestParseInvoiceFields:
    def test_known_cuit_labels_and_amount(self):
        fields = parse_invoice_fields(
            ["juan perez", "concepto: servicios de limpieza", "$ 1.500,00", "receptor: 20-12345678-3"],
            known_cuit="20111222223",
        )

        assert fields == {
            "cuit_emisor": "20111222223",
            "concepto": "servicios de limpieza",
            "importe_total": "1500.00",
            "fecha_operacion": NOT_PROVIDED,
            "receptor": "20-12345678-3",
        }

    def test_nothing_is_guessed(self):
        fields = parse_invoice_fields(["hola"])

        assert fields["cuit_emisor"] == NOT_PROVIDED
        assert fields["importe_total"] == NOT_PROVIDED
        assert fields["fecha_operacion"] == NOT_PROVIDED
        assert fields["receptor"] == NOT_PROVIDED
        assert fields["concepto"] == "hola"

    def test_longest_fragment_is_concept_without_bleed(self):
        fields = parse_invoice_fields(["ok", "diseño de logo 15/03/2025 por $ 20000"])

        assert fields["concepto"] == "diseño de logo por"
        assert fields["fecha_operacion"] == "15/03/2025"
        assert fields["importe_total"] == "20000.00"

    def test_unlabeled_receptor_is_not_taken(self):
        fields = parse_invoice_fields(["consultoría", "para Juan Pérez"])
        assert fields["receptor"] == NOT_PROVIDED

    def test_cuit_scraped_from_text_without_known_one(self):
        fields = parse_invoice_fields(["mi cuit 20-12345678-6", "concepto: clases"])
        assert fields["cuit_emisor"] == "20123456786"

    def test_labeled_fields_in_one_message(self):
        fields = parse_invoice_fields(
            ["Concepto: Honorarios marzo\nImporte: 45.000\nFecha: 1/4/25\nA nombre de: Pérez SRL"]
        )
        assert fields["concepto"] == "Honorarios marzo"
        assert fields["importe_total"] == "45000.00"
        assert fields["fecha_operacion"] == "01/04/2025"
        assert fields["receptor"] == "Pérez SRL"


class TestNormalizers:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("$ 1.500,00", "1500.00"),
            ("1,500.00", "1500.00"),
            ("1500,5", "1500.50"),
            ("1.500", "1500.00"),
            ("1.234.567", "1234567.00"),
            ("12.5", "12.50"),
            ("abc", None),
        ],
    )
    def test_normalize_amount(self, raw, expected):
        assert normalize_amount(raw) == expected

    def test_normalize_date(self):
        assert normalize_date("el 5-6-2024") == "05/06/2024"
        assert normalize_date("31/02/2024") is None
        assert normalize_date("mañana") is None

    def test_strip_field_patterns(self):
        assert strip_field_patterns("venta 20-12345678-6 $ 300 10/10/2024") == "venta"


class TestValidateFieldValue:
    def test_cuit(self):
        assert validate_field_value("cuit_emisor", "20-12345678-6") == "20123456786"
        assert validate_field_value("cuit_emisor", "20123456783") is None

    def test_amount(self):
        assert validate_field_value("importe_total", "$ 2.000") == "2000.00"
        assert validate_field_value("importe_total", "0") is None
        assert validate_field_value("importe_total", "mucho") is None

    def test_date(self):
        assert validate_field_value("fecha_operacion", "3/1/2025") == "03/01/2025"
        assert validate_field_value("fecha_operacion", "ayer") is None

    def test_receptor(self):
        assert validate_field_value("receptor", "Juan Pérez") == "Juan Pérez"
        assert validate_field_value("receptor", "20123456786") == "20-12345678-6"
        assert validate_field_value("receptor", "20.123.456") == "20.123.456"
        assert validate_field_value("receptor", "12") is None

    def test_concept(self):
        assert validate_field_value("concepto", "mantenimiento web") == "mantenimiento web"
        assert validate_field_value("concepto", "$ 100") is None

    def test_unknown_field(self):
        assert validate_field_value("color", "rojo") is None


def test_summary_lists_every_field():
    summary = format_invoice_summary(
        {
            "cuit_emisor": "20123456786",
            "concepto": "clases",
            "importe_total": "100.00",
            "fecha_operacion": NOT_PROVIDED,
            "receptor": NOT_PROVIDED,
        }
    )
    lines = summary.splitlines()
    assert len(lines) == 5
    assert "• CUIT emisor: 20-12345678-6" in lines
    assert "• Importe total: $100.00" in lines
    assert f"• Receptor: {NOT_PROVIDED}" in lines
