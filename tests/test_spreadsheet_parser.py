"""
Tests for the spreadsheet cell parsers and row conversion.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from services.spreadsheet_parser import (
    UNKNOWN_CITY, RowValidationError, extract_city, is_empty_row, map_headers,
    normalize_furnishing, parse_date, parse_number, parse_row, parse_text,
    split_service_type_label
)


class TestMapHeaders:
    """Header alias resolution."""

    def test_export_header(self, export_header):
        """Test that the standard export header maps every field."""
        columns = map_headers(export_header)
        assert columns['external_id'] == 0
        assert columns['contract_number'] == 1
        assert columns['client'] == 2
        assert columns['billable_area'] == 8
        assert columns['service_type'] == 10
        assert columns['finished_at'] == 12

    def test_case_and_whitespace_insensitive(self):
        """Test that header matching ignores case and padding."""
        columns = map_headers(['  id ', 'CLIENTE', 'Vistoriador', None, 'Endereco'])
        assert columns == {'external_id': 0, 'client': 1, 'inspector': 2, 'address': 4}

    def test_first_duplicate_wins(self):
        """Test that a repeated header keeps its first column."""
        assert map_headers(['ID', 'Cliente', 'ID'])['external_id'] == 0


class TestCellParsers:
    """Individual cell conversions."""

    def test_parse_text(self):
        """Test text normalization of numbers and blanks."""
        assert parse_text(1001.0) == '1001'
        assert parse_text('  JOAO ') == 'JOAO'
        assert parse_text(None) == ''

    def test_parse_number(self):
        """Test native numbers, comma decimals and unit suffixes."""
        assert parse_number(3) == Decimal('3')
        assert parse_number(2.5) == Decimal('2.5')
        assert parse_number('120,5 m²') == Decimal('120.5')
        assert parse_number('85.75') == Decimal('85.75')

    def test_parse_number_rejects(self):
        """Test values that are not numbers."""
        assert parse_number(None) is None
        assert parse_number('') is None
        assert parse_number('n/a') is None
        assert parse_number(True) is None

    def test_parse_date(self):
        """Test native values and the accepted text formats."""
        assert parse_date(datetime(2025, 9, 3, 9, 0)) == datetime(2025, 9, 3, 9, 0)
        assert parse_date(date(2025, 9, 3)) == datetime(2025, 9, 3)
        assert parse_date('03/09/2025') == datetime(2025, 9, 3)
        assert parse_date('2025-09-03 14:30') == datetime(2025, 9, 3, 14, 30)
        assert parse_date('ontem') is None
        assert parse_date(None) is None

    def test_is_empty_row(self):
        """Test blank row detection."""
        assert is_empty_row([None, '  ', ''])
        assert not is_empty_row([None, 0])


class TestExtractCity:
    """City guessing from free-text addresses."""

    def test_city_before_state_and_cep(self):
        """Test the 'City/UF - CEP' pattern."""
        address = 'Rua das Flores, 100 - Centro - Curitiba/PR - CEP 80000-000'
        assert extract_city(address) == 'Curitiba'

    def test_segment_with_state_code(self):
        """Test the fallback to the last segment carrying a state code."""
        assert extract_city('Rua X, 10 - Maringá/PR') == 'Maringá'

    def test_unknown(self):
        """Test addresses without a recognizable city."""
        assert extract_city('') == UNKNOWN_CITY
        assert extract_city('Rua sem cidade') == UNKNOWN_CITY


class TestLabels:
    """Furnishing and service type labels."""

    @pytest.mark.parametrize('value,expected', [
        ('SIM', 'furnished'),
        ('sim', 'furnished'),
        ('Semi', 'semi_furnished'),
        ('NÃO', 'unfurnished'),
        (None, 'unfurnished'),
    ])
    def test_normalize_furnishing(self, value, expected):
        """Test furnishing column mapping."""
        assert normalize_furnishing(value) == expected

    def test_split_service_type_label(self):
        """Test code and name extraction from service labels."""
        assert split_service_type_label('1.0 - VISTORIA DE ENTRADA') == ('1.0', 'VISTORIA DE ENTRADA')
        assert split_service_type_label('12 – CONSTATAÇÃO') == ('12', 'CONSTATAÇÃO')
        assert split_service_type_label('VISTORIA AVULSA') == ('VISTORIA A', 'VISTORIA AVULSA')


class TestParseRow:
    """Row conversion with required fields and warnings."""

    @pytest.fixture
    def columns(self, export_header):
        return map_headers(export_header)

    def test_full_row(self, columns, xlsx_row):
        """Test a complete row."""
        values = xlsx_row(1001, billable=Decimal('92.5'), furnished='SIM', contract='C-77',
                          finished='04/09/2025')
        row = parse_row(values, columns, 2)

        assert row.row_number == 2
        assert row.external_id == '1001'
        assert row.client == 'IMOBILIARIA CENTRAL'
        assert row.inspector == 'JOAO SILVA'
        assert row.service_type_label == '1.0 - VISTORIA DE ENTRADA'
        assert row.contract_number == 'C-77'
        assert row.city == 'Curitiba'
        assert row.billable_area == Decimal('92.5')
        assert row.furnishing == 'furnished'
        assert row.scheduled_at == datetime(2025, 9, 3, 9, 0)
        assert row.finished_at == datetime(2025, 9, 4)
        assert row.warnings == []

    def test_city_column_wins_over_address(self, columns, xlsx_row):
        """Test that an explicit city is not overridden."""
        row = parse_row(xlsx_row('7', city='Londrina'), columns, 2)
        assert row.city == 'Londrina'

    def test_billable_area_fallbacks(self, columns, xlsx_row):
        """Test billable area falling back to measured area, then zero."""
        measured = parse_row(xlsx_row('1', measured=95), columns, 2)
        assert measured.billable_area == Decimal('95')

        empty = parse_row(xlsx_row('2'), columns, 3)
        assert empty.billable_area == Decimal('0')

    def test_unparseable_values_become_warnings(self, columns, xlsx_row):
        """Test that bad numbers and dates keep the row with warnings."""
        row = parse_row(xlsx_row('1', measured='n/a', finished='ontem'), columns, 2)

        assert row.measured_area is None
        assert row.finished_at is None
        assert len(row.warnings) == 2
        assert "measured_area 'n/a' is not a number" in row.warnings

    @pytest.mark.parametrize('kwargs,message', [
        ({'client': None}, 'client missing'),
        ({'inspector': ''}, 'inspector missing'),
        ({'service': None}, 'service type missing'),
    ])
    def test_required_fields(self, columns, xlsx_row, kwargs, message):
        """Test that missing required fields reject the row."""
        with pytest.raises(RowValidationError, match=message):
            parse_row(xlsx_row('1', **kwargs), columns, 2)

    def test_missing_id(self, columns, xlsx_row):
        """Test that a row without id is rejected."""
        with pytest.raises(RowValidationError, match='id missing'):
            parse_row(xlsx_row(None), columns, 2)

    def test_short_row(self, columns):
        """Test that rows shorter than the header read missing cells as blank."""
        values = ['5', None, 'IMOBILIARIA CENTRAL', 'JOAO SILVA', '', None, None, None, None, None,
                  '2.0 - VISTORIA DE SAÍDA']
        row = parse_row(values, columns, 2)
        assert row.scheduled_at is None
        assert row.city == UNKNOWN_CITY
