"""
Tests for the receivable and payable workbook exports.
"""

from datetime import date
from decimal import Decimal
from io import BytesIO

import pytest
from openpyxl import load_workbook

from backend.models.schema import ClosureStatus
from services.exceptions import ClosureNotFoundError
from services.export_service import ExportService, agency_due_date, payout_date


def _load(content: bytes):
    return load_workbook(BytesIO(content))


def _rows(ws):
    return list(ws.iter_rows(values_only=True))


@pytest.fixture
def exported_closure(service_types, make_agency, make_inspector, make_closure, make_inspection):
    """A calculated closure with two agencies and two inspectors."""
    central = make_agency('IMOBILIARIA CENTRAL', tax_id='12.345.678/0001-90', payment_day=10)
    alfa = make_agency('ALFA IMOVEIS', payment_method='pix')
    joao = make_inspector('JOAO SILVA', pix_key='joao@example.com')
    maria = make_inspector('MARIA SOUZA', tax_id='123.456.789-00')
    closure = make_closure(month=9, year=2025, status=ClosureStatus.CALCULATED)
    entry = service_types['entry']

    make_inspection(closure, central, joao, entry, external_id='1',
                    receivable_amount=Decimal('150.00'), payable_amount=Decimal('60.00'),
                    status='calculated')
    make_inspection(closure, central, maria, entry, external_id='2', furnishing='furnished',
                    receivable_amount=Decimal('180.00'), payable_amount=Decimal('70.00'),
                    status='approved')
    make_inspection(closure, alfa, joao, entry, external_id='3',
                    receivable_amount=Decimal('225.00'), payable_amount=Decimal('90.00'),
                    status='invoiced')
    # Not exportable
    make_inspection(closure, alfa, maria, entry, external_id='4',
                    receivable_amount=Decimal('999.00'), payable_amount=Decimal('999.00'),
                    status='disputed')
    make_inspection(closure, alfa, maria, entry, external_id='5', status='imported')
    return closure


class TestDueDates:
    """Payment dates in the month after the reference month."""

    def test_agency_due_date(self):
        """Test the agency payment day and its default."""
        assert agency_due_date(9, 2025, 10) == date(2025, 10, 10)
        assert agency_due_date(9, 2025, None) == date(2025, 10, 12)

    def test_year_rollover(self):
        """Test December closures falling due in January."""
        assert agency_due_date(12, 2025, 5) == date(2026, 1, 5)
        assert payout_date(12, 2025) == date(2026, 1, 20)

    def test_clipped_to_month_end(self):
        """Test days beyond the month's length."""
        assert agency_due_date(1, 2025, 30) == date(2025, 2, 28)
        assert payout_date(1, 2024, 31) == date(2024, 2, 29)


class TestExportReceivables:
    """Agency-side workbook."""

    def test_sheets(self, session, exported_closure):
        """Test the sheet layout."""
        workbook = _load(ExportService(session).export_receivables(exported_closure.id))
        assert workbook.sheetnames == ['Resumo', 'Detalhes', 'Flow Import']

    def test_summary_groups_by_agency(self, session, exported_closure):
        """Test per-agency totals and the grand total row."""
        workbook = _load(ExportService(session).export_receivables(exported_closure.id))
        rows = _rows(workbook['Resumo'])

        assert rows[0][0] == 'Cliente'
        alfa, central, total = rows[1], rows[2], rows[3]

        assert alfa[0] == 'Alfa Imoveis'
        assert alfa[1] == '-'
        assert alfa[2] == 1
        assert alfa[3] == 225
        assert alfa[5] == 'pix'

        assert central[0] == 'Imobiliaria Central'
        assert central[1] == '12.345.678/0001-90'
        assert central[2] == 2
        assert central[3] == 330
        assert central[4].date() == date(2025, 10, 10)
        assert central[6] == 'Vistorias 09/2025'

        assert total[0] == 'TOTAL GERAL'
        assert total[2] == 3
        assert total[3] == 555

    def test_details_and_flow(self, session, exported_closure):
        """Test one detail row per exportable inspection and one flow row per agency."""
        workbook = _load(ExportService(session).export_receivables(exported_closure.id))

        details = _rows(workbook['Detalhes'])[1:]
        assert sorted(row[1] for row in details) == ['1', '2', '3']
        furnished = next(row for row in details if row[1] == '2')
        assert furnished[6] == 'Sim'
        assert furnished[4] == 'VISTORIA DE ENTRADA'

        flow = _rows(workbook['Flow Import'])[1:]
        assert [(row[0], row[2]) for row in flow] == [
            ('Alfa Imoveis', '2025-10-12'),
            ('Imobiliaria Central', '2025-10-10'),
        ]
        assert flow[0][5] == 'Vistorias'

    def test_currency_format(self, session, exported_closure):
        """Test that amount cells carry the configured number format."""
        content = ExportService(session, currency_format='#,##0.00').export_receivables(exported_closure.id)
        assert _load(content)['Resumo']['D2'].number_format == '#,##0.00'

    def test_unknown_closure(self, session):
        """Test that an unknown closure raises not found."""
        with pytest.raises(ClosureNotFoundError):
            ExportService(session).export_receivables(42)


class TestExportPayables:
    """Inspector-side workbook."""

    def test_summary_groups_by_inspector(self, session, exported_closure):
        """Test per-inspector totals."""
        workbook = _load(ExportService(session).export_payables(exported_closure.id))
        assert workbook.sheetnames == ['Resumo', 'Detalhes', 'Flow Import']

        rows = _rows(workbook['Resumo'])
        joao, maria, total = rows[1], rows[2], rows[3]
        assert (joao[0], joao[2], joao[3], joao[4]) == ('Joao Silva', 2, 150, 'joao@example.com')
        assert (maria[0], maria[1], maria[2], maria[3]) == ('Maria Souza', '123.456.789-00', 1, 70)
        assert (total[0], total[2], total[3]) == ('TOTAL GERAL', 3, 220)

    def test_flow_uses_payout_day(self, session, exported_closure):
        """Test that every flow row carries the configured payment date."""
        workbook = _load(ExportService(session, payout_day=5).export_payables(exported_closure.id))
        flow = _rows(workbook['Flow Import'])[1:]

        assert {row[3] for row in flow} == {'2025-10-05'}
        assert flow[0][6] == 'Vistoriadores'

    def test_empty_closure(self, session, make_closure):
        """Test that a closure without exportable records yields only the total row."""
        closure = make_closure(status=ClosureStatus.IMPORTED)
        rows = _rows(_load(ExportService(session).export_payables(closure.id))['Resumo'])

        assert len(rows) == 2
        assert rows[1][0] == 'TOTAL GERAL'
        assert rows[1][2] == 0
