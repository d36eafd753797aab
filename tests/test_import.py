"""
Tests for the spreadsheet import service.

Workbooks are built in memory with openpyxl in the layout of the scheduling
system export.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from backend.models.schema import (
    Agency, Closure, ClosureStatus, Inspection, Inspector, ServiceType
)
from services.exceptions import (
    ClosureNotFoundError, InvalidTransitionError, SpreadsheetFormatError
)
from services.import_service import SpreadsheetImportService


@pytest.fixture
def closure(make_closure):
    return make_closure()


class TestImportFile:
    """Replacing a closure's inspections from a workbook."""

    def test_imports_rows(self, session, closure, service_types, make_agency, build_xlsx, xlsx_row):
        """Test a clean import into a draft closure."""
        make_agency('IMOBILIARIA CENTRAL')
        content = build_xlsx([
            xlsx_row(1001, billable=Decimal('80'), furnished='SIM'),
            xlsx_row(1002, client='Imobiliaria Central', measured=120, city='Curitiba'),
            xlsx_row(1003, client='NOVA CASA IMOVEIS', inspector='MARIA SOUZA',
                     service='2.0 - VISTORIA DE SAÍDA'),
        ])

        result = SpreadsheetImportService(session).import_file(closure.id, content)

        assert result['total'] == 3
        assert result['imported'] == 3
        assert result['errors'] == []
        assert result['new_agencies'] == ['NOVA CASA IMOVEIS']
        assert sorted(result['new_inspectors']) == ['JOAO SILVA', 'MARIA SOUZA']

        inspections = {i.external_id: i for i in session.query(Inspection).all()}
        assert set(inspections) == {'1001', '1002', '1003'}
        assert inspections['1001'].furnishing == 'furnished'
        assert inspections['1001'].service_type_id == service_types['entry'].id
        assert inspections['1002'].billable_area == Decimal('120')
        assert inspections['1003'].service_type_id == service_types['exit'].id
        assert inspections['1003'].city == 'Curitiba'
        assert session.query(Agency).count() == 2

        closure = session.get(Closure, closure.id)
        assert closure.status == ClosureStatus.IMPORTED.value
        assert closure.imported_at is not None
        assert closure.total_inspections == 3

    def test_unknown_service_type_is_created(self, session, closure, build_xlsx, xlsx_row):
        """Test that new service labels extend the catalog."""
        content = build_xlsx([
            xlsx_row(1, service='5.0 - CONSTATAÇÃO'),
            xlsx_row(2, service='5.0 - CONSTATAÇÃO'),
        ])

        result = SpreadsheetImportService(session).import_file(closure.id, content)

        assert result['imported'] == 2
        service_type = session.query(ServiceType).one()
        assert (service_type.code, service_type.name) == ('5.0', 'CONSTATAÇÃO')

    def test_invalid_rows_are_reported(self, session, closure, build_xlsx, xlsx_row):
        """Test that rows missing required fields are skipped with an error."""
        content = build_xlsx([
            xlsx_row(1),
            xlsx_row(2, client=None),
            [None] * 13,
            xlsx_row(3, service=''),
            xlsx_row(4),
        ])

        result = SpreadsheetImportService(session).import_file(closure.id, content)

        assert result['total'] == 4
        assert result['imported'] == 2
        assert result['errors'] == [
            {'row': 3, 'message': 'client missing'},
            {'row': 5, 'message': 'service type missing'},
        ]
        assert session.query(Inspection).count() == 2

    def test_reimport_replaces_records(self, session, closure, build_xlsx, xlsx_row):
        """Test that importing twice leaves only the second file's rows."""
        service = SpreadsheetImportService(session)
        service.import_file(closure.id, build_xlsx([xlsx_row(1), xlsx_row(2), xlsx_row(3)]))

        result = SpreadsheetImportService(session).import_file(
            closure.id, build_xlsx([xlsx_row(2), xlsx_row(4)])
        )

        assert result['imported'] == 2
        assert result['new_agencies'] == []
        assert result['new_inspectors'] == []
        assert sorted(i.external_id for i in session.query(Inspection).all()) == ['2', '4']
        assert session.query(Inspector).count() == 1
        assert session.get(Closure, closure.id).total_inspections == 2

    def test_reads_from_path(self, session, closure, build_xlsx, xlsx_row, tmp_path):
        """Test importing from a file on disk."""
        path = tmp_path / 'vistorias.xlsx'
        path.write_bytes(build_xlsx([xlsx_row(1, scheduled=datetime(2025, 9, 10, 12, 0))]))

        result = SpreadsheetImportService(session).import_file(closure.id, path)

        assert result['imported'] == 1
        assert session.query(Inspection).one().scheduled_at == datetime(2025, 9, 10, 12, 0)

    def test_failure_rolls_back(self, session, closure, build_xlsx, xlsx_row, monkeypatch):
        """Test that a failure after insertion keeps the previous records."""
        SpreadsheetImportService(session).import_file(closure.id, build_xlsx([xlsx_row(1)]))
        service = SpreadsheetImportService(session)

        def explode(*args):
            raise RuntimeError('disk full')

        monkeypatch.setattr(service, '_finalize_closure', explode)

        with pytest.raises(RuntimeError):
            service.import_file(closure.id, build_xlsx([xlsx_row(7), xlsx_row(8)]))

        assert [i.external_id for i in session.query(Inspection).all()] == ['1']
        assert session.get(Closure, closure.id).total_inspections == 1

    def test_failed_first_import_leaves_draft(self, session, closure, build_xlsx, xlsx_row,
                                              monkeypatch):
        """Test that a failed import creates nothing."""
        service = SpreadsheetImportService(session)
        monkeypatch.setattr(service, '_finalize_closure', lambda *args: 1 / 0)

        with pytest.raises(ZeroDivisionError):
            service.import_file(closure.id, build_xlsx([xlsx_row(1, client='NOVA')]))

        assert session.query(Inspection).count() == 0
        assert session.query(Agency).count() == 0
        assert session.get(Closure, closure.id).status == ClosureStatus.DRAFT.value

    def test_progress_callback(self, session, closure, build_xlsx, xlsx_row):
        """Test that progress stages are reported in order."""
        stages = []
        SpreadsheetImportService(session, progress_callback=lambda s, p, m: stages.append(s)) \
            .import_file(closure.id, build_xlsx([xlsx_row(1)]))

        assert stages[0] == 'reading'
        assert stages[-1] == 'complete'
        assert 'inserting' in stages


class TestImportPreconditions:
    """Closure and workbook checks done before any write."""

    def test_unknown_closure(self, session, build_xlsx, xlsx_row):
        """Test that an unknown closure raises not found."""
        with pytest.raises(ClosureNotFoundError):
            SpreadsheetImportService(session).import_file(99, build_xlsx([xlsx_row(1)]))

    @pytest.mark.parametrize('status', [ClosureStatus.CALCULATED, ClosureStatus.FINALIZED])
    def test_closed_stage_rejected(self, session, make_closure, build_xlsx, xlsx_row, status):
        """Test that only draft or imported closures accept imports."""
        closure = make_closure(status=status)
        with pytest.raises(InvalidTransitionError):
            SpreadsheetImportService(session).import_file(closure.id, build_xlsx([xlsx_row(1)]))

    def test_invalid_workbook(self, session, closure):
        """Test that bytes that are not an .xlsx raise a format error."""
        with pytest.raises(SpreadsheetFormatError):
            SpreadsheetImportService(session).import_file(closure.id, b'not a workbook')

    def test_empty_worksheet(self, session, closure, build_xlsx):
        """Test that a sheet without header raises a format error."""
        with pytest.raises(SpreadsheetFormatError):
            SpreadsheetImportService(session).import_file(closure.id, build_xlsx([], header=[]))
