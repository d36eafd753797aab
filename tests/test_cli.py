"""
Tests for the billing CLI in direct mode.
"""

from decimal import Decimal

import pytest
from click.testing import CliRunner
from openpyxl import load_workbook

from backend.models.schema import Closure, Inspection
from scripts import billing_cli


@pytest.fixture
def runner(session_factory, monkeypatch):
    """CliRunner whose commands use the test database."""
    monkeypatch.setattr(billing_cli, 'get_session', session_factory)
    return CliRunner()


class TestBillingCli:
    """Direct-mode commands."""

    def test_seed(self, runner, session):
        """Test seeding the reference catalog."""
        result = runner.invoke(billing_cli.cli, ['seed'])
        assert result.exit_code == 0
        assert 'Seeded 5 service types and 8 area bands' in result.output

    def test_create_closure_twice(self, runner, session):
        """Test that a duplicate period exits with an error."""
        result = runner.invoke(billing_cli.cli, ['create-closure', '--month', '9', '--year', '2025'])
        assert result.exit_code == 0
        assert 'created for 09/2025' in result.output

        result = runner.invoke(billing_cli.cli, ['create-closure', '--month', '9', '--year', '2025'])
        assert result.exit_code == 1
        assert session.query(Closure).count() == 1

    def test_import_calculate_export(self, runner, session, service_types, make_agency, make_price,
                                     make_closure, build_xlsx, xlsx_row, tmp_path):
        """Test the monthly cycle from the command line."""
        agency = make_agency()
        make_price(agency, service_types['entry'], '150.00')
        closure = make_closure()
        source = tmp_path / 'vistorias.xlsx'
        source.write_bytes(build_xlsx([xlsx_row(1), xlsx_row(2), xlsx_row(3, inspector=None)]))

        result = runner.invoke(billing_cli.cli, ['import', '-c', str(closure.id), '-f', str(source)])
        assert result.exit_code == 0, result.output
        assert '2/3 rows imported' in result.output
        assert 'row 4: inspector missing' in result.output

        result = runner.invoke(billing_cli.cli, ['calculate', '-c', str(closure.id)])
        assert result.exit_code == 0, result.output
        assert 'Total receivable: 300.00' in result.output
        assert session.query(Inspection).first().receivable_amount == Decimal('150.00')

        output = tmp_path / 'receber.xlsx'
        result = runner.invoke(billing_cli.cli, ['export', '-c', str(closure.id), '-k', 'receivables',
                                                 '-o', str(output)])
        assert result.exit_code == 0, result.output
        assert load_workbook(output).sheetnames == ['Resumo', 'Detalhes', 'Flow Import']

    def test_status_rejected(self, runner, make_closure):
        """Test that a disallowed move exits with the workflow message."""
        closure = make_closure()
        result = runner.invoke(billing_cli.cli, ['status', '-c', str(closure.id), '--to', 'finalized'])
        assert result.exit_code == 1
        assert "cannot move from 'draft' to 'finalized'" in result.output

    def test_calculate_unknown_closure(self, runner, session):
        """Test the error for an unknown closure."""
        result = runner.invoke(billing_cli.cli, ['calculate', '-c', '404'])
        assert result.exit_code == 1
        assert 'Closure 404 not found' in result.output
