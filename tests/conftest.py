"""
Pytest configuration and fixtures for billing tests.

Tests run against an in-memory SQLite database by default; set
TEST_DATABASE_URL to run them against PostgreSQL.
"""

import os
from datetime import datetime
from decimal import Decimal
from io import BytesIO

import pytest
from dotenv import load_dotenv
from openpyxl import Workbook
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.models.schema import (
    Agency, AreaBand, Base, Closure, ClosureStatus, Inspection, InspectionStatus, Inspector,
    PayoutTable, PriceTable, ServiceType
)
import backend.models.job  # noqa: F401  (registers job tables on Base)

# Load environment
load_dotenv()

TEST_DATABASE_URL = os.getenv('TEST_DATABASE_URL', 'sqlite://')

EXPORT_HEADER = [
    'ID', 'Nº Contrato', 'Cliente', 'Vistoriadores', 'Endereço', 'Cidade', 'Área Infor.',
    'Área Aferida', 'Área à Faturar', 'Mobiliado', 'Tipo Serviço', 'Data Agenda', 'Data Finalizado'
]


def _enable_sqlite_savepoints(engine):
    """Let pysqlite honour SAVEPOINT (SQLAlchemy's documented recipe)."""

    @event.listens_for(engine, 'connect')
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def do_begin(conn):
        # Test and request sessions share the single StaticPool connection
        if not conn.connection.dbapi_connection.in_transaction:
            conn.exec_driver_sql('BEGIN')


@pytest.fixture(scope='function')
def engine():
    """Create a fresh test database per test."""
    if TEST_DATABASE_URL.startswith('sqlite'):
        eng = create_engine(
            TEST_DATABASE_URL,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool
        )
        _enable_sqlite_savepoints(eng)
    else:
        eng = create_engine(TEST_DATABASE_URL)

    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture(scope='function')
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope='function')
def session(session_factory):
    """Create a new database session for a test."""
    sess = session_factory()
    yield sess
    sess.close()


@pytest.fixture
def service_types(session):
    """Two catalog entries: entry and exit inspections."""
    entry = ServiceType(code='1.0', name='VISTORIA DE ENTRADA')
    exit_ = ServiceType(code='2.0', name='VISTORIA DE SAÍDA')
    session.add_all([entry, exit_])
    session.commit()
    return {'entry': entry, 'exit': exit_}


@pytest.fixture
def area_bands(session):
    """Three contiguous bands with growing multipliers."""
    bands = [
        AreaBand(name='Até 100 m²', min_area=Decimal('0'), max_area=Decimal('100'),
                 multiplier=Decimal('1.00'), position=1),
        AreaBand(name='100 a 200 m²', min_area=Decimal('100.01'), max_area=Decimal('200'),
                 multiplier=Decimal('1.50'), position=2),
        AreaBand(name='Acima de 200 m²', min_area=Decimal('200.01'), max_area=Decimal('99999'),
                 multiplier=Decimal('2.00'), position=3),
    ]
    session.add_all(bands)
    session.commit()
    return bands


@pytest.fixture
def make_agency(session):
    def _make(external_name='IMOBILIARIA CENTRAL', **kwargs):
        agency = Agency(name=kwargs.pop('name', external_name.title()), external_name=external_name, **kwargs)
        session.add(agency)
        session.commit()
        return agency
    return _make


@pytest.fixture
def make_inspector(session):
    def _make(external_name='JOAO SILVA', **kwargs):
        inspector = Inspector(name=kwargs.pop('name', external_name.title()), external_name=external_name,
                              **kwargs)
        session.add(inspector)
        session.commit()
        return inspector
    return _make


@pytest.fixture
def make_closure(session):
    def _make(month=9, year=2025, status=ClosureStatus.DRAFT):
        closure = Closure(reference_month=month, reference_year=year, status=ClosureStatus(status).value)
        session.add(closure)
        session.commit()
        return closure
    return _make


@pytest.fixture
def make_inspection(session):
    def _make(closure, agency, inspector, service_type, **kwargs):
        values = {
            'external_id': '1001',
            'billable_area': Decimal('80'),
            'furnishing': 'unfurnished',
            'status': InspectionStatus.IMPORTED.value,
        }
        values.update(kwargs)
        inspection = Inspection(
            closure_id=closure.id,
            agency_id=agency.id,
            inspector_id=inspector.id,
            service_type_id=service_type.id,
            **values
        )
        session.add(inspection)
        session.commit()
        return inspection
    return _make


@pytest.fixture
def make_price(session):
    def _make(agency, service_type, base, band=None, furnished=None, semi=None, active=True):
        row = PriceTable(
            agency_id=agency.id,
            service_type_id=service_type.id,
            area_band_id=band.id if band is not None else None,
            base_amount=Decimal(base),
            furnished_surcharge=Decimal(furnished) if furnished is not None else None,
            semi_furnished_surcharge=Decimal(semi) if semi is not None else None,
            active=active
        )
        session.add(row)
        session.commit()
        return row
    return _make


@pytest.fixture
def make_payout(session):
    def _make(inspector, service_type, base, band=None, furnished=None, semi=None, active=True):
        row = PayoutTable(
            inspector_id=inspector.id,
            service_type_id=service_type.id,
            area_band_id=band.id if band is not None else None,
            base_amount=Decimal(base),
            furnished_surcharge=Decimal(furnished) if furnished is not None else None,
            semi_furnished_surcharge=Decimal(semi) if semi is not None else None,
            active=active
        )
        session.add(row)
        session.commit()
        return row
    return _make


def _build_workbook(rows, header=None) -> bytes:
    """Build an export-shaped .xlsx in memory."""
    workbook = Workbook()
    ws = workbook.active
    ws.title = 'Vistorias'
    ws.append(header if header is not None else EXPORT_HEADER)
    for row in rows:
        ws.append(row)
    output = BytesIO()
    workbook.save(output)
    return output.getvalue()


def _export_row(external_id, client='IMOBILIARIA CENTRAL', inspector='JOAO SILVA',
               service='1.0 - VISTORIA DE ENTRADA', address='Rua das Flores, 100 - Centro - Curitiba/PR - CEP 80000-000',
               city=None, reported=None, measured=None, billable=None, furnished='NÃO',
               contract=None, scheduled=None, finished=None):
    """One data row in EXPORT_HEADER order."""
    return [
        external_id, contract, client, inspector, address, city, reported, measured, billable,
        furnished, service,
        scheduled if scheduled is not None else datetime(2025, 9, 3, 9, 0),
        finished,
    ]


@pytest.fixture
def build_xlsx():
    """Factory: build_xlsx(rows, header=None) -> .xlsx bytes."""
    return _build_workbook


@pytest.fixture
def xlsx_row():
    """Factory for one export data row."""
    return _export_row


@pytest.fixture
def export_header():
    """Header row of the scheduling-system export."""
    return list(EXPORT_HEADER)
