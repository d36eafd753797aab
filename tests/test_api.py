"""
API tests using FastAPI's TestClient against the test database.

Celery and Redis are replaced with in-process fakes; nothing is enqueued.
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

import tasks.closure_tasks
from api.dependencies import get_db
from api.main import app
from api.routers import jobs as jobs_router
from backend.models.job import JobRun
from backend.models.schema import ClosureStatus

XLSX = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


class FakeRedis:
    """Progress cache that never has an entry."""

    def get(self, key):
        return None


class FakeTask:
    """Stands in for a Celery task; records apply_async calls."""

    def __init__(self, task_id):
        self.task_id = task_id
        self.calls = []

    def apply_async(self, args=None, **kwargs):
        self.calls.append(args)
        return SimpleNamespace(id=self.task_id)


@pytest.fixture
def client(session_factory, monkeypatch):
    """TestClient whose requests use the test database."""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(jobs_router, 'redis_client', FakeRedis())
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def priced_closure(service_types, make_agency, make_inspector, make_closure, make_price, make_payout):
    """An imported closure with rates for the entry service."""
    agency = make_agency()
    inspector = make_inspector()
    make_price(agency, service_types['entry'], '150.00', furnished='30.00')
    make_payout(inspector, service_types['entry'], '60.00')
    return make_closure(status=ClosureStatus.DRAFT)


class TestClosuresAPI:
    """Closure endpoints."""

    def test_create_and_get(self, client):
        """Test creating a closure and reading it back."""
        response = client.post('/api/closures', json={'reference_month': 9, 'reference_year': 2025})
        assert response.status_code == 201
        created = response.json()
        assert created['status'] == 'draft'
        assert Decimal(created['total_receivable']) == Decimal('0')

        response = client.get(f"/api/closures/{created['id']}")
        assert response.status_code == 200
        assert response.json()['reference_month'] == 9

    def test_duplicate_period_conflict(self, client):
        """Test that a second closure for the same period returns 409."""
        payload = {'reference_month': 9, 'reference_year': 2025}
        client.post('/api/closures', json=payload)
        response = client.post('/api/closures', json=payload)

        assert response.status_code == 409
        assert response.json()['code'] == 'conflict'

    def test_validation(self, client):
        """Test request validation of the period."""
        response = client.post('/api/closures', json={'reference_month': 13, 'reference_year': 2025})
        assert response.status_code == 422

    def test_not_found(self, client):
        """Test the error body of a missing closure."""
        response = client.get('/api/closures/999')
        assert response.status_code == 404
        body = response.json()
        assert body['code'] == 'closure_not_found'
        assert body['error'] == 'Closure 999 not found'

    def test_list_and_filter(self, client, make_closure):
        """Test pagination metadata and filters."""
        make_closure(month=1, year=2025)
        make_closure(month=2, year=2025, status=ClosureStatus.IMPORTED)
        make_closure(month=12, year=2024)

        body = client.get('/api/closures', params={'page_size': 2}).json()
        assert (body['total'], body['total_pages'], len(body['items'])) == (3, 2, 2)

        body = client.get('/api/closures', params={'year': 2025, 'status': 'imported'}).json()
        assert [item['reference_month'] for item in body['items']] == [2]

    def test_status_change(self, client, make_closure):
        """Test workflow moves through the API."""
        closure = make_closure(status=ClosureStatus.CALCULATED)

        response = client.patch(f'/api/closures/{closure.id}/status', json={'status': 'awaiting_inspectors'})
        assert response.status_code == 200
        assert response.json()['inspectors_sent_at'] is not None

        response = client.patch(f'/api/closures/{closure.id}/status', json={'status': 'finalized'})
        assert response.status_code == 409
        assert response.json()['code'] == 'invalid_transition'

    def test_delete(self, client, make_closure):
        """Test that only drafts can be deleted."""
        draft = make_closure(month=1)
        imported = make_closure(month=2, status=ClosureStatus.IMPORTED)

        assert client.delete(f'/api/closures/{draft.id}').json()['success'] is True
        assert client.delete(f'/api/closures/{imported.id}').status_code == 409


class TestClosureLifecycleAPI:
    """Import, calculate, summarize and export a closure."""

    def _import(self, client, closure, build_xlsx, xlsx_row):
        content = build_xlsx([
            xlsx_row(1001, billable=Decimal('80'), furnished='SIM'),
            xlsx_row(1002, billable=Decimal('90')),
            xlsx_row(1003, client=None),
        ])
        return client.post(
            f'/api/closures/{closure.id}/import',
            files={'file': ('vistorias.xlsx', content, XLSX)}
        )

    def test_full_cycle(self, client, priced_closure, build_xlsx, xlsx_row):
        """Test import, calculation, summary, listing and both exports."""
        closure_id = priced_closure.id

        response = self._import(client, priced_closure, build_xlsx, xlsx_row)
        assert response.status_code == 200
        report = response.json()
        assert (report['total'], report['imported']) == (3, 2)
        assert report['errors'] == [{'row': 4, 'message': 'client missing'}]

        response = client.post(f'/api/closures/{closure_id}/calculate')
        assert response.status_code == 200
        result = response.json()
        assert result['calculated_count'] == 2
        assert Decimal(result['total_receivable']) == Decimal('330.00')
        assert Decimal(result['total_payable']) == Decimal('120.00')

        summary = client.get(f'/api/closures/{closure_id}/summary').json()
        assert summary['closure']['status'] == 'calculated'
        assert summary['by_agency'][0]['count'] == 2
        assert summary['by_status'] == [{'status': 'calculated', 'count': 2}]

        listing = client.get(f'/api/closures/{closure_id}/inspections', params={'search': '1001'}).json()
        assert listing['total'] == 1
        assert listing['items'][0]['agency']['name'] == 'Imobiliaria Central'
        assert Decimal(listing['items'][0]['receivable_amount']) == Decimal('180.00')

        response = client.get(f'/api/closures/{closure_id}/export/receivables')
        assert response.status_code == 200
        assert response.headers['content-type'] == XLSX
        assert 'contas-receber-9-2025.xlsx' in response.headers['content-disposition']
        assert response.content[:2] == b'PK'

        response = client.get(f'/api/closures/{closure_id}/export/payables')
        assert 'contas-pagar-9-2025.xlsx' in response.headers['content-disposition']

    def test_import_rejects_extension(self, client, priced_closure):
        """Test that non-workbook uploads are refused before parsing."""
        response = client.post(
            f'/api/closures/{priced_closure.id}/import',
            files={'file': ('vistorias.csv', b'id;cliente', 'text/csv')}
        )
        assert response.status_code == 400

    def test_import_unreadable_workbook(self, client, priced_closure):
        """Test the 422 for corrupt workbooks."""
        response = client.post(
            f'/api/closures/{priced_closure.id}/import',
            files={'file': ('vistorias.xlsx', b'garbage', XLSX)}
        )
        assert response.status_code == 422
        assert response.json()['code'] == 'spreadsheet_format'

    def test_calculate_draft_conflict(self, client, priced_closure):
        """Test that a draft closure cannot be calculated."""
        response = client.post(f'/api/closures/{priced_closure.id}/calculate')
        assert response.status_code == 409

    def test_inspections_of_unknown_closure(self, client):
        """Test the 404 on the nested listing."""
        assert client.get('/api/closures/999/inspections').status_code == 404


class TestBackgroundJobsAPI:
    """Async endpoints and job tracking."""

    def test_calculate_async_creates_job(self, client, session, make_closure, monkeypatch):
        """Test that the job row is stored under the task id."""
        closure = make_closure(status=ClosureStatus.IMPORTED)
        task = FakeTask('calc-123')
        monkeypatch.setattr(tasks.closure_tasks, 'calculate_closure', task)

        response = client.post(f'/api/closures/{closure.id}/calculate/async')

        assert response.status_code == 202
        assert response.json()['job_id'] == 'calc-123'
        assert response.json()['status_url'] == '/api/jobs/calc-123'
        assert task.calls == [[closure.id]]

        job = client.get('/api/jobs/calc-123').json()
        assert (job['job_type'], job['status'], job['closure_id']) == ('calculation', 'pending', closure.id)
        assert job['progress'] is None

        listing = client.get('/api/jobs', params={'closure_id': closure.id}).json()
        assert listing['total'] == 1

    def test_calculate_async_checks_status(self, client, make_closure, monkeypatch):
        """Test that nothing is enqueued for a draft closure."""
        closure = make_closure()
        task = FakeTask('never')
        monkeypatch.setattr(tasks.closure_tasks, 'calculate_closure', task)

        assert client.post(f'/api/closures/{closure.id}/calculate/async').status_code == 409
        assert task.calls == []

    def test_import_async_stores_upload(self, client, session, make_closure, build_xlsx, xlsx_row,
                                        monkeypatch, tmp_path):
        """Test that the upload is saved and handed to the task."""
        monkeypatch.setattr('api.routers.closures.settings.TEMP_UPLOAD_DIR', str(tmp_path))
        closure = make_closure()
        task = FakeTask('import-1')
        monkeypatch.setattr(tasks.closure_tasks, 'import_closure_file', task)

        response = client.post(
            f'/api/closures/{closure.id}/import/async',
            files={'file': ('vistorias.xlsx', build_xlsx([xlsx_row(1)]), XLSX)}
        )

        assert response.status_code == 202
        [(closure_id, temp_path)] = task.calls
        assert closure_id == closure.id
        assert temp_path.startswith(str(tmp_path))
        assert session.query(JobRun).filter_by(job_id='import-1').one().params['filename'] == 'vistorias.xlsx'

    def test_cancel_job(self, client, session, make_closure, monkeypatch):
        """Test cancelling a pending job and refusing a second cancel."""
        closure = make_closure()
        session.add(JobRun(job_id='job-1', job_type='import', status='pending', params={},
                           closure_id=closure.id))
        session.commit()
        monkeypatch.setattr('tasks.celery_app.celery_app.control.revoke', lambda *a, **kw: None)

        assert client.delete('/api/jobs/job-1').status_code == 204
        assert client.get('/api/jobs/job-1').json()['status'] == 'cancelled'
        assert client.delete('/api/jobs/job-1').status_code == 400

    def test_unknown_job(self, client):
        """Test the 404 for an unknown job id."""
        assert client.get('/api/jobs/nope').status_code == 404


class TestInspectionsAPI:
    """Inspection endpoints."""

    @pytest.fixture
    def inspection(self, service_types, make_agency, make_inspector, make_closure, make_inspection,
                   make_price):
        agency = make_agency()
        make_price(agency, service_types['entry'], '150.00')
        closure = make_closure(status=ClosureStatus.CALCULATED)
        return make_inspection(closure, agency, make_inspector(), service_types['entry'],
                               status='calculated', receivable_amount=Decimal('150.00'))

    def test_get_and_list(self, client, inspection):
        """Test the detail and list views."""
        body = client.get(f'/api/inspections/{inspection.id}').json()
        assert body['external_id'] == '1001'
        assert body['service_type']['code'] == '1.0'

        listing = client.get('/api/inspections', params={'status': 'calculated'}).json()
        assert listing['total'] == 1
        assert client.get('/api/inspections/999').status_code == 404

    def test_patch_and_recalculate(self, client, inspection):
        """Test a correction followed by repricing."""
        response = client.patch(f'/api/inspections/{inspection.id}',
                                json={'billable_area': '150', 'notes': 'medido no local'})
        assert response.status_code == 200
        assert Decimal(response.json()['billable_area']) == Decimal('150')

        response = client.post(f'/api/inspections/{inspection.id}/recalculate')
        assert response.status_code == 200
        # No band rows exist, so the bandless rate applies with multiplier 1
        assert Decimal(response.json()['receivable_amount']) == Decimal('150.00')

    def test_patch_cannot_clear_area(self, client, inspection):
        """Test that a null area is rejected and the record still prices."""
        for field_name in ('billable_area', 'service_type_id'):
            response = client.patch(f'/api/inspections/{inspection.id}', json={field_name: None})
            assert response.status_code == 422

        response = client.post(f'/api/inspections/{inspection.id}/recalculate')
        assert response.status_code == 200
        assert Decimal(response.json()['receivable_amount']) == Decimal('150.00')

    def test_patch_invalid_status(self, client, inspection):
        """Test that PATCH status changes follow the workflow."""
        response = client.patch(f'/api/inspections/{inspection.id}', json={'status': 'invoiced'})
        assert response.status_code == 409

    def test_approve(self, client, inspection):
        """Test single and batch approval."""
        assert client.post(f'/api/inspections/{inspection.id}/approve').json()['status'] == 'approved'
        assert client.post(f'/api/inspections/{inspection.id}/approve').status_code == 409

        body = client.post('/api/inspections/approve-batch', json={'ids': [inspection.id, 999]}).json()
        assert body == {'requested': 2, 'approved': 0}


class TestReferenceAPI:
    """Reference data endpoints."""

    def test_agency_lifecycle(self, client):
        """Test create, update, duplicate and soft delete."""
        payload = {'name': 'Imobiliária Central', 'external_name': 'IMOBILIARIA CENTRAL'}
        response = client.post('/api/agencies', json=payload)
        assert response.status_code == 201
        agency_id = response.json()['id']
        assert response.json()['payment_day'] == 12

        assert client.post('/api/agencies', json=payload).status_code == 409

        response = client.patch(f'/api/agencies/{agency_id}', json={'payment_day': 5})
        assert response.json()['payment_day'] == 5
        assert response.json()['name'] == 'Imobiliária Central'

        assert client.delete(f'/api/agencies/{agency_id}').json()['active'] is False
        assert client.get('/api/agencies', params={'active': True}).json()['total'] == 0

    def test_rates(self, client, service_types, make_agency):
        """Test price rows and their per-agency listing."""
        agency = make_agency()
        response = client.post('/api/price-tables', json={
            'agency_id': agency.id,
            'service_type_id': service_types['entry'].id,
            'base_amount': '150.00',
            'furnished_surcharge': '30.00'
        })
        assert response.status_code == 201
        row_id = response.json()['id']

        client.patch(f'/api/price-tables/{row_id}', json={'base_amount': '175.50'})
        rows = client.get(f'/api/agencies/{agency.id}/price-tables').json()
        assert [Decimal(row['base_amount']) for row in rows] == [Decimal('175.50')]

        response = client.post('/api/price-tables', json={
            'agency_id': agency.id, 'service_type_id': 999, 'base_amount': '1'
        })
        assert response.status_code == 404

    def test_area_bands(self, client):
        """Test band creation, range validation and deletion."""
        response = client.post('/api/area-bands', json={
            'name': 'Até 100 m²', 'min_area': '0', 'max_area': '100', 'multiplier': '1.0'
        })
        assert response.status_code == 201
        band_id = response.json()['id']

        response = client.post('/api/area-bands', json={
            'name': 'Invertida', 'min_area': '300', 'max_area': '100'
        })
        assert response.status_code == 422

        assert client.delete(f'/api/area-bands/{band_id}').json()['success'] is True
        assert client.get('/api/area-bands').json() == []

    def test_service_types(self, client):
        """Test service type creation and soft delete."""
        response = client.post('/api/service-types', json={'code': '6.0', 'name': 'VISTORIA AVULSA'})
        assert response.status_code == 201
        service_type_id = response.json()['id']

        client.delete(f'/api/service-types/{service_type_id}')
        assert client.get('/api/service-types', params={'active': True}).json() == []
