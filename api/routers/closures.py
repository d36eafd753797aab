"""
Closures router - monthly closure lifecycle.

Create and list closures, import the scheduling export into them, run the
pricing calculation, and download the receivable and payable workbooks.
Import and calculation are available both inline and as background jobs.
"""

import os
import logging
import tempfile
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, UploadFile, File, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from api.config import settings
from api.dependencies import get_db, get_current_user, verify_file_extension, verify_file_size
from api.schemas.common import PaginatedResponse, SuccessResponse
from api.schemas.closure_schema import (
    ClosureCreateRequest, ClosureStatusRequest, ClosureResponse,
    CalculationResultResponse, ClosureSummaryResponse
)
from api.schemas.import_schema import ImportResultResponse, ImportStartResponse
from api.schemas.inspection_schema import InspectionResponse
from api.schemas.job_schema import JobCreateResponse
from backend.models.job import JobRun, JobType, JobStatus
from backend.models.schema import ClosureStatus, InspectionStatus
from services.calculation_service import CalculationService
from services.closure_service import ClosureService
from services.export_service import ExportService
from services.import_service import SpreadsheetImportService
from services.inspection_service import InspectionService
from services.workflow import CALCULABLE_CLOSURE_STATUSES, IMPORTABLE_CLOSURE_STATUSES
from services.exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/closures', tags=['closures'])

XLSX_MEDIA_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


@router.get('', response_model=PaginatedResponse[ClosureResponse])
async def list_closures(
    year: Optional[int] = Query(None, description="Filter by reference year"),
    status: Optional[ClosureStatus] = Query(None, description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: Session = Depends(get_db)
):
    """
    List closures, newest reference period first.

    **Example:**
    ```bash
    curl "http://localhost:8000/api/closures?year=2025&status=calculated"
    ```
    """
    closures, total = ClosureService(db).list_closures(
        year=year,
        status=status.value if status else None,
        page=page,
        page_size=page_size
    )
    return PaginatedResponse[ClosureResponse].create(
        items=[ClosureResponse.model_validate(c) for c in closures],
        total=total,
        page=page,
        page_size=page_size
    )


@router.post('', response_model=ClosureResponse, status_code=status.HTTP_201_CREATED)
async def create_closure(
    payload: ClosureCreateRequest,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Open a draft closure for a reference period.

    **Returns:**
    - 201 with the new closure
    - 409 if the period already has a closure
    """
    logger.info(f"Create closure {payload.reference_month:02d}/{payload.reference_year} by {current_user}")
    closure = ClosureService(db).create_closure(payload.reference_month, payload.reference_year)
    return closure


@router.get('/{closure_id}', response_model=ClosureResponse)
async def get_closure(closure_id: int, db: Session = Depends(get_db)):
    """Get a closure with its totals and milestones."""
    return ClosureService(db).get_closure(closure_id)


@router.delete('/{closure_id}', response_model=SuccessResponse)
async def delete_closure(
    closure_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Delete a draft closure.

    **Returns:**
    - 200 on success
    - 404 if the closure does not exist
    - 409 if the closure is no longer a draft
    """
    ClosureService(db).delete_closure(closure_id)
    logger.info(f"Closure {closure_id} deleted by {current_user}")
    return SuccessResponse(
        message=f"Closure {closure_id} deleted successfully",
        data={'closure_id': closure_id}
    )


@router.patch('/{closure_id}/status', response_model=ClosureResponse)
async def change_closure_status(
    closure_id: int,
    payload: ClosureStatusRequest,
    db: Session = Depends(get_db)
):
    """
    Move a closure through the workflow.

    Allowed moves: draft → imported → calculated → awaiting_inspectors →
    in_review → awaiting_agencies → invoiced → finalized, plus
    in_review → calculated after corrections. Milestone timestamps are
    stamped on entry.

    **Returns:**
    - 409 if the move is not allowed from the current status
    """
    return ClosureService(db).change_status(closure_id, payload.status)


@router.post('/{closure_id}/import', response_model=ImportResultResponse)
async def import_spreadsheet(
    closure_id: int,
    file: UploadFile = File(..., description="Scheduling export (.xlsx)"),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Replace the inspections of a closure with the rows of an export.

    Runs inline and returns the import report. Rows that fail validation are
    listed in `errors`; everything else is stored in one transaction.

    **Returns:**
    - 200 with the import report
    - 404 if the closure does not exist
    - 409 if the closure is past the imported stage
    - 422 if the file is not a readable workbook
    """
    logger.info(f"Import request from {current_user}: {file.filename} into closure {closure_id}")
    verify_file_extension(file.filename)

    content = await file.read()
    verify_file_size(len(content))

    service = SpreadsheetImportService(db)
    return service.import_file(closure_id, content)


@router.post('/{closure_id}/import/async', response_model=ImportStartResponse,
             status_code=status.HTTP_202_ACCEPTED)
async def import_spreadsheet_async(
    closure_id: int,
    file: UploadFile = File(..., description="Scheduling export (.xlsx)"),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Upload an export and import it in a background job.

    **Workflow:**
    1. Validate the closure can receive an import
    2. Save the upload to a temporary file
    3. Create job record in database
    4. Enqueue Celery task
    5. Return job ID for status tracking

    Poll GET /api/jobs/{job_id} for progress.
    """
    from tasks.closure_tasks import import_closure_file

    closure = ClosureService(db).get_closure(closure_id)
    if ClosureStatus(closure.status) not in IMPORTABLE_CLOSURE_STATUSES:
        raise InvalidTransitionError('Closure', closure.status, ClosureStatus.IMPORTED.value)

    verify_file_extension(file.filename)

    temp_file = None
    try:
        content = await file.read()
        verify_file_size(len(content))

        os.makedirs(settings.TEMP_UPLOAD_DIR, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            suffix=Path(file.filename).suffix,
            dir=settings.TEMP_UPLOAD_DIR
        )
        with os.fdopen(fd, 'wb') as tmp:
            tmp.write(content)
        temp_file = temp_path

        logger.info(f"File saved to {temp_path} ({len(content) / 1024 / 1024:.2f} MB)")

        job_run = JobRun(
            job_id='temp',  # Replaced with the Celery task ID
            job_type=JobType.IMPORT.value,
            status=JobStatus.PENDING.value,
            params={
                'filename': file.filename,
                'closure_id': closure_id,
                'file_size_mb': round(len(content) / 1024 / 1024, 2)
            },
            closure_id=closure_id,
            created_by=current_user
        )
        db.add(job_run)
        db.flush()

        task = import_closure_file.apply_async(args=[closure_id, temp_path])

        job_run.job_id = task.id
        db.commit()

        logger.info(f"Started import task {task.id} for closure {closure_id}")

        return ImportStartResponse(
            job_id=task.id,
            message="Spreadsheet import job started",
            status_url=f"{settings.API_PREFIX}/jobs/{task.id}"
        )

    except HTTPException:
        if temp_file and os.path.exists(temp_file):
            os.unlink(temp_file)
        raise

    except Exception as e:
        if temp_file and os.path.exists(temp_file):
            os.unlink(temp_file)

        logger.error(f"Upload failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Upload failed: {str(e)}"
        )


@router.post('/{closure_id}/calculate', response_model=CalculationResultResponse)
async def calculate_closure(closure_id: int, db: Session = Depends(get_db)):
    """
    Price every inspection of the closure and store the totals.

    Inspections that cannot be priced are reported in `errors` with zero
    amounts; the closure still moves to `calculated`.

    **Returns:**
    - 404 if the closure does not exist
    - 409 unless the closure is imported or calculated
    """
    return CalculationService(db).calculate_closure(closure_id)


@router.post('/{closure_id}/calculate/async', response_model=JobCreateResponse,
             status_code=status.HTTP_202_ACCEPTED)
async def calculate_closure_async(
    closure_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """Run the closure calculation in a background job."""
    from tasks.closure_tasks import calculate_closure as calculate_closure_task

    closure = ClosureService(db).get_closure(closure_id)
    if ClosureStatus(closure.status) not in CALCULABLE_CLOSURE_STATUSES:
        raise InvalidTransitionError('Closure', closure.status, ClosureStatus.CALCULATED.value)

    job_run = JobRun(
        job_id='temp',
        job_type=JobType.CALCULATION.value,
        status=JobStatus.PENDING.value,
        params={'closure_id': closure_id},
        closure_id=closure_id,
        created_by=current_user
    )
    db.add(job_run)
    db.flush()

    task = calculate_closure_task.apply_async(args=[closure_id])
    job_run.job_id = task.id
    db.commit()

    logger.info(f"Started calculation task {task.id} for closure {closure_id}")

    return JobCreateResponse(
        job_id=task.id,
        message="Calculation job started",
        status_url=f"{settings.API_PREFIX}/jobs/{task.id}"
    )


@router.get('/{closure_id}/summary', response_model=ClosureSummaryResponse)
async def get_closure_summary(closure_id: int, db: Session = Depends(get_db)):
    """Totals of a closure grouped by agency, inspector and inspection status."""
    return ClosureService(db).get_summary(closure_id)


@router.get('/{closure_id}/inspections', response_model=PaginatedResponse[InspectionResponse])
async def list_closure_inspections(
    closure_id: int,
    agency_id: Optional[int] = Query(None),
    inspector_id: Optional[int] = Query(None),
    service_type_id: Optional[int] = Query(None),
    status: Optional[InspectionStatus] = Query(None),
    city: Optional[str] = Query(None, description="Case-insensitive substring"),
    search: Optional[str] = Query(None, description="Matches address, id or contract"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """List the inspections of one closure."""
    ClosureService(db).get_closure(closure_id)

    inspections, total = InspectionService(db).list_inspections(
        closure_id=closure_id,
        agency_id=agency_id,
        inspector_id=inspector_id,
        service_type_id=service_type_id,
        status=status.value if status else None,
        city=city,
        search=search,
        page=page,
        page_size=page_size
    )
    return PaginatedResponse[InspectionResponse].create(
        items=[InspectionResponse.model_validate(i) for i in inspections],
        total=total,
        page=page,
        page_size=page_size
    )


def _workbook_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={'Content-Disposition': f'attachment; filename="{filename}"'}
    )


@router.get('/{closure_id}/export/receivables')
async def export_receivables(closure_id: int, db: Session = Depends(get_db)):
    """
    Download the accounts-receivable workbook (one row per agency).

    Sheets: Resumo, Detalhes and Flow Import.
    """
    closure = ClosureService(db).get_closure(closure_id)
    service = ExportService(db, currency_format=settings.CURRENCY_FORMAT, payout_day=settings.PAYOUT_DAY,
                            default_payment_day=settings.DEFAULT_PAYMENT_DAY)
    content = service.export_receivables(closure_id)
    return _workbook_response(
        content,
        f"contas-receber-{closure.reference_month}-{closure.reference_year}.xlsx"
    )


@router.get('/{closure_id}/export/payables')
async def export_payables(closure_id: int, db: Session = Depends(get_db)):
    """
    Download the accounts-payable workbook (one row per inspector).

    Sheets: Resumo, Detalhes and Flow Import.
    """
    closure = ClosureService(db).get_closure(closure_id)
    service = ExportService(db, currency_format=settings.CURRENCY_FORMAT, payout_day=settings.PAYOUT_DAY,
                            default_payment_day=settings.DEFAULT_PAYMENT_DAY)
    content = service.export_payables(closure_id)
    return _workbook_response(
        content,
        f"contas-pagar-{closure.reference_month}-{closure.reference_year}.xlsx"
    )
