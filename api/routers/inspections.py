"""
Inspections router - review, correct and approve imported inspections.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.dependencies import get_db, get_current_user
from api.schemas.common import PaginatedResponse
from api.schemas.inspection_schema import (
    InspectionResponse, InspectionUpdateRequest, ApproveBatchRequest, ApproveBatchResponse
)
from backend.models.schema import InspectionStatus
from services.calculation_service import CalculationService
from services.inspection_service import InspectionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/inspections', tags=['inspections'])


@router.get('', response_model=PaginatedResponse[InspectionResponse])
async def list_inspections(
    closure_id: Optional[int] = Query(None, description="Filter by closure"),
    agency_id: Optional[int] = Query(None, description="Filter by agency"),
    inspector_id: Optional[int] = Query(None, description="Filter by inspector"),
    service_type_id: Optional[int] = Query(None, description="Filter by service type"),
    status: Optional[InspectionStatus] = Query(None, description="Filter by status"),
    city: Optional[str] = Query(None, description="Case-insensitive substring"),
    search: Optional[str] = Query(None, description="Matches address, id or contract"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=500, description="Items per page"),
    db: Session = Depends(get_db)
):
    """
    List inspections across closures with filters.

    **Example:**
    ```bash
    curl "http://localhost:8000/api/inspections?closure_id=7&status=pending_review&search=rua"
    ```
    """
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


@router.post('/approve-batch', response_model=ApproveBatchResponse)
async def approve_batch(
    payload: ApproveBatchRequest,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Approve several inspections at once.

    Records that are unknown or cannot be approved from their current
    status are skipped; `approved` tells how many moved.
    """
    approved = InspectionService(db).approve_batch(payload.ids)
    logger.info(f"Batch approval by {current_user}: {approved}/{len(payload.ids)}")
    return ApproveBatchResponse(requested=len(payload.ids), approved=approved)


@router.get('/{inspection_id}', response_model=InspectionResponse)
async def get_inspection(inspection_id: int, db: Session = Depends(get_db)):
    """Get one inspection with its agency, inspector and service type."""
    return InspectionService(db).get_inspection(inspection_id)


@router.patch('/{inspection_id}', response_model=InspectionResponse)
async def update_inspection(
    inspection_id: int,
    payload: InspectionUpdateRequest,
    db: Session = Depends(get_db)
):
    """
    Correct an inspection.

    Only the fields sent are changed. Amounts are not recomputed; call
    POST /inspections/{id}/recalculate afterwards.
    """
    return InspectionService(db).update_inspection(
        inspection_id, payload.model_dump(exclude_unset=True)
    )


@router.post('/{inspection_id}/recalculate', response_model=InspectionResponse)
async def recalculate_inspection(inspection_id: int, db: Session = Depends(get_db)):
    """
    Re-price one inspection and refresh its closure totals.
    """
    inspection = CalculationService(db).recalculate_inspection(inspection_id)
    return InspectionService(db).get_inspection(inspection.id)


@router.post('/{inspection_id}/approve', response_model=InspectionResponse)
async def approve_inspection(
    inspection_id: int,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Approve one inspection.

    **Returns:**
    - 409 if the inspection cannot be approved from its status
    """
    logger.info(f"Approve inspection {inspection_id} by {current_user}")
    return InspectionService(db).approve_inspection(inspection_id)
