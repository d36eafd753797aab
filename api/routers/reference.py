"""
Reference data router - agencies, inspectors, service types, area bands,
price tables and payout tables.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from api.dependencies import get_db
from api.schemas.common import PaginatedResponse, SuccessResponse
from api.schemas.reference_schema import (
    AgencyCreateRequest, AgencyUpdateRequest, AgencyResponse,
    InspectorCreateRequest, InspectorUpdateRequest, InspectorResponse,
    ServiceTypeCreateRequest, ServiceTypeUpdateRequest, ServiceTypeResponse,
    AreaBandCreateRequest, AreaBandUpdateRequest, AreaBandResponse,
    RateUpdateRequest, PriceTableCreateRequest, PriceTableResponse,
    PayoutTableCreateRequest, PayoutTableResponse
)
from services.reference_service import ReferenceService

logger = logging.getLogger(__name__)

router = APIRouter(tags=['reference'])


# Agencies

@router.get('/agencies', response_model=PaginatedResponse[AgencyResponse])
async def list_agencies(
    active: Optional[bool] = Query(None, description="Filter by active flag"),
    search: Optional[str] = Query(None, description="Matches name or scheduling-system name"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """List agencies by name."""
    agencies, total = ReferenceService(db).list_agencies(active, search, page, page_size)
    return PaginatedResponse[AgencyResponse].create(
        items=[AgencyResponse.model_validate(a) for a in agencies],
        total=total,
        page=page,
        page_size=page_size
    )


@router.post('/agencies', response_model=AgencyResponse, status_code=status.HTTP_201_CREATED)
async def create_agency(payload: AgencyCreateRequest, db: Session = Depends(get_db)):
    return ReferenceService(db).create_agency(payload.model_dump())


@router.get('/agencies/{agency_id}', response_model=AgencyResponse)
async def get_agency(agency_id: int, db: Session = Depends(get_db)):
    return ReferenceService(db).get_agency(agency_id)


@router.patch('/agencies/{agency_id}', response_model=AgencyResponse)
async def update_agency(agency_id: int, payload: AgencyUpdateRequest, db: Session = Depends(get_db)):
    return ReferenceService(db).update_agency(agency_id, payload.model_dump(exclude_unset=True))


@router.delete('/agencies/{agency_id}', response_model=AgencyResponse)
async def deactivate_agency(agency_id: int, db: Session = Depends(get_db)):
    """
    Deactivate an agency.

    Agencies are never deleted since past inspections reference them.
    """
    return ReferenceService(db).deactivate_agency(agency_id)


@router.get('/agencies/{agency_id}/price-tables', response_model=List[PriceTableResponse])
async def list_agency_price_tables(
    agency_id: int,
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db)
):
    """Price rows of one agency."""
    service = ReferenceService(db)
    service.get_agency(agency_id)
    return service.list_price_tables(agency_id, active)


# Inspectors

@router.get('/inspectors', response_model=PaginatedResponse[InspectorResponse])
async def list_inspectors(
    active: Optional[bool] = Query(None, description="Filter by active flag"),
    search: Optional[str] = Query(None, description="Matches name or scheduling-system name"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """List inspectors by name."""
    inspectors, total = ReferenceService(db).list_inspectors(active, search, page, page_size)
    return PaginatedResponse[InspectorResponse].create(
        items=[InspectorResponse.model_validate(i) for i in inspectors],
        total=total,
        page=page,
        page_size=page_size
    )


@router.post('/inspectors', response_model=InspectorResponse, status_code=status.HTTP_201_CREATED)
async def create_inspector(payload: InspectorCreateRequest, db: Session = Depends(get_db)):
    return ReferenceService(db).create_inspector(payload.model_dump())


@router.get('/inspectors/{inspector_id}', response_model=InspectorResponse)
async def get_inspector(inspector_id: int, db: Session = Depends(get_db)):
    return ReferenceService(db).get_inspector(inspector_id)


@router.patch('/inspectors/{inspector_id}', response_model=InspectorResponse)
async def update_inspector(inspector_id: int, payload: InspectorUpdateRequest, db: Session = Depends(get_db)):
    return ReferenceService(db).update_inspector(inspector_id, payload.model_dump(exclude_unset=True))


@router.delete('/inspectors/{inspector_id}', response_model=InspectorResponse)
async def deactivate_inspector(inspector_id: int, db: Session = Depends(get_db)):
    """Deactivate an inspector."""
    return ReferenceService(db).deactivate_inspector(inspector_id)


@router.get('/inspectors/{inspector_id}/payout-tables', response_model=List[PayoutTableResponse])
async def list_inspector_payout_tables(
    inspector_id: int,
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db)
):
    """Payout rows of one inspector."""
    service = ReferenceService(db)
    service.get_inspector(inspector_id)
    return service.list_payout_tables(inspector_id, active)


# Service types

@router.get('/service-types', response_model=List[ServiceTypeResponse])
async def list_service_types(
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db)
):
    return ReferenceService(db).list_service_types(active)


@router.post('/service-types', response_model=ServiceTypeResponse, status_code=status.HTTP_201_CREATED)
async def create_service_type(payload: ServiceTypeCreateRequest, db: Session = Depends(get_db)):
    return ReferenceService(db).create_service_type(payload.model_dump())


@router.get('/service-types/{service_type_id}', response_model=ServiceTypeResponse)
async def get_service_type(service_type_id: int, db: Session = Depends(get_db)):
    return ReferenceService(db).get_service_type(service_type_id)


@router.patch('/service-types/{service_type_id}', response_model=ServiceTypeResponse)
async def update_service_type(
    service_type_id: int,
    payload: ServiceTypeUpdateRequest,
    db: Session = Depends(get_db)
):
    return ReferenceService(db).update_service_type(service_type_id, payload.model_dump(exclude_unset=True))


@router.delete('/service-types/{service_type_id}', response_model=ServiceTypeResponse)
async def deactivate_service_type(service_type_id: int, db: Session = Depends(get_db)):
    return ReferenceService(db).deactivate_service_type(service_type_id)


# Area bands

@router.get('/area-bands', response_model=List[AreaBandResponse])
async def list_area_bands(db: Session = Depends(get_db)):
    """Area bands in matching order."""
    return ReferenceService(db).list_area_bands()


@router.post('/area-bands', response_model=AreaBandResponse, status_code=status.HTTP_201_CREATED)
async def create_area_band(payload: AreaBandCreateRequest, db: Session = Depends(get_db)):
    return ReferenceService(db).create_area_band(payload.model_dump())


@router.get('/area-bands/{area_band_id}', response_model=AreaBandResponse)
async def get_area_band(area_band_id: int, db: Session = Depends(get_db)):
    return ReferenceService(db).get_area_band(area_band_id)


@router.patch('/area-bands/{area_band_id}', response_model=AreaBandResponse)
async def update_area_band(area_band_id: int, payload: AreaBandUpdateRequest, db: Session = Depends(get_db)):
    return ReferenceService(db).update_area_band(area_band_id, payload.model_dump(exclude_unset=True))


@router.delete('/area-bands/{area_band_id}', response_model=SuccessResponse)
async def delete_area_band(area_band_id: int, db: Session = Depends(get_db)):
    """
    Delete an area band.

    **Returns:**
    - 409 while price or payout rows still use the band
    """
    ReferenceService(db).delete_area_band(area_band_id)
    return SuccessResponse(
        message=f"Area band {area_band_id} deleted successfully",
        data={'area_band_id': area_band_id}
    )


# Price tables

@router.post('/price-tables', response_model=PriceTableResponse, status_code=status.HTTP_201_CREATED)
async def create_price_table(payload: PriceTableCreateRequest, db: Session = Depends(get_db)):
    """
    Add a price row for an agency.

    **Returns:**
    - 404 if the agency, service type or band does not exist
    """
    return ReferenceService(db).create_price_table(payload.model_dump())


@router.get('/price-tables/{price_table_id}', response_model=PriceTableResponse)
async def get_price_table(price_table_id: int, db: Session = Depends(get_db)):
    return ReferenceService(db).get_price_table(price_table_id)


@router.patch('/price-tables/{price_table_id}', response_model=PriceTableResponse)
async def update_price_table(price_table_id: int, payload: RateUpdateRequest, db: Session = Depends(get_db)):
    return ReferenceService(db).update_price_table(price_table_id, payload.model_dump(exclude_unset=True))


@router.delete('/price-tables/{price_table_id}', response_model=PriceTableResponse)
async def deactivate_price_table(price_table_id: int, db: Session = Depends(get_db)):
    return ReferenceService(db).deactivate_price_table(price_table_id)


# Payout tables

@router.post('/payout-tables', response_model=PayoutTableResponse, status_code=status.HTTP_201_CREATED)
async def create_payout_table(payload: PayoutTableCreateRequest, db: Session = Depends(get_db)):
    """
    Add a payout row for an inspector.

    **Returns:**
    - 404 if the inspector, service type or band does not exist
    """
    return ReferenceService(db).create_payout_table(payload.model_dump())


@router.get('/payout-tables/{payout_table_id}', response_model=PayoutTableResponse)
async def get_payout_table(payout_table_id: int, db: Session = Depends(get_db)):
    return ReferenceService(db).get_payout_table(payout_table_id)


@router.patch('/payout-tables/{payout_table_id}', response_model=PayoutTableResponse)
async def update_payout_table(payout_table_id: int, payload: RateUpdateRequest, db: Session = Depends(get_db)):
    return ReferenceService(db).update_payout_table(payout_table_id, payload.model_dump(exclude_unset=True))


@router.delete('/payout-tables/{payout_table_id}', response_model=PayoutTableResponse)
async def deactivate_payout_table(payout_table_id: int, db: Session = Depends(get_db)):
    return ReferenceService(db).deactivate_payout_table(payout_table_id)
