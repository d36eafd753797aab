"""
Inspection-related Pydantic schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from backend.models.schema import FurnishingState, InspectionStatus


class PartyRef(BaseModel):
    """Agency or inspector reference embedded in an inspection."""

    id: int
    name: str

    class Config:
        from_attributes = True


class ServiceTypeRef(BaseModel):
    id: int
    code: str
    name: str

    class Config:
        from_attributes = True


class InspectionResponse(BaseModel):
    """Inspection with its parties and amounts."""

    id: int
    closure_id: int
    external_id: str
    contract_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    reported_area: Optional[Decimal] = None
    measured_area: Optional[Decimal] = None
    billable_area: Optional[Decimal] = None
    furnishing: FurnishingState
    scheduled_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    receivable_amount: Decimal
    payable_amount: Decimal
    status: InspectionStatus
    notes: Optional[str] = None
    agency: Optional[PartyRef] = None
    inspector: Optional[PartyRef] = None
    service_type: Optional[ServiceTypeRef] = None

    class Config:
        from_attributes = True


class InspectionUpdateRequest(BaseModel):
    """Manual corrections to an inspection; only sent fields are applied."""

    reported_area: Optional[Decimal] = Field(None, ge=0)
    measured_area: Optional[Decimal] = Field(None, ge=0)
    billable_area: Optional[Decimal] = Field(None, ge=0)
    furnishing: Optional[FurnishingState] = None
    service_type_id: Optional[int] = None
    notes: Optional[str] = None
    status: Optional[InspectionStatus] = None

    @field_validator('billable_area', 'furnishing', 'service_type_id')
    @classmethod
    def not_null(cls, value):
        # Omit the field to leave it unchanged; null would clear a required column
        if value is None:
            raise ValueError('cannot be null')
        return value

    class Config:
        json_schema_extra = {
            "example": {"billable_area": "180.00", "furnishing": "furnished", "notes": "Remeasured on site"}
        }


class ApproveBatchRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1, description="Inspection ids to approve")


class ApproveBatchResponse(BaseModel):
    requested: int = Field(..., description="Ids received")
    approved: int = Field(..., description="Inspections moved to approved")
