"""
Closure-related Pydantic schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field

from backend.models.schema import ClosureStatus


class ClosureCreateRequest(BaseModel):
    """Open a closure for a reference period."""

    reference_month: int = Field(..., ge=1, le=12, description="Reference month (1-12)")
    reference_year: int = Field(..., ge=2020, le=2100, description="Reference year")

    class Config:
        json_schema_extra = {
            "example": {"reference_month": 9, "reference_year": 2025}
        }


class ClosureStatusRequest(BaseModel):
    """Move a closure through the workflow."""

    status: ClosureStatus = Field(..., description="Target status")


class ClosureResponse(BaseModel):
    """Closure header with totals and milestones."""

    id: int
    reference_month: int
    reference_year: int
    status: ClosureStatus
    imported_at: Optional[datetime] = None
    inspectors_sent_at: Optional[datetime] = None
    agencies_sent_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    total_inspections: int
    total_receivable: Decimal
    total_payable: Decimal
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CalculationError(BaseModel):
    """An inspection that could not be priced."""

    record_id: int = Field(..., description="Inspection id")
    message: str = Field(..., description="Reason")


class CalculationResultResponse(BaseModel):
    """Result of a closure calculation."""

    total_records: int = Field(..., description="Inspections in the closure")
    total_receivable: Decimal = Field(..., description="Sum of receivable amounts")
    total_payable: Decimal = Field(..., description="Sum of payable amounts")
    calculated_count: int = Field(..., description="Inspections priced successfully")
    errors: List[CalculationError] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "total_records": 410,
                "total_receivable": "61500.00",
                "total_payable": "32800.00",
                "calculated_count": 409,
                "errors": [{"record_id": 1234, "message": "Inspection 1234 has no service type"}]
            }
        }


class AgencySummaryItem(BaseModel):
    agency_id: int
    name: str
    count: int
    receivable: Decimal


class InspectorSummaryItem(BaseModel):
    inspector_id: int
    name: str
    count: int
    payable: Decimal


class StatusSummaryItem(BaseModel):
    status: str
    count: int


class ClosureSummaryResponse(BaseModel):
    """Closure totals broken down by agency, inspector and status."""

    closure: ClosureResponse
    by_agency: List[AgencySummaryItem]
    by_inspector: List[InspectorSummaryItem]
    by_status: List[StatusSummaryItem]
