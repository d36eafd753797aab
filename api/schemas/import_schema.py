"""
Import-related Pydantic schemas.

This module contains schemas for spreadsheet import responses.
"""

from typing import List
from pydantic import BaseModel, Field
from api.schemas.job_schema import JobCreateResponse


class ImportRowError(BaseModel):
    """A spreadsheet row that was not imported."""

    row: int = Field(..., description="1-based sheet row number")
    message: str = Field(..., description="Why the row was rejected")


class ImportResultResponse(BaseModel):
    """Result of a synchronous import."""

    total: int = Field(..., description="Non-empty data rows read")
    imported: int = Field(..., description="Rows stored as inspections")
    errors: List[ImportRowError] = Field(default_factory=list, description="Rejected rows")
    new_agencies: List[str] = Field(default_factory=list, description="Agencies created by this import")
    new_inspectors: List[str] = Field(default_factory=list, description="Inspectors created by this import")

    class Config:
        json_schema_extra = {
            "example": {
                "total": 412,
                "imported": 410,
                "errors": [{"row": 37, "message": "client missing"}],
                "new_agencies": ["IMOBILIARIA CENTRAL"],
                "new_inspectors": []
            }
        }


class ImportStartResponse(JobCreateResponse):
    """
    Response when a background import is initiated.

    Extends JobCreateResponse with import-specific messages.
    """

    class Config:
        json_schema_extra = {
            "example": {
                "job_id": "abc-123-def-456",
                "message": "Import job started",
                "status_url": "/api/jobs/abc-123-def-456"
            }
        }
