"""
Pydantic schemas for request/response validation.

This package contains all Pydantic models used for API request validation
and response serialization.
"""

from api.schemas.common import ErrorResponse, PaginatedResponse, SuccessResponse
from api.schemas.job_schema import (
    JobStatusEnum, JobTypeEnum, JobProgressResponse,
    JobStatusResponse, JobCreateResponse
)
from api.schemas.import_schema import ImportResultResponse, ImportStartResponse
from api.schemas.closure_schema import (
    ClosureCreateRequest, ClosureResponse, CalculationResultResponse, ClosureSummaryResponse
)
from api.schemas.inspection_schema import InspectionResponse, InspectionUpdateRequest

__all__ = [
    # Common
    'ErrorResponse',
    'PaginatedResponse',
    'SuccessResponse',

    # Job
    'JobStatusEnum',
    'JobTypeEnum',
    'JobProgressResponse',
    'JobStatusResponse',
    'JobCreateResponse',

    # Import
    'ImportResultResponse',
    'ImportStartResponse',

    # Closure
    'ClosureCreateRequest',
    'ClosureResponse',
    'CalculationResultResponse',
    'ClosureSummaryResponse',

    # Inspection
    'InspectionResponse',
    'InspectionUpdateRequest',
]
