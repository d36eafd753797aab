"""Models package for the inspection billing system."""
from backend.models.schema import (
    Base, Agency, Inspector, ServiceType, AreaBand, PriceTable, PayoutTable,
    Closure, Inspection, FurnishingState, ClosureStatus, InspectionStatus, PaymentMethod
)
from backend.models.job import JobRun, JobProgress, JobStatus, JobType

__all__ = [
    'Base', 'Agency', 'Inspector', 'ServiceType', 'AreaBand', 'PriceTable', 'PayoutTable',
    'Closure', 'Inspection', 'FurnishingState', 'ClosureStatus', 'InspectionStatus',
    'PaymentMethod', 'JobRun', 'JobProgress', 'JobStatus', 'JobType'
]
