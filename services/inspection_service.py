"""
Inspection management: listing, manual corrections and approval.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from backend.models.schema import FurnishingState, Inspection, InspectionStatus, ServiceType
from services.exceptions import BillingError, InspectionNotFoundError, ReferenceNotFoundError
from services.workflow import can_transition_inspection, transition_inspection

logger = logging.getLogger(__name__)

# Fields a user may correct after import
EDITABLE_FIELDS = (
    'reported_area', 'measured_area', 'billable_area', 'furnishing', 'service_type_id', 'notes'
)

# Editable fields that can never be cleared
REQUIRED_FIELDS = ('billable_area', 'furnishing', 'service_type_id')


class InspectionService:
    """Query and update inspections."""

    def __init__(self, db_session: Session):
        self.session = db_session

    def get_inspection(self, inspection_id: int) -> Inspection:
        """
        Fetch an inspection with its related parties.

        Raises:
            InspectionNotFoundError: If it does not exist
        """
        inspection = (
            self.session.query(Inspection)
            .options(
                joinedload(Inspection.agency),
                joinedload(Inspection.inspector),
                joinedload(Inspection.service_type)
            )
            .filter(Inspection.id == inspection_id)
            .first()
        )
        if inspection is None:
            raise InspectionNotFoundError(inspection_id)
        return inspection

    def list_inspections(
        self,
        closure_id: Optional[int] = None,
        agency_id: Optional[int] = None,
        inspector_id: Optional[int] = None,
        service_type_id: Optional[int] = None,
        status: Optional[str] = None,
        city: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Inspection], int]:
        """
        List inspections matching the given filters, newest first.

        Args:
            city: Case-insensitive substring of the city
            search: Substring of address, external id or contract number

        Returns:
            (inspections on the page, total matching)
        """
        query = self.session.query(Inspection)

        if closure_id is not None:
            query = query.filter(Inspection.closure_id == closure_id)
        if agency_id is not None:
            query = query.filter(Inspection.agency_id == agency_id)
        if inspector_id is not None:
            query = query.filter(Inspection.inspector_id == inspector_id)
        if service_type_id is not None:
            query = query.filter(Inspection.service_type_id == service_type_id)
        if status:
            query = query.filter(Inspection.status == status)
        if city:
            query = query.filter(Inspection.city.ilike(f"%{city}%"))
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Inspection.address.ilike(pattern),
                Inspection.external_id.ilike(pattern),
                Inspection.contract_number.ilike(pattern)
            ))

        total = query.count()
        inspections = (
            query.options(
                joinedload(Inspection.agency),
                joinedload(Inspection.inspector),
                joinedload(Inspection.service_type)
            )
            .order_by(Inspection.created_at.desc(), Inspection.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return inspections, total

    def update_inspection(self, inspection_id: int, changes: Dict[str, Any]) -> Inspection:
        """
        Apply manual corrections to an inspection.

        Amounts are not recalculated here; call the recalculation afterwards.
        A 'status' key moves the record through the workflow.

        Raises:
            InspectionNotFoundError: If the inspection does not exist
            ReferenceNotFoundError: If service_type_id is unknown
            BillingError: If a required field is set to None
            InvalidTransitionError: If the status change is not allowed
        """
        inspection = self.get_inspection(inspection_id)

        for field_name in REQUIRED_FIELDS:
            if field_name in changes and changes[field_name] is None:
                raise BillingError(f"Inspection field '{field_name}' cannot be empty", status_code=422)

        for field_name in EDITABLE_FIELDS:
            if field_name not in changes:
                continue
            value = changes[field_name]
            if field_name == 'service_type_id':
                if self.session.get(ServiceType, value) is None:
                    raise ReferenceNotFoundError('Service type', value)
            if field_name == 'furnishing' and value is not None:
                value = FurnishingState(value).value
            setattr(inspection, field_name, value)

        if changes.get('status'):
            transition_inspection(inspection, changes['status'])

        self.session.commit()
        self.session.refresh(inspection)
        logger.info(f"Updated inspection {inspection_id}: {sorted(changes)}")
        return inspection

    def approve_inspection(self, inspection_id: int) -> Inspection:
        """
        Approve one inspection.

        Raises:
            InspectionNotFoundError: If the inspection does not exist
            InvalidTransitionError: If it cannot be approved from its status
        """
        inspection = self.get_inspection(inspection_id)
        transition_inspection(inspection, InspectionStatus.APPROVED)
        self.session.commit()
        self.session.refresh(inspection)
        logger.info(f"Approved inspection {inspection_id}")
        return inspection

    def approve_batch(self, inspection_ids: List[int]) -> int:
        """
        Approve every listed inspection whose status allows it.

        Unknown ids and records that cannot be approved are skipped.

        Returns:
            Number of inspections approved
        """
        if not inspection_ids:
            return 0

        inspections = (
            self.session.query(Inspection)
            .filter(Inspection.id.in_(set(inspection_ids)))
            .all()
        )
        approved = 0
        for inspection in inspections:
            if can_transition_inspection(inspection.status, InspectionStatus.APPROVED):
                inspection.status = InspectionStatus.APPROVED.value
                approved += 1
            else:
                logger.warning(f"Inspection {inspection.id} skipped: cannot approve from '{inspection.status}'")

        self.session.commit()
        logger.info(f"Approved {approved}/{len(inspection_ids)} inspections")
        return approved
