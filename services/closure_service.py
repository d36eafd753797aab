"""
Closure management: create, list, inspect, delete and move monthly closures.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.models.schema import Agency, Closure, ClosureStatus, Inspection, Inspector
from services.exceptions import (
    BillingError, ClosureNotFoundError, ConflictError, InvalidTransitionError
)
from services.workflow import transition_closure

logger = logging.getLogger(__name__)

MIN_REFERENCE_YEAR = 2020
MAX_REFERENCE_YEAR = 2100


class ClosureService:
    """CRUD and workflow operations on closures."""

    def __init__(self, db_session: Session):
        self.session = db_session

    def get_closure(self, closure_id: int) -> Closure:
        """
        Fetch a closure by id.

        Raises:
            ClosureNotFoundError: If it does not exist
        """
        closure = self.session.get(Closure, closure_id)
        if closure is None:
            raise ClosureNotFoundError(closure_id)
        return closure

    def create_closure(self, reference_month: int, reference_year: int) -> Closure:
        """
        Open a draft closure for a period.

        Raises:
            BillingError: If month or year is out of range (422)
            ConflictError: If the period already has a closure
        """
        if not 1 <= reference_month <= 12:
            raise BillingError(f"Invalid reference month: {reference_month}", status_code=422)
        if not MIN_REFERENCE_YEAR <= reference_year <= MAX_REFERENCE_YEAR:
            raise BillingError(f"Invalid reference year: {reference_year}", status_code=422)

        existing = (
            self.session.query(Closure)
            .filter_by(reference_month=reference_month, reference_year=reference_year)
            .first()
        )
        if existing:
            raise ConflictError(
                f"A closure already exists for {reference_month:02d}/{reference_year} (id={existing.id})"
            )

        closure = Closure(
            reference_month=reference_month,
            reference_year=reference_year,
            status=ClosureStatus.DRAFT.value
        )
        self.session.add(closure)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(f"A closure already exists for {reference_month:02d}/{reference_year}")

        self.session.refresh(closure)
        logger.info(f"Created closure {closure.id} for {closure.reference_label}")
        return closure

    def list_closures(
        self,
        year: Optional[int] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Closure], int]:
        """
        List closures, newest period first.

        Returns:
            (closures on the page, total matching)
        """
        query = self.session.query(Closure)
        if year is not None:
            query = query.filter(Closure.reference_year == year)
        if status:
            query = query.filter(Closure.status == status)

        total = query.count()
        closures = (
            query.order_by(Closure.reference_year.desc(), Closure.reference_month.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return closures, total

    def delete_closure(self, closure_id: int):
        """
        Delete a draft closure.

        Raises:
            ClosureNotFoundError: If it does not exist
            InvalidTransitionError: If it is no longer a draft
        """
        closure = self.get_closure(closure_id)
        if closure.status != ClosureStatus.DRAFT.value:
            raise InvalidTransitionError('Closure', closure.status, 'deleted')

        self.session.delete(closure)
        self.session.commit()
        logger.info(f"Deleted closure {closure_id}")

    def change_status(self, closure_id: int, target: str) -> Closure:
        """
        Move a closure through the workflow.

        Raises:
            ClosureNotFoundError: If it does not exist
            InvalidTransitionError: If the move is not allowed
        """
        closure = self.get_closure(closure_id)
        transition_closure(closure, target)
        self.session.commit()
        self.session.refresh(closure)
        return closure

    def get_summary(self, closure_id: int) -> Dict[str, Any]:
        """
        Aggregate a closure by agency, inspector and status.

        Returns:
            {
                'closure': Closure,
                'by_agency': [{'agency_id', 'name', 'count', 'receivable'}],
                'by_inspector': [{'inspector_id', 'name', 'count', 'payable'}],
                'by_status': [{'status', 'count'}]
            }
        """
        closure = self.get_closure(closure_id)

        by_agency = (
            self.session.query(
                Agency.id, Agency.name,
                func.count(Inspection.id),
                func.coalesce(func.sum(Inspection.receivable_amount), 0)
            )
            .join(Inspection, Inspection.agency_id == Agency.id)
            .filter(Inspection.closure_id == closure_id)
            .group_by(Agency.id, Agency.name)
            .order_by(Agency.name)
            .all()
        )
        by_inspector = (
            self.session.query(
                Inspector.id, Inspector.name,
                func.count(Inspection.id),
                func.coalesce(func.sum(Inspection.payable_amount), 0)
            )
            .join(Inspection, Inspection.inspector_id == Inspector.id)
            .filter(Inspection.closure_id == closure_id)
            .group_by(Inspector.id, Inspector.name)
            .order_by(Inspector.name)
            .all()
        )
        by_status = (
            self.session.query(Inspection.status, func.count(Inspection.id))
            .filter(Inspection.closure_id == closure_id)
            .group_by(Inspection.status)
            .order_by(Inspection.status)
            .all()
        )

        return {
            'closure': closure,
            'by_agency': [
                {'agency_id': row[0], 'name': row[1], 'count': row[2], 'receivable': row[3]}
                for row in by_agency
            ],
            'by_inspector': [
                {'inspector_id': row[0], 'name': row[1], 'count': row[2], 'payable': row[3]}
                for row in by_inspector
            ],
            'by_status': [{'status': row[0], 'count': row[1]} for row in by_status],
        }
