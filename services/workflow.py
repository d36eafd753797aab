"""
Status workflow for closures and inspections.

Transitions are table driven: each status maps to the set of statuses it may
move to. Moving a closure also stamps the milestone timestamp for the target
status.
"""

import logging
from datetime import datetime
from typing import Dict, FrozenSet, Union

from backend.models.schema import Closure, ClosureStatus, Inspection, InspectionStatus
from services.exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)


CLOSURE_TRANSITIONS: Dict[ClosureStatus, FrozenSet[ClosureStatus]] = {
    ClosureStatus.DRAFT: frozenset({ClosureStatus.IMPORTED}),
    ClosureStatus.IMPORTED: frozenset({ClosureStatus.IMPORTED, ClosureStatus.CALCULATED}),
    ClosureStatus.CALCULATED: frozenset({ClosureStatus.CALCULATED, ClosureStatus.AWAITING_INSPECTORS}),
    ClosureStatus.AWAITING_INSPECTORS: frozenset({ClosureStatus.IN_REVIEW}),
    ClosureStatus.IN_REVIEW: frozenset({ClosureStatus.CALCULATED, ClosureStatus.AWAITING_AGENCIES}),
    ClosureStatus.AWAITING_AGENCIES: frozenset({ClosureStatus.INVOICED}),
    ClosureStatus.INVOICED: frozenset({ClosureStatus.FINALIZED}),
    ClosureStatus.FINALIZED: frozenset(),
}

INSPECTION_TRANSITIONS: Dict[InspectionStatus, FrozenSet[InspectionStatus]] = {
    InspectionStatus.IMPORTED: frozenset({InspectionStatus.CALCULATED}),
    InspectionStatus.CALCULATED: frozenset({
        InspectionStatus.CALCULATED, InspectionStatus.DISPUTED, InspectionStatus.APPROVED
    }),
    InspectionStatus.DISPUTED: frozenset({InspectionStatus.REVISED}),
    InspectionStatus.REVISED: frozenset({InspectionStatus.CALCULATED, InspectionStatus.APPROVED}),
    InspectionStatus.APPROVED: frozenset({InspectionStatus.INVOICED}),
    InspectionStatus.INVOICED: frozenset(),
}

# Milestone column stamped when a closure enters the status
CLOSURE_TIMESTAMPS: Dict[ClosureStatus, str] = {
    ClosureStatus.IMPORTED: 'imported_at',
    ClosureStatus.AWAITING_INSPECTORS: 'inspectors_sent_at',
    ClosureStatus.AWAITING_AGENCIES: 'agencies_sent_at',
    ClosureStatus.FINALIZED: 'finalized_at',
}

IMPORTABLE_CLOSURE_STATUSES = frozenset({ClosureStatus.DRAFT, ClosureStatus.IMPORTED})
CALCULABLE_CLOSURE_STATUSES = frozenset({ClosureStatus.IMPORTED, ClosureStatus.CALCULATED})


def can_transition_closure(current: Union[str, ClosureStatus], target: Union[str, ClosureStatus]) -> bool:
    """Return True when the closure table allows current -> target."""
    return ClosureStatus(target) in CLOSURE_TRANSITIONS[ClosureStatus(current)]


def can_transition_inspection(current: Union[str, InspectionStatus],
                              target: Union[str, InspectionStatus]) -> bool:
    """Return True when the inspection table allows current -> target."""
    return InspectionStatus(target) in INSPECTION_TRANSITIONS[InspectionStatus(current)]


def transition_closure(closure: Closure, target: Union[str, ClosureStatus],
                       now: datetime = None) -> Closure:
    """
    Move a closure to a new status, stamping its milestone timestamp.

    Args:
        closure: Closure to update (not flushed)
        target: Requested status
        now: Timestamp to record (defaults to utcnow)

    Returns:
        The same closure instance

    Raises:
        InvalidTransitionError: If the table does not allow the move
    """
    target = ClosureStatus(target)
    if not can_transition_closure(closure.status, target):
        raise InvalidTransitionError('Closure', closure.status, target.value)

    previous = closure.status
    closure.status = target.value
    timestamp_field = CLOSURE_TIMESTAMPS.get(target)
    if timestamp_field:
        setattr(closure, timestamp_field, now or datetime.utcnow())

    if previous != target.value:
        logger.info(f"Closure {closure.id} moved {previous} -> {target.value}")
    return closure


def transition_inspection(inspection: Inspection, target: Union[str, InspectionStatus]) -> Inspection:
    """
    Move an inspection to a new status.

    Raises:
        InvalidTransitionError: If the table does not allow the move
    """
    target = InspectionStatus(target)
    if not can_transition_inspection(inspection.status, target):
        raise InvalidTransitionError('Inspection', inspection.status, target.value)
    inspection.status = target.value
    return inspection


def mark_calculated(inspection: Inspection) -> bool:
    """
    Mark an inspection as calculated when its status allows it.

    Approved and invoiced records keep their status.

    Returns:
        True if the status was changed or already calculated
    """
    if can_transition_inspection(inspection.status, InspectionStatus.CALCULATED):
        inspection.status = InspectionStatus.CALCULATED.value
        return True
    return False
