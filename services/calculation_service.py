"""
Closure Calculation Service - Framework-agnostic business logic.

Prices every inspection of a closure against the agency price tables and the
inspector payout tables, then updates the closure totals. Progress is reported
through an optional callback so the same code runs from the API, Celery and
the CLI.
"""

import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.models.schema import (
    AreaBand, Closure, ClosureStatus, Inspection, PayoutTable, PriceTable
)
from services.exceptions import (
    ClosureNotFoundError, InspectionNotFoundError, InvalidTransitionError
)
from services.pricing import (
    RateTableCache, ZERO, band_multiplier, compute_amount, find_area_band, round2
)
from services.workflow import CALCULABLE_CLOSURE_STATUSES, mark_calculated, transition_closure

logger = logging.getLogger(__name__)


class CalculationService:
    """
    Computes receivable and payable amounts for inspections.

    Area bands and rate rows are loaded once per batch and kept in memory.
    """

    def __init__(
        self,
        db_session: Session,
        progress_callback: Optional[Callable[[str, float, str], None]] = None
    ):
        """
        Initialize calculation service.

        Args:
            db_session: SQLAlchemy database session
            progress_callback: Optional callback for progress updates
                              Signature: callback(stage: str, percent: float, message: str)
        """
        self.session = db_session
        self.progress_callback = progress_callback or (lambda *args: None)

    def _emit_progress(self, stage: str, percent: float, message: str):
        """Emit progress update via callback."""
        self.progress_callback(stage, percent, message)
        logger.info(f"Progress: {stage} ({percent:.1f}%) - {message}")

    def _lock_closure(self, closure_id: int) -> Closure:
        """Load the closure row with FOR UPDATE (ignored on SQLite)."""
        closure = (
            self.session.query(Closure)
            .filter(Closure.id == closure_id)
            .with_for_update()
            .first()
        )
        if closure is None:
            raise ClosureNotFoundError(closure_id)
        return closure

    def load_bands(self) -> List[AreaBand]:
        """Area bands in evaluation order."""
        return self.session.query(AreaBand).order_by(AreaBand.position, AreaBand.id).all()

    def load_rate_caches(self, inspections: List[Inspection]) -> Tuple[RateTableCache, RateTableCache]:
        """
        Load the active price and payout rows relevant to a set of inspections.

        Returns:
            (price_cache, payout_cache)
        """
        agency_ids = {i.agency_id for i in inspections}
        inspector_ids = {i.inspector_id for i in inspections}
        service_type_ids = {i.service_type_id for i in inspections}

        price_rows = []
        payout_rows = []
        if service_type_ids:
            price_rows = (
                self.session.query(PriceTable)
                .filter(
                    PriceTable.agency_id.in_(agency_ids),
                    PriceTable.service_type_id.in_(service_type_ids),
                    PriceTable.active.is_(True)
                )
                .order_by(PriceTable.id)
                .all()
            )
            payout_rows = (
                self.session.query(PayoutTable)
                .filter(
                    PayoutTable.inspector_id.in_(inspector_ids),
                    PayoutTable.service_type_id.in_(service_type_ids),
                    PayoutTable.active.is_(True)
                )
                .order_by(PayoutTable.id)
                .all()
            )

        logger.debug(f"Loaded {len(price_rows)} price rows and {len(payout_rows)} payout rows")
        return (
            RateTableCache(price_rows, party_attr='agency_id'),
            RateTableCache(payout_rows, party_attr='inspector_id')
        )

    def price_inspection(
        self,
        inspection: Inspection,
        bands: List[AreaBand],
        price_cache: RateTableCache,
        payout_cache: RateTableCache
    ) -> Tuple[Decimal, Decimal]:
        """
        Compute (receivable, payable) for one inspection without writing it.

        An area outside every band (or missing) prices with multiplier 1.
        """
        band = find_area_band(inspection.billable_area, bands)
        band_id = band.id if band is not None else None
        multiplier = band_multiplier(band)

        price = price_cache.lookup(inspection.agency_id, inspection.service_type_id, band_id)
        payout = payout_cache.lookup(inspection.inspector_id, inspection.service_type_id, band_id)

        if price is None:
            logger.debug(f"No price row for inspection {inspection.id}, receivable is 0")
        if payout is None:
            logger.debug(f"No payout row for inspection {inspection.id}, payable is 0")

        receivable = compute_amount(price, multiplier, inspection.furnishing)
        payable = compute_amount(payout, multiplier, inspection.furnishing)
        return receivable, payable

    def calculate_closure(self, closure_id: int) -> Dict[str, Any]:
        """
        Price every inspection of a closure and update its totals.

        Args:
            closure_id: Closure to calculate

        Returns:
            {
                'total_records': int,
                'total_receivable': Decimal,
                'total_payable': Decimal,
                'calculated_count': int,
                'errors': [{'record_id': int, 'message': str}]
            }

        Raises:
            ClosureNotFoundError: If the closure does not exist
            InvalidTransitionError: If the closure is not imported or calculated
        """
        logger.info(f"Starting calculation of closure {closure_id}")
        closure = self._lock_closure(closure_id)

        if ClosureStatus(closure.status) not in CALCULABLE_CLOSURE_STATUSES:
            raise InvalidTransitionError('Closure', closure.status, ClosureStatus.CALCULATED.value)

        result = {
            'total_records': 0,
            'total_receivable': ZERO,
            'total_payable': ZERO,
            'calculated_count': 0,
            'errors': []
        }

        try:
            # Step 1: Load records, bands and rates (0-10%)
            self._emit_progress('loading', 5, 'Loading inspections and rate tables...')
            inspections = (
                self.session.query(Inspection)
                .filter(Inspection.closure_id == closure_id)
                .order_by(Inspection.id)
                .all()
            )
            result['total_records'] = len(inspections)
            bands = self.load_bands()
            price_cache, payout_cache = self.load_rate_caches(inspections)

            # Step 2: Price each record (10-90%)
            total = len(inspections)
            for index, inspection in enumerate(inspections):
                if index % 100 == 0:
                    self._emit_progress(
                        'pricing', 10 + 80 * (index / max(total, 1)),
                        f"Pricing inspections {index}/{total}"
                    )
                try:
                    receivable, payable = self.price_inspection(
                        inspection, bands, price_cache, payout_cache
                    )
                except Exception as e:
                    logger.warning(f"Could not price inspection {inspection.id}: {e}")
                    # Zeroed whatever the status, approved and invoiced included,
                    # so closure totals stay equal to the sum of stored amounts
                    inspection.receivable_amount = ZERO
                    inspection.payable_amount = ZERO
                    result['errors'].append({'record_id': inspection.id, 'message': str(e)})
                    continue

                inspection.receivable_amount = receivable
                inspection.payable_amount = payable
                mark_calculated(inspection)

                result['total_receivable'] += receivable
                result['total_payable'] += payable
                result['calculated_count'] += 1

            # Step 3: Update closure (90-100%)
            self._emit_progress('finalizing', 90, 'Updating closure totals...')
            result['total_receivable'] = round2(result['total_receivable'])
            result['total_payable'] = round2(result['total_payable'])

            closure.total_inspections = result['total_records']
            closure.total_receivable = result['total_receivable']
            closure.total_payable = result['total_payable']
            transition_closure(closure, ClosureStatus.CALCULATED)

            self.session.commit()

        except Exception as e:
            logger.error(f"Calculation of closure {closure_id} failed: {e}", exc_info=True)
            self.session.rollback()
            raise

        self._emit_progress('complete', 100, 'Calculation complete')
        logger.info(
            f"Closure {closure_id} calculated: {result['calculated_count']}/{result['total_records']} "
            f"records, receivable={result['total_receivable']}, payable={result['total_payable']}, "
            f"{len(result['errors'])} errors"
        )
        return result

    def refresh_closure_totals(self, closure: Closure) -> Closure:
        """
        Recompute closure totals as an aggregate over all its inspections.

        Does not commit.
        """
        count, receivable, payable = (
            self.session.query(
                func.count(Inspection.id),
                func.coalesce(func.sum(Inspection.receivable_amount), 0),
                func.coalesce(func.sum(Inspection.payable_amount), 0)
            )
            .filter(Inspection.closure_id == closure.id)
            .one()
        )
        closure.total_inspections = count
        closure.total_receivable = round2(receivable)
        closure.total_payable = round2(payable)
        return closure

    def recalculate_inspection(self, inspection_id: int) -> Inspection:
        """
        Reprice a single inspection and refresh its closure totals.

        Args:
            inspection_id: Inspection to recalculate

        Returns:
            The updated Inspection

        Raises:
            InspectionNotFoundError: If the inspection does not exist
        """
        inspection = self.session.get(Inspection, inspection_id)
        if inspection is None:
            raise InspectionNotFoundError(inspection_id)

        try:
            closure = self._lock_closure(inspection.closure_id)
            bands = self.load_bands()
            price_cache, payout_cache = self.load_rate_caches([inspection])

            receivable, payable = self.price_inspection(inspection, bands, price_cache, payout_cache)
            inspection.receivable_amount = receivable
            inspection.payable_amount = payable
            mark_calculated(inspection)

            self.session.flush()
            self.refresh_closure_totals(closure)
            self.session.commit()

        except Exception as e:
            logger.error(f"Recalculation of inspection {inspection_id} failed: {e}", exc_info=True)
            self.session.rollback()
            raise

        logger.info(
            f"Inspection {inspection_id} recalculated: receivable={receivable}, payable={payable}"
        )
        return inspection
