"""
Pricing primitives shared by batch calculation and single-record recalculation.

Amounts are computed with Decimal and rounded half-up to cents:

    amount = round2(base_amount * band_multiplier + furnishing_surcharge)

Rate rows are looked up by (party, service type, area band) with a fallback
to the bandless default row for the same party and service type.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, NamedTuple, Optional, Sequence, Union

from backend.models.schema import AreaBand, FurnishingState

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')
ZERO = Decimal('0.00')
DEFAULT_MULTIPLIER = Decimal('1')

Number = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Number]) -> Decimal:
    """Convert a number-like value to Decimal, treating None as zero."""
    if value is None:
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() avoids binary float artifacts (0.1 -> 0.1000000000000000055...)
        return Decimal(str(value))
    return Decimal(value)


def round2(value: Number) -> Decimal:
    """Round half-up to two decimal places."""
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


class RateKey(NamedTuple):
    """Lookup key for a price or payout row."""
    party_id: int
    service_type_id: int
    area_band_id: Optional[int]


def find_area_band(area: Optional[Number], bands: Sequence[AreaBand]) -> Optional[AreaBand]:
    """
    Return the first band whose closed interval contains the area.

    Args:
        area: Billable area; None never matches
        bands: Bands already ordered by position

    Returns:
        Matching AreaBand or None
    """
    if area is None:
        return None
    area = to_decimal(area)
    for band in bands:
        if to_decimal(band.min_area) <= area <= to_decimal(band.max_area):
            return band
    return None


def band_multiplier(band: Optional[AreaBand]) -> Decimal:
    """Multiplier for a band, 1 when there is no band."""
    if band is None or band.multiplier is None:
        return DEFAULT_MULTIPLIER
    return to_decimal(band.multiplier)


def furnishing_surcharge(rate, furnishing: Optional[str]) -> Decimal:
    """
    Surcharge applicable to the furnishing state.

    A null surcharge column counts as zero.
    """
    if furnishing == FurnishingState.FURNISHED.value:
        return to_decimal(rate.furnished_surcharge)
    if furnishing == FurnishingState.SEMI_FURNISHED.value:
        return to_decimal(rate.semi_furnished_surcharge)
    return Decimal('0')


def compute_amount(rate, multiplier: Number, furnishing: Optional[str]) -> Decimal:
    """
    Compute a receivable or payable amount from a rate row.

    Args:
        rate: PriceTable or PayoutTable row, or None when no rate applies
        multiplier: Area band multiplier
        furnishing: FurnishingState value of the record

    Returns:
        Amount rounded to cents (0.00 when rate is None)
    """
    if rate is None:
        return ZERO
    amount = to_decimal(rate.base_amount) * to_decimal(multiplier)
    amount += furnishing_surcharge(rate, furnishing)
    return round2(amount)


class RateTableCache:
    """
    In-memory rate rows for one calculation batch.

    Rows are keyed by RateKey; rows without an area band are stored under
    area_band_id=None and act as the per-service default.
    """

    def __init__(self, rows: Iterable = (), party_attr: str = 'agency_id'):
        """
        Args:
            rows: PriceTable or PayoutTable rows (active rows only)
            party_attr: Attribute naming the party column on the rows
        """
        self.party_attr = party_attr
        self._rows: Dict[RateKey, object] = {}
        for row in rows:
            self.add(row)

    def add(self, row):
        key = RateKey(getattr(row, self.party_attr), row.service_type_id, row.area_band_id)
        if key in self._rows:
            logger.debug(f"Duplicate rate row for {key}, keeping the first")
            return
        self._rows[key] = row

    def lookup(self, party_id: int, service_type_id: int, area_band_id: Optional[int]):
        """
        Resolve the rate row for a record.

        Tries the exact band row first, then the bandless default.

        Returns:
            Rate row or None
        """
        if area_band_id is not None:
            row = self._rows.get(RateKey(party_id, service_type_id, area_band_id))
            if row is not None:
                return row
        return self._rows.get(RateKey(party_id, service_type_id, None))

    def __len__(self):
        return len(self._rows)
