"""
Tests for pricing primitives: rounding, band matching, surcharges and
rate lookup with bandless fallback.
"""

from decimal import Decimal
from types import SimpleNamespace

from services.pricing import (
    RateTableCache, band_multiplier, compute_amount, find_area_band, furnishing_surcharge,
    round2, to_decimal
)


def band(band_id, low, high, multiplier='1'):
    return SimpleNamespace(id=band_id, min_area=Decimal(low), max_area=Decimal(high),
                           multiplier=Decimal(multiplier))


def rate(base, furnished=None, semi=None, agency_id=1, service_type_id=1, area_band_id=None):
    return SimpleNamespace(
        agency_id=agency_id,
        inspector_id=agency_id,
        service_type_id=service_type_id,
        area_band_id=area_band_id,
        base_amount=Decimal(base),
        furnished_surcharge=Decimal(furnished) if furnished is not None else None,
        semi_furnished_surcharge=Decimal(semi) if semi is not None else None,
    )


BANDS = [band(1, '0', '100', '1.00'), band(2, '100.01', '200', '1.50'), band(3, '200.01', '99999', '2.00')]


class TestRounding:
    """Half-up rounding to cents."""

    def test_half_up(self):
        """Test that .005 rounds away from zero."""
        assert round2(Decimal('10.005')) == Decimal('10.01')
        assert round2(Decimal('10.004')) == Decimal('10.00')

    def test_float_input_uses_decimal_text(self):
        """Test that floats are converted through their text form."""
        assert to_decimal(0.1) == Decimal('0.1')
        assert round2(2.675) == Decimal('2.68')

    def test_none_is_zero(self):
        """Test that None converts to zero."""
        assert to_decimal(None) == Decimal('0')


class TestAreaBands:
    """Band matching on closed intervals."""

    def test_bounds_are_inclusive(self):
        """Test that both interval ends match."""
        assert find_area_band(Decimal('0'), BANDS).id == 1
        assert find_area_band(Decimal('100'), BANDS).id == 1
        assert find_area_band(Decimal('100.01'), BANDS).id == 2
        assert find_area_band(Decimal('200'), BANDS).id == 2

    def test_gap_and_none_do_not_match(self):
        """Test that areas between bands and null areas have no band."""
        assert find_area_band(Decimal('100.005'), BANDS) is None
        assert find_area_band(None, BANDS) is None

    def test_first_match_wins(self):
        """Test that overlapping bands resolve in list order."""
        overlapping = [band(7, '0', '150', '1.10'), band(8, '100', '300', '1.90')]
        assert find_area_band(Decimal('120'), overlapping).id == 7

    def test_multiplier_defaults_to_one(self):
        """Test the multiplier when no band applies."""
        assert band_multiplier(None) == Decimal('1')
        assert band_multiplier(BANDS[2]) == Decimal('2.00')


class TestComputeAmount:
    """Amount = base * multiplier + surcharge."""

    def test_unfurnished(self):
        """Test that unfurnished records carry no surcharge."""
        assert compute_amount(rate('150.00', '30.00', '15.00'), Decimal('1.5'), 'unfurnished') == Decimal('225.00')

    def test_furnished_and_semi(self):
        """Test the two surcharge columns."""
        row = rate('150.00', '30.00', '15.00')
        assert compute_amount(row, Decimal('1'), 'furnished') == Decimal('180.00')
        assert compute_amount(row, Decimal('1'), 'semi_furnished') == Decimal('165.00')

    def test_null_surcharge_counts_as_zero(self):
        """Test that a missing surcharge does not break pricing."""
        row = rate('99.90')
        assert furnishing_surcharge(row, 'furnished') == Decimal('0')
        assert compute_amount(row, Decimal('1'), 'furnished') == Decimal('99.90')

    def test_no_rate_is_zero(self):
        """Test that a missing rate row yields 0.00."""
        assert compute_amount(None, Decimal('2'), 'furnished') == Decimal('0.00')

    def test_result_is_rounded(self):
        """Test rounding of fractional products."""
        assert compute_amount(rate('33.33'), Decimal('1.50'), 'unfurnished') == Decimal('50.00')


class TestRateTableCache:
    """Lookup by (party, service type, band) with bandless fallback."""

    def test_exact_band_row_preferred(self):
        """Test that a band-specific row beats the default row."""
        default = rate('100', area_band_id=None)
        specific = rate('140', area_band_id=2)
        cache = RateTableCache([default, specific])

        assert cache.lookup(1, 1, 2) is specific
        assert cache.lookup(1, 1, 3) is default
        assert cache.lookup(1, 1, None) is default

    def test_missing_party_or_service(self):
        """Test that unknown keys return None."""
        cache = RateTableCache([rate('100')])
        assert cache.lookup(2, 1, None) is None
        assert cache.lookup(1, 9, 1) is None

    def test_first_duplicate_kept(self):
        """Test that duplicate keys keep the first row."""
        first = rate('100')
        cache = RateTableCache([first, rate('200')])
        assert len(cache) == 1
        assert cache.lookup(1, 1, None) is first

    def test_party_attribute(self):
        """Test payout rows keyed by inspector."""
        row = SimpleNamespace(inspector_id=5, service_type_id=1, area_band_id=None)
        cache = RateTableCache([row], party_attr='inspector_id')
        assert cache.lookup(5, 1, None) is row
