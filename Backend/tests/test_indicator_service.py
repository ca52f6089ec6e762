"""Tests for the financial indicator engine."""

import math

import pytest

from models.credit_schemas import FinancialFigures
from services.indicator_service import (
    AltmanZone, altman_display_zone, altman_z_score, altman_zone, calculate_indicators,
)


@pytest.fixture
def figures() -> FinancialFigures:
    return FinancialFigures(
        current_assets=400, total_assets=1000, inventories=100, current_liabilities=200,
        total_liabilities=500, non_current_liabilities=300, equity=500, revenue=2000,
        net_income=100, ebit=150,
    )


class TestCalculateIndicators:

    def test_ratios(self, figures):
        ind = calculate_indicators(figures)

        assert ind.current_ratio == pytest.approx(2.0)
        assert ind.acid_test == pytest.approx(1.5)
        assert ind.working_capital == pytest.approx(200)
        assert ind.total_debt_ratio == pytest.approx(50.0)
        assert ind.long_term_debt_ratio == pytest.approx(30.0)
        assert ind.short_term_debt_ratio == pytest.approx(40.0)
        assert ind.solvency == pytest.approx(100.0)
        assert ind.net_margin == pytest.approx(5.0)
        assert ind.operating_margin == pytest.approx(7.5)
        assert ind.roa == pytest.approx(10.0)
        assert ind.roe == pytest.approx(20.0)
        assert ind.ebit == 150
        assert ind.equity_impairment is False

    def test_ebitda_defaults_to_ebit_plus_ten_percent(self, figures):
        assert calculate_indicators(figures).ebitda == pytest.approx(165)

    def test_reported_ebitda_passes_through(self, figures):
        figures.ebitda = 180
        assert calculate_indicators(figures).ebitda == 180

    def test_altman(self, figures):
        # 1.2*0.2 + 1.4*0.1 + 3.3*0.15 + 0.6*1.0 + 1.0*2.0
        assert calculate_indicators(figures).z_altman == pytest.approx(3.475)

    def test_operating_cycle_is_passed_through(self, figures):
        ind = calculate_indicators(figures, days_receivables=40, days_inventory=35, operating_cycle=75)
        assert (ind.days_receivables, ind.days_inventory, ind.operating_cycle) == (40, 35, 75)

    def test_negative_income_flags_impairment(self, figures):
        figures.net_income = -10
        assert calculate_indicators(figures).equity_impairment is True

    def test_zero_denominator_does_not_raise(self, figures):
        figures.current_liabilities = 0
        ind = calculate_indicators(figures)
        assert ind.current_ratio == math.inf
        assert ind.short_term_debt_ratio == 0

    def test_missing_figures_give_nan(self):
        ind = calculate_indicators(FinancialFigures(revenue=1000))
        assert math.isnan(ind.current_ratio)
        assert math.isnan(ind.z_altman)


class TestAltmanZones:

    def test_score_helper(self):
        assert altman_z_score(200, 1000, 100, 150, 500, 500, 2000) == pytest.approx(3.475)

    @pytest.mark.parametrize("z, zone", [
        (3.5, AltmanZone.SAFE),
        (2.99, AltmanZone.GREY),
        (2.0, AltmanZone.GREY),
        (1.81, AltmanZone.DISTRESS),
        (-4.0, AltmanZone.DISTRESS),
        (math.nan, AltmanZone.DISTRESS),
    ])
    def test_bands(self, z, zone):
        assert altman_zone(z) == zone

    @pytest.mark.parametrize("z, zone", [
        (2.7, AltmanZone.SAFE),
        (2.6, AltmanZone.GREY),
        (1.1, AltmanZone.DISTRESS),
    ])
    def test_display_bands(self, z, zone):
        assert altman_display_zone(z) == zone
