# Backend/services/indicator_service.py
"""
Financial indicator engine.

Computes liquidity, leverage, profitability and Altman Z from raw
statement figures. It does not guard against bad inputs: a zero or
missing denominator yields inf / nan, never an exception. Callers are
expected to validate the figures first.
"""

import math
from enum import Enum
from typing import Optional

from models.credit_schemas import FinancialFigures, FinancialIndicators


class AltmanZone(str, Enum):
    SAFE = "SAFE"
    GREY = "GREY"
    DISTRESS = "DISTRESS"


# Altman Z bands
Z_SAFE_THRESHOLD = 2.99
Z_DISTRESS_THRESHOLD = 1.81

# Approximate bands used on the director's summary card
Z_DISPLAY_SAFE_THRESHOLD = 2.6
Z_DISPLAY_DISTRESS_THRESHOLD = 1.1


def _value(x: Optional[float]) -> float:
    return math.nan if x is None else float(x)


def _div(numerator: float, denominator: float) -> float:
    """IEEE-style division: x/0 is +/-inf, 0/0 and anything with nan is nan"""
    if math.isnan(numerator) or math.isnan(denominator):
        return math.nan
    if denominator == 0:
        if numerator == 0:
            return math.nan
        return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)
    return numerator / denominator


def calculate_indicators(
    figures: FinancialFigures,
    days_receivables: Optional[float] = None,
    days_inventory: Optional[float] = None,
    operating_cycle: Optional[float] = None,
) -> FinancialIndicators:
    """
    Compute the indicator struct from raw figures.
    Operating-cycle metrics are not derived here; they are passed through
    as reported by the document AI.
    """
    current_assets = _value(figures.current_assets)
    total_assets = _value(figures.total_assets)
    inventories = _value(figures.inventories)
    current_liabilities = _value(figures.current_liabilities)
    total_liabilities = _value(figures.total_liabilities)
    non_current_liabilities = _value(figures.non_current_liabilities)
    equity = _value(figures.equity)
    revenue = _value(figures.revenue)
    net_income = _value(figures.net_income)
    ebit = _value(figures.ebit)

    current_ratio = _div(current_assets, current_liabilities)
    working_capital = current_assets - current_liabilities

    # Zero or missing EBITDA falls back to EBIT + 10%
    ebitda = figures.ebitda if figures.ebitda else ebit * 1.1

    return FinancialIndicators(
        current_ratio=current_ratio,
        acid_test=_div(current_assets - inventories, current_liabilities),
        working_capital=working_capital,
        total_debt_ratio=_div(total_liabilities, total_assets) * 100,
        long_term_debt_ratio=_div(non_current_liabilities, total_assets) * 100,
        short_term_debt_ratio=_div(current_liabilities, total_liabilities) * 100,
        solvency=_div(equity, total_liabilities) * 100,
        net_margin=_div(net_income, revenue) * 100,
        operating_margin=_div(ebit, revenue) * 100,
        roa=_div(net_income, total_assets) * 100,
        roe=_div(net_income, equity) * 100,
        ebit=ebit,
        ebitda=ebitda,
        z_altman=altman_z_score(working_capital, total_assets, net_income, ebit, equity, total_liabilities, revenue),
        insolvency_risk=current_ratio,
        equity_impairment=net_income < 0,
        days_receivables=days_receivables,
        days_inventory=days_inventory,
        operating_cycle=operating_cycle,
    )


def altman_z_score(
    working_capital: float,
    total_assets: float,
    net_income: float,
    ebit: float,
    equity: float,
    total_liabilities: float,
    revenue: float,
) -> float:
    """Z = 1.2 X1 + 1.4 X2 + 3.3 X3 + 0.6 X4 + 1.0 X5"""
    x1 = 1.2 * _div(working_capital, total_assets)
    x2 = 1.4 * _div(net_income, total_assets)
    x3 = 3.3 * _div(ebit, total_assets)
    x4 = 0.6 * _div(equity, total_liabilities)
    x5 = 1.0 * _div(revenue, total_assets)
    return x1 + x2 + x3 + x4 + x5


def altman_zone(z: float) -> AltmanZone:
    """Z > 2.99 safe, 1.81 < Z <= 2.99 grey, Z <= 1.81 (or nan) distress"""
    if z > Z_SAFE_THRESHOLD:
        return AltmanZone.SAFE
    if z > Z_DISTRESS_THRESHOLD:
        return AltmanZone.GREY
    return AltmanZone.DISTRESS


def altman_display_zone(z: float) -> AltmanZone:
    """Same partition with the 2.6 / 1.1 thresholds shown on the summary card"""
    if z > Z_DISPLAY_SAFE_THRESHOLD:
        return AltmanZone.SAFE
    if z > Z_DISPLAY_DISTRESS_THRESHOLD:
        return AltmanZone.GREY
    return AltmanZone.DISTRESS
