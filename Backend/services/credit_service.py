# Backend/services/credit_service.py
"""
Credit Limit Engine
Deterministic credit-limit suggestion for commercial credit applications.

Two independent paths exist and are used at different stages:
- the six-variable engine (``calculate_limit``), tier-based bounds on the
  average of six weighted signals;
- the post-AI adjustment (``adjust_ai_limit``), probability-threshold
  bounds applied to the AI's own suggested limit.
"""

from typing import List, Tuple

from models.credit_schemas import LimitAnalysis, LimitInputs, LimitVariables, RiskLevel
from services.formatting import commercial_round


class CreditService:
    """
    Credit limit calculations.
    """

    # ========== SIX-VARIABLE ENGINE ==========
    BUREAU_A_WEIGHT = 0.10
    BUREAU_B_WEIGHT = 0.10
    MONTHS_PER_YEAR = 12
    CASH_FLOW_SHARE = 0.5             # half of operating cash capacity is lendable

    CONSERVATIVE_FACTOR_LOW = 0.50
    CONSERVATIVE_FACTOR_OTHER = 0.40
    LIBERAL_FACTOR_LOW = 0.80
    LIBERAL_FACTOR_OTHER = 0.60

    BASE_TERM_DAYS = 30
    EXTENDED_TERM_DAYS = 45
    LONG_CYCLE_DAYS = 180             # engine: extend term above this operating cycle

    # ========== POST-AI ADJUSTMENT ==========
    DEFAULT_PROBABILITY_THRESHOLD = 0.5
    HIGH_RISK_FACTORS = (0.5, 0.8)    # (conservative, liberal)
    LOW_RISK_FACTORS = (0.8, 1.0)
    AI_LONG_CYCLE_DAYS = 60

    def calculate_limit(self, inputs: LimitInputs, risk_level: RiskLevel, operating_cycle: float) -> LimitAnalysis:
        """
        Six-variable suggested limit.

        v1 = avg(bureau A, last periods) x 10%
        v2 = platform score limit
        v3 = bureau B opinion x 10%
        v4 = annual net income / 12
        v5 = avg(trade references), 0 when there are none
        v6 = ((EBITDA - taxes - financial expenses + cash) / 2) / 12
        average = (v1 + ... + v6) / 6
        """
        v1_avg = _average(inputs.bureau_a_last_periods)
        v1 = v1_avg * self.BUREAU_A_WEIGHT
        v2 = inputs.platform_score_limit
        v3 = inputs.bureau_b_opinion_limit * self.BUREAU_B_WEIGHT
        v4 = inputs.annual_net_income / self.MONTHS_PER_YEAR
        v5 = _average(inputs.trade_references)
        v6 = ((inputs.ebitda - inputs.taxes - inputs.financial_expenses + inputs.cash) * self.CASH_FLOW_SHARE) / self.MONTHS_PER_YEAR

        average_result = (v1 + v2 + v3 + v4 + v5 + v6) / 6

        is_low = risk_level == RiskLevel.LOW
        conservative = average_result * (self.CONSERVATIVE_FACTOR_LOW if is_low else self.CONSERVATIVE_FACTOR_OTHER)
        liberal = average_result * (self.LIBERAL_FACTOR_LOW if is_low else self.LIBERAL_FACTOR_OTHER)

        variables = LimitVariables(
            v1_bureau_a_avg=v1_avg,
            v1_weighted=v1,
            v2_platform_score=v2,
            v3_bureau_b_opinion=inputs.bureau_b_opinion_limit,
            v3_weighted=v3,
            v4_monthly_net_income=v4,
            v5_trade_references_avg=v5,
            v6_monthly_cash_flow=v6,
        )

        return LimitAnalysis(
            variables=variables,
            average_result=average_result,
            conservative=commercial_round(conservative),
            liberal=commercial_round(liberal),
            recommended_term=self.engine_term(risk_level, operating_cycle),
        )

    def engine_term(self, risk_level: RiskLevel, operating_cycle: float) -> int:
        """30 days for low risk; otherwise 45 when the operating cycle exceeds 180 days"""
        if risk_level == RiskLevel.LOW:
            return self.BASE_TERM_DAYS
        return self.EXTENDED_TERM_DAYS if operating_cycle > self.LONG_CYCLE_DAYS else self.BASE_TERM_DAYS

    # ========== POST-AI PATH ==========
    def risk_level_from_score(self, score_probability: float) -> RiskLevel:
        """Default probability above 0.5 is high risk, anything else low"""
        return RiskLevel.HIGH if score_probability > self.DEFAULT_PROBABILITY_THRESHOLD else RiskLevel.LOW

    def risk_factors(self, score_probability: float) -> Tuple[float, float]:
        if score_probability > self.DEFAULT_PROBABILITY_THRESHOLD:
            return self.HIGH_RISK_FACTORS
        return self.LOW_RISK_FACTORS

    def adjust_ai_limit(self, suggested_limit: float, score_probability: float, operating_cycle: float) -> LimitAnalysis:
        """
        Conservative / liberal bounds around the AI's suggested limit,
        keyed off the probability of default rather than a risk tier.
        """
        conservative_factor, liberal_factor = self.risk_factors(score_probability)
        term = self.EXTENDED_TERM_DAYS if operating_cycle > self.AI_LONG_CYCLE_DAYS else self.BASE_TERM_DAYS
        return LimitAnalysis(
            average_result=suggested_limit,
            conservative=commercial_round(suggested_limit * conservative_factor),
            liberal=commercial_round(suggested_limit * liberal_factor),
            recommended_term=term,
        )


def _average(values: List[float]) -> float:
    return sum(values) / (len(values) or 1)


def default_probability_text(score_probability: float) -> str:
    """0.234 -> '23.4%'"""
    return f"{score_probability * 100:.1f}%"
