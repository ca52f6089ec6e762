from pydantic import BaseModel, Field
from typing import Optional, List, Union

from models.credit_schemas import (
    CAMEL_CONFIG, ApplicationSummary, CreditApplication, FinancialFigures, LimitInputs, RiskLevel
)


class IdentityResponse(BaseModel):
    """Form pre-fill from the tax registration document"""
    legal_name: Optional[str] = None
    tax_id: Optional[str] = None

    model_config = CAMEL_CONFIG


class ApplicationList(BaseModel):
    applications: List[Union[CreditApplication, ApplicationSummary]]
    count: int

    model_config = CAMEL_CONFIG


class DecisionRequest(BaseModel):
    approve: bool
    approved_limit: Optional[float] = Field(None, ge=0)
    approved_term: Optional[int] = Field(None, gt=0)
    confirm_high_risk: bool = False

    model_config = CAMEL_CONFIG


class EmailRequest(BaseModel):
    to: str

    model_config = CAMEL_CONFIG


class PinVerifyRequest(BaseModel):
    pin: str


class PinRotateRequest(BaseModel):
    current_pin: str
    new_pin: str

    model_config = CAMEL_CONFIG


class IndicatorsRequest(BaseModel):
    figures: FinancialFigures
    days_receivables: Optional[float] = None
    days_inventory: Optional[float] = None
    operating_cycle: Optional[float] = None

    model_config = CAMEL_CONFIG


class LimitRequest(BaseModel):
    inputs: LimitInputs
    risk_level: RiskLevel = RiskLevel.LOW
    operating_cycle: float = 0.0

    model_config = CAMEL_CONFIG
