from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional, Dict, Any
from enum import Enum
import json
import re


# Wire payloads (AI responses, remote store rows, JSON snapshots) are camelCase.
CAMEL_CONFIG = {"alias_generator": to_camel, "populate_by_name": True, "extra": "ignore"}


class ApplicationStatus(str, Enum):
    """Credit application lifecycle"""
    PENDING_ANALYST = "PENDING_ANALYST"
    PENDING_DIRECTOR = "PENDING_DIRECTOR"
    ANALYZED = "ANALYZED"
    APPROVED = "APPROVED"
    DENIED = "DENIED"

    @classmethod
    def _missing_(cls, value):
        # Rows written by the first (Spanish) deployment of the sheet
        legacy = {
            "PENDIENTE_CARTERA": cls.PENDING_ANALYST,
            "PENDIENTE_DIRECTOR": cls.PENDING_DIRECTOR,
            "ANALIZADO": cls.ANALYZED,
            "APROBADO": cls.APPROVED,
            "NEGADO": cls.DENIED,
        }
        if isinstance(value, str):
            return legacy.get(value.strip().upper())
        return None

    @property
    def is_terminal(self) -> bool:
        return self in (ApplicationStatus.APPROVED, ApplicationStatus.DENIED)

    @property
    def awaits_director(self) -> bool:
        return self in (ApplicationStatus.PENDING_DIRECTOR, ApplicationStatus.ANALYZED)

    def can_transition_to(self, target: "ApplicationStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: Dict[ApplicationStatus, frozenset] = {
    ApplicationStatus.PENDING_ANALYST: frozenset({ApplicationStatus.PENDING_DIRECTOR, ApplicationStatus.ANALYZED}),
    ApplicationStatus.PENDING_DIRECTOR: frozenset({ApplicationStatus.ANALYZED, ApplicationStatus.APPROVED, ApplicationStatus.DENIED}),
    ApplicationStatus.ANALYZED: frozenset({ApplicationStatus.APPROVED, ApplicationStatus.DENIED}),
    ApplicationStatus.APPROVED: frozenset(),
    ApplicationStatus.DENIED: frozenset(),
}


class RiskLevel(str, Enum):
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"


class Verdict(str, Enum):
    """AI recommendation"""
    APPROVED = "APPROVED"
    DENIED = "DENIED"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            return {"APROBADO": cls.APPROVED, "NEGADO": cls.DENIED}.get(value.strip().upper())
        return None


class CommercialDocument(str, Enum):
    """Documents uploaded by the commercial rep at creation"""
    TAX_REGISTRATION = "taxRegistration"
    FINANCIAL_STATEMENTS = "financialStatements"
    CHAMBER_OF_COMMERCE = "chamberOfCommerce"
    TRADE_REFERENCE = "tradeReference"
    BANK_CERTIFICATE = "bankCertificate"
    LEGAL_REP_ID = "legalRepId"
    OWNERSHIP_COMPOSITION = "ownershipComposition"
    BANK_STATEMENTS = "bankStatements"

    @property
    def tag(self) -> str:
        return f"COMMERCIAL_{self.name}"


class RiskDocument(str, Enum):
    """Bureau reports uploaded by the portfolio analyst"""
    CREDIT_BUREAU_A = "creditBureauA"
    CREDIT_BUREAU_B = "creditBureauB"

    @property
    def tag(self) -> str:
        return f"RISK_{self.name}"


OPTIONAL_COMMERCIAL_DOCUMENTS = frozenset({CommercialDocument.BANK_STATEMENTS})
REQUIRED_COMMERCIAL_DOCUMENTS = [d for d in CommercialDocument if d not in OPTIONAL_COMMERCIAL_DOCUMENTS]


class FileHandle(BaseModel):
    """An uploaded file held in memory. Content is never serialized."""
    name: str
    mime_type: str = "application/pdf"
    content: bytes = Field(b"", exclude=True)

    model_config = CAMEL_CONFIG


class CommercialMember(BaseModel):
    name: str
    email: str = ""

    model_config = CAMEL_CONFIG


# ========== AI GATEWAY SCHEMAS ==========

class IdentityExtraction(BaseModel):
    """Legal name / tax id read from the tax registration document"""
    legal_name: Optional[str] = None
    tax_id: Optional[str] = None

    model_config = CAMEL_CONFIG


class IdentityCheck(BaseModel):
    """Whether a risk report belongs to the declared applicant"""
    is_valid: bool
    reason: Optional[str] = None
    detected_name: Optional[str] = None

    model_config = CAMEL_CONFIG


class DocumentFinding(BaseModel):
    """Raw per-document facts extracted by the AI before compliance rules run"""
    file_name: str
    kind: Optional[str] = None
    is_present: bool = True
    detected_date: Optional[str] = None
    holder_name: Optional[str] = None
    tax_id: Optional[str] = None
    legal_rep_signature: Optional[bool] = None
    accountant_signature: Optional[bool] = None

    model_config = CAMEL_CONFIG


class DocumentFindings(BaseModel):
    documents: List[DocumentFinding] = Field(default_factory=list)

    model_config = CAMEL_CONFIG


class DocumentValidation(BaseModel):
    file_name: str
    is_valid: bool
    issue: Optional[str] = None
    detected_date: Optional[str] = None

    model_config = CAMEL_CONFIG


class ValidationResult(BaseModel):
    overall_valid: bool
    per_file: List[DocumentValidation] = Field(default_factory=list)
    summary: str = ""

    model_config = CAMEL_CONFIG


class FinancialFigures(BaseModel):
    """Raw balance sheet / income statement figures"""
    current_assets: Optional[float] = None
    total_assets: Optional[float] = None
    inventories: Optional[float] = None
    current_liabilities: Optional[float] = None
    total_liabilities: Optional[float] = None
    non_current_liabilities: Optional[float] = None
    equity: Optional[float] = None
    revenue: Optional[float] = None
    net_income: Optional[float] = None
    ebit: Optional[float] = None
    ebitda: Optional[float] = None

    model_config = CAMEL_CONFIG


class FinancialIndicators(BaseModel):
    # Liquidity
    current_ratio: Optional[float] = None
    acid_test: Optional[float] = None
    working_capital: Optional[float] = None

    # Leverage (percentages)
    total_debt_ratio: Optional[float] = None
    long_term_debt_ratio: Optional[float] = None
    short_term_debt_ratio: Optional[float] = None
    solvency: Optional[float] = None
    financial_leverage: Optional[float] = None
    financial_burden: Optional[float] = None

    # Profitability (percentages)
    gross_margin: Optional[float] = None
    operating_margin: Optional[float] = None
    net_margin: Optional[float] = None
    contribution_margin: Optional[float] = None
    roa: Optional[float] = None
    roe: Optional[float] = None

    # Operations
    ebit: Optional[float] = None
    ebitda: Optional[float] = None
    break_even: Optional[float] = None
    asset_turnover: Optional[float] = None
    days_receivables: Optional[float] = None
    days_inventory: Optional[float] = None
    operating_cycle: Optional[float] = None

    # Risk
    z_altman: Optional[float] = None
    insolvency_risk: Optional[float] = None
    equity_impairment: Optional[bool] = None

    model_config = CAMEL_CONFIG


class LimitInputs(BaseModel):
    """The six raw signal groups behind the suggested credit limit"""
    bureau_a_last_periods: List[float] = Field(..., min_length=1, description="Bureau A limits, last 3 periods")
    platform_score_limit: float = 0.0
    bureau_b_opinion_limit: float = 0.0
    annual_net_income: float = 0.0
    trade_references: List[float] = Field(default_factory=list)
    ebitda: float = 0.0
    taxes: float = 0.0
    financial_expenses: float = 0.0
    cash: float = 0.0

    model_config = CAMEL_CONFIG


class LimitVariables(BaseModel):
    v1_bureau_a_avg: float
    v1_weighted: float
    v2_platform_score: float
    v3_bureau_b_opinion: float
    v3_weighted: float
    v4_monthly_net_income: float
    v5_trade_references_avg: float
    v6_monthly_cash_flow: float

    model_config = CAMEL_CONFIG


class LimitAnalysis(BaseModel):
    variables: Optional[LimitVariables] = None
    average_result: float
    conservative: Optional[float] = None
    liberal: Optional[float] = None
    recommended_term: int

    model_config = CAMEL_CONFIG


class RiskFlags(BaseModel):
    green: List[str] = Field(default_factory=list)
    red: List[str] = Field(default_factory=list)

    model_config = CAMEL_CONFIG


class AIResult(BaseModel):
    """Full financial / risk analysis returned by the AI gateway"""
    verdict: Verdict
    suggested_limit: float
    limit_variables: Optional[LimitVariables] = None
    justification: str = ""
    score_probability: float = Field(..., ge=0.0, le=1.0, description="Probability of default")
    financial_indicators: FinancialIndicators = Field(default_factory=FinancialIndicators)
    indicator_interpretations: Dict[str, str] = Field(default_factory=dict)
    flags: RiskFlags = Field(default_factory=RiskFlags)

    # Raw inputs, when the model reports them, so the engines can recompute
    financial_figures: Optional[FinancialFigures] = None
    limit_inputs: Optional[LimitInputs] = None

    model_config = CAMEL_CONFIG

    @field_validator("financial_figures", "limit_inputs", mode="wrap")
    @classmethod
    def _drop_incomplete_inputs(cls, value, handler):
        # An incomplete raw-input block is ignored instead of failing the whole analysis
        try:
            return handler(value)
        except ValidationError:
            return None


# ========== REMOTE STORE SCHEMAS ==========

class StoreReceipt(BaseModel):
    """Locators assigned by the remote store on first persistence"""
    id: str
    folder_id: Optional[str] = None
    folder_url: Optional[str] = None

    model_config = CAMEL_CONFIG


_FOLDER_ID_PATTERN = re.compile(r"/folders/([A-Za-z0-9_-]+)")


def folder_id_from_url(url: Optional[str]) -> Optional[str]:
    """Extract the Drive folder id from a folder URL"""
    if not url:
        return None
    match = _FOLDER_ID_PATTERN.search(url)
    return match.group(1) if match else None


class ApplicationSummary(BaseModel):
    """
    Lightweight list-view record as returned by the store's GET_ALL.
    Authoritative only for ``status`` (and the canonical ``id``).
    """
    id: str
    client_name: str = ""
    tax_id: str = ""
    submitted_by: Optional[CommercialMember] = None
    status: ApplicationStatus
    date: str = ""
    folder_id: Optional[str] = None
    folder_url: Optional[str] = None
    detail: Optional[str] = None
    approved_limit: Optional[float] = None
    approved_term: Optional[int] = None

    model_config = CAMEL_CONFIG

    @classmethod
    def from_store_row(cls, row: Dict[str, Any]) -> "ApplicationSummary":
        """Build a summary from a sheet row, accepting both legacy and current column names"""
        commercial_name = row.get("commercialName") or row.get("comercialName") or row.get("comercial")
        submitted_by = None
        if isinstance(commercial_name, dict):
            submitted_by = CommercialMember.model_validate(commercial_name)
        elif commercial_name:
            submitted_by = CommercialMember(
                name=str(commercial_name),
                email=str(row.get("commercialEmail") or row.get("comercialEmail") or ""),
            )

        folder_url = row.get("folderUrl") or row.get("driveFolderUrl")
        return cls(
            id=str(row["id"]),
            client_name=str(row.get("clientName") or ""),
            tax_id=str(row.get("taxId") or row.get("nit") or ""),
            submitted_by=submitted_by,
            status=ApplicationStatus(row.get("status") or row.get("estado")),
            date=str(row.get("date") or row.get("fecha") or ""),
            folder_id=row.get("folderId") or row.get("driveFolderId") or folder_id_from_url(folder_url),
            folder_url=folder_url,
            detail=row.get("detail") or row.get("detalle"),
        )


class CreditApplication(BaseModel):
    """
    Deep record: everything known about an application, including file
    buckets and the AI result. Held in memory and in the folder's JSON snapshot.
    """
    id: str
    client_name: str
    tax_id: str
    submitted_by: CommercialMember
    date: str = ""
    status: ApplicationStatus = ApplicationStatus.PENDING_ANALYST

    folder_id: Optional[str] = None
    folder_url: Optional[str] = None

    commercial_files: Dict[CommercialDocument, Optional[FileHandle]] = Field(default_factory=dict)
    risk_files: Dict[RiskDocument, Optional[FileHandle]] = Field(default_factory=dict)

    validation_result: Optional[ValidationResult] = None
    ai_result: Optional[AIResult] = None

    # Derived after AI analysis
    indicators: Optional[FinancialIndicators] = None
    limit: Optional[LimitAnalysis] = None
    engine_limit: Optional[LimitAnalysis] = None
    risk_level: Optional[RiskLevel] = None
    default_probability_text: Optional[str] = None

    # Director decision
    approved_limit: Optional[float] = None
    approved_term: Optional[int] = None
    rejection_reason: Optional[str] = None

    last_updated: Optional[int] = None

    model_config = CAMEL_CONFIG

    @property
    def is_deep(self) -> bool:
        return self.ai_result is not None

    def present_commercial_files(self) -> Dict[CommercialDocument, FileHandle]:
        return {k: f for k, f in self.commercial_files.items() if f is not None and f.content}

    def present_risk_files(self) -> Dict[RiskDocument, FileHandle]:
        return {k: f for k, f in self.risk_files.items() if f is not None and f.content}

    def snapshot(self) -> Dict[str, Any]:
        """JSON snapshot for SAVE_STATE. File buckets are emptied; binaries live in the folder."""
        bare = self.model_copy(update={"commercial_files": {}, "risk_files": {}})
        # Through the JSON encoder so NaN/Infinity ratios become null
        return json.loads(bare.model_dump_json(by_alias=True))

    def to_summary(self) -> ApplicationSummary:
        return ApplicationSummary(
            id=self.id,
            client_name=self.client_name,
            tax_id=self.tax_id,
            submitted_by=self.submitted_by,
            status=self.status,
            date=self.date,
            folder_id=self.folder_id,
            folder_url=self.folder_url,
            approved_limit=self.approved_limit,
            approved_term=self.approved_term,
        )

    @classmethod
    def from_summary(cls, summary: ApplicationSummary) -> "CreditApplication":
        """Promote a summary to a (still shallow) full record with empty buckets"""
        return cls(
            id=summary.id,
            client_name=summary.client_name,
            tax_id=summary.tax_id,
            submitted_by=summary.submitted_by or CommercialMember(name=""),
            date=summary.date,
            status=summary.status,
            folder_id=summary.folder_id,
            folder_url=summary.folder_url,
            approved_limit=summary.approved_limit,
            approved_term=summary.approved_term,
        )


def merge_authoritative(summary: ApplicationSummary, full: CreditApplication) -> CreditApplication:
    """
    Combine a list summary with a deep snapshot of the same application.
    The summary wins for ``id`` and ``status``; every other field comes
    from the snapshot, with folder locators filled from the summary when
    the snapshot lacks them.
    """
    return full.model_copy(update={
        "id": summary.id,
        "status": summary.status,
        "folder_id": full.folder_id or summary.folder_id,
        "folder_url": full.folder_url or summary.folder_url,
    })
