# Backend/routers/credit.py
"""
Credit Workflow API Endpoints.
One endpoint per role action: commercial submission, analyst risk upload,
director analysis / decision / letter, plus the stateless calculators.
"""

import json
import logging
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel

from config.auth import PinAuthService, get_pin_service, require_director_pin
from models.credit_schemas import CommercialDocument, CommercialMember, FileHandle, RiskDocument
from models.schemas import (
    ApplicationList, DecisionRequest, EmailRequest, IdentityResponse, IndicatorsRequest, LimitRequest,
    PinRotateRequest, PinVerifyRequest,
)
from routers.errors import to_http_error
from services.credit_service import CreditService
from services.exceptions import CreditWorkflowError, MissingInputError
from services.gemini_service import get_gemini_service
from services.indicator_service import altman_display_zone, altman_zone, calculate_indicators
from services.storage_service import get_remote_store
from services.workflow_service import WorkflowOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/credit", tags=["credit"])


@lru_cache()
def get_orchestrator() -> WorkflowOrchestrator:
    return WorkflowOrchestrator(get_remote_store(), get_gemini_service(), get_pin_service())


def dump(model: BaseModel) -> Dict[str, Any]:
    """camelCase JSON; non-finite ratios become null"""
    return json.loads(model.model_dump_json(by_alias=True))


async def to_file_handle(upload: Optional[UploadFile]) -> Optional[FileHandle]:
    if upload is None or not upload.filename:
        return None
    content = await upload.read()
    mime_type = upload.content_type or "application/pdf"
    if mime_type == "application/octet-stream" and upload.filename.lower().endswith(".pdf"):
        mime_type = "application/pdf"
    return FileHandle(name=upload.filename, mime_type=mime_type, content=content)


# ========== COMMERCIAL ==========
@router.post("/identity", response_model=IdentityResponse, response_model_by_alias=True)
async def extract_identity(
    file: UploadFile = File(...),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """
    Read legal name and tax id off the tax registration (RUT) upload.
    Missing fields come back null so the form keeps what it has.
    """
    try:
        handle = await to_file_handle(file)
        if handle is None or not handle.content:
            raise MissingInputError("Tax registration file is empty")
        identity = await orchestrator.ai.extract_identity(handle)
        return IdentityResponse(
            legal_name=identity.legal_name.strip().upper() if identity.legal_name else None,
            tax_id=identity.tax_id.strip() if identity.tax_id else None,
        )
    except CreditWorkflowError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.exception("Error extracting identity")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/applications", status_code=201)
async def submit_application(
    client_name: str = Form(..., alias="clientName"),
    tax_id: str = Form(..., alias="taxId"),
    commercial_name: str = Form(..., alias="commercialName"),
    commercial_email: str = Form("", alias="commercialEmail"),
    tax_registration: Optional[UploadFile] = File(None, alias="taxRegistration"),
    financial_statements: Optional[UploadFile] = File(None, alias="financialStatements"),
    chamber_of_commerce: Optional[UploadFile] = File(None, alias="chamberOfCommerce"),
    trade_reference: Optional[UploadFile] = File(None, alias="tradeReference"),
    bank_certificate: Optional[UploadFile] = File(None, alias="bankCertificate"),
    legal_rep_id: Optional[UploadFile] = File(None, alias="legalRepId"),
    ownership_composition: Optional[UploadFile] = File(None, alias="ownershipComposition"),
    bank_statements: Optional[UploadFile] = File(None, alias="bankStatements"),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Create an application with its commercial documents (multipart form)"""
    try:
        uploads = {
            CommercialDocument.TAX_REGISTRATION: tax_registration,
            CommercialDocument.FINANCIAL_STATEMENTS: financial_statements,
            CommercialDocument.CHAMBER_OF_COMMERCE: chamber_of_commerce,
            CommercialDocument.TRADE_REFERENCE: trade_reference,
            CommercialDocument.BANK_CERTIFICATE: bank_certificate,
            CommercialDocument.LEGAL_REP_ID: legal_rep_id,
            CommercialDocument.OWNERSHIP_COMPOSITION: ownership_composition,
            CommercialDocument.BANK_STATEMENTS: bank_statements,
        }
        files = {kind: await to_file_handle(upload) for kind, upload in uploads.items()}
        record = await orchestrator.submit(
            client_name=client_name,
            tax_id=tax_id,
            submitted_by=CommercialMember(name=commercial_name, email=commercial_email),
            commercial_files=files,
        )
        return dump(record)
    except CreditWorkflowError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.exception("Error submitting application")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/applications")
async def list_applications(
    role: Optional[str] = Query(None, pattern="^(commercial|analyst|director)$"),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Reload the listing from the store and return the role's inbox"""
    try:
        records = await orchestrator.refresh(role=role)
        return dump(ApplicationList(applications=records, count=len(records)))
    except CreditWorkflowError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.exception("Error listing applications")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/applications/{application_id}")
async def get_application(
    application_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    try:
        record = await orchestrator.load_full_record(application_id)
        return dump(record)
    except CreditWorkflowError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.exception("Error loading application %s", application_id)
        raise HTTPException(status_code=500, detail=str(e))


# ========== ANALYST ==========
@router.post("/applications/{application_id}/risk-documents")
async def upload_risk_documents(
    application_id: str,
    credit_bureau_a: Optional[UploadFile] = File(None, alias="creditBureauA"),
    credit_bureau_b: Optional[UploadFile] = File(None, alias="creditBureauB"),
    override_pin: Optional[str] = Form(None, alias="overridePin"),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """
    Attach both bureau reports and run the AI analysis.
    A 409 lists the reports that do not belong to the applicant; resend
    with ``overridePin`` to skip that check.
    """
    try:
        files = {
            RiskDocument.CREDIT_BUREAU_A: await to_file_handle(credit_bureau_a),
            RiskDocument.CREDIT_BUREAU_B: await to_file_handle(credit_bureau_b),
        }
        record = await orchestrator.advance(application_id, files, override_pin=override_pin or None)
        return dump(record)
    except CreditWorkflowError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.exception("Error advancing application %s", application_id)
        raise HTTPException(status_code=500, detail=str(e))


# ========== DIRECTOR ==========
@router.post("/applications/{application_id}/analysis", dependencies=[Depends(require_director_pin)])
async def analyze_application(
    application_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """AI analysis of a record that reached the director without one"""
    try:
        record = await orchestrator.analyze_pending(application_id)
        return dump(record)
    except CreditWorkflowError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.exception("Error analyzing application %s", application_id)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/applications/{application_id}/decision", dependencies=[Depends(require_director_pin)])
async def decide_application(
    application_id: str,
    request: DecisionRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    try:
        record = await orchestrator.decide(
            application_id,
            approve=request.approve,
            approved_limit=request.approved_limit,
            approved_term=request.approved_term,
            confirm_high_risk=request.confirm_high_risk,
        )
        return dump(record)
    except CreditWorkflowError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.exception("Error deciding application %s", application_id)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/applications/{application_id}/email", dependencies=[Depends(require_director_pin)])
async def send_decision_email(
    application_id: str,
    request: EmailRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    try:
        await orchestrator.send_decision_email(application_id, request.to)
        return {"success": True}
    except CreditWorkflowError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.exception("Error sending decision e-mail for %s", application_id)
        raise HTTPException(status_code=500, detail=str(e))


# ========== PIN ==========
@router.post("/pin/verify")
async def verify_pin(
    request: PinVerifyRequest,
    pin_service: PinAuthService = Depends(get_pin_service),
):
    try:
        await pin_service.verify(request.pin)
        return {"valid": True}
    except CreditWorkflowError as e:
        raise to_http_error(e)


@router.post("/pin/rotate")
async def rotate_pin(
    request: PinRotateRequest,
    pin_service: PinAuthService = Depends(get_pin_service),
):
    try:
        await pin_service.rotate(request.current_pin, request.new_pin)
        return {"success": True}
    except CreditWorkflowError as e:
        raise to_http_error(e)


# ========== CALCULATORS ==========
@router.post("/indicators")
async def compute_indicators(request: IndicatorsRequest):
    """Indicator engine over raw statement figures, with both Altman readings"""
    indicators = calculate_indicators(
        request.figures,
        days_receivables=request.days_receivables,
        days_inventory=request.days_inventory,
        operating_cycle=request.operating_cycle,
    )
    return {
        "indicators": dump(indicators),
        "altmanZone": altman_zone(indicators.z_altman).value,
        "altmanDisplayZone": altman_display_zone(indicators.z_altman).value,
    }


@router.post("/limit")
async def compute_limit(request: LimitRequest):
    """Six-variable limit engine"""
    analysis = CreditService().calculate_limit(request.inputs, request.risk_level, request.operating_cycle)
    return dump(analysis)
