"""Pytest configuration and in-memory gateways."""

import asyncio
from typing import Any, Dict, List, Optional, Set

import pytest

from config.auth import PinAuthService
from models.credit_schemas import (
    REQUIRED_COMMERCIAL_DOCUMENTS, AIResult, CommercialMember, FileHandle, IdentityCheck,
    IdentityExtraction, RiskDocument, StoreReceipt, ValidationResult,
)
from services.exceptions import AIGatewayError, RemoteStoreError
from services.workflow_service import WorkflowOrchestrator

DEFAULT_PIN = "442502"


class FakeRemoteStore:
    """Remote store kept in dicts; flags make individual actions fail"""

    def __init__(self):
        self.url = "https://store.test/exec"
        self.saved: List[Dict[str, Any]] = []
        self.states: Dict[str, Dict[str, Any]] = {}
        self.sheet_updates: List[Dict[str, Any]] = []
        self.emails: List[Dict[str, Any]] = []
        self.reports: List[Dict[str, Any]] = []
        self.rows: List[Dict[str, Any]] = []
        self.remote_files: List[FileHandle] = [
            FileHandle(name="COMMERCIAL_FINANCIAL_STATEMENTS_statements.pdf", content=b"%PDF-remote")
        ]
        self.fetch_calls: List[str] = []
        self.pin = DEFAULT_PIN
        self.gate: Optional[asyncio.Event] = None
        self.fail: Set[str] = set()
        self._next_id = 1

    def _maybe_fail(self, action: str) -> None:
        if action in self.fail:
            raise RemoteStoreError(f"{action} failed")

    async def save_analysis(self, record, files, notification_type, notification_emails=""):
        if self.gate is not None:
            await self.gate.wait()
        self._maybe_fail("SAVE_ANALYSIS")
        self.saved.append({
            "id": record.id,
            "status": record.status.value,
            "notificationType": notification_type.value,
            "notificationEmails": notification_emails,
            "files": files,
        })
        if record.folder_id:
            return StoreReceipt(id=record.id, folder_id=record.folder_id, folder_url=record.folder_url)
        receipt = StoreReceipt(
            id=f"CR-{self._next_id:04d}",
            folder_id=f"folder-{self._next_id}",
            folder_url=f"https://drive.google.com/drive/folders/folder-{self._next_id}",
        )
        self._next_id += 1
        return receipt

    async def get_all(self):
        self._maybe_fail("GET_ALL")
        return list(self.rows)

    async def update_sheet(self, **fields):
        self._maybe_fail("UPDATE_SHEET")
        self.sheet_updates.append(fields)

    async def save_state(self, folder_id, state):
        self._maybe_fail("SAVE_STATE")
        self.states[folder_id] = state

    async def load_state(self, folder_id):
        self._maybe_fail("LOAD_STATE")
        return self.states.get(folder_id)

    async def fetch_files_for_ai(self, folder_id):
        self._maybe_fail("FETCH_FILES_FOR_AI")
        self.fetch_calls.append(folder_id)
        return list(self.remote_files)

    async def save_report(self, folder_id, folder_url, html_content, file_name):
        self._maybe_fail("SAVE_REPORT")
        self.reports.append({"folderId": folder_id, "fileName": file_name, "html": html_content})

    async def check_pin(self, pin):
        self._maybe_fail("CHECK_PIN")
        return pin == self.pin

    async def update_pin(self, current_pin, new_pin):
        self.pin = new_pin

    async def send_email(self, **fields):
        self._maybe_fail("SEND_EMAIL")
        self.emails.append(fields)


class FakeAI:
    """AI gateway with canned answers"""

    def __init__(self, result: AIResult):
        self.result = result
        self.mismatched: Set[str] = set()
        self.identity_checks: List[str] = []
        self.analyzed_files: List[List[str]] = []
        self.validations = 0
        self.fail_analysis = False

    async def extract_identity(self, tax_registration):
        return IdentityExtraction(legal_name="Acme Industrial s.a.s.", tax_id=" 900123456 ")

    async def validate_documents(self, files, legal_name, tax_id, kinds=None, today=None):
        self.validations += 1
        return ValidationResult(overall_valid=True, per_file=[], summary="All documents are valid.")

    async def check_identity_match(self, report, legal_name):
        self.identity_checks.append(report.name)
        if report.name in self.mismatched:
            return IdentityCheck(is_valid=False, reason="Report belongs to OTRA EMPRESA SAS", detected_name="OTRA EMPRESA SAS")
        return IdentityCheck(is_valid=True, detected_name=legal_name)

    async def run_full_analysis(self, files, client_name, tax_id):
        if self.fail_analysis:
            raise AIGatewayError("Empty response from AI service")
        self.analyzed_files.append([f.name for f in files])
        return self.result


def build_ai_result(
    score: float = 0.3,
    suggested: float = 50_000_000,
    red: Optional[List[str]] = None,
    operating_cycle: float = 45.0,
    **extra: Any,
) -> AIResult:
    return AIResult.model_validate({
        "verdict": "APPROVED",
        "suggestedLimit": suggested,
        "scoreProbability": score,
        "justification": "Healthy liquidity and clean bureau history",
        "financialIndicators": {"currentRatio": 1.8, "operatingCycle": operating_cycle},
        "indicatorInterpretations": {"currentRatio": "Covers short-term debt comfortably"},
        "flags": {"green": ["Positive equity"], "red": red or []},
        **extra,
    })


@pytest.fixture
def make_ai_result():
    return build_ai_result


@pytest.fixture
def store() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def ai() -> FakeAI:
    return FakeAI(build_ai_result())


@pytest.fixture
def pin_service(tmp_path) -> PinAuthService:
    service = PinAuthService(None, str(tmp_path / "director_pin"), DEFAULT_PIN)
    service.init()
    return service


@pytest.fixture
def orchestrator(store, ai, pin_service) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(store, ai, pin_service, notification_emails="cartera@example.com")


@pytest.fixture
def member() -> CommercialMember:
    return CommercialMember(name="Laura Gomez", email="laura@example.com")


@pytest.fixture
def commercial_files() -> Dict:
    """The seven required documents; bank statements left out"""
    return {
        kind: FileHandle(name=f"{kind.value}.pdf", content=b"%PDF-1.4 " + kind.value.encode())
        for kind in REQUIRED_COMMERCIAL_DOCUMENTS
    }


@pytest.fixture
def risk_files() -> Dict:
    return {
        RiskDocument.CREDIT_BUREAU_A: FileHandle(name="bureau_a.pdf", content=b"%PDF-1.4 bureau a"),
        RiskDocument.CREDIT_BUREAU_B: FileHandle(name="bureau_b.pdf", content=b"%PDF-1.4 bureau b"),
    }
