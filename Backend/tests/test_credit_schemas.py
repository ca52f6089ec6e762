"""Tests for the record types and the summary / deep merge."""

import math

import pytest

from models.credit_schemas import (
    AIResult, ApplicationStatus, ApplicationSummary, CommercialDocument, CommercialMember,
    CreditApplication, FileHandle, FinancialIndicators, folder_id_from_url, merge_authoritative,
)


@pytest.fixture
def deep() -> CreditApplication:
    return CreditApplication(
        id="APP-TEMP01",
        client_name="ACME INDUSTRIAL SAS",
        tax_id="900123456",
        submitted_by=CommercialMember(name="Laura Gomez"),
        status=ApplicationStatus.ANALYZED,
        folder_id=None,
        commercial_files={CommercialDocument.TAX_REGISTRATION: FileHandle(name="rut.pdf", content=b"%PDF")},
        ai_result=AIResult(verdict="APPROVED", suggested_limit=10_000_000, score_probability=0.2),
        indicators=FinancialIndicators(current_ratio=math.inf, acid_test=math.nan),
    )


class TestStatus:

    @pytest.mark.parametrize("legacy, status", [
        ("PENDIENTE_CARTERA", ApplicationStatus.PENDING_ANALYST),
        ("pendiente_director", ApplicationStatus.PENDING_DIRECTOR),
        ("ANALIZADO", ApplicationStatus.ANALYZED),
        ("APROBADO", ApplicationStatus.APPROVED),
        ("NEGADO", ApplicationStatus.DENIED),
    ])
    def test_legacy_values(self, legacy, status):
        assert ApplicationStatus(legacy) == status

    def test_unknown_value(self):
        with pytest.raises(ValueError):
            ApplicationStatus("ARCHIVED")

    def test_decisions_only_after_analysis_step(self):
        assert not ApplicationStatus.PENDING_ANALYST.can_transition_to(ApplicationStatus.APPROVED)
        assert not ApplicationStatus.PENDING_ANALYST.can_transition_to(ApplicationStatus.DENIED)
        assert ApplicationStatus.PENDING_DIRECTOR.can_transition_to(ApplicationStatus.DENIED)
        assert ApplicationStatus.ANALYZED.can_transition_to(ApplicationStatus.APPROVED)
        for terminal in (ApplicationStatus.APPROVED, ApplicationStatus.DENIED):
            assert terminal.is_terminal
            assert not any(terminal.can_transition_to(s) for s in ApplicationStatus)


class TestSummary:

    def test_folder_id_from_url(self):
        assert folder_id_from_url("https://drive.google.com/drive/folders/1AbC_d-9?usp=sharing") == "1AbC_d-9"
        assert folder_id_from_url("https://example.com") is None

    def test_from_legacy_row(self):
        summary = ApplicationSummary.from_store_row({
            "id": 17, "clientName": "ACME", "nit": "900", "estado": "ANALIZADO", "fecha": "01/03/2026",
            "comercialName": "Laura", "comercialEmail": "laura@example.com",
            "driveFolderUrl": "https://drive.google.com/drive/folders/xyz",
        })

        assert summary.id == "17"
        assert summary.status == ApplicationStatus.ANALYZED
        assert summary.folder_id == "xyz"
        assert summary.submitted_by == CommercialMember(name="Laura", email="laura@example.com")


class TestDeepRecord:

    def test_snapshot_drops_files_and_non_finite_values(self, deep):
        state = deep.snapshot()

        assert state["commercialFiles"] == {}
        assert state["indicators"]["currentRatio"] is None
        assert state["indicators"]["acidTest"] is None
        assert state["aiResult"]["suggestedLimit"] == 10_000_000
        assert deep.commercial_files[CommercialDocument.TAX_REGISTRATION].content == b"%PDF"

    def test_merge_takes_id_and_status_from_summary(self, deep):
        summary = ApplicationSummary(
            id="CR-0001", status=ApplicationStatus.APPROVED, folder_id="fold1",
            folder_url="https://drive.google.com/drive/folders/fold1",
        )

        merged = merge_authoritative(summary, deep)

        assert merged.id == "CR-0001"
        assert merged.status == ApplicationStatus.APPROVED
        assert merged.folder_id == "fold1"
        assert merged.client_name == "ACME INDUSTRIAL SAS"
        assert merged.ai_result == deep.ai_result

    def test_summary_round_trip(self, deep):
        promoted = CreditApplication.from_summary(deep.to_summary())
        assert promoted.id == deep.id
        assert promoted.status == deep.status
        assert not promoted.is_deep

    def test_malformed_raw_inputs_are_dropped(self):
        result = AIResult.model_validate({
            "verdict": "DENIED", "suggestedLimit": 0, "scoreProbability": 0.9,
            "financialFigures": {"revenue": "a lot"},
        })
        assert result.financial_figures is None
