"""Tests for the remote store gateway, with httpx mocked by respx."""

import base64
import json

import httpx
import pytest
import respx

from models.credit_schemas import (
    CommercialDocument, CommercialMember, CreditApplication, FileHandle, RiskDocument,
)
from services.exceptions import RemoteStoreError, StaleDataError
from services.storage_service import (
    NotificationType, RemoteStoreClient, decode_file, encode_file, encode_files,
)

STORE_URL = "https://script.test/macros/s/abc/exec"


@pytest.fixture
def client() -> RemoteStoreClient:
    return RemoteStoreClient(STORE_URL)


@pytest.fixture
def mock_store():
    with respx.mock(assert_all_called=False) as router:
        yield router.post(STORE_URL)


def sent_payload(route) -> dict:
    request = route.calls.last.request
    assert request.headers["content-type"].startswith("text/plain")
    return json.loads(request.content)["payload"]


@pytest.fixture
def record() -> CreditApplication:
    return CreditApplication(
        id="APP-1A2B3C",
        client_name="ACME INDUSTRIAL SAS",
        tax_id="900123456",
        submitted_by=CommercialMember(name="Laura Gomez", email="laura@example.com"),
        date="31/03/2026",
    )


class TestEncoding:

    def test_encode_file_is_tagged(self):
        payload = encode_file("RISK_CREDIT_BUREAU_A", FileHandle(name="a.pdf", content=b"abc"))
        assert payload == {
            "category": "RISK_CREDIT_BUREAU_A",
            "name": "RISK_CREDIT_BUREAU_A_a.pdf",
            "fileName": "a.pdf",
            "mimeType": "application/pdf",
            "data": base64.b64encode(b"abc").decode(),
        }

    @pytest.mark.asyncio
    async def test_encode_files_keeps_category_per_file(self):
        files = {
            CommercialDocument.TAX_REGISTRATION: FileHandle(name="rut.pdf", content=b"rut"),
            CommercialDocument.BANK_STATEMENTS: None,
            RiskDocument.CREDIT_BUREAU_B: FileHandle(name="b.pdf", content=b"bureau"),
        }
        payloads = await encode_files(files)
        by_category = {p["category"]: p["fileName"] for p in payloads}
        assert by_category == {"COMMERCIAL_TAX_REGISTRATION": "rut.pdf", "RISK_CREDIT_BUREAU_B": "b.pdf"}

    def test_decode_file(self):
        handle = decode_file({"fileName": "x.pdf", "mimeType": "application/pdf", "data": base64.b64encode(b"xyz").decode()})
        assert (handle.name, handle.content) == ("x.pdf", b"xyz")


class TestEnvelope:

    @pytest.mark.asyncio
    async def test_save_analysis(self, client, mock_store, record):
        mock_store.respond(200, json={
            "success": True,
            "data": {"id": "CR-0001", "folderId": "fold1", "folderUrl": "https://drive.google.com/drive/folders/fold1"},
        })

        receipt = await client.save_analysis(record, [], NotificationType.COMMERCIAL_UPLOAD, "cartera@example.com")

        assert (receipt.id, receipt.folder_id) == ("CR-0001", "fold1")
        payload = sent_payload(mock_store)
        assert payload["action"] == "SAVE_ANALYSIS"
        assert payload["notificationType"] == "COMMERCIAL_UPLOAD"
        assert payload["clientData"]["clientName"] == "ACME INDUSTRIAL SAS"
        assert payload["clientData"]["status"] == "PENDING_ANALYST"

    @pytest.mark.asyncio
    async def test_stale_data_is_distinguished(self, client, mock_store):
        mock_store.respond(200, json={"success": False, "isStaleData": True, "message": "Record changed"})

        with pytest.raises(StaleDataError, match="Record changed"):
            await client.save_state("fold1", {"id": "CR-0001"})

    @pytest.mark.asyncio
    async def test_generic_failure(self, client, mock_store):
        mock_store.respond(200, json={"success": False, "error": "Folder not found"})

        with pytest.raises(RemoteStoreError, match="Folder not found") as exc_info:
            await client.load_state("missing")
        assert not isinstance(exc_info.value, StaleDataError)

    @pytest.mark.asyncio
    async def test_http_error(self, client, mock_store):
        mock_store.respond(500, text="boom")

        with pytest.raises(RemoteStoreError, match="HTTP error 500"):
            await client.get_all()

    @pytest.mark.asyncio
    async def test_network_error(self, client, mock_store):
        mock_store.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(RemoteStoreError, match="unreachable"):
            await client.get_all()

    @pytest.mark.asyncio
    async def test_non_json_response_is_success(self, client, mock_store):
        mock_store.respond(200, text="<html>OK</html>")

        await client.update_sheet("CR-1", "ACME", "900", "Laura", "Application denied", "DENIED")

        assert sent_payload(mock_store)["action"] == "UPDATE_SHEET"

    @pytest.mark.asyncio
    async def test_unconfigured_url(self):
        with pytest.raises(RemoteStoreError, match="not configured"):
            await RemoteStoreClient("").get_all()


class TestActions:

    @pytest.mark.asyncio
    async def test_get_all(self, client, mock_store):
        mock_store.respond(200, json={"success": True, "data": [{"id": "CR-1"}, "junk"]})
        assert await client.get_all() == [{"id": "CR-1"}]

    @pytest.mark.asyncio
    async def test_load_state(self, client, mock_store):
        mock_store.respond(200, json={"success": True, "state": {"id": "CR-1"}})
        assert await client.load_state("fold1") == {"id": "CR-1"}
        assert sent_payload(mock_store) == {"action": "LOAD_STATE", "folderId": "fold1"}

    @pytest.mark.asyncio
    async def test_load_state_absent(self, client, mock_store):
        mock_store.respond(200, json={"success": True, "data": None})
        assert await client.load_state("fold1") is None

    @pytest.mark.asyncio
    async def test_fetch_files_for_ai(self, client, mock_store):
        mock_store.respond(200, json={"success": True, "files": [
            {"name": "COMMERCIAL_TAX_REGISTRATION_rut.pdf", "mimeType": "application/pdf",
             "data": base64.b64encode(b"rut").decode()},
        ]})

        files = await client.fetch_files_for_ai("fold1")

        assert files[0].content == b"rut"
        assert files[0].name == "COMMERCIAL_TAX_REGISTRATION_rut.pdf"

    @pytest.mark.asyncio
    async def test_check_pin(self, client, mock_store):
        mock_store.respond(200, json={"success": True, "valid": True})
        assert await client.check_pin("442502") is True
        assert sent_payload(mock_store) == {"action": "CHECK_PIN", "pin": "442502"}

    @pytest.mark.asyncio
    async def test_send_email(self, client, mock_store):
        mock_store.respond(200, json={"success": True})

        await client.send_email("a@b.co", "Subject", "<p>Body</p>", "https://drive/x", {"clientId": "CR-1"})

        payload = sent_payload(mock_store)
        assert payload["action"] == "SEND_EMAIL"
        assert payload["emailData"] == {"to": "a@b.co", "subject": "Subject", "body": "<p>Body</p>"}
        assert payload["logData"] == {"clientId": "CR-1"}

    @pytest.mark.asyncio
    async def test_save_report(self, client, mock_store):
        mock_store.respond(200, json={"success": True})

        await client.save_report("fold1", "https://drive/fold1", "<p>Report</p>", "Credit_Report_ACME.pdf")

        assert sent_payload(mock_store) == {
            "action": "SAVE_REPORT",
            "folderId": "fold1",
            "folderUrl": "https://drive/fold1",
            "htmlContent": "<p>Report</p>",
            "fileName": "Credit_Report_ACME.pdf",
        }
