"""
Remote store gateway.

The store is a single web-app endpoint (Sheets for the listing, Drive
folders for files and JSON snapshots) that multiplexes operations on an
``action`` field. Every response is an envelope; ``success: false`` is a
failure and ``isStaleData: true`` marks an optimistic-locking conflict.
"""

import asyncio
import base64
import json
import logging
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional

import httpx

from config.settings import settings
from models.credit_schemas import CreditApplication, FileHandle, StoreReceipt
from services.exceptions import RemoteStoreError, StaleDataError

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """Which downstream e-mail the store sends after a save"""
    COMMERCIAL_UPLOAD = "COMMERCIAL_UPLOAD"
    RISK_UPLOAD = "RISK_UPLOAD"


def encode_file(tag: str, handle: FileHandle) -> Dict[str, str]:
    """Transferable payload for one file, name-prefixed with its category tag"""
    return {
        "category": tag,
        "name": f"{tag}_{handle.name}",
        "fileName": handle.name,
        "mimeType": handle.mime_type,
        "data": base64.b64encode(handle.content).decode("ascii"),
    }


async def encode_files(files: Mapping[Any, FileHandle]) -> List[Dict[str, str]]:
    """
    Encode a bucket of files concurrently. Each payload keeps its category
    tag, so completion order does not matter.
    """
    present = [(kind, handle) for kind, handle in files.items() if handle is not None]
    return list(await asyncio.gather(*(
        asyncio.to_thread(encode_file, kind.tag, handle) for kind, handle in present
    )))


def decode_file(payload: Dict[str, Any]) -> FileHandle:
    return FileHandle(
        name=payload.get("fileName") or payload.get("name") or "document",
        mime_type=payload.get("mimeType") or "application/pdf",
        content=base64.b64decode(payload.get("data") or ""),
    )


class RemoteStoreClient:
    """Async client for the remote store web app"""

    def __init__(self, url: str, timeout: Optional[float] = None):
        self.url = url
        self.timeout = timeout

    async def _post(self, action: str, **fields: Any) -> Dict[str, Any]:
        if not self.url:
            raise RemoteStoreError("Remote store URL is not configured")

        body = {"payload": {"action": action, **fields}}
        try:
            # text/plain keeps the web app on the simple-request path
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.post(
                    self.url,
                    content=json.dumps(body),
                    headers={"Content-Type": "text/plain;charset=utf-8"},
                )
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"Remote store unreachable ({action}): {e}") from e

        if response.is_error:
            raise RemoteStoreError(f"HTTP error {response.status_code} {response.reason_phrase} ({action})")

        try:
            data = response.json()
        except ValueError:
            logger.warning("Non-JSON response from remote store for %s: %s", action, response.text[:200])
            return {"success": True, "raw": response.text}

        if not isinstance(data, dict):
            return {"success": True, "data": data}

        if data.get("success") is False:
            message = data.get("message") or data.get("error") or f"Remote store rejected {action}"
            if data.get("isStaleData"):
                raise StaleDataError(message)
            raise RemoteStoreError(message)

        return data

    @staticmethod
    def _body(envelope: Dict[str, Any]) -> Dict[str, Any]:
        inner = envelope.get("data")
        return inner if isinstance(inner, dict) else envelope

    # ========== RECORDS ==========
    async def save_analysis(
        self,
        record: CreditApplication,
        files: List[Dict[str, str]],
        notification_type: NotificationType,
        notification_emails: str = "",
    ) -> StoreReceipt:
        """Create or update the record row, store the files and trigger the notification e-mail"""
        envelope = await self._post(
            "SAVE_ANALYSIS",
            notificationType=notification_type.value,
            notificationEmails=notification_emails,
            folderId=record.folder_id,
            clientData={
                "id": record.id,
                "clientName": record.client_name,
                "taxId": record.tax_id,
                "commercialName": record.submitted_by.name,
                "commercialEmail": record.submitted_by.email,
                "date": record.date,
                "status": record.status.value,
            },
            files=files,
        )
        body = self._body(envelope)
        return StoreReceipt(
            id=str(body.get("id") or record.id),
            folder_id=body.get("folderId") or record.folder_id,
            folder_url=body.get("folderUrl") or record.folder_url,
        )

    async def get_all(self) -> List[Dict[str, Any]]:
        envelope = await self._post("GET_ALL")
        rows = envelope.get("data")
        if rows is None:
            rows = envelope.get("records", [])
        return [r for r in rows if isinstance(r, dict)]

    async def update_sheet(
        self,
        client_id: str,
        client_name: str,
        tax_id: str,
        commercial_name: str,
        detail: str,
        status: str,
    ) -> None:
        """Log a decision / status event on the listing sheet"""
        await self._post(
            "UPDATE_SHEET",
            clientId=client_id,
            clientName=client_name,
            taxId=tax_id,
            commercialName=commercial_name,
            detail=detail,
            status=status,
        )

    # ========== SNAPSHOTS ==========
    async def save_state(self, folder_id: str, state: Dict[str, Any]) -> None:
        await self._post("SAVE_STATE", folderId=folder_id, state=state)

    async def load_state(self, folder_id: str) -> Optional[Dict[str, Any]]:
        """The record's JSON snapshot, or None when the folder has none"""
        envelope = await self._post("LOAD_STATE", folderId=folder_id)
        state = envelope.get("state", envelope.get("data"))
        return state if isinstance(state, dict) else None

    async def fetch_files_for_ai(self, folder_id: str) -> List[FileHandle]:
        """Original commercial files of a folder, for re-analysis after a reload"""
        envelope = await self._post("FETCH_FILES_FOR_AI", folderId=folder_id)
        payloads = envelope.get("files", envelope.get("data")) or []
        return [decode_file(p) for p in payloads if isinstance(p, dict)]

    async def save_report(self, folder_id: str, folder_url: Optional[str], html_content: str, file_name: str) -> None:
        """Render an HTML document to PDF inside the client's folder"""
        await self._post(
            "SAVE_REPORT",
            folderId=folder_id,
            folderUrl=folder_url,
            htmlContent=html_content,
            fileName=file_name,
        )

    # ========== DIRECTOR PIN ==========
    async def check_pin(self, pin: str) -> bool:
        envelope = await self._post("CHECK_PIN", pin=pin)
        return bool(envelope.get("valid", envelope.get("isValid", False)))

    async def update_pin(self, current_pin: str, new_pin: str) -> None:
        await self._post("UPDATE_PIN", currentPin=current_pin, newPin=new_pin)

    # ========== E-MAIL ==========
    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        folder_url: Optional[str],
        log_data: Dict[str, Any],
    ) -> None:
        await self._post(
            "SEND_EMAIL",
            emailData={"to": to, "subject": subject, "body": body},
            folderUrl=folder_url,
            logData=log_data,
        )


@lru_cache()
def get_remote_store() -> RemoteStoreClient:
    return RemoteStoreClient(settings.REMOTE_STORE_URL, timeout=settings.REMOTE_STORE_TIMEOUT)

