# Backend/services/workflow_service.py
"""
Workflow Orchestrator

Sequences a credit application through its roles:
commercial submit -> analyst risk upload + AI analysis -> director decision.

Every foreground transition either completes and commits the new record
to the in-memory collection, or raises and leaves the collection as it
was. The only exceptions are the detached calls issued after a
decision (snapshot persist, document archive and sheet notification),
whose failures are logged and never surfaced.
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Awaitable, List, Mapping, Optional, Set, Union

from pydantic import ValidationError

from config.settings import settings
from models.credit_schemas import (
    REQUIRED_COMMERCIAL_DOCUMENTS, ApplicationStatus, ApplicationSummary, CommercialDocument,
    CommercialMember, CreditApplication, FileHandle, RiskDocument, folder_id_from_url,
    merge_authoritative,
)
from services.credit_service import CreditService, default_probability_text
from services.exceptions import (
    AIGatewayError, ApplicationNotFoundError, HighRiskConfirmationRequired, IdentityMismatchError,
    InvalidTransitionError, MissingInputError, RemoteStoreError, ShallowRecordError, WorkflowBusyError,
)
from services.formatting import format_limit_detail, parse_limit_detail
from services.indicator_service import calculate_indicators
from services.storage_service import NotificationType, encode_files
from services.templates import DENIAL_DETAIL, decision_documents, decision_email

logger = logging.getLogger(__name__)

Record = Union[ApplicationSummary, CreditApplication]

DENIAL_FALLBACK_REASON = "Internal credit risk policy: debt capacity exceeded."


def _now_ms() -> int:
    return int(time.time() * 1000)


def denial_reason(red_flags: List[str]) -> str:
    if red_flags:
        return f"Financial inconsistencies detected: {', '.join(red_flags)}."
    return DENIAL_FALLBACK_REASON


class WorkflowOrchestrator:
    """
    Process-wide state machine over the credit applications of one session.

    ``records`` is the list view (summaries, or deep records this process
    created or analyzed); ``selected`` is the deep record currently open
    in a detail view.
    """

    def __init__(
        self,
        store: Any,
        ai: Any,
        pin_service: Any,
        credit_service: Optional[CreditService] = None,
        notification_emails: Optional[str] = None,
    ):
        self.store = store
        self.ai = ai
        self.pin_service = pin_service
        self.credit_service = credit_service or CreditService()
        self.notification_emails = settings.NOTIFICATION_EMAILS if notification_emails is None else notification_emails

        self.records: List[Record] = []
        self.selected: Optional[CreditApplication] = None
        self._busy: Optional[str] = None
        self._background: Set[asyncio.Task] = set()

    # ========== BUSY GUARD ==========
    @property
    def busy(self) -> bool:
        return self._busy is not None

    @asynccontextmanager
    async def _transition(self, name: str):
        """One foreground transition at a time"""
        if self._busy is not None:
            raise WorkflowBusyError(f"Another operation is in progress ({self._busy})")
        self._busy = name
        try:
            yield
        finally:
            self._busy = None

    # ========== BACKGROUND TASKS ==========
    def _spawn(self, coro: Awaitable[Any], description: str) -> asyncio.Task:
        """Detach a call; its failure is logged, never raised"""
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(lambda t: self._on_background_done(t, description))
        return task

    def _on_background_done(self, task: asyncio.Task, description: str) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.warning("⚠️ Background %s cancelled", description)
            return
        error = task.exception()
        if error is not None:
            logger.error("❌ Background %s failed: %s", description, error, exc_info=error)
        else:
            logger.debug("Background %s done", description)

    async def drain_background(self) -> None:
        """Wait for every detached call issued so far"""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ========== COLLECTION ==========
    def find(self, application_id: str) -> Optional[Record]:
        for record in self.records:
            if record.id == application_id:
                return record
        return None

    def _require(self, application_id: str) -> Record:
        record = self.find(application_id)
        if record is None:
            raise ApplicationNotFoundError(f"Application {application_id} not found")
        return record

    def _open_record(self, application_id: str) -> Optional[CreditApplication]:
        """The open detail view for this id, under the listing's status"""
        if self.selected is None or self.selected.id != application_id:
            return None
        listed = self.find(application_id)
        if isinstance(listed, ApplicationSummary):
            return merge_authoritative(listed, self.selected)
        return self.selected.model_copy()

    def _working_copy(self, application_id: str) -> CreditApplication:
        """Deep record for a transition: the open detail view, the collection entry, or a promoted summary"""
        opened = self._open_record(application_id)
        if opened is not None:
            return opened
        record = self._require(application_id)
        if isinstance(record, CreditApplication):
            return record.model_copy()
        return CreditApplication.from_summary(record)

    def _commit(self, record: CreditApplication, as_summary: bool = False) -> None:
        entry = record.to_summary() if as_summary else record
        for i, existing in enumerate(self.records):
            if existing.id == record.id:
                self.records[i] = entry
                break
        else:
            self.records.append(entry)
        if self.selected is not None and self.selected.id == record.id:
            self.selected = record

    def visible_to(self, role: Optional[str]) -> List[Record]:
        """Role inbox: the analyst only sees applications waiting on them"""
        if role == "analyst":
            return [r for r in self.records if r.status == ApplicationStatus.PENDING_ANALYST]
        return list(self.records)

    # ========== SUBMIT (COMMERCIAL) ==========
    async def submit(
        self,
        client_name: str,
        tax_id: str,
        submitted_by: CommercialMember,
        commercial_files: Mapping[CommercialDocument, Optional[FileHandle]],
        run_validation: bool = True,
    ) -> CreditApplication:
        missing = []
        if not client_name or not client_name.strip():
            missing.append("client name")
        if not tax_id or not tax_id.strip():
            missing.append("tax id")
        if not submitted_by or not submitted_by.name.strip():
            missing.append("commercial member")
        for kind in REQUIRED_COMMERCIAL_DOCUMENTS:
            handle = commercial_files.get(kind)
            if handle is None or not handle.content:
                missing.append(kind.value)
        if missing:
            raise MissingInputError(f"Missing required inputs: {', '.join(missing)}")

        async with self._transition("submit"):
            record = CreditApplication(
                id=f"APP-{uuid.uuid4().hex[:6].upper()}",
                client_name=client_name.strip(),
                tax_id=tax_id.strip(),
                submitted_by=submitted_by,
                date=datetime.now().strftime("%d/%m/%Y"),
                status=ApplicationStatus.PENDING_ANALYST,
                commercial_files=dict(commercial_files),
            )
            present = record.present_commercial_files()

            if run_validation:
                try:
                    record.validation_result = await self.ai.validate_documents(
                        list(present.values()), record.client_name, record.tax_id,
                        kinds=[kind.value for kind in present],
                    )
                except AIGatewayError as e:
                    # Informational only; the analyst sees no validation block
                    logger.warning("⚠️ Document validation unavailable for %s: %s", record.client_name, e)

            payloads = await encode_files(present)
            receipt = await self.store.save_analysis(
                record, payloads, NotificationType.COMMERCIAL_UPLOAD, self.notification_emails
            )
            logger.info("✅ Application %s stored as %s", record.id, receipt.id)

            record = record.model_copy(update={
                "id": receipt.id,
                "folder_id": receipt.folder_id or folder_id_from_url(receipt.folder_url),
                "folder_url": receipt.folder_url,
                "last_updated": _now_ms(),
            })
            if record.folder_id:
                await self.store.save_state(record.folder_id, record.snapshot())
            else:
                logger.warning("⚠️ No folder returned for %s; snapshot not saved", record.id)

            self._commit(record)
            return record

    # ========== ADVANCE (ANALYST) ==========
    async def advance(
        self,
        application_id: str,
        risk_files: Mapping[RiskDocument, Optional[FileHandle]],
        override_pin: Optional[str] = None,
    ) -> CreditApplication:
        """
        Attach the bureau reports and run the AI analysis.

        Each report must belong to the applicant. A director PIN skips
        that identity check and nothing else.
        """
        missing = [kind.value for kind in RiskDocument
                   if risk_files.get(kind) is None or not risk_files[kind].content]
        if missing:
            raise MissingInputError(f"Missing risk documents: {', '.join(missing)}")

        async with self._transition("advance"):
            record = self._working_copy(application_id)
            if record.status != ApplicationStatus.PENDING_ANALYST:
                raise InvalidTransitionError(
                    f"Application {application_id} is {record.status.value}, expected {ApplicationStatus.PENDING_ANALYST.value}"
                )

            if override_pin is not None:
                await self.pin_service.verify(override_pin)
                logger.warning("⚠️ Identity check overridden by director PIN for %s", application_id)
            else:
                await self._check_identity(record, risk_files)

            record = record.model_copy(update={"risk_files": dict(risk_files)})
            payloads = await encode_files(record.present_risk_files())
            await self.store.save_analysis(record, payloads, NotificationType.RISK_UPLOAD, self.notification_emails)

            commercial = list(record.present_commercial_files().values())
            if not commercial:
                commercial = await self._fetch_remote_files(record)
            files = commercial + list(record.present_risk_files().values())

            analyzed = await self._run_analysis(record, files)
            self._commit(analyzed)
            return analyzed

    async def _check_identity(
        self, record: CreditApplication, risk_files: Mapping[RiskDocument, Optional[FileHandle]]
    ) -> None:
        mismatches = []
        for kind in RiskDocument:
            handle = risk_files[kind]
            check = await self.ai.check_identity_match(handle, record.client_name)
            if not check.is_valid:
                reason = check.reason or f"Report belongs to {check.detected_name or 'another entity'}"
                mismatches.append((kind.value, handle.name, reason))
        if mismatches:
            raise IdentityMismatchError(mismatches)

    async def _fetch_remote_files(self, record: CreditApplication) -> List[FileHandle]:
        """Original commercial files from the store, when this process does not hold them"""
        if not record.folder_id:
            raise MissingInputError(f"Application {record.id} has no files in memory and no remote folder")
        logger.info("📥 Fetching stored documents of %s for analysis", record.id)
        return await self.store.fetch_files_for_ai(record.folder_id)

    # ========== DIRECTOR ANALYSIS ==========
    async def analyze_pending(self, application_id: str) -> CreditApplication:
        """AI analysis of a record that reached PENDING_DIRECTOR without one"""
        async with self._transition("analyze"):
            record = self._working_copy(application_id)
            if record.status != ApplicationStatus.PENDING_DIRECTOR:
                raise InvalidTransitionError(
                    f"Application {application_id} is {record.status.value}, expected {ApplicationStatus.PENDING_DIRECTOR.value}"
                )
            if record.is_deep:
                raise InvalidTransitionError(f"Application {application_id} is already analyzed")

            files = list(record.present_commercial_files().values()) + list(record.present_risk_files().values())
            if not files:
                files = await self._fetch_remote_files(record)

            analyzed = await self._run_analysis(record, files)
            self._commit(analyzed)
            self.selected = analyzed
            return analyzed

    async def _run_analysis(self, record: CreditApplication, files: List[FileHandle]) -> CreditApplication:
        """AI call plus derived fields; persists, but does not commit to the collection"""
        result = await self.ai.run_full_analysis(files, record.client_name, record.tax_id)

        ai_indicators = result.financial_indicators
        if result.financial_figures is not None:
            indicators = calculate_indicators(
                result.financial_figures,
                days_receivables=ai_indicators.days_receivables,
                days_inventory=ai_indicators.days_inventory,
                operating_cycle=ai_indicators.operating_cycle,
            )
        else:
            indicators = ai_indicators

        operating_cycle = ai_indicators.operating_cycle or 0
        risk_level = self.credit_service.risk_level_from_score(result.score_probability)
        limit = self.credit_service.adjust_ai_limit(result.suggested_limit, result.score_probability, operating_cycle)

        engine_limit = None
        if result.limit_inputs is not None:
            engine_limit = self.credit_service.calculate_limit(result.limit_inputs, risk_level, operating_cycle)

        analyzed = record.model_copy(update={
            "status": ApplicationStatus.ANALYZED,
            "ai_result": result,
            "indicators": indicators,
            "limit": limit,
            "engine_limit": engine_limit,
            "risk_level": risk_level,
            "default_probability_text": default_probability_text(result.score_probability),
            "last_updated": _now_ms(),
        })

        if analyzed.folder_id:
            await self.store.save_state(analyzed.folder_id, analyzed.snapshot())
        else:
            logger.warning("⚠️ No folder for %s; analysis snapshot not saved", analyzed.id)

        await self.store.update_sheet(
            client_id=analyzed.id,
            client_name=analyzed.client_name,
            tax_id=analyzed.tax_id,
            commercial_name=analyzed.submitted_by.name,
            detail=f"AI analysis: {result.verdict.value}, default probability {analyzed.default_probability_text}",
            status=analyzed.status.value,
        )
        logger.info("✅ %s analyzed: %s risk, limit %s", analyzed.id, risk_level.value, limit.average_result)
        return analyzed

    # ========== LOAD / REFRESH ==========
    async def load_full_record(self, application_id: str) -> CreditApplication:
        """
        Open a record for detail viewing: fetch its deep snapshot and merge
        it under the summary's id and status. Falls back to the summary.
        """
        async with self._transition("load"):
            record = self._require(application_id)
            if isinstance(record, CreditApplication):
                # Created or analyzed by this process: already the full record
                self.selected = record
                return record

            full = None
            if record.folder_id:
                try:
                    state = await self.store.load_state(record.folder_id)
                    if state:
                        full = CreditApplication.model_validate(state)
                except (RemoteStoreError, ValidationError) as e:
                    logger.warning("⚠️ Could not load snapshot of %s, using summary: %s", application_id, e)

            loaded = merge_authoritative(record, full) if full is not None else CreditApplication.from_summary(record)
            self.selected = loaded
            return loaded

    async def refresh(self, role: Optional[str] = None) -> List[Record]:
        """Replace the collection wholesale with the store's listing"""
        async with self._transition("refresh"):
            rows = await self.store.get_all()
            summaries = []
            for row in rows:
                try:
                    summary = ApplicationSummary.from_store_row(row)
                except (KeyError, ValueError, ValidationError) as e:
                    logger.warning("⚠️ Skipping unreadable listing row %s: %s", row.get("id"), e)
                    continue
                limit, term = parse_limit_detail(summary.detail)
                if limit is not None:
                    summary = summary.model_copy(update={"approved_limit": limit, "approved_term": term})
                summaries.append(summary)

            self.records = summaries
            logger.info("📋 Loaded %d applications", len(summaries))
            return self.visible_to(role)

    # ========== DECIDE (DIRECTOR) ==========
    async def decide(
        self,
        application_id: str,
        approve: bool,
        approved_limit: Optional[float] = None,
        approved_term: Optional[int] = None,
        confirm_high_risk: bool = False,
    ) -> CreditApplication:
        async with self._transition("decide"):
            record = self._deep_record(application_id)
            target = ApplicationStatus.APPROVED if approve else ApplicationStatus.DENIED
            if not record.status.can_transition_to(target):
                raise InvalidTransitionError(
                    f"Application {application_id} is {record.status.value} and cannot become {target.value}"
                )

            if approve:
                decided = self._approve(record, approved_limit, approved_term, confirm_high_risk)
                detail = format_limit_detail(decided.approved_limit, decided.approved_term)
            else:
                decided = record.model_copy(update={
                    "status": ApplicationStatus.DENIED,
                    "approved_limit": 0.0,
                    "approved_term": 0,
                    "rejection_reason": denial_reason(record.ai_result.flags.red),
                    "last_updated": _now_ms(),
                })
                detail = DENIAL_DETAIL

            self._commit(decided, as_summary=True)
            self.selected = decided
            logger.info(
                "✅ %s %s by director", decided.id, decided.status.value,
                extra={"extra": {"applicationId": decided.id, "status": decided.status.value}},
            )

            if decided.folder_id:
                self._spawn(self.store.save_state(decided.folder_id, decided.snapshot()), f"snapshot of {decided.id}")
                for file_name, html_content in decision_documents(decided):
                    self._spawn(
                        self.store.save_report(decided.folder_id, decided.folder_url, html_content, file_name),
                        f"archive of {file_name}",
                    )
            self._spawn(
                self.store.update_sheet(
                    client_id=decided.id,
                    client_name=decided.client_name,
                    tax_id=decided.tax_id,
                    commercial_name=decided.submitted_by.name,
                    detail=detail,
                    status=decided.status.value,
                ),
                f"decision notification for {decided.id}",
            )
            return decided

    def _deep_record(self, application_id: str) -> CreditApplication:
        """The deep record to decide on; a summary would drop the AI result on persist"""
        record = self._open_record(application_id)
        if record is None:
            record = self._require(application_id)
        if not isinstance(record, CreditApplication) or not record.is_deep:
            raise ShallowRecordError(
                f"Application {application_id} is not loaded with its analysis; open it before deciding"
            )
        return record

    def _approve(
        self,
        record: CreditApplication,
        approved_limit: Optional[float],
        approved_term: Optional[int],
        confirm_high_risk: bool,
    ) -> CreditApplication:
        limit = record.limit
        if approved_limit is None:
            approved_limit = limit.conservative if limit is not None else record.ai_result.suggested_limit
        if approved_limit < 0:
            raise MissingInputError("Approved limit must be a positive amount")
        if approved_term is None:
            approved_term = limit.recommended_term if limit is not None else CreditService.BASE_TERM_DAYS

        liberal = limit.liberal if limit is not None else None
        if liberal is not None and approved_limit > liberal and not confirm_high_risk:
            raise HighRiskConfirmationRequired(approved_limit, liberal)

        return record.model_copy(update={
            "status": ApplicationStatus.APPROVED,
            "approved_limit": float(approved_limit),
            "approved_term": int(approved_term),
            "rejection_reason": None,
            "last_updated": _now_ms(),
        })

    # ========== DECISION E-MAIL ==========
    async def send_decision_email(self, application_id: str, to: str) -> None:
        """Welcome letter or rejection text to the client, logged on the sheet by the store"""
        if not to or not to.strip():
            raise MissingInputError("Recipient e-mail is required")

        async with self._transition("email"):
            record = self._deep_record(application_id)
            if not record.status.is_terminal:
                raise InvalidTransitionError(f"Application {application_id} has no decision yet")

            subject, body, detail = decision_email(record)
            await self.store.send_email(
                to=to.strip(),
                subject=subject,
                body=body,
                folder_url=record.folder_url,
                log_data={
                    "clientId": record.id,
                    "clientName": record.client_name,
                    "taxId": record.tax_id,
                    "commercialName": record.submitted_by.name,
                    "status": record.status.value,
                    "detail": detail,
                },
            )
            logger.info("📧 Decision e-mail for %s sent to %s", record.id, to)
