# Backend/services/document_validation.py
"""
Deterministic compliance rules applied to the AI's per-document findings.

The AI only reads facts off each file (dates, names, signatures); the
verdict on each document is decided here so it is reproducible.
"""

import re
import unicodedata
from datetime import date, datetime
from typing import Dict, List, Optional

from models.credit_schemas import (
    CommercialDocument, DocumentFinding, DocumentValidation, ValidationResult
)


# Maximum document age in days, counted from the issue date to today
MAX_AGE_DAYS: Dict[CommercialDocument, int] = {
    CommercialDocument.CHAMBER_OF_COMMERCE: 60,
    CommercialDocument.BANK_CERTIFICATE: 60,
    CommercialDocument.TRADE_REFERENCE: 90,
}

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d")


def parse_document_date(raw: Optional[str]) -> Optional[date]:
    if not raw:
        return None
    raw = raw.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw[:10], fmt).date()
        except ValueError:
            continue
    return None


def normalize_name(name: str) -> str:
    """Upper-case, strip accents and punctuation, collapse whitespace"""
    decomposed = unicodedata.normalize("NFKD", name)
    ascii_only = "".join(c for c in decomposed if not unicodedata.combining(c))
    cleaned = re.sub(r"[^A-Z0-9 ]", " ", ascii_only.upper())
    return " ".join(cleaned.split())


def normalize_tax_id(tax_id: str) -> str:
    return re.sub(r"\D", "", tax_id or "")


def tax_ids_match(declared: str, detected: str) -> bool:
    """Digits only; the check digit may be present on one side and not the other"""
    a, b = normalize_tax_id(declared), normalize_tax_id(detected)
    if not a or not b:
        return False
    return a == b or a.startswith(b) or b.startswith(a)


def names_match(declared: str, detected: str) -> bool:
    a, b = normalize_name(declared), normalize_name(detected)
    return bool(a) and bool(b) and (a == b or a in b or b in a)


def _kind_of(finding: DocumentFinding) -> Optional[CommercialDocument]:
    if not finding.kind:
        return None
    try:
        return CommercialDocument(finding.kind)
    except ValueError:
        return None


def evaluate_finding(
    finding: DocumentFinding,
    legal_name: str,
    tax_id: str,
    today: date,
) -> DocumentValidation:
    """Apply the rule for one document"""
    kind = _kind_of(finding)

    def invalid(issue: str) -> DocumentValidation:
        return DocumentValidation(
            file_name=finding.file_name, is_valid=False, issue=issue, detected_date=finding.detected_date
        )

    if not finding.is_present:
        return invalid("Document missing or unreadable")

    if finding.tax_id and tax_id and not tax_ids_match(tax_id, finding.tax_id):
        return invalid(f"Tax id does not match ({finding.tax_id})")

    if finding.holder_name and legal_name and not names_match(legal_name, finding.holder_name):
        return invalid(f"Holder name does not match ({finding.holder_name})")

    if kind in MAX_AGE_DAYS:
        max_age = MAX_AGE_DAYS[kind]
        issued = parse_document_date(finding.detected_date)
        if issued is None:
            return invalid("Issue date not detected")
        age = (today - issued).days
        if age > max_age:
            return invalid(f"Expired ({age} days old, maximum {max_age})")

    if kind == CommercialDocument.OWNERSHIP_COMPOSITION:
        missing = []
        if not finding.legal_rep_signature:
            missing.append("legal representative")
        if not finding.accountant_signature:
            missing.append("accountant / statutory auditor")
        if missing:
            return invalid(f"Missing signature: {', '.join(missing)}")

    return DocumentValidation(file_name=finding.file_name, is_valid=True, detected_date=finding.detected_date)


def apply_rules(
    findings: List[DocumentFinding],
    legal_name: str,
    tax_id: str,
    today: Optional[date] = None,
) -> ValidationResult:
    today = today or date.today()
    per_file = [evaluate_finding(f, legal_name, tax_id, today) for f in findings]
    failures = [v for v in per_file if not v.is_valid]

    if not per_file:
        summary = "No documents were analyzed."
    elif not failures:
        summary = "All documents are valid."
    else:
        summary = f"{len(failures)} document(s) with issues: " + "; ".join(
            f"{v.file_name}: {v.issue}" for v in failures
        )

    return ValidationResult(overall_valid=bool(per_file) and not failures, per_file=per_file, summary=summary)
