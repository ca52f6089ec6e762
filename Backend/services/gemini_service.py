import json
import logging
import re
from datetime import date
from functools import lru_cache
from typing import Any, List, Optional, Type, TypeVar

from google import genai
from google.genai.types import GenerateContentConfig, Part
from pydantic import BaseModel, ValidationError

from config.settings import settings
from models.credit_schemas import (
    AIResult, DocumentFindings, FileHandle, IdentityCheck, IdentityExtraction, ValidationResult
)
from services.document_validation import apply_rules
from services.exceptions import AIGatewayError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

DETERMINISTIC = GenerateContentConfig(temperature=0, response_mime_type="application/json")

# Errors worth retrying on the next model in the list
_TRANSIENT_MARKERS = ("503", "overloaded", "UNAVAILABLE", "Empty response")


def strip_json_fences(text: str) -> str:
    """Pull the JSON object out of a response that may be wrapped in markdown"""
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()
    if not text.startswith("{"):
        match = re.search(r"(\{[\s\S]*\})", text)
        if not match:
            raise AIGatewayError(f"AI returned non-JSON output: {text[:200]}")
        text = match.group(1)
    return text


def parse_response(text: Optional[str], schema: Type[T]) -> T:
    """Validate an AI JSON response against its schema; any failure is a gateway error"""
    if not text:
        raise AIGatewayError("Empty response from AI service")
    try:
        return schema.model_validate(json.loads(strip_json_fences(text)))
    except json.JSONDecodeError as e:
        raise AIGatewayError(f"AI returned malformed JSON: {e}") from e
    except ValidationError as e:
        raise AIGatewayError(f"AI response does not match {schema.__name__}: {e.error_count()} error(s)") from e


def to_part(handle: FileHandle) -> Part:
    return Part.from_bytes(data=handle.content, mime_type=handle.mime_type)


class GeminiService:
    """Document extraction and credit analysis on Gemini"""

    def __init__(self, client: Optional[Any] = None, api_key: Optional[str] = None):
        self._client = client
        self._api_key = settings.GEMINI_API_KEY if api_key is None else api_key

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise AIGatewayError("Gemini API key not configured")
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def generate_with_fallback(self, contents: List[Any], models: List[str]) -> str:
        """
        Generate content, moving to the next model when one is overloaded
        or returns an empty body. Other errors stop immediately.
        """
        client = self.client
        last_error: Optional[Exception] = None
        for model_name in models:
            try:
                logger.info("🤖 Trying model: %s", model_name)
                response = await client.aio.models.generate_content(
                    model=model_name,
                    contents=contents,
                    config=DETERMINISTIC,
                )
                if not response.text:
                    raise AIGatewayError("Empty response from model")
                return response.text
            except AIGatewayError as e:
                last_error = e
                logger.warning("⚠️ Model %s failed: %s", model_name, e)
                continue
            except Exception as e:
                error_msg = str(e)
                logger.warning("⚠️ Model %s failed: %s", model_name, error_msg[:100])
                last_error = e
                if any(marker in error_msg for marker in _TRANSIENT_MARKERS):
                    continue
                raise AIGatewayError(f"AI service error: {error_msg}") from e

        raise AIGatewayError(f"All models failed: {last_error}")

    # ========== IDENTITY ==========
    async def extract_identity(self, tax_registration: FileHandle) -> IdentityExtraction:
        """Legal name and tax id from the tax registration (RUT) document"""
        prompt = """
Read this Colombian tax registration document (RUT) and extract:
1. legalName: the exact legal name of the company.
2. taxId: the tax identification number (NIT), without the check digit when possible.

Return a JSON object: {"legalName": string, "taxId": string}. Use null for anything not found.
"""
        text = await self.generate_with_fallback([to_part(tax_registration), prompt], settings.GEMINI_MODELS_FLASH)
        return parse_response(text, IdentityExtraction)

    async def check_identity_match(self, report: FileHandle, legal_name: str) -> IdentityCheck:
        """Does this credit bureau report belong to ``legal_name``?"""
        prompt = f"""
This is a credit bureau report. Identify the company the report is about and decide
whether it is the same legal entity as "{legal_name}". Ignore differences in case,
accents, punctuation and company-type suffixes (S.A.S., LTDA, S.A.).

Return a JSON object: {{"isValid": boolean, "detectedName": string, "reason": string}}.
"reason" explains the mismatch and is null when isValid is true.
"""
        text = await self.generate_with_fallback([to_part(report), prompt], settings.GEMINI_MODELS_FLASH)
        return parse_response(text, IdentityCheck)

    # ========== DOCUMENT VALIDATION ==========
    async def validate_documents(
        self,
        files: List[FileHandle],
        legal_name: str,
        tax_id: str,
        kinds: Optional[List[str]] = None,
        today: Optional[date] = None,
    ) -> ValidationResult:
        """
        Ask the AI for per-document facts, then apply the compliance rules
        (expiry windows, signatures, name / tax id match) locally.
        """
        today = today or date.today()
        listing = "\n".join(
            f"- file {i + 1}: {f.name}" + (f" (declared kind: {kinds[i]})" if kinds and i < len(kinds) else "")
            for i, f in enumerate(files)
        )
        prompt = f"""
The attached files are the onboarding documents of {legal_name} (tax id {tax_id}), in this order:
{listing}

For each file report only what is written on it:
- fileName: as listed above
- kind: one of taxRegistration, financialStatements, chamberOfCommerce, tradeReference,
  bankCertificate, legalRepId, ownershipComposition, bankStatements
- isPresent: false if the file is blank, unreadable or clearly not the declared kind
- detectedDate: issue / expedition date as YYYY-MM-DD, null if none
- holderName: company name printed on the document, null if none
- taxId: tax id printed on the document, null if none
- legalRepSignature / accountantSignature: for the ownership composition document,
  whether the legal representative and the accountant (or statutory auditor) signed

Return a JSON object: {{"documents": [...]}}.
"""
        text = await self.generate_with_fallback([*(to_part(f) for f in files), prompt], settings.GEMINI_MODELS_FLASH)
        findings = parse_response(text, DocumentFindings)
        return apply_rules(findings.documents, legal_name, tax_id, today)

    # ========== FULL ANALYSIS ==========
    async def run_full_analysis(self, files: List[FileHandle], client_name: str, tax_id: str) -> AIResult:
        """One-shot financial and risk analysis over every document of the application"""
        if not files:
            raise AIGatewayError("No documents available for analysis")

        prompt = f"""
Act as a senior credit risk auditor. Analyze the attached documents for the client
{client_name} (tax id {tax_id}).

1. Default probability: estimate the probability (0 to 1) that the client falls into
   arrears, using revenue, assets, liabilities, inferred sector, payment history and
   score from the credit bureaus, and company age.
2. Financial statements: report the raw figures (financialFigures) and the indicators
   (financialIndicators): current ratio, acid test, working capital, debt ratios,
   solvency, margins, ROA, ROE, EBIT, EBITDA, Altman Z, days receivables, days
   inventory, operating cycle.
3. Suggested limit: report the raw inputs (limitInputs) and the breakdown
   (limitVariables) of the six-indicator rule:
   a. bureau A limit, average of the last 3 periods, x 10%
   b. platform score limit, as is
   c. bureau B credit opinion x 10% (use the current opinion only)
   d. last annual net income / 12
   e. average of trade references
   f. ((EBITDA - taxes - financial expenses + cash) / 2) / 12
   suggestedLimit is the average of a-f.

Return ONE JSON object with keys: verdict ("APPROVED" | "DENIED"), suggestedLimit,
scoreProbability, justification, financialFigures, financialIndicators,
indicatorInterpretations (indicator name -> one sentence), limitInputs
(bureauALastPeriods, platformScoreLimit, bureauBOpinionLimit, annualNetIncome,
tradeReferences, ebitda, taxes, financialExpenses, cash), limitVariables,
flags ({{"green": [...], "red": [...]}}).
"""
        text = await self.generate_with_fallback([*(to_part(f) for f in files), prompt], settings.GEMINI_MODELS_PRO)
        result = parse_response(text, AIResult)
        logger.info("✅ AI analysis for %s: %s, score %.3f", client_name, result.verdict.value, result.score_probability)
        return result


@lru_cache()
def get_gemini_service() -> GeminiService:
    return GeminiService()
