"""Decision letters sent to the client after the director decides."""

import html
from datetime import date
from typing import List, Optional, Tuple

from config.settings import settings
from models.credit_schemas import ApplicationStatus, CreditApplication
from services.formatting import format_cop, format_limit_detail, number_to_words

DENIAL_DETAIL = "Application denied"
POLICY_FALLBACK_REASON = "Internal credit risk policy."


def welcome_letter_html(application: CreditApplication, today: Optional[date] = None) -> str:
    """Approval letter with the limit in figures and words and the payment term"""
    today = today or date.today()
    company = html.escape(settings.COMPANY_NAME)
    client = html.escape(application.client_name)
    limit = application.approved_limit or 0
    term = application.approved_term
    if term is None and application.limit is not None:
        term = application.limit.recommended_term

    return f"""
    <div style="font-family: Arial, sans-serif; color: #333; line-height: 1.6; max-width: 800px; width: 100%;">
        <p><strong>Bogotá, {today.strftime("%B %d, %Y")}</strong></p>

        <p>Messrs.<br>
        <strong>{client}</strong><br>
        Purchasing Department</p>

        <p><strong>Subject: Welcome to {company}! Credit limit confirmation.</strong></p>

        <p>Dear Sirs,</p>

        <p>It is a pleasure for <strong>{company}</strong> to welcome you. We look forward to a solid
        relationship built on mutual growth and productivity.</p>

        <p>We are pleased to confirm the approval of your credit line under the following conditions:</p>

        <ul style="background-color: #f9f9f9; padding: 20px; border-left: 4px solid #DA291C; list-style-type: none;">
            <li><strong>• Approved limit:</strong> {format_cop(limit)} ({number_to_words(limit)})</li>
            <li><strong>• Payment term:</strong> {term} days.</li>
        </ul>

        <p><strong>Working with us:</strong></p>
        <ol>
            <li><strong>Orders:</strong> please place every order through a purchase order sent to your sales contact.</li>
            <li><strong>Deliveries:</strong> sign and stamp the invoice copy on receipt.</li>
            <li><strong>Payments:</strong> notify payments to the collections department.</li>
        </ol>

        <p>We remain at your disposal. Thank you for your trust.</p>

        <br>
        <p>Sincerely,</p>
        <br>
        <p><strong>National Credit Director</strong><br>
        {company}</p>
    </div>
    """


def rejection_email_text(application: CreditApplication) -> str:
    reason = application.rejection_reason or POLICY_FALLBACK_REASON
    return f"""Good day,

Regarding the credit application for {application.client_name} ({application.tax_id}), after the financial
analysis and the credit bureau review, the application does NOT meet our current requirements for a
direct credit line.

Decision detail:
{reason}

Recommendation:
We recommend continuing on cash terms for the next 12 months and requesting a new evaluation in the
next fiscal period.

Sincerely,

Credit Department
{settings.COMPANY_NAME}"""


def decision_email(application: CreditApplication) -> Tuple[str, str, str]:
    """(subject, HTML body, sheet detail line) for a decided application"""
    if application.status == ApplicationStatus.APPROVED:
        subject = f"Credit limit approval {settings.COMPANY_NAME} - {application.client_name}"
        body = welcome_letter_html(application)
        detail = format_limit_detail(application.approved_limit or 0, application.approved_term or 0)
    else:
        subject = f"Credit application response - {application.client_name}"
        body = html.escape(rejection_email_text(application)).replace("\n", "<br>")
        detail = DENIAL_DETAIL
    return subject, body, detail


def credit_report_html(application: CreditApplication, today: Optional[date] = None) -> str:
    """Internal credit report archived in the client's folder with the decision"""
    today = today or date.today()
    ai = application.ai_result
    limit = application.limit

    def row(label: str, value: str) -> str:
        return f"<tr><td><strong>{label}</strong></td><td>{html.escape(value)}</td></tr>"

    rows = [
        row("Client", application.client_name),
        row("Tax ID", application.tax_id),
        row("Commercial", application.submitted_by.name),
        row("Decision", application.status.value),
        row("Date", today.strftime("%d/%m/%Y")),
    ]
    if application.risk_level is not None:
        rows.append(row("Risk level", application.risk_level.value))
    if application.default_probability_text:
        rows.append(row("Probability of default", application.default_probability_text))
    if limit is not None:
        rows.append(row("Conservative limit", format_cop(limit.conservative)))
        rows.append(row("Liberal limit", format_cop(limit.liberal)))
    rows.append(row("Approved limit", format_cop(application.approved_limit or 0)))
    rows.append(row("Term", f"{application.approved_term or 0} days"))
    if application.rejection_reason:
        rows.append(row("Rejection reason", application.rejection_reason))

    green = "".join(f"<li>{html.escape(f)}</li>" for f in ai.flags.green) if ai else ""
    red = "".join(f"<li>{html.escape(f)}</li>" for f in ai.flags.red) if ai else ""
    justification = html.escape(ai.justification or "") if ai else ""

    return f"""
    <div style="font-family: Arial, sans-serif; color: #333; max-width: 800px; width: 100%;">
        <h2 style="color: #DA291C;">Credit report - {html.escape(application.client_name)}</h2>
        <table style="width: 100%; border-collapse: collapse;">{"".join(rows)}</table>
        <h3>Analysis</h3>
        <p>{justification}</p>
        <h3>Strengths</h3>
        <ul>{green}</ul>
        <h3>Alerts</h3>
        <ul>{red}</ul>
        <p style="font-size: 11px;">{html.escape(settings.COMPANY_NAME)} - Credit Department</p>
    </div>
    """


def decision_documents(application: CreditApplication) -> List[Tuple[str, str]]:
    """(file name, HTML) pairs archived when the director decides"""
    client = application.client_name
    if application.status == ApplicationStatus.APPROVED:
        return [
            (f"Credit_Report_{client}.pdf", credit_report_html(application)),
            (f"Welcome_Letter_{client}.pdf", welcome_letter_html(application)),
        ]
    return [(f"Credit_Report_DENIED_{client}.pdf", credit_report_html(application))]
