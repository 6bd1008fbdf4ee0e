"""
Notification service — template rendering + e-mail dispatch.

Ledger operations only plan notifications; the routes hand the planned list
to dispatch_notifications() as a background task, after the transaction has
committed. Delivery is best effort: a failure is logged and never reaches
the caller or the ledger.
"""

from typing import Iterable

import structlog

from procurement.services.email_service import send_email
from procurement.services.ledger import Notification

logger = structlog.get_logger()

# ---------- Template registry ----------

TEMPLATES = {
    "budget_allocated": {
        "subject": "[Procurement] Budget for FY {fiscal_year} — {department_name}",
        "html": (
            "<h2>Budget Created</h2>"
            "<p>A budget of <strong>{amount_display}</strong> has been set up for "
            "<strong>{department_name}</strong> for fiscal year {fiscal_year}.</p>"
        ),
    },
    "budget_transfer": {
        "subject": "[Procurement] Budget transfer — FY {fiscal_year}",
        "html": (
            "<h2>Budget Transfer</h2>"
            "<p><strong>{amount_display}</strong> has been moved from department "
            "{from_department_id} to department {to_department_id} "
            "for fiscal year {fiscal_year}.</p>"
        ),
    },
    "po_created": {
        "subject": "[Procurement] Purchase Order {po_number} — Created",
        "html": (
            "<h2>Purchase Order Created</h2>"
            "<p>Purchase order <strong>{po_number}</strong> has been created.</p>"
            "<p><strong>Amount:</strong> {amount_display}</p>"
        ),
    },
    "po_approved": {
        "subject": "[Procurement] Purchase Order {po_number} — Approved",
        "html": (
            "<h2>Purchase Order Approved</h2>"
            "<p>Purchase order <strong>{po_number}</strong> has been "
            "<span style='color:green'>approved</span>.</p>"
            "<p><strong>Amount:</strong> {amount_display}</p>"
        ),
    },
    "po_rejected": {
        "subject": "[Procurement] Purchase Order {po_number} — Rejected",
        "html": (
            "<h2>Purchase Order Rejected</h2>"
            "<p>Purchase order <strong>{po_number}</strong> has been "
            "<span style='color:red'>rejected</span>.</p>"
            "<p><strong>Reason:</strong> {reason}</p>"
        ),
    },
    "po_completed": {
        "subject": "[Procurement] Purchase Order {po_number} — Completed",
        "html": (
            "<h2>Purchase Order Completed</h2>"
            "<p>Purchase order <strong>{po_number}</strong> has been marked complete.</p>"
        ),
    },
    "contract_created": {
        "subject": "[Procurement] Contract {contract_number} — Created",
        "html": (
            "<h2>Contract Created</h2>"
            "<p>Contract <strong>{contract_number}</strong> ({title}) has been drafted "
            "and is awaiting approval.</p>"
        ),
    },
    "contract_approved": {
        "subject": "[Procurement] Contract {contract_number} — Approved",
        "html": (
            "<h2>Contract Approved</h2>"
            "<p>Contract <strong>{contract_number}</strong> ({title}) is now active "
            "until {end_date}.</p>"
        ),
    },
    "contract_rejected": {
        "subject": "[Procurement] Contract {contract_number} — Rejected",
        "html": (
            "<h2>Contract Rejected</h2>"
            "<p>Contract <strong>{contract_number}</strong> has been "
            "<span style='color:red'>rejected</span>.</p>"
            "<p><strong>Reason:</strong> {reason}</p>"
        ),
    },
    "contract_terminated": {
        "subject": "[Procurement] Contract {contract_number} — Terminated",
        "html": (
            "<h2>Contract Terminated</h2>"
            "<p>Contract <strong>{contract_number}</strong> has been terminated.</p>"
            "<p><strong>Reason:</strong> {reason}</p>"
        ),
    },
    "contract_renewed": {
        "subject": "[Procurement] Contract {contract_number} — Renewed",
        "html": (
            "<h2>Contract Renewed</h2>"
            "<p>Contract <strong>{contract_number}</strong> has been renewed "
            "and runs until {end_date}.</p>"
        ),
    },
}


def _format_amount(cents: int) -> str:
    """Convert cents to display string (e.g. 500000 → '5,000.00')."""
    return f"{cents / 100:,.2f}"


async def send_notification(
    template_id: str,
    recipient_emails: list[str],
    context: dict,
) -> bool:
    """Render a template and send it. Returns False when nothing was sent."""
    template = TEMPLATES.get(template_id)
    if not template:
        logger.warning("notification_template_not_found", template_id=template_id)
        return False

    emails = [e for e in (recipient_emails or []) if e]
    if not emails:
        logger.warning("notification_no_recipients", template_id=template_id)
        return False

    context = dict(context)
    if "amount_cents" in context and "amount_display" not in context:
        context["amount_display"] = _format_amount(context["amount_cents"])

    try:
        subject = template["subject"].format(**context)
        html = template["html"].format(**context)
    except KeyError as e:
        logger.error("notification_template_render_error", template_id=template_id, missing_key=str(e))
        return False

    result = await send_email(emails, subject, html)

    logger.info(
        "notification_sent",
        template_id=template_id,
        recipients=emails,
        success=result,
    )
    return result


async def dispatch_notifications(notifications: Iterable[Notification]) -> None:
    """Send every planned notification; failures are logged and swallowed."""
    for notification in notifications:
        try:
            await send_notification(
                notification.template_id,
                notification.recipient_emails,
                notification.context,
            )
        except Exception as exc:
            logger.error(
                "notification_failed",
                template_id=notification.template_id,
                error=str(exc),
            )
