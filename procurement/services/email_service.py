"""Brevo transactional e-mail transport, used by the notification dispatcher."""

import logging
from typing import List, Optional

import httpx
import structlog
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from procurement.config import settings

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"

_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


class EmailTransientError(Exception):
    """5xx or network failure; the send is retried."""


@retry(
    retry=retry_if_exception_type(EmailTransientError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    before_sleep=before_sleep_log(_std_logger, logging.WARNING),
    reraise=True,
)
async def _post_message(payload: dict) -> bool:
    client = get_http_client()
    headers = {
        "accept": "application/json",
        "api-key": settings.BREVO_API_KEY,
        "content-type": "application/json",
    }
    recipients = [r["email"] for r in payload["to"]]
    try:
        response = await client.post(BREVO_API_URL, headers=headers, json=payload)
    except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
        logger.warning("email_network_error_retrying", error=str(exc), to=recipients)
        raise EmailTransientError(str(exc)) from exc

    if response.status_code in (201, 202):
        logger.info(
            "email_sent",
            to=recipients,
            subject=payload["subject"],
            message_id=response.json().get("messageId"),
        )
        return True

    if response.status_code >= 500:
        logger.warning("email_provider_5xx_retrying", status_code=response.status_code, to=recipients)
        raise EmailTransientError(f"Brevo returned {response.status_code}")

    # 4xx: the request itself is wrong
    logger.error(
        "email_rejected",
        status_code=response.status_code,
        response=response.text[:500],
        to=recipients,
    )
    return False


async def send_email(
    to_emails: List[str],
    subject: str,
    html_content: str,
    sender_name: Optional[str] = None,
    sender_email: Optional[str] = None,
) -> bool:
    """
    Send one message through the Brevo REST API.

    Returns True when Brevo accepted the message. Transient failures are
    retried three times with exponential back-off before giving up.
    """
    if not settings.BREVO_API_KEY:
        logger.warning("email_transport_disabled", reason="BREVO_API_KEY not set")
        return False
    if not to_emails:
        logger.warning("email_no_recipients")
        return False

    payload = {
        "sender": {
            "name": sender_name or settings.APP_NAME,
            "email": sender_email or settings.EMAIL_FROM_ADDRESS,
        },
        "to": [{"email": email} for email in to_emails],
        "subject": subject,
        "htmlContent": html_content,
    }

    try:
        return await _post_message(payload)
    except EmailTransientError as exc:
        logger.error("email_retries_exhausted", error=str(exc), to=to_emails, subject=subject)
        return False
