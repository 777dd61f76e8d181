import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Category, Email, Mail

from ..config import settings

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "[Real Estate Direct]"
FOOTER = (
    "You are receiving this message because you are a party to an offer or "
    "transaction on Real Estate Direct. Details are in your notification inbox."
)


@dataclass
class SendResult:
    backend: str
    status_code: Optional[int]
    request_id: Optional[str]
    error: Optional[str]

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class OutgoingEmail:
    subject: str
    body: str
    recipients: List[str] = field(default_factory=list)
    category: Optional[str] = None

    @property
    def full_subject(self) -> str:
        return f"{SUBJECT_PREFIX} {self.subject}"

    @property
    def full_body(self) -> str:
        return f"{self.body}\n\n--\n{FOOTER}\n"


def _mask_email(value: str) -> str:
    name, _, domain = value.partition("@")
    if not domain:
        return "***"
    return f"{name[:1]}***@{domain}"


def _dedupe(recipients: Iterable[str]) -> List[str]:
    seen = set()
    result: List[str] = []
    for address in recipients:
        cleaned = (address or "").strip()
        if cleaned and cleaned.lower() not in seen:
            seen.add(cleaned.lower())
            result.append(cleaned)
    return result


def _backend() -> str:
    return (settings.email_backend or "local").strip().strip("'\"").lower()


def _write_to_outbox(message: OutgoingEmail) -> Path:
    """Drop the message into the local outbox directory, one text file per email."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
    output_dir = Path(settings.email_output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"{stamp}_{message.category or 'general'}.txt"
    headers = [
        f"Subject: {message.full_subject}",
        f"Recipients: {', '.join(message.recipients)}",
        f"Category: {message.category or 'general'}",
    ]
    path.write_text("\n".join(headers) + "\n\n" + message.full_body)
    logger.info("Wrote email to local outbox %s", path)
    return path


def _send_via_sendgrid(message: OutgoingEmail) -> SendResult:
    if not settings.sendgrid_api_key:
        raise RuntimeError("SendGrid backend requires SENDGRID_API_KEY.")

    mail = Mail(
        from_email=Email(
            email=settings.email_from_address or "no-reply@realestatedirect.ca",
            name=settings.email_from_name,
        ),
        to_emails=message.recipients,
        subject=message.full_subject,
        plain_text_content=message.full_body,
    )
    if message.category:
        mail.category = Category(message.category)
    response = SendGridAPIClient(settings.sendgrid_api_key).send(mail)

    headers = response.headers if isinstance(response.headers, dict) else {}
    request_id = headers.get("X-Message-Id") or headers.get("X-Request-Id")
    logger.info("SendGrid accepted %s email (status=%s id=%s)", message.category, response.status_code, request_id)
    return SendResult(backend="sendgrid", status_code=response.status_code, request_id=request_id, error=None)


def send_email(subject: str, body: str, recipients: Iterable[str], category: Optional[str] = None) -> SendResult:
    """Deliver a plain-text notification email.

    Never raises: a missing recipient or a provider failure is reported on the
    returned result so the caller can turn it into a warning.
    """
    message = OutgoingEmail(subject=subject, body=body, recipients=_dedupe(recipients), category=category)
    backend = _backend()
    if not message.recipients:
        return SendResult(backend=backend, status_code=None, request_id=None, error="No recipients provided.")

    logger.info(
        "Sending %s email via %s to %s",
        category or "general",
        backend,
        [_mask_email(address) for address in message.recipients[:3]],
    )
    try:
        if backend == "sendgrid":
            return _send_via_sendgrid(message)
        if backend != "local":
            logger.warning("Unknown EMAIL_BACKEND '%s'; writing to the local outbox.", backend)
        _write_to_outbox(message)
        return SendResult(backend="local", status_code=200, request_id=None, error=None)
    except Exception as exc:
        logger.exception("Email delivery via %s failed", backend)
        return SendResult(backend=backend, status_code=getattr(exc, "status_code", None), request_id=None, error=str(exc))
