from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..core.errors import NotFound
from ..models.models import Notification, User, utcnow
from ..services import email as email_service

logger = logging.getLogger(__name__)

PENDING_EMAILS_KEY = "estate_direct.pending_emails"
WARNINGS_KEY = "estate_direct.notification_warnings"

# event -> (title, message, level, link)
EVENT_TEMPLATES: Dict[str, tuple[str, str, str, str]] = {
    "offer_received": (
        "New offer received",
        "An offer of ${offer_price} was submitted on {address}.",
        "info",
        "/offers/{offer_id}",
    ),
    "offer_countered": (
        "Counter-offer received",
        "You received a counter-offer of ${offer_price} on {address}.",
        "info",
        "/offers/{offer_id}",
    ),
    "offer_accepted": (
        "Offer accepted",
        "Your offer of ${offer_price} on {address} was accepted.",
        "success",
        "/transactions/{transaction_id}",
    ),
    "offer_rejected": (
        "Offer rejected",
        "Your offer on {address} was not accepted.",
        "warning",
        "/offers/{offer_id}",
    ),
    "offer_withdrawn": (
        "Offer withdrawn",
        "The offer of ${offer_price} on {address} was withdrawn.",
        "info",
        "/offers/{offer_id}",
    ),
    "condition_resolved": (
        "Condition {outcome}",
        "The {condition_title} condition on {address} was marked {outcome}.",
        "info",
        "/transactions/{transaction_id}",
    ),
    "condition_reminder": (
        "Condition deadline approaching",
        "The {condition_title} condition on {address} is due {deadline}.",
        "warning",
        "/transactions/{transaction_id}",
    ),
    "closing_reminder": (
        "Closing approaching",
        "Closing for {address} is scheduled for {closing_date}.",
        "info",
        "/transactions/{transaction_id}",
    ),
    "transaction_firm": (
        "Transaction is firm",
        "All conditions on {address} are resolved. The sale is now firm.",
        "success",
        "/transactions/{transaction_id}",
    ),
    "transaction_cancelled": (
        "Transaction cancelled",
        "The transaction for {address} was cancelled: {reason}.",
        "warning",
        "/transactions/{transaction_id}",
    ),
    "transaction_complete": (
        "Transaction complete",
        "The sale of {address} closed at ${purchase_price}.",
        "success",
        "/transactions/{transaction_id}",
    ),
}


class _Blank(dict):
    def __missing__(self, key: str) -> str:
        return ""


@dataclass
class PendingEmail:
    event: str
    recipient: str
    subject: str
    body: str


def _render(template: str, payload: Dict[str, Any]) -> str:
    return template.format_map(_Blank({key: value for key, value in payload.items() if value is not None}))


def _add_warning(session: Session, message: str) -> None:
    session.info.setdefault(WARNINGS_KEY, []).append(message)


def notify(
    session: Session,
    event_name: str,
    recipient: Union[User, int, None],
    payload: Optional[Dict[str, Any]] = None,
) -> Optional[Notification]:
    """Record an in-app notification and queue its email until the unit of work commits.

    Never raises for delivery problems; they are logged and reported through
    ``pop_warnings`` once the session commits.
    """
    payload = payload or {}
    template = EVENT_TEMPLATES.get(event_name)
    if template is None:
        logger.warning("Notification skipped: unknown event %s", event_name)
        _add_warning(session, f"Notification '{event_name}' is not configured.")
        return None

    user = session.get(User, recipient) if isinstance(recipient, int) else recipient
    if user is None:
        logger.warning("Notification %s skipped: recipient %s not found", event_name, recipient)
        _add_warning(session, f"Notification '{event_name}' had no recipient.")
        return None

    title_template, message_template, level, link_template = template
    title = _render(title_template, payload)
    message = _render(message_template, payload)
    notification = Notification(
        user_id=user.id,
        event=event_name,
        title=title,
        message=message,
        level=level,
        link_url=_render(link_template, payload),
        payload={key: str(value) for key, value in payload.items()},
        created_at=utcnow(),
    )
    session.add(notification)

    if user.email and user.is_active:
        session.info.setdefault(PENDING_EMAILS_KEY, []).append(
            PendingEmail(event=event_name, recipient=user.email, subject=title, body=message)
        )
    logger.debug("Queued %s notification for user %s", event_name, user.id)
    return notification


def pop_warnings(session: Session) -> List[str]:
    return session.info.pop(WARNINGS_KEY, [])


def deliver_pending(session: Session) -> None:
    pending: List[PendingEmail] = session.info.pop(PENDING_EMAILS_KEY, [])
    for item in pending:
        try:
            result = email_service.send_email(item.subject, item.body, [item.recipient], category=item.event)
        except Exception as exc:  # delivery must never surface to the caller
            logger.exception("Notification %s delivery raised", item.event)
            _add_warning(session, f"Notification '{item.event}' could not be delivered: {exc}")
            continue
        if not result.ok:
            logger.warning("Notification %s delivery failed: %s", item.event, result.error)
            _add_warning(session, f"Notification '{item.event}' could not be delivered.")


@event.listens_for(Session, "after_commit")
def _deliver_after_commit(session: Session) -> None:
    deliver_pending(session)


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session) -> None:
    dropped = session.info.pop(PENDING_EMAILS_KEY, [])
    if dropped:
        logger.debug("Discarded %d queued notification emails after rollback", len(dropped))


def list_notifications(session: Session, user: User, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = session.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def mark_read(session: Session, notification_id: int, user: User) -> Notification:
    notification = session.get(Notification, notification_id)
    if notification is None or notification.user_id != user.id:
        raise NotFound("Notification not found.")
    if notification.read_at is None:
        notification.read_at = utcnow()
        session.flush()
    return notification
