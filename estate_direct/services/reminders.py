from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from ..constants import OPEN_CONDITION_STATES
from ..models.models import Condition, Notification, Transaction, as_utc, utcnow
from ..services import notifications

logger = logging.getLogger(__name__)

CONDITION_REMINDER_EVENT = "condition_reminder"
CLOSING_REMINDER_EVENT = "closing_reminder"
ACTIVE_TRANSACTION_STATES = ("conditional", "firm", "closing")


def _already_sent(session: Session, event: str, user_id: int, key: str, value: int, reminder_date: str) -> bool:
    # One reminder per subject per recipient per reminder day, where the day comes from the run's clock.
    rows = session.query(Notification).filter(Notification.event == event, Notification.user_id == user_id).all()
    return any(
        (row.payload or {}).get(key) == str(value) and (row.payload or {}).get("reminder_date") == reminder_date
        for row in rows
    )

def send_condition_reminders(session: Session, now: Optional[datetime] = None, window_hours: int = 48) -> List[Condition]:
    """Remind both parties about open conditions whose deadline falls inside the window."""
    now = as_utc(now) or utcnow()
    reminder_date = now.date().isoformat()
    cutoff = now + timedelta(hours=window_hours)

    due = (
        session.query(Condition)
        .join(Transaction, Condition.transaction_id == Transaction.id)
        .filter(
            Transaction.status == "conditional",
            Condition.status.in_(OPEN_CONDITION_STATES),
            Condition.deadline >= now,
            Condition.deadline <= cutoff,
        )
        .order_by(Condition.deadline.asc())
        .all()
    )

    reminded: List[Condition] = []
    for condition in due:
        transaction = condition.transaction
        payload = {
            "transaction_id": transaction.id,
            "condition_id": condition.id,
            "condition_title": condition.title,
            "address": transaction.subject_property.address,
            "deadline": f"{condition.deadline:%b %d, %Y %H:%M} UTC",
            "reminder_date": reminder_date,
        }
        sent = False
        for user_id in (transaction.buyer_user_id, transaction.seller_user_id):
            if _already_sent(session, CONDITION_REMINDER_EVENT, user_id, "condition_id", condition.id, reminder_date):
                continue
            notifications.notify(session, CONDITION_REMINDER_EVENT, user_id, payload)
            sent = True
        if sent:
            reminded.append(condition)
    session.flush()
    if reminded:
        logger.info("Sent condition reminders for %d conditions", len(reminded))
    return reminded


def send_closing_reminders(session: Session, now: Optional[datetime] = None, window_days: int = 7) -> List[Transaction]:
    now = as_utc(now) or utcnow()
    reminder_date = now.date().isoformat()
    cutoff = now + timedelta(days=window_days)

    closing_soon = (
        session.query(Transaction)
        .filter(
            Transaction.status.in_(ACTIVE_TRANSACTION_STATES),
            Transaction.closing_date >= now,
            Transaction.closing_date <= cutoff,
        )
        .order_by(Transaction.closing_date.asc())
        .all()
    )

    reminded: List[Transaction] = []
    for transaction in closing_soon:
        payload = {
            "transaction_id": transaction.id,
            "address": transaction.subject_property.address,
            "closing_date": f"{transaction.closing_date:%b %d, %Y}",
            "reminder_date": reminder_date,
        }
        sent = False
        for user_id in (transaction.buyer_user_id, transaction.seller_user_id):
            if _already_sent(session, CLOSING_REMINDER_EVENT, user_id, "transaction_id", transaction.id, reminder_date):
                continue
            notifications.notify(session, CLOSING_REMINDER_EVENT, user_id, payload)
            sent = True
        if sent:
            reminded.append(transaction)
    session.flush()
    return reminded
