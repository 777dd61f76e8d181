from datetime import timedelta

from estate_direct.models.models import Notification, utcnow
from estate_direct.services import reminders


def _count(db_session, event):
    return db_session.query(Notification).filter(Notification.event == event).count()


def test_condition_reminders_cover_due_conditions_once(db_session, accepted_transaction, financing_and_inspection):
    transaction = accepted_transaction(conditions=financing_and_inspection)
    now = utcnow() + timedelta(days=4)

    reminded = reminders.send_condition_reminders(db_session, now=now)
    db_session.commit()

    assert [c.condition_type for c in reminded] == ["financing"]
    assert _count(db_session, "condition_reminder") == 2
    message = db_session.query(Notification).filter(Notification.event == "condition_reminder").first().message
    assert "Financing Condition" in message
    assert transaction.subject_property.street in message

    assert reminders.send_condition_reminders(db_session, now=now) == []
    assert _count(db_session, "condition_reminder") == 2


def test_condition_reminders_skip_resolved_transactions(db_session, accepted_transaction):
    accepted_transaction()
    assert reminders.send_condition_reminders(db_session, now=utcnow() + timedelta(days=4)) == []


def test_closing_reminders(db_session, accepted_transaction):
    transaction = accepted_transaction()

    assert reminders.send_closing_reminders(db_session) == []
    reminded = reminders.send_closing_reminders(db_session, now=utcnow() + timedelta(days=55))
    db_session.commit()

    assert reminded == [transaction]
    assert _count(db_session, "closing_reminder") == 2


def test_condition_reminders_repeat_on_the_next_reminder_day(db_session, accepted_transaction, financing_and_inspection):
    accepted_transaction(conditions=financing_and_inspection)
    first_run = utcnow() + timedelta(days=3, hours=1)

    assert [c.condition_type for c in reminders.send_condition_reminders(db_session, now=first_run)] == ["financing"]
    db_session.commit()
    assert reminders.send_condition_reminders(db_session, now=first_run) == []

    next_day = first_run + timedelta(days=1)
    assert [c.condition_type for c in reminders.send_condition_reminders(db_session, now=next_day)] == ["financing"]
    db_session.commit()
    sent_days = {
        row.payload["reminder_date"]
        for row in db_session.query(Notification).filter(Notification.event == "condition_reminder")
    }
    assert next_day.date().isoformat() in sent_days
    assert first_run.date().isoformat() in sent_days
