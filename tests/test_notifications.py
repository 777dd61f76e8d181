from pathlib import Path

import pytest

import estate_direct.config as app_config
from estate_direct.core.errors import NotFound
from estate_direct.models.models import Notification
from estate_direct.services import email as email_service
from estate_direct.services import notifications
from estate_direct.services import offers as offer_service


@pytest.fixture
def sent(monkeypatch):
    outbox = []

    def _send(subject, body, recipients, category=None):
        outbox.append({"subject": subject, "body": body, "recipients": list(recipients), "category": category})
        return email_service.SendResult(backend="test", status_code=202, request_id=None, error=None)

    monkeypatch.setattr(notifications.email_service, "send_email", _send)
    return outbox


def test_email_sent_only_after_commit(db_session, create_listing, create_user, offer_terms, sent):
    listing = create_listing()
    offer_service.submit_offer(db_session, create_user(), listing.id, offer_terms())
    assert sent == []

    db_session.commit()

    assert len(sent) == 1
    assert sent[0]["subject"] == "New offer received"
    assert sent[0]["recipients"] == [listing.seller.email]
    assert sent[0]["category"] == "offer_received"
    assert "$490,000.00" in sent[0]["body"]
    assert "Maple Avenue" in sent[0]["body"]


def test_rollback_discards_queued_email(db_session, create_listing, create_user, offer_terms, sent):
    listing = create_listing()
    offer_service.submit_offer(db_session, create_user(), listing.id, offer_terms())
    db_session.rollback()

    assert sent == []
    assert db_session.query(Notification).count() == 0
    db_session.commit()
    assert sent == []


def test_delivery_failure_becomes_warning(db_session, create_listing, create_user, offer_terms, monkeypatch):
    def _fail(subject, body, recipients, category=None):
        return email_service.SendResult(backend="test", status_code=500, request_id=None, error="boom")

    monkeypatch.setattr(notifications.email_service, "send_email", _fail)
    listing = create_listing()
    offer = offer_service.submit_offer(db_session, create_user(), listing.id, offer_terms())
    db_session.commit()

    assert offer.status == "submitted"
    assert notifications.pop_warnings(db_session) == ["Notification 'offer_received' could not be delivered."]
    assert notifications.pop_warnings(db_session) == []
    # The in-app copy is kept even when email fails.
    assert db_session.query(Notification).filter(Notification.user_id == listing.seller_user_id).count() == 1


def test_unknown_event_and_missing_recipient_are_warnings(db_session, create_user):
    user = create_user()
    assert notifications.notify(db_session, "party_time", user, {}) is None
    assert notifications.notify(db_session, "offer_received", 12345, {}) is None
    assert len(notifications.pop_warnings(db_session)) == 2


def test_missing_payload_keys_render_blank(db_session, create_user):
    user = create_user()
    notification = notifications.notify(db_session, "transaction_cancelled", user, {"transaction_id": 7})
    assert notification.message == "The transaction for  was cancelled: ."
    assert notification.link_url == "/transactions/7"


def test_local_backend_writes_file(db_session, create_listing, create_user, offer_terms):
    listing = create_listing()
    offer_service.submit_offer(db_session, create_user(), listing.id, offer_terms())
    db_session.commit()

    files = list(Path(app_config.settings.email_output_dir).glob("*.txt"))
    assert len(files) == 1
    contents = files[0].read_text()
    assert "Subject: [Real Estate Direct] New offer received" in contents
    assert "Category: offer_received" in contents
    assert listing.seller.email in contents


def test_inbox_listing_and_mark_read(db_session, create_user):
    owner = create_user()
    other = create_user()
    first = notifications.notify(db_session, "offer_received", owner, {"offer_id": 1})
    notifications.notify(db_session, "offer_rejected", owner, {"offer_id": 2})
    db_session.commit()

    assert len(notifications.list_notifications(db_session, owner)) == 2
    notifications.mark_read(db_session, first.id, owner)
    db_session.commit()
    unread = notifications.list_notifications(db_session, owner, unread_only=True)
    assert [n.event for n in unread] == ["offer_rejected"]

    with pytest.raises(NotFound):
        notifications.mark_read(db_session, first.id, other)
