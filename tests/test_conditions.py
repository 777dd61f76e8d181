from datetime import timedelta

import pytest

from estate_direct.core.errors import (
    ConditionAlreadyResolved,
    InvalidDateOrdering,
    InvalidTransition,
    NotAuthorized,
    NotFound,
    ValidationFailed,
)
from estate_direct.models.models import AuditLog, Notification, Transaction, User, utcnow
from estate_direct.services import conditions as condition_service


def _users(db_session, transaction):
    return db_session.get(User, transaction.buyer_user_id), db_session.get(User, transaction.seller_user_id)


def _by_type(transaction, condition_type):
    return next(c for c in transaction.conditions if c.condition_type == condition_type)


def test_conditions_created_from_offer_terms(db_session, accepted_transaction, financing_and_inspection):
    transaction = accepted_transaction(conditions=financing_and_inspection)

    assert transaction.status == "conditional"
    assert transaction.firm_date is None
    financing = _by_type(transaction, "financing")
    inspection = _by_type(transaction, "inspection")
    assert financing.title == "Financing Condition"
    assert financing.status == "pending"
    assert financing.deadline == transaction.acceptance_date + timedelta(days=5)
    assert inspection.deadline == transaction.acceptance_date + timedelta(days=7)
    assert transaction.condition_deadline == inspection.deadline


def test_custom_condition_uses_description_as_title(db_session, accepted_transaction):
    transaction = accepted_transaction(
        conditions=[{"type": "other", "description": "Survey of the east fence line", "deadline_days": 3}]
    )
    condition = transaction.conditions[0]
    assert condition.title == "Survey of the east fence line"
    assert condition.description == "Survey of the east fence line"


def test_offer_without_conditions_is_firm_at_acceptance(db_session, accepted_transaction):
    transaction = accepted_transaction()
    assert transaction.status == "firm"
    assert transaction.firm_date == transaction.acceptance_date
    assert transaction.conditions == []


def test_partial_resolution_keeps_transaction_conditional(db_session, accepted_transaction, financing_and_inspection):
    transaction = accepted_transaction(conditions=financing_and_inspection)
    buyer, seller = _users(db_session, transaction)
    financing = _by_type(transaction, "financing")

    condition_service.resolve_condition(db_session, transaction.id, financing.id, buyer, "fulfilled", notes="Approved")
    db_session.commit()

    assert financing.status == "fulfilled"
    assert financing.resolved_by_user_id == buyer.id
    assert financing.resolution_method == "manual"
    assert transaction.status == "conditional"
    events = [n.event for n in db_session.query(Notification).filter(Notification.user_id == seller.id)]
    assert "condition_resolved" in events


def test_all_favorable_outcomes_make_transaction_firm(db_session, accepted_transaction, financing_and_inspection):
    transaction = accepted_transaction(conditions=financing_and_inspection)
    buyer, seller = _users(db_session, transaction)

    condition_service.resolve_condition(
        db_session, transaction.id, _by_type(transaction, "financing").id, buyer, "fulfilled"
    )
    condition_service.resolve_condition(
        db_session, transaction.id, _by_type(transaction, "inspection").id, buyer, "waived"
    )
    db_session.commit()

    assert transaction.status == "firm"
    assert transaction.firm_date is not None
    assert transaction.current_step == "conditions_complete"
    assert [step.step for step in transaction.steps] == ["offer_accepted", "conditions_complete"]
    for user in (buyer, seller):
        events = [n.event for n in db_session.query(Notification).filter(Notification.user_id == user.id)]
        assert "transaction_firm" in events


def test_failed_condition_cancels_and_reopens_listing(db_session, accepted_transaction, financing_and_inspection):
    transaction = accepted_transaction(conditions=financing_and_inspection)
    buyer, _ = _users(db_session, transaction)

    condition_service.resolve_condition(
        db_session, transaction.id, _by_type(transaction, "financing").id, buyer, "failed"
    )
    db_session.commit()

    assert transaction.status == "cancelled"
    assert transaction.cancellation_reason == "Condition failed"
    assert transaction.cancellation_failed_condition == "financing"
    assert transaction.deposit_disposition == "returned_to_buyer"
    assert transaction.listing.status == "active"
    assert transaction.subject_property.status == "active"

    with pytest.raises(InvalidTransition):
        condition_service.resolve_condition(
            db_session, transaction.id, _by_type(transaction, "inspection").id, buyer, "waived"
        )


def test_resolved_condition_cannot_be_resolved_again(db_session, accepted_transaction, financing_and_inspection):
    transaction = accepted_transaction(conditions=financing_and_inspection)
    buyer, seller = _users(db_session, transaction)
    financing = _by_type(transaction, "financing")

    condition_service.resolve_condition(db_session, transaction.id, financing.id, buyer, "fulfilled")
    db_session.commit()

    with pytest.raises(ConditionAlreadyResolved):
        condition_service.resolve_condition(db_session, transaction.id, financing.id, seller, "failed")
    db_session.rollback()
    assert transaction.status == "conditional"


def test_resolution_guards(db_session, accepted_transaction, financing_and_inspection, create_user):
    transaction = accepted_transaction(conditions=financing_and_inspection)
    other = accepted_transaction(conditions=financing_and_inspection)
    buyer, _ = _users(db_session, transaction)
    financing = _by_type(transaction, "financing")

    with pytest.raises(ValidationFailed):
        condition_service.resolve_condition(db_session, transaction.id, financing.id, buyer, "approved")
    with pytest.raises(NotAuthorized):
        condition_service.resolve_condition(db_session, transaction.id, financing.id, create_user(), "waived")
    with pytest.raises(NotFound):
        condition_service.resolve_condition(
            db_session, transaction.id, _by_type(other, "financing").id, buyer, "waived"
        )
    with pytest.raises(NotFound):
        condition_service.resolve_condition(db_session, 9999, financing.id, buyer, "waived")


def test_extension_binds_once_both_parties_agree(db_session, accepted_transaction, financing_and_inspection):
    transaction = accepted_transaction(conditions=financing_and_inspection)
    buyer, seller = _users(db_session, transaction)
    financing = _by_type(transaction, "financing")
    original_deadline = financing.deadline
    new_deadline = original_deadline + timedelta(days=3)

    proposal = condition_service.extend_condition_deadline(
        db_session, transaction.id, financing.id, buyer, new_deadline, reason="Lender needs an appraisal"
    )
    db_session.commit()
    assert proposal.agreed_by_buyer is True
    assert proposal.is_binding is False
    assert financing.deadline == original_deadline

    agreed = condition_service.extend_condition_deadline(db_session, transaction.id, financing.id, seller, new_deadline)
    db_session.commit()

    assert agreed.id == proposal.id
    assert agreed.is_binding is True
    assert agreed.agreed_at is not None
    assert agreed.previous_deadline == original_deadline
    assert financing.deadline == new_deadline
    assert financing.status == "pending"
    assert transaction.condition_deadline == max(new_deadline, _by_type(transaction, "inspection").deadline)

    # The extension leaves the condition open.
    condition_service.resolve_condition(db_session, transaction.id, financing.id, buyer, "fulfilled")
    db_session.commit()
    assert financing.status == "fulfilled"


def test_extension_must_move_deadline_forward(db_session, accepted_transaction, financing_and_inspection, create_user):
    transaction = accepted_transaction(conditions=financing_and_inspection)
    buyer, _ = _users(db_session, transaction)
    financing = _by_type(transaction, "financing")

    with pytest.raises(InvalidDateOrdering):
        condition_service.extend_condition_deadline(
            db_session, transaction.id, financing.id, buyer, financing.deadline - timedelta(days=1)
        )
    with pytest.raises(InvalidDateOrdering):
        condition_service.extend_condition_deadline(
            db_session, transaction.id, financing.id, buyer, utcnow() - timedelta(days=1)
        )
    with pytest.raises(NotAuthorized):
        condition_service.extend_condition_deadline(
            db_session, transaction.id, financing.id, create_user(), financing.deadline + timedelta(days=1)
        )


def test_extension_refused_for_resolved_condition(db_session, accepted_transaction, financing_and_inspection):
    transaction = accepted_transaction(conditions=financing_and_inspection)
    buyer, _ = _users(db_session, transaction)
    financing = _by_type(transaction, "financing")
    condition_service.resolve_condition(db_session, transaction.id, financing.id, buyer, "waived")
    db_session.commit()

    with pytest.raises(ConditionAlreadyResolved):
        condition_service.extend_condition_deadline(
            db_session, transaction.id, financing.id, buyer, financing.deadline + timedelta(days=2)
        )


def test_repeated_failure_report_is_a_no_op(db_session, accepted_transaction, financing_and_inspection):
    transaction = accepted_transaction(conditions=financing_and_inspection)
    buyer, seller = _users(db_session, transaction)
    financing = _by_type(transaction, "financing")

    condition_service.resolve_condition(db_session, transaction.id, financing.id, buyer, "failed")
    db_session.commit()
    cancelled_at = transaction.cancelled_at

    replay = condition_service.resolve_condition(db_session, transaction.id, financing.id, seller, "failed")
    db_session.commit()

    assert replay.id == financing.id
    assert replay.status == "failed"
    assert replay.resolved_by_user_id == buyer.id
    assert transaction.status == "cancelled"
    assert transaction.cancelled_at == cancelled_at
    assert db_session.query(AuditLog).filter(AuditLog.action == "conditions.resolve").count() == 1

    with pytest.raises(ConditionAlreadyResolved):
        condition_service.resolve_condition(db_session, transaction.id, financing.id, buyer, "waived")


def test_concurrent_resolutions_make_transaction_firm_once(
    db_session, session_factory, accepted_transaction, financing_and_inspection
):
    transaction = accepted_transaction(conditions=financing_and_inspection)
    buyer, seller = _users(db_session, transaction)
    financing = _by_type(transaction, "financing")
    inspection = _by_type(transaction, "inspection")

    other = session_factory()
    try:
        # The second session reads the transaction while both conditions are still open.
        stale = other.get(Transaction, transaction.id)
        stale_seller = other.get(User, seller.id)
        assert [c.status for c in stale.conditions] == ["pending", "pending"]

        condition_service.resolve_condition(db_session, transaction.id, financing.id, buyer, "fulfilled")
        db_session.commit()
        assert transaction.status == "conditional"

        # The row lock reloads the transaction and the open-condition count is read from the database.
        condition_service.resolve_condition(other, transaction.id, inspection.id, stale_seller, "waived")
        other.commit()
    finally:
        other.close()

    db_session.expire_all()
    refreshed = db_session.get(Transaction, transaction.id)
    assert refreshed.status == "firm"
    assert refreshed.current_step == "conditions_complete"
    assert [step.step for step in refreshed.steps].count("conditions_complete") == 1
    assert {c.status for c in refreshed.conditions} == {"fulfilled", "waived"}
