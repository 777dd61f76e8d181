from decimal import Decimal

import pytest

from estate_direct.constants import TRANSACTION_STEPS
from estate_direct.core.errors import InvalidTransition, NotAuthorized, NotFound, ValidationFailed
from estate_direct.models.models import Notification, User
from estate_direct.services import transactions as transaction_service


def _users(db_session, transaction):
    return db_session.get(User, transaction.buyer_user_id), db_session.get(User, transaction.seller_user_id)


def _walk_to(db_session, transaction, actor, target):
    start = TRANSACTION_STEPS.index(transaction.current_step) + 1
    for step in TRANSACTION_STEPS[start : TRANSACTION_STEPS.index(target) + 1]:
        transaction_service.advance_step(db_session, transaction, actor, step)
    db_session.commit()


def test_new_transaction_snapshot(db_session, accepted_transaction):
    transaction = accepted_transaction()

    assert transaction.current_step == "offer_accepted"
    assert transaction.next_action == "Submit deposit"
    assert transaction.purchase_price == Decimal("490000.00")
    assert transaction.deposit_amount == Decimal("25000.00")
    assert transaction.possession_date == transaction.closing_date
    assert transaction.platform_fee_rate == Decimal("0.0100")
    assert transaction.platform_fee_amount == Decimal("4900.00")
    assert transaction.platform_fee_status == "pending"
    assert [step.step for step in transaction.steps] == ["offer_accepted"]


def test_agreed_amounts_are_frozen(db_session, accepted_transaction):
    transaction = accepted_transaction()
    with pytest.raises(ValueError):
        transaction.purchase_price = Decimal("1")


def test_steps_advance_one_at_a_time(db_session, accepted_transaction):
    transaction = accepted_transaction()
    buyer, _ = _users(db_session, transaction)

    transaction_service.advance_step(db_session, transaction, buyer, "deposit_pending", notes="Wired to lawyer")
    db_session.commit()
    assert transaction.current_step == "deposit_pending"
    assert transaction.steps[-1].notes == "Wired to lawyer"
    assert transaction.next_action == transaction_service.get_next_action("deposit_pending")

    # Re-sending the current step is a no-op.
    transaction_service.advance_step(db_session, transaction, buyer, "deposit_pending")
    assert len(transaction.steps) == 2

    with pytest.raises(InvalidTransition):
        transaction_service.advance_step(db_session, transaction, buyer, "title_search")
    with pytest.raises(InvalidTransition):
        transaction_service.advance_step(db_session, transaction, buyer, "offer_accepted")
    with pytest.raises(ValidationFailed):
        transaction_service.advance_step(db_session, transaction, buyer, "signing_ceremony")


def test_conditions_complete_requires_resolved_conditions(db_session, accepted_transaction, financing_and_inspection):
    transaction = accepted_transaction(conditions=financing_and_inspection)
    buyer, _ = _users(db_session, transaction)
    _walk_to(db_session, transaction, buyer, "conditions_pending")

    with pytest.raises(InvalidTransition):
        transaction_service.advance_step(db_session, transaction, buyer, "conditions_complete")
    assert transaction.status == "conditional"


def test_walk_to_completion_marks_listing_sold(db_session, accepted_transaction):
    transaction = accepted_transaction()
    buyer, seller = _users(db_session, transaction)

    _walk_to(db_session, transaction, seller, "closing_day")
    assert transaction.status == "closing"

    transaction_service.advance_step(db_session, transaction, seller, "completed")
    db_session.commit()

    assert transaction.status == "completed"
    assert transaction.actual_closing_date is not None
    assert transaction.listing.status == "sold"
    assert transaction.listing.sold_price == Decimal("490000.00")
    assert transaction.listing.sold_transaction_id == transaction.id
    assert transaction.subject_property.status == "sold"
    assert [step.step for step in transaction.steps] == list(TRANSACTION_STEPS)
    for user in (buyer, seller):
        events = [n.event for n in db_session.query(Notification).filter(Notification.user_id == user.id)]
        assert "transaction_complete" in events

    with pytest.raises(InvalidTransition):
        transaction_service.cancel_transaction(db_session, transaction, buyer, reason="Changed my mind")
    with pytest.raises(InvalidTransition):
        transaction_service.mark_disputed(db_session, transaction, buyer, reason="Late keys")


def test_cancel_reopens_listing_and_is_idempotent(db_session, accepted_transaction):
    transaction = accepted_transaction()
    buyer, seller = _users(db_session, transaction)

    with pytest.raises(ValidationFailed):
        transaction_service.cancel_transaction(db_session, transaction, buyer, reason="  ")
    with pytest.raises(ValidationFailed):
        transaction_service.cancel_transaction(db_session, transaction, buyer, reason="x", deposit_disposition="kept")

    transaction_service.cancel_transaction(
        db_session, transaction, seller, reason="Buyer financing collapsed", deposit_disposition="released_to_seller"
    )
    db_session.commit()
    cancelled_at = transaction.cancelled_at

    transaction_service.cancel_transaction(db_session, transaction, buyer, reason="Again")
    db_session.commit()

    assert transaction.status == "cancelled"
    assert transaction.cancelled_at == cancelled_at
    assert transaction.cancelled_by_user_id == seller.id
    assert transaction.cancellation_reason == "Buyer financing collapsed"
    assert transaction.deposit_disposition == "released_to_seller"
    assert transaction.listing.status == "active"
    assert transaction.subject_property.status == "active"
    with pytest.raises(InvalidTransition):
        transaction_service.advance_step(db_session, transaction, buyer, "deposit_pending")


def test_dispute_freezes_workflow(db_session, accepted_transaction):
    transaction = accepted_transaction()
    buyer, _ = _users(db_session, transaction)

    transaction_service.mark_disputed(db_session, transaction, buyer, reason="Deposit not received")
    db_session.commit()
    transaction_service.mark_disputed(db_session, transaction, buyer, reason="Again")

    assert transaction.status == "disputed"
    assert transaction.dispute_reason == "Deposit not received"
    with pytest.raises(InvalidTransition):
        transaction_service.advance_step(db_session, transaction, buyer, "deposit_pending")


def test_only_parties_can_act(db_session, accepted_transaction, create_user):
    transaction = accepted_transaction()
    stranger = create_user()
    admin = create_user(is_admin=True)

    with pytest.raises(NotAuthorized):
        transaction_service.get_transaction_for_party(db_session, transaction.id, stranger)
    with pytest.raises(NotAuthorized):
        transaction_service.advance_step(db_session, transaction, stranger, "deposit_pending")
    assert transaction_service.get_transaction_for_party(db_session, transaction.id, admin) is transaction
    with pytest.raises(NotFound):
        transaction_service.get_transaction(db_session, 4242)


def test_closing_cost_summary_for_toronto(db_session, accepted_transaction):
    transaction = accepted_transaction(city="Toronto")

    summary = transaction_service.closing_cost_summary(transaction)

    assert summary["land_transfer_tax"].provincial == Decimal("6275.00")
    assert summary["land_transfer_tax"].municipal == Decimal("6275.00")
    assert summary["balance_due_on_closing"] == Decimal("465000.00")
    assert summary["closing_costs"].total == Decimal("16250.00")
    assert summary["total_due_on_closing"] == Decimal("481250.00")

    options = transaction_service.default_tax_options(transaction, is_first_time_buyer=True)
    rebated = transaction_service.closing_cost_summary(transaction, options)
    assert rebated["land_transfer_tax"].rebate == Decimal("8475.00")


def test_private_notes_visible_only_to_author(db_session, accepted_transaction):
    transaction = accepted_transaction()
    buyer, seller = _users(db_session, transaction)

    transaction_service.add_note(db_session, transaction, buyer, "Inspection booked for Tuesday")
    transaction_service.add_note(db_session, transaction, buyer, "Max budget 500k", is_private=True)
    db_session.commit()

    assert len(transaction_service.visible_notes(transaction, buyer)) == 2
    assert [n.content for n in transaction_service.visible_notes(transaction, seller)] == [
        "Inspection booked for Tuesday"
    ]


def test_update_lawyers(db_session, accepted_transaction):
    transaction = accepted_transaction()
    buyer, seller = _users(db_session, transaction)

    transaction_service.update_lawyers(
        db_session, transaction, buyer, buyer_lawyer={"name": "A. Counsel", "email": "a@law.example"}
    )
    transaction_service.update_lawyers(db_session, transaction, seller, seller_lawyer={"name": "B. Counsel"})
    db_session.commit()

    assert transaction.buyer_lawyer["name"] == "A. Counsel"
    assert transaction.seller_lawyer == {"name": "B. Counsel"}

    transaction_service.cancel_transaction(db_session, transaction, seller, reason="Title defect")
    with pytest.raises(InvalidTransition):
        transaction_service.update_lawyers(db_session, transaction, buyer, notary={"name": "C"})


def test_platform_fee_calculation():
    assert transaction_service.calculate_platform_fee(Decimal("612345"), Decimal("0.01")) == Decimal("6123.45")
    assert transaction_service.calculate_platform_fee(Decimal("100.005"), Decimal("1")) == Decimal("100.01")
