from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..config import settings
from ..constants import (
    DEPOSIT_DISPOSITIONS,
    DISPUTABLE_TRANSACTION_STATES,
    NEXT_ACTIONS,
    Province,
    TRANSACTION_STEPS,
)
from ..core.errors import InvalidTransition, NotAuthorized, NotFound, ValidationFailed
from ..models.models import Offer, Transaction, TransactionNote, TransactionStepLog, User, utcnow
from ..services import notifications
from ..services.audit import audit_log
from ..services.jurisdictions import TaxOptions, compute_land_transfer_tax, estimate_closing_costs, to_money

logger = logging.getLogger(__name__)

STEP_INDEX: Dict[str, int] = {step: index for index, step in enumerate(TRANSACTION_STEPS)}
FROZEN_STATES = frozenset({"cancelled", "completed", "disputed"})
CLOSED_STATES = frozenset({"cancelled", "completed"})


def get_next_action(step: str) -> str:
    """Advisory text for the party driving the transaction forward."""
    return NEXT_ACTIONS.get(step, "Unknown step")


def calculate_platform_fee(price: Decimal, rate: Decimal) -> Decimal:
    return to_money(Decimal(price) * Decimal(rate))


def _payload(transaction: Transaction, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "transaction_id": transaction.id,
        "address": transaction.subject_property.address if transaction.subject_property else "",
        "purchase_price": f"{transaction.purchase_price:,.2f}",
        "closing_date": transaction.closing_date.date().isoformat(),
    }
    payload.update(extra)
    return payload


def _snapshot(transaction: Transaction) -> Dict[str, Any]:
    return {"status": transaction.status, "current_step": transaction.current_step}


def _notify_parties(session: Session, transaction: Transaction, event: str, **extra: Any) -> None:
    payload = _payload(transaction, **extra)
    for user_id in (transaction.buyer_user_id, transaction.seller_user_id):
        notifications.notify(session, event, user_id, payload)


def _log_step(
    session: Session,
    transaction: Transaction,
    step: str,
    actor_id: Optional[int],
    notes: Optional[str] = None,
    when: Optional[datetime] = None,
) -> TransactionStepLog:
    entry = TransactionStepLog(
        transaction_id=transaction.id,
        step=step,
        completed_at=when or utcnow(),
        completed_by_user_id=actor_id,
        notes=notes,
    )
    transaction.steps.append(entry)
    session.flush()
    return entry


def ensure_party(transaction: Transaction, actor: User) -> None:
    if actor.is_admin or transaction.is_party(actor.id):
        return
    raise NotAuthorized("Only the buyer or seller can act on this transaction.")


def get_transaction(session: Session, transaction_id: int) -> Transaction:
    transaction = session.get(Transaction, transaction_id)
    if transaction is None:
        raise NotFound(f"Transaction {transaction_id} not found.")
    return transaction


def get_transaction_for_party(session: Session, transaction_id: int, actor: User) -> Transaction:
    transaction = get_transaction(session, transaction_id)
    ensure_party(transaction, actor)
    return transaction


def lock_transaction(session: Session, transaction_id: int) -> Transaction:
    """Load the transaction row for update so per-transaction work is serialised."""
    statement = (
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    transaction = session.execute(statement).scalar_one_or_none()
    if transaction is None:
        raise NotFound(f"Transaction {transaction_id} not found.")
    return transaction


def list_transactions_for_user(session: Session, user: User) -> List[Transaction]:
    return (
        session.query(Transaction)
        .filter(or_(Transaction.buyer_user_id == user.id, Transaction.seller_user_id == user.id))
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .all()
    )


def create_transaction_from_offer(
    session: Session,
    offer: Offer,
    actor: User,
    accepted_at: Optional[datetime] = None,
) -> Transaction:
    accepted_at = accepted_at or utcnow()
    listing = offer.listing
    seller_id = listing.seller_user_id
    # A counter-offer carries swapped roles; the listing owner is always the seller.
    buyer_id = offer.seller_user_id if offer.buyer_user_id == seller_id else offer.buyer_user_id
    rate = Decimal(settings.platform_fee_rate)

    transaction = Transaction(
        property_id=offer.property_id,
        listing_id=offer.listing_id,
        accepted_offer_id=offer.id,
        buyer_user_id=buyer_id,
        seller_user_id=seller_id,
        province=offer.province,
        purchase_price=offer.offer_price,
        deposit_amount=offer.deposit_amount,
        deposit_status="pending",
        acceptance_date=accepted_at,
        closing_date=offer.closing_date,
        possession_date=offer.possession_date or offer.closing_date,
        status="conditional" if offer.conditions else "firm",
        firm_date=None if offer.conditions else accepted_at,
        current_step="offer_accepted",
        platform_fee_rate=rate,
        platform_fee_amount=calculate_platform_fee(offer.offer_price, rate),
        platform_fee_status="pending",
    )
    session.add(transaction)
    session.flush()
    _log_step(session, transaction, "offer_accepted", actor.id, notes=f"Offer #{offer.id} accepted", when=accepted_at)

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="transactions.create",
        target_entity_type="Transaction",
        target_entity_id=str(transaction.id),
        after={
            "offer_id": offer.id,
            "purchase_price": str(transaction.purchase_price),
            "platform_fee_amount": str(transaction.platform_fee_amount),
            "status": transaction.status,
        },
    )
    logger.info("Transaction %s created from offer %s", transaction.id, offer.id)
    return transaction


def ensure_platform_fee(transaction: Transaction) -> Decimal:
    """Fill in a missing fee amount; an invoiced or paid amount is never recomputed."""
    if transaction.platform_fee_amount is None and transaction.platform_fee_status == "pending":
        transaction.platform_fee_amount = calculate_platform_fee(
            transaction.purchase_price, transaction.platform_fee_rate
        )
    return transaction.platform_fee_amount


def mark_firm(session: Session, transaction: Transaction, actor_id: Optional[int], now: Optional[datetime] = None) -> Transaction:
    now = now or utcnow()
    previous = _snapshot(transaction)
    transaction.status = "firm"
    transaction.firm_date = now
    if STEP_INDEX[transaction.current_step] < STEP_INDEX["conditions_complete"]:
        transaction.current_step = "conditions_complete"
        _log_step(session, transaction, "conditions_complete", actor_id, notes="All conditions resolved", when=now)
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=actor_id,
        action="transactions.firm",
        target_entity_type="Transaction",
        target_entity_id=str(transaction.id),
        before=previous,
        after=_snapshot(transaction),
    )
    _notify_parties(session, transaction, "transaction_firm")
    logger.info("Transaction %s is firm", transaction.id)
    return transaction


def _complete(session: Session, transaction: Transaction, now: datetime) -> None:
    transaction.status = "completed"
    transaction.actual_closing_date = now
    listing = transaction.listing
    listing.status = "sold"
    listing.sold_price = transaction.purchase_price
    listing.sold_date = now
    listing.sold_transaction_id = transaction.id
    transaction.subject_property.status = "sold"


def advance_step(
    session: Session,
    transaction: Transaction,
    actor: User,
    step: str,
    notes: Optional[str] = None,
) -> Transaction:
    ensure_party(transaction, actor)
    if transaction.status in FROZEN_STATES:
        raise InvalidTransition(f"Cannot advance a {transaction.status} transaction.")
    if step not in STEP_INDEX:
        raise ValidationFailed(f"Unknown step: {step}")
    if step == transaction.current_step:
        return transaction

    current_index = STEP_INDEX[transaction.current_step]
    if STEP_INDEX[step] != current_index + 1:
        raise InvalidTransition(f"Cannot move from {transaction.current_step} to {step}.")
    if step == "conditions_complete" and not transaction.conditions_resolved():
        raise InvalidTransition("All conditions must be fulfilled or waived first.")

    now = utcnow()
    previous = _snapshot(transaction)
    transaction.current_step = step
    if step == "conditions_complete" and transaction.status == "conditional":
        transaction.status = "firm"
        transaction.firm_date = now
    elif step == "closing_day":
        transaction.status = "closing"
    elif step == "completed":
        _complete(session, transaction, now)
    _log_step(session, transaction, step, actor.id, notes=notes, when=now)

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="transactions.advance_step",
        target_entity_type="Transaction",
        target_entity_id=str(transaction.id),
        before=previous,
        after=_snapshot(transaction),
    )
    if step == "completed":
        _notify_parties(session, transaction, "transaction_complete")
    logger.info("Transaction %s advanced to %s", transaction.id, step)
    return transaction


def cancel_transaction(
    session: Session,
    transaction: Transaction,
    actor: User,
    reason: str,
    deposit_disposition: Optional[str] = None,
    failed_condition: Optional[str] = None,
) -> Transaction:
    ensure_party(transaction, actor)
    if transaction.status == "cancelled":
        return transaction
    if transaction.status == "completed":
        raise InvalidTransition("A completed transaction cannot be cancelled.")
    if not reason or not reason.strip():
        raise ValidationFailed("A cancellation reason is required.")
    if deposit_disposition is not None and deposit_disposition not in DEPOSIT_DISPOSITIONS:
        raise ValidationFailed(f"Unknown deposit disposition: {deposit_disposition}")

    now = utcnow()
    previous = _snapshot(transaction)
    transaction.status = "cancelled"
    transaction.cancelled_at = now
    transaction.cancelled_by_user_id = actor.id
    transaction.cancellation_reason = reason.strip()
    transaction.cancellation_failed_condition = failed_condition
    transaction.deposit_disposition = deposit_disposition

    # Re-open the property to new offers.
    listing = transaction.listing
    if listing.status == "pending":
        listing.status = "active"
    if transaction.subject_property.status == "pending":
        transaction.subject_property.status = "active"
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="transactions.cancel",
        target_entity_type="Transaction",
        target_entity_id=str(transaction.id),
        before=previous,
        after={
            "status": "cancelled",
            "reason": transaction.cancellation_reason,
            "failed_condition": failed_condition,
            "deposit_disposition": deposit_disposition,
        },
    )
    _notify_parties(session, transaction, "transaction_cancelled", reason=transaction.cancellation_reason)
    logger.info("Transaction %s cancelled: %s", transaction.id, transaction.cancellation_reason)
    return transaction


def mark_disputed(session: Session, transaction: Transaction, actor: User, reason: str) -> Transaction:
    ensure_party(transaction, actor)
    if transaction.status == "disputed":
        return transaction
    if transaction.status not in DISPUTABLE_TRANSACTION_STATES:
        raise InvalidTransition(f"Cannot dispute a {transaction.status} transaction.")

    previous = _snapshot(transaction)
    transaction.status = "disputed"
    transaction.disputed_at = utcnow()
    transaction.dispute_reason = reason
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="transactions.dispute",
        target_entity_type="Transaction",
        target_entity_id=str(transaction.id),
        before=previous,
        after={"status": "disputed", "reason": reason},
    )
    logger.warning("Transaction %s marked disputed", transaction.id)
    return transaction


def default_tax_options(transaction: Transaction, is_first_time_buyer: bool = False) -> TaxOptions:
    city = (transaction.subject_property.city or "").strip() if transaction.subject_property else ""
    return TaxOptions(
        is_first_time_buyer=is_first_time_buyer,
        is_toronto=transaction.province == Province.ON.value and city.lower() == "toronto",
        municipality=city.lower() or None,
    )


def closing_cost_summary(transaction: Transaction, options: Optional[TaxOptions] = None) -> Dict[str, Any]:
    options = options or default_tax_options(transaction)
    price = Decimal(transaction.purchase_price)
    deposit = Decimal(transaction.deposit_amount)
    tax = compute_land_transfer_tax(transaction.province, price, options)
    estimate = estimate_closing_costs(transaction.province, price, options)
    balance = to_money(price - deposit)
    return {
        "transaction_id": transaction.id,
        "province": transaction.province,
        "purchase_price": to_money(price),
        "deposit_amount": to_money(deposit),
        "balance_due_on_closing": balance,
        "land_transfer_tax": tax,
        "closing_costs": estimate,
        "total_due_on_closing": to_money(balance + estimate.total),
    }


def add_note(
    session: Session,
    transaction: Transaction,
    actor: User,
    content: str,
    is_private: bool = False,
) -> TransactionNote:
    ensure_party(transaction, actor)
    note = TransactionNote(
        transaction_id=transaction.id,
        created_by_user_id=actor.id,
        content=content,
        is_private=is_private,
    )
    transaction.notes.append(note)
    session.flush()
    return note


def visible_notes(transaction: Transaction, viewer: User) -> List[TransactionNote]:
    return [note for note in transaction.notes if not note.is_private or note.created_by_user_id == viewer.id]


def update_lawyers(
    session: Session,
    transaction: Transaction,
    actor: User,
    buyer_lawyer: Optional[Dict[str, Any]] = None,
    seller_lawyer: Optional[Dict[str, Any]] = None,
    notary: Optional[Dict[str, Any]] = None,
) -> Transaction:
    ensure_party(transaction, actor)
    if transaction.status in CLOSED_STATES:
        raise InvalidTransition(f"Cannot update a {transaction.status} transaction.")

    before = {
        "buyer_lawyer": transaction.buyer_lawyer,
        "seller_lawyer": transaction.seller_lawyer,
        "notary": transaction.notary,
    }
    if buyer_lawyer is not None:
        transaction.buyer_lawyer = buyer_lawyer
    if seller_lawyer is not None:
        transaction.seller_lawyer = seller_lawyer
    if notary is not None:
        transaction.notary = notary
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="transactions.lawyers.update",
        target_entity_type="Transaction",
        target_entity_id=str(transaction.id),
        before=before,
        after={
            "buyer_lawyer": transaction.buyer_lawyer,
            "seller_lawyer": transaction.seller_lawyer,
            "notary": transaction.notary,
        },
    )
    return transaction
