from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple, Union

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..constants import (
    CONDITION_OUTCOMES,
    FAVORABLE_CONDITION_STATES,
    OPEN_CONDITION_STATES,
    ConditionType,
)
from ..core.errors import (
    ConditionAlreadyResolved,
    InvalidDateOrdering,
    InvalidTransition,
    NotAuthorized,
    NotFound,
    ValidationFailed,
)
from ..models.models import Condition, ConditionExtension, Offer, Transaction, User, as_utc, utcnow
from ..services import notifications
from ..services import transactions as transaction_service
from ..services.audit import audit_log

logger = logging.getLogger(__name__)

CONDITION_TEMPLATES: Dict[ConditionType, Tuple[str, str]] = {
    ConditionType.FINANCING: (
        "Financing Condition",
        "This offer is conditional upon the Buyer arranging, at the Buyer's own expense, a new first "
        "mortgage for not less than the principal amount specified, bearing interest at a rate of not "
        "more than the rate specified.",
    ),
    ConditionType.INSPECTION: (
        "Home Inspection Condition",
        "This offer is conditional upon the inspection of the subject property by a home inspector at "
        "the Buyer's own expense, and the obtaining of a report satisfactory to the Buyer in the "
        "Buyer's sole and absolute discretion.",
    ),
    ConditionType.STATUS_CERTIFICATE: (
        "Status Certificate Condition",
        "This offer is conditional upon the Buyer's lawyer's review and approval of the Status "
        "Certificate and all attachments, requested by the Seller at the Seller's expense.",
    ),
    ConditionType.SALE_OF_PROPERTY: (
        "Sale of Buyer's Property Condition",
        "This offer is conditional upon the sale of the Buyer's property. Unless the Buyer gives "
        "notice in writing that this condition is fulfilled, this offer shall be null and void and "
        "the deposit returned to the Buyer in full.",
    ),
    ConditionType.APPRAISAL: (
        "Appraisal Condition",
        "This offer is conditional upon the property appraising for at least the purchase price by an "
        "accredited appraiser satisfactory to the Buyer's lender.",
    ),
    ConditionType.LAWYER_REVIEW: (
        "Lawyer Review Condition",
        "This offer is conditional upon the approval of the terms hereof by the Buyer's lawyer.",
    ),
    ConditionType.OTHER: ("Custom Condition", ""),
}

_missing_templates = set(ConditionType) - set(CONDITION_TEMPLATES)
if _missing_templates:
    raise RuntimeError(
        "Condition templates missing for: " + ", ".join(sorted(kind.value for kind in _missing_templates))
    )


def condition_template(condition_type: Union[str, ConditionType]) -> Tuple[str, str]:
    return CONDITION_TEMPLATES[ConditionType(condition_type)]


def create_conditions(session: Session, transaction: Transaction, offer: Offer) -> List[Condition]:
    """Materialise the offer's negotiated conditions with deadlines counted from acceptance."""
    created: List[Condition] = []
    for term in offer.conditions or []:
        kind = ConditionType(term["type"])
        days = int(term["deadline_days"])
        default_title, default_description = condition_template(kind)
        description = (term.get("description") or "").strip()
        condition = Condition(
            transaction_id=transaction.id,
            offer_id=offer.id,
            condition_type=kind.value,
            title=description[:120] if description and kind == ConditionType.OTHER else default_title,
            description=description or default_description,
            deadline=transaction.acceptance_date + timedelta(days=days),
            days_from_acceptance=days,
            status="pending",
        )
        transaction.conditions.append(condition)
        created.append(condition)

    if created:
        transaction.condition_deadline = max(condition.deadline for condition in created)
    session.flush()
    return created


def list_conditions(transaction: Transaction) -> List[Condition]:
    return list(transaction.conditions)


def _load_condition(session: Session, transaction: Transaction, condition_id: int) -> Condition:
    condition = session.get(Condition, condition_id)
    if condition is None or condition.transaction_id != transaction.id:
        raise NotFound(f"Condition {condition_id} not found on transaction {transaction.id}.")
    return condition


def _unresolved_count(session: Session, transaction_id: int) -> int:
    statement = select(func.count(Condition.id)).where(
        Condition.transaction_id == transaction_id,
        Condition.status.not_in(FAVORABLE_CONDITION_STATES),
    )
    return session.execute(statement).scalar_one()


def resolve_condition(
    session: Session,
    transaction_id: int,
    condition_id: int,
    actor: User,
    outcome: str,
    notes: Optional[str] = None,
    method: Optional[str] = None,
) -> Condition:
    if outcome not in CONDITION_OUTCOMES:
        raise ValidationFailed(f"Unknown condition outcome: {outcome}")

    transaction = transaction_service.lock_transaction(session, transaction_id)
    transaction_service.ensure_party(transaction, actor)
    condition = _load_condition(session, transaction, condition_id)
    if condition.status not in OPEN_CONDITION_STATES:
        # A repeated failure report finds the cancellation it caused already in place.
        if condition.status == outcome == "failed" and transaction.status == "cancelled":
            return condition
        raise ConditionAlreadyResolved(f"Condition {condition.id} is already {condition.status}.")
    if transaction.status in transaction_service.CLOSED_STATES:
        raise InvalidTransition(f"Transaction is {transaction.status}.")

    now = utcnow()
    previous_status = condition.status
    result = session.execute(
        update(Condition)
        .where(Condition.id == condition.id, Condition.status.in_(OPEN_CONDITION_STATES))
        .values(
            status=outcome,
            resolved_at=now,
            resolved_by_user_id=actor.id,
            resolution_method=method or "manual",
            resolution_notes=notes,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConditionAlreadyResolved(f"Condition {condition.id} was resolved concurrently.")
    session.refresh(condition)

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="conditions.resolve",
        target_entity_type="Condition",
        target_entity_id=str(condition.id),
        before={"status": previous_status},
        after={"status": outcome, "notes": notes},
    )
    logger.info("Condition %s on transaction %s resolved as %s", condition.id, transaction.id, outcome)

    counterparty_id = (
        transaction.seller_user_id if actor.id == transaction.buyer_user_id else transaction.buyer_user_id
    )
    notifications.notify(
        session,
        "condition_resolved",
        counterparty_id,
        {
            "transaction_id": transaction.id,
            "address": transaction.subject_property.address,
            "condition_title": condition.title,
            "outcome": outcome,
        },
    )

    if outcome == "failed":
        transaction_service.cancel_transaction(
            session,
            transaction,
            actor,
            reason="Condition failed",
            deposit_disposition="returned_to_buyer",
            failed_condition=condition.condition_type,
        )
    elif transaction.status == "conditional" and _unresolved_count(session, transaction.id) == 0:
        transaction_service.mark_firm(session, transaction, actor.id, now=now)
    return condition


def _recompute_condition_deadline(transaction: Transaction) -> None:
    deadlines = [condition.deadline for condition in transaction.conditions]
    transaction.condition_deadline = max(deadlines) if deadlines else None


def extend_condition_deadline(
    session: Session,
    transaction_id: int,
    condition_id: int,
    actor: User,
    new_deadline: datetime,
    reason: Optional[str] = None,
) -> ConditionExtension:
    """Propose or agree to a new deadline; binding only once buyer and seller both agree."""
    transaction = transaction_service.lock_transaction(session, transaction_id)
    if not transaction.is_party(actor.id):
        raise NotAuthorized("Only the buyer or seller can negotiate an extension.")
    condition = _load_condition(session, transaction, condition_id)
    if transaction.status in transaction_service.CLOSED_STATES:
        raise InvalidTransition(f"Transaction is {transaction.status}.")
    if not condition.is_open:
        raise ConditionAlreadyResolved(f"Condition {condition.id} is already {condition.status}.")

    new_deadline = as_utc(new_deadline)
    now = utcnow()
    if new_deadline <= condition.deadline or new_deadline <= now:
        raise InvalidDateOrdering("The new deadline must be later than the current deadline.")

    is_buyer = actor.id == transaction.buyer_user_id
    pending = next((ext for ext in reversed(condition.extensions) if ext.agreed_at is None), None)

    if pending is not None and pending.new_deadline == new_deadline:
        extension = pending
        if is_buyer:
            extension.agreed_by_buyer = True
        else:
            extension.agreed_by_seller = True
    else:
        extension = ConditionExtension(
            previous_deadline=condition.deadline,
            new_deadline=new_deadline,
            reason=reason,
            proposed_by_user_id=actor.id,
            agreed_by_buyer=is_buyer,
            agreed_by_seller=not is_buyer,
        )
        condition.extensions.append(extension)

    if extension.is_binding and extension.agreed_at is None:
        extension.agreed_at = now
        extension.previous_deadline = condition.deadline
        condition.deadline = new_deadline
        _recompute_condition_deadline(transaction)
        logger.info("Condition %s deadline extended to %s", condition.id, new_deadline.isoformat())
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="conditions.extend" if extension.agreed_at else "conditions.extend.propose",
        target_entity_type="Condition",
        target_entity_id=str(condition.id),
        before={"deadline": extension.previous_deadline.isoformat()},
        after={
            "new_deadline": new_deadline.isoformat(),
            "agreed_by_buyer": extension.agreed_by_buyer,
            "agreed_by_seller": extension.agreed_by_seller,
        },
    )
    return extension
