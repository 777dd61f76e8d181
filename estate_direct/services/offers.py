from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ..constants import (
    DEPOSIT_HOLDERS,
    FINANCING_TYPES,
    OPEN_OFFER_STATES,
    TERMINAL_OFFER_STATES,
    WITHDRAWABLE_OFFER_STATES,
    ConditionType,
)
from ..core.errors import (
    InvalidDateOrdering,
    InvalidPrice,
    InvalidTransition,
    ListingNoLongerActive,
    NotAuthorized,
    NotFound,
    OfferExpired,
    ValidationFailed,
)
from ..models.models import Listing, Offer, Transaction, User, as_utc, utcnow
from ..services import conditions as condition_service
from ..services import notifications
from ..services import transactions as transaction_service
from ..services.audit import audit_log

logger = logging.getLogger(__name__)

OFFER_TRANSITIONS: Dict[str, set[str]] = {
    "draft": {"submitted", "withdrawn"},
    "submitted": {"viewed", "accepted", "rejected", "countered", "withdrawn", "expired"},
    "viewed": {"accepted", "rejected", "countered", "withdrawn", "expired"},
    "accepted": set(),
    "rejected": set(),
    "countered": set(),
    "withdrawn": set(),
    "expired": set(),
}


@dataclass
class OfferTerms:
    offer_price: Decimal
    deposit_amount: Decimal
    deposit_due_date: datetime
    closing_date: datetime
    irrevocable_date: datetime
    possession_date: Optional[datetime] = None
    deposit_held_by: str = "seller_lawyer"
    financing_type: str = "conventional"
    # [{"type": "financing", "description": "...", "deadline_days": 5}]
    conditions: List[Dict[str, Any]] = field(default_factory=list)
    inclusions: List[str] = field(default_factory=list)
    exclusions: List[str] = field(default_factory=list)
    additional_terms: Optional[str] = None

    @classmethod
    def from_offer(cls, offer: Offer) -> "OfferTerms":
        return cls(**{item.name: getattr(offer, item.name) for item in fields(cls)})

    def merged(self, overrides: Dict[str, Any]) -> "OfferTerms":
        known = {item.name for item in fields(self)}
        return replace(self, **{key: value for key, value in overrides.items() if key in known and value is not None})


def _normalize_conditions(raw_conditions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    normalized = []
    for raw in raw_conditions or []:
        kind = ConditionType(raw.get("type"))
        days = int(raw.get("deadline_days") or 0)
        if days < 1:
            raise InvalidDateOrdering("Condition deadlines must be at least one day after acceptance.")
        normalized.append(
            {"type": kind.value, "description": (raw.get("description") or "").strip(), "deadline_days": days}
        )
    return normalized


def validate_terms(terms: OfferTerms, now: Optional[datetime] = None) -> OfferTerms:
    """Reject bad prices and date orderings before anything is written."""
    now = as_utc(now) or utcnow()
    price = Decimal(terms.offer_price)
    deposit = Decimal(terms.deposit_amount)
    if price <= 0:
        raise InvalidPrice("Offer price must be greater than zero.")
    if deposit < 0 or deposit > price:
        raise InvalidPrice("Deposit must be between zero and the offer price.")

    irrevocable = as_utc(terms.irrevocable_date)
    closing = as_utc(terms.closing_date)
    deposit_due = as_utc(terms.deposit_due_date)
    possession = as_utc(terms.possession_date)
    if irrevocable <= now:
        raise InvalidDateOrdering("Irrevocable date must be in the future.")
    if closing <= irrevocable:
        raise InvalidDateOrdering("Closing date must be after the irrevocable date.")
    if deposit_due > closing:
        raise InvalidDateOrdering("Deposit due date cannot be after closing.")
    if possession is not None and possession < closing:
        raise InvalidDateOrdering("Possession date cannot be before closing.")
    if terms.deposit_held_by not in DEPOSIT_HOLDERS:
        raise ValidationFailed(f"Unknown deposit holder: {terms.deposit_held_by}")
    if terms.financing_type not in FINANCING_TYPES:
        raise ValidationFailed(f"Unknown financing type: {terms.financing_type}")

    return replace(
        terms,
        offer_price=price,
        deposit_amount=deposit,
        irrevocable_date=irrevocable,
        closing_date=closing,
        deposit_due_date=deposit_due,
        possession_date=possession,
        conditions=_normalize_conditions(terms.conditions),
        inclusions=list(terms.inclusions or []),
        exclusions=list(terms.exclusions or []),
    )


def _offer_payload(offer: Offer, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "offer_id": offer.id,
        "offer_price": f"{offer.offer_price:,.2f}",
        "address": offer.subject_property.address if offer.subject_property else "",
    }
    payload.update(extra)
    return payload


def _assert_transition(offer: Offer, target: str) -> None:
    if target not in OFFER_TRANSITIONS.get(offer.status, set()):
        raise InvalidTransition(f"Cannot move offer from {offer.status} to {target}.")


def _assert_recipient(offer: Offer, actor: User) -> None:
    if offer.seller_user_id != actor.id:
        raise NotAuthorized("This offer is not addressed to you.")


def _assert_open(offer: Offer, target: str, now: datetime) -> None:
    # Terminal offers fail as transitions; open offers past the irrevocable date fail as expired.
    if offer.status in TERMINAL_OFFER_STATES or offer.status == "draft":
        raise InvalidTransition(f"Cannot move offer from {offer.status} to {target}.")
    if offer.is_expired(now):
        raise OfferExpired(f"Offer {offer.id} expired at {offer.irrevocable_date.isoformat()}.")


def _apply_terms(offer: Offer, terms: OfferTerms) -> None:
    for item in fields(terms):
        setattr(offer, item.name, getattr(terms, item.name))


def get_offer(session: Session, offer_id: int) -> Offer:
    offer = session.get(Offer, offer_id)
    if offer is None:
        raise NotFound(f"Offer {offer_id} not found.")
    return offer


def get_offer_for_party(session: Session, offer_id: int, actor: User) -> Offer:
    offer = get_offer(session, offer_id)
    if actor.is_admin or actor.id in (offer.buyer_user_id, offer.seller_user_id):
        return offer
    if offer.listing and offer.listing.seller_user_id == actor.id:
        return offer
    raise NotAuthorized("Only the parties to an offer can view it.")


def _load_active_listing(session: Session, listing_id: int) -> Listing:
    listing = session.get(Listing, listing_id)
    if listing is None:
        raise NotFound(f"Listing {listing_id} not found.")
    if listing.status != "active":
        raise ListingNoLongerActive(f"Listing {listing_id} is {listing.status}.")
    return listing


def submit_offer(
    session: Session,
    buyer: User,
    listing_id: int,
    terms: OfferTerms,
    save_as_draft: bool = False,
) -> Offer:
    listing = _load_active_listing(session, listing_id)
    if listing.seller_user_id == buyer.id:
        raise NotAuthorized("Sellers cannot submit offers on their own listing.")
    terms = validate_terms(terms)

    now = utcnow()
    offer = Offer(
        property_id=listing.property_id,
        listing_id=listing.id,
        buyer_user_id=buyer.id,
        seller_user_id=listing.seller_user_id,
        province=listing.subject_property.province,
        status="draft" if save_as_draft else "submitted",
        submitted_at=None if save_as_draft else now,
        buyer_signed=not save_as_draft,
        buyer_signed_at=None if save_as_draft else now,
    )
    _apply_terms(offer, terms)
    session.add(offer)
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=buyer.id,
        action="offers.draft" if save_as_draft else "offers.submit",
        target_entity_type="Offer",
        target_entity_id=str(offer.id),
        after={"status": offer.status, "offer_price": str(offer.offer_price), "listing_id": listing.id},
    )
    if not save_as_draft:
        notifications.notify(session, "offer_received", offer.seller_user_id, _offer_payload(offer))
    logger.info("Offer %s created on listing %s with status %s", offer.id, listing.id, offer.status)
    return offer


def submit_draft(session: Session, offer: Offer, actor: User) -> Offer:
    if offer.buyer_user_id != actor.id:
        raise NotAuthorized("Only the offer author can submit it.")
    if offer.status == "submitted":
        return offer
    _assert_transition(offer, "submitted")
    _load_active_listing(session, offer.listing_id)
    validate_terms(OfferTerms.from_offer(offer))

    now = utcnow()
    offer.status = "submitted"
    offer.submitted_at = now
    offer.buyer_signed = True
    offer.buyer_signed_at = now
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="offers.submit",
        target_entity_type="Offer",
        target_entity_id=str(offer.id),
        before={"status": "draft"},
        after={"status": "submitted"},
    )
    notifications.notify(session, "offer_received", offer.seller_user_id, _offer_payload(offer))
    return offer


def mark_viewed(session: Session, offer: Offer, actor: User) -> Offer:
    """First read of a submitted offer by its recipient moves it to viewed."""
    if offer.status != "submitted" or offer.seller_user_id != actor.id or offer.is_expired():
        return offer
    offer.status = "viewed"
    offer.viewed_at = utcnow()
    session.flush()
    logger.info("Offer %s viewed by user %s", offer.id, actor.id)
    return offer


def accept_offer(session: Session, offer: Offer, actor: User) -> Transaction:
    """Accept an open offer; listing, siblings, transaction and conditions change together."""
    _assert_recipient(offer, actor)
    if offer.status == "accepted":
        existing = session.query(Transaction).filter(Transaction.accepted_offer_id == offer.id).one_or_none()
        if existing is not None:
            return existing
    now = utcnow()
    _assert_open(offer, "accepted", now)
    previous_status = offer.status

    # Compare-and-swap on the listing decides the winner between concurrent accepts.
    claimed = session.execute(
        update(Listing)
        .where(Listing.id == offer.listing_id, Listing.status == "active")
        .values(status="pending", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        raise ListingNoLongerActive(f"Listing {offer.listing_id} already has an accepted offer.")

    taken = session.execute(
        update(Offer)
        .where(Offer.id == offer.id, Offer.status.in_(OPEN_OFFER_STATES))
        .values(status="accepted", responded_at=now, seller_signed=True, seller_signed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if taken.rowcount == 0:
        raise InvalidTransition(f"Offer {offer.id} is no longer open.")
    session.refresh(offer)
    session.refresh(offer.listing)

    offer.subject_property.status = "pending"
    transaction = transaction_service.create_transaction_from_offer(session, offer, actor, accepted_at=now)
    condition_service.create_conditions(session, transaction, offer)
    rejected = _reject_siblings(session, offer, actor, now)

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="offers.accept",
        target_entity_type="Offer",
        target_entity_id=str(offer.id),
        before={"status": previous_status},
        after={"status": "accepted", "transaction_id": transaction.id, "rejected_offer_ids": rejected},
    )
    notifications.notify(
        session,
        "offer_accepted",
        offer.buyer_user_id,
        _offer_payload(offer, transaction_id=transaction.id),
    )
    logger.info("Offer %s accepted; transaction %s; %d sibling offers rejected", offer.id, transaction.id, len(rejected))
    return transaction


def _reject_siblings(session: Session, winner: Offer, actor: User, now: datetime) -> List[int]:
    siblings = (
        session.query(Offer)
        .filter(
            Offer.listing_id == winner.listing_id,
            Offer.id != winner.id,
            Offer.status.in_(OPEN_OFFER_STATES),
        )
        .all()
    )
    if not siblings:
        return []
    sibling_ids = [sibling.id for sibling in siblings]
    session.execute(
        update(Offer)
        .where(Offer.id.in_(sibling_ids), Offer.status.in_(OPEN_OFFER_STATES))
        .values(status="rejected", responded_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    for sibling in siblings:
        session.refresh(sibling)
        notifications.notify(session, "offer_rejected", sibling.buyer_user_id, _offer_payload(sibling))
    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="offers.reject_siblings",
        target_entity_type="Listing",
        target_entity_id=str(winner.listing_id),
        after={"accepted_offer_id": winner.id, "rejected_offer_ids": sibling_ids},
    )
    return sibling_ids


def reject_offer(session: Session, offer: Offer, actor: User, reason: Optional[str] = None) -> Offer:
    _assert_recipient(offer, actor)
    if offer.status == "rejected":
        return offer
    now = utcnow()
    _assert_open(offer, "rejected", now)

    previous_status = offer.status
    offer.status = "rejected"
    offer.responded_at = now
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="offers.reject",
        target_entity_type="Offer",
        target_entity_id=str(offer.id),
        before={"status": previous_status},
        after={"status": "rejected", "reason": reason},
    )
    notifications.notify(session, "offer_rejected", offer.buyer_user_id, _offer_payload(offer))
    logger.info("Offer %s rejected", offer.id)
    return offer


def counter_offer(session: Session, offer: Offer, actor: User, overrides: Dict[str, Any]) -> Offer:
    """Close the offer as countered and issue a new one with the roles swapped."""
    _assert_recipient(offer, actor)
    now = utcnow()
    _assert_open(offer, "countered", now)
    if offer.listing.status != "active":
        raise ListingNoLongerActive(f"Listing {offer.listing_id} is {offer.listing.status}.")
    terms = validate_terms(OfferTerms.from_offer(offer).merged(overrides), now)

    previous_status = offer.status
    offer.status = "countered"
    offer.responded_at = now

    counter = Offer(
        property_id=offer.property_id,
        listing_id=offer.listing_id,
        buyer_user_id=offer.seller_user_id,
        seller_user_id=offer.buyer_user_id,
        province=offer.province,
        status="submitted",
        parent_offer_id=offer.id,
        is_counter_offer=True,
        submitted_at=now,
        buyer_signed=True,
        buyer_signed_at=now,
    )
    _apply_terms(counter, terms)
    session.add(counter)
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="offers.counter",
        target_entity_type="Offer",
        target_entity_id=str(offer.id),
        before={"status": previous_status},
        after={"status": "countered", "counter_offer_id": counter.id, "offer_price": str(counter.offer_price)},
    )
    notifications.notify(session, "offer_countered", counter.seller_user_id, _offer_payload(counter))
    logger.info("Offer %s countered by offer %s", offer.id, counter.id)
    return counter


def withdraw_offer(session: Session, offer: Offer, actor: User) -> Offer:
    if offer.buyer_user_id != actor.id:
        raise NotAuthorized("Only the offer author can withdraw it.")
    if offer.status == "withdrawn":
        return offer
    if offer.status not in WITHDRAWABLE_OFFER_STATES:
        raise InvalidTransition(f"Cannot withdraw an offer that is {offer.status}.")

    previous_status = offer.status
    offer.status = "withdrawn"
    offer.responded_at = utcnow()
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="offers.withdraw",
        target_entity_type="Offer",
        target_entity_id=str(offer.id),
        before={"status": previous_status},
        after={"status": "withdrawn"},
    )
    if previous_status != "draft":
        notifications.notify(session, "offer_withdrawn", offer.seller_user_id, _offer_payload(offer))
    logger.info("Offer %s withdrawn", offer.id)
    return offer


def offer_chain(session: Session, offer: Offer) -> List[Offer]:
    """Root-first list of offers leading to ``offer`` by following parent edges."""
    chain = [offer]
    seen = {offer.id}
    current = offer
    while current.parent_offer_id is not None:
        parent = session.get(Offer, current.parent_offer_id)
        if parent is None or parent.id in seen or parent.id >= current.id:
            raise InvalidTransition(f"Offer {current.id} has a broken parent reference.")
        seen.add(parent.id)
        chain.append(parent)
        current = parent
    chain.reverse()
    return chain


def expire_stale_offers(session: Session, now: Optional[datetime] = None) -> List[int]:
    """Persist the expired status for open offers past their irrevocable date."""
    now = as_utc(now) or utcnow()
    stale = (
        session.query(Offer)
        .filter(Offer.status.in_(OPEN_OFFER_STATES), Offer.irrevocable_date < now)
        .all()
    )
    for offer in stale:
        offer.status = "expired"
        offer.responded_at = now
    session.flush()
    if stale:
        logger.info("Expired %d stale offers", len(stale))
    return [offer.id for offer in stale]


def list_offers_by_buyer(session: Session, user: User) -> List[Offer]:
    return (
        session.query(Offer)
        .filter(Offer.buyer_user_id == user.id)
        .order_by(Offer.created_at.desc(), Offer.id.desc())
        .all()
    )


def list_offers_received(session: Session, user: User) -> List[Offer]:
    return (
        session.query(Offer)
        .filter(Offer.seller_user_id == user.id, Offer.status != "draft")
        .order_by(Offer.created_at.desc(), Offer.id.desc())
        .all()
    )


def list_offers_for_listing(session: Session, listing_id: int, actor: User) -> List[Offer]:
    listing = session.get(Listing, listing_id)
    if listing is None:
        raise NotFound(f"Listing {listing_id} not found.")
    query = session.query(Offer).filter(Offer.listing_id == listing_id, Offer.status != "draft")
    if not actor.is_admin and listing.seller_user_id != actor.id:
        query = query.filter(or_(Offer.buyer_user_id == actor.id, Offer.seller_user_id == actor.id))
    return query.order_by(Offer.id).all()
