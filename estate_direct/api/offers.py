from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..api.dependencies import get_db, unit_of_work
from ..auth.jwt import get_current_user
from ..models.models import User
from ..schemas.schemas import (
    AcceptOfferResponse,
    CounterOfferCreate,
    OfferCreate,
    OfferEnvelope,
    OfferRead,
    OfferRejectRequest,
    TransactionRead,
)
from ..services import offers as offer_service
from ..services.notifications import pop_warnings

router = APIRouter()


def _envelope(db: Session, offer) -> OfferEnvelope:
    return OfferEnvelope(offer=OfferRead.model_validate(offer), warnings=pop_warnings(db))


@router.post("/", response_model=OfferEnvelope, status_code=status.HTTP_201_CREATED)
def submit_offer(
    payload: OfferCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> OfferEnvelope:
    terms = offer_service.OfferTerms(**payload.terms_dict())
    with unit_of_work(db):
        offer = offer_service.submit_offer(db, user, payload.listing_id, terms, save_as_draft=payload.save_as_draft)
    return _envelope(db, offer)


@router.get("/mine", response_model=List[OfferRead])
def list_my_offers(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[OfferRead]:
    return offer_service.list_offers_by_buyer(db, user)


@router.get("/received", response_model=List[OfferRead])
def list_received_offers(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[OfferRead]:
    return offer_service.list_offers_received(db, user)


@router.get("/listing/{listing_id}", response_model=List[OfferRead])
def list_listing_offers(
    listing_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[OfferRead]:
    return offer_service.list_offers_for_listing(db, listing_id, user)


@router.get("/{offer_id}", response_model=OfferRead)
def get_offer(
    offer_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> OfferRead:
    with unit_of_work(db):
        offer = offer_service.get_offer_for_party(db, offer_id, user)
        offer_service.mark_viewed(db, offer, user)
    return OfferRead.model_validate(offer)


@router.get("/{offer_id}/chain", response_model=List[OfferRead])
def get_offer_chain(
    offer_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[OfferRead]:
    offer = offer_service.get_offer_for_party(db, offer_id, user)
    return offer_service.offer_chain(db, offer)


@router.post("/{offer_id}/submit", response_model=OfferEnvelope)
def submit_draft(
    offer_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> OfferEnvelope:
    with unit_of_work(db):
        offer = offer_service.get_offer(db, offer_id)
        offer_service.submit_draft(db, offer, user)
    return _envelope(db, offer)


@router.post("/{offer_id}/accept", response_model=AcceptOfferResponse)
def accept_offer(
    offer_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> AcceptOfferResponse:
    with unit_of_work(db):
        offer = offer_service.get_offer(db, offer_id)
        transaction = offer_service.accept_offer(db, offer, user)
    return AcceptOfferResponse(
        offer=OfferRead.model_validate(offer),
        transaction=TransactionRead.model_validate(transaction),
        warnings=pop_warnings(db),
    )


@router.post("/{offer_id}/reject", response_model=OfferEnvelope)
def reject_offer(
    offer_id: int,
    payload: OfferRejectRequest | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> OfferEnvelope:
    with unit_of_work(db):
        offer = offer_service.get_offer(db, offer_id)
        offer_service.reject_offer(db, offer, user, reason=payload.reason if payload else None)
    return _envelope(db, offer)


@router.post("/{offer_id}/counter", response_model=OfferEnvelope, status_code=status.HTTP_201_CREATED)
def counter_offer(
    offer_id: int,
    payload: CounterOfferCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> OfferEnvelope:
    with unit_of_work(db):
        offer = offer_service.get_offer(db, offer_id)
        counter = offer_service.counter_offer(db, offer, user, payload.overrides())
    return _envelope(db, counter)


@router.post("/{offer_id}/withdraw", response_model=OfferEnvelope)
def withdraw_offer(
    offer_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> OfferEnvelope:
    with unit_of_work(db):
        offer = offer_service.get_offer(db, offer_id)
        offer_service.withdraw_offer(db, offer, user)
    return _envelope(db, offer)
