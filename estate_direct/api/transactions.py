from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..api.dependencies import get_db, unit_of_work
from ..auth.jwt import get_current_user
from ..models.models import User
from ..schemas.schemas import (
    AuditEntryRead,
    CancelRequest,
    ClosingCostSummaryRead,
    ConditionEnvelope,
    ConditionExtensionRead,
    ConditionRead,
    ConditionResolveRequest,
    DisputeRequest,
    ExtensionEnvelope,
    ExtensionRequest,
    LawyersUpdate,
    NoteCreate,
    StepAdvanceRequest,
    TransactionEnvelope,
    TransactionNoteRead,
    TransactionRead,
)
from ..services import audit
from ..services import conditions as condition_service
from ..services import transactions as transaction_service
from ..services.jurisdictions import TaxOptions
from ..services.notifications import pop_warnings

router = APIRouter()


def _envelope(db: Session, transaction) -> TransactionEnvelope:
    return TransactionEnvelope(transaction=TransactionRead.model_validate(transaction), warnings=pop_warnings(db))


@router.get("/mine", response_model=List[TransactionRead])
def list_my_transactions(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[TransactionRead]:
    return transaction_service.list_transactions_for_user(db, user)


@router.get("/{transaction_id}", response_model=TransactionRead)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TransactionRead:
    return transaction_service.get_transaction_for_party(db, transaction_id, user)


@router.put("/{transaction_id}/step", response_model=TransactionEnvelope)
def advance_step(
    transaction_id: int,
    payload: StepAdvanceRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TransactionEnvelope:
    with unit_of_work(db):
        transaction = transaction_service.lock_transaction(db, transaction_id)
        transaction_service.advance_step(db, transaction, user, payload.step, notes=payload.notes)
    return _envelope(db, transaction)


@router.get("/{transaction_id}/conditions", response_model=List[ConditionRead])
def list_conditions(
    transaction_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[ConditionRead]:
    transaction = transaction_service.get_transaction_for_party(db, transaction_id, user)
    return condition_service.list_conditions(transaction)


@router.put("/{transaction_id}/conditions/{condition_id}", response_model=ConditionEnvelope)
def resolve_condition(
    transaction_id: int,
    condition_id: int,
    payload: ConditionResolveRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> ConditionEnvelope:
    with unit_of_work(db):
        condition = condition_service.resolve_condition(
            db,
            transaction_id,
            condition_id,
            user,
            payload.outcome,
            notes=payload.notes,
            method=payload.method,
        )
    return ConditionEnvelope(
        condition=ConditionRead.model_validate(condition),
        transaction=TransactionRead.model_validate(condition.transaction),
        warnings=pop_warnings(db),
    )


@router.post(
    "/{transaction_id}/conditions/{condition_id}/extensions",
    response_model=ExtensionEnvelope,
    status_code=status.HTTP_201_CREATED,
)
def extend_condition_deadline(
    transaction_id: int,
    condition_id: int,
    payload: ExtensionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> ExtensionEnvelope:
    with unit_of_work(db):
        extension = condition_service.extend_condition_deadline(
            db,
            transaction_id,
            condition_id,
            user,
            payload.new_deadline,
            reason=payload.reason,
        )
    return ExtensionEnvelope(
        extension=ConditionExtensionRead.model_validate(extension),
        condition=ConditionRead.model_validate(extension.condition),
        warnings=pop_warnings(db),
    )


@router.post("/{transaction_id}/cancel", response_model=TransactionEnvelope)
def cancel_transaction(
    transaction_id: int,
    payload: CancelRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TransactionEnvelope:
    with unit_of_work(db):
        transaction = transaction_service.lock_transaction(db, transaction_id)
        transaction_service.cancel_transaction(
            db,
            transaction,
            user,
            reason=payload.reason,
            deposit_disposition=payload.deposit_disposition,
        )
    return _envelope(db, transaction)


@router.post("/{transaction_id}/dispute", response_model=TransactionEnvelope)
def dispute_transaction(
    transaction_id: int,
    payload: DisputeRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TransactionEnvelope:
    with unit_of_work(db):
        transaction = transaction_service.lock_transaction(db, transaction_id)
        transaction_service.mark_disputed(db, transaction, user, payload.reason)
    return _envelope(db, transaction)


@router.get("/{transaction_id}/closing-costs", response_model=ClosingCostSummaryRead)
def get_closing_costs(
    transaction_id: int,
    is_first_time_buyer: bool = False,
    is_newly_built: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> ClosingCostSummaryRead:
    transaction = transaction_service.get_transaction_for_party(db, transaction_id, user)
    defaults = transaction_service.default_tax_options(transaction, is_first_time_buyer=is_first_time_buyer)
    options = TaxOptions(
        is_first_time_buyer=defaults.is_first_time_buyer,
        is_toronto=defaults.is_toronto,
        is_newly_built=is_newly_built,
        municipality=defaults.municipality,
    )
    summary = transaction_service.closing_cost_summary(transaction, options)
    summary["land_transfer_tax"] = summary["land_transfer_tax"].as_dict()
    summary["closing_costs"] = summary["closing_costs"].as_dict()
    return ClosingCostSummaryRead.model_validate(summary)


@router.get("/{transaction_id}/history", response_model=List[AuditEntryRead])
def get_history(
    transaction_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[AuditEntryRead]:
    transaction = transaction_service.get_transaction_for_party(db, transaction_id, user)
    return audit.transaction_history(db, transaction)


@router.get("/{transaction_id}/notes", response_model=List[TransactionNoteRead])
def list_notes(
    transaction_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[TransactionNoteRead]:
    transaction = transaction_service.get_transaction_for_party(db, transaction_id, user)
    return transaction_service.visible_notes(transaction, user)


@router.post("/{transaction_id}/notes", response_model=TransactionNoteRead, status_code=status.HTTP_201_CREATED)
def add_note(
    transaction_id: int,
    payload: NoteCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TransactionNoteRead:
    with unit_of_work(db):
        transaction = transaction_service.get_transaction(db, transaction_id)
        note = transaction_service.add_note(db, transaction, user, payload.content, is_private=payload.is_private)
    return note


@router.put("/{transaction_id}/lawyers", response_model=TransactionEnvelope)
def update_lawyers(
    transaction_id: int,
    payload: LawyersUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TransactionEnvelope:
    with unit_of_work(db):
        transaction = transaction_service.lock_transaction(db, transaction_id)
        transaction_service.update_lawyers(
            db,
            transaction,
            user,
            buyer_lawyer=payload.buyer_lawyer.model_dump(mode="json") if payload.buyer_lawyer else None,
            seller_lawyer=payload.seller_lawyer.model_dump(mode="json") if payload.seller_lawyer else None,
            notary=payload.notary.model_dump(mode="json") if payload.notary else None,
        )
    return _envelope(db, transaction)
