import json
import logging
from typing import List

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..api.dependencies import get_db, unit_of_work
from ..auth.jwt import get_current_user, require_admin
from ..config import settings
from ..models.models import Transaction, User
from ..schemas.schemas import (
    CommissionChargeRead,
    MarkPaidRequest,
    PaymentConfigRead,
    PlatformFeeRead,
)
from ..services import payments as payment_service
from ..services import transactions as transaction_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _fee(transaction: Transaction) -> PlatformFeeRead:
    return PlatformFeeRead(
        transaction_id=transaction.id,
        platform_fee_rate=transaction.platform_fee_rate,
        platform_fee_amount=transaction.platform_fee_amount,
        platform_fee_status=transaction.platform_fee_status,
        platform_fee_invoiced_at=transaction.platform_fee_invoiced_at,
        platform_fee_paid_at=transaction.platform_fee_paid_at,
        platform_fee_payment_method=transaction.platform_fee_payment_method,
        platform_fee_payment_reference=transaction.platform_fee_payment_reference,
    )


@router.get("/config", response_model=PaymentConfigRead)
def get_payment_config() -> PaymentConfigRead:
    return PaymentConfigRead(
        publishable_key=settings.stripe_publishable_key,
        currency=settings.currency,
        platform_fee_rate=settings.platform_fee_rate,
        enabled=bool(settings.stripe_api_key),
    )


@router.post("/commission/{transaction_id}", response_model=CommissionChargeRead)
def charge_commission(
    transaction_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> CommissionChargeRead:
    with unit_of_work(db):
        transaction = transaction_service.lock_transaction(db, transaction_id)
        charge = payment_service.charge_commission(db, transaction, user)
    return CommissionChargeRead(
        fee=_fee(charge.transaction),
        client_secret=charge.client_secret,
        warnings=charge.warnings,
    )


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    if not settings.stripe_webhook_secret:
        raise HTTPException(status_code=503, detail="Stripe webhook secret is not configured")

    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    try:
        stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=settings.stripe_webhook_secret,
        )
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    # Signature verified above; the handler works on the plain JSON body.
    with unit_of_work(db):
        payment_service.handle_stripe_event(db, json.loads(payload))
    return {"received": True}


@router.post("/mark-paid", response_model=PlatformFeeRead)
def mark_paid(
    payload: MarkPaidRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
) -> PlatformFeeRead:
    with unit_of_work(db):
        transaction = payment_service.mark_commission_paid(
            db,
            payload.transaction_id,
            admin,
            payment_method=payload.payment_method,
            payment_reference=payload.payment_reference,
            notes=payload.notes,
        )
    return _fee(transaction)


@router.get("/history", response_model=List[PlatformFeeRead])
def payment_history(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[PlatformFeeRead]:
    return [_fee(transaction) for transaction in payment_service.payment_history(db, user)]


@router.get("/pending", response_model=List[PlatformFeeRead])
def pending_payments(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
) -> List[PlatformFeeRead]:
    return [_fee(transaction) for transaction in payment_service.pending_commissions(db)]
