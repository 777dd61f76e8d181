from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

import stripe
from sqlalchemy.orm import Session

from ..config import settings
from ..core.errors import InvalidTransition, NotAuthorized, NotFound
from ..models.models import Transaction, User, utcnow
from ..services import transactions as transaction_service
from ..services.audit import audit_log

logger = logging.getLogger(__name__)


@dataclass
class ChargeResult:
    reference: Optional[str] = None
    client_secret: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.reference is not None


@dataclass
class CommissionCharge:
    transaction: Transaction
    client_secret: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(amount_cents: int) -> Decimal:
    return (Decimal(amount_cents) / Decimal("100")).quantize(Decimal("0.01"))


class StripeGateway:
    """Creates PaymentIntents for platform commissions; failures come back on the result."""

    def charge_commission(self, transaction_id: int, amount: Decimal, description: str = "") -> ChargeResult:
        if not settings.stripe_api_key:
            return ChargeResult(error="Stripe is not configured")
        stripe.api_key = settings.stripe_api_key
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_cents(amount),
                currency=settings.currency,
                description=description or f"Platform fee for transaction #{transaction_id}",
                metadata={"transaction_id": str(transaction_id), "kind": "platform_fee"},
                automatic_payment_methods={"enabled": True},
                idempotency_key=f"platform-fee-{transaction_id}",
            )
        except stripe.StripeError as exc:
            logger.exception("Stripe PaymentIntent failed for transaction %s", transaction_id)
            return ChargeResult(error=getattr(exc, "user_message", None) or str(exc))
        return ChargeResult(reference=intent.id, client_secret=intent.client_secret, status=intent.status)


gateway = StripeGateway()


def charge_commission(session: Session, transaction: Transaction, actor: User) -> CommissionCharge:
    if not actor.is_admin and actor.id != transaction.seller_user_id:
        raise NotAuthorized("Only the seller can pay the platform fee.")
    if transaction.status == "cancelled":
        raise InvalidTransition("Cancelled transactions have no platform fee to pay.")
    if transaction.platform_fee_status in {"paid", "waived"}:
        raise InvalidTransition(f"Platform fee is already {transaction.platform_fee_status}.")
    if transaction.platform_fee_status == "invoiced" and transaction.platform_fee_payment_reference:
        return CommissionCharge(transaction=transaction)

    amount = transaction_service.ensure_platform_fee(transaction)
    result = gateway.charge_commission(
        transaction.id,
        amount,
        description=f"Platform fee for {transaction.subject_property.address}",
    )
    if not result.ok:
        logger.warning("Platform fee charge failed for transaction %s: %s", transaction.id, result.error)
        audit_log(
            db_session=session,
            actor_user_id=actor.id,
            action="payments.commission.failed",
            target_entity_type="Transaction",
            target_entity_id=str(transaction.id),
            after={"amount": str(amount), "error": result.error},
        )
        return CommissionCharge(
            transaction=transaction,
            warnings=[f"Payment could not be started: {result.error}"],
        )

    transaction.platform_fee_status = "invoiced"
    transaction.platform_fee_invoiced_at = utcnow()
    transaction.platform_fee_payment_method = "stripe"
    transaction.platform_fee_payment_reference = result.reference
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="payments.commission.invoiced",
        target_entity_type="Transaction",
        target_entity_id=str(transaction.id),
        before={"platform_fee_status": "pending"},
        after={"platform_fee_status": "invoiced", "amount": str(amount), "reference": result.reference},
    )
    logger.info("Platform fee invoiced for transaction %s (%s)", transaction.id, result.reference)
    return CommissionCharge(transaction=transaction, client_secret=result.client_secret)


def record_commission_payment(
    session: Session,
    payment_intent_id: str,
    transaction_id: Optional[int] = None,
    amount_cents: Optional[int] = None,
) -> Optional[Transaction]:
    """Mark a fee paid from a gateway confirmation; repeated deliveries are no-ops."""
    transaction = (
        session.query(Transaction)
        .filter(Transaction.platform_fee_payment_reference == payment_intent_id)
        .one_or_none()
    )
    if transaction is None and transaction_id is not None:
        transaction = session.get(Transaction, transaction_id)
    if transaction is None:
        logger.warning("Payment %s does not match any transaction", payment_intent_id)
        return None
    if transaction.platform_fee_status == "paid":
        return transaction

    if amount_cents is not None and from_cents(amount_cents) < Decimal(transaction.platform_fee_amount or 0):
        logger.warning(
            "Payment %s for transaction %s is short: %s", payment_intent_id, transaction.id, from_cents(amount_cents)
        )
    previous = transaction.platform_fee_status
    transaction.platform_fee_status = "paid"
    transaction.platform_fee_paid_at = utcnow()
    transaction.platform_fee_payment_method = "stripe"
    transaction.platform_fee_payment_reference = payment_intent_id
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=None,
        action="payments.commission.paid",
        target_entity_type="Transaction",
        target_entity_id=str(transaction.id),
        before={"platform_fee_status": previous},
        after={"platform_fee_status": "paid", "reference": payment_intent_id},
    )
    logger.info("Platform fee paid for transaction %s", transaction.id)
    return transaction


def handle_stripe_event(session: Session, event: Dict[str, Any]) -> Optional[Transaction]:
    if event.get("type") != "payment_intent.succeeded":
        return None
    intent = event["data"]["object"]
    metadata = intent.get("metadata") or {}
    if metadata.get("kind") not in (None, "platform_fee"):
        return None
    try:
        transaction_id = int(metadata["transaction_id"]) if metadata.get("transaction_id") else None
    except (TypeError, ValueError):
        transaction_id = None
    return record_commission_payment(
        session,
        payment_intent_id=intent.get("id"),
        transaction_id=transaction_id,
        amount_cents=intent.get("amount_received") or intent.get("amount"),
    )


def mark_commission_paid(
    session: Session,
    transaction_id: int,
    actor: User,
    payment_method: str,
    payment_reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> Transaction:
    if not actor.is_admin:
        raise NotAuthorized("Only administrators can record manual payments.")
    transaction = session.get(Transaction, transaction_id)
    if transaction is None:
        raise NotFound(f"Transaction {transaction_id} not found.")
    if transaction.platform_fee_status == "paid":
        return transaction

    transaction_service.ensure_platform_fee(transaction)
    previous = transaction.platform_fee_status
    transaction.platform_fee_status = "paid"
    transaction.platform_fee_paid_at = utcnow()
    transaction.platform_fee_payment_method = payment_method
    transaction.platform_fee_payment_reference = payment_reference
    transaction.platform_fee_notes = notes
    session.flush()

    audit_log(
        db_session=session,
        actor_user_id=actor.id,
        action="payments.commission.mark_paid",
        target_entity_type="Transaction",
        target_entity_id=str(transaction.id),
        before={"platform_fee_status": previous},
        after={"platform_fee_status": "paid", "method": payment_method, "reference": payment_reference},
    )
    return transaction


def payment_history(session: Session, user: User) -> List[Transaction]:
    return (
        session.query(Transaction)
        .filter(Transaction.seller_user_id == user.id, Transaction.platform_fee_status == "paid")
        .order_by(Transaction.platform_fee_paid_at.desc())
        .all()
    )


def pending_commissions(session: Session) -> List[Transaction]:
    return (
        session.query(Transaction)
        .filter(
            Transaction.platform_fee_status.in_(("pending", "invoiced")),
            Transaction.status != "cancelled",
        )
        .order_by(Transaction.id)
        .all()
    )
