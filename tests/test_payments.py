from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

import estate_direct.config as app_config
from estate_direct.core.errors import InvalidTransition, NotAuthorized
from estate_direct.models.models import AuditLog, User
from estate_direct.services import payments as payment_service
from estate_direct.services import transactions as transaction_service


class _FakeGateway:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def charge_commission(self, transaction_id, amount, description=""):
        self.calls.append((transaction_id, amount))
        return self.result


def _seller(db_session, transaction):
    return db_session.get(User, transaction.seller_user_id)


def test_cents_conversion():
    assert payment_service.to_cents(Decimal("4900.00")) == 490000
    assert payment_service.to_cents(Decimal("0.005")) == 1
    assert payment_service.from_cents(490001) == Decimal("4900.01")


def test_charge_commission_invoices_fee(db_session, accepted_transaction, monkeypatch):
    transaction = accepted_transaction()
    fake = _FakeGateway(payment_service.ChargeResult(reference="pi_123", client_secret="pi_123_secret"))
    monkeypatch.setattr(payment_service, "gateway", fake)

    charge = payment_service.charge_commission(db_session, transaction, _seller(db_session, transaction))
    db_session.commit()

    assert fake.calls == [(transaction.id, Decimal("4900.00"))]
    assert charge.client_secret == "pi_123_secret"
    assert charge.warnings == []
    assert transaction.platform_fee_status == "invoiced"
    assert transaction.platform_fee_payment_reference == "pi_123"
    assert transaction.platform_fee_payment_method == "stripe"

    # A second request reuses the open invoice.
    payment_service.charge_commission(db_session, transaction, _seller(db_session, transaction))
    assert len(fake.calls) == 1


def test_gateway_failure_becomes_warning(db_session, accepted_transaction, monkeypatch):
    transaction = accepted_transaction()
    monkeypatch.setattr(payment_service, "gateway", _FakeGateway(payment_service.ChargeResult(error="card_declined")))

    charge = payment_service.charge_commission(db_session, transaction, _seller(db_session, transaction))
    db_session.commit()

    assert charge.warnings == ["Payment could not be started: card_declined"]
    assert transaction.platform_fee_status == "pending"
    assert db_session.query(AuditLog).filter(AuditLog.action == "payments.commission.failed").count() == 1


def test_only_seller_or_admin_pays(db_session, accepted_transaction, monkeypatch):
    transaction = accepted_transaction()
    monkeypatch.setattr(payment_service, "gateway", _FakeGateway(payment_service.ChargeResult(reference="pi_9")))
    buyer = db_session.get(User, transaction.buyer_user_id)

    with pytest.raises(NotAuthorized):
        payment_service.charge_commission(db_session, transaction, buyer)

    transaction_service.cancel_transaction(db_session, transaction, buyer, reason="Walked away")
    with pytest.raises(InvalidTransition):
        payment_service.charge_commission(db_session, transaction, _seller(db_session, transaction))


def test_stripe_gateway_requires_key(monkeypatch):
    monkeypatch.setattr(app_config.settings, "stripe_api_key", None)
    result = payment_service.StripeGateway().charge_commission(1, Decimal("10.00"))
    assert not result.ok
    assert result.error == "Stripe is not configured"


def test_stripe_gateway_creates_idempotent_intent(monkeypatch):
    captured = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="pi_777", client_secret="pi_777_secret", status="requires_payment_method")

    monkeypatch.setattr(app_config.settings, "stripe_api_key", "sk_test_123")
    monkeypatch.setattr(stripe.PaymentIntent, "create", _create)

    result = payment_service.StripeGateway().charge_commission(42, Decimal("4900.00"))

    assert result.ok
    assert result.reference == "pi_777"
    assert captured["amount"] == 490000
    assert captured["currency"] == "cad"
    assert captured["idempotency_key"] == "platform-fee-42"
    assert captured["metadata"] == {"transaction_id": "42", "kind": "platform_fee"}


def test_stripe_gateway_error_is_returned(monkeypatch):
    def _create(**kwargs):
        raise stripe.StripeError("network down")

    monkeypatch.setattr(app_config.settings, "stripe_api_key", "sk_test_123")
    monkeypatch.setattr(stripe.PaymentIntent, "create", _create)

    result = payment_service.StripeGateway().charge_commission(42, Decimal("1.00"))
    assert not result.ok
    assert "network down" in result.error


def test_webhook_event_marks_fee_paid_once(db_session, accepted_transaction, monkeypatch):
    transaction = accepted_transaction()
    monkeypatch.setattr(payment_service, "gateway", _FakeGateway(payment_service.ChargeResult(reference="pi_55")))
    payment_service.charge_commission(db_session, transaction, _seller(db_session, transaction))
    db_session.commit()

    event = {
        "type": "payment_intent.succeeded",
        "data": {
            "object": {
                "id": "pi_55",
                "amount_received": 490000,
                "metadata": {"transaction_id": str(transaction.id), "kind": "platform_fee"},
            }
        },
    }
    assert payment_service.handle_stripe_event(db_session, event) is transaction
    db_session.commit()
    paid_at = transaction.platform_fee_paid_at

    payment_service.handle_stripe_event(db_session, event)
    db_session.commit()

    assert transaction.platform_fee_status == "paid"
    assert transaction.platform_fee_paid_at == paid_at
    assert db_session.query(AuditLog).filter(AuditLog.action == "payments.commission.paid").count() == 1
    assert payment_service.handle_stripe_event(db_session, {"type": "charge.refunded", "data": {}}) is None


def test_admin_marks_fee_paid(db_session, accepted_transaction, create_user):
    transaction = accepted_transaction()
    seller = _seller(db_session, transaction)
    admin = create_user(is_admin=True)

    assert payment_service.pending_commissions(db_session) == [transaction]
    with pytest.raises(NotAuthorized):
        payment_service.mark_commission_paid(db_session, transaction.id, seller, payment_method="etransfer")

    payment_service.mark_commission_paid(
        db_session, transaction.id, admin, payment_method="etransfer", payment_reference="ET-1", notes="Received"
    )
    db_session.commit()

    assert transaction.platform_fee_status == "paid"
    assert transaction.platform_fee_payment_method == "etransfer"
    assert payment_service.pending_commissions(db_session) == []
    assert payment_service.payment_history(db_session, seller) == [transaction]
    with pytest.raises(InvalidTransition):
        payment_service.charge_commission(db_session, transaction, seller)
