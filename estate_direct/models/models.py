from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship as orm_relationship
from sqlalchemy.orm import validates

from ..config import Base
from ..constants import (
    FAVORABLE_CONDITION_STATES,
    LISTING_STATES,
    NEXT_ACTIONS,
    OPEN_CONDITION_STATES,
    OPEN_OFFER_STATES,
    PROPERTY_STATES,
)


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    audit_logs = orm_relationship("AuditLog", back_populates="actor")
    notifications = orm_relationship("Notification", back_populates="user", cascade="all, delete-orphan")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, default=utcnow, index=True, nullable=False)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String, nullable=False)
    target_entity_type = Column(String, nullable=True)
    target_entity_id = Column(String, nullable=True)
    before = Column(Text, nullable=True)
    after = Column(Text, nullable=True)

    actor = orm_relationship("User", back_populates="audit_logs")


class Property(Base):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    street = Column(String, nullable=False)
    city = Column(String, nullable=False)
    province = Column(String(2), nullable=False, index=True)
    postal_code = Column(String, nullable=True)
    property_type = Column(String, default="detached", nullable=False)
    status = Column(String, default="draft", nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    owner = orm_relationship("User")
    listings = orm_relationship("Listing", back_populates="subject_property")

    @validates("status")
    def _check_status(self, key, value):
        if value not in PROPERTY_STATES:
            raise ValueError(f"Unknown property status: {value}")
        return value

    @property
    def address(self) -> str:
        return f"{self.street}, {self.city}, {self.province}"


class Listing(Base):
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    seller_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    asking_price = Column(Numeric(12, 2), nullable=False)
    status = Column(String, default="draft", nullable=False, index=True)
    sold_price = Column(Numeric(12, 2), nullable=True)
    sold_date = Column(DateTime, nullable=True)
    sold_transaction_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    subject_property = orm_relationship("Property", back_populates="listings")
    seller = orm_relationship("User")
    offers = orm_relationship("Offer", back_populates="listing", order_by="Offer.id")

    @validates("status")
    def _check_status(self, key, value):
        if value not in LISTING_STATES:
            raise ValueError(f"Unknown listing status: {value}")
        return value


class Offer(Base):
    __tablename__ = "offers"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id"), nullable=False, index=True)
    buyer_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    seller_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    province = Column(String(2), nullable=False)

    offer_price = Column(Numeric(12, 2), nullable=False)
    deposit_amount = Column(Numeric(12, 2), nullable=False)
    deposit_due_date = Column(DateTime, nullable=False)
    deposit_held_by = Column(String, default="seller_lawyer", nullable=False)
    closing_date = Column(DateTime, nullable=False)
    possession_date = Column(DateTime, nullable=True)
    irrevocable_date = Column(DateTime, nullable=False)

    # [{"type": "financing", "description": "...", "deadline_days": 5}, ...]
    conditions = Column(JSON, default=list, nullable=False)
    inclusions = Column(JSON, default=list, nullable=False)
    exclusions = Column(JSON, default=list, nullable=False)
    financing_type = Column(String, default="conventional", nullable=False)
    additional_terms = Column(Text, nullable=True)

    status = Column(String, default="draft", nullable=False, index=True)
    parent_offer_id = Column(Integer, ForeignKey("offers.id"), nullable=True, index=True)
    is_counter_offer = Column(Boolean, default=False, nullable=False)

    buyer_signed = Column(Boolean, default=False, nullable=False)
    buyer_signed_at = Column(DateTime, nullable=True)
    seller_signed = Column(Boolean, default=False, nullable=False)
    seller_signed_at = Column(DateTime, nullable=True)

    submitted_at = Column(DateTime, nullable=True)
    viewed_at = Column(DateTime, nullable=True)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    listing = orm_relationship("Listing", back_populates="offers")
    subject_property = orm_relationship("Property")
    buyer = orm_relationship("User", foreign_keys=[buyer_user_id])
    seller = orm_relationship("User", foreign_keys=[seller_user_id])
    parent_offer = orm_relationship("Offer", remote_side=[id], back_populates="counter_offers")
    counter_offers = orm_relationship("Offer", back_populates="parent_offer", order_by="Offer.id")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = as_utc(now) or utcnow()
        return self.status in OPEN_OFFER_STATES and self.irrevocable_date < now

    def effective_status(self, now: Optional[datetime] = None) -> str:
        return "expired" if self.is_expired(now) else self.status

    @property
    def display_status(self) -> str:
        return self.effective_status()

    @property
    def counter_offer_ids(self) -> list[int]:
        return [counter.id for counter in self.counter_offers]


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id"), nullable=False, index=True)
    accepted_offer_id = Column(Integer, ForeignKey("offers.id"), nullable=False, unique=True)
    buyer_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    seller_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    province = Column(String(2), nullable=False)

    purchase_price = Column(Numeric(12, 2), nullable=False)
    deposit_amount = Column(Numeric(12, 2), nullable=False)
    deposit_status = Column(String, default="pending", nullable=False)

    acceptance_date = Column(DateTime, nullable=False)
    condition_deadline = Column(DateTime, nullable=True)
    firm_date = Column(DateTime, nullable=True)
    closing_date = Column(DateTime, nullable=False)
    possession_date = Column(DateTime, nullable=True)
    actual_closing_date = Column(DateTime, nullable=True)

    status = Column(String, default="conditional", nullable=False, index=True)
    current_step = Column(String, default="offer_accepted", nullable=False, index=True)

    platform_fee_rate = Column(Numeric(6, 4), nullable=False)
    platform_fee_amount = Column(Numeric(12, 2), nullable=True)
    platform_fee_status = Column(String, default="pending", nullable=False, index=True)
    platform_fee_invoiced_at = Column(DateTime, nullable=True)
    platform_fee_paid_at = Column(DateTime, nullable=True)
    platform_fee_payment_method = Column(String, nullable=True)
    platform_fee_payment_reference = Column(String, nullable=True, index=True)
    platform_fee_notes = Column(Text, nullable=True)

    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancellation_failed_condition = Column(String, nullable=True)
    deposit_disposition = Column(String, nullable=True)

    disputed_at = Column(DateTime, nullable=True)
    dispute_reason = Column(Text, nullable=True)

    buyer_lawyer = Column(JSON, nullable=True)
    seller_lawyer = Column(JSON, nullable=True)
    notary = Column(JSON, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    listing = orm_relationship("Listing")
    subject_property = orm_relationship("Property")
    accepted_offer = orm_relationship("Offer")
    buyer = orm_relationship("User", foreign_keys=[buyer_user_id])
    seller = orm_relationship("User", foreign_keys=[seller_user_id])
    conditions = orm_relationship(
        "Condition",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="Condition.deadline, Condition.id",
    )
    steps = orm_relationship(
        "TransactionStepLog",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionStepLog.id",
    )
    notes = orm_relationship(
        "TransactionNote",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionNote.id",
    )

    @validates("purchase_price", "deposit_amount")
    def _freeze_amounts(self, key, value):
        current = getattr(self, key)
        if current is not None and value != current:
            raise ValueError(f"{key} is fixed once the transaction exists.")
        return value

    @property
    def next_action(self) -> str:
        return NEXT_ACTIONS.get(self.current_step, "Unknown step")

    def is_party(self, user_id: int) -> bool:
        return user_id in (self.buyer_user_id, self.seller_user_id)

    def conditions_resolved(self) -> bool:
        return all(condition.status in FAVORABLE_CONDITION_STATES for condition in self.conditions)

    def days_until_closing(self, now: Optional[datetime] = None) -> int:
        now = as_utc(now) or utcnow()
        delta = self.closing_date - now
        return delta.days + (1 if delta.seconds or delta.microseconds else 0)

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = as_utc(now) or utcnow()
        return now > self.closing_date and self.status not in {"completed", "cancelled"}


class TransactionStepLog(Base):
    __tablename__ = "transaction_steps"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True)
    step = Column(String, nullable=False)
    completed_at = Column(DateTime, default=utcnow, nullable=False)
    completed_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)

    transaction = orm_relationship("Transaction", back_populates="steps")


class TransactionNote(Base):
    __tablename__ = "transaction_notes"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    is_private = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    transaction = orm_relationship("Transaction", back_populates="notes")


class Condition(Base):
    __tablename__ = "conditions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True)
    offer_id = Column(Integer, ForeignKey("offers.id"), nullable=False, index=True)
    condition_type = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    deadline = Column(DateTime, nullable=False, index=True)
    days_from_acceptance = Column(Integer, nullable=True)
    status = Column(String, default="pending", nullable=False, index=True)

    resolved_at = Column(DateTime, nullable=True)
    resolved_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    resolution_method = Column(String, nullable=True)
    resolution_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    transaction = orm_relationship("Transaction", back_populates="conditions")
    offer = orm_relationship("Offer")
    extensions = orm_relationship(
        "ConditionExtension",
        back_populates="condition",
        cascade="all, delete-orphan",
        order_by="ConditionExtension.id",
    )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_CONDITION_STATES

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = as_utc(now) or utcnow()
        return self.is_open and now > self.deadline

    def days_until_deadline(self, now: Optional[datetime] = None) -> int:
        now = as_utc(now) or utcnow()
        delta = self.deadline - now
        return delta.days + (1 if delta.seconds or delta.microseconds else 0)


class ConditionExtension(Base):
    __tablename__ = "condition_extensions"

    id = Column(Integer, primary_key=True, index=True)
    condition_id = Column(Integer, ForeignKey("conditions.id", ondelete="CASCADE"), nullable=False, index=True)
    previous_deadline = Column(DateTime, nullable=False)
    new_deadline = Column(DateTime, nullable=False)
    reason = Column(Text, nullable=True)
    proposed_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    agreed_by_buyer = Column(Boolean, default=False, nullable=False)
    agreed_by_seller = Column(Boolean, default=False, nullable=False)
    agreed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    condition = orm_relationship("Condition", back_populates="extensions")

    @property
    def is_binding(self) -> bool:
        return bool(self.agreed_by_buyer and self.agreed_by_seller)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    event = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    level = Column(String, default="info", nullable=False)
    link_url = Column(String, nullable=True)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    read_at = Column(DateTime, nullable=True)

    user = orm_relationship("User", back_populates="notifications")
