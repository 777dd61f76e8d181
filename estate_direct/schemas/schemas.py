from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ..constants import (
    CONDITION_OUTCOMES,
    CONDITION_STATES,
    DEPOSIT_DISPOSITIONS,
    DEPOSIT_HOLDERS,
    FINANCING_TYPES,
    OFFER_STATES,
    PLATFORM_FEE_STATES,
    TRANSACTION_STATES,
    ConditionType,
    Province,
)

DepositHolder = Literal[DEPOSIT_HOLDERS]
FinancingType = Literal[FINANCING_TYPES]
DepositDisposition = Literal[DEPOSIT_DISPOSITIONS]
ConditionOutcome = Literal[tuple(sorted(CONDITION_OUTCOMES))]
OfferStatus = Literal[OFFER_STATES]
TransactionStatus = Literal[TRANSACTION_STATES]
ConditionStatus = Literal[CONDITION_STATES]
PlatformFeeStatus = Literal[PLATFORM_FEE_STATES]


class UserRead(BaseModel):
    id: int
    email: EmailStr
    full_name: Optional[str] = None
    is_admin: bool
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# --- Offers ---


class ConditionTerm(BaseModel):
    type: ConditionType
    description: Optional[str] = None
    deadline_days: int


class OfferCreate(BaseModel):
    listing_id: int
    offer_price: Decimal
    deposit_amount: Decimal
    deposit_due_date: datetime
    closing_date: datetime
    irrevocable_date: datetime
    possession_date: Optional[datetime] = None
    deposit_held_by: DepositHolder = "seller_lawyer"
    financing_type: FinancingType = "conventional"
    conditions: List[ConditionTerm] = []
    inclusions: List[str] = []
    exclusions: List[str] = []
    additional_terms: Optional[str] = None
    save_as_draft: bool = False

    def terms_dict(self) -> Dict[str, Any]:
        data = self.model_dump(exclude={"listing_id", "save_as_draft"})
        data["conditions"] = [term.model_dump(mode="json") for term in self.conditions]
        return data


class CounterOfferCreate(BaseModel):
    offer_price: Optional[Decimal] = None
    deposit_amount: Optional[Decimal] = None
    deposit_due_date: Optional[datetime] = None
    closing_date: Optional[datetime] = None
    irrevocable_date: Optional[datetime] = None
    possession_date: Optional[datetime] = None
    deposit_held_by: Optional[DepositHolder] = None
    financing_type: Optional[FinancingType] = None
    conditions: Optional[List[ConditionTerm]] = None
    inclusions: Optional[List[str]] = None
    exclusions: Optional[List[str]] = None
    additional_terms: Optional[str] = None

    def overrides(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_none=True, exclude={"conditions"})
        if self.conditions is not None:
            data["conditions"] = [term.model_dump(mode="json") for term in self.conditions]
        return data


class OfferRejectRequest(BaseModel):
    reason: Optional[str] = None


class OfferRead(BaseModel):
    id: int
    property_id: int
    listing_id: int
    buyer_user_id: int
    seller_user_id: int
    province: str
    offer_price: Decimal
    deposit_amount: Decimal
    deposit_due_date: datetime
    deposit_held_by: str
    closing_date: datetime
    possession_date: Optional[datetime] = None
    irrevocable_date: datetime
    conditions: List[Dict[str, Any]] = []
    inclusions: List[str] = []
    exclusions: List[str] = []
    financing_type: str
    additional_terms: Optional[str] = None
    status: OfferStatus
    display_status: OfferStatus
    parent_offer_id: Optional[int] = None
    is_counter_offer: bool
    counter_offer_ids: List[int] = []
    buyer_signed: bool
    buyer_signed_at: Optional[datetime] = None
    seller_signed: bool
    seller_signed_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OfferEnvelope(BaseModel):
    offer: OfferRead
    warnings: List[str] = []


# --- Transactions and conditions ---


class ConditionExtensionRead(BaseModel):
    id: int
    previous_deadline: datetime
    new_deadline: datetime
    reason: Optional[str] = None
    proposed_by_user_id: int
    agreed_by_buyer: bool
    agreed_by_seller: bool
    agreed_at: Optional[datetime] = None
    is_binding: bool

    model_config = ConfigDict(from_attributes=True)


class ConditionRead(BaseModel):
    id: int
    transaction_id: int
    offer_id: int
    condition_type: ConditionType
    title: str
    description: str
    deadline: datetime
    days_from_acceptance: Optional[int] = None
    status: ConditionStatus
    resolved_at: Optional[datetime] = None
    resolved_by_user_id: Optional[int] = None
    resolution_method: Optional[str] = None
    resolution_notes: Optional[str] = None
    extensions: List[ConditionExtensionRead] = []

    model_config = ConfigDict(from_attributes=True)


class TransactionStepRead(BaseModel):
    id: int
    step: str
    completed_at: datetime
    completed_by_user_id: Optional[int] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionNoteRead(BaseModel):
    id: int
    created_by_user_id: int
    content: str
    is_private: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditEntryRead(BaseModel):
    id: int
    timestamp: datetime
    actor_user_id: Optional[int] = None
    action: str
    target_entity_type: Optional[str] = None
    target_entity_id: Optional[str] = None
    before: Any = None
    after: Any = None


class TransactionRead(BaseModel):
    id: int
    property_id: int
    listing_id: int
    accepted_offer_id: int
    buyer_user_id: int
    seller_user_id: int
    province: str
    purchase_price: Decimal
    deposit_amount: Decimal
    deposit_status: str
    acceptance_date: datetime
    condition_deadline: Optional[datetime] = None
    firm_date: Optional[datetime] = None
    closing_date: datetime
    possession_date: Optional[datetime] = None
    actual_closing_date: Optional[datetime] = None
    status: TransactionStatus
    current_step: str
    next_action: str
    platform_fee_rate: Decimal
    platform_fee_amount: Optional[Decimal] = None
    platform_fee_status: PlatformFeeStatus
    platform_fee_payment_reference: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancellation_failed_condition: Optional[str] = None
    deposit_disposition: Optional[DepositDisposition] = None
    disputed_at: Optional[datetime] = None
    dispute_reason: Optional[str] = None
    buyer_lawyer: Optional[Dict[str, Any]] = None
    seller_lawyer: Optional[Dict[str, Any]] = None
    notary: Optional[Dict[str, Any]] = None
    conditions: List[ConditionRead] = []
    steps: List[TransactionStepRead] = []

    model_config = ConfigDict(from_attributes=True)


class TransactionEnvelope(BaseModel):
    transaction: TransactionRead
    warnings: List[str] = []


class AcceptOfferResponse(BaseModel):
    offer: OfferRead
    transaction: TransactionRead
    warnings: List[str] = []


class StepAdvanceRequest(BaseModel):
    step: str
    notes: Optional[str] = None


class ConditionResolveRequest(BaseModel):
    outcome: ConditionOutcome
    notes: Optional[str] = None
    method: Optional[str] = None


class ConditionEnvelope(BaseModel):
    condition: ConditionRead
    transaction: TransactionRead
    warnings: List[str] = []


class ExtensionRequest(BaseModel):
    new_deadline: datetime
    reason: Optional[str] = None


class ExtensionEnvelope(BaseModel):
    extension: ConditionExtensionRead
    condition: ConditionRead
    warnings: List[str] = []


class CancelRequest(BaseModel):
    reason: str = Field(min_length=1)
    deposit_disposition: Optional[DepositDisposition] = None


class DisputeRequest(BaseModel):
    reason: str = Field(min_length=1)


class NoteCreate(BaseModel):
    content: str = Field(min_length=1)
    is_private: bool = False


class ContactRecord(BaseModel):
    name: str
    firm: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class LawyersUpdate(BaseModel):
    buyer_lawyer: Optional[ContactRecord] = None
    seller_lawyer: Optional[ContactRecord] = None
    notary: Optional[ContactRecord] = None


# --- Jurisdictions ---


class LandTransferTaxRead(BaseModel):
    provincial: Decimal
    municipal: Decimal
    rebate: Decimal
    registration_fee: Decimal
    total: Decimal
    note: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ClosingCostEstimateRead(BaseModel):
    land_transfer_tax: Decimal
    legal_fees: Decimal
    title_insurance: Decimal
    home_inspection: Decimal
    appraisal: Decimal
    moving_costs: Decimal
    total: Decimal

    model_config = ConfigDict(from_attributes=True)


class ClosingCostSummaryRead(BaseModel):
    transaction_id: int
    province: str
    purchase_price: Decimal
    deposit_amount: Decimal
    balance_due_on_closing: Decimal
    land_transfer_tax: LandTransferTaxRead
    closing_costs: ClosingCostEstimateRead
    total_due_on_closing: Decimal


class ProvinceProfileRead(BaseModel):
    code: Province
    name: str
    regulatory_body: str
    forms_provider: str
    closing_professional: str
    required_forms: List[str]
    notes: List[str] = []

    model_config = ConfigDict(from_attributes=True)


# --- Payments ---


class PaymentConfigRead(BaseModel):
    publishable_key: Optional[str] = None
    currency: str
    platform_fee_rate: Decimal
    enabled: bool


class PlatformFeeRead(BaseModel):
    transaction_id: int
    platform_fee_rate: Decimal
    platform_fee_amount: Optional[Decimal] = None
    platform_fee_status: PlatformFeeStatus
    platform_fee_invoiced_at: Optional[datetime] = None
    platform_fee_paid_at: Optional[datetime] = None
    platform_fee_payment_method: Optional[str] = None
    platform_fee_payment_reference: Optional[str] = None


class CommissionChargeRead(BaseModel):
    fee: PlatformFeeRead
    client_secret: Optional[str] = None
    warnings: List[str] = []


class MarkPaidRequest(BaseModel):
    transaction_id: int
    payment_method: str = Field(min_length=1)
    payment_reference: Optional[str] = None
    notes: Optional[str] = None


# --- Notifications ---


class NotificationRead(BaseModel):
    id: int
    event: str
    title: str
    message: str
    level: str
    link_url: Optional[str] = None
    created_at: datetime
    read_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
