from decimal import Decimal
from enum import Enum


class Province(str, Enum):
    ON = "ON"
    BC = "BC"
    AB = "AB"
    QC = "QC"
    MB = "MB"
    SK = "SK"
    NS = "NS"
    NB = "NB"
    PE = "PE"
    NL = "NL"
    YT = "YT"
    NT = "NT"
    NU = "NU"


class ConditionType(str, Enum):
    FINANCING = "financing"
    INSPECTION = "inspection"
    STATUS_CERTIFICATE = "status_certificate"
    SALE_OF_PROPERTY = "sale_of_property"
    APPRAISAL = "appraisal"
    LAWYER_REVIEW = "lawyer_review"
    OTHER = "other"


OFFER_STATES = (
    "draft",
    "submitted",
    "viewed",
    "accepted",
    "rejected",
    "countered",
    "withdrawn",
    "expired",
)
OPEN_OFFER_STATES = frozenset({"submitted", "viewed"})
TERMINAL_OFFER_STATES = frozenset({"accepted", "rejected", "countered", "withdrawn", "expired"})
WITHDRAWABLE_OFFER_STATES = frozenset({"draft", "submitted", "viewed"})

TRANSACTION_STATES = ("conditional", "firm", "closing", "completed", "cancelled", "disputed")
DISPUTABLE_TRANSACTION_STATES = frozenset({"conditional", "firm", "closing"})

# Ordered; a transaction only ever moves to the next entry.
TRANSACTION_STEPS = (
    "offer_accepted",
    "deposit_pending",
    "conditions_pending",
    "conditions_complete",
    "lawyer_engaged",
    "title_search",
    "mortgage_finalized",
    "closing_documents",
    "final_walkthrough",
    "closing_day",
    "completed",
)

NEXT_ACTIONS = {
    "offer_accepted": "Submit deposit",
    "deposit_pending": "Confirm deposit received",
    "conditions_pending": "Fulfill or waive conditions",
    "conditions_complete": "Engage lawyer/notary",
    "lawyer_engaged": "Complete title search",
    "title_search": "Finalize mortgage",
    "mortgage_finalized": "Review closing documents",
    "closing_documents": "Schedule final walkthrough",
    "final_walkthrough": "Prepare for closing day",
    "closing_day": "Complete closing",
    "completed": "Transaction complete",
}

CONDITION_STATES = ("pending", "fulfilled", "waived", "failed", "extended")
OPEN_CONDITION_STATES = frozenset({"pending", "extended"})
FAVORABLE_CONDITION_STATES = frozenset({"fulfilled", "waived"})
CONDITION_OUTCOMES = frozenset({"fulfilled", "waived", "failed"})

DEPOSIT_DISPOSITIONS = ("returned_to_buyer", "released_to_seller", "disputed", "split")
DEPOSIT_HOLDERS = ("seller_lawyer", "buyer_lawyer", "brokerage", "other")
FINANCING_TYPES = ("conventional", "insured", "cash", "assumption", "vtb")

PLATFORM_FEE_STATES = ("pending", "invoiced", "paid", "waived")

LISTING_STATES = ("draft", "active", "pending", "sold", "expired", "withdrawn", "cancelled")
PROPERTY_STATES = ("draft", "active", "pending", "sold", "withdrawn", "expired")

# Fixed, non-binding closing cost line items (CAD).
CLOSING_COST_ESTIMATES = {
    "legal_fees": Decimal("1500"),
    "title_insurance": Decimal("300"),
    "home_inspection": Decimal("500"),
    "appraisal": Decimal("400"),
    "moving_costs": Decimal("1000"),
}
