"""Land transfer tax and closing cost rules for the Canadian provinces and territories.

Every function in this module is pure: no database access, no clock, no I/O.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from ..constants import CLOSING_COST_ESTIMATES, Province
from ..core.errors import UnknownJurisdiction

CENT = Decimal("0.01")
ZERO = Decimal("0")

Number = Union[int, float, str, Decimal, None]
# (upper bound of the band, or None for the open top band; marginal rate)
Bracket = Tuple[Optional[Decimal], Decimal]


def _d(value: str) -> Decimal:
    return Decimal(value)


ONTARIO_BRACKETS: Sequence[Bracket] = (
    (_d("55000"), _d("0.005")),
    (_d("250000"), _d("0.01")),
    (_d("400000"), _d("0.015")),
    (_d("2000000"), _d("0.02")),
    (None, _d("0.025")),
)
TORONTO_BRACKETS = ONTARIO_BRACKETS

BC_BRACKETS: Sequence[Bracket] = (
    (_d("200000"), _d("0.01")),
    (_d("2000000"), _d("0.02")),
    (_d("3000000"), _d("0.03")),
    (None, _d("0.05")),  # 3% plus the 2% residential surcharge
)

QUEBEC_BRACKETS: Sequence[Bracket] = (
    (_d("55200"), _d("0.005")),
    (_d("276200"), _d("0.01")),
    (_d("500000"), _d("0.015")),
    (None, _d("0.02")),
)
MONTREAL_BRACKETS: Sequence[Bracket] = (
    (_d("55200"), _d("0.005")),
    (_d("276200"), _d("0.01")),
    (_d("500000"), _d("0.015")),
    (_d("1000000"), _d("0.02")),
    (_d("2000000"), _d("0.025")),
    (None, _d("0.03")),
)

MANITOBA_BRACKETS: Sequence[Bracket] = (
    (_d("30000"), ZERO),
    (_d("90000"), _d("0.005")),
    (_d("150000"), _d("0.01")),
    (_d("200000"), _d("0.015")),
    (None, _d("0.02")),
)

NOVA_SCOTIA_RATES: Dict[str, Decimal] = {
    "halifax": _d("0.015"),
    "default": _d("0.015"),
}

FLAT_ONE_PERCENT: Sequence[Bracket] = ((None, _d("0.01")),)

ONTARIO_FIRST_TIME_REBATE_CAP = _d("4000")
TORONTO_FIRST_TIME_REBATE_CAP = _d("4475")
BC_FIRST_TIME_FULL_LIMIT = _d("500000")
BC_FIRST_TIME_PHASE_OUT_LIMIT = _d("525000")
BC_NEW_BUILD_FULL_LIMIT = _d("750000")
BC_NEW_BUILD_PHASE_OUT_LIMIT = _d("800000")
ALBERTA_MIN_REGISTRATION_FEE = _d("50")
NEWFOUNDLAND_REGISTRATION_FEE = _d("150")


@dataclass(frozen=True)
class TaxOptions:
    is_first_time_buyer: bool = False
    is_toronto: bool = False
    is_newly_built: bool = False
    municipality: Optional[str] = None


@dataclass(frozen=True)
class LandTransferTax:
    provincial: Decimal = ZERO
    municipal: Decimal = ZERO
    rebate: Decimal = ZERO
    registration_fee: Decimal = ZERO
    total: Decimal = ZERO
    note: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ClosingCostEstimate:
    land_transfer_tax: Decimal
    legal_fees: Decimal = CLOSING_COST_ESTIMATES["legal_fees"]
    title_insurance: Decimal = CLOSING_COST_ESTIMATES["title_insurance"]
    home_inspection: Decimal = CLOSING_COST_ESTIMATES["home_inspection"]
    appraisal: Decimal = CLOSING_COST_ESTIMATES["appraisal"]
    moving_costs: Decimal = CLOSING_COST_ESTIMATES["moving_costs"]
    total: Decimal = field(init=False)

    def __post_init__(self) -> None:
        total = (
            self.land_transfer_tax
            + self.legal_fees
            + self.title_insurance
            + self.home_inspection
            + self.appraisal
            + self.moving_costs
        )
        object.__setattr__(self, "total", to_money(total))

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ProvinceProfile:
    code: Province
    name: str
    regulatory_body: str
    forms_provider: str
    closing_professional: str
    required_forms: Tuple[str, ...]
    notes: Tuple[str, ...] = ()


def to_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Number) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return ZERO


def bracket_contributions(brackets: Sequence[Bracket], price: Number) -> List[Decimal]:
    """Unrounded tax owed inside each band of a marginal-rate schedule."""
    amount = to_decimal(price)
    contributions: List[Decimal] = []
    lower = ZERO
    for upper, rate in brackets:
        if amount <= lower:
            contributions.append(ZERO)
            continue
        top = amount if upper is None else min(amount, upper)
        contributions.append((top - lower) * rate)
        if upper is not None:
            lower = upper
    return contributions


def progressive_tax(brackets: Sequence[Bracket], price: Number) -> Decimal:
    return sum(bracket_contributions(brackets, price), ZERO)


def _phase_out(tax: Decimal, price: Decimal, full_limit: Decimal, phase_out_limit: Decimal) -> Decimal:
    if price <= full_limit:
        return tax
    if price <= phase_out_limit:
        return tax * (phase_out_limit - price) / (phase_out_limit - full_limit)
    return ZERO


def _result(
    provincial: Decimal = ZERO,
    municipal: Decimal = ZERO,
    rebate: Decimal = ZERO,
    registration_fee: Decimal = ZERO,
    note: Optional[str] = None,
) -> LandTransferTax:
    provincial = to_money(provincial)
    municipal = to_money(municipal)
    registration_fee = to_money(registration_fee)
    rebate = min(to_money(rebate), provincial + municipal)
    return LandTransferTax(
        provincial=provincial,
        municipal=municipal,
        rebate=rebate,
        registration_fee=registration_fee,
        total=provincial + municipal + registration_fee - rebate,
        note=note,
    )


def _ontario(price: Decimal, options: TaxOptions) -> LandTransferTax:
    provincial = progressive_tax(ONTARIO_BRACKETS, price)
    municipal = progressive_tax(TORONTO_BRACKETS, price) if options.is_toronto else ZERO
    rebate = ZERO
    if options.is_first_time_buyer:
        rebate = min(provincial, ONTARIO_FIRST_TIME_REBATE_CAP)
        if options.is_toronto:
            rebate += min(municipal, TORONTO_FIRST_TIME_REBATE_CAP)
    return _result(provincial=provincial, municipal=municipal, rebate=rebate)


def _british_columbia(price: Decimal, options: TaxOptions) -> LandTransferTax:
    tax = progressive_tax(BC_BRACKETS, price)
    rebate = ZERO
    if options.is_first_time_buyer:
        rebate = _phase_out(tax, price, BC_FIRST_TIME_FULL_LIMIT, BC_FIRST_TIME_PHASE_OUT_LIMIT)
    # Newly built exemption replaces the first-time buyer exemption when it applies.
    if options.is_newly_built and price <= BC_NEW_BUILD_PHASE_OUT_LIMIT:
        rebate = _phase_out(tax, price, BC_NEW_BUILD_FULL_LIMIT, BC_NEW_BUILD_PHASE_OUT_LIMIT)
    return _result(provincial=tax, rebate=rebate)


def _alberta(price: Decimal, options: TaxOptions) -> LandTransferTax:
    fee = (price / Decimal("5000")).to_integral_value(rounding=ROUND_CEILING) + ALBERTA_MIN_REGISTRATION_FEE
    return _result(
        registration_fee=max(ALBERTA_MIN_REGISTRATION_FEE, fee),
        note="Alberta charges title registration fees instead of land transfer tax",
    )


def _quebec(price: Decimal, options: TaxOptions) -> LandTransferTax:
    municipality = (options.municipality or "").strip().lower()
    brackets = MONTREAL_BRACKETS if municipality == "montreal" else QUEBEC_BRACKETS
    # The welcome tax is levied by the municipality.
    return _result(municipal=progressive_tax(brackets, price))


def _manitoba(price: Decimal, options: TaxOptions) -> LandTransferTax:
    return _result(provincial=progressive_tax(MANITOBA_BRACKETS, price))


def _nova_scotia(price: Decimal, options: TaxOptions) -> LandTransferTax:
    municipality = (options.municipality or "halifax").strip().lower()
    rate = NOVA_SCOTIA_RATES.get(municipality, NOVA_SCOTIA_RATES["default"])
    return _result(municipal=progressive_tax(((None, rate),), price))


def _flat_provincial(price: Decimal, options: TaxOptions) -> LandTransferTax:
    return _result(provincial=progressive_tax(FLAT_ONE_PERCENT, price))


def _newfoundland(price: Decimal, options: TaxOptions) -> LandTransferTax:
    return _result(
        registration_fee=NEWFOUNDLAND_REGISTRATION_FEE,
        note="Registration fees only, no land transfer tax",
    )


def _no_tax(price: Decimal, options: TaxOptions) -> LandTransferTax:
    return _result()


TaxRule = Callable[[Decimal, TaxOptions], LandTransferTax]

TAX_RULES: Dict[Province, TaxRule] = {
    Province.ON: _ontario,
    Province.BC: _british_columbia,
    Province.AB: _alberta,
    Province.QC: _quebec,
    Province.MB: _manitoba,
    Province.SK: _no_tax,
    Province.NS: _nova_scotia,
    Province.NB: _flat_provincial,
    Province.PE: _flat_provincial,
    Province.NL: _newfoundland,
    Province.YT: _no_tax,
    Province.NT: _no_tax,
    Province.NU: _no_tax,
}

PROVINCE_PROFILES: Dict[Province, ProvinceProfile] = {
    Province.ON: ProvinceProfile(
        Province.ON,
        "Ontario",
        "Real Estate Council of Ontario (RECO)",
        "Ontario Real Estate Association (OREA)",
        "lawyer",
        (
            "agreement_purchase_sale",
            "listing_agreement",
            "property_disclosure",
            "buyer_representation",
            "condition_waiver",
            "amendment",
        ),
    ),
    Province.BC: ProvinceProfile(
        Province.BC,
        "British Columbia",
        "BC Financial Services Authority (BCFSA)",
        "BC Real Estate Association (BCREA)",
        "lawyer_or_notary",
        ("agreement_purchase_sale", "property_disclosure", "condition_waiver"),
    ),
    Province.AB: ProvinceProfile(
        Province.AB,
        "Alberta",
        "Real Estate Council of Alberta (RECA)",
        "Alberta Real Estate Association (AREA)",
        "lawyer",
        ("agreement_purchase_sale", "property_disclosure", "real_property_report"),
    ),
    Province.QC: ProvinceProfile(
        Province.QC,
        "Quebec",
        "OACIQ",
        "OACIQ",
        "notary",
        ("agreement_purchase_sale", "listing_agreement", "property_disclosure"),
        (
            "Notary required for all real estate transactions",
            "Double representation prohibited since June 2022",
            "Promise to Purchase used instead of Agreement of Purchase and Sale",
        ),
    ),
    Province.MB: ProvinceProfile(
        Province.MB,
        "Manitoba",
        "Manitoba Securities Commission",
        "Manitoba Real Estate Association (MREA)",
        "lawyer",
        ("agreement_purchase_sale", "property_disclosure"),
    ),
    Province.SK: ProvinceProfile(
        Province.SK,
        "Saskatchewan",
        "Saskatchewan Real Estate Commission (SREC)",
        "Saskatchewan REALTORS Association",
        "lawyer",
        ("agreement_purchase_sale", "property_disclosure"),
        ("Saskatchewan does not charge land transfer tax",),
    ),
    Province.NS: ProvinceProfile(
        Province.NS,
        "Nova Scotia",
        "Nova Scotia Real Estate Commission (NSREC)",
        "Nova Scotia Association of REALTORS (NSAR)",
        "lawyer",
        ("agreement_purchase_sale", "property_disclosure", "condition_waiver"),
    ),
    Province.NB: ProvinceProfile(
        Province.NB,
        "New Brunswick",
        "New Brunswick Real Estate Association",
        "New Brunswick Real Estate Association",
        "lawyer",
        ("agreement_purchase_sale", "property_disclosure"),
    ),
    Province.PE: ProvinceProfile(
        Province.PE,
        "Prince Edward Island",
        "PEI Real Estate Association",
        "PEI Real Estate Association",
        "lawyer",
        ("agreement_purchase_sale", "property_disclosure"),
    ),
    Province.NL: ProvinceProfile(
        Province.NL,
        "Newfoundland and Labrador",
        "Newfoundland and Labrador Association of REALTORS",
        "Newfoundland and Labrador Association of REALTORS",
        "lawyer",
        ("agreement_purchase_sale", "property_disclosure"),
    ),
    Province.YT: ProvinceProfile(
        Province.YT,
        "Yukon",
        "Yukon Real Estate Association",
        "Yukon Real Estate Association",
        "lawyer",
        ("agreement_purchase_sale",),
    ),
    Province.NT: ProvinceProfile(
        Province.NT,
        "Northwest Territories",
        "NWT Association of REALTORS",
        "NWT Association of REALTORS",
        "lawyer",
        ("agreement_purchase_sale",),
    ),
    Province.NU: ProvinceProfile(
        Province.NU,
        "Nunavut",
        "N/A",
        "Standard forms",
        "lawyer",
        ("agreement_purchase_sale",),
    ),
}

_missing_rules = (set(Province) - set(TAX_RULES)) | (set(Province) - set(PROVINCE_PROFILES))
if _missing_rules:
    raise RuntimeError(
        "Jurisdiction table is incomplete for: " + ", ".join(sorted(code.value for code in _missing_rules))
    )


def parse_province(code: Union[str, Province]) -> Province:
    if isinstance(code, Province):
        return code
    try:
        return Province((code or "").strip().upper())
    except ValueError as exc:
        raise UnknownJurisdiction(f"Unknown province code: {code}") from exc


def get_profile(code: Union[str, Province]) -> ProvinceProfile:
    return PROVINCE_PROFILES[parse_province(code)]


def list_provinces() -> List[ProvinceProfile]:
    return [PROVINCE_PROFILES[province] for province in Province]


def compute_land_transfer_tax(
    province: Union[str, Province],
    price: Number,
    options: Optional[TaxOptions] = None,
) -> LandTransferTax:
    rule = TAX_RULES[parse_province(province)]
    amount = to_decimal(price)
    # Draft transactions may carry unset or placeholder prices.
    if amount <= ZERO:
        return LandTransferTax()
    return rule(amount, options or TaxOptions())


def estimate_closing_costs(
    province: Union[str, Province],
    price: Number,
    options: Optional[TaxOptions] = None,
) -> ClosingCostEstimate:
    tax = compute_land_transfer_tax(province, price, options)
    return ClosingCostEstimate(land_transfer_tax=tax.total)
