from decimal import Decimal

import pytest

from estate_direct.constants import Province
from estate_direct.core.errors import UnknownJurisdiction
from estate_direct.services import jurisdictions
from estate_direct.services.jurisdictions import TaxOptions, compute_land_transfer_tax


def test_ontario_provincial_tax_on_500k():
    tax = compute_land_transfer_tax("ON", Decimal("500000"))
    assert tax.provincial == Decimal("6475.00")
    assert tax.municipal == Decimal("0.00")
    assert tax.total == Decimal("6475.00")


def test_toronto_adds_municipal_tax():
    tax = compute_land_transfer_tax("ON", Decimal("500000"), TaxOptions(is_toronto=True))
    assert tax.municipal == Decimal("6475.00")
    assert tax.total == Decimal("12950.00")


def test_toronto_first_time_buyer_rebates_both_levels():
    tax = compute_land_transfer_tax(
        "ON", Decimal("500000"), TaxOptions(is_toronto=True, is_first_time_buyer=True)
    )
    assert tax.rebate == Decimal("8475.00")
    assert tax.total == Decimal("4475.00")


def test_first_time_rebate_never_exceeds_tax():
    tax = compute_land_transfer_tax("ON", Decimal("100000"), TaxOptions(is_first_time_buyer=True))
    assert tax.provincial == Decimal("725.00")
    assert tax.rebate == Decimal("725.00")
    assert tax.total == Decimal("0.00")


@pytest.mark.parametrize("price", [Decimal("0"), Decimal("-1"), Decimal("-250000")])
def test_non_positive_price_is_zero_everywhere(price):
    for province in Province:
        tax = compute_land_transfer_tax(province, price)
        assert tax.total == Decimal("0")
        assert tax.registration_fee == Decimal("0")


@pytest.mark.parametrize("province", list(Province))
def test_total_is_monotonic_in_price(province):
    prices = [Decimal(p) for p in ("1", "55000", "199999", "250000", "525000", "1000000", "2500000", "4000000")]
    totals = [compute_land_transfer_tax(province, price).total for price in prices]
    assert totals == sorted(totals)


def test_bracket_contributions_sum_to_progressive_tax():
    contributions = jurisdictions.bracket_contributions(jurisdictions.ONTARIO_BRACKETS, Decimal("2500000"))
    assert len(contributions) == len(jurisdictions.ONTARIO_BRACKETS)
    assert sum(contributions) == jurisdictions.progressive_tax(jurisdictions.ONTARIO_BRACKETS, Decimal("2500000"))
    assert contributions[-1] == Decimal("500000") * Decimal("0.025")


def test_lowercase_code_is_accepted():
    assert jurisdictions.parse_province("on") is Province.ON
    assert compute_land_transfer_tax(" bc ", Decimal("100000")).total == Decimal("1000.00")


def test_unknown_code_raises():
    with pytest.raises(UnknownJurisdiction):
        compute_land_transfer_tax("ZZ", Decimal("500000"))
    with pytest.raises(UnknownJurisdiction):
        jurisdictions.get_profile("")


def test_bc_first_time_exemption_phases_out():
    full = compute_land_transfer_tax("BC", Decimal("500000"), TaxOptions(is_first_time_buyer=True))
    assert full.total == Decimal("0.00")

    partial = compute_land_transfer_tax("BC", Decimal("512500"), TaxOptions(is_first_time_buyer=True))
    assert partial.provincial == Decimal("8250.00")
    assert partial.rebate == Decimal("4125.00")
    assert partial.total == Decimal("4125.00")

    none = compute_land_transfer_tax("BC", Decimal("600000"), TaxOptions(is_first_time_buyer=True))
    assert none.rebate == Decimal("0.00")


def test_bc_newly_built_exemption():
    tax = compute_land_transfer_tax("BC", Decimal("775000"), TaxOptions(is_newly_built=True))
    assert tax.provincial == Decimal("13500.00")
    assert tax.rebate == Decimal("6750.00")
    assert tax.total == Decimal("6750.00")


def test_alberta_registration_fee_only():
    tax = compute_land_transfer_tax("AB", Decimal("500000"))
    assert tax.provincial == Decimal("0.00")
    assert tax.registration_fee == Decimal("150.00")
    assert tax.total == Decimal("150.00")
    assert tax.note

    assert compute_land_transfer_tax("AB", Decimal("1000")).registration_fee == Decimal("51.00")


def test_newfoundland_flat_registration_fee():
    tax = compute_land_transfer_tax("NL", Decimal("350000"))
    assert tax.registration_fee == Decimal("150.00")
    assert tax.total == Decimal("150.00")


def test_quebec_welcome_tax_is_municipal():
    tax = compute_land_transfer_tax("QC", Decimal("500000"))
    assert tax.provincial == Decimal("0.00")
    assert tax.municipal == Decimal("5843.00")

    montreal = compute_land_transfer_tax("QC", Decimal("1500000"), TaxOptions(municipality="Montreal"))
    quebec = compute_land_transfer_tax("QC", Decimal("1500000"))
    assert montreal.total > quebec.total


def test_manitoba_and_flat_rate_provinces():
    assert compute_land_transfer_tax("MB", Decimal("200000")).provincial == Decimal("1650.00")
    assert compute_land_transfer_tax("NS", Decimal("300000")).municipal == Decimal("4500.00")
    assert compute_land_transfer_tax("NB", Decimal("300000")).provincial == Decimal("3000.00")
    assert compute_land_transfer_tax("PE", Decimal("300000")).provincial == Decimal("3000.00")
    for code in ("SK", "YT", "NT", "NU"):
        assert compute_land_transfer_tax(code, Decimal("300000")).total == Decimal("0.00")


def test_closing_cost_estimate_adds_fixed_items():
    estimate = jurisdictions.estimate_closing_costs("ON", Decimal("500000"))
    assert estimate.land_transfer_tax == Decimal("6475.00")
    assert estimate.total == Decimal("10175.00")
    assert estimate.as_dict()["legal_fees"] == Decimal("1500")


def test_every_province_has_a_profile():
    profiles = jurisdictions.list_provinces()
    assert {profile.code for profile in profiles} == set(Province)
    assert all(profile.required_forms for profile in profiles)
