from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Query

from ..schemas.schemas import ClosingCostEstimateRead, LandTransferTaxRead, ProvinceProfileRead
from ..services import jurisdictions

router = APIRouter()


def _options(
    is_first_time_buyer: bool,
    is_toronto: bool,
    is_newly_built: bool,
    municipality: Optional[str],
) -> jurisdictions.TaxOptions:
    return jurisdictions.TaxOptions(
        is_first_time_buyer=is_first_time_buyer,
        is_toronto=is_toronto,
        is_newly_built=is_newly_built,
        municipality=municipality.lower() if municipality else None,
    )


@router.get("/", response_model=List[ProvinceProfileRead])
def list_jurisdictions() -> List[ProvinceProfileRead]:
    return jurisdictions.list_provinces()


@router.get("/{code}", response_model=ProvinceProfileRead)
def get_jurisdiction(code: str) -> ProvinceProfileRead:
    return jurisdictions.get_profile(code)


@router.get("/{code}/land-transfer-tax", response_model=LandTransferTaxRead)
def get_land_transfer_tax(
    code: str,
    price: Decimal = Query(...),
    is_first_time_buyer: bool = False,
    is_toronto: bool = False,
    is_newly_built: bool = False,
    municipality: Optional[str] = None,
) -> LandTransferTaxRead:
    options = _options(is_first_time_buyer, is_toronto, is_newly_built, municipality)
    return jurisdictions.compute_land_transfer_tax(code, price, options)


@router.get("/{code}/closing-costs", response_model=ClosingCostEstimateRead)
def get_closing_costs(
    code: str,
    price: Decimal = Query(...),
    is_first_time_buyer: bool = False,
    is_toronto: bool = False,
    is_newly_built: bool = False,
    municipality: Optional[str] = None,
) -> ClosingCostEstimateRead:
    options = _options(is_first_time_buyer, is_toronto, is_newly_built, municipality)
    return jurisdictions.estimate_closing_costs(code, price, options)
