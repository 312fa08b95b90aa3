# solar_portal/routers/quote.py
from fastapi import APIRouter, HTTPException

from solar_portal.catalog import LOAN_INTEREST_RATE, get_battery, get_package
from solar_portal.financing import calculate_deposit, calculate_monthly_payment, get_financing_options
from solar_portal.pricing import (
    calculate_25_year_savings,
    calculate_annual_savings_with_grant,
    calculate_battery_savings,
    calculate_co2_offset,
    calculate_extras_total,
    calculate_payback_years,
    calculate_total_price_with_grant,
    estimate_consumption,
    recommend_system,
)
from solar_portal.schemas import FinancingOut, QuoteIn, QuoteOut

router = APIRouter(prefix="/api", tags=["quote"])


def build_quote(body: QuoteIn) -> QuoteOut:
    consumption = estimate_consumption(body.monthly_bill, body.household_size)
    battery_only = body.grant_type == "battery_only"

    battery = get_battery(body.battery_id)
    if body.battery_id and battery is None:
        raise HTTPException(status_code=404, detail=f"Unknown battery: {body.battery_id}")
    if battery_only and battery is None:
        raise HTTPException(status_code=400, detail="battery_only quotes need a battery_id")

    package = None
    if not battery_only:
        if body.package_id:
            package = get_package(body.package_id)
            if package is None:
                raise HTTPException(status_code=404, detail=f"Unknown package: {body.package_id}")
        else:
            package = recommend_system(consumption)

    breakdown = calculate_total_price_with_grant(package, battery, body.grant_type, body.location)
    extras = calculate_extras_total(body.extras)
    total = breakdown.total_price + extras

    if package is None:
        annual = calculate_battery_savings(battery.capacity_kwh, consumption).annual_savings
        production = 0
    else:
        annual = calculate_annual_savings_with_grant(package.annual_production_kwh, body.grant_type)
        production = package.annual_production_kwh

    monthly = calculate_monthly_payment(total, LOAN_INTEREST_RATE, body.loan_term) if body.loan_term else None

    return QuoteOut(
        monthly_consumption_kwh=consumption,
        package_id=package.id if package else None,
        battery_id=battery.id if battery else None,
        grant_type=body.grant_type,
        location=body.location,
        gross_price=breakdown.gross_price,
        grant_amount=breakdown.grant_amount,
        extras_total=extras,
        total_price=total,
        deposit=calculate_deposit(total),
        annual_savings=annual,
        payback_years=calculate_payback_years(total, annual),
        savings_25_years=calculate_25_year_savings(annual),
        co2_offset_tonnes=calculate_co2_offset(production),
        monthly_payment=monthly,
        financing_options=[FinancingOut(**opt._asdict()) for opt in get_financing_options(total)],
    )


@router.post("/quote", response_model=QuoteOut)
def quote(body: QuoteIn):
    try:
        return build_quote(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
