# solar_portal/pricing.py
"""
Tariff, grant and savings arithmetic.

Everything here is pure: numbers in, numbers out. Scheme constants live in
catalog.py so a new grant year is a one-object change.
"""
from __future__ import annotations

from typing import Iterable, Mapping, NamedTuple, Optional, Sequence, Union

from solar_portal.catalog import (
    ANNUAL_SERVICE_CHARGE,
    BATTERY_CYCLES_PER_YEAR,
    BATTERY_ROUND_TRIP_EFFICIENCY,
    ECO_FIRST_TIER_DISCOUNT,
    ECO_FIRST_TIER_KWH,
    ECO_SECOND_TIER_DISCOUNT,
    ECO_SECOND_TIER_KWH,
    EMERGENCY_BACKUP_COST,
    EXTRAS_PRICES,
    FLAT_BLENDED_RATE,
    GRANT_SCHEME,
    GRANT_TYPES,
    GRID_EMISSION_KG_PER_KWH,
    MONTHLY_SERVICE_CHARGE,
    RESIDENTIAL_TARIFF_BANDS,
    SYSTEM_PACKAGES,
    BatteryOption,
    GrantScheme,
    SystemPackage,
)

NEVER_PAYS_BACK = 99.0


class BillBreakdown(NamedTuple):
    gross_bill: float
    eco_reduction: float
    net_bill: float


class BatterySavings(NamedTuple):
    annual_savings: int
    marginal_rate: float
    band_label: str


class PriceBreakdown(NamedTuple):
    gross_price: float
    grant_amount: float
    total_price: float


def normalize_location(location: Optional[str]) -> str:
    return "gozo" if (location or "").strip().lower() == "gozo" else "malta"


# ---------- consumption ----------

def _cost_for_kwh(kwh: float) -> float:
    cost = 0.0
    remaining = kwh
    prev_max = 0.0
    for band_max, rate in RESIDENTIAL_TARIFF_BANDS:
        band_kwh = min(remaining, band_max - prev_max)
        if band_kwh <= 0:
            break
        cost += band_kwh * rate
        remaining -= band_kwh
        prev_max = band_max
    return cost


def calculate_bill_from_consumption(annual_kwh: float, household_size: Optional[int]) -> BillBreakdown:
    """Forward tariff calculation: annual kWh -> annual bill with eco-reduction and service charge."""
    annual_kwh = max(float(annual_kwh or 0), 0.0)
    gross = _cost_for_kwh(annual_kwh)

    eco = 0.0
    size = household_size or 0
    if size >= 1:
        first_kwh = min(annual_kwh, size * ECO_FIRST_TIER_KWH)
        first_cost = _cost_for_kwh(first_kwh)
        eco += first_cost * ECO_FIRST_TIER_DISCOUNT

        second_kwh = min(max(annual_kwh - first_kwh, 0.0), size * ECO_SECOND_TIER_KWH)
        if second_kwh > 0:
            second_cost = _cost_for_kwh(first_kwh + second_kwh) - first_cost
            eco += second_cost * ECO_SECOND_TIER_DISCOUNT

    net = gross - eco + ANNUAL_SERVICE_CHARGE
    return BillBreakdown(round(gross, 2), round(eco, 2), round(net, 2))


def estimate_consumption(monthly_bill: Optional[float], household_size: Optional[int]) -> int:
    """
    Monthly kWh implied by a monthly bill.

    The standing charge is removed first and the remainder is divided by the
    flat blended rate. Households (size >= 1, unknown counts as 1) paid a bill
    already reduced by the eco-reduction rebate, so the division walks the
    rebate tiers. household_size == 0 marks a business: no rebate.
    """
    energy_bill = max(float(monthly_bill or 0) - MONTHLY_SERVICE_CHARGE, 0.0)
    if energy_bill <= 0:
        return 0

    rate = FLAT_BLENDED_RATE
    if household_size == 0:
        return int(round(energy_bill / rate))

    people = household_size if household_size and household_size > 0 else 1
    tiers = [
        (people * ECO_FIRST_TIER_KWH / 12, rate * (1 - ECO_FIRST_TIER_DISCOUNT)),
        (people * ECO_SECOND_TIER_KWH / 12, rate * (1 - ECO_SECOND_TIER_DISCOUNT)),
    ]

    kwh = 0.0
    remaining = energy_bill
    for tier_kwh, tier_rate in tiers:
        tier_cost = tier_kwh * tier_rate
        if remaining <= tier_cost:
            return int(round(kwh + remaining / tier_rate))
        kwh += tier_kwh
        remaining -= tier_cost

    return int(round(kwh + remaining / rate))


# ---------- grants ----------

def _capped(rate_amount: float, cap: float, pct: float, price: Optional[float]) -> float:
    candidates = [rate_amount, cap]
    if price is not None:
        candidates.append(pct * max(price, 0.0))
    return max(min(candidates), 0.0)


def calculate_grant_amount(
    system_size_kw: Optional[float],
    battery_kwh: Optional[float],
    grant_type: str,
    location: Optional[str],
    system_price: Optional[float] = None,
    battery_price: Optional[float] = None,
    scheme: GrantScheme = GRANT_SCHEME,
) -> float:
    """
    Grant in euros.

    Percentage-of-price caps only bite when a price is passed; estimate-only
    callers get the per-unit rate limited by the scheme cap.
    """
    if grant_type not in GRANT_TYPES:
        raise ValueError(f"unknown grant type: {grant_type!r}")
    if grant_type == "none":
        return 0.0

    island = normalize_location(location)

    pv = 0.0
    if grant_type in ("pv_only", "pv_battery") and system_size_kw and system_size_kw > 0:
        pv = _capped(scheme.pv_rate_per_kwp * system_size_kw, scheme.pv_cap, scheme.pv_percentage, system_price)

    battery = 0.0
    if grant_type in ("pv_battery", "battery_only") and battery_kwh and battery_kwh > 0:
        battery = _capped(
            scheme.battery_rate_per_kwh[island] * battery_kwh,
            scheme.battery_cap[island],
            scheme.battery_percentage[island],
            battery_price,
        )

    if grant_type == "pv_only":
        return round(pv, 2)
    return round(min(pv + battery, scheme.max_total[island]), 2)


# ---------- savings ----------

def calculate_annual_savings_with_grant(
    annual_production_kwh: float,
    grant_type: str,
    scheme: GrantScheme = GRANT_SCHEME,
) -> int:
    production = max(float(annual_production_kwh or 0), 0.0)
    self_consumed = production * scheme.self_consumption_ratio
    exported = production - self_consumed
    savings = self_consumed * scheme.blended_rate(grant_type) + exported * scheme.feed_in_tariff(grant_type)
    return int(round(savings))


def marginal_tariff_band(annual_kwh: Optional[float]):
    """(rate, label) of the band the customer's last kWh falls in."""
    if not annual_kwh or annual_kwh <= 0:
        rate = (RESIDENTIAL_TARIFF_BANDS[2][1] + RESIDENTIAL_TARIFF_BANDS[3][1]) / 2
        return rate, "Est. Band 3-4"
    for idx, (band_max, rate) in enumerate(RESIDENTIAL_TARIFF_BANDS, start=1):
        if annual_kwh <= band_max:
            return rate, f"Band {idx}"
    last = RESIDENTIAL_TARIFF_BANDS[-1]
    return last[1], f"Band {len(RESIDENTIAL_TARIFF_BANDS)}"


def calculate_battery_savings(battery_kwh: Optional[float], monthly_consumption_kwh: Optional[float]) -> BatterySavings:
    """Battery-only flow: every stored kWh avoids the customer's marginal tariff band."""
    annual = (monthly_consumption_kwh or 0) * 12
    rate, label = marginal_tariff_band(annual)
    throughput = max(float(battery_kwh or 0), 0.0) * BATTERY_ROUND_TRIP_EFFICIENCY * BATTERY_CYCLES_PER_YEAR
    return BatterySavings(int(round(throughput * rate)), rate, label)


def calculate_payback_years(total_cost: float, annual_savings: float) -> float:
    if not annual_savings or annual_savings <= 0:
        return NEVER_PAYS_BACK
    return round(total_cost / annual_savings, 1)


def calculate_25_year_savings(annual_savings: float, scheme: GrantScheme = GRANT_SCHEME) -> int:
    keep = 1 - scheme.degradation
    total = sum(annual_savings * keep ** year for year in range(scheme.lifetime_years))
    return int(round(total))


# ---------- prices ----------

def calculate_total_price_with_grant(
    system: Optional[SystemPackage],
    battery: Optional[BatteryOption],
    grant_type: str,
    location: Optional[str],
) -> PriceBreakdown:
    # battery retrofit: backup circuit is added and is not grant eligible
    if grant_type == "battery_only" or system is None:
        battery_gross = battery.price if battery else 0.0
        grant = calculate_grant_amount(
            0,
            battery.capacity_kwh if battery else None,
            "battery_only" if grant_type == "battery_only" else "none",
            location,
            0,
            battery_gross,
        )
        backup = EMERGENCY_BACKUP_COST if grant_type == "battery_only" else 0.0
        total = max(0.0, battery_gross - grant) + backup
        return PriceBreakdown(battery_gross + backup, grant, total)

    system_gross = system.price_with_battery if battery else system.price_without_grant
    battery_gross = battery.price if battery else 0.0
    gross = system_gross + battery_gross
    grant = calculate_grant_amount(
        system.system_size_kw,
        battery.capacity_kwh if battery else None,
        grant_type,
        location,
        system_gross,
        battery_gross,
    )
    return PriceBreakdown(gross, grant, max(0.0, gross - grant))


def recommend_system(monthly_consumption_kwh: float, systems: Sequence[SystemPackage] = SYSTEM_PACKAGES) -> SystemPackage:
    """Smallest package producing at least 90% of annual consumption, else the largest."""
    annual = (monthly_consumption_kwh or 0) * 12
    ordered = sorted(systems, key=lambda s: s.system_size_kw)
    for system in ordered:
        if system.annual_production_kwh >= annual * 0.9:
            return system
    return ordered[-1]


def calculate_co2_offset(annual_production_kwh: float) -> float:
    """Tonnes of CO2 per year."""
    return round((annual_production_kwh or 0) * GRID_EMISSION_KG_PER_KWH / 1000, 1)


def calculate_extras_total(extras: Union[Mapping[str, bool], Iterable[str]]) -> float:
    if isinstance(extras, Mapping):
        chosen = {k for k, v in extras.items() if v}
    else:
        chosen = set(extras or [])

    total = 0.0
    if "db_upgrade" in chosen:
        total += EXTRAS_PRICES["db_upgrade"]
    else:
        if "salva_vita" in chosen:
            total += EXTRAS_PRICES["salva_vita"]
        if "ovr" in chosen:
            total += EXTRAS_PRICES["ovr"]
    if "emergency_backup" in chosen:
        total += EXTRAS_PRICES["emergency_backup"]
    return total
