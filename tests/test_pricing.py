import pytest

from solar_portal.catalog import GRANT_SCHEME, get_battery, get_package
from solar_portal.pricing import (
    NEVER_PAYS_BACK,
    calculate_25_year_savings,
    calculate_annual_savings_with_grant,
    calculate_battery_savings,
    calculate_bill_from_consumption,
    calculate_co2_offset,
    calculate_extras_total,
    calculate_grant_amount,
    calculate_payback_years,
    calculate_total_price_with_grant,
    estimate_consumption,
    recommend_system,
)


# ============ CONSUMPTION ============

def test_estimate_consumption_household_walks_rebate_tiers():
    # €150/month, 3 people: 250 kWh at 25% off, 187.5 kWh at 15% off, rest at the flat rate
    assert estimate_consumption(150, 3) == 1054


def test_estimate_consumption_business_has_no_rebate():
    assert estimate_consumption(150, 0) == 964


@pytest.mark.parametrize("bill", [None, 0, -20, 5.0, 5.42])
def test_estimate_consumption_zero_at_or_below_standing_charge(bill):
    assert estimate_consumption(bill, 2) == 0


def test_unknown_household_counts_as_one_person():
    assert estimate_consumption(80, None) == estimate_consumption(80, 1)


@pytest.mark.parametrize("household", [0, 1, 3, 6])
def test_estimate_consumption_is_monotonic_in_bill(household):
    previous = -1
    for bill in range(0, 600, 7):
        kwh = estimate_consumption(bill, household)
        assert kwh >= previous
        previous = kwh


def test_bill_from_consumption_includes_service_charge():
    bill = calculate_bill_from_consumption(0, 1)
    assert bill.net_bill == 65.0
    assert bill.eco_reduction == 0


def test_bill_from_consumption_eco_reduction_for_households():
    with_people = calculate_bill_from_consumption(4000, 2)
    business = calculate_bill_from_consumption(4000, 0)
    assert with_people.gross_bill == business.gross_bill
    assert with_people.eco_reduction > 0
    assert with_people.net_bill < business.net_bill


# ============ GRANTS ============

def test_pv_only_estimate_uses_rate_and_scheme_cap():
    assert calculate_grant_amount(5, None, "pv_only", "malta") == 3000


def test_pv_only_with_price_applies_percentage_cap():
    assert calculate_grant_amount(5, None, "pv_only", "malta", system_price=3750) == 1875


def test_pv_battery_with_prices_sums_capped_parts():
    grant = calculate_grant_amount(5, 10, "pv_battery", "malta", system_price=3500, battery_price=6500)
    assert grant == 1750 + 5200


def test_battery_only_gozo_uses_gozo_percentage():
    assert calculate_grant_amount(0, 10, "battery_only", "gozo", 0, 6500) == pytest.approx(6175)


@pytest.mark.parametrize("island", ["malta", "gozo"])
@pytest.mark.parametrize("battery_kwh", [1, 5, 10, 15, 30, 100])
def test_pv_battery_never_exceeds_island_maximum(island, battery_kwh):
    grant = calculate_grant_amount(15, battery_kwh, "pv_battery", island)
    assert 0 < grant <= GRANT_SCHEME.max_total[island]


def test_no_grant_is_zero():
    assert calculate_grant_amount(10, 10, "none", "malta", 7000, 6500) == 0


def test_unknown_location_falls_back_to_malta():
    assert calculate_grant_amount(0, 15, "battery_only", "atlantis") == GRANT_SCHEME.battery_cap["malta"]


def test_unknown_grant_type_raises():
    with pytest.raises(ValueError):
        calculate_grant_amount(5, None, "free_money", "malta")


# ============ SAVINGS ============

def test_annual_savings_grant_path_uses_lower_tariff():
    assert calculate_annual_savings_with_grant(9000, "pv_battery") == 945


def test_declining_grant_raises_guaranteed_tariff():
    assert calculate_annual_savings_with_grant(9000, "none") == 1350


def test_battery_savings_without_consumption_uses_band_3_4_average():
    result = calculate_battery_savings(10, None)
    assert result.marginal_rate == pytest.approx((0.1607 + 0.3420) / 2)
    assert result.annual_savings == 679


def test_battery_savings_uses_marginal_band():
    result = calculate_battery_savings(10, 1000)  # 12,000 kWh/year -> band 4
    assert result.marginal_rate == pytest.approx(0.3420)
    assert result.band_label == "Band 4"
    assert result.annual_savings == 923


def test_payback_never_when_no_savings():
    assert calculate_payback_years(3050, 0) == NEVER_PAYS_BACK
    assert calculate_payback_years(3050, -10) == NEVER_PAYS_BACK


def test_payback_rounds_to_one_decimal():
    assert calculate_payback_years(3050, 945) == 3.2


def test_25_year_savings_matches_degradation_series():
    expected = sum(1000 * (1 - 0.005) ** y for y in range(25))
    assert abs(calculate_25_year_savings(1000) - expected) <= 1


# ============ PRICES ============

def test_essential_with_battery_malta_breakdown():
    breakdown = calculate_total_price_with_grant(get_package("essential-5kw"), get_battery("luna-10"), "pv_battery", "malta")
    assert breakdown.gross_price == 10000
    assert breakdown.grant_amount == 6950
    assert breakdown.total_price == 3050


def test_pv_only_uses_list_price():
    breakdown = calculate_total_price_with_grant(get_package("essential-5kw"), None, "pv_only", "malta")
    assert breakdown.gross_price == 3750
    assert breakdown.grant_amount == 1875
    assert breakdown.total_price == 1875


def test_battery_only_adds_backup_circuit_outside_grant():
    breakdown = calculate_total_price_with_grant(None, get_battery("luna-10"), "battery_only", "malta")
    assert breakdown.grant_amount == 5200
    assert breakdown.gross_price == 6500 + 350
    assert breakdown.total_price == 6500 - 5200 + 350


def test_recommend_system_smallest_covering_ninety_percent():
    assert recommend_system(1054).id == "performance-10kw"
    assert recommend_system(300).id == "starter-3kw"


def test_recommend_system_falls_back_to_largest():
    assert recommend_system(100000).id == "max-15kw"


def test_co2_offset_in_tonnes():
    assert calculate_co2_offset(9000) == 4.5


@pytest.mark.parametrize("extras,total", [
    ({"salva_vita", "ovr"}, 300),
    ({"salva_vita", "ovr", "db_upgrade"}, 399),
    ({"db_upgrade", "emergency_backup"}, 749),
    ({"salva_vita": True, "ovr": False}, 150),
    (set(), 0),
])
def test_extras_total(extras, total):
    assert calculate_extras_total(extras) == total
