# solar_portal/catalog.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


# ---------- Products ----------

@dataclass(frozen=True)
class SystemPackage:
    id: str
    name: str
    panels: int
    panel_wattage: int
    system_size_kw: float
    inverter_model: str
    annual_production_kwh: int
    price_without_grant: float  # PV only, list price
    price_with_battery: float   # PV part when bundled with a battery


@dataclass(frozen=True)
class BatteryOption:
    id: str
    name: str
    capacity_kwh: float
    price: float


SYSTEM_PACKAGES: List[SystemPackage] = [
    SystemPackage("starter-3kw", "Starter", 7, 450, 3, "Huawei SUN2000-3KTL-L1", 5400, 2250, 2100),
    SystemPackage("essential-5kw", "Essential", 10, 450, 5, "Huawei SUN2000-5KTL-L1", 9000, 3750, 3500),
    SystemPackage("performance-10kw", "Performance", 22, 450, 10, "Huawei SUN2000-10KTL-M1", 18000, 7500, 7000),
    SystemPackage("max-15kw", "Max", 33, 450, 15, "Huawei SUN2000-15KTL-M5", 27000, 11250, 10500),
]

BATTERY_OPTIONS: List[BatteryOption] = [
    BatteryOption("luna-5", "Huawei LUNA2000-5-S0", 5, 3500),
    BatteryOption("luna-10", "Huawei LUNA2000-10-S0", 10, 6500),
    BatteryOption("luna-15", "Huawei LUNA2000-15-S0", 15, 9500),
]


def get_package(package_id: Optional[str]) -> Optional[SystemPackage]:
    if not package_id:
        return None
    return next((p for p in SYSTEM_PACKAGES if p.id == package_id), None)


def get_battery(battery_id: Optional[str]) -> Optional[BatteryOption]:
    if not battery_id:
        return None
    return next((b for b in BATTERY_OPTIONS if b.id == battery_id), None)


def battery_for_capacity(capacity_kwh: Optional[float]) -> Optional[BatteryOption]:
    if not capacity_kwh:
        return None
    return next((b for b in BATTERY_OPTIONS if b.capacity_kwh == capacity_kwh), None)


# ---------- Grant scheme ----------

GRANT_TYPES = ("none", "pv_only", "pv_battery", "battery_only")
ISLANDS = ("malta", "gozo")


@dataclass(frozen=True)
class GrantScheme:
    """
    One year's rules for the PV / battery grant and feed-in tariffs.

    Swap the whole object when the scheme changes; nothing reads
    individual numbers from anywhere else.
    """
    year: int
    pv_rate_per_kwp: float
    pv_percentage: float
    pv_cap: float
    battery_rate_per_kwh: Dict[str, float] = field(default_factory=dict)
    battery_percentage: Dict[str, float] = field(default_factory=dict)
    battery_cap: Dict[str, float] = field(default_factory=dict)
    max_total: Dict[str, float] = field(default_factory=dict)
    # grant taken -> lower guaranteed tariff
    fit_with_grant: float = 0.105
    fit_without_grant: float = 0.15
    rate_with_grant: float = 0.105
    rate_without_grant: float = 0.15
    self_consumption_ratio: float = 0.70
    degradation: float = 0.005
    lifetime_years: int = 25

    def feed_in_tariff(self, grant_type: str) -> float:
        return self.fit_without_grant if grant_type == "none" else self.fit_with_grant

    def blended_rate(self, grant_type: str) -> float:
        return self.rate_without_grant if grant_type == "none" else self.rate_with_grant


GRANT_SCHEME_2025 = GrantScheme(
    year=2025,
    pv_rate_per_kwp=750,
    pv_percentage=0.50,
    pv_cap=3000,
    battery_rate_per_kwh={"malta": 720, "gozo": 855},
    battery_percentage={"malta": 0.80, "gozo": 0.95},
    battery_cap={"malta": 7200, "gozo": 8550},
    max_total={"malta": 10200, "gozo": 11550},
)

GRANT_SCHEME = GRANT_SCHEME_2025


# ---------- Tariffs ----------

# (upper bound of annual kWh, €/kWh); last band is open-ended
RESIDENTIAL_TARIFF_BANDS: List[Tuple[float, float]] = [
    (2000, 0.1047),
    (6000, 0.1298),
    (10000, 0.1607),
    (20000, 0.3420),
    (float("inf"), 0.6076),
]

ANNUAL_SERVICE_CHARGE = 65.0
MONTHLY_SERVICE_CHARGE = 5.42

ECO_FIRST_TIER_KWH = 1000      # per person per year
ECO_FIRST_TIER_DISCOUNT = 0.25
ECO_SECOND_TIER_KWH = 750      # per person per year
ECO_SECOND_TIER_DISCOUNT = 0.15

FLAT_BLENDED_RATE = 0.15

BATTERY_CYCLES_PER_YEAR = 300
BATTERY_ROUND_TRIP_EFFICIENCY = 0.90

GRID_EMISSION_KG_PER_KWH = 0.5

# ---------- Financing / extras ----------

LOAN_INTEREST_RATE = 0.0475
LOAN_TERMS_MONTHS = (36, 60, 84, 120)
MIN_DEPOSIT = 799.0
DEPOSIT_RATE = 0.30

EMERGENCY_BACKUP_COST = 350.0

EXTRAS_PRICES = {
    "salva_vita": 150.0,       # RCD
    "ovr": 150.0,              # surge protection
    "db_upgrade": 399.0,       # bundle: supersedes salva_vita + ovr
    "emergency_backup": EMERGENCY_BACKUP_COST,
}
