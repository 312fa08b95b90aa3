# solar_portal/wizard.py
"""
Quote wizard state.

`reduce` is a pure (state, action) -> state function. `derive` fills the
calculated fields from the calculators. `WizardController` wraps both and
persists snapshots through a debounced saver so rapid edits coalesce into
one write.

Steps: 1 location, 2 consumption, 3 system, 4 financing, 5 bill upload,
6 contact, 7 summary.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Callable, Dict, Mapping, Optional

from solar_portal.catalog import LOAN_INTEREST_RATE, battery_for_capacity, get_package
from solar_portal.financing import calculate_deposit, calculate_monthly_payment
from solar_portal.pricing import (
    calculate_annual_savings_with_grant,
    calculate_battery_savings,
    calculate_payback_years,
    calculate_total_price_with_grant,
    estimate_consumption,
)

log = logging.getLogger(__name__)

TOTAL_STEPS = 7
FINANCING_STEP = 4
SUMMARY_STEP = 7


@dataclass(frozen=True)
class WizardState:
    step: int = 1
    total_steps: int = TOTAL_STEPS
    is_prefilled_lead: bool = False

    # location
    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    google_maps_link: Optional[str] = None
    location: str = "malta"

    # consumption
    household_size: Optional[int] = None
    monthly_bill: Optional[float] = None
    consumption_kwh: Optional[float] = None
    roof_area: Optional[float] = None

    # system
    selected_system: Optional[str] = None
    system_size_kw: Optional[float] = None
    with_battery: bool = False
    battery_size_kwh: Optional[float] = None
    grant_type: str = "pv_only"

    # financing
    payment_method: Optional[str] = None
    loan_term: Optional[int] = None

    # contact
    full_name: str = ""
    email: str = ""
    phone: str = ""
    notes: str = ""

    # calculated
    gross_price: Optional[float] = None
    grant_amount: Optional[float] = None
    total_price: Optional[float] = None
    deposit: Optional[float] = None
    monthly_payment: Optional[float] = None
    annual_savings: Optional[float] = None
    payback_years: Optional[float] = None


FIELD_GROUPS = {
    "SET_LOCATION": {"address", "lat", "lng", "google_maps_link", "location"},
    "SET_CONSUMPTION": {"household_size", "monthly_bill", "consumption_kwh", "roof_area"},
    "SET_SYSTEM": {"selected_system", "system_size_kw", "with_battery", "battery_size_kwh", "grant_type"},
    "SET_FINANCING": {"payment_method", "loan_term"},
    "SET_CONTACT": {"full_name", "email", "phone", "notes"},
    "SET_CALCULATIONS": {
        "gross_price", "grant_amount", "total_price", "deposit",
        "monthly_payment", "annual_savings", "payback_years", "consumption_kwh",
    },
}

_ALL_FIELDS = {f.name for f in fields(WizardState)} - {"total_steps"}


def _merge(state: WizardState, payload: Mapping[str, Any], allowed) -> WizardState:
    changes = {k: v for k, v in payload.items() if k in allowed}
    return replace(state, **changes) if changes else state


def reduce(state: WizardState, action: Mapping[str, Any]) -> WizardState:
    kind = action.get("type")
    payload = action.get("payload") or {}

    if kind == "SET_STEP":
        raw = payload.get("step", action.get("step", state.step))
        try:
            step = int(raw)
        except (TypeError, ValueError):
            raise ValueError(f"SET_STEP needs an integer step, got {raw!r}")
        if not 1 <= step <= state.total_steps:
            raise ValueError(f"SET_STEP step must be between 1 and {state.total_steps}, got {step}")
        return replace(state, step=step)

    if kind == "NEXT_STEP":
        if state.is_prefilled_lead and state.step == FINANCING_STEP:
            return replace(state, step=SUMMARY_STEP)
        return replace(state, step=min(state.step + 1, state.total_steps))

    if kind == "PREV_STEP":
        if state.is_prefilled_lead and state.step == SUMMARY_STEP:
            return replace(state, step=FINANCING_STEP)
        return replace(state, step=max(state.step - 1, 1))

    if kind == "SET_CONSUMPTION" and "monthly_bill" in payload and "consumption_kwh" not in payload:
        # a new bill invalidates the previous estimate
        state = replace(state, consumption_kwh=None)

    if kind in FIELD_GROUPS:
        return _merge(state, payload, FIELD_GROUPS[kind])

    if kind == "SET_PREFILL":
        return replace(_merge(state, payload, _ALL_FIELDS - {"step"}), is_prefilled_lead=True)

    if kind == "RESET":
        return WizardState()

    raise ValueError(f"unknown wizard action: {kind!r}")


def derive(state: WizardState) -> WizardState:
    """Recompute consumption, price, savings and payment from the inputs."""
    consumption = state.consumption_kwh
    if consumption is None and state.monthly_bill is not None:
        consumption = estimate_consumption(state.monthly_bill, state.household_size)

    package = get_package(state.selected_system)
    battery = battery_for_capacity(state.battery_size_kwh) if state.with_battery else None
    battery_only = state.grant_type == "battery_only"

    if not package and not (battery_only and battery):
        return replace(state, consumption_kwh=consumption)

    breakdown = calculate_total_price_with_grant(None if battery_only else package, battery, state.grant_type, state.location)
    if battery_only or not package:
        savings = calculate_battery_savings(battery.capacity_kwh if battery else 0, consumption).annual_savings
    else:
        savings = calculate_annual_savings_with_grant(package.annual_production_kwh, state.grant_type)

    monthly = None
    if state.payment_method == "loan" and state.loan_term:
        monthly = calculate_monthly_payment(breakdown.total_price, LOAN_INTEREST_RATE, state.loan_term)

    return replace(
        state,
        consumption_kwh=consumption,
        system_size_kw=package.system_size_kw if package and not battery_only else state.system_size_kw,
        gross_price=breakdown.gross_price,
        grant_amount=breakdown.grant_amount,
        total_price=breakdown.total_price,
        deposit=calculate_deposit(breakdown.total_price),
        monthly_payment=monthly,
        annual_savings=savings,
        payback_years=calculate_payback_years(breakdown.total_price, savings),
    )


# ---------- persistence mapping ----------

_SESSION_COLUMNS = (
    "address", "lat", "lng", "google_maps_link", "location",
    "household_size", "monthly_bill", "consumption_kwh", "roof_area",
    "selected_system", "system_size_kw", "with_battery", "battery_size_kwh",
    "grant_type", "grant_amount", "payment_method", "loan_term",
    "total_price", "monthly_payment", "annual_savings", "payback_years",
    "full_name", "email", "phone",
)


def to_session_data(state: WizardState) -> Dict[str, Any]:
    data = {"current_step": state.step}
    values = asdict(state)
    for key in _SESSION_COLUMNS:
        data[key] = values[key]
    return data


def state_from_session(row: Any) -> WizardState:
    values = {key: getattr(row, key, None) for key in _SESSION_COLUMNS}
    values = {k: v for k, v in values.items() if v is not None}
    return WizardState(step=getattr(row, "current_step", None) or 1, **values)


def apply_action(row: Any, action: Mapping[str, Any]):
    """Server-side dispatch against a stored session. Returns (state, columns to write)."""
    state = derive(reduce(state_from_session(row), action))
    return state, to_session_data(state)


# ---------- controller ----------

class DebouncedSaver:
    """
    Coalesces calls to `persist` that arrive within `delay` seconds.

    Pending updates are merged key by key, last write wins. `flush()` writes
    whatever is pending right now (page unload / shutdown).
    """

    def __init__(self, persist: Callable[[Dict[str, Any]], Any], delay: float = 1.0,
                 timer_factory: Callable[..., Any] = threading.Timer):
        self.persist = persist
        self.delay = delay
        self.timer_factory = timer_factory
        self._pending: Dict[str, Any] = {}
        self._timer = None
        self._lock = threading.Lock()

    def schedule(self, update: Mapping[str, Any]) -> None:
        with self._lock:
            self._pending.update(update)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self.timer_factory(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _take(self) -> Dict[str, Any]:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            data, self._pending = self._pending, {}
            return data

    def _fire(self) -> None:
        data = self._take()
        if not data:
            return
        try:
            self.persist(data)
        except Exception:
            log.exception("Wizard session save failed")

    def flush(self) -> None:
        self._fire()

    @property
    def pending(self) -> bool:
        return bool(self._pending)


class WizardController:
    def __init__(self, persist: Callable[[Dict[str, Any]], Any], debounce_seconds: float = 1.0,
                 state: Optional[WizardState] = None, timer_factory: Callable[..., Any] = threading.Timer):
        self._state = state or WizardState()
        self._saver = DebouncedSaver(persist, debounce_seconds, timer_factory)

    @property
    def state(self) -> WizardState:
        return self._state

    def dispatch(self, action: Mapping[str, Any]) -> WizardState:
        self._state = derive(reduce(self._state, action))
        self._saver.schedule(to_session_data(self._state))
        return self._state

    def flush(self) -> None:
        self._saver.flush()

    def close(self) -> None:
        self.flush()
