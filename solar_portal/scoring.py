# solar_portal/scoring.py
from __future__ import annotations

from typing import Any, Mapping, NamedTuple, Optional

AD_SOURCE_MARKERS = ("facebook", "fb", "instagram", "ig", "meta", "google_ads", "ad_")


class LeadPriority(NamedTuple):
    score: int
    level: str  # "high" | "medium" | "low"


def _num(lead: Mapping[str, Any], key: str) -> float:
    try:
        return float(lead.get(key) or 0)
    except (TypeError, ValueError):
        return 0.0


def calculate_lead_priority(lead: Mapping[str, Any]) -> LeadPriority:
    score = 0

    size = _num(lead, "system_size_kw")
    if size >= 15:
        score += 30
    elif size >= 10:
        score += 25
    elif size >= 5:
        score += 15
    elif size > 0:
        score += 10

    price = _num(lead, "total_price")
    if price >= 15000:
        score += 25
    elif price >= 10000:
        score += 20
    elif price >= 5000:
        score += 10
    elif price > 0:
        score += 5

    if lead.get("with_battery") and _num(lead, "battery_size_kwh") > 0:
        score += 15
    if lead.get("grant_path"):
        score += 10
    if lead.get("payment_method") == "loan":
        score += 10
    if _num(lead, "monthly_bill") > 0 or _num(lead, "consumption_kwh") > 0:
        score += 5
    if len((lead.get("address") or "").strip()) > 5:
        score += 5

    if score >= 70:
        level = "high"
    elif score >= 40:
        level = "medium"
    else:
        level = "low"
    return LeadPriority(score, level)


def is_ad_source(source: Optional[str]) -> bool:
    src = (source or "").lower()
    return any(marker in src for marker in AD_SOURCE_MARKERS)


def is_hot_lead(lead: Mapping[str, Any], source: Optional[str] = None, returning: bool = False) -> bool:
    """Ad-driven or returning visitor who finished a quote."""
    completed = (
        len((lead.get("address") or "").strip()) > 5
        and _num(lead, "system_size_kw") > 0
        and _num(lead, "total_price") > 0
    )
    return completed and (is_ad_source(source or lead.get("source")) or returning)
