# solar_portal/dedup.py
"""
Returning-visitor detection.

Tiers run in order and stop at the first hit; each tier picks the most
recently created match and ignores soft-deleted rows. No tier merges with
another.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from solar_portal.models import Lead
from solar_portal.utils.phone import last_digits, normalize_phone

log = logging.getLogger(__name__)

# characters stripped from stored phones before suffix matching
_PHONE_FORMATTING = (" ", "-", "(", ")", ".", "/", "+")


def _latest(session: Session, *conditions) -> Optional[Lead]:
    stmt = select(Lead).where(Lead.deleted_at.is_(None))
    for cond in conditions:
        stmt = stmt.where(cond)
    stmt = stmt.order_by(Lead.created_at.desc()).limit(1)
    return session.exec(stmt).first()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _digits_only(column):
    expr = column
    for ch in _PHONE_FORMATTING:
        expr = func.replace(expr, ch, "")
    return expr


def find_lead_by_external_id(session: Session, external_id: Optional[str]) -> Optional[Lead]:
    if not external_id:
        return None
    return _latest(session, Lead.zoho_lead_id == external_id)


def find_lead_by_email(session: Session, email: Optional[str]) -> Optional[Lead]:
    email = (email or "").strip().lower()
    if not email:
        return None
    return _latest(session, func.lower(Lead.email) == email)


def find_lead_by_phone(session: Session, phone: Optional[str]) -> Optional[Lead]:
    raw = (phone or "").strip()
    if not raw:
        return None

    normalized = normalize_phone(raw)
    if normalized:
        hit = _latest(session, Lead.phone == normalized)
        if hit:
            return hit

    if raw != normalized:
        hit = _latest(session, Lead.phone == raw)
        if hit:
            return hit

    suffix = last_digits(raw, 8)
    if suffix:
        return _latest(session, _digits_only(Lead.phone).like(f"%{suffix}"))
    return None


def find_lead_by_name(session: Session, name: Optional[str]) -> Optional[Lead]:
    name = (name or "").strip()
    if len(name) <= 2:
        return None
    pattern = "%" + "%".join(_escape_like(part) for part in name.split()) + "%"
    return _latest(session, Lead.name.ilike(pattern, escape="\\"))


def find_existing_lead(
    session: Session,
    external_id: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    name: Optional[str] = None,
) -> Optional[Lead]:
    """external id -> email -> phone -> name."""
    tiers = (
        ("external_id", find_lead_by_external_id, external_id),
        ("email", find_lead_by_email, email),
        ("phone", find_lead_by_phone, phone),
        ("name", find_lead_by_name, name),
    )
    for label, finder, value in tiers:
        hit = finder(session, value)
        if hit:
            log.info("Existing lead %s matched by %s", hit.id, label)
            return hit
    return None
