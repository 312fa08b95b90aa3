# solar_portal/storage.py
"""
Primary store access.

Write helpers catch SQLAlchemyError, roll back, log and return None so a
caller can degrade to partial success. Callers that are the only writer
(unsubscribe, PATCH /api/leads) turn that None into a 500 themselves.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from solar_portal.models import Communication, Lead, PartialLead, WizardSession, utcnow

log = logging.getLogger(__name__)

FOLLOW_UP_STATUSES = ("new", "contacted", "qualified")

LEAD_WRITABLE_FIELDS = {
    "name", "email", "phone",
    "address", "lat", "lng", "google_maps_link", "is_gozo", "locality",
    "household_size", "monthly_bill", "consumption_kwh", "roof_area",
    "selected_system", "system_size_kw", "with_battery", "battery_size_kwh",
    "grant_path", "grant_type", "grant_amount", "gross_price", "total_price",
    "deposit_amount", "annual_savings",
    "payment_method", "loan_term", "monthly_payment",
    "bill_file_url", "proposal_file_url", "social_provider", "notes",
    "status", "source", "source_campaign", "zoho_lead_id", "lead_score",
}

SESSION_PROTECTED_FIELDS = {
    "id", "session_token", "created_at", "updated_at", "last_activity_at",
    "status", "highest_step_reached", "step_timestamps",
    "converted_lead_id", "converted_at", "completed_at", "abandoned_at",
}


def _assign(row, data: Mapping[str, Any], allowed: Optional[Set[str]] = None, protected: Iterable[str] = ()):
    protected = set(protected)
    for key, value in data.items():
        if key in protected:
            continue
        if allowed is not None and key not in allowed:
            continue
        if hasattr(row, key):
            setattr(row, key, value)


def _commit(session: Session, row, what: str):
    try:
        session.add(row)
        session.commit()
        session.refresh(row)
        return row
    except SQLAlchemyError:
        session.rollback()
        log.exception("Store write failed (%s)", what)
        return None


# ---------- leads ----------

def get_lead(session: Session, lead_id: str) -> Optional[Lead]:
    return session.get(Lead, lead_id)


def find_latest_lead_by_email(session: Session, email: str) -> Optional[Lead]:
    stmt = (
        select(Lead)
        .where(func.lower(Lead.email) == email.strip().lower())
        .where(Lead.deleted_at.is_(None))
        .order_by(Lead.created_at.desc())
        .limit(1)
    )
    return session.exec(stmt).first()


def create_lead(session: Session, data: Mapping[str, Any]) -> Optional[Lead]:
    row = Lead(name=data.get("name") or "", email=data.get("email") or "", phone=data.get("phone") or "")
    _assign(row, data, allowed=LEAD_WRITABLE_FIELDS)
    return _commit(session, row, "create lead")


def update_lead(session: Session, lead: Lead, data: Mapping[str, Any]) -> Optional[Lead]:
    _assign(lead, data, allowed=LEAD_WRITABLE_FIELDS)
    lead.updated_at = utcnow()
    return _commit(session, lead, f"update lead {lead.id}")


def mark_opted_out(session: Session, lead: Lead, when: Optional[datetime] = None) -> Optional[Lead]:
    lead.email_opted_out = True
    lead.email_opted_out_at = when or utcnow()
    lead.updated_at = utcnow()
    return _commit(session, lead, f"opt-out lead {lead.id}")


def follow_up_candidates(session: Session, limit: int = 100) -> List[Lead]:
    stmt = (
        select(Lead)
        .where(Lead.status.in_(FOLLOW_UP_STATUSES))
        .where(Lead.converted_at.is_(None))
        .where(Lead.deleted_at.is_(None))
        .where(Lead.email_opted_out.is_(False))
        .order_by(Lead.created_at.desc())
        .limit(limit)
    )
    return list(session.exec(stmt).all())


def leads_awaiting_callback(session: Session, created_before: datetime, limit: int = 10) -> List[Lead]:
    """Untouched leads older than the cutoff, biggest quotes first."""
    stmt = (
        select(Lead)
        .where(Lead.status == "new")
        .where(Lead.created_at < created_before)
        .where(Lead.deleted_at.is_(None))
        .order_by(Lead.total_price.desc().nulls_last(), Lead.created_at.asc())
        .limit(limit)
    )
    return list(session.exec(stmt).all())


# ---------- communications ----------

def log_communication(session: Session, lead_id: str, **fields) -> Optional[Communication]:
    row = Communication(lead_id=lead_id)
    _assign(row, fields)
    return _commit(session, row, f"communication for lead {lead_id}")


def sent_templates(session: Session, lead_ids: Iterable[str]) -> Dict[str, Set[str]]:
    ids = list(lead_ids)
    out: Dict[str, Set[str]] = {lead_id: set() for lead_id in ids}
    if not ids:
        return out
    stmt = (
        select(Communication.lead_id, Communication.template_used)
        .where(Communication.lead_id.in_(ids))
        .where(Communication.channel == "email")
        .where(Communication.template_used.is_not(None))
    )
    for lead_id, template in session.exec(stmt).all():
        out.setdefault(lead_id, set()).add(template)
    return out


# ---------- wizard sessions ----------

def get_wizard_session(session: Session, session_id: str) -> Optional[WizardSession]:
    return session.get(WizardSession, session_id)


def get_wizard_session_by_token(session: Session, token: str) -> Optional[WizardSession]:
    return session.exec(select(WizardSession).where(WizardSession.session_token == token)).first()


def _touch_session(row: WizardSession, data: Mapping[str, Any]) -> None:
    now = utcnow()
    _assign(row, data, protected=SESSION_PROTECTED_FIELDS)

    step = data.get("current_step")
    if step:
        row.highest_step_reached = max(row.highest_step_reached or 1, int(step))
        stamps = dict(row.step_timestamps or {})
        stamps.setdefault(str(step), now.isoformat())
        row.step_timestamps = stamps

    # writing to an abandoned session brings it back
    if row.status == "abandoned":
        row.status = "in_progress"
        row.abandoned_at = None

    row.last_activity_at = now
    row.updated_at = now


def create_wizard_session(session: Session, token: str, data: Mapping[str, Any]) -> Optional[WizardSession]:
    row = WizardSession(session_token=token, step_timestamps={"1": utcnow().isoformat()})
    _touch_session(row, data)
    return _commit(session, row, f"create wizard session {token}")


def update_wizard_session(session: Session, row: WizardSession, data: Mapping[str, Any]) -> Optional[WizardSession]:
    _touch_session(row, data)
    return _commit(session, row, f"update wizard session {row.id}")


def complete_wizard_session(session: Session, row: WizardSession) -> Optional[WizardSession]:
    row.status = "completed"
    row.completed_at = utcnow()
    row.updated_at = row.completed_at
    return _commit(session, row, f"complete wizard session {row.id}")


def convert_wizard_session(session: Session, row: WizardSession, lead_id: str) -> Optional[WizardSession]:
    row.status = "converted_to_lead"
    row.converted_lead_id = lead_id
    row.converted_at = utcnow()
    row.updated_at = row.converted_at
    return _commit(session, row, f"convert wizard session {row.id}")


def stale_sessions(session: Session, idle_since: datetime, limit: int = 100) -> List[WizardSession]:
    stmt = (
        select(WizardSession)
        .where(WizardSession.status == "in_progress")
        .where(WizardSession.last_activity_at <= idle_since)
        .order_by(WizardSession.last_activity_at.asc())
        .limit(limit)
    )
    return list(session.exec(stmt).all())


def mark_sessions_abandoned(session: Session, rows: List[WizardSession]) -> bool:
    now = utcnow()
    try:
        for row in rows:
            row.status = "abandoned"
            row.abandoned_at = now
            row.updated_at = now
            session.add(row)
        session.commit()
        return True
    except SQLAlchemyError:
        session.rollback()
        log.exception("Failed to mark %d sessions abandoned", len(rows))
        return False


def list_abandoned_sessions(
    session: Session,
    min_step: int = 1,
    limit: int = 50,
    has_address: bool = False,
) -> List[WizardSession]:
    stmt = (
        select(WizardSession)
        .where(WizardSession.status == "abandoned")
        .where(WizardSession.highest_step_reached >= min_step)
    )
    if has_address:
        stmt = stmt.where(WizardSession.address.is_not(None)).where(WizardSession.address != "")
    stmt = stmt.order_by(WizardSession.last_activity_at.desc()).limit(limit)
    return list(session.exec(stmt).all())


# ---------- partial leads ----------

PARTIAL_LEAD_FIELDS = {"email", "name", "phone", "social_provider", "last_step", "wizard_state", "next_reminder_at"}


def find_open_partial_lead(session: Session, email: str) -> Optional[PartialLead]:
    stmt = (
        select(PartialLead)
        .where(func.lower(PartialLead.email) == email.strip().lower())
        .where(PartialLead.converted_to_lead.is_(False))
        .order_by(PartialLead.created_at.desc())
        .limit(1)
    )
    return session.exec(stmt).first()


def create_partial_lead(session: Session, data: Mapping[str, Any]) -> Optional[PartialLead]:
    row = PartialLead(email=(data.get("email") or "").strip())
    _assign(row, data, allowed=PARTIAL_LEAD_FIELDS - {"email"})
    return _commit(session, row, "create partial lead")


def update_partial_lead(session: Session, row: PartialLead, data: Mapping[str, Any]) -> Optional[PartialLead]:
    _assign(row, data, allowed=PARTIAL_LEAD_FIELDS - {"email"})
    row.updated_at = utcnow()
    return _commit(session, row, f"update partial lead {row.id}")


def mark_partial_leads_converted(
    session: Session,
    partial_id: Optional[str] = None,
    email: Optional[str] = None,
    lead_id: Optional[str] = None,
) -> Optional[int]:
    """Close open partial leads by id or email. Returns how many changed, None on failure."""
    stmt = select(PartialLead).where(PartialLead.converted_to_lead.is_(False))
    if partial_id:
        stmt = stmt.where(PartialLead.id == partial_id)
    elif email:
        stmt = stmt.where(func.lower(PartialLead.email) == email.strip().lower())
    else:
        return 0

    now = utcnow()
    try:
        rows = list(session.exec(stmt).all())
        for row in rows:
            row.converted_to_lead = True
            row.converted_at = now
            row.lead_id = lead_id
            row.next_reminder_at = None
            row.updated_at = now
            session.add(row)
        session.commit()
        return len(rows)
    except SQLAlchemyError:
        session.rollback()
        log.exception("Failed to mark partial leads converted (id=%s email=%s)", partial_id, email)
        return None


def pending_partial_reminders(session: Session, now: datetime, max_reminders: int, limit: int = 100) -> List[PartialLead]:
    stmt = (
        select(PartialLead)
        .where(PartialLead.converted_to_lead.is_(False))
        .where(PartialLead.next_reminder_at.is_not(None))
        .where(PartialLead.next_reminder_at < now)
        .where(PartialLead.reminder_count < max_reminders)
        .order_by(PartialLead.next_reminder_at.asc())
        .limit(limit)
    )
    return list(session.exec(stmt).all())
