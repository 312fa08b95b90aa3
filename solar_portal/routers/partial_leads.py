# solar_portal/routers/partial_leads.py
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from solar_portal import storage
from solar_portal.db import get_session
from solar_portal.deps import require_cron_secret
from solar_portal.followups import PARTIAL_REMINDER_HOURS, next_partial_reminder
from solar_portal.schemas import PartialLeadConvert, PartialLeadIn

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/partial-leads", tags=["partial-leads"])


@router.post("")
def save_partial_lead(body: PartialLeadIn, session: Session = Depends(get_session)):
    """Record who started the wizard; one open row per email, reminders rescheduled on each save."""
    if not body.email:
        raise HTTPException(status_code=400, detail="Email is required")

    email = str(body.email)
    existing = storage.find_open_partial_lead(session, email)
    count = existing.reminder_count if existing is not None else 0
    data = {**body.model_dump(exclude_unset=True), "next_reminder_at": next_partial_reminder(count)}

    if existing is None:
        row = storage.create_partial_lead(session, {**data, "email": email})
    else:
        row = storage.update_partial_lead(session, existing, data)
    if row is None:
        raise HTTPException(status_code=500, detail="Failed to save partial lead")

    log.info("Partial lead %s %s (step %s)", row.id, "updated" if existing else "created", row.last_step)
    return {
        "success": True,
        "partial_lead": row.model_dump(mode="json"),
        "action": "updated" if existing is not None else "created",
    }


@router.patch("")
def convert_partial_lead(body: PartialLeadConvert, session: Session = Depends(get_session)):
    if not body.id and not body.email:
        raise HTTPException(status_code=400, detail="Email or ID is required")

    changed = storage.mark_partial_leads_converted(
        session,
        partial_id=body.id,
        email=str(body.email) if body.email else None,
        lead_id=body.lead_id,
    )
    if changed is None:
        raise HTTPException(status_code=500, detail="Failed to update partial lead")
    return {"success": True, "converted": changed}


@router.get("", dependencies=[Depends(require_cron_secret)])
def list_partial_leads(
    action: str | None = Query(default=None),
    session: Session = Depends(get_session),
):
    if action != "pending-reminders":
        raise HTTPException(status_code=400, detail="Invalid action")

    rows = storage.pending_partial_reminders(session, datetime.now(timezone.utc), len(PARTIAL_REMINDER_HOURS))
    return {
        "success": True,
        "partial_leads": [row.model_dump(mode="json") for row in rows],
        "count": len(rows),
    }
