# solar_portal/routers/cron.py
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from solar_portal import config, storage
from solar_portal.db import get_session
from solar_portal.deps import get_crm, get_notifier, require_cron_secret
from solar_portal.followups import run_email_sequences
from solar_portal.services.notifications import Notifier
from solar_portal.services.zoho import ZohoClient

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])

HIGH_VALUE_MIN_STEP = 3


@router.api_route("/email-sequences", methods=["GET", "POST"])
def cron_email_sequences(
    session: Session = Depends(get_session),
    crm: ZohoClient = Depends(get_crm),
):
    return run_email_sequences(session, crm)


def cleanup_wizard_sessions(session: Session, notifier: Notifier, now: datetime | None = None) -> dict:
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=config.settings.SESSION_ABANDON_MINUTES)
    rows = storage.stale_sessions(session, cutoff, config.settings.SESSION_CLEANUP_BATCH_SIZE)
    if not rows:
        return {"success": True, "abandoned": 0, "by_step": {}, "high_value": 0}

    by_step = dict(Counter(r.highest_step_reached for r in rows))
    high_value = [
        r for r in rows
        if r.highest_step_reached >= HIGH_VALUE_MIN_STEP and (r.address or r.selected_system or r.system_size_kw)
    ]

    if not storage.mark_sessions_abandoned(session, rows):
        raise HTTPException(status_code=500, detail="Failed to mark sessions abandoned")

    if high_value:
        notifier.report_abandoned_sessions(high_value, by_step)

    log.info("Abandoned %d wizard sessions (%d high value)", len(rows), len(high_value))
    return {"success": True, "abandoned": len(rows), "by_step": by_step, "high_value": len(high_value)}


@router.api_route("/wizard-session-cleanup", methods=["GET", "POST"])
def cron_wizard_session_cleanup(
    session: Session = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    return cleanup_wizard_sessions(session, notifier)


def remind_pending_callbacks(session: Session, notifier: Notifier, now: datetime | None = None) -> dict:
    now = now or datetime.now(timezone.utc)
    hours = config.settings.CALLBACK_REMINDER_HOURS
    leads = storage.leads_awaiting_callback(session, now - timedelta(hours=hours), config.settings.CALLBACK_REMINDER_LIMIT)
    if not leads:
        return {"success": True, "message": "No leads need follow-up", "count": 0, "leads": []}

    notifier.send_follow_up_reminder(leads, now, hours)
    log.info("Callback reminder sent for %d lead(s)", len(leads))
    return {
        "success": True,
        "message": f"Sent reminder for {len(leads)} leads",
        "count": len(leads),
        "leads": [{"id": lead.id, "name": lead.name} for lead in leads],
    }


@router.api_route("/follow-up-reminders", methods=["GET", "POST"])
def cron_follow_up_reminders(
    session: Session = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    return remind_pending_callbacks(session, notifier)
