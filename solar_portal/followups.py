# solar_portal/followups.py
"""
Time-based emails: the follow-up ladder plus one marketing sequence per lead.

The Communication log is the only record of what went out, so a template
found there is never sent again for that lead. A run sends at most one
email per lead, follow-ups before marketing.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

from sqlmodel import Session

from solar_portal import config, storage
from solar_portal.models import Lead, as_utc
from solar_portal.services.email import render_sequence_email, send_via_crm
from solar_portal.services.zoho import CrmError, ZohoClient
from solar_portal.signing import unsubscribe_url

log = logging.getLogger(__name__)

# (template, hours after lead creation), ascending
FOLLOW_UP_SCHEDULE = (
    ("follow-up-24h", 24),
    ("follow-up-48h", 48),
    ("follow-up-72h", 72),
    ("follow-up-7d", 168),
)

SEQUENCE_SCHEDULES = {
    "speed": (("speed-1", 1), ("speed-2", 72), ("speed-3", 120)),
    "grants": (("grants-1", 1), ("grants-2", 72), ("grants-3", 120)),
    "nurture": (("nurture-1", 48), ("nurture-2", 168), ("nurture-3", 336)),
}

SPEED_CAMPAIGN_HINTS = ("speed", "14day", "fast")
GRANT_CAMPAIGN_HINTS = ("grant", "10200", "savings")
NURTURE_MAX_SCORE = 30

# partial leads: first reminder a day out, the second three days after that
PARTIAL_REMINDER_HOURS = (24, 72)

DEFAULT_SYSTEM_SIZE_KW = 10
DEFAULT_ANNUAL_SAVINGS = 1800


def hours_since(created_at: datetime, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    return math.floor((now - as_utc(created_at)).total_seconds() / 3600)


def _first_due(schedule, hours: int, sent: set) -> Optional[str]:
    for template, threshold in schedule:
        if hours >= threshold and template not in sent:
            return template
    return None


def pick_follow_up(hours: int, already_sent: Iterable[str]) -> Optional[str]:
    """First due follow-up not already sent."""
    return _first_due(FOLLOW_UP_SCHEDULE, hours, set(already_sent))


def determine_pillar(campaign: Optional[str], score: Optional[int]) -> str:
    """Campaign keywords decide; without one, low scorers get nurture."""
    text = (campaign or "").lower()
    if any(hint in text for hint in SPEED_CAMPAIGN_HINTS):
        return "speed"
    if any(hint in text for hint in GRANT_CAMPAIGN_HINTS):
        return "grants"
    if (score or 0) < NURTURE_MAX_SCORE:
        return "nurture"
    return "grants"


def pick_email(hours: int, already_sent: Iterable[str], pillar: str) -> Optional[str]:
    """The one template to send this run: a due follow-up, else the pillar's next due step."""
    sent = set(already_sent)
    return pick_follow_up(hours, sent) or _first_due(SEQUENCE_SCHEDULES[pillar], hours, sent)


def next_partial_reminder(reminder_count: int, now: Optional[datetime] = None) -> Optional[datetime]:
    if reminder_count >= len(PARTIAL_REMINDER_HOURS):
        return None
    now = now or datetime.now(timezone.utc)
    return now + timedelta(hours=PARTIAL_REMINDER_HOURS[reminder_count])


def follow_up_context(lead: Lead) -> Dict[str, Any]:
    try:
        unsub = unsubscribe_url(lead.id)
    except RuntimeError:
        log.warning("No signing secret; follow-up for %s goes out without unsubscribe link", lead.id)
        unsub = None
    size = lead.system_size_kw or DEFAULT_SYSTEM_SIZE_KW
    return {
        "first_name": (lead.name or "").split(" ")[0] or "there",
        "system_size": f"{size:g}",
        "annual_savings": int(round(lead.annual_savings or DEFAULT_ANNUAL_SAVINGS)),
        "sales_phone": config.settings.SALES_PHONE,
        "is_gozo": bool(lead.is_gozo),
        "unsubscribe_url": unsub,
    }


def run_email_sequences(
    session: Session,
    crm: Optional[ZohoClient],
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    leads = storage.follow_up_candidates(session, limit or config.settings.FOLLOW_UP_BATCH_SIZE)
    history = storage.sent_templates(session, [lead.id for lead in leads])

    results = {"sent": 0, "skipped": 0, "errors": 0}
    details = []

    for lead in leads:
        if not lead.email or not lead.zoho_lead_id:
            results["skipped"] += 1
            continue

        pillar = determine_pillar(lead.source_campaign, lead.lead_score)
        template = pick_email(hours_since(lead.created_at, now), history.get(lead.id, set()), pillar)
        if not template:
            results["skipped"] += 1
            continue

        try:
            subject, body = render_sequence_email(template, follow_up_context(lead))
            if crm is None:
                raise CrmError("CRM client not available")
            message_id = send_via_crm(crm, lead.zoho_lead_id, lead.email, subject, body)
        except CrmError as e:
            results["errors"] += 1
            details.append(f"error {template} {lead.email}: {e}")
            log.error("Email %s failed for lead %s: %s", template, lead.id, e)
            continue

        results["sent"] += 1
        details.append(f"sent {template} to {lead.email}")
        logged = storage.log_communication(
            session,
            lead.id,
            channel="email",
            direction="outbound",
            template_used=template,
            status="sent",
            subject=subject,
            external_message_id=message_id,
        )
        if logged is None:
            details.append(f"log failed {template} {lead.email}")

    log.info("Email sequence run: %s over %d leads", results, len(leads))
    return {"success": True, "processed": len(leads), "results": results, "details": details}
