# solar_portal/services/email.py
from __future__ import annotations

import html
import logging
import os
from typing import Any, Mapping, Optional, Tuple

from solar_portal import config
from solar_portal.services.zoho import ZohoClient

log = logging.getLogger(__name__)

# ---- templates ---------------------------------------------------------------

FOLLOW_UP_SUBJECTS = {
    "follow-up-24h": "{first_name}, any questions about your solar quote?",
    "follow-up-48h": "{first_name}, your {system_size} kWp quote is still waiting",
    "follow-up-72h": "{first_name}, don't miss your solar savings opportunity",
    "follow-up-7d": "{first_name}, your solar quote expires soon",
}

FOLLOW_UP_BODIES = {
    "follow-up-24h": (
        "Thanks for designing your solar system with us yesterday. "
        "If anything in your quote is unclear, just reply or call us on {sales_phone}."
    ),
    "follow-up-48h": (
        "Your {system_size} kWp system is reserved at today's price. "
        "Most customers in your position save around EUR {annual_savings} a year."
    ),
    "follow-up-72h": (
        "Every month without solar costs roughly EUR {monthly_savings} in electricity. "
        "The grant covers a large part of the installation and we handle the paperwork."
    ),
    "follow-up-7d": (
        "Your quote is valid for a limited time while grant funds last. "
        "Call {sales_phone} and we'll lock in your {system_size} kWp system."
    ),
}

# marketing pillar templates, named <pillar>-<n>
MARKETING_SUBJECTS = {
    "speed-1": "Your 14-day solar installation starts now",
    "speed-2": "\"They did it in 14 days. I thought they were joking.\"",
    "speed-3": "{first_name}, ready to start your 14-day solar installation?",
    "grants-1": "How to claim your €10,200 solar grant (we do the work)",
    "grants-2": "The exact process to claim your €10,200 grant (we handle it)",
    "grants-3": "Government grant budget is running out (lock yours in now)",
    "nurture-1": "Calculate your solar savings in 60 seconds (free tool)",
    "nurture-2": "{first_name}, what's stopping you from going solar?",
    "nurture-3": "This is our last email (but you need to see this first)",
}

MARKETING_BODIES = {
    "speed-1": (
        "Most installers quote 6 to 12 weeks. We built our whole process around 14 days: "
        "site survey in the first days, paperwork in parallel, panels on your roof by day 14. "
        "Reply to this email or call {sales_phone} to book your survey."
    ),
    "speed-2": (
        "Customers in Gozo and Malta keep telling us the same thing: they expected months and "
        "were generating their own power two weeks later. Your {system_size} kWp system could be next."
    ),
    "speed-3": (
        "If something is holding you back, ask us. A free assessment takes 30 minutes and "
        "there is no obligation. Call {sales_phone} and we'll start your 14-day countdown."
    ),
    "grants-1": (
        "The government grant covers up to €10,200 of a home solar system, roughly 60 to 70% of the cost. "
        "We prepare and submit every form; you only sign.{gozo_note}"
    ),
    "grants-2": (
        "Here is how it works: we survey your roof, design the system, file the grant application "
        "and track it until approval. You save around €{annual_savings} a year from the first month."
    ),
    "grants-3": (
        "Grant funds are allocated first come, first served and this year's budget is being used up. "
        "Call {sales_phone} to lock in your application while funds last."
    ),
    "nurture-1": (
        "Curious what solar would actually save you? Our calculator takes your monthly bill and "
        "gives you system size, grant and payback in under a minute."
    ),
    "nurture-2": (
        "Price, roof, timing, paperwork? Whatever the question is, reply to this email "
        "and a real person will answer it. No pressure."
    ),
    "nurture-3": (
        "We won't keep filling your inbox. Before we stop: a typical {system_size} kWp system saves "
        "around €{annual_savings} a year and the grant pays for most of it. Call {sales_phone} any time."
    ),
}

GOZO_GRANT_NOTE = " Gozo homes get an extra boost: 95% of the battery cost is covered."


def _wrap(first_name: str, paragraph: str, ctx: Mapping[str, Any]) -> str:
    unsubscribe = ctx.get("unsubscribe_url")
    footer = f'<p style="font-size:12px;color:#888"><a href="{html.escape(unsubscribe)}">Unsubscribe</a></p>' if unsubscribe else ""
    return (
        f"<p>Hi {html.escape(first_name)},</p>"
        f"<p>{html.escape(paragraph)}</p>"
        f"<p>{html.escape(config.settings.FROM_NAME)}<br>{html.escape(str(ctx.get('sales_phone') or ''))}</p>"
        f"{footer}"
    )


def render_follow_up(template: str, ctx: Mapping[str, Any]) -> Tuple[str, str]:
    """(subject, html) for one of the follow-up templates."""
    if template not in FOLLOW_UP_SUBJECTS:
        raise KeyError(f"unknown follow-up template: {template}")
    values = dict(ctx)
    values.setdefault("monthly_savings", round(float(values.get("annual_savings") or 0) / 12))
    subject = FOLLOW_UP_SUBJECTS[template].format(**values)
    body = FOLLOW_UP_BODIES[template].format(**values)
    return subject, _wrap(values["first_name"], body, values)


def render_marketing(template: str, ctx: Mapping[str, Any]) -> Tuple[str, str]:
    if template not in MARKETING_SUBJECTS:
        raise KeyError(f"unknown marketing template: {template}")
    values = dict(ctx)
    values["gozo_note"] = GOZO_GRANT_NOTE if values.get("is_gozo") else ""
    subject = MARKETING_SUBJECTS[template].format(**values)
    body = MARKETING_BODIES[template].format(**values)
    return subject, _wrap(values["first_name"], body, values)


def render_sequence_email(template: str, ctx: Mapping[str, Any]) -> Tuple[str, str]:
    """Follow-up or marketing template, by name."""
    if template in FOLLOW_UP_SUBJECTS:
        return render_follow_up(template, ctx)
    return render_marketing(template, ctx)


def render_quote_confirmation(lead: Mapping[str, Any], quote_ref: str, signing_url: Optional[str] = None) -> Tuple[str, str]:
    first = ((lead.get("name") or "").split(" ")[0]) or "there"
    subject = f"Your solar quote {quote_ref}"
    rows = [
        ("System", f"{lead.get('system_size_kw') or '-'} kWp"),
        ("Battery", f"{lead.get('battery_size_kwh')} kWh" if lead.get("with_battery") else "None"),
        ("Grant", f"EUR {float(lead.get('grant_amount') or 0):,.0f}"),
        ("Total after grant", f"EUR {float(lead.get('total_price') or 0):,.0f}"),
        ("Estimated annual savings", f"EUR {float(lead.get('annual_savings') or 0):,.0f}"),
    ]
    table = "".join(
        f"<tr><td>{html.escape(label)}</td><td><strong>{html.escape(value)}</strong></td></tr>"
        for label, value in rows
    )
    sign = f'<p><a href="{html.escape(signing_url)}">Review and sign your contract</a></p>' if signing_url else ""
    body = (
        f"<p>Hi {html.escape(first)},</p>"
        f"<p>Here is a summary of your quote ({html.escape(quote_ref)}).</p>"
        f"<table>{table}</table>{sign}"
        f"<p>{html.escape(config.settings.FROM_NAME)}<br>{html.escape(config.settings.SALES_PHONE)}</p>"
    )
    return subject, body


# ---- sending -----------------------------------------------------------------

def _truthy(val) -> bool:
    return str(val).strip().lower() in ("1", "true", "yes", "y", "on")


def is_dry_run() -> bool:
    env_val = os.getenv("EMAIL_DRY_RUN", None)
    if env_val is not None:
        return _truthy(env_val)
    return bool(config.settings.EMAIL_DRY_RUN)


def send_via_crm(crm: ZohoClient, zoho_id: str, to_email: str, subject: str, body_html: str) -> Optional[str]:
    """
    Relay through the CRM record. Returns the message id (or "dry-run").

    CrmError propagates; callers decide whether a failed send is fatal.
    """
    if is_dry_run():
        log.info("[EMAIL DRY-RUN] to=%s subject=%s", to_email, subject)
        return "dry-run"
    message_id = crm.send_mail(zoho_id, to_email, subject, body_html)
    log.info("Email sent via CRM → %s (%s)", to_email, subject)
    return message_id
