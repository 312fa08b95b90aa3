# solar_portal/services/notifications.py
"""
Staff notifications (chat + webhook) and customer quote confirmations.

Everything here is best effort: failures are logged and reported as False,
never raised, because it runs after the HTTP response has gone out.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

import httpx

from solar_portal.models import as_utc
from solar_portal.scoring import LeadPriority
from solar_portal.services import sms as sms_service
from solar_portal.services.email import render_quote_confirmation, send_via_crm
from solar_portal.services.telegram import TelegramClient, escape_markdown
from solar_portal.services.zoho import CrmError, ZohoClient

log = logging.getLogger(__name__)

PRIORITY_BADGES = {"high": "🔥 HIGH", "medium": "⚡ MEDIUM", "low": "LOW"}


def _money(value) -> str:
    try:
        return f"€{float(value):,.0f}"
    except (TypeError, ValueError):
        return "-"


def format_lead_message(
    lead: Mapping[str, Any],
    priority: LeadPriority,
    hot: bool = False,
    returning: bool = False,
) -> str:
    title = "🔥 *HOT LEAD*" if hot else ("🔁 *Returning lead*" if returning else "☀️ *New lead*")
    island = "Gozo" if lead.get("is_gozo") else "Malta"
    lines = [
        title,
        f"Priority: {PRIORITY_BADGES.get(priority.level, priority.level)} ({priority.score})",
        "",
        f"👤 {escape_markdown(lead.get('name'))}",
        f"📧 {escape_markdown(lead.get('email'))}",
        f"📱 {escape_markdown(lead.get('phone'))}",
        f"📍 {escape_markdown(lead.get('address') or '-')} ({island})",
    ]
    if lead.get("system_size_kw"):
        battery = f" + {lead.get('battery_size_kwh')} kWh battery" if lead.get("with_battery") else ""
        lines.append(f"⚡ {lead.get('system_size_kw')} kWp{battery}")
    if lead.get("total_price"):
        lines.append(f"💶 {_money(lead.get('total_price'))} (grant {_money(lead.get('grant_amount') or 0)})")
    if lead.get("payment_method"):
        term = f" / {lead.get('loan_term')} months" if lead.get("payment_method") == "loan" and lead.get("loan_term") else ""
        lines.append(f"🏦 {lead.get('payment_method')}{term}")
    if lead.get("google_maps_link"):
        lines.append(f"[Map]({lead.get('google_maps_link')})")
    if lead.get("source"):
        lines.append(f"Source: {escape_markdown(lead.get('source'))}")
    return "\n".join(lines)


class Notifier:
    def __init__(
        self,
        telegram: TelegramClient,
        webhook_base_url: str = "",
        webhook_secret: str = "",
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.telegram = telegram
        self.webhook_base_url = (webhook_base_url or "").rstrip("/")
        self.webhook_secret = webhook_secret
        self.transport = transport
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.BaseTransport] = None) -> "Notifier":
        return cls(
            telegram=TelegramClient(settings.TELEGRAM_BOT_TOKEN, settings.TELEGRAM_CHAT_ID, transport=transport),
            webhook_base_url=settings.N8N_API_URL,
            webhook_secret=settings.N8N_WEBHOOK_SECRET,
            transport=transport,
        )

    # ---------- staff ----------

    def notify_new_lead(self, lead: Mapping[str, Any], priority: LeadPriority, hot: bool = False, returning: bool = False) -> bool:
        return self.telegram.send_message(format_lead_message(lead, priority, hot, returning))

    def post_webhook(self, lead: Mapping[str, Any], source: str = "sales-portal") -> bool:
        if not self.webhook_base_url:
            log.info("Webhook URL not set; skipping")
            return False
        payload = {
            "source": source,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "lead": {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in lead.items()},
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                r = client.post(
                    f"{self.webhook_base_url}/webhook/new-lead",
                    json=payload,
                    headers={"X-Webhook-Secret": self.webhook_secret},
                )
            if r.status_code >= 400:
                log.error("Webhook HTTP %s: %s", r.status_code, r.text[:300])
                return False
            return True
        except httpx.HTTPError as e:
            log.error("Webhook post failed: %s", e)
            return False

    def report_abandoned_sessions(self, sessions: Iterable[Any], by_step: Dict[int, int]) -> bool:
        rows = list(sessions)
        if not rows:
            return False
        lines = [f"🛒 *{len(rows)} high-value wizard session(s) abandoned*", ""]
        for s in rows[:10]:
            who = s.full_name or s.email or s.phone or "anonymous"
            system = f"{s.system_size_kw} kWp" if s.system_size_kw else (s.selected_system or "-")
            lines.append(f"• step {s.highest_step_reached}: {escape_markdown(who)} | {escape_markdown(s.address or '-')} | {escape_markdown(system)}")
        lines.append("")
        lines.append("By step: " + ", ".join(f"{step}: {count}" for step, count in sorted(by_step.items())))
        return self.telegram.send_message("\n".join(lines))

    def send_follow_up_reminder(self, leads: Iterable[Any], now: Optional[datetime] = None, min_hours: int = 24) -> bool:
        rows = list(leads)
        if not rows:
            return False
        now = now or datetime.now(timezone.utc)
        lines = ["⏰ *Follow-Up Reminder*", "", f"{len(rows)} lead(s) waiting for callback ({min_hours}h+):", ""]
        for i, lead in enumerate(rows, start=1):
            waited = int((now - as_utc(lead.created_at)).total_seconds() // 3600)
            lines.append(f"{i}. *{escape_markdown(lead.name)}* - {_money(lead.total_price or 0)} ({waited}h ago)")
            lines.append(f"   📱 {escape_markdown(lead.phone)}")
        lines.append("")
        lines.append("🎯 Action: Call these leads today!")
        return self.telegram.send_message("\n".join(lines))

    # ---------- customer ----------

    def send_quote_confirmation(
        self,
        lead: Mapping[str, Any],
        crm: Optional[ZohoClient],
        zoho_id: Optional[str],
        quote_ref: str,
        signing_url: Optional[str] = None,
    ) -> Dict[str, bool]:
        result = {"email": False, "sms": False}

        if crm is not None and zoho_id and lead.get("email"):
            subject, body = render_quote_confirmation(lead, quote_ref, signing_url)
            try:
                result["email"] = bool(send_via_crm(crm, zoho_id, lead["email"], subject, body))
            except CrmError as e:
                log.error("Quote confirmation email failed for %s: %s", lead.get("email"), e)
        else:
            log.info("Quote confirmation email skipped (no CRM record)")

        result["sms"] = sms_service.quote_confirmation_sms(lead)
        return result
