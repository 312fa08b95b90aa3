# solar_portal/services/sms.py
import logging
import os
from typing import Any, Mapping

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from solar_portal import config
from solar_portal.utils.phone import to_e164

log = logging.getLogger(__name__)


def _truthy(val) -> bool:
    return str(val).strip().lower() in ("1", "true", "yes", "y", "on")


def is_dry_run() -> bool:
    # Prefer live env each call; fall back to config
    env_val = os.getenv("SMS_DRY_RUN", None)
    if env_val is not None:
        return _truthy(env_val)
    return bool(config.settings.SMS_DRY_RUN)


def _client() -> Client:
    """
    Twilio client. API key auth when TWILIO_API_KEY is set:

      Client(api_key_sid, api_key_secret, account_sid)

    otherwise plain account SID + auth token.
    """
    s = config.settings
    if not (s.TWILIO_ACCOUNT_SID and s.TWILIO_AUTH_TOKEN):
        raise RuntimeError("Missing TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN")
    if s.TWILIO_API_KEY:
        return Client(s.TWILIO_API_KEY, s.TWILIO_AUTH_TOKEN, s.TWILIO_ACCOUNT_SID)
    return Client(s.TWILIO_ACCOUNT_SID, s.TWILIO_AUTH_TOKEN)


def send_sms(to: str, body: str) -> bool:
    """
    Sends an SMS using the Messaging Service if set, else TWILIO_FROM.
    Honors is_dry_run() at call time.
    Returns True if sent (or dry-run), False on error.
    """
    phone = to_e164(to)
    if not phone:
        log.warning("SMS skipped: invalid phone %r", to)
        return False

    if is_dry_run():
        log.info("[SMS DRY-RUN] to=%s body=%s", phone, body)
        return True

    s = config.settings
    kwargs = {"to": phone, "body": body}
    if s.TWILIO_MESSAGING_SERVICE_SID:
        kwargs["messaging_service_sid"] = s.TWILIO_MESSAGING_SERVICE_SID
    elif s.TWILIO_FROM:
        kwargs["from_"] = s.TWILIO_FROM
    else:
        log.error("SMS not sent: set TWILIO_MESSAGING_SERVICE_SID or TWILIO_FROM")
        return False

    try:
        msg = _client().messages.create(**kwargs)
    except (TwilioException, RuntimeError) as e:
        log.error("SMS send failed to=%s err=%s", phone, e)
        return False
    log.info("SMS sent sid=%s to=%s", msg.sid, phone)
    return True


def quote_confirmation_sms(lead: Mapping[str, Any]) -> bool:
    """Short text confirming a completed quote."""
    phone = (lead.get("phone") or "").strip()
    if not phone:
        return False

    first = ((lead.get("name") or "").split(" ")[0]) or "there"
    size = lead.get("system_size_kw")
    total = lead.get("total_price")

    body = f"Hi {first}, thanks for your solar quote request with {config.settings.FROM_NAME}."
    if size and total:
        body += f" Your {size:g} kWp system comes to EUR {total:,.0f} after grant."
    body += f" We'll call you shortly. Questions? {config.settings.SALES_PHONE}"
    return send_sms(phone, body)
