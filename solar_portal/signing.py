# solar_portal/signing.py
"""
Short HMAC tokens for links we email out (unsubscribe, signing fallback).

token = base64url("<lead_id>:<issued_ms>") + "." + hmac_sha256_hex(secret, payload)[:16]
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from typing import Optional

from solar_portal import config

log = logging.getLogger(__name__)

SIGNATURE_LENGTH = 16


def _secret(secret: Optional[str]) -> str:
    value = secret if secret is not None else config.settings.PORTAL_CONTRACT_SECRET
    if not value:
        raise RuntimeError("PORTAL_CONTRACT_SECRET / CRON_SECRET not set")
    return value


def _b64encode(raw: str) -> str:
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def _b64decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")


def _signature(payload: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()[:SIGNATURE_LENGTH]


def sign_lead_token(lead_id: str, secret: Optional[str] = None, now_ms: Optional[int] = None) -> str:
    issued = now_ms if now_ms is not None else int(time.time() * 1000)
    payload = _b64encode(f"{lead_id}:{issued}")
    return f"{payload}.{_signature(payload, _secret(secret))}"


def verify_lead_token(
    token: Optional[str],
    lead_id: str,
    secret: Optional[str] = None,
    max_age_days: Optional[int] = None,
    now_ms: Optional[int] = None,
) -> bool:
    if not token or "." not in token:
        return False

    payload, signature = token.rsplit(".", 1)
    expected = _signature(payload, _secret(secret))
    if not hmac.compare_digest(signature, expected):
        return False

    try:
        token_lead_id, issued_raw = _b64decode(payload).rsplit(":", 1)
        issued = int(issued_raw)
    except (ValueError, UnicodeDecodeError):
        log.warning("Malformed token payload for lead %s", lead_id)
        return False

    if token_lead_id != lead_id:
        return False

    days = max_age_days if max_age_days is not None else config.settings.TOKEN_MAX_AGE_DAYS
    now = now_ms if now_ms is not None else int(time.time() * 1000)
    return 0 <= now - issued <= days * 24 * 60 * 60 * 1000


def unsubscribe_url(lead_id: str, secret: Optional[str] = None) -> str:
    token = sign_lead_token(lead_id, secret)
    return f"{config.settings.PUBLIC_BASE_URL}/api/unsubscribe?lead={lead_id}&token={token}"


def signing_url(lead_id: str, secret: Optional[str] = None) -> str:
    token = sign_lead_token(lead_id, secret)
    return f"{config.settings.BACKOFFICE_URL}/sign/lead/{lead_id}?t={token}"
