# solar_portal/deps.py
from typing import Callable, Optional

from fastapi import Header, HTTPException, Request
from sqlmodel import Session

from solar_portal import config
from solar_portal.db import new_session
from solar_portal.services.notifications import Notifier
from solar_portal.services.zoho import ZohoClient


def get_crm(request: Request) -> ZohoClient:
    crm = getattr(request.app.state, "crm", None)
    if crm is None:
        crm = ZohoClient.from_settings(config.settings)
        request.app.state.crm = crm
    return crm


def get_notifier(request: Request) -> Notifier:
    notifier = getattr(request.app.state, "notifier", None)
    if notifier is None:
        notifier = Notifier.from_settings(config.settings)
        request.app.state.notifier = notifier
    return notifier


def get_session_factory(request: Request) -> Callable[[], Session]:
    """Sessions for background tasks, which outlive the request session."""
    return getattr(request.app.state, "session_factory", None) or new_session


def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    expected = (config.settings.CRON_SECRET or "").strip()
    if not expected:
        raise HTTPException(status_code=500, detail="Server misconfigured: CRON_SECRET not set")
    got = (authorization or "").strip()
    if got != f"Bearer {expected}":
        raise HTTPException(status_code=401, detail="Unauthorized")
