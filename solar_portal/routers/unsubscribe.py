# solar_portal/routers/unsubscribe.py
import html
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import HTMLResponse
from sqlmodel import Session

from solar_portal import config, storage
from solar_portal.db import get_session
from solar_portal.deps import get_crm
from solar_portal.services.zoho import CrmError, ZohoClient
from solar_portal.signing import verify_lead_token

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["unsubscribe"])


def _page(title: str, message: str, status_code: int) -> HTMLResponse:
    body = f"""<!doctype html>
<html><head><meta charset="utf-8"><title>{html.escape(title)}</title>
<style>body{{font-family:sans-serif;max-width:520px;margin:80px auto;text-align:center;color:#222}}</style>
</head><body><h1>{html.escape(title)}</h1><p>{html.escape(message)}</p>
<p style="color:#888">{html.escape(config.settings.FROM_NAME)}</p></body></html>"""
    return HTMLResponse(content=body, status_code=status_code)


def sync_crm_opt_out(crm: ZohoClient, zoho_id: str) -> None:
    if not crm.configured:
        return
    try:
        crm.set_email_opt_out(zoho_id)
    except CrmError as e:
        log.error("CRM opt-out sync failed for %s: %s", zoho_id, e)


@router.get("/unsubscribe", response_class=HTMLResponse)
def unsubscribe(
    background: BackgroundTasks,
    lead: str | None = Query(default=None),
    token: str | None = Query(default=None),
    session: Session = Depends(get_session),
    crm: ZohoClient = Depends(get_crm),
):
    if not lead or not token:
        return _page("Invalid link", "This unsubscribe link is incomplete.", 400)

    try:
        valid = verify_lead_token(token, lead)
    except RuntimeError:
        log.error("Unsubscribe called but no signing secret is configured")
        return _page("Something went wrong", "Please try again later.", 500)
    if not valid:
        return _page("Invalid link", "This unsubscribe link is invalid or has expired.", 400)

    row = storage.get_lead(session, lead)
    if row is None:
        return _page("Not found", "We could not find your subscription.", 404)

    if row.email_opted_out:
        return _page("Already unsubscribed", "You will not receive further emails from us.", 200)

    saved = storage.mark_opted_out(session, row)
    if saved is None:
        return _page("Something went wrong", "We could not process your request. Please try again later.", 500)

    storage.log_communication(
        session,
        saved.id,
        channel="email",
        direction="inbound",
        template_used="unsubscribe",
        status="received",
        subject="Unsubscribe request",
    )
    if saved.zoho_lead_id:
        background.add_task(sync_crm_opt_out, crm, saved.zoho_lead_id)

    log.info("Lead %s unsubscribed", saved.id)
    return _page("Unsubscribed", "You have been unsubscribed and will not receive further emails from us.", 200)
