# solar_portal/routers/leads.py
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from solar_portal import dedup, storage
from solar_portal.db import get_session
from solar_portal.deps import get_crm, get_notifier, get_session_factory
from solar_portal.schemas import LeadIn, LeadOut, LeadRef, LeadUpdate
from solar_portal.scoring import calculate_lead_priority, is_hot_lead
from solar_portal.services.notifications import Notifier
from solar_portal.services.zoho import CrmError, ZohoClient
from solar_portal.signing import signing_url

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/leads", tags=["leads"])

# set once; a later submission matched to the row never rewrites these
IDENTITY_FIELDS = ("name", "email", "phone", "source", "source_campaign", "zoho_lead_id")


async def read_json_object(request: Request) -> Dict[str, Any]:
    try:
        raw = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(raw, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")
    return raw


def quote_ref(lead_id: str) -> str:
    return f"GHX-{lead_id[:8].upper()}"


def _quote_complete(lead: Dict[str, Any]) -> bool:
    return (lead.get("system_size_kw") or 0) > 0 and (lead.get("total_price") or 0) > 0


def _lead_columns(payload: LeadIn) -> Dict[str, Any]:
    data = payload.lead_columns()
    data.update(
        name=payload.name.strip(),
        email=str(payload.email).strip(),
        phone=payload.phone.strip(),
        source=payload.source or "sales-portal",
        is_gozo=payload.resolve_is_gozo(),
    )
    if "grant_path" not in data and payload.grant_type is not None:
        data["grant_path"] = payload.grant_type != "none"
    if payload.utm_campaign:
        data["source_campaign"] = payload.utm_campaign.strip()
    return data


def link_session_to_lead(session_factory: Callable[[], Session], token: str, lead_id: str) -> None:
    try:
        with session_factory() as s:
            row = storage.get_wizard_session_by_token(s, token)
            if row is None:
                log.info("No wizard session for token %s", token)
                return
            if row.status == "converted_to_lead":
                return
            storage.convert_wizard_session(s, row, lead_id)
    except SQLAlchemyError:
        log.exception("Linking wizard session %s to lead %s failed", token, lead_id)


def close_partial_leads(session_factory: Callable[[], Session], email: str, lead_id: Optional[str]) -> None:
    try:
        with session_factory() as s:
            closed = storage.mark_partial_leads_converted(s, email=email, lead_id=lead_id)
            if closed:
                log.info("Closed %d partial lead(s) for %s", closed, email)
    except SQLAlchemyError:
        log.exception("Closing partial leads for %s failed", email)


def _find_crm_lead(crm: ZohoClient, email: str, phone: str) -> Optional[str]:
    try:
        return crm.search_lead(email, phone)
    except CrmError as e:
        log.warning("CRM lead search failed for %s: %s", email, e)
        return None


def _ingest(
    payload: LeadIn,
    session: Session,
    crm: ZohoClient,
    notifier: Notifier,
    session_factory: Callable[[], Session],
    background: BackgroundTasks,
) -> LeadOut:
    data = _lead_columns(payload)
    priority = calculate_lead_priority(data)
    data["lead_score"] = priority.score

    # a CRM reference pins the lookup; otherwise walk the dedup ladder
    if payload.zoho_lead_id:
        existing = dedup.find_lead_by_external_id(session, payload.zoho_lead_id)
    else:
        existing = dedup.find_existing_lead(session, email=data["email"], phone=data["phone"], name=data["name"])
    returning = existing is not None or bool(payload.zoho_lead_id)
    hot = is_hot_lead(data, payload.source, returning)

    crm_data = data
    if existing is not None:
        # a match keeps the identity it was first stored under
        kept = {k: getattr(existing, k) for k in IDENTITY_FIELDS if getattr(existing, k) is not None}
        crm_data = {**data, **kept}

    zoho_id: Optional[str] = payload.zoho_lead_id or (existing.zoho_lead_id if existing else None)
    if zoho_id is None:
        zoho_id = _find_crm_lead(crm, crm_data["email"], crm_data["phone"])

    if existing is not None:
        updates = {k: v for k, v in data.items() if k not in IDENTITY_FIELDS}
        stored = storage.update_lead(session, existing, {**updates, "status": "qualified"})
    else:
        stored = storage.create_lead(session, {**data, "status": "new"})

    crm_id = None
    try:
        crm_id = crm.create_or_update_lead(crm_data, zoho_id=zoho_id, hot=hot)
    except CrmError as e:
        log.error("CRM write failed for %s: %s", data["email"], e)

    if stored is None and crm_id is None:
        raise HTTPException(status_code=500, detail="Failed to process lead in both systems")

    if stored is not None and crm_id and stored.zoho_lead_id != crm_id:
        stored = storage.update_lead(session, stored, {"zoho_lead_id": crm_id}) or stored

    snapshot = stored.model_dump() if stored is not None else {**crm_data, "zoho_lead_id": crm_id}
    lead_id = stored.id if stored is not None else None

    fallback_url = None
    if lead_id:
        try:
            fallback_url = signing_url(lead_id)
        except RuntimeError:
            log.warning("No signing secret configured; fallback signing URL omitted")

    # after the response; may not complete
    background.add_task(notifier.notify_new_lead, snapshot, priority, hot, returning)
    background.add_task(notifier.post_webhook, snapshot)
    if payload.session_token and lead_id:
        background.add_task(link_session_to_lead, session_factory, payload.session_token, lead_id)
    background.add_task(close_partial_leads, session_factory, data["email"], lead_id)
    if _quote_complete(snapshot):
        background.add_task(
            notifier.send_quote_confirmation,
            snapshot, crm, crm_id, quote_ref(lead_id or crm_id or "unknown"), fallback_url,
        )

    log.info(
        "Lead %s %s (store=%s crm=%s hot=%s score=%s)",
        lead_id or crm_id, "updated" if returning else "created",
        stored is not None, crm_id is not None, hot, priority.score,
    )

    return LeadOut(
        success=True,
        lead=LeadRef(
            id=lead_id,
            created_at=stored.created_at.isoformat() if stored is not None else None,
        ),
        lead_id=lead_id,
        zoho_lead_id=crm_id or zoho_id,
        store_success=stored is not None,
        crm_success=crm_id is not None,
        is_hot_lead=hot,
        is_returning_lead=returning,
        fallback_signing_url=fallback_url,
    )


@router.post("", response_model=LeadOut)
async def create_lead(
    request: Request,
    background: BackgroundTasks,
    session: Session = Depends(get_session),
    crm: ZohoClient = Depends(get_crm),
    notifier: Notifier = Depends(get_notifier),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    raw = await read_json_object(request)
    try:
        payload = LeadIn.model_validate(raw)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid lead payload: {e.errors(include_url=False)}")

    if not payload.has_required():
        raise HTTPException(status_code=400, detail="Name, email, and phone are required")

    return await run_in_threadpool(_ingest, payload, session, crm, notifier, session_factory, background)


def _patch(body: LeadUpdate, session: Session) -> Dict[str, Any]:
    if not body.id and not body.email:
        raise HTTPException(status_code=400, detail="Lead id or email is required")

    if body.id:
        lead = storage.get_lead(session, body.id)
    else:
        lead = storage.find_latest_lead_by_email(session, str(body.email))
    if lead is None:
        raise HTTPException(status_code=404, detail="Lead not found")

    updates = body.lead_columns()
    if not body.id:
        updates.pop("email", None)

    updated = storage.update_lead(session, lead, updates)
    if updated is None:
        raise HTTPException(status_code=500, detail="Failed to update lead")
    return {"success": True, "lead": updated.model_dump(mode="json")}


@router.patch("")
async def patch_lead(request: Request, session: Session = Depends(get_session)):
    raw = await read_json_object(request)
    try:
        body = LeadUpdate.model_validate(raw)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid update payload: {e.errors(include_url=False)}")
    return await run_in_threadpool(_patch, body, session)
