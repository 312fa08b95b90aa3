# solar_portal/routers/wizard_sessions.py
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from solar_portal import storage
from solar_portal.db import get_session
from solar_portal.models import WizardSession
from solar_portal.schemas import WizardActionIn, WizardSessionIn, WizardSessionPatch
from solar_portal.wizard import apply_action

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/wizard-sessions", tags=["wizard-sessions"])


def _out(row: WizardSession) -> dict:
    return row.model_dump(mode="json")


@router.post("")
def upsert_session(body: WizardSessionIn, session: Session = Depends(get_session)):
    """Create the session for a token, or update it when it already exists."""
    token = (body.session_token or "").strip()
    if not token:
        raise HTTPException(status_code=400, detail="session_token is required")

    row = storage.get_wizard_session_by_token(session, token)
    if row is None:
        saved = storage.create_wizard_session(session, token, body.session_columns())
    else:
        saved = storage.update_wizard_session(session, row, body.session_columns())
    if saved is None:
        raise HTTPException(status_code=500, detail="Failed to save wizard session")
    return {"success": True, "session": _out(saved), "created": row is None}


@router.patch("")
def patch_session(body: WizardSessionPatch, session: Session = Depends(get_session)):
    row = storage.get_wizard_session(session, body.session_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Session not found")

    if body.action == "convert_to_lead":
        if not body.lead_id:
            raise HTTPException(status_code=400, detail="lead_id is required to convert a session")
        if row.status == "converted_to_lead":
            raise HTTPException(status_code=409, detail="Session already converted")
        saved = storage.convert_wizard_session(session, row, body.lead_id)
    elif body.action == "complete":
        if row.status == "converted_to_lead":
            raise HTTPException(status_code=409, detail="Session already converted")
        saved = storage.complete_wizard_session(session, row)
    else:
        saved = storage.update_wizard_session(session, row, body.session_columns())

    if saved is None:
        raise HTTPException(status_code=500, detail="Failed to update wizard session")
    return {"success": True, "session": _out(saved)}


@router.post("/{token}/actions")
def dispatch_action(token: str, action: WizardActionIn, session: Session = Depends(get_session)):
    row = storage.get_wizard_session_by_token(session, token)
    if row is None:
        raise HTTPException(status_code=404, detail="Session not found")
    try:
        state, columns = apply_action(row, action.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    saved = storage.update_wizard_session(session, row, columns)
    if saved is None:
        raise HTTPException(status_code=500, detail="Failed to update wizard session")
    return {"success": True, "state": asdict(state), "session": _out(saved)}


@router.get("")
def get_sessions(
    token: str | None = Query(default=None),
    abandoned: bool = Query(default=False),
    min_step: int = Query(1, ge=1, le=7),
    limit: int = Query(50, ge=1, le=200),
    has_address: bool = Query(default=False),
    session: Session = Depends(get_session),
):
    if token:
        row = storage.get_wizard_session_by_token(session, token)
        if row is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return {"session": _out(row)}

    if abandoned:
        rows = storage.list_abandoned_sessions(session, min_step=min_step, limit=limit, has_address=has_address)
        return {"sessions": [_out(r) for r in rows], "count": len(rows)}

    raise HTTPException(status_code=400, detail="Pass token or abandoned=true")
