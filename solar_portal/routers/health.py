# solar_portal/routers/health.py
from fastapi import APIRouter

from solar_portal import config

router = APIRouter(tags=["health"])


@router.get("/")
def root():
    return {"ok": True, "msg": "root alive"}


@router.get("/health")
def health():
    return {"ok": True, "env": config.settings.ENV}
