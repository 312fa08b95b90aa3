# solar_portal/main.py
from fastapi import FastAPI

from solar_portal import config
from solar_portal.db import create_db_and_tables, new_session
from solar_portal.logging_config import setup_logging
from solar_portal.services.notifications import Notifier
from solar_portal.services.zoho import ZohoClient

# Routers
from solar_portal.routers.cron import router as cron_router
from solar_portal.routers.health import router as health_router
from solar_portal.routers.leads import router as leads_router
from solar_portal.routers.partial_leads import router as partial_leads_router
from solar_portal.routers.quote import router as quote_router
from solar_portal.routers.unsubscribe import router as unsubscribe_router
from solar_portal.routers.wizard_sessions import router as wizard_sessions_router

app = FastAPI(title="Solar Sales Portal API", version="0.1.0")

# ---------- Routers ----------
app.include_router(health_router)
app.include_router(leads_router)
app.include_router(partial_leads_router)
app.include_router(wizard_sessions_router)
app.include_router(quote_router)
app.include_router(unsubscribe_router)
app.include_router(cron_router)


# ---------- Startup ----------
@app.on_event("startup")
def on_startup():
    setup_logging()
    create_db_and_tables()
    # shared clients, injected through solar_portal.deps
    app.state.crm = ZohoClient.from_settings(config.settings)
    app.state.notifier = Notifier.from_settings(config.settings)
    app.state.session_factory = new_session
