import os

# --- CONFIGURATION ---
# Must be set before solar_portal.config / solar_portal.db are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["PORTAL_CONTRACT_SECRET"] = "test-portal-secret"
os.environ["EMAIL_DRY_RUN"] = "false"
os.environ["SMS_DRY_RUN"] = "true"
os.environ["BACKOFFICE_URL"] = "https://backoffice.test"
os.environ["PUBLIC_BASE_URL"] = "https://portal.test"

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from solar_portal import models  # noqa: F401
from solar_portal.db import get_session
from solar_portal.deps import get_crm, get_notifier, get_session_factory
from solar_portal.main import app
from solar_portal.services.zoho import CrmError


class FakeCrm:
    configured = True

    def __init__(self):
        self.fail = False
        self.next_id = "zoho-1"
        self.calls = []
        self.mails = []
        self.opt_outs = []
        self.found = None
        self.searches = []

    def create_or_update_lead(self, lead, zoho_id=None, hot=False):
        self.calls.append({"lead": dict(lead), "zoho_id": zoho_id, "hot": hot})
        if self.fail:
            raise CrmError("crm down")
        return zoho_id or self.next_id

    def search_lead(self, email=None, phone=None):
        self.searches.append({"email": email, "phone": phone})
        if self.fail:
            raise CrmError("search down")
        return self.found

    def send_mail(self, zoho_id, to_email, subject, html, module="Leads"):
        if self.fail:
            raise CrmError("mail relay down")
        self.mails.append({"zoho_id": zoho_id, "to": to_email, "subject": subject, "html": html})
        return f"msg-{len(self.mails)}"

    def set_email_opt_out(self, zoho_id):
        self.opt_outs.append(zoho_id)
        return True


class FakeNotifier:
    def __init__(self):
        self.leads = []
        self.webhooks = []
        self.confirmations = []
        self.reports = []
        self.reminders = []

    def notify_new_lead(self, lead, priority, hot=False, returning=False):
        self.leads.append({"lead": lead, "priority": priority, "hot": hot, "returning": returning})
        return True

    def post_webhook(self, lead, source="sales-portal"):
        self.webhooks.append(lead)
        return True

    def send_quote_confirmation(self, lead, crm, zoho_id, quote_ref, signing_url=None):
        self.confirmations.append({"lead": lead, "zoho_id": zoho_id, "quote_ref": quote_ref, "signing_url": signing_url})
        return {"email": True, "sms": True}

    def report_abandoned_sessions(self, sessions, by_step):
        self.reports.append({"count": len(list(sessions)), "by_step": by_step})
        return True

    def send_follow_up_reminder(self, leads, now=None, min_hours=24):
        self.reminders.append([lead.id for lead in leads])
        return True


# ============ FIXTURES ============

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def fake_crm():
    return FakeCrm()


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
def client(engine, fake_crm, fake_notifier):
    def _session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_crm] = lambda: fake_crm
    app.dependency_overrides[get_notifier] = lambda: fake_notifier
    app.dependency_overrides[get_session_factory] = lambda: (lambda: Session(engine))
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def cron_headers():
    return {"Authorization": "Bearer test-cron-secret"}


@pytest.fixture
def make_lead(session):
    """Insert a lead directly; created_at can be backdated with hours_ago."""
    def _make(hours_ago=0, **fields):
        data = {"name": "Maria Borg", "email": "maria.borg@gmail.com", "phone": "35679123456"}
        data.update(fields)
        lead = models.Lead(**data)
        lead.created_at = datetime.now(timezone.utc) - timedelta(hours=hours_ago)
        session.add(lead)
        session.commit()
        session.refresh(lead)
        return lead
    return _make
