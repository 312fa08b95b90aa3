# solar_portal/models.py
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def new_id() -> str:
    return str(uuid.uuid4())


LEAD_STATUSES = ("new", "contacted", "qualified", "quoted", "signed", "installed", "lost")
SESSION_STATUSES = ("in_progress", "abandoned", "completed", "converted_to_lead")


# ---------- Core tables ----------


class Lead(SQLModel, table=True):
    __tablename__ = "leads"

    id: str = Field(default_factory=new_id, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)

    # identity
    name: str
    email: str = Field(index=True)
    phone: str = Field(index=True)

    # location
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    google_maps_link: Optional[str] = None
    is_gozo: bool = False
    locality: Optional[str] = None

    # consumption
    household_size: Optional[int] = None
    monthly_bill: Optional[float] = None
    consumption_kwh: Optional[float] = None
    roof_area: Optional[float] = None

    # system
    selected_system: Optional[str] = None
    system_size_kw: Optional[float] = None
    with_battery: bool = False
    battery_size_kwh: Optional[float] = None

    # grant & pricing
    grant_path: bool = False
    grant_type: Optional[str] = None
    grant_amount: Optional[float] = None
    gross_price: Optional[float] = None
    total_price: Optional[float] = None
    deposit_amount: Optional[float] = None
    annual_savings: Optional[float] = None

    # financing
    payment_method: Optional[str] = None  # "cash" | "loan"
    loan_term: Optional[int] = None
    monthly_payment: Optional[float] = None

    # attachments / extras
    bill_file_url: Optional[str] = None
    proposal_file_url: Optional[str] = None
    social_provider: Optional[str] = None
    notes: Optional[str] = None

    # lifecycle
    status: str = Field(default="new", max_length=20, index=True)
    source: Optional[str] = None
    source_campaign: Optional[str] = None  # first-touch utm_campaign
    zoho_lead_id: Optional[str] = Field(default=None, index=True)
    lead_score: Optional[int] = None
    email_opted_out: bool = Field(default=False)
    email_opted_out_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = Field(default=None, index=True)


class Communication(SQLModel, table=True):
    """Append-only message log; also the idempotency record for follow-ups."""
    __tablename__ = "communications"

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    lead_id: str = Field(foreign_key="leads.id", index=True)
    channel: str = Field(default="email", max_length=20)       # email | sms | chat
    direction: str = Field(default="outbound", max_length=20)  # outbound | inbound
    template_used: Optional[str] = Field(default=None, index=True)
    status: Optional[str] = Field(default="sent", max_length=20)
    subject: Optional[str] = None
    content: Optional[str] = None
    external_message_id: Optional[str] = None


class WizardSession(SQLModel, table=True):
    __tablename__ = "wizard_sessions"

    id: str = Field(default_factory=new_id, primary_key=True)
    session_token: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow, index=True)

    status: str = Field(default="in_progress", max_length=30, index=True)
    current_step: int = 1
    highest_step_reached: int = 1
    step_timestamps: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    converted_lead_id: Optional[str] = None
    converted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    abandoned_at: Optional[datetime] = None

    # attribution
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None
    referrer: Optional[str] = None

    # captured wizard data
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    google_maps_link: Optional[str] = None
    location: Optional[str] = None  # malta | gozo
    household_size: Optional[int] = None
    monthly_bill: Optional[float] = None
    consumption_kwh: Optional[float] = None
    roof_area: Optional[float] = None
    selected_system: Optional[str] = None
    system_size_kw: Optional[float] = None
    with_battery: bool = False
    battery_size_kwh: Optional[float] = None
    grant_type: Optional[str] = None
    grant_amount: Optional[float] = None
    payment_method: Optional[str] = None
    loan_term: Optional[int] = None
    total_price: Optional[float] = None
    monthly_payment: Optional[float] = None
    annual_savings: Optional[float] = None
    payback_years: Optional[float] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class PartialLead(SQLModel, table=True):
    """Contact captured mid-wizard (social sign-in) before the lead form is sent."""
    __tablename__ = "partial_leads"

    id: str = Field(default_factory=new_id, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)

    email: str = Field(index=True)
    name: Optional[str] = None
    phone: Optional[str] = None
    social_provider: Optional[str] = None
    last_step: int = 1
    wizard_state: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    reminder_count: int = 0
    next_reminder_at: Optional[datetime] = Field(default=None, index=True)
    converted_to_lead: bool = Field(default=False, index=True)
    converted_at: Optional[datetime] = None
    lead_id: Optional[str] = None
