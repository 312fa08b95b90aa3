# solar_portal/schemas.py
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

GOZO_LAT_THRESHOLD = 36.0

GrantType = Literal["none", "pv_only", "pv_battery", "battery_only"]


class Coordinates(BaseModel):
    lat: float
    lng: float


class LeadFields(BaseModel):
    """Lead columns a client may send; shared by create and patch bodies."""
    model_config = ConfigDict(extra="ignore")

    address: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    google_maps_link: Optional[str] = None
    locality: Optional[str] = None

    household_size: Optional[int] = Field(default=None, ge=0)
    monthly_bill: Optional[float] = None
    consumption_kwh: Optional[float] = None
    roof_area: Optional[float] = None

    selected_system: Optional[str] = None
    system_size_kw: Optional[float] = None
    with_battery: Optional[bool] = None
    battery_size_kwh: Optional[float] = None

    grant_path: Optional[bool] = None
    grant_type: Optional[GrantType] = None
    grant_amount: Optional[float] = None
    gross_price: Optional[float] = None
    total_price: Optional[float] = None
    deposit_amount: Optional[float] = None
    annual_savings: Optional[float] = None

    payment_method: Optional[Literal["cash", "loan"]] = None
    loan_term: Optional[int] = None
    monthly_payment: Optional[float] = None

    bill_file_url: Optional[str] = None
    proposal_file_url: Optional[str] = None
    social_provider: Optional[str] = None
    notes: Optional[str] = None

    def lead_columns(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_unset=True, exclude={"coordinates"})
        if self.coordinates is not None:
            data.setdefault("lat", self.coordinates.lat)
            data.setdefault("lng", self.coordinates.lng)
        return data


class LeadIn(LeadFields):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None

    source: Optional[str] = None
    zoho_lead_id: Optional[str] = None
    session_token: Optional[str] = None

    # island hints
    is_gozo: Optional[bool] = None
    location: Optional[str] = None
    utm_source: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None

    def has_required(self) -> bool:
        return bool((self.name or "").strip() and self.email and (self.phone or "").strip())

    def resolve_is_gozo(self) -> bool:
        """Explicit flag, then campaign/location keywords, then latitude."""
        if self.is_gozo is not None:
            return self.is_gozo
        for hint in (self.utm_campaign, self.utm_content, self.location):
            text = (hint or "").lower()
            if "gozo" in text:
                return True
            if "malta" in text:
                return False
        lat = self.lat if self.lat is not None else (self.coordinates.lat if self.coordinates else None)
        return lat is not None and lat >= GOZO_LAT_THRESHOLD


class LeadUpdate(LeadFields):
    id: Optional[str] = None
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[Literal["new", "contacted", "qualified", "quoted", "signed", "installed", "lost"]] = None
    zoho_lead_id: Optional[str] = None
    is_gozo: Optional[bool] = None

    def lead_columns(self) -> Dict[str, Any]:
        data = super().lead_columns()
        data.pop("id", None)
        return data


class LeadRef(BaseModel):
    id: Optional[str] = None
    created_at: Optional[str] = None


class LeadOut(BaseModel):
    success: bool = True
    lead: Optional[LeadRef] = None
    lead_id: Optional[str] = None
    zoho_lead_id: Optional[str] = None
    store_success: bool
    crm_success: bool
    is_hot_lead: bool = False
    is_returning_lead: bool = False
    fallback_signing_url: Optional[str] = None


# ---------- wizard sessions ----------

class WizardSessionFields(BaseModel):
    model_config = ConfigDict(extra="ignore")

    current_step: Optional[int] = Field(default=None, ge=1)
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None
    referrer: Optional[str] = None

    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    google_maps_link: Optional[str] = None
    location: Optional[str] = None
    household_size: Optional[int] = None
    monthly_bill: Optional[float] = None
    consumption_kwh: Optional[float] = None
    roof_area: Optional[float] = None
    selected_system: Optional[str] = None
    system_size_kw: Optional[float] = None
    with_battery: Optional[bool] = None
    battery_size_kwh: Optional[float] = None
    grant_type: Optional[GrantType] = None
    grant_amount: Optional[float] = None
    payment_method: Optional[Literal["cash", "loan"]] = None
    loan_term: Optional[int] = None
    total_price: Optional[float] = None
    monthly_payment: Optional[float] = None
    annual_savings: Optional[float] = None
    payback_years: Optional[float] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    def session_columns(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class WizardSessionIn(WizardSessionFields):
    session_token: Optional[str] = None

    def session_columns(self) -> Dict[str, Any]:
        data = super().session_columns()
        data.pop("session_token", None)
        return data


class WizardSessionPatch(WizardSessionFields):
    session_id: str
    action: Optional[Literal["complete", "convert_to_lead"]] = None
    lead_id: Optional[str] = None

    def session_columns(self) -> Dict[str, Any]:
        data = super().session_columns()
        for key in ("session_id", "action", "lead_id"):
            data.pop(key, None)
        return data


class WizardActionIn(BaseModel):
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)


# ---------- partial leads ----------

class PartialLeadIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: Optional[EmailStr] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    social_provider: Optional[str] = None
    last_step: int = Field(default=1, ge=1, le=7)
    wizard_state: Optional[Dict[str, Any]] = None


class PartialLeadConvert(BaseModel):
    id: Optional[str] = None
    email: Optional[EmailStr] = None
    lead_id: Optional[str] = None


# ---------- quote ----------

class QuoteIn(BaseModel):
    monthly_bill: Optional[float] = None
    household_size: Optional[int] = Field(default=None, ge=0)
    location: Literal["malta", "gozo"] = "malta"
    package_id: Optional[str] = None
    battery_id: Optional[str] = None
    grant_type: GrantType = "pv_only"
    loan_term: Optional[int] = None
    extras: List[str] = Field(default_factory=list)


class FinancingOut(BaseModel):
    term: int
    interest_rate: float
    monthly_payment: float
    total_cost: int


class QuoteOut(BaseModel):
    monthly_consumption_kwh: int
    package_id: Optional[str] = None
    battery_id: Optional[str] = None
    grant_type: GrantType
    location: str
    gross_price: float
    grant_amount: float
    extras_total: float
    total_price: float
    deposit: float
    annual_savings: int
    payback_years: float
    savings_25_years: int
    co2_offset_tonnes: float
    monthly_payment: Optional[float] = None
    financing_options: List[FinancingOut]
