# solar_portal/services/zoho.py
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

log = logging.getLogger(__name__)

TOKEN_REFRESH_BUFFER_SECONDS = 300


class CrmError(Exception):
    """CRM unreachable or answered with something we cannot use."""


class CrmAuthError(CrmError):
    """Refresh-token exchange failed."""


def split_name(full_name: str):
    parts = (full_name or "").strip().split(" ")
    if len(parts) > 1:
        return " ".join(parts[:-1]), parts[-1]
    return "", (full_name or "").strip()


def lead_to_crm_fields(lead: Mapping[str, Any], hot: bool = False) -> Dict[str, Any]:
    """Map a lead snapshot (row dict or payload) onto CRM field names. Empty values are dropped."""
    first, last = split_name(lead.get("name") or "")
    lat, lng = lead.get("lat"), lead.get("lng")
    fields = {
        "First_Name": first or None,
        "Last_Name": last,
        "Email": lead.get("email"),
        "Phone": lead.get("phone"),
        "Street": lead.get("address") or None,
        "Google_Maps_URL": lead.get("google_maps_link") or None,
        "System_Size": lead.get("system_size_kw") or None,
        "Quote_Amount": lead.get("total_price") or None,
        "Annual_Savings": lead.get("annual_savings") or None,
        "Payment_Method": lead.get("payment_method") or None,
        "Loan_Term": lead.get("loan_term") or None,
        "With_Battery": bool(lead.get("with_battery")),
        "Battery_Size": lead.get("battery_size_kwh") or None,
        "Monthly_Bill": lead.get("monthly_bill") or None,
        "Portal_Source": lead.get("source") or "sales-portal",
        "Lead_Source": "Sales Portal",
        "Grant_Type": lead.get("grant_type") or None,
        "Grant_Amount_EUR": lead.get("grant_amount") or None,
        "Grant_Path": lead.get("grant_path"),
        "Quote_PDF_URL": lead.get("proposal_file_url") or None,
        "Bill_Images_URL": lead.get("bill_file_url") or None,
        "Social_Provider": lead.get("social_provider") or None,
        "Install_Coordinates": f"{lat},{lng}" if lat is not None and lng is not None else None,
        "Lead_Status": "Hot - Qualified" if hot else None,
        "Description": lead.get("notes") or None,
        "Monthly_Consumption_kWh": lead.get("consumption_kwh") or None,
        "Monthly_Payment_EUR": lead.get("monthly_payment") or None,
        "Available_Area_sqm": lead.get("roof_area") or None,
        "Household_Size": lead.get("household_size") or None,
        "Recommended_Package": lead.get("selected_system") or None,
    }
    return {k: v for k, v in fields.items() if v is not None}


def _first(result: Mapping[str, Any]) -> Dict[str, Any]:
    data = result.get("data") or []
    return data[0] if data and isinstance(data[0], dict) else {}


class ZohoClient:
    """
    Zoho CRM over httpx with the OAuth refresh-token flow.

    The access token is cached on the instance and refreshed five minutes
    before it expires. Build one at startup and hand it to handlers.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        accounts_url: str = "https://accounts.zoho.eu",
        api_domain: str = "https://www.zohoapis.eu",
        sender_name: str = "",
        sender_email: str = "",
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 20.0,
        clock: Callable[[], float] = time.time,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.accounts_url = accounts_url.rstrip("/")
        self.api_domain = api_domain.rstrip("/")
        self.sender_name = sender_name
        self.sender_email = sender_email
        self.transport = transport
        self.timeout = timeout
        self.clock = clock
        self._access_token: Optional[str] = None
        self._expires_at: float = 0.0

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.BaseTransport] = None) -> "ZohoClient":
        return cls(
            client_id=settings.ZOHO_CLIENT_ID,
            client_secret=settings.ZOHO_CLIENT_SECRET,
            refresh_token=settings.ZOHO_REFRESH_TOKEN,
            accounts_url=settings.ZOHO_ACCOUNTS_URL,
            api_domain=settings.ZOHO_API_DOMAIN,
            sender_name=settings.FROM_NAME,
            sender_email=settings.FROM_EMAIL,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.refresh_token)

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self.transport)

    # ---------- auth ----------

    def access_token(self) -> str:
        if self._access_token and self.clock() < self._expires_at - TOKEN_REFRESH_BUFFER_SECONDS:
            return self._access_token

        if not (self.client_id and self.client_secret and self.refresh_token):
            raise CrmAuthError("Zoho CRM credentials not configured")

        try:
            with self._client() as client:
                r = client.post(
                    f"{self.accounts_url}/oauth/v2/token",
                    data={
                        "grant_type": "refresh_token",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "refresh_token": self.refresh_token,
                    },
                )
            data = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise CrmAuthError(f"Zoho token refresh failed: {exc}") from exc

        token = data.get("access_token")
        if data.get("error") or not token:
            raise CrmAuthError(f"Zoho token refresh failed: {data.get('error') or 'no access token'}")

        self._access_token = token
        self._expires_at = self.clock() + float(data.get("expires_in") or 3600)
        log.info("Zoho access token refreshed")
        return token

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        headers = {"Authorization": f"Zoho-oauthtoken {self.access_token()}"}
        url = f"{self.api_domain}{path}"
        try:
            with self._client() as client:
                r = client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise CrmError(f"{method} {path} failed: {exc}") from exc

        if r.status_code == 204 or not r.content:
            return {}
        try:
            body = r.json()
        except ValueError as exc:
            raise CrmError(f"{method} {path} returned non-JSON (HTTP {r.status_code})") from exc
        if r.status_code >= 500:
            raise CrmError(f"{method} {path} HTTP {r.status_code}: {body}")
        return body if isinstance(body, dict) else {"data": body}

    # ---------- leads ----------

    def create_lead(self, lead: Mapping[str, Any], hot: bool = False) -> Optional[str]:
        result = self._request(
            "POST", "/crm/v2/Leads",
            json={"data": [lead_to_crm_fields(lead, hot)], "trigger": ["workflow"]},
        )
        first = _first(result)
        if first.get("status") == "success":
            zoho_id = (first.get("details") or {}).get("id")
            log.info("Zoho lead created: %s", zoho_id)
            return zoho_id
        log.error("Zoho lead creation failed: %s", result)
        return None

    def update_lead(self, zoho_id: str, lead: Mapping[str, Any], hot: bool = False) -> bool:
        fields = {**lead_to_crm_fields(lead, hot), "id": zoho_id}
        result = self._request("PUT", "/crm/v2/Leads", json={"data": [fields], "trigger": ["workflow"]})
        first = _first(result)
        if first.get("status") == "success":
            log.info("Zoho lead updated: %s", zoho_id)
            return True

        code = first.get("code") or result.get("code")
        if code in ("INVALID_DATA", "INVALID_MODULE") or result.get("status") == "error":
            # lead was converted; the record now lives under Contacts
            log.info("Zoho lead %s not updatable, trying Contact by email", zoho_id)
            return self._update_contact_by_email(lead, hot)

        log.error("Zoho lead update failed: %s", result)
        return False

    def _find_contact_id(self, email: Optional[str]) -> Optional[str]:
        if not email:
            return None
        escaped = email.replace("'", "\\'")
        result = self._request(
            "POST", "/crm/v2/coql",
            json={"select_query": f"SELECT id FROM Contacts WHERE Email = '{escaped}'"},
        )
        return _first(result).get("id")

    def _update_contact_by_email(self, lead: Mapping[str, Any], hot: bool = False) -> bool:
        contact_id = self._find_contact_id(lead.get("email"))
        if not contact_id:
            log.info("No Zoho Contact with email %s", lead.get("email"))
            return False
        fields = {**lead_to_crm_fields(lead, hot), "id": contact_id}
        result = self._request(
            "PUT", f"/crm/v2/Contacts/{contact_id}",
            json={"data": [fields], "trigger": ["workflow"]},
        )
        if _first(result).get("status") == "success":
            log.info("Zoho Contact updated (converted lead): %s", contact_id)
            return True
        log.error("Zoho Contact update failed: %s", result)
        return False

    def create_or_update_lead(self, lead: Mapping[str, Any], zoho_id: Optional[str] = None, hot: bool = False) -> Optional[str]:
        if not self.configured:
            log.info("Zoho CRM not configured, skipping")
            return None
        if zoho_id:
            return zoho_id if self.update_lead(zoho_id, lead, hot) else None
        return self.create_lead(lead, hot)

    def search_lead(self, email: Optional[str] = None, phone: Optional[str] = None) -> Optional[str]:
        """CRM id of an existing lead matching email, then phone. None when nothing matches."""
        if not self.configured:
            return None
        for key, value in (("email", email), ("phone", phone)):
            if not value:
                continue
            result = self._request("GET", "/crm/v2/Leads/search", params={key: value})
            found = _first(result).get("id")
            if found:
                return found
        return None

    def set_email_opt_out(self, zoho_id: str) -> bool:
        result = self._request(
            "PUT", "/crm/v2/Leads",
            json={"data": [{"id": zoho_id, "Email_Opt_Out": True}]},
        )
        ok = _first(result).get("status") == "success"
        if not ok:
            log.warning("Zoho opt-out sync failed for %s: %s", zoho_id, result)
        return ok

    # ---------- mail relay ----------

    def send_mail(self, zoho_id: str, to_email: str, subject: str, html: str, module: str = "Leads") -> Optional[str]:
        """Send through the CRM so the mail lands on the record's timeline. Returns the message id."""
        payload = {
            "data": [{
                "from": {"user_name": self.sender_name, "email": self.sender_email},
                "to": [{"email": to_email}],
                "subject": subject,
                "content": html,
                "mail_format": "html",
            }]
        }
        result = self._request("POST", f"/crm/v2/{module}/{zoho_id}/actions/send_mail", json=payload)
        first = _first(result)
        if first.get("status") == "success" or first.get("code") == "SUCCESS":
            return (first.get("details") or {}).get("id") or "sent"

        if module == "Leads" and (first.get("code") == "INVALID_DATA" or result.get("code") == "INVALID_MODULE"):
            return self.send_mail(zoho_id, to_email, subject, html, module="Contacts")

        raise CrmError(f"send_mail failed for {module}/{zoho_id}: {first.get('message') or result}")
