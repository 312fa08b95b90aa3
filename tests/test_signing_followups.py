from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from solar_portal import storage
from solar_portal.followups import (
    determine_pillar,
    follow_up_context,
    hours_since,
    next_partial_reminder,
    pick_email,
    pick_follow_up,
    run_email_sequences,
)
from solar_portal.services.email import FOLLOW_UP_SUBJECTS, MARKETING_SUBJECTS, render_follow_up, render_marketing
from solar_portal.signing import sign_lead_token, unsubscribe_url, verify_lead_token

DAY_MS = 24 * 60 * 60 * 1000
NOW_MS = 1_760_000_000_000


# ============ SIGNING ============

def test_token_round_trip():
    token = sign_lead_token("lead-1", secret="s3cret", now_ms=NOW_MS)
    assert verify_lead_token(token, "lead-1", secret="s3cret", now_ms=NOW_MS + 1000)


def test_token_bound_to_lead():
    token = sign_lead_token("lead-1", secret="s3cret", now_ms=NOW_MS)
    assert not verify_lead_token(token, "lead-2", secret="s3cret", now_ms=NOW_MS)


def test_token_rejects_other_secret():
    token = sign_lead_token("lead-1", secret="s3cret", now_ms=NOW_MS)
    assert not verify_lead_token(token, "lead-1", secret="other", now_ms=NOW_MS)


def test_token_expires_after_max_age():
    token = sign_lead_token("lead-1", secret="s3cret", now_ms=NOW_MS)
    assert verify_lead_token(token, "lead-1", secret="s3cret", max_age_days=7, now_ms=NOW_MS + 7 * DAY_MS)
    assert not verify_lead_token(token, "lead-1", secret="s3cret", max_age_days=7, now_ms=NOW_MS + 7 * DAY_MS + 1)


def test_token_from_the_future_is_rejected():
    token = sign_lead_token("lead-1", secret="s3cret", now_ms=NOW_MS + DAY_MS)
    assert not verify_lead_token(token, "lead-1", secret="s3cret", now_ms=NOW_MS)


def test_tampered_signature():
    token = sign_lead_token("lead-1", secret="s3cret", now_ms=NOW_MS)
    flipped = token[:-1] + ("0" if token[-1] != "0" else "1")
    assert not verify_lead_token(flipped, "lead-1", secret="s3cret", now_ms=NOW_MS)


@pytest.mark.parametrize("token", [None, "", "no-dot-here"])
def test_malformed_tokens(token):
    assert not verify_lead_token(token, "lead-1", secret="s3cret")


def test_missing_secret_raises():
    with pytest.raises(RuntimeError):
        sign_lead_token("lead-1", secret="")


def test_unsubscribe_url_shape():
    url = unsubscribe_url("lead-1")
    assert url.startswith("https://portal.test/api/unsubscribe?lead=lead-1&token=")


# ============ SCHEDULE ============

@pytest.mark.parametrize("hours,sent,expected", [
    (10, set(), None),
    (24, set(), "follow-up-24h"),
    (50, set(), "follow-up-24h"),
    (50, {"follow-up-24h"}, "follow-up-48h"),
    (80, {"follow-up-24h", "follow-up-48h"}, "follow-up-72h"),
    (100, {"follow-up-24h", "follow-up-48h", "follow-up-72h"}, None),
    (168, {"follow-up-24h", "follow-up-48h", "follow-up-72h"}, "follow-up-7d"),
    (500, {"follow-up-24h", "follow-up-48h", "follow-up-72h", "follow-up-7d"}, None),
])
def test_pick_follow_up(hours, sent, expected):
    assert pick_follow_up(hours, sent) == expected


@pytest.mark.parametrize("campaign,score,expected", [
    ("fb-speed-test", 10, "speed"),
    ("14DAY_install", 80, "speed"),
    ("grants-10200", 10, "grants"),
    ("summer-savings", None, "grants"),
    (None, 60, "grants"),
    ("", 40, "grants"),
    (None, 29, "nurture"),
    (None, None, "nurture"),
])
def test_determine_pillar(campaign, score, expected):
    assert determine_pillar(campaign, score) == expected


@pytest.mark.parametrize("hours,sent,pillar,expected", [
    (0, set(), "speed", None),
    (1, set(), "speed", "speed-1"),
    (1, set(), "nurture", None),
    (30, set(), "grants", "follow-up-24h"),
    (30, {"follow-up-24h"}, "grants", "grants-1"),
    (80, {"follow-up-24h", "follow-up-48h", "follow-up-72h", "grants-1"}, "grants", "grants-2"),
    (48, {"follow-up-24h", "follow-up-48h"}, "nurture", "nurture-1"),
    (400, {"follow-up-24h", "follow-up-48h", "follow-up-72h", "follow-up-7d",
           "nurture-1", "nurture-2", "nurture-3"}, "nurture", None),
])
def test_pick_email_puts_follow_ups_first(hours, sent, pillar, expected):
    assert pick_email(hours, sent, pillar) == expected


def test_partial_reminder_schedule():
    now = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
    assert next_partial_reminder(0, now) == now + timedelta(hours=24)
    assert next_partial_reminder(1, now) == now + timedelta(hours=72)
    assert next_partial_reminder(2, now) is None


def test_hours_since_floors():
    now = datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc)
    assert hours_since(now - timedelta(hours=23, minutes=59), now) == 23
    # naive values from the store are treated as UTC
    assert hours_since(datetime(2025, 6, 1, 12, 0), now) == 24


def test_follow_up_context_defaults(make_lead):
    ctx = follow_up_context(make_lead(name="Maria Borg"))
    assert ctx["first_name"] == "Maria"
    assert ctx["system_size"] == "10"
    assert ctx["annual_savings"] == 1800
    assert "token=" in ctx["unsubscribe_url"]


def test_follow_up_context_without_secret(make_lead):
    lead = make_lead()
    with patch("solar_portal.config.settings.PORTAL_CONTRACT_SECRET", ""):
        assert follow_up_context(lead)["unsubscribe_url"] is None


def test_render_follow_up_fills_placeholders():
    subject, html = render_follow_up("follow-up-24h", {
        "first_name": "Maria", "system_size": "5", "annual_savings": 945,
        "sales_phone": "+356 7905 5156", "unsubscribe_url": "https://portal.test/u",
    })
    assert subject == FOLLOW_UP_SUBJECTS["follow-up-24h"].format(first_name="Maria")
    assert "Maria" in html
    assert "https://portal.test/u" in html


def test_render_marketing_adds_gozo_note():
    ctx = {"first_name": "Maria", "system_size": "5", "annual_savings": 945, "sales_phone": "+356 7905 5156"}
    subject, html = render_marketing("grants-1", {**ctx, "is_gozo": True})
    assert subject == MARKETING_SUBJECTS["grants-1"]
    assert "Gozo homes" in html
    assert "Gozo homes" not in render_marketing("grants-1", {**ctx, "is_gozo": False})[1]


def test_render_marketing_unknown_template():
    with pytest.raises(KeyError):
        render_marketing("speed-9", {"first_name": "Maria"})


# ============ RUNS ============

def test_run_sends_due_template_and_logs_it(session, fake_crm, make_lead):
    lead = make_lead(hours_ago=50, zoho_lead_id="Z-1")
    storage.log_communication(session, lead.id, channel="email", template_used="follow-up-24h")

    out = run_email_sequences(session, fake_crm)

    assert out["success"] is True
    assert out["processed"] == 1
    assert out["results"] == {"sent": 1, "skipped": 0, "errors": 0}
    assert fake_crm.mails[0]["zoho_id"] == "Z-1"
    assert storage.sent_templates(session, [lead.id])[lead.id] == {"follow-up-24h", "follow-up-48h"}


def test_second_run_does_not_resend(session, fake_crm, make_lead):
    make_lead(hours_ago=30, zoho_lead_id="Z-1")
    first = run_email_sequences(session, fake_crm)
    second = run_email_sequences(session, fake_crm)
    assert first["results"]["sent"] == 1
    assert second["results"] == {"sent": 0, "skipped": 1, "errors": 0}
    assert len(fake_crm.mails) == 1


def test_lead_without_crm_record_is_skipped(session, fake_crm, make_lead):
    make_lead(hours_ago=30)
    out = run_email_sequences(session, fake_crm)
    assert out["results"]["skipped"] == 1
    assert fake_crm.mails == []


def test_too_early_is_skipped(session, fake_crm, make_lead):
    make_lead(hours_ago=2, zoho_lead_id="Z-1")
    assert run_email_sequences(session, fake_crm)["results"]["skipped"] == 1


def test_opted_out_leads_never_processed(session, fake_crm, make_lead):
    make_lead(hours_ago=30, zoho_lead_id="Z-1", email_opted_out=True)
    out = run_email_sequences(session, fake_crm)
    assert out["processed"] == 0
    assert fake_crm.mails == []


def test_crm_failure_counts_error_and_logs_nothing(session, fake_crm, make_lead):
    lead = make_lead(hours_ago=30, zoho_lead_id="Z-1")
    fake_crm.fail = True
    out = run_email_sequences(session, fake_crm)
    assert out["results"]["errors"] == 1
    assert storage.sent_templates(session, [lead.id])[lead.id] == set()


def test_dry_run_still_records_send(session, fake_crm, make_lead, monkeypatch):
    monkeypatch.setenv("EMAIL_DRY_RUN", "true")
    lead = make_lead(hours_ago=30, zoho_lead_id="Z-1")
    out = run_email_sequences(session, fake_crm)
    assert out["results"]["sent"] == 1
    assert fake_crm.mails == []
    assert storage.sent_templates(session, [lead.id])[lead.id] == {"follow-up-24h"}


def test_campaign_lead_gets_first_pillar_email_early(session, fake_crm, make_lead):
    lead = make_lead(hours_ago=2, zoho_lead_id="Z-1", source_campaign="speed-14day", lead_score=40)
    out = run_email_sequences(session, fake_crm)
    assert out["results"]["sent"] == 1
    assert fake_crm.mails[0]["subject"] == MARKETING_SUBJECTS["speed-1"]
    assert storage.sent_templates(session, [lead.id])[lead.id] == {"speed-1"}

    again = run_email_sequences(session, fake_crm)
    assert again["results"] == {"sent": 0, "skipped": 1, "errors": 0}


def test_one_email_per_run_even_when_both_tracks_are_due(session, fake_crm, make_lead):
    lead = make_lead(hours_ago=30, zoho_lead_id="Z-1", source_campaign="grants-10200")
    run_email_sequences(session, fake_crm)
    assert storage.sent_templates(session, [lead.id])[lead.id] == {"follow-up-24h"}

    run_email_sequences(session, fake_crm)
    assert storage.sent_templates(session, [lead.id])[lead.id] == {"follow-up-24h", "grants-1"}
    assert len(fake_crm.mails) == 2
