from datetime import datetime, timedelta, timezone

from solar_portal import dedup, storage
from solar_portal.models import Lead


def test_email_match_is_case_insensitive(session, make_lead):
    lead = make_lead(email="Maria.Borg@Gmail.com")
    assert dedup.find_lead_by_email(session, "  maria.borg@gmail.COM ").id == lead.id


def test_most_recent_match_wins(session, make_lead):
    make_lead(hours_ago=48)
    newer = make_lead(hours_ago=1)
    assert dedup.find_lead_by_email(session, "maria.borg@gmail.com").id == newer.id


def test_soft_deleted_rows_are_ignored(session, make_lead):
    make_lead(deleted_at=datetime.now(timezone.utc))
    assert dedup.find_existing_lead(session, email="maria.borg@gmail.com") is None


def test_phone_formats_converge(session, make_lead):
    lead = make_lead(phone="35679123456")
    for raw in ("+356 7912 3456", "79123456", "(356) 7912-3456"):
        assert dedup.find_lead_by_phone(session, raw).id == lead.id


def test_formatted_stored_phone_found_by_local_number(session, make_lead):
    lead = make_lead(phone="+356 7912 3456")
    assert dedup.find_lead_by_phone(session, "79123456").id == lead.id


def test_phone_suffix_match_on_formatted_stored_value(session, make_lead):
    lead = make_lead(phone="+356 7912-3456")
    assert dedup.find_lead_by_phone(session, "0035679123456").id == lead.id


def test_name_match_requires_more_than_two_chars(session, make_lead):
    make_lead(name="Al")
    assert dedup.find_lead_by_name(session, "Al") is None


def test_name_match_is_fuzzy_on_word_order_gaps(session, make_lead):
    lead = make_lead(name="Maria Carmela Borg")
    assert dedup.find_lead_by_name(session, "maria borg").id == lead.id


def test_name_wildcards_are_literal(session, make_lead):
    make_lead()
    assert dedup.find_lead_by_name(session, "a%b") is None
    assert dedup.find_lead_by_name(session, "M_ria") is None


def test_ladder_stops_at_first_tier(session, make_lead):
    by_email = make_lead(email="first@example.com", phone="35699000000", name="Joseph Vella")
    make_lead(email="other@example.com", phone="35679123456", name="Joseph Vella", hours_ago=-1)
    hit = dedup.find_existing_lead(session, email="first@example.com", phone="79123456", name="Joseph Vella")
    assert hit.id == by_email.id


def test_ladder_falls_through_to_phone(session, make_lead):
    lead = make_lead()
    hit = dedup.find_existing_lead(session, email="new@example.com", phone="+356 7912 3456", name="Someone Else")
    assert hit.id == lead.id


def test_external_id_tier(session, make_lead):
    lead = make_lead(zoho_lead_id="Z-77")
    assert dedup.find_existing_lead(session, external_id="Z-77", email="nobody@example.com").id == lead.id


def test_no_identifiers_finds_nothing(session, make_lead):
    make_lead()
    assert dedup.find_existing_lead(session) is None


# ============ STORAGE ============

def test_create_lead_ignores_unknown_columns(session):
    lead = storage.create_lead(session, {"name": "Anna Zammit", "email": "anna@example.com", "phone": "35699112233",
                                         "session_token": "abc", "status": "new"})
    assert lead is not None
    assert lead.status == "new"
    assert not hasattr(lead, "session_token")


def test_follow_up_candidates_excludes_opted_out_and_converted(session, make_lead):
    keep = make_lead(email="keep@example.com")
    make_lead(email="out@example.com", email_opted_out=True)
    make_lead(email="conv@example.com", converted_at=datetime.now(timezone.utc))
    make_lead(email="lost@example.com", status="lost")
    ids = [lead.id for lead in storage.follow_up_candidates(session)]
    assert ids == [keep.id]


def test_sent_templates_only_counts_email(session, make_lead):
    lead = make_lead()
    storage.log_communication(session, lead.id, channel="email", direction="outbound", template_used="follow-up-24h")
    storage.log_communication(session, lead.id, channel="sms", direction="outbound", template_used="follow-up-48h")
    assert storage.sent_templates(session, [lead.id]) == {lead.id: {"follow-up-24h"}}


def test_session_highest_step_never_decreases(session):
    row = storage.create_wizard_session(session, "tok-1", {"current_step": 4})
    row = storage.update_wizard_session(session, row, {"current_step": 2})
    assert row.current_step == 2
    assert row.highest_step_reached == 4
    assert set(row.step_timestamps) == {"1", "2", "4"}


def test_step_timestamp_records_first_visit_only(session):
    row = storage.create_wizard_session(session, "tok-2", {"current_step": 2})
    first = row.step_timestamps["2"]
    row = storage.update_wizard_session(session, row, {"current_step": 3})
    row = storage.update_wizard_session(session, row, {"current_step": 2})
    assert row.step_timestamps["2"] == first


def test_protected_session_fields_cannot_be_written(session):
    row = storage.create_wizard_session(session, "tok-3", {"status": "completed", "highest_step_reached": 7})
    assert row.status == "in_progress"
    assert row.highest_step_reached == 1


def test_writing_to_abandoned_session_reactivates_it(session):
    row = storage.create_wizard_session(session, "tok-4", {"current_step": 3})
    assert storage.mark_sessions_abandoned(session, [row])
    session.refresh(row)
    assert row.status == "abandoned"

    row = storage.update_wizard_session(session, row, {"current_step": 4})
    assert row.status == "in_progress"
    assert row.abandoned_at is None


def test_stale_sessions_by_last_activity(session):
    old = storage.create_wizard_session(session, "old", {})
    old.last_activity_at = datetime.now(timezone.utc) - timedelta(hours=2)
    session.add(old)
    session.commit()
    storage.create_wizard_session(session, "fresh", {})

    rows = storage.stale_sessions(session, datetime.now(timezone.utc) - timedelta(minutes=30))
    assert [r.session_token for r in rows] == ["old"]


def test_get_lead_missing(session):
    assert storage.get_lead(session, "does-not-exist") is None
    assert session.get(Lead, "does-not-exist") is None


def test_latest_by_email_skips_soft_deleted(session, make_lead):
    live = make_lead(hours_ago=48)
    make_lead(hours_ago=1, deleted_at=datetime.now(timezone.utc))
    assert storage.find_latest_lead_by_email(session, "maria.borg@gmail.com").id == live.id
