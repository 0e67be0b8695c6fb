import threading
from datetime import datetime, timedelta

import pytest

import database.db as db
from backend.identity import dedupe_drivers, find_driver, normalize_driver_id, same_driver
from backend.schemas import (
    CheckinEvent,
    ClosedItem,
    DivertedParcels,
    Driver,
    IncidentReport,
    MissingItem,
    NotificationSettings,
    RefusalItem,
    SaturationItem,
    ScanRequest,
)
from backend.services.alerts import NotificationProvider, Notifier, run_delay_sweep
from backend.services.checkins import (
    amend_departure_comment,
    amend_tour,
    append_checkin,
    events_for_driver_on_date,
    prune_to_today,
)
from backend.services.reports import attach_report, incident_count, report_for, upsert_report
from backend.services.scans import last_event_today, process_scan
from backend.services.status import pending_returns

DAY = datetime(2026, 3, 2)
THRESHOLD = 12


class RecordingProvider(NotificationProvider):
    def __init__(self):
        self.sent: list[tuple[str, str, str | None]] = []

    def send(self, title, body, tag=None):
        self.sent.append((title, body, tag))


@pytest.fixture()
def store(tmp_path):
    s = db.DocumentStore(tmp_path / "depot_test.db")
    db.init_storage(s)
    db.save_drivers(
        s,
        [
            Driver(id="C001", name="Dana One", subcontractor="BA", tour="9001"),
            Driver(id="C002", name="Sam Two", subcontractor="PADO", tour="8001"),
        ],
    )
    db.save_settings(s, NotificationSettings(delay_threshold_hours=THRESHOLD))
    return s


@pytest.fixture()
def provider():
    return RecordingProvider()


@pytest.fixture()
def notifier(store, provider):
    return Notifier(store, provider)


def _scan(store, notifier, code, kind, at, **extra):
    return process_scan(store, notifier, ScanRequest(code=code, kind=kind, **extra), now=at)


def _event(driver_id, kind, at, **extra):
    return CheckinEvent(driver_id=driver_id, driver_name=driver_id, timestamp=at, kind=kind, **extra)


# -----------------------------
# Identity
# -----------------------------
def test_identity_normalizes_case_and_whitespace():
    assert normalize_driver_id("  C001 ") == "c001"
    assert same_driver(" c001 ", "C001")
    assert not same_driver("C001", "C0011")


def test_padded_lowercase_code_resolves_same_driver_and_sequence(store, notifier):
    drivers = db.load_drivers(store)
    assert find_driver(drivers, " c001 ").id == "C001"

    _scan(store, notifier, " c001 ", "departure", DAY.replace(hour=8))
    _scan(store, notifier, "C001", "return", DAY.replace(hour=9))

    events = db.load_checkins(store)
    assert events_for_driver_on_date(events, " c001 ", DAY.date()) == events_for_driver_on_date(
        events, "C001", DAY.date()
    )
    assert len(events_for_driver_on_date(events, "C001", DAY.date())) == 2


def test_dedupe_drivers_keeps_first_and_drops_banned():
    roster = [
        Driver(id=" C010 ", name="First"),
        Driver(id="c010", name="Second"),
        Driver(id="C841047_2", name="Legacy"),
        Driver(id="C011", name="Other"),
    ]
    cleaned, changed = dedupe_drivers(roster, banned_ids=["C841047_2"])
    assert changed is True
    assert [(d.id, d.name) for d in cleaned] == [("C010", "First"), ("C011", "Other")]


# -----------------------------
# Scan validator
# -----------------------------
def test_unknown_driver_is_rejected_without_writing(store, notifier):
    result = _scan(store, notifier, "NOPE", "departure", DAY.replace(hour=8))
    assert result["success"] is False
    assert result["decision_code"] == "DRIVER_NOT_FOUND"
    assert result["driver"] is None
    assert db.load_checkins(store) == []


def test_return_without_departure_is_rejected(store, notifier):
    result = _scan(store, notifier, "C001", "return", DAY.replace(hour=8))
    assert result["decision_code"] == "NO_DEPARTURE_TODAY"
    assert result["driver"].id == "C001"


def test_departure_return_departure_then_duplicate_departure(store, notifier):
    assert _scan(store, notifier, "C002", "departure", DAY.replace(hour=9))["success"]
    assert _scan(store, notifier, "C002", "return", DAY.replace(hour=9, minute=30))["success"]
    assert _scan(store, notifier, "C002", "departure", DAY.replace(hour=9, minute=31))["success"]

    third = _scan(store, notifier, "C002", "departure", DAY.replace(hour=9, minute=32))
    assert third["success"] is False
    assert third["decision_code"] == "ALREADY_ON_TOUR"
    assert len(db.load_checkins(store)) == 3


def test_return_after_return_is_rejected(store, notifier):
    _scan(store, notifier, "C001", "departure", DAY.replace(hour=7))
    _scan(store, notifier, "C001", "return", DAY.replace(hour=8))
    result = _scan(store, notifier, "C001", "return", DAY.replace(hour=9))
    assert result["decision_code"] == "NO_DEPARTURE_TODAY"


def test_yesterdays_departure_does_not_block_today(store, notifier):
    _scan(store, notifier, "C001", "departure", DAY.replace(hour=20) - timedelta(days=1))
    assert _scan(store, notifier, "C001", "departure", DAY.replace(hour=6))["success"]
    assert not _scan(store, notifier, "C001", "return", DAY.replace(hour=5) + timedelta(days=1))["success"]


def test_validator_uses_timestamp_not_insertion_order(store, notifier):
    # Return is stored first but happened after the departure.
    append_checkin(store, _event("C001", "return", DAY.replace(hour=10)))
    append_checkin(store, _event("C001", "departure", DAY.replace(hour=8)))
    assert _scan(store, notifier, "C001", "departure", DAY.replace(hour=11))["success"]


def test_sequences_alternate_starting_with_departure(store, notifier):
    kinds = ["return", "departure", "departure", "return", "return", "departure", "return"]
    at = DAY.replace(hour=6)
    for kind in kinds:
        _scan(store, notifier, "C001", kind, at)
        at += timedelta(minutes=10)

    sequence = [e.kind for e in events_for_driver_on_date(db.load_checkins(store), "C001", DAY.date())]
    assert sequence == ["departure", "return", "departure", "return"]


def test_kind_specific_fields_are_kept_on_the_right_events(store, notifier):
    dep = _scan(store, notifier, "C001", "departure", DAY.replace(hour=8), has_uniform=True,
                driver_reported_issue=True, issue_details="ignored")["event"]
    assert dep.has_uniform is True
    assert dep.driver_reported_issue is None
    assert dep.issue_details is None
    assert dep.tour == "9001"
    assert dep.subcontractor == "BA"

    ret = _scan(store, notifier, "C001", "return", DAY.replace(hour=12), has_uniform=True,
                driver_reported_issue=True, issue_details="Locker jammed")["event"]
    assert ret.has_uniform is None
    assert ret.driver_reported_issue is True
    assert ret.issue_details == "Locker jammed"


def test_reported_issue_emits_incident_alert(store, notifier, provider):
    _scan(store, notifier, "C001", "departure", DAY.replace(hour=8))
    _scan(store, notifier, "C001", "return", DAY.replace(hour=12), driver_reported_issue=True, issue_details="")
    assert len(provider.sent) == 1
    title, body, _tag = provider.sent[0]
    assert title == "Incident reported"
    assert "Dana One" in body
    assert "no details" in body


def test_incident_alert_respects_settings(store, notifier, provider):
    db.save_settings(store, NotificationSettings(enable_incident_alerts=False))
    _scan(store, notifier, "C001", "departure", DAY.replace(hour=8))
    _scan(store, notifier, "C001", "return", DAY.replace(hour=12), driver_reported_issue=True)
    assert provider.sent == []


# -----------------------------
# Event log
# -----------------------------
def test_amend_comment_and_tour(store, notifier):
    event = _scan(store, notifier, "C001", "departure", DAY.replace(hour=8))["event"]

    outcome, updated = amend_departure_comment(store, event.id, "Late loading")
    assert outcome == "UPDATED"
    assert updated.departure_comment == "Late loading"
    outcome, updated = amend_tour(store, event.id, "9999")
    assert outcome == "UPDATED"
    assert updated.tour == "9999"

    stored = db.load_checkins(store)[0]
    assert stored.departure_comment == "Late loading"
    assert stored.tour == "9999"
    assert stored.timestamp == event.timestamp


def test_amend_missing_event_is_not_found(store):
    assert amend_departure_comment(store, "missing", "x") == ("NOT_FOUND", None)
    assert amend_tour(store, "missing", "1") == ("NOT_FOUND", None)
    assert db.load_checkins(store) == []


def test_departure_comment_is_refused_on_returns(store, notifier):
    _scan(store, notifier, "C001", "departure", DAY.replace(hour=8))
    ret = _scan(store, notifier, "C001", "return", DAY.replace(hour=12))["event"]

    outcome, _ = amend_departure_comment(store, ret.id, "x")

    assert outcome == "NOT_DEPARTURE"
    stored = [e for e in db.load_checkins(store) if e.id == ret.id][0]
    assert stored.departure_comment is None
    assert amend_tour(store, ret.id, "7000")[0] == "UPDATED"


def test_prune_removes_old_events_and_orphan_reports(store):
    old = _event("C001", "return", DAY - timedelta(days=1))
    today = _event("C002", "return", DAY.replace(hour=10))
    append_checkin(store, old)
    append_checkin(store, today)
    upsert_report(store, IncidentReport(checkin_id=old.id, notes="old"))
    upsert_report(store, IncidentReport(checkin_id=today.id, notes="today"))
    upsert_report(store, IncidentReport(checkin_id="never-existed"))

    stats = prune_to_today(store, now=DAY.replace(hour=18))

    assert stats == {"checkins_removed": 1, "checkins_kept": 1, "reports_removed": 2}
    assert [e.id for e in db.load_checkins(store)] == [today.id]
    assert [r.checkin_id for r in db.load_reports(store)] == [today.id]


# -----------------------------
# Status derivation
# -----------------------------
def test_pending_returns_lists_drivers_still_out_oldest_first(store, notifier):
    _scan(store, notifier, "C002", "departure", DAY.replace(hour=9))
    _scan(store, notifier, "C001", "departure", DAY.replace(hour=8))
    _scan(store, notifier, "C001", "return", DAY.replace(hour=8, minute=45))
    _scan(store, notifier, "C001", "departure", DAY.replace(hour=10))

    as_of = DAY.replace(hour=11, minute=15)
    pending = pending_returns(db.load_checkins(store), as_of)

    assert [p["event"].driver_id for p in pending] == ["C002", "C001"]
    assert (pending[0]["hours"], pending[0]["minutes"]) == (2, 15)
    assert (pending[1]["hours"], pending[1]["minutes"]) == (1, 15)


def test_pending_returns_is_idempotent(store, notifier):
    _scan(store, notifier, "C001", "departure", DAY.replace(hour=8))
    _scan(store, notifier, "C002", "departure", DAY.replace(hour=9))
    events = db.load_checkins(store)
    as_of = DAY.replace(hour=12)
    assert pending_returns(events, as_of) == pending_returns(events, as_of)


def test_pending_returns_ignores_other_days():
    events = [_event("C001", "departure", DAY - timedelta(hours=2))]
    assert pending_returns(events, DAY.replace(hour=1)) == []


def test_equal_timestamps_resolve_to_the_same_event_every_time():
    at = DAY.replace(hour=9)
    first = _event("C001", "return", at, id="a-event")
    second = _event("C001", "departure", at, id="b-event")
    as_of = DAY.replace(hour=10)

    for events in ([first, second], [second, first]):
        assert last_event_today(events, "C001", as_of).id == "b-event"
        pending = pending_returns(events, as_of)
        assert [p["event"].id for p in pending] == ["b-event"]


# -----------------------------
# Delay alerting
# -----------------------------
def test_overdue_driver_alerted_once_with_elapsed_time(store, notifier, provider):
    departed = DAY.replace(hour=8)
    _scan(store, notifier, "C001", "departure", departed)
    sweep_at = departed + timedelta(hours=THRESHOLD, minutes=1)
    session = db.SessionStore()

    alerted = run_delay_sweep(store, session, notifier, now=sweep_at)

    assert len(alerted) == 1
    assert len(provider.sent) == 1
    assert "Dana One" in provider.sent[0][1]
    pending = pending_returns(db.load_checkins(store), sweep_at)
    assert len(pending) == 1
    assert (pending[0]["hours"], pending[0]["minutes"]) == (THRESHOLD, 1)


def test_threshold_boundary_is_strict(store, notifier, provider):
    departed = DAY.replace(hour=8)
    _scan(store, notifier, "C001", "departure", departed)
    session = db.SessionStore()

    assert run_delay_sweep(store, session, notifier, now=departed + timedelta(hours=THRESHOLD)) == []
    assert provider.sent == []
    assert len(run_delay_sweep(store, session, notifier, now=departed + timedelta(hours=THRESHOLD, minutes=1))) == 1


def test_repeated_sweeps_alert_once_per_session(store, notifier, provider):
    departed = DAY.replace(hour=8)
    _scan(store, notifier, "C001", "departure", departed)
    sweep_at = departed + timedelta(hours=THRESHOLD, minutes=5)

    session = db.SessionStore()
    for _ in range(5):
        run_delay_sweep(store, session, notifier, now=sweep_at)
    assert len(provider.sent) == 1

    fresh_session = db.SessionStore()
    run_delay_sweep(store, fresh_session, notifier, now=sweep_at)
    assert len(provider.sent) == 2


def test_sweep_skipped_when_switches_off(store, notifier, provider):
    departed = DAY.replace(hour=6)
    _scan(store, notifier, "C001", "departure", departed)
    sweep_at = departed + timedelta(hours=THRESHOLD + 2)

    db.save_settings(store, NotificationSettings(enable_delay_alerts=False, delay_threshold_hours=THRESHOLD))
    assert run_delay_sweep(store, db.SessionStore(), notifier, now=sweep_at) == []

    db.save_settings(store, NotificationSettings(master_enabled=False, delay_threshold_hours=THRESHOLD))
    assert run_delay_sweep(store, db.SessionStore(), notifier, now=sweep_at) == []
    assert provider.sent == []


def test_returned_driver_is_not_alerted(store, notifier, provider):
    _scan(store, notifier, "C001", "departure", DAY.replace(hour=6))
    _scan(store, notifier, "C001", "return", DAY.replace(hour=7))
    assert run_delay_sweep(store, db.SessionStore(), notifier, now=DAY.replace(hour=23)) == []


def test_notifier_drops_alerts_when_master_switch_off(store, provider):
    db.save_settings(store, NotificationSettings(master_enabled=False))
    notifier = Notifier(store, provider)
    assert notifier.emit("t", "b") is None
    assert notifier.recent() == []
    assert provider.sent == []


# -----------------------------
# Reports
# -----------------------------
def test_upsert_keeps_one_report_per_checkin(store):
    first = upsert_report(store, IncidentReport(checkin_id="chk-1", notes="first"))
    upsert_report(store, IncidentReport(checkin_id="chk-2", notes="other"))
    second = upsert_report(store, IncidentReport(checkin_id="chk-1", notes="second"))

    reports = db.load_reports(store)
    assert [r.checkin_id for r in reports] == ["chk-1", "chk-2"]
    assert reports[0].notes == "second"
    assert second.id == first.id
    assert report_for(store, "chk-1").notes == "second"
    assert report_for(store, "missing") is None


def test_attach_report_checks_its_return_event(store, notifier):
    departure = _scan(store, notifier, "C001", "departure", DAY.replace(hour=8))["event"]
    ret = _scan(store, notifier, "C001", "return", DAY.replace(hour=12))["event"]

    assert attach_report(store, IncidentReport(checkin_id="missing")) == ("CHECKIN_NOT_FOUND", None)
    assert attach_report(store, IncidentReport(checkin_id=departure.id)) == ("NOT_A_RETURN", None)
    outcome, report = attach_report(store, IncidentReport(checkin_id=ret.id, notes="ok"))
    assert outcome == "SAVED"
    assert [r.id for r in db.load_reports(store)] == [report.id]


def test_attach_report_waits_for_a_running_prune(store, notifier):
    _scan(store, notifier, "C001", "departure", DAY.replace(hour=8))
    ret = _scan(store, notifier, "C001", "return", DAY.replace(hour=12))["event"]
    results = []

    worker = threading.Thread(
        target=lambda: results.append(attach_report(store, IncidentReport(checkin_id=ret.id)))
    )
    with store.locked(db.CHECKINS):
        worker.start()
        worker.join(timeout=0.2)
        assert worker.is_alive()
        prune_to_today(store, now=DAY + timedelta(days=1))
    worker.join(timeout=5)

    assert results == [("CHECKIN_NOT_FOUND", None)]
    assert db.load_checkins(store) == []
    assert db.load_reports(store) == []


def test_incident_count_includes_diverted_only_when_non_zero():
    report = IncidentReport(
        checkin_id="chk",
        saturations=[SaturationItem(locker_name="L1", bags=1)],
        missing_deliveries=[MissingItem(point_name="P1"), MissingItem(point_name="P2")],
        closed_points=[ClosedItem(point_name="P3", reason="breakdown")],
        refusals=[RefusalItem(point_name="P4", loose=2)],
    )
    assert incident_count(report) == 5
    assert incident_count(report.model_copy(update={"diverted": DivertedParcels(bags=0, loose=3)})) == 6
    assert incident_count(IncidentReport(checkin_id="empty")) == 0


# -----------------------------
# Storage
# -----------------------------
def test_init_storage_seeds_defaults(tmp_path):
    s = db.DocumentStore(tmp_path / "fresh.db")
    db.init_storage(s)
    assert len(db.load_drivers(s)) == len(db.DEFAULT_DRIVERS)
    assert db.load_checkins(s) == []
    assert db.load_reports(s) == []
    assert db.load_settings(s) == NotificationSettings()


def test_init_storage_cleans_stored_roster(tmp_path):
    s = db.DocumentStore(tmp_path / "roster.db")
    s.create_tables()
    s.write(
        db.DRIVERS,
        [
            {"id": " C001 ", "name": "Keep"},
            {"id": "c001", "name": "Duplicate"},
            {"id": "C294104_2", "name": "Banned"},
            {"name": "No id"},
        ],
    )
    db.init_storage(s)
    assert [(d.id, d.name) for d in db.load_drivers(s)] == [("C001", "Keep")]


def test_corrupt_document_falls_back_to_default(tmp_path):
    s = db.DocumentStore(tmp_path / "corrupt.db")
    s.create_tables()
    conn = s.connect()
    conn.execute("INSERT INTO documents (key, payload) VALUES (?, ?)", (db.CHECKINS, "{not json"))
    conn.execute("INSERT INTO documents (key, payload) VALUES (?, ?)", (db.DRIVERS, "[broken"))
    conn.commit()
    conn.close()

    db.init_storage(s)
    assert db.load_checkins(s) == []
    assert len(db.load_drivers(s)) == len(db.DEFAULT_DRIVERS)


def test_roster_without_usable_entries_is_reseeded(tmp_path):
    s = db.DocumentStore(tmp_path / "malformed.db")
    s.create_tables()
    s.write(db.DRIVERS, [{"name": "No id"}, "not a driver", {"id": 42}])

    db.init_storage(s)

    assert [d.id for d in db.load_drivers(s)] == [d["id"] for d in db.DEFAULT_DRIVERS]
