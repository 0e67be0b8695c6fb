import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Literal, TypedDict

from backend.identity import find_driver
from backend.schemas import DEPARTURE, RETURN, CheckinEvent, CheckinKind, Driver, ScanRequest
from backend.services.alerts import Notifier
from backend.services.checkins import events_for_driver_on_date
from database.db import CHECKINS, DocumentStore, load_checkins, load_drivers, load_settings, save_checkins

logger = logging.getLogger(__name__)

ScanDecision = Literal[
    "ACCEPTED",
    "DRIVER_NOT_FOUND",
    "ALREADY_ON_TOUR",
    "NO_DEPARTURE_TODAY",
]

DECISION_MESSAGES: dict[str, str] = {
    "ACCEPTED": "Scan accepted.",
    "DRIVER_NOT_FOUND": "Driver not found.",
    "ALREADY_ON_TOUR": "Driver is already on tour.",
    "NO_DEPARTURE_TODAY": "No departure recorded for this driver today.",
}


class ScanResult(TypedDict):
    success: bool
    decision_code: ScanDecision
    message: str
    driver: Driver | None
    event: CheckinEvent | None


def _result(decision_code: ScanDecision, driver: Driver | None = None, event: CheckinEvent | None = None) -> ScanResult:
    return {
        "success": decision_code == "ACCEPTED",
        "decision_code": decision_code,
        "message": DECISION_MESSAGES[decision_code],
        "driver": driver,
        "event": event,
    }


def last_event_today(events: Iterable[CheckinEvent], driver_id: str, now: datetime) -> CheckinEvent | None:
    sequence = events_for_driver_on_date(events, driver_id, now.date())
    return sequence[-1] if sequence else None


def decide(last: CheckinEvent | None, kind: CheckinKind) -> ScanDecision:
    """Departures and returns must alternate within a day, starting with a departure."""
    if kind == DEPARTURE:
        if last is not None and last.kind == DEPARTURE:
            return "ALREADY_ON_TOUR"
        return "ACCEPTED"
    if last is None or last.kind == RETURN:
        return "NO_DEPARTURE_TODAY"
    return "ACCEPTED"


def validate_scan(
    drivers: Iterable[Driver],
    events: Iterable[CheckinEvent],
    code: str,
    kind: CheckinKind,
    now: datetime,
) -> ScanResult:
    driver = find_driver(drivers, code)
    if driver is None:
        return _result("DRIVER_NOT_FOUND")
    last = last_event_today(events, driver.id, now)
    return _result(decide(last, kind), driver)


def build_checkin(driver: Driver, scan: ScanRequest, now: datetime) -> CheckinEvent:
    is_departure = scan.kind == DEPARTURE
    reported = (not is_departure) and scan.driver_reported_issue
    return CheckinEvent(
        driver_id=driver.id,
        driver_name=driver.name,
        subcontractor=driver.subcontractor,
        tour=driver.tour,
        timestamp=now,
        kind=scan.kind,
        has_uniform=scan.has_uniform if is_departure else None,
        driver_reported_issue=None if is_departure else reported,
        issue_details=scan.issue_details if reported else None,
    )


def process_scan(
    store: DocumentStore,
    notifier: Notifier,
    scan: ScanRequest,
    *,
    now: datetime | None = None,
) -> ScanResult:
    """Validate a kiosk scan and record it when the driver's sequence allows it."""
    marker = now or datetime.now()
    drivers = load_drivers(store)

    with store.locked(CHECKINS):
        events = load_checkins(store)
        result = validate_scan(drivers, events, scan.code, scan.kind, marker)
        if not result["success"]:
            logger.debug("Scan rejected code=%r kind=%s decision=%s", scan.code, scan.kind, result["decision_code"])
            return result

        driver = result["driver"]
        event = build_checkin(driver, scan, marker)
        events.append(event)
        save_checkins(store, events)

    logger.info("Recorded %s for driver_id=%s event_id=%s", event.kind, event.driver_id, event.id)
    result["event"] = event

    if event.driver_reported_issue and load_settings(store).enable_incident_alerts:
        notifier.emit(
            "Incident reported",
            f'Driver {driver.name} reported: "{event.issue_details or "no details"}"',
            f"incident-{event.id}",
        )
    return result
