from collections.abc import Iterable
from datetime import date
from typing import Literal

from backend.schemas import RETURN, CheckinEvent, IncidentReport
from backend.services.checkins import checkins_for_day, event_sort_key, find_checkin
from database.db import CHECKINS, REPORTS, DocumentStore, load_checkins, load_reports, save_reports

ReportOutcome = Literal["SAVED", "CHECKIN_NOT_FOUND", "NOT_A_RETURN"]


def incident_count(report: IncidentReport) -> int:
    """
    Number of incidents recorded on a report.

    One per saturation, missing delivery, closed point and refusal entry, plus
    one when any diverted parcels were counted.
    """
    count = (
        len(report.saturations)
        + len(report.missing_deliveries)
        + len(report.closed_points)
        + len(report.refusals)
    )
    if report.diverted.bags + report.diverted.loose > 0:
        count += 1
    return count


def list_reports(store: DocumentStore) -> list[IncidentReport]:
    return load_reports(store)


def report_for(store: DocumentStore, checkin_id: str) -> IncidentReport | None:
    return reports_by_checkin(load_reports(store)).get(checkin_id)


def reports_by_checkin(reports: Iterable[IncidentReport]) -> dict[str, IncidentReport]:
    out: dict[str, IncidentReport] = {}
    for report in reports:
        out.setdefault(report.checkin_id, report)
    return out


def upsert_report(store: DocumentStore, report: IncidentReport) -> IncidentReport:
    with store.locked(REPORTS):
        reports = load_reports(store)
        for idx, existing in enumerate(reports):
            if existing.checkin_id == report.checkin_id:
                report = report.model_copy(update={"id": existing.id})
                reports[idx] = report
                break
        else:
            reports.append(report)
        save_reports(store, reports)
    return report


def attach_report(store: DocumentStore, report: IncidentReport) -> tuple[ReportOutcome, IncidentReport | None]:
    """
    Upsert `report` against its return event.

    The target is looked up and the report written under both the check-in and
    report locks, so a concurrent prune cannot leave the report orphaned.
    """
    with store.locked(CHECKINS, REPORTS):
        checkin = find_checkin(load_checkins(store), report.checkin_id)
        if checkin is None:
            return "CHECKIN_NOT_FOUND", None
        if checkin.kind != RETURN:
            return "NOT_A_RETURN", None
        return "SAVED", upsert_report(store, report)


def returns_with_reports(
    events: Iterable[CheckinEvent],
    reports: Iterable[IncidentReport],
    day: date,
) -> list[dict]:
    by_checkin = reports_by_checkin(reports)
    returns = [e for e in checkins_for_day(events, day) if e.kind == RETURN]
    rows = []
    for event in sorted(returns, key=event_sort_key):
        report = by_checkin.get(event.id)
        rows.append(
            {
                "checkin": event,
                "report": report,
                "incident_count": incident_count(report) if report else 0,
                "driver_reported_issue": bool(event.driver_reported_issue),
                "needs_report": report is None and bool(event.driver_reported_issue),
            }
        )
    return rows
