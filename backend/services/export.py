from collections.abc import Iterable
from datetime import datetime

from backend.identity import normalize_driver_id
from backend.schemas import DEPARTURE, RETURN, CheckinEvent, IncidentReport
from backend.services.reports import incident_count, reports_by_checkin
from backend.services.status import hourly_distribution

KIND_LABELS = {DEPARTURE: "Departure", RETURN: "Return"}


def checkin_rows(events: Iterable[CheckinEvent]) -> list[dict]:
    rows = []
    for e in events:
        if e.has_uniform:
            uniform = "Yes"
        elif e.kind == DEPARTURE:
            uniform = "No"
        else:
            uniform = ""
        rows.append(
            {
                "date": e.timestamp.strftime("%Y-%m-%d"),
                "time": e.timestamp.strftime("%H:%M:%S"),
                "kind": KIND_LABELS[e.kind],
                "driver": e.driver_name,
                "driver_id": e.driver_id,
                "subcontractor": e.subcontractor,
                "tour": e.tour,
                "uniform": uniform,
                "note": e.departure_comment or "",
            }
        )
    return rows


def _volume(bags: int, loose: int) -> dict[str, int]:
    return {"total": bags + loose, "bags": bags, "loose": loose}


def activity_report(
    events: Iterable[CheckinEvent],
    reports: Iterable[IncidentReport],
    now: datetime | None = None,
) -> dict:
    """Aggregates behind the activity spreadsheet: KPIs, incident totals, per subcontractor, per hour."""
    events = list(events)
    by_checkin = reports_by_checkin(reports)
    departures = [e for e in events if e.kind == DEPARTURE]
    returns = [e for e in events if e.kind == RETURN]

    totals = {
        "saturation": [0, 0],
        "missing": [0, 0],
        "refusal": [0, 0],
        "diverted": [0, 0],
    }
    closed_total = 0
    report_total = 0
    subcontractors: dict[str, dict] = {}

    for event in returns:
        name = event.subcontractor or "Unassigned"
        sub = subcontractors.setdefault(
            name,
            {
                "name": name,
                "tours": 0,
                "reports": 0,
                "incidents": 0,
                "saturation": 0,
                "missing": 0,
                "refusal": 0,
                "closed": 0,
            },
        )
        sub["tours"] += 1

        report = by_checkin.get(event.id)
        if report is None:
            continue
        report_total += 1
        sub["reports"] += 1
        sub["incidents"] += incident_count(report)

        for key, items in (
            ("saturation", report.saturations),
            ("missing", report.missing_deliveries),
            ("refusal", report.refusals),
        ):
            for item in items:
                totals[key][0] += item.bags
                totals[key][1] += item.loose
            sub[key] += len(items)

        totals["diverted"][0] += report.diverted.bags
        totals["diverted"][1] += report.diverted.loose
        closed_total += len(report.closed_points)
        sub["closed"] += len(report.closed_points)

    return_rate = round(len(returns) / len(departures) * 100) if departures else 0
    return {
        "generated_at": (now or datetime.now()).isoformat(timespec="seconds"),
        "kpis": {
            "departures": len(departures),
            "returns": len(returns),
            "return_rate": return_rate,
            "unique_drivers": len({normalize_driver_id(e.driver_id) for e in events}),
            "reports": report_total,
        },
        "incidents": {
            "saturation": _volume(*totals["saturation"]),
            "missing": _volume(*totals["missing"]),
            "refusal": _volume(*totals["refusal"]),
            "diverted": _volume(*totals["diverted"]),
            "closed": closed_total,
        },
        "subcontractors": sorted(subcontractors.values(), key=lambda s: s["name"]),
        "hourly": hourly_distribution(events),
    }
