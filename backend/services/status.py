from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import TypedDict

from backend.identity import normalize_driver_id
from backend.schemas import DEPARTURE, CheckinEvent, IncidentReport
from backend.services.checkins import checkins_for_day, event_sort_key


class PendingReturn(TypedDict):
    event: CheckinEvent
    elapsed_seconds: int
    hours: int
    minutes: int


def split_elapsed(elapsed: timedelta) -> tuple[int, int]:
    total_minutes = max(0, int(elapsed.total_seconds()) // 60)
    return total_minutes // 60, total_minutes % 60


def last_events_by_driver(events: Iterable[CheckinEvent]) -> dict[str, CheckinEvent]:
    latest: dict[str, CheckinEvent] = {}
    for event in events:
        key = normalize_driver_id(event.driver_id)
        current = latest.get(key)
        if current is None or event_sort_key(event) > event_sort_key(current):
            latest[key] = event
    return latest


def pending_returns(events: Iterable[CheckinEvent], as_of: datetime) -> list[PendingReturn]:
    """Drivers whose last event today is a departure, longest out first."""
    today = checkins_for_day(events, as_of.date())
    out_now = [e for e in last_events_by_driver(today).values() if e.kind == DEPARTURE]
    out_now.sort(key=event_sort_key)

    pending: list[PendingReturn] = []
    for event in out_now:
        elapsed = as_of - event.timestamp
        hours, minutes = split_elapsed(elapsed)
        pending.append(
            {
                "event": event,
                "elapsed_seconds": max(0, int(elapsed.total_seconds())),
                "hours": hours,
                "minutes": minutes,
            }
        )
    return pending


def hourly_distribution(events: Iterable[CheckinEvent]) -> list[dict[str, int]]:
    buckets = [{"hour": h, "departures": 0, "returns": 0} for h in range(24)]
    for event in events:
        bucket = buckets[event.timestamp.hour]
        if event.kind == DEPARTURE:
            bucket["departures"] += 1
        else:
            bucket["returns"] += 1
    return buckets


def incidents_by_subcontractor(
    events: Iterable[CheckinEvent],
    reports: Iterable[IncidentReport],
) -> list[dict]:
    subcontractor_of = {e.id: e.subcontractor for e in events}
    rows: dict[str, dict] = {}
    for report in reports:
        if report.checkin_id not in subcontractor_of:
            continue
        name = subcontractor_of[report.checkin_id] or "Unknown"
        row = rows.setdefault(
            name,
            {"name": name, "saturation": 0, "missing": 0, "closed": 0, "refusal": 0},
        )
        row["saturation"] += len(report.saturations)
        row["missing"] += len(report.missing_deliveries)
        row["closed"] += len(report.closed_points)
        row["refusal"] += len(report.refusals)
    return list(rows.values())


def dashboard_stats(
    events: Iterable[CheckinEvent],
    reports: Iterable[IncidentReport],
    as_of: datetime,
) -> dict:
    today = checkins_for_day(events, as_of.date())
    return {
        "date": as_of.date().isoformat(),
        "total_checkins": len(today),
        "unique_drivers": len({normalize_driver_id(e.driver_id) for e in today}),
        "pending_returns": len(pending_returns(today, as_of)),
        "hourly": hourly_distribution(today),
        "incidents_by_subcontractor": incidents_by_subcontractor(today, reports),
    }
