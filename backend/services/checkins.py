import logging
from collections.abc import Iterable
from datetime import date, datetime
from typing import Literal, TypedDict

from backend.identity import normalize_driver_id
from backend.schemas import DEPARTURE, CheckinEvent
from database.db import (
    CHECKINS,
    REPORTS,
    DocumentStore,
    load_checkins,
    load_reports,
    save_checkins,
    save_checkins_and_reports,
)

logger = logging.getLogger(__name__)


class PruneStats(TypedDict):
    checkins_removed: int
    checkins_kept: int
    reports_removed: int


def event_sort_key(event: CheckinEvent) -> tuple[datetime, str]:
    return event.timestamp, event.id


def checkins_for_day(events: Iterable[CheckinEvent], day: date) -> list[CheckinEvent]:
    return [e for e in events if e.timestamp.date() == day]


def events_for_driver_on_date(
    events: Iterable[CheckinEvent],
    driver_id: str,
    day: date,
) -> list[CheckinEvent]:
    """The driver's events for `day`, oldest first."""
    key = normalize_driver_id(driver_id)
    sequence = [
        e for e in events
        if normalize_driver_id(e.driver_id) == key and e.timestamp.date() == day
    ]
    return sorted(sequence, key=event_sort_key)


def find_checkin(events: Iterable[CheckinEvent], event_id: str) -> CheckinEvent | None:
    for event in events:
        if event.id == event_id:
            return event
    return None


def list_checkins(store: DocumentStore, day: date | None = None) -> list[CheckinEvent]:
    events = load_checkins(store)
    if day is not None:
        events = checkins_for_day(events, day)
    return sorted(events, key=event_sort_key)


def append_checkin(store: DocumentStore, event: CheckinEvent) -> CheckinEvent:
    with store.locked(CHECKINS):
        events = load_checkins(store)
        events.append(event)
        save_checkins(store, events)
    return event


AmendOutcome = Literal["UPDATED", "NOT_FOUND", "NOT_DEPARTURE"]


def _amend(
    store: DocumentStore,
    event_id: str,
    changes: dict,
    *,
    only_kind: str | None = None,
) -> tuple[AmendOutcome, CheckinEvent | None]:
    with store.locked(CHECKINS):
        events = load_checkins(store)
        for idx, event in enumerate(events):
            if event.id != event_id:
                continue
            if only_kind is not None and event.kind != only_kind:
                return "NOT_DEPARTURE", event
            updated = event.model_copy(update=changes)
            events[idx] = updated
            save_checkins(store, events)
            return "UPDATED", updated
    return "NOT_FOUND", None


def amend_departure_comment(
    store: DocumentStore,
    event_id: str,
    text: str,
) -> tuple[AmendOutcome, CheckinEvent | None]:
    """Departure comments only exist on departures; other events are left untouched."""
    return _amend(store, event_id, {"departure_comment": text}, only_kind=DEPARTURE)


def amend_tour(store: DocumentStore, event_id: str, tour: str) -> tuple[AmendOutcome, CheckinEvent | None]:
    return _amend(store, event_id, {"tour": tour})


def prune_to_today(store: DocumentStore, now: datetime | None = None) -> PruneStats:
    """Drop every event not dated today, then every report left without its event."""
    today = (now or datetime.now()).date()
    with store.locked(CHECKINS, REPORTS):
        events = load_checkins(store)
        kept = checkins_for_day(events, today)
        kept_ids = {e.id for e in kept}

        reports = load_reports(store)
        kept_reports = [r for r in reports if r.checkin_id in kept_ids]

        save_checkins_and_reports(store, kept, kept_reports)

    stats: PruneStats = {
        "checkins_removed": len(events) - len(kept),
        "checkins_kept": len(kept),
        "reports_removed": len(reports) - len(kept_reports),
    }
    logger.info(
        "Pruned check-ins to %s: removed=%s kept=%s orphan_reports=%s",
        today.isoformat(),
        stats["checkins_removed"],
        stats["checkins_kept"],
        stats["reports_removed"],
    )
    return stats
