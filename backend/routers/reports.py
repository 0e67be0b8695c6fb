from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException

from backend.deps import get_store
from backend.schemas import IncidentReport, IncidentReportIn
from backend.services.export import activity_report
from backend.services.reports import (
    attach_report,
    incident_count,
    list_reports,
    report_for,
    returns_with_reports,
)
from database.db import DocumentStore, load_checkins, load_reports

router = APIRouter()


@router.get("/reports")
def reports(store: DocumentStore = Depends(get_store)):
    return [
        {"report": r, "incident_count": incident_count(r)}
        for r in list_reports(store)
    ]


@router.get("/reports/returns")
def returns(day: date | None = None, store: DocumentStore = Depends(get_store)):
    target = day or datetime.now().date()
    return returns_with_reports(load_checkins(store), load_reports(store), target)


@router.get("/reports/export/activity")
def export_activity(day: date | None = None, store: DocumentStore = Depends(get_store)):
    events = load_checkins(store)
    if day is not None:
        events = [e for e in events if e.timestamp.date() == day]
    return activity_report(events, load_reports(store))


@router.get("/reports/{checkin_id}")
def report_detail(checkin_id: str, store: DocumentStore = Depends(get_store)):
    report = report_for(store, checkin_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found.")
    return {"report": report, "incident_count": incident_count(report)}


@router.put("/reports/{checkin_id}")
def save_report(checkin_id: str, payload: IncidentReportIn, store: DocumentStore = Depends(get_store)):
    outcome, report = attach_report(store, IncidentReport(checkin_id=checkin_id, **payload.model_dump()))
    if outcome == "CHECKIN_NOT_FOUND":
        raise HTTPException(status_code=404, detail="Check-in not found.")
    if outcome == "NOT_A_RETURN":
        raise HTTPException(status_code=400, detail="Reports can only be attached to a return.")
    return {"report": report, "incident_count": incident_count(report)}
