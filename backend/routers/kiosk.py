from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException

from backend.deps import get_notifier, get_store
from backend.schemas import ScanRequest
from backend.services.alerts import Notifier
from backend.services.checkins import list_checkins
from backend.services.scans import process_scan
from database.db import DocumentStore

router = APIRouter()


@router.post("/kiosk/scan")
def scan(
    payload: ScanRequest,
    store: DocumentStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
):
    code = payload.code.strip()
    if not code:
        raise HTTPException(status_code=400, detail="Scan code is required.")

    result = process_scan(store, notifier, payload)
    driver = result["driver"]
    body = {
        "success": result["success"],
        "decision_code": result["decision_code"],
        "message": result["message"],
        "driver": driver,
        "event": result["event"],
    }
    if result["success"] and driver is not None:
        first_name = driver.name.split(" ")[0]
        greeting = "Safe trip" if payload.kind == "departure" else "Welcome back"
        body["greeting"] = f"{greeting}, {first_name}!"
        body["detail"] = f"{driver.subcontractor} - {driver.tour}"
    return body


@router.get("/kiosk/checkins")
def todays_checkins(store: DocumentStore = Depends(get_store)):
    events = list_checkins(store, day=datetime.now().date())
    return list(reversed(events))


@router.get("/notifications")
def recent_notifications(notifier: Notifier = Depends(get_notifier)):
    return notifier.recent()
