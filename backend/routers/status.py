from datetime import datetime

from fastapi import APIRouter, Depends

from backend.deps import get_store
from backend.services.status import dashboard_stats, pending_returns
from database.db import DocumentStore, load_checkins, load_reports

router = APIRouter()


@router.get("/status/pending-returns")
def pending(store: DocumentStore = Depends(get_store)):
    now = datetime.now()
    return [
        {
            "checkin_id": p["event"].id,
            "driver_id": p["event"].driver_id,
            "driver_name": p["event"].driver_name,
            "subcontractor": p["event"].subcontractor,
            "tour": p["event"].tour,
            "departed_at": p["event"].timestamp,
            "departure_comment": p["event"].departure_comment,
            "hours": p["hours"],
            "minutes": p["minutes"],
        }
        for p in pending_returns(load_checkins(store), now)
    ]


@router.get("/status/dashboard")
def dashboard(store: DocumentStore = Depends(get_store)):
    return dashboard_stats(load_checkins(store), load_reports(store), datetime.now())
