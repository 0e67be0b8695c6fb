from fastapi import APIRouter, Depends

from backend.deps import get_store, get_worker
from backend.services.alerts import DelayAlertWorker
from backend.services.checkins import prune_to_today
from database.db import DocumentStore

router = APIRouter()


@router.post("/admin/checkins/prune")
def prune_checkins(store: DocumentStore = Depends(get_store)):
    stats = prune_to_today(store)
    return {
        "ok": True,
        "message": "Check-ins from previous days cleared.",
        **stats,
    }


@router.post("/admin/alerts/sweep")
def run_sweep(worker: DelayAlertWorker = Depends(get_worker)):
    alerted = worker.run_once()
    return {"ok": True, "alerted": alerted}


@router.get("/admin/alerts/status")
def sweep_status(worker: DelayAlertWorker = Depends(get_worker)):
    return worker.status()
