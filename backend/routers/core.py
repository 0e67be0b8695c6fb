from fastapi import APIRouter

from backend.config import (
    DEFAULT_DELAY_THRESHOLD_HOURS,
    DELAY_SWEEP_INTERVAL_SECONDS,
    ENABLE_DELAY_WORKER,
    NOTIFICATION_OUTBOX_SIZE,
)

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/config/kiosk")
def kiosk_config():
    return {
        "delay_worker_enabled": ENABLE_DELAY_WORKER,
        "delay_sweep_interval_seconds": DELAY_SWEEP_INTERVAL_SECONDS,
        "default_delay_threshold_hours": DEFAULT_DELAY_THRESHOLD_HOURS,
        "notification_outbox_size": NOTIFICATION_OUTBOX_SIZE,
        "checkin_kinds": ["departure", "return"],
    }
