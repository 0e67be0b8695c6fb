from fastapi import APIRouter, Depends

from backend.deps import get_store
from backend.schemas import NotificationSettings
from database.db import SETTINGS, DocumentStore, load_settings, save_settings

router = APIRouter()


@router.get("/settings/notifications")
def notification_settings(store: DocumentStore = Depends(get_store)):
    return load_settings(store)


@router.put("/settings/notifications")
def update_notification_settings(payload: NotificationSettings, store: DocumentStore = Depends(get_store)):
    with store.locked(SETTINGS):
        save_settings(store, payload)
    return payload
