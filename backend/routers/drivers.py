from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from backend.deps import get_store
from backend.schemas import Driver
from backend.services.drivers import (
    delete_driver,
    list_drivers,
    parse_driver_csv,
    replace_drivers,
    resolve_driver,
    save_driver,
)
from database.db import DocumentStore

router = APIRouter()


@router.get("/drivers")
def drivers(store: DocumentStore = Depends(get_store)):
    return list_drivers(store)


@router.get("/drivers/{driver_id}")
def driver_detail(driver_id: str, store: DocumentStore = Depends(get_store)):
    driver = resolve_driver(store, driver_id)
    if driver is None:
        return {"found": False}
    return {"found": True, "driver": driver}


@router.post("/drivers")
def create_or_update_driver(payload: Driver, store: DocumentStore = Depends(get_store)):
    if not payload.id.strip() or not payload.name.strip():
        raise HTTPException(status_code=400, detail="Driver id and name are required.")
    return save_driver(store, payload)


@router.put("/drivers")
def bulk_replace(payload: list[Driver], store: DocumentStore = Depends(get_store)):
    cleaned = replace_drivers(store, payload)
    return {"ok": True, "count": len(cleaned)}


@router.delete("/drivers/{driver_id}")
def remove_driver(driver_id: str, store: DocumentStore = Depends(get_store)):
    if not delete_driver(store, driver_id):
        raise HTTPException(status_code=404, detail="Driver not found.")
    return {"ok": True}


@router.post("/drivers/import")
async def import_drivers(file: UploadFile = File(...), store: DocumentStore = Depends(get_store)):
    raw = await file.read()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="Upload a UTF-8 CSV file.")

    parsed = parse_driver_csv(text)
    if not parsed:
        raise HTTPException(status_code=400, detail="No valid driver rows found.")

    cleaned = replace_drivers(store, parsed)
    return {"ok": True, "count": len(cleaned)}
