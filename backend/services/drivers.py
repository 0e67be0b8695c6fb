import csv
import io
import logging

from backend.config import BANNED_DRIVER_IDS
from backend.identity import dedupe_drivers, find_driver, normalize_driver_id
from backend.schemas import Driver
from database.db import DRIVERS, DocumentStore, load_drivers, save_drivers

logger = logging.getLogger(__name__)

# Nom, Sous-traitant, Plaque, Tournée, Identifiant, Téléphone
CSV_MIN_COLUMNS = 5


def list_drivers(store: DocumentStore) -> list[Driver]:
    return load_drivers(store)


def resolve_driver(store: DocumentStore, code: str) -> Driver | None:
    return find_driver(load_drivers(store), code)


def save_driver(store: DocumentStore, driver: Driver) -> Driver:
    driver = driver.model_copy(update={"id": driver.id.strip()})
    key = normalize_driver_id(driver.id)
    with store.locked(DRIVERS):
        drivers = load_drivers(store)
        for idx, existing in enumerate(drivers):
            if normalize_driver_id(existing.id) == key:
                drivers[idx] = driver
                break
        else:
            drivers.append(driver)
        save_drivers(store, drivers)
    return driver


def delete_driver(store: DocumentStore, driver_id: str) -> bool:
    key = normalize_driver_id(driver_id)
    with store.locked(DRIVERS):
        drivers = load_drivers(store)
        remaining = [d for d in drivers if normalize_driver_id(d.id) != key]
        if len(remaining) == len(drivers):
            return False
        save_drivers(store, remaining)
    return True


def replace_drivers(store: DocumentStore, drivers: list[Driver]) -> list[Driver]:
    cleaned, changed = dedupe_drivers(drivers, banned_ids=BANNED_DRIVER_IDS)
    if changed:
        logger.info("Dropped %s duplicate or banned rows from roster import.", len(drivers) - len(cleaned))
    with store.locked(DRIVERS):
        save_drivers(store, cleaned)
    return cleaned


def parse_driver_csv(text: str) -> list[Driver]:
    """Parse a roster export; the first line is a header."""
    drivers: list[Driver] = []
    rows = csv.reader(io.StringIO(text))
    next(rows, None)
    for cols in rows:
        cols = [c.strip() for c in cols]
        if len(cols) < CSV_MIN_COLUMNS or not cols[4]:
            continue
        drivers.append(
            Driver(
                name=cols[0],
                subcontractor=cols[1],
                plate=cols[2],
                tour=cols[3],
                id=cols[4],
                telephone=cols[5] if len(cols) > 5 else "",
            )
        )
    return drivers
