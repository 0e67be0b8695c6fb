import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from backend.config import BANNED_DRIVER_IDS, DB_PATH
from backend.identity import dedupe_drivers
from backend.schemas import CheckinEvent, Driver, IncidentReport, NotificationSettings

logger = logging.getLogger(__name__)

DRIVERS = "drivers"
CHECKINS = "checkins"
REPORTS = "reports"
SETTINGS = "settings"

# Locks are always taken in this order.
DOCUMENT_KEYS = (DRIVERS, CHECKINS, REPORTS, SETTINGS)

NOTIFIED_DELAYS = "notified_delays"

DEFAULT_DRIVERS: list[dict[str, str]] = [
    {"id": "C100101", "name": "Karim Benali", "subcontractor": "BA", "plate": "", "tour": "9001", "telephone": ""},
    {"id": "C100102", "name": "Nicolas Arnaud", "subcontractor": "BA", "plate": "", "tour": "9002", "telephone": ""},
    {"id": "C100103", "name": "Ilyes Ferhat", "subcontractor": "BA", "plate": "", "tour": "9005", "telephone": ""},
    {"id": "C200201", "name": "Lotfi Mansouri", "subcontractor": "M&A", "plate": "", "tour": "5001", "telephone": ""},
    {"id": "C200202", "name": "Yassine Lahlou", "subcontractor": "M&A", "plate": "", "tour": "5003", "telephone": ""},
    {"id": "C300301", "name": "Hacen Nedjar", "subcontractor": "TM", "plate": "", "tour": "2001", "telephone": ""},
    {"id": "C400401", "name": "Youssouf Cisse", "subcontractor": "Boue", "plate": "", "tour": "6002", "telephone": ""},
    {"id": "C500501", "name": "Cyril Barbier", "subcontractor": "KARR", "plate": "", "tour": "7006", "telephone": ""},
    {"id": "C600601", "name": "Salim Bekkar", "subcontractor": "PADO", "plate": "", "tour": "8007", "telephone": ""},
    {"id": "C600602", "name": "Souleymane Diop", "subcontractor": "PADO", "plate": "", "tour": "8001", "telephone": ""},
]


# -----------------------------
# Document store (persistent)
# -----------------------------
class DocumentStore:
    """
    Whole-document key/value store on top of a single sqlite table.

    Every write overwrites the full JSON payload of a key. Each key has its own
    lock; callers hold it across a read-modify-write with `locked()`.
    """

    def __init__(self, db_path: Path | str = DB_PATH):
        self.db_path = Path(db_path)
        self._locks = {key: threading.RLock() for key in DOCUMENT_KEYS}

    def connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), check_same_thread=False)

    def create_tables(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self.connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    key TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def locked(self, *keys: str) -> Iterator[None]:
        with ExitStack() as stack:
            for key in DOCUMENT_KEYS:
                if key in keys:
                    stack.enter_context(self._locks[key])
            yield

    def exists(self, key: str) -> bool:
        conn = self.connect()
        try:
            row = conn.execute("SELECT 1 FROM documents WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        return row is not None

    def read(self, key: str, default: Any = None) -> Any:
        conn = self.connect()
        try:
            row = conn.execute("SELECT payload FROM documents WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            logger.warning("Could not read document %s: %s", key, exc)
            return default
        finally:
            conn.close()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except (json.JSONDecodeError, TypeError, ValueError) as exc:
            logger.warning("Stored document %s is corrupt, using default: %s", key, exc)
            return default

    def write(self, key: str, value: Any) -> None:
        self.write_many({key: value})

    def write_many(self, documents: dict[str, Any]) -> None:
        """Write several documents in one transaction."""
        conn = self.connect()
        try:
            for key, value in documents.items():
                conn.execute(
                    """
                    INSERT INTO documents (key, payload, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                        payload = excluded.payload,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, json.dumps(value, ensure_ascii=False)),
                )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()


# -----------------------------
# Session store (volatile)
# -----------------------------
class SessionStore:
    """In-process values that must not survive a restart."""

    def __init__(self):
        self._values: dict[str, Any] = {}
        self._lock = threading.RLock()

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._lock:
            yield

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value

    def clear(self) -> None:
        with self._lock:
            self._values.clear()


# -----------------------------
# Typed documents
# -----------------------------
def _parse_items(store: DocumentStore, key: str, model) -> list:
    raw = store.read(key, [])
    if not isinstance(raw, list):
        logger.warning("Stored document %s is not a list, ignoring it.", key)
        return []
    items = []
    for entry in raw:
        try:
            items.append(model.model_validate(entry))
        except ValidationError as exc:
            logger.warning("Skipping malformed %s entry: %s", key, exc.errors()[:1])
    return items


def _dump(items) -> list[dict]:
    return [item.model_dump(mode="json") for item in items]


def load_drivers(store: DocumentStore) -> list[Driver]:
    return _parse_items(store, DRIVERS, Driver)


def save_drivers(store: DocumentStore, drivers: list[Driver]) -> None:
    store.write(DRIVERS, _dump(drivers))


def load_checkins(store: DocumentStore) -> list[CheckinEvent]:
    return _parse_items(store, CHECKINS, CheckinEvent)


def save_checkins(store: DocumentStore, events: list[CheckinEvent]) -> None:
    store.write(CHECKINS, _dump(events))


def load_reports(store: DocumentStore) -> list[IncidentReport]:
    return _parse_items(store, REPORTS, IncidentReport)


def save_reports(store: DocumentStore, reports: list[IncidentReport]) -> None:
    store.write(REPORTS, _dump(reports))


def save_checkins_and_reports(
    store: DocumentStore,
    events: list[CheckinEvent],
    reports: list[IncidentReport],
) -> None:
    store.write_many({CHECKINS: _dump(events), REPORTS: _dump(reports)})


def load_settings(store: DocumentStore) -> NotificationSettings:
    raw = store.read(SETTINGS)
    if raw is None:
        return NotificationSettings()
    try:
        return NotificationSettings.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Stored notification settings are invalid, using defaults: %s", exc.errors()[:1])
        return NotificationSettings()


def save_settings(store: DocumentStore, settings: NotificationSettings) -> None:
    store.write(SETTINGS, settings.model_dump(mode="json"))


# -----------------------------
# Startup
# -----------------------------
def _seed_drivers(store: DocumentStore) -> None:
    store.write(DRIVERS, DEFAULT_DRIVERS)


def _clean_stored_drivers(store: DocumentStore) -> None:
    raw = store.read(DRIVERS)
    if not isinstance(raw, list):
        logger.error("Stored driver roster is unreadable, restoring the built-in roster.")
        _seed_drivers(store)
        return

    drivers = load_drivers(store)
    cleaned, changed = dedupe_drivers(drivers, banned_ids=BANNED_DRIVER_IDS)
    if raw and not cleaned:
        logger.error("Stored driver roster has no usable entries, restoring the built-in roster.")
        _seed_drivers(store)
        return
    if changed or len(drivers) != len(raw):
        logger.info(
            "Cleaned duplicate or banned drivers on load (%s -> %s).",
            len(raw),
            len(cleaned),
        )
        save_drivers(store, cleaned)


def init_storage(store: DocumentStore) -> None:
    store.create_tables()
    with store.locked(*DOCUMENT_KEYS):
        if not store.exists(DRIVERS):
            _seed_drivers(store)
        else:
            _clean_stored_drivers(store)

        if not store.exists(CHECKINS):
            store.write(CHECKINS, [])
        if not store.exists(REPORTS):
            store.write(REPORTS, [])
        if not store.exists(SETTINGS):
            save_settings(store, NotificationSettings())
