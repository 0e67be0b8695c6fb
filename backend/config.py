import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("DEPOT_DB_PATH", BASE_DIR / "database" / "depot.db"))
LOG_LEVEL = os.getenv("DEPOT_LOG_LEVEL", "INFO").strip().upper() or "INFO"


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_int(value: str | None, fallback: int) -> int:
    if not value:
        return fallback
    try:
        return int(value.strip())
    except ValueError:
        return fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("DEPOT_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173"],
)

# Delay alerting
ENABLE_DELAY_WORKER = _parse_bool(os.getenv("DEPOT_ENABLE_DELAY_WORKER"), True)
DELAY_SWEEP_INTERVAL_SECONDS = max(
    5,
    _parse_int(os.getenv("DEPOT_DELAY_SWEEP_INTERVAL_SECONDS"), 60),
)
DEFAULT_DELAY_THRESHOLD_HOURS = max(
    1,
    _parse_int(os.getenv("DEPOT_DEFAULT_DELAY_THRESHOLD_HOURS"), 12),
)
NOTIFICATION_OUTBOX_SIZE = max(
    1,
    _parse_int(os.getenv("DEPOT_NOTIFICATION_OUTBOX_SIZE"), 50),
)

# Legacy roster entries removed on load.
BANNED_DRIVER_IDS = _parse_csv(
    os.getenv("DEPOT_BANNED_DRIVER_IDS"),
    ["C841047_2", "C294104_2"],
)
