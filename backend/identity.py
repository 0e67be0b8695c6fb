from collections.abc import Iterable

from backend.schemas import Driver


def normalize_driver_id(value) -> str:
    return str(value if value is not None else "").strip().lower()


def same_driver(a, b) -> bool:
    return normalize_driver_id(a) == normalize_driver_id(b)


def find_driver(drivers: Iterable[Driver], code: str) -> Driver | None:
    target = normalize_driver_id(code)
    if not target:
        return None
    for driver in drivers:
        if normalize_driver_id(driver.id) == target:
            return driver
    return None


def dedupe_drivers(
    drivers: Iterable[Driver],
    *,
    banned_ids: Iterable[str] = (),
) -> tuple[list[Driver], bool]:
    """
    Clean a roster: drop banned ids, trim ids, keep the first occurrence of
    each normalized id.

    Returns the cleaned roster and whether anything was changed.
    """
    banned = {normalize_driver_id(b) for b in banned_ids}
    seen: set[str] = set()
    cleaned: list[Driver] = []
    changed = False
    for driver in drivers:
        key = normalize_driver_id(driver.id)
        if not key or key in banned or key in seen:
            changed = True
            continue
        seen.add(key)
        trimmed = driver.id.strip()
        if trimmed != driver.id:
            driver = driver.model_copy(update={"id": trimmed})
            changed = True
        cleaned.append(driver)
    return cleaned, changed
