import logging
import threading
from collections import deque
from datetime import datetime

from backend.config import DELAY_SWEEP_INTERVAL_SECONDS, NOTIFICATION_OUTBOX_SIZE
from backend.services.status import pending_returns
from database.db import NOTIFIED_DELAYS, DocumentStore, SessionStore, load_checkins, load_settings

logger = logging.getLogger(__name__)


# -----------------------------
# Alert emission
# -----------------------------
class NotificationProvider:
    def send(self, title: str, body: str, tag: str | None = None) -> None:
        raise NotImplementedError


class LogNotificationProvider(NotificationProvider):
    def send(self, title: str, body: str, tag: str | None = None) -> None:
        logging.getLogger("notifications").info("Alert title=%s body=%s tag=%s", title, body, tag)


class Notifier:
    """
    Fire-and-forget alert sink.

    Alerts are dropped while the master switch is off. Emitted alerts are kept
    in a bounded outbox that kiosk clients poll.
    """

    def __init__(
        self,
        store: DocumentStore,
        provider: NotificationProvider | None = None,
        *,
        outbox_size: int = NOTIFICATION_OUTBOX_SIZE,
    ):
        self.store = store
        self.provider = provider or LogNotificationProvider()
        self._outbox: deque[dict] = deque(maxlen=outbox_size)
        self._lock = threading.Lock()

    def emit(self, title: str, body: str, tag: str | None = None) -> dict | None:
        if not load_settings(self.store).master_enabled:
            return None
        alert = {
            "title": title,
            "body": body,
            "tag": tag,
            "created_at": datetime.now().isoformat(timespec="seconds"),
        }
        with self._lock:
            self._outbox.append(alert)
        try:
            self.provider.send(title, body, tag)
        except Exception:
            logger.exception("Notification provider failed for tag=%s", tag)
        return alert

    def recent(self) -> list[dict]:
        with self._lock:
            return list(reversed(self._outbox))


# -----------------------------
# Delay sweep
# -----------------------------
def run_delay_sweep(
    store: DocumentStore,
    session: SessionStore,
    notifier: Notifier,
    *,
    now: datetime | None = None,
) -> list[str]:
    """
    Alert once per session for every driver out longer than the threshold.

    Returns the ids of the departure events alerted on by this run.
    """
    settings = load_settings(store)
    if not settings.master_enabled or not settings.enable_delay_alerts:
        return []

    marker = now or datetime.now()
    threshold_seconds = settings.delay_threshold_hours * 3600

    alerted: list[str] = []
    with session.locked():
        notified = set(session.get(NOTIFIED_DELAYS, ()))
        for pending in pending_returns(load_checkins(store), marker):
            event = pending["event"]
            if pending["elapsed_seconds"] <= threshold_seconds or event.id in notified:
                continue
            notifier.emit(
                "Significant delay detected",
                f"Driver {event.driver_name} has been out for more than {pending['hours']} hours.",
                f"delay-{event.id}",
            )
            notified.add(event.id)
            alerted.append(event.id)
        session.set(NOTIFIED_DELAYS, sorted(notified))

    if alerted:
        logger.info("Delay sweep alerted on %s departure(s).", len(alerted))
    return alerted


class DelayAlertWorker:
    """Runs the delay sweep at startup, then on a fixed interval."""

    def __init__(
        self,
        store: DocumentStore,
        session: SessionStore,
        notifier: Notifier,
        *,
        interval_seconds: int = DELAY_SWEEP_INTERVAL_SECONDS,
    ):
        self.store = store
        self.session = session
        self.notifier = notifier
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._status_lock = threading.Lock()
        self._status = {
            "state": "stopped",     # stopped | running
            "last_run_at": None,    # ISO string
            "last_alerted": 0,
            "last_error": None,
        }

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="delay-alert-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None

    def status(self) -> dict:
        with self._status_lock:
            return dict(self._status)

    def run_once(self, now: datetime | None = None) -> list[str]:
        alerted = run_delay_sweep(self.store, self.session, self.notifier, now=now)
        with self._status_lock:
            self._status["last_run_at"] = datetime.now().isoformat(timespec="seconds")
            self._status["last_alerted"] = len(alerted)
            self._status["last_error"] = None
        return alerted

    def _run(self) -> None:
        logger.info("Delay alert worker started (interval=%ss)", self.interval_seconds)
        with self._status_lock:
            self._status["state"] = "running"
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception as exc:
                logger.exception("Delay sweep failed: %s", exc)
                with self._status_lock:
                    self._status["last_error"] = str(exc)
            self._stop.wait(self.interval_seconds)
        with self._status_lock:
            self._status["state"] = "stopped"
        logger.info("Delay alert worker stopped")
