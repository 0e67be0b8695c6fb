from fastapi import Request

from backend.services.alerts import DelayAlertWorker, Notifier
from database.db import DocumentStore, SessionStore


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_worker(request: Request) -> DelayAlertWorker:
    return request.app.state.delay_worker
