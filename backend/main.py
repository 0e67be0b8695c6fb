import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.config import CORS_ALLOW_ORIGINS, DB_PATH, ENABLE_DELAY_WORKER, LOG_LEVEL
from backend.routers import admin, checkins, core, drivers, kiosk, reports, settings, status
from backend.services.alerts import DelayAlertWorker, NotificationProvider, Notifier
from database.db import DocumentStore, SessionStore, init_storage

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


def create_app(
    *,
    store: DocumentStore | None = None,
    session: SessionStore | None = None,
    provider: NotificationProvider | None = None,
    start_worker: bool = ENABLE_DELAY_WORKER,
) -> FastAPI:
    app = FastAPI(title="Depot Kiosk API")

    app.state.store = store or DocumentStore(DB_PATH)
    app.state.session = session or SessionStore()
    app.state.notifier = Notifier(app.state.store, provider)
    app.state.delay_worker = DelayAlertWorker(
        app.state.store,
        app.state.session,
        app.state.notifier,
    )

    # -----------------------------
    # CORS (kiosk dev server)
    # -----------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------
    # Startup / shutdown
    # -----------------------------
    @app.on_event("startup")
    def _startup():
        init_storage(app.state.store)
        if start_worker:
            app.state.delay_worker.start()

    @app.on_event("shutdown")
    def _shutdown():
        app.state.delay_worker.stop()

    app.include_router(core.router)
    app.include_router(kiosk.router)
    app.include_router(checkins.router)
    app.include_router(status.router)
    app.include_router(reports.router)
    app.include_router(drivers.router)
    app.include_router(settings.router)
    app.include_router(admin.router)
    return app


app = create_app()
