import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from db.database import Database
from auth.routes import router as auth_router
from api.plans import router as plans_router
from api.tasks import router as tasks_router
from api.sessions import router as sessions_router
from api.sync import router as sync_router
from api.notes import router as notes_router
from api.habits import router as habits_router
from api.stats import router as stats_router
from services.sync_gateway import SyncGateway

logger = logging.getLogger(__name__)


def create_app(database: Optional[Database] = None) -> FastAPI:
    """Build the API around ``database``.

    A database passed in by the caller is started if needed but left running on
    shutdown; one built from settings is owned and disposed by the app.
    """
    logging.basicConfig(level=settings.LOG_LEVEL)
    settings.validate_security_configuration()

    owns_database = database is None
    db_handle = database or Database.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        started_here = not db_handle.started
        if started_here:
            db_handle.startup()
        app.state.database = db_handle
        app.state.sync_gateway = SyncGateway(
            db_handle,
            max_batch_records=settings.SYNC_MAX_BATCH_RECORDS,
            pull_overlap_seconds=settings.SYNC_PULL_OVERLAP_SECONDS,
        )
        logger.info(f"{settings.APP_NAME} ready ({settings.ENVIRONMENT})")
        try:
            yield
        finally:
            if owns_database or started_here:
                db_handle.shutdown()

    app = FastAPI(title=settings.APP_NAME, version="1.0.0", lifespan=lifespan)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        response = await call_next(request)
        if not settings.SECURITY_HEADERS_ENABLED:
            return response
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    # Routers
    app.include_router(auth_router, prefix="/api")
    app.include_router(plans_router, prefix="/api")
    app.include_router(tasks_router, prefix="/api")
    app.include_router(sessions_router, prefix="/api")
    app.include_router(sync_router, prefix="/api")
    app.include_router(notes_router, prefix="/api")
    app.include_router(habits_router, prefix="/api")
    app.include_router(stats_router, prefix="/api")

    @app.get("/api/health")
    def health_check():
        return {"status": "ok", "app": settings.APP_NAME}

    return app


app = create_app()
