import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from config import Settings, settings
from db.database import engine, Base, run_startup_migrations
from auth.routes import router as auth_router
from api.tracker import router as tracker_router
from services.record_store import GoalRecordStore
from services.tracker_service import TrackerService

logger = logging.getLogger(__name__)


def create_app(app_settings: Settings) -> FastAPI:
    """Validate configuration, prepare the database and wire the tracker service."""
    app_settings.validate_required_configuration()
    app_settings.validate_security_configuration()

    # Create all tables
    Base.metadata.create_all(bind=engine)
    run_startup_migrations()

    app = FastAPI(title=app_settings.APP_NAME, version="1.0.0")
    app.state.settings = app_settings
    app.state.tracker_service = TrackerService(
        store=GoalRecordStore(namespace=app_settings.APP_NAMESPACE),
        app_settings=app_settings,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        response = await call_next(request)
        if not app_settings.SECURITY_HEADERS_ENABLED:
            return response
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = app_settings.SECURITY_CSP
        return response

    # Routers
    app.include_router(auth_router, prefix="/api")
    app.include_router(tracker_router, prefix="/api")

    @app.get("/api/health")
    def health_check():
        return {"status": "ok", "app": app_settings.APP_NAME, "namespace": app_settings.APP_NAMESPACE}

    # Serve frontend static files (in production)
    static_dir = Path(__file__).parent / "static"
    if static_dir.exists():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")

    logger.info("%s started (environment=%s, namespace=%s)", app_settings.APP_NAME, app_settings.ENVIRONMENT, app_settings.APP_NAMESPACE)
    return app


app = create_app(settings)
