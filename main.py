from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from database import engine, Base, SessionLocal, verify_db_connection
from routers import trips, expenses, maintenance, trucks, settings as settings_router
from services.notification_dispatcher import build_dispatcher
from services.settings_service import SettingsService
from utils.exceptions import FleetError, ValidationError, StateError, NotFoundError, PermissionDeniedError
from config import settings
import models  # noqa: F401  registers every table on Base.metadata
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Truck Logbook API",
    description="Trip lifecycle, expense reconciliation and maintenance tracking for a trucking fleet",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

ERROR_STATUS_CODES = (
    (ValidationError, 400),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (StateError, 409),
)

@app.exception_handler(FleetError)
async def fleet_error_handler(request: Request, exc: FleetError):
    status_code = next((code for family, code in ERROR_STATUS_CODES if isinstance(exc, family)), 400)
    logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to prevent information leakage"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred. Please try again later."}
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)

app.include_router(trips.router)
app.include_router(expenses.router)
app.include_router(maintenance.router)
app.include_router(trucks.router)
app.include_router(settings_router.router)

@app.on_event("startup")
async def startup_event():
    """Create tables, seed the settings row and build the webhook dispatcher"""
    app.state.dispatcher = build_dispatcher(
        settings.webhook_url,
        settings.webhook_timeout_seconds,
        settings.webhook_max_workers,
    )

    if engine is None:
        logger.error("DATABASE_URL not configured - database features disabled")
        return

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created/verified")

        db = SessionLocal()
        try:
            SettingsService.get_settings(db)
            db.commit()
        finally:
            db.close()
    except Exception as e:
        logger.error(f"Startup error: {e}")

@app.on_event("shutdown")
async def shutdown_event():
    dispatcher = getattr(app.state, "dispatcher", None)
    if dispatcher is not None:
        dispatcher.close()

@app.get("/")
def root():
    return {
        "message": "Truck Logbook API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }

@app.get("/health")
def health_check():
    db_status = "connected" if verify_db_connection() else "not connected"
    return {
        "status": "healthy",
        "database": db_status
    }
