import logging
import tomllib
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import Settings, get_settings
from database import create_db_engine, make_session_factory
from errors import ExpenseError
from monitoring import QueryMonitor, instrument_engine
from scheduler import SchedulerConfig, SchedulerManager
from schemas import (
    ArchiveCleanupIn,
    ArchiveRestoreIn,
    ArchiveTriggerIn,
    TrendsQuery,
)
from services import ArchiveService, TrendService

logger = logging.getLogger(__name__)

PYPROJECT_PATH = Path(__file__).resolve().parent / "pyproject.toml"


def _load_app_version() -> str:
    try:
        with open(PYPROJECT_PATH, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"
    return str(data.get("project", {}).get("version", "unknown"))


APP_VERSION = _load_app_version()


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _error_response(
    request: Request, status_code: int, code: str, message: str, details=None
) -> JSONResponse:
    body: dict[str, object] = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": request.url.path,
    }
    if details is not None:
        body["details"] = details
    return JSONResponse(
        status_code=status_code, content=jsonable_encoder({"error": body})
    )


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ExpenseError)
    async def _expense_error_handler(request: Request, exc: ExpenseError):
        if exc.status_code >= 500:
            logger.error(f"request_failed: path={request.url.path} code={exc.code}")
        return _error_response(
            request, exc.status_code, exc.code, exc.message, exc.details
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(
        request: Request, exc: RequestValidationError
    ):
        return _error_response(
            request,
            422,
            "validation_error",
            "request validation failed",
            exc.errors(),
        )

    @app.exception_handler(Exception)
    async def _generic_error_handler(request: Request, exc: Exception):
        logger.exception(f"request_failed: path={request.url.path}")
        return _error_response(
            request, 500, "internal_error", "internal server error"
        )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    engine = create_db_engine(settings)
    monitor = QueryMonitor()
    instrument_engine(engine, monitor)
    session_factory = make_session_factory(engine)
    scheduler_manager = SchedulerManager(
        SchedulerConfig.from_settings(settings), session_factory, settings, monitor
    )

    app = FastAPI(title="Expense Trends", version=APP_VERSION)
    app.state.settings = settings
    app.state.engine = engine
    app.state.monitor = monitor
    app.state.scheduler = scheduler_manager
    register_error_handlers(app)

    def get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    @app.on_event("startup")
    def startup_event():
        if scheduler_manager.config.enabled:
            scheduler_manager.start()
        else:
            logger.info(
                f"Scheduled tasks initialized but not started "
                f"(environment={settings.environment})"
            )

    @app.on_event("shutdown")
    def shutdown_event():
        scheduler_manager.shutdown()
        engine.dispose()

    @app.get("/health")
    def health():
        return {"status": "ok", "version": APP_VERSION}

    @app.get("/api/trends")
    def api_trends(
        query: Annotated[TrendsQuery, Query()], db: Session = Depends(get_db)
    ):
        result = TrendService(db, monitor).get_trends(query)
        return asdict(result)

    @app.get("/admin/metrics")
    def admin_metrics():
        return {
            "database": monitor.get_metrics(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/admin/archive/stats")
    def admin_archive_stats(db: Session = Depends(get_db)):
        return asdict(ArchiveService(db, monitor).get_archive_stats())

    @app.post("/admin/archive/trigger")
    def admin_archive_trigger(payload: Optional[ArchiveTriggerIn] = None):
        retention_years = payload.retention_years if payload else None
        result = scheduler_manager.trigger_archival(retention_years)
        return {"message": "Archival completed successfully", "result": asdict(result)}

    @app.post("/admin/maintenance/trigger")
    def admin_maintenance_trigger():
        result = scheduler_manager.trigger_maintenance()
        return {
            "message": "Maintenance completed successfully",
            "result": asdict(result),
        }

    @app.get("/admin/tasks/status")
    def admin_tasks_status():
        return scheduler_manager.status()

    @app.post("/admin/archive/restore")
    def admin_archive_restore(payload: ArchiveRestoreIn, db: Session = Depends(get_db)):
        start = _naive_utc(payload.start_date)
        end = _naive_utc(payload.end_date)
        restored = ArchiveService(db, monitor).restore_from_archive(start, end)
        return {
            "message": "Data restored successfully",
            "restored_count": restored,
            "date_range": {"start_date": start, "end_date": end},
        }

    @app.post("/admin/archive/cleanup")
    def admin_archive_cleanup(
        payload: Optional[ArchiveCleanupIn] = None, db: Session = Depends(get_db)
    ):
        years = (
            payload.max_archive_years
            if payload and payload.max_archive_years is not None
            else settings.max_archive_years
        )
        deleted = ArchiveService(db, monitor).cleanup_old_archives(years)
        return {
            "message": "Archive cleanup completed successfully",
            "deleted_count": deleted,
            "max_archive_years": years,
        }

    return app


logging.basicConfig(level=get_settings().log_level)
app = create_app()
