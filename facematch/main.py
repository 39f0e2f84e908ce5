"""
Face Match API

Face identity matching over pre-computed 256-dim feature vectors, with
SQLAlchemy storage for faces and access logs.

Endpoints:
- GET /api/faces - List all faces
- POST /api/faces - Enroll or update a face
- POST /api/faces/search - Search a face by vector
- POST /api/faces/recognize - Recognize a face (search + trigger)
- POST /api/faces/batch - Batch enroll faces
- GET /api/faces/export - Export all faces as JSON
- DELETE /api/faces/clear - Clear all faces and logs
- POST /api/led - Control LED (mock)
- GET /api/stats - System statistics
- GET /api/logs - Access logs
"""
import asyncio
import time
import logging
from http import HTTPStatus
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Depends, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from facematch.auth import APIKeyMiddleware
from facematch.config import (
    API_TITLE,
    API_DESCRIPTION,
    API_VERSION,
    API_KEY,
    API_HOST,
    API_PORT,
    EXPORT_FILENAME,
    LOG_LEVEL,
    LOG_PRUNE_INTERVAL_HOURS,
    LOG_RETENTION_DAYS
)
from facematch.database import async_session_maker, engine, init_db, close_db
from facematch.errors import FaceMatchError, NotFoundError, StoreError, ValidationError
from facematch.recognition import RecognitionService
from facematch.repository import AccessLogRepository, FaceStoreRepository, page_bounds
from facematch.schemas import (
    BatchEnrollRequest,
    BatchEnrollResponse,
    ClearResponse,
    EnrollRequest,
    EnrollResponse,
    ErrorResponse,
    ExportResponse,
    FaceListResponse,
    LedRequest,
    LedResponse,
    LogEntry,
    LogFilters,
    LogListResponse,
    MatchResult,
    Pagination,
    PruneResponse,
    RecentActivity,
    RecentFace,
    SearchRequest,
    Statistics,
    StatsResponse,
    SystemInfo
)
from facematch.models import utcnow

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

START_TIME = time.time()


def trigger_led(result: MatchResult) -> None:
    """Recognition hook. The actuator is not wired up; only the intent is logged."""
    logger.info(
        f"Face recognized: {result.name} (confidence: {result.confidence:.2f}), "
        f"LED trigger requested"
    )


recognition_service = RecognitionService(on_recognized=trigger_led)


async def get_db() -> AsyncSession:
    """Dependency to get database session."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_recognition_service() -> RecognitionService:
    return recognition_service


async def periodic_log_prune(interval_hours: float):
    """Apply the age-based log retention every ``interval_hours``."""
    while True:
        await asyncio.sleep(interval_hours * 3600)
        try:
            async with async_session_maker() as session:
                await recognition_service.prune_logs(session, LOG_RETENTION_DAYS)
        except Exception as e:
            logger.error(f"Cleanup error: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Face Match API...")
    await init_db()

    prune_task = None
    if LOG_PRUNE_INTERVAL_HOURS > 0:
        prune_task = asyncio.create_task(periodic_log_prune(LOG_PRUNE_INTERVAL_HOURS))
        logger.info(
            f"Log prune every {LOG_PRUNE_INTERVAL_HOURS}h "
            f"(keeping {LOG_RETENTION_DAYS} days)"
        )
    yield

    # Shutdown
    if prune_task:
        prune_task.cancel()
        try:
            await prune_task
        except asyncio.CancelledError:
            pass
    await close_db()
    logger.info("Shutting down Face Match API...")


# Create FastAPI app
app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    lifespan=lifespan
)

app.add_middleware(APIKeyMiddleware, api_key=API_KEY)

# Add CORS middleware (outermost, so preflights and 401s carry CORS headers)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-API-Key"],
)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    401: {"model": ErrorResponse, "description": "Invalid API key"},
    500: {"model": ErrorResponse, "description": "Store failure"}
}


@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint with API info."""
    return {
        "name": API_TITLE,
        "version": API_VERSION,
        "description": "Face identity matching over 256-dim feature vectors",
        "endpoints": [
            "GET    /                     - API Documentation",
            "GET    /api/faces            - Get all faces",
            "POST   /api/faces            - Enroll new face",
            "POST   /api/faces/search     - Search face by vector",
            "POST   /api/faces/recognize  - Recognize face (with trigger)",
            "POST   /api/faces/batch      - Batch enroll faces",
            "GET    /api/faces/export     - Export all faces as JSON",
            "DELETE /api/faces/clear      - Clear all faces and logs",
            "POST   /api/led              - Control LED (mock)",
            "GET    /api/stats            - Get system statistics",
            "GET    /api/logs             - Get access logs"
        ]
    }


# ============================================================================
# FACES
# ============================================================================
@app.get(
    "/api/faces",
    response_model=FaceListResponse,
    responses=ERROR_RESPONSES,
    summary="List all faces",
    description="All enrolled faces sorted by name, vectors included as numeric arrays."
)
async def list_faces(db: AsyncSession = Depends(get_db)):
    faces = await FaceStoreRepository.list_materialized(db)
    return FaceListResponse(success=True, count=len(faces), faces=faces)


@app.post(
    "/api/faces",
    response_model=EnrollResponse,
    responses=ERROR_RESPONSES,
    summary="Enroll or update a face",
    description="""
    Register a named face vector. Names are unique: enrolling an existing
    name replaces its vector instead of creating a new face.
    """
)
async def enroll_face(
    request: EnrollRequest,
    db: AsyncSession = Depends(get_db),
    service: RecognitionService = Depends(get_recognition_service)
):
    face_id, was_update, name = await service.enroll(db, request.name, request.vector)

    return EnrollResponse(
        success=True,
        message=f"Face {'updated' if was_update else 'enrolled'} successfully",
        face_id=face_id,
        name=name,
        updated=was_update
    )


@app.post(
    "/api/faces/search",
    response_model=MatchResult,
    responses=ERROR_RESPONSES,
    summary="Search a face by vector",
    description="""
    Compare the query vector with every enrolled face (cosine similarity)
    and return the best candidate. `match` is true when its confidence
    reaches the threshold. Every search is written to the access log.
    """
)
async def search_face(
    request: SearchRequest,
    db: AsyncSession = Depends(get_db),
    service: RecognitionService = Depends(get_recognition_service)
):
    result, _ = await service.search(db, request.vector, request.threshold)
    return result


@app.post(
    "/api/faces/recognize",
    response_model=MatchResult,
    responses=ERROR_RESPONSES,
    summary="Recognize a face",
    description="""
    Same as search. On a match the access log entry is tagged `recognize`
    and the recognition trigger fires.
    """
)
async def recognize_face(
    request: SearchRequest,
    db: AsyncSession = Depends(get_db),
    service: RecognitionService = Depends(get_recognition_service)
):
    return await service.recognize(db, request.vector, request.threshold)


@app.post(
    "/api/faces/batch",
    response_model=BatchEnrollResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
    summary="Batch enroll faces",
    description="Enroll a list of {name, vector} objects. Bad items are reported, not fatal."
)
async def batch_enroll(
    request: BatchEnrollRequest,
    db: AsyncSession = Depends(get_db),
    service: RecognitionService = Depends(get_recognition_service)
):
    result = await service.batch_enroll(db, request.faces)

    return BatchEnrollResponse(
        success=True,
        imported=result.imported,
        failed=result.failed,
        errors=result.errors or None,
        message=(
            f"Processed {len(request.faces)} faces, "
            f"{result.imported} successful, {result.failed} failed"
        )
    )


@app.get(
    "/api/faces/export",
    response_model=ExportResponse,
    responses=ERROR_RESPONSES,
    summary="Export all faces",
    description="Full dump of the face database, downloadable as face_db.json."
)
async def export_faces(response: Response, db: AsyncSession = Depends(get_db)):
    response.headers["Content-Disposition"] = f'attachment; filename="{EXPORT_FILENAME}"'
    return await FaceStoreRepository.export_all(db)


@app.delete(
    "/api/faces/clear",
    response_model=ClearResponse,
    responses=ERROR_RESPONSES,
    summary="Clear all faces and logs"
)
async def clear_faces(
    db: AsyncSession = Depends(get_db),
    service: RecognitionService = Depends(get_recognition_service)
):
    faces_deleted, logs_deleted = await service.clear_all(db)

    return ClearResponse(
        success=True,
        message="All data cleared successfully",
        cleared_faces=faces_deleted,
        cleared_logs=logs_deleted
    )


# ============================================================================
# LED (mock)
# ============================================================================
@app.post(
    "/api/led",
    response_model=LedResponse,
    responses=ERROR_RESPONSES,
    summary="Control LED (mock)"
)
async def control_led(request: LedRequest):
    if request.state not in ("on", "off"):
        raise ValidationError("state", 'State must be "on" or "off"')

    logger.info(f"LED control requested: {request.state}")

    return LedResponse(
        success=True,
        message=f"LED turned {request.state}",
        state=request.state,
        timestamp=utcnow(),
        note="This is a mock implementation. No device is contacted."
    )


# ============================================================================
# STATS & LOGS
# ============================================================================
@app.get(
    "/api/stats",
    response_model=StatsResponse,
    responses=ERROR_RESPONSES,
    summary="Get system statistics"
)
async def get_stats(db: AsyncSession = Depends(get_db)):
    faces_count = await FaceStoreRepository.count(db)
    logs_count = await AccessLogRepository.count(db)
    recent_logs = await AccessLogRepository.recent(db, limit=10)
    recent_faces = await FaceStoreRepository.recent(db, limit=5)

    return StatsResponse(
        system=SystemInfo(
            database=engine.dialect.name,
            uptime_seconds=round(time.time() - START_TIME, 1),
            version=API_VERSION
        ),
        statistics=Statistics(faces=faces_count, total_logs=logs_count),
        recent_activity=RecentActivity(
            logs=[LogEntry.model_validate(entry) for entry in recent_logs],
            recent_faces=[RecentFace.model_validate(face) for face in recent_faces]
        )
    )


@app.get(
    "/api/logs",
    response_model=LogListResponse,
    responses=ERROR_RESPONSES,
    summary="Get access logs",
    description="Newest first, at most 100 per page, optionally filtered by action."
)
async def get_logs(
    limit: Optional[int] = Query(None, description="Page size (default 50, max 100)"),
    offset: Optional[int] = Query(None, description="Entries to skip"),
    action: Optional[str] = Query(None, description="Only entries with this action"),
    db: AsyncSession = Depends(get_db)
):
    limit, offset = page_bounds(limit, offset)
    entries, total, has_more = await AccessLogRepository.list_entries(
        db, action=action, limit=limit, offset=offset
    )
    actions = await AccessLogRepository.distinct_actions(db)

    return LogListResponse(
        logs=[LogEntry.model_validate(entry) for entry in entries],
        pagination=Pagination(limit=limit, offset=offset, total=total, has_more=has_more),
        filters=LogFilters(available_actions=actions)
    )


@app.post(
    "/maintenance/prune-logs",
    response_model=PruneResponse,
    responses=ERROR_RESPONSES,
    summary="Prune old access logs",
    description="Delete access log entries older than `days` days. Normally run by the periodic task."
)
async def prune_logs(
    days: int = Query(LOG_RETENTION_DAYS, ge=0, description="Maximum age in days"),
    db: AsyncSession = Depends(get_db),
    service: RecognitionService = Depends(get_recognition_service)
):
    deleted = await service.prune_logs(db, days)
    return PruneResponse(success=True, deleted=deleted, older_than_days=days)


# Exception handlers
@app.exception_handler(FaceMatchError)
async def face_match_exception_handler(request, exc):
    """Service errors, mapped to their status code."""
    if isinstance(exc, StoreError):
        logger.error(f"Store error on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error,
            "message": exc.message
        }
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request, exc):
    """Malformed request bodies and query params are 400s, not 422s."""
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg", ""))

    return JSONResponse(
        status_code=400,
        content={
            "error": "Bad Request",
            "message": "; ".join(problems) or "Invalid request"
        }
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    """Custom HTTP exception handler (unknown routes, wrong methods)."""
    if exc.status_code == 404:
        return await face_match_exception_handler(
            request, NotFoundError(f"No route for {request.method} {request.url.path}")
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": HTTPStatus(exc.status_code).phrase,
            "message": str(exc.detail)
        },
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """General exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)
