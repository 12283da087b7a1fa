from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from classroom_monitor.models import (
    AttendanceView,
    BehaviorWarning,
    ClassSession,
    FaceDetectionLog,
    FinalizeRequest,
    FinalizeResult,
)
from classroom_monitor.attendance import AttendanceService
from classroom_monitor.exceptions import ClassNotFound, FinalizeError
from classroom_monitor.monitoring import router as monitoring_router, registry
from classroom_monitor.storage import build_store
from classroom_monitor.config import settings
import logging
from typing import Optional, List

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger("classroom_monitor")

app = FastAPI(
    title=settings.APP_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

# CORS config
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(monitoring_router, tags=["Monitoring"])

# Initialize global instances
attendance_service: Optional[AttendanceService] = None

@app.on_event("startup")
async def startup_event():
    """Initialize the attendance store on startup."""
    global attendance_service
    try:
        attendance_service = AttendanceService(build_store(settings.STORAGE_BACKEND))
        logger.info(f"Attendance service initialized with {settings.STORAGE_BACKEND} storage")
    except Exception as e:
        logger.error(f"Failed to initialize attendance service: {e}")
        logger.warning("Attendance tracking will not be available")

@app.on_event("shutdown")
async def shutdown_event():
    stopped = await registry.stop_all()
    if stopped:
        logger.info(f"Stopped monitoring for {len(stopped)} class(es) on shutdown")


def get_service() -> AttendanceService:
    if attendance_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Attendance storage not available"
        )
    return attendance_service


def _not_found(e: ClassNotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@app.get("/", tags=["Health"])
async def health_check():
    return {"status": "ok", "service": settings.APP_NAME}

@app.get("/classes/current", response_model=Optional[ClassSession], tags=["Classes"])
async def current_class(service: AttendanceService = Depends(get_service)):
    return service.current_class()

@app.post("/classes/{class_id}/start", response_model=ClassSession, tags=["Classes"])
async def start_class(class_id: str, service: AttendanceService = Depends(get_service)):
    """
    Start a class. Any other active class is force-ended and its monitoring stopped.
    """
    try:
        class_session = service.start_session(class_id)
    except ClassNotFound as e:
        raise _not_found(e)

    stopped = await registry.stop_all(except_class=class_id)
    for other in stopped:
        logger.info(f"Stopped monitoring for force-ended class {other}")
    return class_session

@app.post("/classes/{class_id}/end", response_model=ClassSession, tags=["Classes"])
async def end_class(class_id: str, service: AttendanceService = Depends(get_service)):
    """
    End a class.

    Workflow:
    1. Stop monitoring, discarding any cycle still in flight
    2. Finalize attendance for every tracked student
    3. Mark the class ended
    """
    await registry.stop(class_id)
    try:
        return service.end_session(class_id)
    except ClassNotFound as e:
        raise _not_found(e)
    except FinalizeError as e:
        logger.error(f"Class {class_id} not ended: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to finalize attendance, class is still active"
        )

@app.get("/attendance", response_model=List[AttendanceView], tags=["Attendance"])
async def list_attendance(class_id: Optional[str] = None, service: AttendanceService = Depends(get_service)):
    return [
        AttendanceView(record=record, display_status=display)
        for record, display in service.attendance_view(class_id)
    ]

@app.post("/attendance/finalize", response_model=FinalizeResult, tags=["Attendance"])
async def finalize_attendance(request: FinalizeRequest, service: AttendanceService = Depends(get_service)):
    try:
        records = service.finalize_attendance(request.class_id)
    except ClassNotFound as e:
        raise _not_found(e)
    except FinalizeError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
    return FinalizeResult(
        message=f"Finalized attendance for {len(records)} students",
        records=records,
    )

@app.get("/warnings", response_model=List[BehaviorWarning], tags=["Warnings"])
async def list_warnings(
    class_id: Optional[str] = None,
    is_active: Optional[bool] = None,
    service: AttendanceService = Depends(get_service),
):
    return service.list_warnings(class_id, is_active)

@app.post("/warnings/{warning_id}/dismiss", tags=["Warnings"])
async def dismiss_warning(warning_id: str, service: AttendanceService = Depends(get_service)):
    if not service.dismiss_warning(warning_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Warning not found")
    return {"status": "dismissed"}

@app.delete("/warnings", tags=["Warnings"])
async def clear_warnings(service: AttendanceService = Depends(get_service)):
    service.clear_warnings()
    return {"status": "cleared"}

@app.get("/face-detections/recent", response_model=List[FaceDetectionLog], tags=["Detections"])
async def recent_face_detections(
    class_id: str,
    minutes: float = 5,
    service: AttendanceService = Depends(get_service),
):
    return service.recent_face_detections(class_id, minutes)

@app.post("/monitoring/{class_id}/start", tags=["Monitoring"])
async def start_monitoring(class_id: str, service: AttendanceService = Depends(get_service)):
    try:
        class_session = service.get_class(class_id)
    except ClassNotFound as e:
        raise _not_found(e)
    if not class_session.is_active:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Class '{class_id}' is not active"
        )

    monitor = await registry.start(service, class_id)
    return {
        "status": "started",
        "class_id": class_id,
        "students": len(monitor.session.recognized_students),
        "interval_ms": monitor.session.interval_ms,
    }

@app.post("/monitoring/{class_id}/stop", tags=["Monitoring"])
async def stop_monitoring(class_id: str):
    if not await registry.stop(class_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Monitoring not running")
    return {"status": "stopped", "class_id": class_id}

@app.get("/monitoring/{class_id}", tags=["Monitoring"])
async def monitoring_status(class_id: str):
    monitor = registry.get(class_id)
    if monitor is None:
        return {"class_id": class_id, "running": False}
    return {
        "class_id": class_id,
        "running": monitor.running,
        "cycles_run": monitor.cycles_run,
        "cycles_skipped": monitor.cycles_skipped,
        "ticks_skipped": monitor.ticks_skipped,
    }
