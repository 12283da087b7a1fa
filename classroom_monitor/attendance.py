"""
Attendance accrual and finalization.

Per (student, class) a record moves Unseen -> Tracked on the first detection
in an active session and Tracked -> Finalized when the session's attendance
is finalized. The rules below are pure; ``AttendanceService`` applies them
against a store under per-class mutual exclusion.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from classroom_monitor.config import settings
from classroom_monitor.exceptions import (
    ClassNotFound,
    CollaboratorFailure,
    FinalizeError,
    SessionNotActive,
)
from classroom_monitor.models import (
    AttendanceRecord,
    AttendanceStatus,
    BehaviorWarning,
    BoundingBox,
    ClassSession,
    FaceDetectionLog,
    Student,
    WarningType,
)
from classroom_monitor.storage import AttendanceStore, new_id

logger = logging.getLogger(__name__)

UNSEEN = "unseen"
TRACKED = "tracked"
FINALIZED = "finalized"
NOT_DETECTED = "not_detected"


def record_state(record: Optional[AttendanceRecord]) -> str:
    if record is None:
        return UNSEEN
    return FINALIZED if record.finalized_at is not None else TRACKED


def apply_detection(
    record: Optional[AttendanceRecord],
    student_id: str,
    class_id: str,
    time_present_delta: float,
    last_seen: datetime,
) -> AttendanceRecord:
    """Create or advance a record for one detection event."""
    delta = max(float(time_present_delta or 0.0), 0.0)
    if record is None:
        return AttendanceRecord(
            id=new_id(),
            student_id=student_id,
            class_id=class_id,
            status=AttendanceStatus.PRESENT,
            time_present=delta,
            detection_count=1,
            last_seen=last_seen,
        )

    seen = last_seen if record.last_seen is None else max(record.last_seen, last_seen)
    return record.copy(update={
        "time_present": record.time_present + delta,
        "detection_count": record.detection_count + 1,
        "last_seen": seen,
    })


def final_status(
    time_present: float,
    duration: int,
    threshold: Optional[float] = None,
    late_min_percentage: Optional[float] = None,
) -> AttendanceStatus:
    """
    present  if time_present / duration * 100 >= threshold (inclusive)
    late     if time_present > 0 and the percentage reaches the late minimum
    absent   otherwise
    """
    if threshold is None:
        threshold = settings.DEFAULT_ATTENDANCE_THRESHOLD
    if late_min_percentage is None:
        late_min_percentage = settings.LATE_MIN_PERCENTAGE

    time_present = time_present or 0.0
    if time_present <= 0:
        return AttendanceStatus.ABSENT

    percentage = time_present / duration * 100
    if percentage >= threshold:
        return AttendanceStatus.PRESENT
    if percentage >= late_min_percentage:
        return AttendanceStatus.LATE
    return AttendanceStatus.ABSENT


def display_status(
    record: AttendanceRecord,
    now: datetime,
    not_detected_after: Optional[timedelta] = None,
) -> str:
    """Stored status, or ``not_detected`` for a Tracked record not seen recently."""
    if not_detected_after is None:
        not_detected_after = timedelta(minutes=settings.NOT_DETECTED_MINUTES)
    if (
        record_state(record) == TRACKED
        and record.last_seen is not None
        and now - record.last_seen > not_detected_after
    ):
        return NOT_DETECTED
    return record.status.value


class AttendanceService:
    """
    Collaborator operations of the detection core over an AttendanceStore.

    Session start/end are serialized system-wide; detection updates and
    finalization are serialized per class id.
    """

    def __init__(self, store: AttendanceStore, clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.clock = clock
        self._sessions_lock = threading.Lock()
        self._class_locks: Dict[str, threading.RLock] = {}
        self._class_locks_guard = threading.Lock()

    def _class_lock(self, class_id: str) -> threading.RLock:
        with self._class_locks_guard:
            lock = self._class_locks.get(class_id)
            if lock is None:
                lock = self._class_locks[class_id] = threading.RLock()
            return lock

    def _require_class(self, class_id: str) -> ClassSession:
        class_session = self.store.get_class(class_id)
        if class_session is None:
            raise ClassNotFound(class_id)
        return class_session

    # Roster and classes
    def list_students_with_photos(self) -> List[Student]:
        return [s for s in self.store.list_students() if s.photo_url and s.is_active]

    def get_class(self, class_id: str) -> ClassSession:
        return self._require_class(class_id)

    def current_class(self) -> Optional[ClassSession]:
        for class_session in self.store.list_classes():
            if class_session.is_active:
                return class_session
        return None

    def start_session(self, class_id: str) -> ClassSession:
        """Activate a class, force-ending any other active one."""
        with self._sessions_lock:
            target = self._require_class(class_id)
            now = self.clock()

            for other in self.store.list_classes():
                if other.is_active and other.id != class_id:
                    with self._class_lock(other.id):
                        self.store.save_class(other.copy(update={"is_active": False, "ended_at": now}))
                    logger.info(f"Force-ended class {other.id} ({other.name}) to start {class_id}")

            if target.is_active:
                logger.info(f"Class {class_id} is already active")
                return target

            with self._class_lock(class_id):
                started = self.store.save_class(target.copy(update={
                    "is_active": True,
                    "started_at": now,
                    "ended_at": None,
                }))
            logger.info(f"Started class {class_id} ({started.name})")
            return started

    def end_session(self, class_id: str) -> ClassSession:
        """Finalize attendance, then end the class. A failed finalize aborts the end."""
        with self._sessions_lock:
            with self._class_lock(class_id):
                self.finalize_attendance(class_id)
                class_session = self._require_class(class_id)
                if not class_session.is_active:
                    logger.info(f"Class {class_id} was not active, nothing to end")
                    return class_session
                ended = self.store.save_class(class_session.copy(update={
                    "is_active": False,
                    "ended_at": self.clock(),
                }))
            logger.info(f"Ended class {class_id} ({ended.name})")
            return ended

    # Accrual
    def record_detection(
        self,
        student_id: str,
        class_id: str,
        time_present_delta: float,
        last_seen: Optional[datetime] = None,
    ) -> AttendanceRecord:
        with self._class_lock(class_id):
            class_session = self._require_class(class_id)
            if not class_session.is_active:
                raise SessionNotActive(class_id)
            existing = self.store.get_attendance_record(student_id, class_id)
            record = apply_detection(
                existing, student_id, class_id, time_present_delta, last_seen or self.clock()
            )
            if existing is None:
                logger.info(f"Tracking student {student_id} in class {class_id}")
            return self.store.save_attendance_record(record)

    def finalize_attendance(self, class_id: str) -> List[AttendanceRecord]:
        """Recompute every record's status from accrued time. Idempotent."""
        with self._class_lock(class_id):
            class_session = self._require_class(class_id)
            try:
                records = self.store.list_attendance_records(class_id)
                now = self.clock()
                updated: List[AttendanceRecord] = []
                for record in records:
                    status = final_status(
                        record.time_present,
                        class_session.duration,
                        class_session.attendance_threshold,
                    )
                    updated.append(self.store.save_attendance_record(record.copy(update={
                        "status": status,
                        "finalized_at": record.finalized_at or now,
                    })))
            except Exception as e:
                logger.error(f"Failed to finalize attendance for class {class_id}: {e}")
                raise FinalizeError(f"Failed to finalize attendance for class {class_id}") from e

        logger.info(f"Finalized {len(updated)} attendance records for class {class_id}")
        return updated

    def attendance_view(self, class_id: Optional[str] = None):
        now = self.clock()
        return [(r, display_status(r, now)) for r in self.store.list_attendance_records(class_id)]

    # Warnings and detection log
    def emit_warning(
        self,
        student_id: str,
        class_id: str,
        warning_type: WarningType,
        description: Optional[str] = None,
    ) -> BehaviorWarning:
        try:
            return self.store.add_warning(BehaviorWarning(
                id=new_id(),
                student_id=student_id,
                class_id=class_id,
                warning_type=warning_type,
                description=description,
                created_at=self.clock(),
            ))
        except Exception as e:
            raise CollaboratorFailure(f"Failed to store {warning_type} warning for {student_id}") from e

    def list_warnings(self, class_id: Optional[str] = None, is_active: Optional[bool] = None) -> List[BehaviorWarning]:
        return self.store.list_warnings(class_id, is_active)

    def dismiss_warning(self, warning_id: str) -> bool:
        return self.store.dismiss_warning(warning_id)

    def clear_warnings(self) -> None:
        self.store.clear_warnings()

    def log_face_detection(
        self,
        class_id: str,
        box: BoundingBox,
        confidence: int,
        student_id: Optional[str] = None,
    ) -> FaceDetectionLog:
        return self.store.add_face_detection(FaceDetectionLog(
            id=new_id(),
            class_id=class_id,
            student_id=student_id,
            confidence=confidence,
            bounding_box=box,
            timestamp=self.clock(),
        ))

    def recent_face_detections(self, class_id: str, minutes: float = 5) -> List[FaceDetectionLog]:
        return self.store.list_face_detections(class_id, self.clock() - timedelta(minutes=minutes))
