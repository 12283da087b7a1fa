import copy
import threading
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from classroom_monitor.config import settings
from classroom_monitor.models import (
    AttendanceRecord,
    BehaviorWarning,
    ClassSession,
    FaceDetectionLog,
    Student,
)


def new_id() -> str:
    return str(uuid.uuid4())


class AttendanceStore:
    """
    Key-value persistence used by the attendance service.

    Implementations return copies: mutating a returned model never changes
    stored state until it is saved back.
    """

    # Students
    def list_students(self) -> List[Student]:
        raise NotImplementedError

    def get_student(self, student_id: str) -> Optional[Student]:
        raise NotImplementedError

    def save_student(self, student: Student) -> Student:
        raise NotImplementedError

    # Classes
    def list_classes(self) -> List[ClassSession]:
        raise NotImplementedError

    def get_class(self, class_id: str) -> Optional[ClassSession]:
        raise NotImplementedError

    def save_class(self, class_session: ClassSession) -> ClassSession:
        raise NotImplementedError

    # Attendance
    def list_attendance_records(self, class_id: Optional[str] = None) -> List[AttendanceRecord]:
        raise NotImplementedError

    def get_attendance_record(self, student_id: str, class_id: str) -> Optional[AttendanceRecord]:
        raise NotImplementedError

    def save_attendance_record(self, record: AttendanceRecord) -> AttendanceRecord:
        raise NotImplementedError

    # Behavior warnings
    def list_warnings(self, class_id: Optional[str] = None, is_active: Optional[bool] = None) -> List[BehaviorWarning]:
        raise NotImplementedError

    def add_warning(self, warning: BehaviorWarning) -> BehaviorWarning:
        raise NotImplementedError

    def dismiss_warning(self, warning_id: str) -> bool:
        raise NotImplementedError

    def clear_warnings(self) -> None:
        raise NotImplementedError

    # Face detections
    def add_face_detection(self, detection: FaceDetectionLog) -> FaceDetectionLog:
        raise NotImplementedError

    def list_face_detections(self, class_id: str, since: datetime) -> List[FaceDetectionLog]:
        raise NotImplementedError


class MemoryStore(AttendanceStore):
    def __init__(self, face_detection_retention: Optional[timedelta] = None):
        if face_detection_retention is None:
            face_detection_retention = timedelta(minutes=settings.FACE_DETECTION_RETENTION_MINUTES)
        self.face_detection_retention = face_detection_retention
        self._lock = threading.Lock()
        self.students: Dict[str, Student] = {}
        self.classes: Dict[str, ClassSession] = {}
        self.attendance_records: Dict[str, AttendanceRecord] = {}
        self.behavior_warnings: Dict[str, BehaviorWarning] = {}
        self.face_detections: Dict[str, FaceDetectionLog] = {}

    def _put(self, table: Dict, key: str, value):
        with self._lock:
            table[key] = copy.deepcopy(value)
        return copy.deepcopy(value)

    def _values(self, table: Dict) -> List:
        with self._lock:
            return [copy.deepcopy(v) for v in table.values()]

    def _get(self, table: Dict, key: str):
        with self._lock:
            value = table.get(key)
        return copy.deepcopy(value) if value is not None else None

    # Students
    def list_students(self) -> List[Student]:
        return self._values(self.students)

    def get_student(self, student_id: str) -> Optional[Student]:
        return self._get(self.students, student_id)

    def save_student(self, student: Student) -> Student:
        return self._put(self.students, student.id, student)

    # Classes
    def list_classes(self) -> List[ClassSession]:
        return self._values(self.classes)

    def get_class(self, class_id: str) -> Optional[ClassSession]:
        return self._get(self.classes, class_id)

    def save_class(self, class_session: ClassSession) -> ClassSession:
        return self._put(self.classes, class_session.id, class_session)

    # Attendance
    def list_attendance_records(self, class_id: Optional[str] = None) -> List[AttendanceRecord]:
        records = self._values(self.attendance_records)
        return [r for r in records if r.class_id == class_id] if class_id else records

    def get_attendance_record(self, student_id: str, class_id: str) -> Optional[AttendanceRecord]:
        for record in self._values(self.attendance_records):
            if record.student_id == student_id and record.class_id == class_id:
                return record
        return None

    def save_attendance_record(self, record: AttendanceRecord) -> AttendanceRecord:
        return self._put(self.attendance_records, record.id, record)

    # Behavior warnings
    def list_warnings(self, class_id: Optional[str] = None, is_active: Optional[bool] = None) -> List[BehaviorWarning]:
        warnings = self._values(self.behavior_warnings)
        if class_id:
            warnings = [w for w in warnings if w.class_id == class_id]
        if is_active is not None:
            warnings = [w for w in warnings if w.is_active == is_active]
        return warnings

    def add_warning(self, warning: BehaviorWarning) -> BehaviorWarning:
        return self._put(self.behavior_warnings, warning.id, warning)

    def dismiss_warning(self, warning_id: str) -> bool:
        with self._lock:
            warning = self.behavior_warnings.get(warning_id)
            if warning is None:
                return False
            self.behavior_warnings[warning_id] = warning.copy(update={"is_active": False})
            return True

    def clear_warnings(self) -> None:
        with self._lock:
            self.behavior_warnings.clear()

    # Face detections
    def add_face_detection(self, detection: FaceDetectionLog) -> FaceDetectionLog:
        stored = self._put(self.face_detections, detection.id, detection)
        self._prune_face_detections(detection.timestamp - self.face_detection_retention)
        return stored

    def _prune_face_detections(self, cutoff: datetime) -> None:
        with self._lock:
            expired = [key for key, d in self.face_detections.items() if d.timestamp < cutoff]
            for key in expired:
                del self.face_detections[key]

    def list_face_detections(self, class_id: str, since: datetime) -> List[FaceDetectionLog]:
        with self._lock:
            matches = [
                d for d in self.face_detections.values()
                if d.class_id == class_id and d.timestamp > since
            ]
        return [copy.deepcopy(d) for d in matches]


def build_store(backend: str) -> AttendanceStore:
    if backend == "memory":
        return MemoryStore()
    if backend == "firestore":
        from classroom_monitor.firebase_service import FirestoreStore
        return FirestoreStore()
    raise ValueError(f"Unknown storage backend: {backend!r}")
