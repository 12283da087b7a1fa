import firebase_admin
from firebase_admin import credentials, firestore
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Optional
import logging
from classroom_monitor.config import settings
from classroom_monitor.models import (
    AttendanceRecord,
    BehaviorWarning,
    ClassSession,
    FaceDetectionLog,
    Student,
)
from classroom_monitor.storage import AttendanceStore

logger = logging.getLogger(__name__)

STUDENTS = 'students'
CLASSES = 'classes'
ATTENDANCE = 'attendance_records'
WARNINGS = 'behavior_warnings'
FACE_DETECTIONS = 'face_detections'


def _to_document(model) -> Dict:
    document = model.dict()
    for key, value in document.items():
        if isinstance(value, Enum):
            document[key] = value.value
    document.pop('id', None)
    return document


def _from_snapshot(model_class, doc):
    data = doc.to_dict() or {}
    for key, value in data.items():
        # Firestore returns aware UTC timestamps, the service works in naive UTC
        if isinstance(value, datetime) and value.tzinfo is not None:
            data[key] = value.astimezone(timezone.utc).replace(tzinfo=None)
    data['id'] = doc.id
    return model_class(**data)


class FirestoreStore(AttendanceStore):
    def __init__(self):
        """Initialize Firebase Admin SDK."""
        self.db = None
        self.initialize_firebase()

    def initialize_firebase(self):
        """Initialize Firebase connection."""
        try:
            if not firebase_admin._apps:
                if settings.FIREBASE_CREDENTIALS_PATH:
                    cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
                    firebase_admin.initialize_app(cred)
                else:
                    # Use default credentials (for deployment environments)
                    firebase_admin.initialize_app()

                logger.info("Firebase Admin SDK initialized successfully")

            self.db = firestore.client()

        except Exception as e:
            logger.error(f"Failed to initialize Firebase: {e}")
            raise

    def _list(self, collection: str, model_class, query=None) -> List:
        ref = query if query is not None else self.db.collection(collection)
        return [_from_snapshot(model_class, doc) for doc in ref.stream()]

    def _get(self, collection: str, model_class, doc_id: str):
        doc = self.db.collection(collection).document(doc_id).get()
        if not doc.exists:
            return None
        return _from_snapshot(model_class, doc)

    def _set(self, collection: str, model):
        self.db.collection(collection).document(model.id).set(_to_document(model))
        return model

    # Students
    def list_students(self) -> List[Student]:
        students = self._list(STUDENTS, Student)
        logger.info(f"Retrieved {len(students)} students from Firestore")
        return students

    def get_student(self, student_id: str) -> Optional[Student]:
        return self._get(STUDENTS, Student, student_id)

    def save_student(self, student: Student) -> Student:
        return self._set(STUDENTS, student)

    # Classes
    def list_classes(self) -> List[ClassSession]:
        return self._list(CLASSES, ClassSession)

    def get_class(self, class_id: str) -> Optional[ClassSession]:
        return self._get(CLASSES, ClassSession, class_id)

    def save_class(self, class_session: ClassSession) -> ClassSession:
        return self._set(CLASSES, class_session)

    # Attendance
    def list_attendance_records(self, class_id: Optional[str] = None) -> List[AttendanceRecord]:
        query = None
        if class_id:
            query = self.db.collection(ATTENDANCE).where('class_id', '==', class_id)
        return self._list(ATTENDANCE, AttendanceRecord, query)

    def get_attendance_record(self, student_id: str, class_id: str) -> Optional[AttendanceRecord]:
        query = self.db.collection(ATTENDANCE)\
                       .where('class_id', '==', class_id)\
                       .where('student_id', '==', student_id)\
                       .limit(1)
        for doc in query.stream():
            return _from_snapshot(AttendanceRecord, doc)
        return None

    def save_attendance_record(self, record: AttendanceRecord) -> AttendanceRecord:
        return self._set(ATTENDANCE, record)

    # Behavior warnings
    def list_warnings(self, class_id: Optional[str] = None, is_active: Optional[bool] = None) -> List[BehaviorWarning]:
        query = self.db.collection(WARNINGS)
        if class_id:
            query = query.where('class_id', '==', class_id)
        if is_active is not None:
            query = query.where('is_active', '==', is_active)
        return self._list(WARNINGS, BehaviorWarning, query)

    def add_warning(self, warning: BehaviorWarning) -> BehaviorWarning:
        return self._set(WARNINGS, warning)

    def dismiss_warning(self, warning_id: str) -> bool:
        ref = self.db.collection(WARNINGS).document(warning_id)
        if not ref.get().exists:
            logger.warning(f"Warning {warning_id} does not exist in Firestore")
            return False
        ref.update({'is_active': False})
        return True

    def clear_warnings(self) -> None:
        deleted = 0
        for doc in self.db.collection(WARNINGS).stream():
            doc.reference.delete()
            deleted += 1
        logger.info(f"Deleted {deleted} behavior warnings")

    # Face detections
    def add_face_detection(self, detection: FaceDetectionLog) -> FaceDetectionLog:
        return self._set(FACE_DETECTIONS, detection)

    def list_face_detections(self, class_id: str, since: datetime) -> List[FaceDetectionLog]:
        query = self.db.collection(FACE_DETECTIONS)\
                       .where('class_id', '==', class_id)\
                       .where('timestamp', '>', since)
        return self._list(FACE_DETECTIONS, FaceDetectionLog, query)
