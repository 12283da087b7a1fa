from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    LATE = "late"
    ABSENT = "absent"


class WarningType(str, Enum):
    MOBILE = "mobile"
    TALKING = "talking"
    NOT_DETECTED = "not_detected"


# Persisted entities
class Student(BaseModel):
    id: str = Field(..., description="Internal student identifier")
    name: str
    student_id: str = Field(..., description="External student code (unique)")
    email: Optional[str] = None
    photo_url: Optional[str] = Field(default=None, description="Reference photo, data URL or base64")
    is_active: bool = True

class ClassSession(BaseModel):
    id: str
    name: str
    duration: int = Field(..., gt=0, description="Class duration in minutes")
    attendance_threshold: Optional[int] = Field(default=75, description="Minimum presence percentage")
    mobile_detection_enabled: bool = True
    talking_detection_enabled: bool = False
    is_active: bool = False
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

class AttendanceRecord(BaseModel):
    id: str
    student_id: str
    class_id: str
    status: AttendanceStatus = AttendanceStatus.PRESENT
    time_present: float = Field(default=0.0, description="Accrued presence in minutes")
    detection_count: int = 0
    last_seen: Optional[datetime] = None
    finalized_at: Optional[datetime] = None

class BehaviorWarning(BaseModel):
    id: str
    student_id: str
    class_id: str
    warning_type: WarningType
    description: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

class BoundingBox(BaseModel):
    x: float
    y: float
    width: float
    height: float

class FaceDetectionLog(BaseModel):
    id: str
    class_id: str
    student_id: Optional[str] = None
    confidence: int = Field(..., ge=0, le=100)
    bounding_box: BoundingBox
    timestamp: datetime = Field(default_factory=datetime.utcnow)


# Transient detection values, one detection cycle long
class DetectedFace(BaseModel):
    x: float
    y: float
    width: float
    height: float
    confidence: int = Field(..., ge=0, le=100)
    student_id: Optional[str] = None
    student_name: Optional[str] = None

    @property
    def center(self):
        return self.x + self.width / 2, self.y + self.height / 2

class DetectedBehavior(BaseModel):
    type: WarningType
    confidence: int = Field(..., ge=0, le=100)
    bounding_box: BoundingBox
    student_id: Optional[str] = None
    student_name: Optional[str] = None

class CycleResult(BaseModel):
    class_id: str
    faces: List[DetectedFace] = []
    behaviors: List[DetectedBehavior] = []
    timestamp: datetime = Field(default_factory=datetime.utcnow)


# Request/response models for the HTTP surface
class FinalizeRequest(BaseModel):
    class_id: str = Field(..., description="Class whose attendance is finalized")

class FrameUploadRequest(BaseModel):
    image: str = Field(..., description="Base64 encoded frame (data URL accepted)")

class AttendanceView(BaseModel):
    record: AttendanceRecord
    display_status: str = Field(..., description="present, late, absent or not_detected")

class FinalizeResult(BaseModel):
    message: str
    records: List[AttendanceRecord]
