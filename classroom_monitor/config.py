import os
from typing import Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # App Settings
    APP_NAME: str = "Classroom Monitor"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Detection loop
    DETECTION_INTERVAL_MS: int = 1000
    RANDOM_SEED: Optional[int] = None  # Seeds box jitter and ordinal confidences

    # Identity matching: "ordinal" (roster order) or "descriptor" (DeepFace)
    MATCHING_STRATEGY: str = "ordinal"
    RECOGNITION_THRESHOLD: float = 0.6  # Cosine distance, lower is closer
    MODEL_NAME: str = "VGG-Face"
    DETECTOR_BACKEND: str = "opencv"
    BEHAVIOR_MATCH_RADIUS: float = 200.0  # px between behavior and prior face centers

    # Attendance policy
    DEFAULT_ATTENDANCE_THRESHOLD: int = 75
    LATE_MIN_PERCENTAGE: float = 25.0
    NOT_DETECTED_MINUTES: float = 5.0
    FACE_DETECTION_RETENTION_MINUTES: float = 60.0  # In-memory detection log window

    # Storage Settings
    STORAGE_BACKEND: str = "memory"  # memory or firestore
    DESCRIPTORS_DIR: str = os.path.join(os.path.dirname(os.path.dirname(__file__)), "descriptors")

    # Firebase Settings
    FIREBASE_CREDENTIALS_PATH: str = os.getenv("FIREBASE_CREDENTIALS_PATH", "")

    class Config:
        case_sensitive = True

settings = Settings()
