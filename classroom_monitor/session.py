import logging
import random
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

from classroom_monitor.attendance import AttendanceService
from classroom_monitor.config import settings
from classroom_monitor.emitter import WarningEmitter
from classroom_monitor.frame import Frame
from classroom_monitor.matching import (
    IdentityMatcher,
    PriorFace,
    Roster,
    RosterEntry,
    build_matcher,
    nearest_prior_face,
)
from classroom_monitor.models import (
    BoundingBox,
    ClassSession,
    CycleResult,
    DetectedBehavior,
    WarningType,
)
from classroom_monitor.scanner import (
    MAX_PHONES,
    MAX_TALKING,
    Candidate,
    scan_faces,
    scan_phones,
    scan_talking,
)

logger = logging.getLogger(__name__)


class DetectionSession:
    """
    Detection state for one monitored class.

    Owns the roster cache and the faces of the last committed cycle.
    ``analyze`` only reads that state; ``commit`` is the single place
    where a cycle's results change it or reach the attendance service.
    """

    def __init__(
        self,
        class_id: str,
        service: AttendanceService,
        matcher: Optional[IdentityMatcher] = None,
        rng: Optional[random.Random] = None,
        interval_ms: Optional[int] = None,
        behavior_radius: Optional[float] = None,
        not_detected_after: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.class_id = class_id
        self.service = service
        self.rng = rng or random.Random(settings.RANDOM_SEED)
        self.matcher = matcher or build_matcher(settings.MATCHING_STRATEGY, self.rng)
        self.interval_ms = settings.DETECTION_INTERVAL_MS if interval_ms is None else interval_ms
        self.behavior_radius = settings.BEHAVIOR_MATCH_RADIUS if behavior_radius is None else behavior_radius
        if not_detected_after is None:
            not_detected_after = timedelta(minutes=settings.NOT_DETECTED_MINUTES)
        self.not_detected_after = not_detected_after
        self.clock = clock or service.clock
        self.emitter = WarningEmitter(service)

        self.recognized_students: Roster = {}
        self.last_faces: List[PriorFace] = []
        self.class_session: Optional[ClassSession] = None
        self.disposed = False
        self._last_detected: Dict[str, datetime] = {}
        self._absence_warned: Set[str] = set()

    @property
    def presence_per_cycle(self) -> float:
        """Minutes of presence credited for one detection cycle."""
        return self.interval_ms / 60000

    def refresh_roster(self) -> int:
        """Reload class settings and replace the roster wholesale."""
        self.class_session = self.service.get_class(self.class_id)
        students = self.service.list_students_with_photos()
        self.recognized_students.clear()
        for student in students:
            self.recognized_students[student.id] = RosterEntry(student.id, student.name, student.photo_url)
        self.matcher.prepare(self.recognized_students)
        if not self.recognized_students:
            logger.warning(f"No students with photos for class {self.class_id}, faces will stay anonymous")
        logger.info(f"Loaded {len(self.recognized_students)} student profiles for {self.matcher.name} matching")
        return len(self.recognized_students)

    def _attribute(self, behavior_type: WarningType, candidates: List[Candidate], limit: int) -> List[DetectedBehavior]:
        behaviors: List[DetectedBehavior] = []
        for candidate in candidates:
            prior = nearest_prior_face(candidate.center, self.last_faces, self.behavior_radius)
            if prior is None or not prior.student_id:
                continue
            behaviors.append(DetectedBehavior(
                type=behavior_type,
                confidence=candidate.confidence,
                bounding_box=BoundingBox(
                    x=candidate.x, y=candidate.y, width=candidate.width, height=candidate.height
                ),
                student_id=prior.student_id,
                student_name=prior.student_name,
            ))
            if len(behaviors) >= limit:
                break
        return behaviors

    def analyze(self, frame: Frame) -> CycleResult:
        """Scan one frame. Behaviors are attributed to the previous cycle's faces."""
        candidates = scan_faces(frame, self.rng)
        faces = self.matcher.match_faces(frame, candidates, self.recognized_students)

        behaviors: List[DetectedBehavior] = []
        mobile_enabled = self.class_session is None or self.class_session.mobile_detection_enabled
        talking_enabled = self.class_session is not None and self.class_session.talking_detection_enabled
        if mobile_enabled:
            behaviors.extend(self._attribute(WarningType.MOBILE, scan_phones(frame, limit=None), MAX_PHONES))
        if talking_enabled:
            behaviors.extend(self._attribute(WarningType.TALKING, scan_talking(frame, limit=None), MAX_TALKING))

        return CycleResult(class_id=self.class_id, faces=faces, behaviors=behaviors, timestamp=self.clock())

    def commit(self, result: CycleResult) -> None:
        """Apply a cycle's detections. Collaborator failures are logged, never raised."""
        if self.disposed:
            logger.debug(f"Session for class {self.class_id} disposed, dropping cycle")
            return

        self.last_faces = [PriorFace.from_face(face) for face in result.faces]

        recorded: Set[str] = set()
        for face in result.faces:
            try:
                self.service.log_face_detection(
                    self.class_id,
                    BoundingBox(x=face.x, y=face.y, width=face.width, height=face.height),
                    face.confidence,
                    face.student_id,
                )
            except Exception as e:
                logger.error(f"Failed to log face detection: {e}")

            if not face.student_id or face.student_id in recorded:
                continue
            recorded.add(face.student_id)
            self._last_detected[face.student_id] = result.timestamp
            self._absence_warned.discard(face.student_id)
            try:
                self.service.record_detection(
                    face.student_id, self.class_id, self.presence_per_cycle, result.timestamp
                )
            except Exception as e:
                logger.error(f"Failed to record detection for {face.student_id}: {e}")

        for behavior in result.behaviors:
            self.emitter.emit(behavior, self.class_id)

        self._warn_absences(result.timestamp)

    def _warn_absences(self, now: datetime) -> None:
        """One not_detected warning per absence of a student seen earlier in the session."""
        minutes = self.not_detected_after.total_seconds() / 60
        for student_id, last_seen in self._last_detected.items():
            if student_id in self._absence_warned or now - last_seen <= self.not_detected_after:
                continue
            self._absence_warned.add(student_id)
            self.emitter.emit_for(
                student_id,
                self.class_id,
                WarningType.NOT_DETECTED,
                f"not detected for more than {minutes:g} minutes",
            )

    def dispose(self) -> None:
        self.disposed = True
        self.recognized_students.clear()
        self.last_faces = []
        self._last_detected.clear()
        self._absence_warned.clear()
        logger.info(f"Detection session for class {self.class_id} disposed")
