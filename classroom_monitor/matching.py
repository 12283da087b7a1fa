import logging
import math
import random
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from classroom_monitor.exceptions import MatcherConfigurationError
from classroom_monitor.frame import Frame
from classroom_monitor.models import DetectedFace
from classroom_monitor.scanner import Candidate

logger = logging.getLogger(__name__)

ORDINAL_CONFIDENCE_MIN = 75
ORDINAL_CONFIDENCE_MAX = 95  # exclusive


class RosterEntry:
    def __init__(self, student_id: str, name: str, photo_ref: Optional[str] = None):
        self.student_id = student_id
        self.name = name
        self.photo_ref = photo_ref
        self.descriptor: Optional[List[float]] = None

    def __repr__(self):
        return f"RosterEntry({self.student_id!r}, {self.name!r})"


# Roster in enumeration order, keyed by student id
Roster = Dict[str, RosterEntry]


class PriorFace(NamedTuple):
    """Center point and identity of a face from the previous detection cycle."""
    x: float
    y: float
    student_id: Optional[str]
    student_name: Optional[str]

    @classmethod
    def from_face(cls, face: DetectedFace) -> "PriorFace":
        cx, cy = face.center
        return cls(cx, cy, face.student_id, face.student_name)


def nearest_prior_face(
    point: Tuple[float, float],
    prior_faces: Iterable[PriorFace],
    radius: float = 200.0,
) -> Optional[PriorFace]:
    """Closest prior face strictly within ``radius`` of ``point``; ties keep the earlier face."""
    closest = None
    min_distance = math.inf
    for face in prior_faces:
        distance = math.hypot(face.x - point[0], face.y - point[1])
        if distance < min_distance and distance < radius:
            min_distance = distance
            closest = face
    return closest


def unmatched_face(candidate: Candidate) -> DetectedFace:
    return DetectedFace(
        x=candidate.x,
        y=candidate.y,
        width=candidate.width,
        height=candidate.height,
        confidence=candidate.confidence,
    )


class IdentityMatcher:
    """Assigns roster identities to face candidates of one frame."""

    name = "base"

    def prepare(self, roster: Roster) -> None:
        """Called once after every roster refresh."""

    def match_faces(self, frame: Frame, candidates: List[Candidate], roster: Roster) -> List[DetectedFace]:
        raise NotImplementedError


class OrdinalMatcher(IdentityMatcher):
    """
    The i-th candidate in scan order gets the i-th student of the roster.

    There is no spatial or visual correspondence; candidates beyond the
    roster length stay anonymous.
    """

    name = "ordinal"

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def match_faces(self, frame: Frame, candidates: List[Candidate], roster: Roster) -> List[DetectedFace]:
        entries = list(roster.values())
        faces: List[DetectedFace] = []
        for index, candidate in enumerate(candidates):
            if index >= len(entries):
                faces.append(unmatched_face(candidate))
                continue
            entry = entries[index]
            faces.append(DetectedFace(
                x=candidate.x,
                y=candidate.y,
                width=candidate.width,
                height=candidate.height,
                confidence=self.rng.randrange(ORDINAL_CONFIDENCE_MIN, ORDINAL_CONFIDENCE_MAX),
                student_id=entry.student_id,
                student_name=entry.name,
            ))
        return faces


def build_matcher(strategy: str, rng: Optional[random.Random] = None) -> IdentityMatcher:
    """Pick the single matching strategy used for a deployment."""
    if strategy == OrdinalMatcher.name:
        return OrdinalMatcher(rng)
    if strategy == "descriptor":
        # DeepFace is only loaded when a deployment asks for it
        from classroom_monitor.descriptors import DescriptorMatcher
        return DescriptorMatcher()
    raise MatcherConfigurationError(f"Unknown matching strategy: {strategy!r}")
