import math
import random
from typing import List, NamedTuple, Optional

from classroom_monitor.frame import Frame, Region
from classroom_monitor.scoring import (
    FACE_WINDOW,
    PHONE_WINDOW_HEIGHT,
    PHONE_WINDOW_WIDTH,
    face_score,
    phone_score,
    talking_score,
)

FACE_STRIDE = 20
FACE_THRESHOLD = 0.6
FACE_SUPPRESSION_DISTANCE = 40
MAX_FACES = 6
FACE_BASE_WIDTH = 80
FACE_BASE_HEIGHT = 100
FACE_JITTER = 20

PHONE_STRIDE = 20
PHONE_THRESHOLD = 0.8
MAX_PHONES = 2

TALKING_STRIDE = 30
TALKING_THRESHOLD = 0.7
MAX_TALKING = 1


class Candidate(NamedTuple):
    x: float
    y: float
    width: float
    height: float
    score: float

    @property
    def center(self):
        return self.x + self.width / 2, self.y + self.height / 2

    @property
    def confidence(self) -> int:
        return min(int(math.floor(self.score * 100)), 100)


def scan_faces(frame: Frame, rng: random.Random) -> List[Candidate]:
    """
    Slide a 60x60 window over the frame and keep face-like blocks.

    Suppression is greedy in raster order: a block is dropped when its
    top-left lies within 40px on both axes of an already accepted block.
    Box sizes get random jitter, drawn in acceptance order from ``rng``.
    """
    faces: List[Candidate] = []
    for y in range(0, frame.height - FACE_WINDOW, FACE_STRIDE):
        for x in range(0, frame.width - FACE_WINDOW, FACE_STRIDE):
            score = face_score(frame, Region(x, y, FACE_WINDOW, FACE_WINDOW))
            if score <= FACE_THRESHOLD:
                continue
            overlaps = any(
                abs(face.x - x) < FACE_SUPPRESSION_DISTANCE
                and abs(face.y - y) < FACE_SUPPRESSION_DISTANCE
                for face in faces
            )
            if not overlaps:
                faces.append(Candidate(
                    x=x,
                    y=y,
                    width=FACE_BASE_WIDTH + rng.random() * FACE_JITTER,
                    height=FACE_BASE_HEIGHT + rng.random() * FACE_JITTER,
                    score=score,
                ))
    return faces[:MAX_FACES]


def scan_phones(frame: Frame, limit: Optional[int] = MAX_PHONES) -> List[Candidate]:
    phones: List[Candidate] = []
    for y in range(0, frame.height - PHONE_WINDOW_HEIGHT, PHONE_STRIDE):
        for x in range(0, frame.width - PHONE_WINDOW_WIDTH, PHONE_STRIDE):
            score = phone_score(frame, Region(x, y, PHONE_WINDOW_WIDTH, PHONE_WINDOW_HEIGHT))
            if score > PHONE_THRESHOLD:
                phones.append(Candidate(x, y, PHONE_WINDOW_WIDTH, PHONE_WINDOW_HEIGHT, score))
    return phones if limit is None else phones[:limit]


def scan_talking(frame: Frame, limit: Optional[int] = MAX_TALKING) -> List[Candidate]:
    talking: List[Candidate] = []
    for y in range(0, frame.height - FACE_WINDOW, TALKING_STRIDE):
        for x in range(0, frame.width - FACE_WINDOW, TALKING_STRIDE):
            score = talking_score(frame, Region(x, y, FACE_WINDOW, FACE_WINDOW))
            if score > TALKING_THRESHOLD:
                talking.append(Candidate(x, y, FACE_WINDOW, FACE_WINDOW, score))
    return talking if limit is None else talking[:limit]
