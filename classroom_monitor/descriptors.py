import os
import pickle
import base64
import numpy as np
from typing import Callable, Dict, List, Optional
from io import BytesIO
from PIL import Image
from deepface import DeepFace
from classroom_monitor.config import settings
from classroom_monitor.frame import Frame, Region
from classroom_monitor.matching import IdentityMatcher, Roster, unmatched_face
from classroom_monitor.models import DetectedFace
from classroom_monitor.scanner import Candidate
import logging

logger = logging.getLogger(__name__)

Extractor = Callable[[np.ndarray], Optional[List[float]]]


def photo_to_array(photo_ref: str) -> np.ndarray:
    """Convert a base64 photo (data URL accepted) to an RGB numpy array."""
    if "," in photo_ref:
        photo_ref = photo_ref.split(",")[1]
    image = Image.open(BytesIO(base64.b64decode(photo_ref)))
    if image.mode != "RGB":
        image = image.convert("RGB")
    return np.array(image)


def compute_cosine_distance(descriptor1: List[float], descriptor2: List[float]) -> float:
    """Calculate cosine distance between two descriptors."""
    a = np.array(descriptor1)
    b = np.array(descriptor2)
    return float(1 - (np.dot(a, b) / (np.linalg.norm(a) * np.linalg.norm(b))))


def extract_descriptor(image: np.ndarray, enforce_detection: bool = True) -> Optional[List[float]]:
    """Extract a face descriptor using DeepFace, or None when no face is found."""
    try:
        embedding_objs = DeepFace.represent(
            img_path=image,
            model_name=settings.MODEL_NAME,
            enforce_detection=enforce_detection,
            detector_backend=settings.DETECTOR_BACKEND,
        )
        if not embedding_objs:
            logger.warning("No face detected")
            return None
        # The most prominent face comes first
        return embedding_objs[0]["embedding"]
    except ValueError as e:
        logger.warning(f"Face detection failed: {e}")
        return None
    except Exception as e:
        logger.error(f"Error extracting descriptor: {e}")
        return None


def _extract_crop(image: np.ndarray) -> Optional[List[float]]:
    # Crops are already face-sized, DeepFace must not look for a face again
    return extract_descriptor(image, enforce_detection=False)


class DescriptorStore:
    """Per-student descriptors persisted as pickles in DESCRIPTORS_DIR."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory or settings.DESCRIPTORS_DIR
        self.descriptors: Dict[str, List[float]] = {}

    def load(self) -> Dict[str, List[float]]:
        self.descriptors = {}
        if not os.path.exists(self.directory):
            os.makedirs(self.directory)
            return self.descriptors

        for filename in os.listdir(self.directory):
            if filename.endswith(".pkl"):
                student_id = filename[:-4]
                try:
                    with open(os.path.join(self.directory, filename), "rb") as f:
                        self.descriptors[student_id] = pickle.load(f)
                except Exception as e:
                    logger.error(f"Failed to load descriptor for {student_id}: {e}")

        logger.info(f"Loaded {len(self.descriptors)} pre-computed descriptors from disk")
        return self.descriptors

    def exists(self, student_id: str) -> bool:
        return os.path.exists(os.path.join(self.directory, f"{student_id}.pkl"))

    def save(self, student_id: str, descriptor: List[float]) -> bool:
        os.makedirs(self.directory, exist_ok=True)
        file_path = os.path.join(self.directory, f"{student_id}.pkl")
        try:
            with open(file_path, "wb") as f:
                pickle.dump(descriptor, f)
            self.descriptors[student_id] = descriptor
            return True
        except Exception as e:
            logger.error(f"Failed to save descriptor for {student_id}: {e}")
            return False


class DescriptorMatcher(IdentityMatcher):
    """
    Biometric matching: each face crop is embedded and compared with every
    roster descriptor; the closest one is accepted when its cosine distance
    is below the recognition threshold.

    Failures to embed a crop leave the face anonymous. There is no fallback
    to ordinal matching.
    """

    name = "descriptor"

    def __init__(
        self,
        store: Optional[DescriptorStore] = None,
        extractor: Optional[Extractor] = None,
        photo_extractor: Optional[Extractor] = None,
        threshold: Optional[float] = None,
    ):
        self.store = store or DescriptorStore()
        self.extractor = extractor or _extract_crop
        self.photo_extractor = photo_extractor or extract_descriptor
        self.threshold = settings.RECOGNITION_THRESHOLD if threshold is None else threshold

    def prepare(self, roster: Roster) -> None:
        """Attach a descriptor to every roster entry, pre-computed or from its photo."""
        stored = self.store.load()
        extracted = 0
        for entry in roster.values():
            if entry.student_id in stored:
                entry.descriptor = stored[entry.student_id]
                continue
            if not entry.photo_ref:
                continue
            try:
                entry.descriptor = self.photo_extractor(photo_to_array(entry.photo_ref))
            except Exception as e:
                logger.error(f"Could not read photo for {entry.name}: {e}")
                continue
            if entry.descriptor is not None:
                extracted += 1
            else:
                logger.warning(f"Could not get descriptor for {entry.name}")
        logger.info(f"Descriptors ready: {len(stored)} pre-computed, {extracted} extracted from photos")

    def match_faces(self, frame: Frame, candidates: List[Candidate], roster: Roster) -> List[DetectedFace]:
        faces: List[DetectedFace] = []
        for candidate in candidates:
            region = Region(int(candidate.x), int(candidate.y), int(candidate.width), int(candidate.height))
            descriptor = self.extractor(frame.crop_rgb(region))
            if descriptor is None:
                faces.append(unmatched_face(candidate))
                continue

            best_entry = None
            min_distance = 1.0
            for entry in roster.values():
                if entry.descriptor is None:
                    continue
                distance = compute_cosine_distance(descriptor, entry.descriptor)
                if distance < min_distance:
                    min_distance = distance
                    best_entry = entry

            if best_entry is None or min_distance >= self.threshold:
                logger.debug(f"No match for face at ({candidate.x}, {candidate.y}), best distance {min_distance:.4f}")
                faces.append(unmatched_face(candidate))
                continue

            faces.append(DetectedFace(
                x=candidate.x,
                y=candidate.y,
                width=candidate.width,
                height=candidate.height,
                confidence=max(0, min(100, int(round((1 - min_distance) * 100)))),
                student_id=best_entry.student_id,
                student_name=best_entry.name,
            ))
        return faces
