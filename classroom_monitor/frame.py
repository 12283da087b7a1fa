import base64
import threading
from datetime import datetime
from io import BytesIO
from typing import NamedTuple, Optional, Tuple

import numpy as np
from PIL import Image

from classroom_monitor.exceptions import FrameUnavailable

# Neighbor brightness difference that makes a pixel count toward an edge
EDGE_DELTA = 30
EDGE_MIN_NEIGHBORS = 2


class Region(NamedTuple):
    x: int
    y: int
    width: int
    height: int

    def offset(self, dx: int, dy: int, width: int, height: int) -> "Region":
        return Region(self.x + dx, self.y + dy, width, height)


class Frame:
    """
    A still frame as RGB planes plus derived per-pixel brightness.

    Pixels are stored row-major as (height, width, channels) uint8; an
    alpha channel, if present, is ignored by every score.
    """

    def __init__(self, pixels: np.ndarray):
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise ValueError(f"Expected (H, W, 3|4) pixels, got shape {pixels.shape}")
        rgb = pixels[:, :, :3].astype(np.int32)
        self.height, self.width = rgb.shape[:2]
        self.red = rgb[:, :, 0]
        self.green = rgb[:, :, 1]
        self.blue = rgb[:, :, 2]
        self.brightness = (self.red + self.green + self.blue) / 3.0
        self._edge_mask: Optional[np.ndarray] = None

    @classmethod
    def from_rgba_bytes(cls, data: bytes, width: int, height: int) -> "Frame":
        buffer = np.frombuffer(data, dtype=np.uint8)
        if buffer.size != width * height * 4:
            raise ValueError(f"RGBA buffer of {buffer.size} bytes does not match {width}x{height}")
        return cls(buffer.reshape(height, width, 4))

    @classmethod
    def from_image(cls, image: Image.Image) -> "Frame":
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        return cls(np.array(image))

    @classmethod
    def from_base64(cls, base64_string: str) -> "Frame":
        """Decode a base64 image, with or without a data URL prefix."""
        if "," in base64_string:
            base64_string = base64_string.split(",")[1]
        image = Image.open(BytesIO(base64.b64decode(base64_string)))
        return cls.from_image(image)

    def clip(self, region: Region) -> Tuple[slice, slice]:
        """Row and column slices of ``region`` clamped to the frame."""
        y0 = min(max(region.y, 0), self.height)
        x0 = min(max(region.x, 0), self.width)
        y1 = min(max(region.y + region.height, y0), self.height)
        x1 = min(max(region.x + region.width, x0), self.width)
        return slice(y0, y1), slice(x0, x1)

    def crop_rgb(self, region: Region) -> np.ndarray:
        rows, cols = self.clip(region)
        return np.stack(
            [self.red[rows, cols], self.green[rows, cols], self.blue[rows, cols]], axis=-1
        ).astype(np.uint8)

    @property
    def edge_mask(self) -> np.ndarray:
        """
        True where a pixel's brightness differs by more than EDGE_DELTA from
        at least EDGE_MIN_NEIGHBORS of its 4-neighbors. Border pixels are
        never edges.
        """
        if self._edge_mask is None:
            mask = np.zeros((self.height, self.width), dtype=bool)
            if self.height > 2 and self.width > 2:
                b = self.brightness
                center = b[1:-1, 1:-1]
                count = (
                    (np.abs(center - b[1:-1, :-2]) > EDGE_DELTA).astype(np.int8)
                    + (np.abs(center - b[1:-1, 2:]) > EDGE_DELTA)
                    + (np.abs(center - b[:-2, 1:-1]) > EDGE_DELTA)
                    + (np.abs(center - b[2:, 1:-1]) > EDGE_DELTA)
                )
                mask[1:-1, 1:-1] = count >= EDGE_MIN_NEIGHBORS
            self._edge_mask = mask
        return self._edge_mask


class StaticFrameSource:
    """Always returns the same frame (fixtures, recorded stills)."""

    def __init__(self, frame: Optional[Frame]):
        self.frame = frame

    def get_frame(self) -> Frame:
        if self.frame is None:
            raise FrameUnavailable("No frame loaded")
        return self.frame


class LatestFrameSource:
    """Holds the most recently pushed frame, e.g. from an upload endpoint."""

    def __init__(self):
        self._lock = threading.Lock()
        self._frame: Optional[Frame] = None
        self.updated_at = datetime.utcnow()

    def push(self, frame: Frame) -> None:
        with self._lock:
            self._frame = frame
            self.updated_at = datetime.utcnow()

    def clear(self) -> None:
        with self._lock:
            self._frame = None

    def get_frame(self) -> Frame:
        with self._lock:
            frame = self._frame
        if frame is None:
            raise FrameUnavailable("No frame received yet")
        return frame
