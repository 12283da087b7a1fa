"""
Heuristic feature scores over a rectangular region of a frame.

Every function is total: regions are clamped to the frame and an empty
region scores 0. Thresholds and weights are fixed; additive scores are
accumulated in tenths so that full marks compare exactly equal to 1.0.
"""

import numpy as np

from classroom_monitor.frame import Frame, Region

FACE_WINDOW = 60
PHONE_WINDOW_WIDTH = 40
PHONE_WINDOW_HEIGHT = 80

DARK_MOUTH_BRIGHTNESS = 60
DARK_EYE_BRIGHTNESS = 100
SCREEN_BRIGHT_PIXEL = 200

# Sub-windows relative to the top-left of a face-sized window: (dx, dy, width, height)
MOUTH_WINDOW = (20, 35, 20, 10)
EYE_WINDOW = (10, 15, 40, 15)


def is_skin_tone(r: int, g: int, b: int) -> bool:
    return (
        r > 95 and g > 40 and b > 20
        and r > g and r > b
        and abs(r - g) > 15
        and max(r, g, b) - min(r, g, b) > 15
    )


def _skin_mask(frame: Frame, region: Region) -> np.ndarray:
    rows, cols = frame.clip(region)
    r = frame.red[rows, cols]
    g = frame.green[rows, cols]
    b = frame.blue[rows, cols]
    spread = np.maximum(np.maximum(r, g), b) - np.minimum(np.minimum(r, g), b)
    return (
        (r > 95) & (g > 40) & (b > 20)
        & (r > g) & (r > b)
        & (np.abs(r - g) > 15)
        & (spread > 15)
    )


def _brightness(frame: Frame, region: Region) -> np.ndarray:
    rows, cols = frame.clip(region)
    return frame.brightness[rows, cols]


def skin_tone_ratio(frame: Frame, region: Region) -> float:
    mask = _skin_mask(frame, region)
    if mask.size == 0:
        return 0.0
    return float(mask.sum()) / mask.size


def face_score(frame: Frame, region: Region) -> float:
    mask = _skin_mask(frame, region)
    if mask.size == 0:
        return 0.0
    skin_pixels = int(mask.sum())
    skin_ratio = skin_pixels / mask.size
    avg_brightness = float(_brightness(frame, region).mean())

    tenths = 0
    if 0.2 < skin_ratio < 0.8:
        tenths += 4
    if 60 < avg_brightness < 200:
        tenths += 3
    if skin_pixels > 200:
        tenths += 3
    return tenths / 10


def screen_brightness_score(frame: Frame, region: Region) -> float:
    brightness = _brightness(frame, region)
    if brightness.size == 0:
        return 0.0
    bright_ratio = float((brightness > SCREEN_BRIGHT_PIXEL).sum()) / brightness.size

    score = 0.0
    if float(brightness.mean()) > 150:
        score += 0.5
    if bright_ratio > 0.3:
        score += 0.5
    return min(score, 1.0)


def _edges_along_row(frame: Frame, y: int, x_start: int, x_stop: int) -> int:
    if y < 0 or y >= frame.height:
        return 0
    return int(frame.edge_mask[y, max(x_start, 0):x_stop].sum())


def _edges_along_column(frame: Frame, x: int, y_start: int, y_stop: int) -> int:
    if x < 0 or x >= frame.width:
        return 0
    return int(frame.edge_mask[max(y_start, 0):y_stop, x].sum())


def rectangular_edge_score(frame: Frame, region: Region) -> float:
    """
    Fraction of edge pixels along the four border lines of the region.

    Border lines are sampled over columns/rows clamped to the frame; the
    far row and column themselves are not clamped, so samples that fall
    outside the frame count as non-edges.
    """
    x, y, width, height = region
    x_stop = min(x + width, frame.width)
    y_stop = min(y + height, frame.height)
    columns = max(x_stop - max(x, 0), 0)
    rows = max(y_stop - max(y, 0), 0)

    total = 2 * columns + 2 * rows
    if total == 0:
        return 0.0

    edges = (
        _edges_along_row(frame, y, x, x_stop)
        + _edges_along_row(frame, y + height - 1, x, x_stop)
        + _edges_along_column(frame, x, y, y_stop)
        + _edges_along_column(frame, x + width - 1, y, y_stop)
    )
    ratio = edges / total
    return ratio if ratio > 0.4 else 0.0


def color_variance(frame: Frame, region: Region) -> float:
    """Mean over pixels of the summed squared r/g/b deviation from the channel means."""
    rows, cols = frame.clip(region)
    r = frame.red[rows, cols]
    if r.size == 0:
        return 0.0
    g = frame.green[rows, cols]
    b = frame.blue[rows, cols]
    return float(
        ((r - r.mean()) ** 2 + (g - g.mean()) ** 2 + (b - b.mean()) ** 2).sum() / r.size
    )


def uniformity_from_variance(variance: float) -> float:
    if variance < 5000:
        return 1.0
    return max(0.0, 1.0 - variance / 10000)


def color_uniformity_score(frame: Frame, region: Region) -> float:
    return uniformity_from_variance(color_variance(frame, region))


def aspect_ratio_score(height: float, width: float) -> float:
    if width <= 0:
        return 0.0
    ratio = height / width
    return 1.0 if 1.5 <= ratio <= 2.5 else 0.0


def phone_score(frame: Frame, region: Region) -> float:
    return (
        screen_brightness_score(frame, region) * 0.4
        + rectangular_edge_score(frame, region) * 0.3
        + color_uniformity_score(frame, region) * 0.2
        + aspect_ratio_score(PHONE_WINDOW_HEIGHT, PHONE_WINDOW_WIDTH) * 0.1
    )


def mouth_region_score(frame: Frame, region: Region) -> float:
    mouth = region.offset(*MOUTH_WINDOW)
    rows, cols = frame.clip(mouth)
    brightness = frame.brightness[rows, cols]
    total = brightness.size
    if total == 0:
        return 0.0

    dark_ratio = float((brightness < DARK_MOUTH_BRIGHTNESS).sum()) / total
    skin_ratio = float(_skin_mask(frame, mouth).sum()) / total

    # Local contrast against the upper-left neighbor, for pixels that have one
    r0, c0 = max(rows.start, 1), max(cols.start, 1)
    contrast_sum = 0.0
    if r0 < rows.stop and c0 < cols.stop:
        here = frame.brightness[r0:rows.stop, c0:cols.stop]
        upper_left = frame.brightness[r0 - 1:rows.stop - 1, c0 - 1:cols.stop - 1]
        contrast_sum = float(np.abs(here - upper_left).sum())
    avg_contrast = contrast_sum / total

    tenths = 0
    if 0.15 < dark_ratio < 0.6:
        tenths += 4
    if skin_ratio > 0.3:
        tenths += 3
    if avg_contrast > 20:
        tenths += 3
    return min(tenths / 10, 1.0)


def _mean_brightness(frame: Frame, region: Region) -> float:
    brightness = _brightness(frame, region)
    return float(brightness.mean()) if brightness.size else 0.0


def face_orientation_score(frame: Frame, region: Region) -> float:
    half = region.width // 2
    left = _mean_brightness(frame, Region(region.x, region.y, half, region.height))
    right = _mean_brightness(frame, Region(region.x + half, region.y, region.width - half, region.height))
    asymmetry = abs(left - right)
    return min(asymmetry, 1.0) if asymmetry > 0.2 else 0.0


def eye_region_score(frame: Frame, region: Region) -> float:
    brightness = _brightness(frame, region.offset(*EYE_WINDOW))
    if brightness.size == 0:
        return 0.0
    dark_ratio = float((brightness < DARK_EYE_BRIGHTNESS).sum()) / brightness.size
    return dark_ratio if 0.1 < dark_ratio < 0.4 else 0.0


def talking_score(frame: Frame, region: Region) -> float:
    return (
        mouth_region_score(frame, region) * 0.6
        + face_orientation_score(frame, region) * 0.2
        + eye_region_score(frame, region) * 0.2
    )
