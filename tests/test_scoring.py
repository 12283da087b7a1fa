import pytest

from classroom_monitor.frame import Frame, Region
from classroom_monitor.scoring import (
    aspect_ratio_score,
    color_uniformity_score,
    eye_region_score,
    face_orientation_score,
    face_score,
    is_skin_tone,
    mouth_region_score,
    phone_score,
    rectangular_edge_score,
    screen_brightness_score,
    skin_tone_ratio,
    talking_score,
    uniformity_from_variance,
)
from conftest import BLACK, SKIN, WHITE, blank_pixels, paint, striped_pixels


def test_skin_tone_rule():
    assert is_skin_tone(*SKIN)
    assert not is_skin_tone(120, 120, 120)
    assert not is_skin_tone(90, 50, 30)  # red too low
    assert not is_skin_tone(150, 140, 60)  # red and green too close


def test_face_score_full_marks_is_exactly_one():
    pixels = blank_pixels(60, 60)
    paint(pixels, 0, 0, 30, 60, SKIN)
    frame = Frame(pixels)

    assert skin_tone_ratio(frame, Region(0, 0, 60, 60)) == 0.5
    assert face_score(frame, Region(0, 0, 60, 60)) == 1.0


def test_face_score_black_frame_is_zero():
    frame = Frame(blank_pixels(60, 60))
    assert face_score(frame, Region(0, 0, 60, 60)) == 0.0


def test_face_score_uniform_skin_misses_ratio_band():
    frame = Frame(blank_pixels(60, 60, SKIN))
    # Ratio 1.0 is outside (0.2, 0.8): only brightness and pixel count score
    assert face_score(frame, Region(0, 0, 60, 60)) == pytest.approx(0.6)


def test_empty_region_scores_zero():
    frame = Frame(blank_pixels(60, 60, SKIN))
    outside = Region(100, 100, 60, 60)
    assert face_score(frame, outside) == 0.0
    assert skin_tone_ratio(frame, outside) == 0.0
    assert screen_brightness_score(frame, outside) == 0.0
    assert rectangular_edge_score(frame, outside) == 0.0
    assert mouth_region_score(frame, outside) == 0.0
    assert eye_region_score(frame, outside) == 0.0


def test_screen_brightness():
    assert screen_brightness_score(Frame(blank_pixels(40, 80, WHITE)), Region(0, 0, 40, 80)) == 1.0
    assert screen_brightness_score(Frame(blank_pixels(40, 80, BLACK)), Region(0, 0, 40, 80)) == 0.0


@pytest.mark.parametrize("variance, expected", [
    (0, 1.0),
    (4999, 1.0),
    (5000, 0.5),
    (7500, 0.25),
    (10000, 0.0),
    (25000, 0.0),
])
def test_uniformity_from_variance(variance, expected):
    assert uniformity_from_variance(variance) == pytest.approx(expected)


def test_uniformity_never_increases_with_variance():
    values = [uniformity_from_variance(v) for v in range(0, 12000, 250)]
    assert all(a >= b for a, b in zip(values, values[1:]))


def test_uniform_region_is_fully_uniform():
    frame = Frame(blank_pixels(40, 80, (30, 60, 90)))
    assert color_uniformity_score(frame, Region(0, 0, 40, 80)) == 1.0


def test_aspect_ratio_score():
    assert aspect_ratio_score(80, 40) == 1.0
    assert aspect_ratio_score(60, 40) == 1.0
    assert aspect_ratio_score(40, 40) == 0.0
    assert aspect_ratio_score(80, 0) == 0.0


def test_rectangular_edge_score_interior_window():
    frame = Frame(striped_pixels(120, 120))
    assert rectangular_edge_score(frame, Region(20, 20, 40, 80)) == 1.0


def test_rectangular_edge_score_frame_border_never_edges():
    frame = Frame(striped_pixels(120, 120))
    # Top row and left column lie on the frame border; bottom row and
    # right column lose only their sample on that border
    assert rectangular_edge_score(frame, Region(0, 0, 40, 80)) == pytest.approx((39 + 79) / 240)


def test_rectangular_edge_score_below_cutoff_is_zero():
    frame = Frame(blank_pixels(120, 120, WHITE))
    assert rectangular_edge_score(frame, Region(20, 20, 40, 80)) == 0.0


def test_phone_score_bright_striped_screen():
    frame = Frame(striped_pixels(120, 120))
    assert phone_score(frame, Region(20, 20, 40, 80)) == pytest.approx(1.0)


def test_phone_score_dark_region_only_gets_uniformity_and_aspect():
    frame = Frame(blank_pixels(120, 120))
    assert phone_score(frame, Region(20, 20, 40, 80)) == pytest.approx(0.3)


def _mouth_frame():
    pixels = blank_pixels(60, 60, SKIN)
    # Three dark rows at the top of the mouth window (20, 35, 20x10)
    paint(pixels, 20, 35, 20, 3, BLACK)
    return Frame(pixels)


def test_mouth_region_score_full_marks():
    assert mouth_region_score(_mouth_frame(), Region(0, 0, 60, 60)) == 1.0


def test_mouth_region_score_flat_skin():
    frame = Frame(blank_pixels(60, 60, SKIN))
    # No dark pixels, no contrast: only the skin term
    assert mouth_region_score(frame, Region(0, 0, 60, 60)) == pytest.approx(0.3)


def test_face_orientation_score():
    pixels = blank_pixels(60, 60, WHITE)
    paint(pixels, 0, 0, 30, 60, BLACK)
    assert face_orientation_score(Frame(pixels), Region(0, 0, 60, 60)) == 1.0
    assert face_orientation_score(Frame(blank_pixels(60, 60, WHITE)), Region(0, 0, 60, 60)) == 0.0


def test_eye_region_score():
    pixels = blank_pixels(60, 60, WHITE)
    # 3 of the 15 rows of the eye window (10, 15, 40x15) are dark
    paint(pixels, 10, 15, 40, 3, BLACK)
    assert eye_region_score(Frame(pixels), Region(0, 0, 60, 60)) == pytest.approx(0.2)


def test_eye_region_score_outside_band_is_zero():
    pixels = blank_pixels(60, 60, WHITE)
    paint(pixels, 10, 15, 40, 15, BLACK)
    assert eye_region_score(Frame(pixels), Region(0, 0, 60, 60)) == 0.0


def test_talking_score_combines_parts():
    # Symmetric dark band, bright eyes: only the mouth contributes
    assert talking_score(_mouth_frame(), Region(0, 0, 60, 60)) == pytest.approx(0.6)
