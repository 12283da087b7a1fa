import random

from classroom_monitor.frame import Frame
from classroom_monitor.scanner import (
    MAX_FACES,
    Candidate,
    scan_faces,
    scan_phones,
    scan_talking,
)
from conftest import SKIN, blank_pixels, paint, striped_pixels


def test_scan_faces_finds_separated_patches(face_frame, rng):
    faces = scan_faces(face_frame, rng)

    assert len(faces) == 2
    assert (faces[0].x, faces[0].y) == (0, 0)
    assert faces[0].score == 1.0
    assert (faces[1].x, faces[1].y) == (120, 100)


def test_scan_faces_box_jitter(face_frame, rng):
    for face in scan_faces(face_frame, rng):
        assert 80 <= face.width < 100
        assert 100 <= face.height < 120


def test_scan_faces_deterministic_with_seed(face_frame):
    first = scan_faces(face_frame, random.Random(99))
    second = scan_faces(face_frame, random.Random(99))
    assert first == second


def test_scan_faces_suppresses_neighbours():
    pixels = blank_pixels(200, 200)
    paint(pixels, 0, 0, 50, 50, SKIN)
    faces = scan_faces(Frame(pixels), random.Random(0))

    # Windows at (20, 0), (0, 20) and (20, 20) also clear the threshold
    # but lie within 40px of the accepted (0, 0) block
    assert [(f.x, f.y) for f in faces] == [(0, 0)]


def test_scan_faces_caps_at_six():
    pixels = blank_pixels(400, 400)
    for y in range(0, 400, 100):
        for x in range(0, 400, 100):
            paint(pixels, x, y, 50, 50, SKIN)

    faces = scan_faces(Frame(pixels), random.Random(0))

    assert len(faces) == MAX_FACES
    # Raster order: the first row of patches comes first
    assert faces[0].y <= faces[-1].y


def test_scan_faces_uniform_skin_has_no_faces():
    assert scan_faces(Frame(blank_pixels(200, 200, SKIN)), random.Random(0)) == []


def test_scan_faces_frame_smaller_than_window():
    assert scan_faces(Frame(blank_pixels(50, 50, SKIN)), random.Random(0)) == []


def test_scan_phones_caps_and_raster_order():
    frame = Frame(striped_pixels(120, 120))

    phones = scan_phones(frame)
    every_phone = scan_phones(frame, limit=None)

    assert [(p.x, p.y) for p in phones] == [(0, 0), (20, 0)]
    assert len(every_phone) == 8
    assert all(p.score > 0.8 for p in every_phone)
    assert all((p.width, p.height) == (40, 80) for p in every_phone)


def test_black_frame_has_no_behaviours():
    frame = Frame(blank_pixels(200, 200))
    assert scan_phones(frame) == []
    assert scan_talking(frame) == []


def test_candidate_confidence_is_floored_percentage():
    assert Candidate(0, 0, 40, 80, 0.876).confidence == 87
    assert Candidate(0, 0, 40, 80, 1.0).confidence == 100
    assert Candidate(10, 20, 40, 80, 0.9).center == (30, 60)
