import base64
import random
from datetime import datetime, timedelta
from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from classroom_monitor.attendance import AttendanceService
from classroom_monitor.frame import Frame
from classroom_monitor.models import ClassSession, Student
from classroom_monitor.storage import MemoryStore

SKIN = (200, 120, 80)
BLACK = (0, 0, 0)
WHITE = (255, 255, 255)


def blank_pixels(width, height, color=BLACK):
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[:, :, :3] = color
    pixels[:, :, 3] = 255
    return pixels


def paint(pixels, x, y, width, height, color):
    pixels[y:y + height, x:x + width, :3] = color
    return pixels


def striped_pixels(width, height, bright=255, dim=215):
    """Alternating bright/dim columns: every interior pixel is an edge pixel."""
    pixels = blank_pixels(width, height, (bright,) * 3)
    pixels[:, 1::2, :3] = dim
    return pixels


def png_base64(width=8, height=6, color=SKIN, data_url=False):
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode()
    return f"data:image/png;base64,{encoded}" if data_url else encoded


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 3, 4, 9, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def service(store, clock):
    return AttendanceService(store, clock=clock)


@pytest.fixture
def add_class(store):
    def _add(class_id="math", duration=60, **fields):
        fields.setdefault("name", class_id.title())
        return store.save_class(ClassSession(id=class_id, duration=duration, **fields))
    return _add


@pytest.fixture
def add_students(store):
    def _add(*names, with_photo=True):
        students = []
        for i, name in enumerate(names, 1):
            students.append(store.save_student(Student(
                id=f"s{i}",
                name=name,
                student_id=f"STU-{i:03d}",
                photo_url=png_base64() if with_photo else None,
            )))
        return students
    return _add


@pytest.fixture
def face_frame():
    """Two well separated skin patches on black."""
    pixels = blank_pixels(200, 200)
    paint(pixels, 0, 0, 50, 50, SKIN)
    paint(pixels, 140, 140, 40, 40, SKIN)
    return Frame(pixels)
