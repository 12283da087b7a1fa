import pytest

pytest.importorskip("deepface")

from classroom_monitor.descriptors import DescriptorStore  # noqa: E402
from classroom_monitor.models import Student  # noqa: E402
from precompute_descriptors import precompute_descriptors  # noqa: E402
from conftest import png_base64  # noqa: E402


def test_precompute_counts(store, tmp_path):
    store.save_student(Student(id="s1", name="Ada", student_id="STU-001", photo_url=png_base64()))
    store.save_student(Student(id="s2", name="Ben", student_id="STU-002", photo_url=png_base64()))
    store.save_student(Student(id="s3", name="Cy", student_id="STU-003"))
    store.save_student(Student(id="s4", name="Dee", student_id="STU-004", photo_url=png_base64(), is_active=False))
    descriptors = DescriptorStore(str(tmp_path))
    descriptors.save("s2", [0.5, 0.5])

    counts = precompute_descriptors(store, descriptors, extractor=lambda image: [1.0, 0.0])

    assert counts == (1, 1, 1)
    assert DescriptorStore(str(tmp_path)).load() == {"s1": [1.0, 0.0], "s2": [0.5, 0.5]}


def test_precompute_force_and_no_face(store, tmp_path):
    store.save_student(Student(id="s1", name="Ada", student_id="STU-001", photo_url=png_base64()))
    descriptors = DescriptorStore(str(tmp_path))
    descriptors.save("s1", [0.5, 0.5])

    counts = precompute_descriptors(store, descriptors, force=True, extractor=lambda image: None)

    assert counts == (0, 0, 1)
