import threading
from datetime import date

import numpy as np
import pytest

from school_attendance.database import SchoolDatabase

SCHOOL_DAY = date(2024, 3, 4)


class FakeExtractor:
    """Returns a fixed embedding, or one picked by the frame's top-left pixel value."""

    def __init__(self, embedding=None, by_marker=None):
        self.embedding = None if embedding is None else np.asarray(embedding, dtype=np.float32)
        self.by_marker = by_marker or {}
        self.calls = 0

    def extract(self, image):
        self.calls += 1
        marker = int(image[0, 0, 0])
        if marker in self.by_marker:
            return np.asarray(self.by_marker[marker], dtype=np.float32)
        return self.embedding


class BlockingExtractor(FakeExtractor):
    def __init__(self, embedding):
        super().__init__(embedding)
        self.entered = threading.Event()
        self.release = threading.Event()

    def extract(self, image):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().extract(image)


class FakeCamera:
    def __init__(self, frames=None, error=None):
        self.frames = list(frames or [])
        self.error = error
        self.reads = 0

    def read(self):
        self.reads += 1
        if self.error is not None:
            raise self.error
        if self.frames:
            return self.frames.pop(0)
        return make_frame()


def make_frame(marker: int = 0) -> np.ndarray:
    frame = np.full((48, 48, 3), 127, dtype=np.uint8)
    frame[0, 0, 0] = marker
    return frame


@pytest.fixture
def db(tmp_path):
    return SchoolDatabase(tmp_path / "school.db")


@pytest.fixture
def enrolled_db(db):
    db.upsert_student("stu-a", "Ada Lovelace", "IDX-001")
    db.upsert_face_embedding("stu-a", np.array([1.0, 0.0, 0.0], dtype=np.float32))
    db.upsert_student("stu-b", "Grace Hopper", "IDX-002")
    db.upsert_face_embedding("stu-b", np.array([0.0, 1.0, 0.0], dtype=np.float32))
    return db
