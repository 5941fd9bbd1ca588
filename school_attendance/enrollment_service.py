from datetime import datetime
from typing import Iterable, List, Optional

import numpy as np

from .camera import FrameSource
from .config import (
    DUPLICATE_FACE_SIMILARITY_THRESHOLD,
    ENROLLMENT_MIN_SAMPLES,
    ENROLLMENT_SAMPLES,
    SAMPLE_EVERY_N_FRAMES,
)
from .database import SchoolDatabase
from .exceptions import AttendanceError, DatabaseError, MatchError
from .face_engine import EmbeddingExtractor
from .logger import setup_logger
from .matcher import cosine_similarity


class EnrollmentService:
    def __init__(
        self,
        db: SchoolDatabase,
        extractor: EmbeddingExtractor,
        min_samples: int = ENROLLMENT_MIN_SAMPLES,
        duplicate_threshold: float = DUPLICATE_FACE_SIMILARITY_THRESHOLD,
    ):
        self.db = db
        self.extractor = extractor
        self.min_samples = max(1, min_samples)
        self.duplicate_threshold = duplicate_threshold
        self.logger = setup_logger(self.__class__.__name__)

    def enroll_student(
        self,
        student_id: str,
        full_name: str,
        images: Iterable[np.ndarray],
        index_number: str = "",
        image_url: Optional[str] = None,
    ) -> np.ndarray:
        student_id = student_id.strip()
        full_name = full_name.strip()
        if not student_id:
            raise AttendanceError("student_id cannot be empty.")
        if not full_name:
            raise AttendanceError("full_name cannot be empty.")

        start_time = datetime.now()
        embeddings = [self.extractor.extract(image) for image in images]
        if len(embeddings) < self.min_samples:
            raise AttendanceError(
                f"At least {self.min_samples} face image(s) required, got {len(embeddings)}."
            )

        encoding = self._average_encoding(embeddings)
        self._validate_identity_uniqueness(encoding, student_id)

        try:
            self.db.upsert_student(student_id=student_id, full_name=full_name, index_number=index_number)
            self.db.upsert_face_embedding(student_id=student_id, embedding=encoding, image_url=image_url)
        except DatabaseError as exc:
            raise AttendanceError(f"Enrollment failed for {student_id}: {exc}") from exc

        elapsed = (datetime.now() - start_time).total_seconds()
        self.logger.info(
            "Student %s enrolled with %d samples in %.1fs",
            student_id,
            len(embeddings),
            elapsed,
        )
        return encoding

    @staticmethod
    def capture_samples(
        camera: FrameSource,
        count: int = ENROLLMENT_SAMPLES,
        every_n_frames: int = SAMPLE_EVERY_N_FRAMES,
    ) -> List[np.ndarray]:
        frames: List[np.ndarray] = []
        frame_index = 0
        step = max(1, every_n_frames)
        while len(frames) < count:
            frame = camera.read()
            frame_index += 1
            if frame_index % step == 0:
                frames.append(frame.copy())
        return frames

    @staticmethod
    def _average_encoding(embeddings: List[np.ndarray]) -> np.ndarray:
        dims = {int(np.asarray(emb).size) for emb in embeddings}
        if len(dims) != 1:
            raise AttendanceError(f"Sample embeddings have inconsistent dimensions: {sorted(dims)}.")

        matrix = np.vstack(embeddings).astype(np.float32)
        vector = matrix.mean(axis=0)
        norm = np.linalg.norm(vector)
        if norm == 0.0:
            raise AttendanceError("Unable to normalize average encoding.")
        return vector / norm

    def _validate_identity_uniqueness(self, encoding: np.ndarray, student_id: str) -> None:
        try:
            gallery = self.db.list_gallery()
        except DatabaseError as exc:
            raise MatchError(f"Unable to read the face gallery: {exc}") from exc

        for entry in gallery:
            if entry.student_id == student_id:
                continue
            try:
                similarity = cosine_similarity(encoding, entry.embedding)
            except ValueError:
                continue
            if similarity >= self.duplicate_threshold:
                raise AttendanceError(
                    f"Captured face is too similar to enrolled student '{entry.display_name}' "
                    f"({entry.student_id}). Use a different photo or capture cleaner samples."
                )
