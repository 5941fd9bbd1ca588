import threading
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from .attendance_service import AttendanceService
from .camera import FrameSource
from .config import RECOGNITION_THRESHOLD
from .database import AttendanceRecord, GalleryEntry, SchoolDatabase
from .exceptions import (
    AttendanceError,
    CameraError,
    DatabaseError,
    MatchError,
    PipelineBusyError,
    RecognitionCancelled,
)
from .face_engine import EmbeddingExtractor
from .logger import setup_logger
from .matcher import Matched, MatchResult, match


class PipelineState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    EXTRACTING = "extracting"
    MATCHING = "matching"
    RECORDING = "recording"
    FAILED = "failed"


@dataclass
class RecognitionOutcome:
    match: MatchResult
    record: Optional[AttendanceRecord]
    message: str

    @property
    def marked(self) -> bool:
        return self.record is not None


class RecognitionService:
    """Runs capture, extraction, matching and recording for one camera session.

    Only one attempt runs at a time; a second request while one is in flight is
    rejected with ``PipelineBusyError``. Any stage failure moves the pipeline to
    FAILED, then back to IDLE, and re-raises. Attendance is written only in the
    RECORDING stage, which cancellation never interrupts.
    """

    def __init__(
        self,
        db: SchoolDatabase,
        extractor: EmbeddingExtractor,
        camera: Optional[FrameSource] = None,
        attendance: Optional[AttendanceService] = None,
        threshold: float = RECOGNITION_THRESHOLD,
        today: Callable[[], date] = date.today,
        on_state_change: Optional[Callable[[PipelineState], None]] = None,
    ):
        self.db = db
        self.extractor = extractor
        self.camera = camera
        self.attendance = attendance or AttendanceService(db)
        self.threshold = threshold
        self.today = today
        self.on_state_change = on_state_change
        self.logger = setup_logger(self.__class__.__name__)

        self.state = PipelineState.IDLE
        self.last_error: Optional[str] = None
        self._busy = threading.Lock()
        self._cancel = threading.Event()

    @property
    def processing(self) -> bool:
        return self._busy.locked()

    def cancel(self) -> None:
        if self.processing:
            self.logger.info("Cancellation requested")
            self._cancel.set()

    def capture_and_mark(self, frame: Optional[np.ndarray] = None) -> RecognitionOutcome:
        if not self._busy.acquire(blocking=False):
            raise PipelineBusyError("A recognition attempt is already in progress.")

        self._cancel.clear()
        try:
            outcome = self._run(frame)
        except AttendanceError as exc:
            self.last_error = str(exc)
            self._set_state(PipelineState.FAILED)
            self.logger.warning("Recognition attempt failed: %s", exc)
            raise
        except Exception as exc:
            self.last_error = str(exc)
            self._set_state(PipelineState.FAILED)
            self.logger.exception("Unexpected recognition failure")
            raise AttendanceError(f"Recognition failed: {exc}") from exc
        finally:
            try:
                self._set_state(PipelineState.IDLE)
            finally:
                self._busy.release()

        self.last_error = None
        return outcome

    def _run(self, frame: Optional[np.ndarray]) -> RecognitionOutcome:
        self._enter(PipelineState.CAPTURING)
        image = self._capture(frame)

        self._enter(PipelineState.EXTRACTING)
        embedding = self.extractor.extract(image)

        self._enter(PipelineState.MATCHING)
        gallery = self._load_gallery()
        result = match(embedding, gallery, self.threshold)

        if not isinstance(result, Matched):
            self.logger.info(
                "No matching student (best similarity %s, threshold %.2f)",
                "n/a" if result.best_similarity is None else f"{result.best_similarity:.3f}",
                self.threshold,
            )
            return RecognitionOutcome(match=result, record=None, message="No matching student found")

        self._enter(PipelineState.RECORDING)
        record = self.attendance.record_presence(
            student_id=result.student_id,
            day=self.today(),
            confidence=result.similarity,
        )
        return RecognitionOutcome(
            match=result,
            record=record,
            message=f"Attendance marked for {result.display_name}",
        )

    def _enter(self, state: PipelineState) -> None:
        if self._cancel.is_set():
            raise RecognitionCancelled(f"Recognition cancelled before {state.value}.")
        self._set_state(state)

    def _set_state(self, state: PipelineState) -> None:
        if state == self.state:
            return
        self.state = state
        self.logger.debug("Pipeline state -> %s", state.value)
        if self.on_state_change is None:
            return
        try:
            self.on_state_change(state)
        except Exception:
            self.logger.exception("State listener failed on %s", state.value)

    def _capture(self, frame: Optional[np.ndarray]) -> np.ndarray:
        if frame is not None:
            return frame
        if self.camera is None:
            raise CameraError("No camera is attached to this session.")
        return self.camera.read()

    def _load_gallery(self) -> List[GalleryEntry]:
        try:
            return self.db.list_gallery()
        except DatabaseError as exc:
            raise MatchError(f"Unable to read the face gallery: {exc}") from exc

