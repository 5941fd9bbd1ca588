from typing import Optional, Protocol

import cv2
import numpy as np

from .camera_capture import open_camera_capture
from .config import FRAME_FPS, FRAME_HEIGHT, FRAME_WIDTH
from .exceptions import CameraError
from .logger import setup_logger


class FrameSource(Protocol):
    def read(self) -> np.ndarray:
        ...


class CameraStream:
    """Scoped webcam acquisition; the device is released on every exit path."""

    def __init__(
        self,
        camera_index: int = 0,
        width: int = FRAME_WIDTH,
        height: int = FRAME_HEIGHT,
        fps: int = FRAME_FPS,
    ):
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.fps = fps
        self.cap = None
        self.backend_name: Optional[str] = None
        self.logger = setup_logger(self.__class__.__name__)

    def __enter__(self) -> "CameraStream":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self.cap is not None

    def open(self) -> None:
        if self.cap is not None:
            return

        self.cap, self.backend_name = open_camera_capture(self.camera_index)
        try:
            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            self.cap.set(cv2.CAP_PROP_FPS, self.fps)
        except Exception:
            self.close()
            raise
        self.logger.info("Camera %d opened with %s backend", self.camera_index, self.backend_name)

    def read(self) -> np.ndarray:
        if self.cap is None:
            raise CameraError("Camera stream is not initialized.")

        success, frame = self.cap.read()
        if not success or frame is None:
            raise CameraError("Failed to read frame from camera.")
        return frame

    def close(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.logger.info("Camera %d released", self.camera_index)

