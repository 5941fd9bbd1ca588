import threading
import time

import cv2
import numpy as np
import pytest
import torch

from school_attendance.exceptions import ExtractionError
from school_attendance.face_engine import FaceEngine, decode_image


def pooled_model() -> torch.nn.Module:
    return torch.nn.Sequential(torch.nn.AdaptiveAvgPool2d(1), torch.nn.Flatten())


class CountingLoader:
    def __init__(self, delay: float = 0.0, failures: int = 0):
        self.delay = delay
        self.failures = failures
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self) -> torch.nn.Module:
        with self._lock:
            self.calls += 1
            attempt = self.calls
        time.sleep(self.delay)
        if attempt <= self.failures:
            raise RuntimeError("weights download failed")
        return pooled_model()


def colour_frame(bgr) -> np.ndarray:
    frame = np.zeros((64, 80, 3), dtype=np.uint8)
    frame[:, :] = bgr
    return frame


def test_model_is_loaded_lazily():
    loader = CountingLoader()
    engine = FaceEngine(device="cpu", loader=loader)

    assert not engine.is_loaded
    engine.extract(colour_frame((10, 20, 30)))

    assert engine.is_loaded
    assert loader.calls == 1


def test_extract_returns_unit_vector():
    engine = FaceEngine(device="cpu", loader=CountingLoader())

    embedding = engine.extract(colour_frame((200, 100, 50)))

    assert embedding.dtype == np.float32
    assert embedding.shape == (3,)
    assert float(np.linalg.norm(embedding)) == pytest.approx(1.0, abs=1e-5)


def test_repeated_calls_reuse_loaded_model():
    loader = CountingLoader()
    engine = FaceEngine(device="cpu", loader=loader)

    first = engine.extract(colour_frame((0, 128, 255)))
    second = engine.extract(colour_frame((0, 128, 255)))

    np.testing.assert_allclose(first, second)
    assert loader.calls == 1


def test_concurrent_first_calls_load_once():
    loader = CountingLoader(delay=0.2)
    engine = FaceEngine(device="cpu", loader=loader)
    errors = []

    def worker():
        try:
            engine.extract(colour_frame((5, 50, 150)))
        except Exception as exc:  # pragma: no cover - reported below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert loader.calls == 1


def test_failed_load_raises_and_is_retried():
    loader = CountingLoader(failures=1)
    engine = FaceEngine(device="cpu", loader=loader)

    with pytest.raises(ExtractionError, match="Failed to initialize"):
        engine.extract(colour_frame((1, 2, 3)))
    assert not engine.is_loaded

    engine.extract(colour_frame((1, 2, 3)))
    assert loader.calls == 2


def test_grayscale_frames_are_accepted():
    engine = FaceEngine(device="cpu", loader=CountingLoader())

    embedding = engine.extract(np.full((32, 32), 90, dtype=np.uint8))

    assert embedding.shape == (3,)


@pytest.mark.parametrize(
    "image",
    [np.zeros((0, 0, 3), dtype=np.uint8), np.zeros((8, 8, 2), dtype=np.uint8), "not-an-image"],
)
def test_unusable_images_raise_extraction_error(image):
    engine = FaceEngine(device="cpu", loader=CountingLoader())

    with pytest.raises(ExtractionError):
        engine.extract(image)


def test_inference_failure_is_extraction_error():
    class Broken(torch.nn.Module):
        def forward(self, x):
            raise RuntimeError("CUDA out of memory")

    engine = FaceEngine(device="cpu", loader=Broken)

    with pytest.raises(ExtractionError, match="Embedding generation failed"):
        engine.extract(colour_frame((1, 1, 1)))


def test_unknown_backbone_is_rejected():
    with pytest.raises(ExtractionError, match="Unknown embedding model"):
        FaceEngine(model_name="alexnet-xl", device="cpu")


def test_decode_image_roundtrips_jpeg():
    ok, encoded = cv2.imencode(".jpg", colour_frame((30, 60, 90)))
    assert ok

    image = decode_image(encoded.tobytes())

    assert image.shape == (64, 80, 3)


@pytest.mark.parametrize("payload", [b"", b"definitely not a jpeg"])
def test_decode_image_rejects_bad_payloads(payload):
    with pytest.raises(ExtractionError):
        decode_image(payload)
