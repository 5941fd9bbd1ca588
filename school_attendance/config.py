import os
from pathlib import Path

import torch


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _str_env(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(_str_env("SCHOOL_DATA_DIR", str(BASE_DIR / "data")))
LOG_DIR = Path(_str_env("SCHOOL_LOG_DIR", str(BASE_DIR / "logs")))
DB_PATH = Path(_str_env("SCHOOL_DB_PATH", str(DATA_DIR / "school.db")))

# Logging
LOG_LEVEL = _str_env("SCHOOL_LOG_LEVEL", "INFO").upper()
LOG_FILE = _str_env("SCHOOL_LOG_FILE", "attendance.log")
LOG_MAX_BYTES = _int_env("SCHOOL_LOG_MAX_BYTES", 2_000_000)
LOG_BACKUP_COUNT = _int_env("SCHOOL_LOG_BACKUP_COUNT", 5)

# Webcam settings
CAMERA_INDEX = _int_env("SCHOOL_CAMERA_INDEX", 0)
FRAME_WIDTH = _int_env("SCHOOL_FRAME_WIDTH", 640)
FRAME_HEIGHT = _int_env("SCHOOL_FRAME_HEIGHT", 480)
FRAME_FPS = _int_env("SCHOOL_FRAME_FPS", 30)
CAMERA_WARMUP_READS = _int_env("SCHOOL_CAMERA_WARMUP_READS", 6)

# Embedding model
EMBEDDING_MODEL = _str_env("SCHOOL_EMBEDDING_MODEL", "vit_b_16")
EMBEDDING_INPUT_SIZE = 224
PRETRAINED_WEIGHTS = _bool_env("SCHOOL_PRETRAINED_WEIGHTS", True)

# Enrollment settings
ENROLLMENT_SAMPLES = _int_env("SCHOOL_ENROLLMENT_SAMPLES", 10)
ENROLLMENT_MIN_SAMPLES = _int_env("SCHOOL_ENROLLMENT_MIN_SAMPLES", 1)
SAMPLE_EVERY_N_FRAMES = _int_env("SCHOOL_SAMPLE_EVERY_N_FRAMES", 4)
DUPLICATE_FACE_SIMILARITY_THRESHOLD = _float_env("SCHOOL_DUPLICATE_FACE_THRESHOLD", 0.95)

# Recognition settings
RECOGNITION_THRESHOLD = _float_env("SCHOOL_RECOGNITION_THRESHOLD", 0.7)
AUTO_MARKED_BY = _str_env("SCHOOL_AUTO_MARKED_BY", "face_recognition")

# Runtime settings
DEVICE = _str_env("SCHOOL_DEVICE", "cuda" if torch.cuda.is_available() else "cpu")
